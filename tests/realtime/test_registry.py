# tests/realtime/test_registry.py
"""
Тесты реестра подключений.
"""

import pytest

from conftest import FakeChannel
from ridehail.common.constants import UserRole
from ridehail.realtime.registry import ConnectionRegistry


class TestRegistry:
    """Тесты ConnectionRegistry."""

    @pytest.mark.asyncio
    async def test_register_and_lookup(self, registry: ConnectionRegistry) -> None:
        channel = FakeChannel()

        connection_id = await registry.register(10, "driver", channel)

        (connection,) = await registry.connections_for(10)
        assert connection.connection_id == connection_id
        assert connection.role == UserRole.DRIVER
        assert connection.channel is channel
        assert await registry.is_connected(10)
        assert not await registry.is_connected(11)

    @pytest.mark.asyncio
    async def test_multiple_connections_per_user(self, registry: ConnectionRegistry) -> None:
        """Пользователь может держать несколько подключений."""
        first = await registry.register(1, UserRole.CUSTOMER, FakeChannel())
        await registry.register(1, UserRole.CUSTOMER, FakeChannel())

        assert len(await registry.connections_for(1)) == 2
        await registry.unregister(first)
        assert len(await registry.connections_for(1)) == 1

    @pytest.mark.asyncio
    async def test_unregister_unknown(self, registry: ConnectionRegistry) -> None:
        assert await registry.unregister("missing") is None

    @pytest.mark.asyncio
    async def test_dead_connection_hidden(self, registry: ConnectionRegistry) -> None:
        """Мёртвое подключение не считается живым, но учитывается в статистике."""
        connection_id = await registry.register(10, UserRole.DRIVER, FakeChannel())

        await registry.mark_dead(connection_id)

        assert not await registry.is_connected(10)
        assert await registry.connections_for(10) == []
        stats = await registry.get_stats()
        assert stats.total_connections == 0
        assert stats.dead_connections == 1

    @pytest.mark.asyncio
    async def test_stats(self, registry: ConnectionRegistry) -> None:
        await registry.register(1, UserRole.CUSTOMER, FakeChannel())
        await registry.register(1, UserRole.CUSTOMER, FakeChannel())
        await registry.register(10, UserRole.DRIVER, FakeChannel())

        stats = await registry.get_stats()

        assert stats.total_connections == 3
        assert stats.connected_users == 2
        assert stats.by_role == {"customer": 2, "driver": 1}
        assert await registry.connected_user_ids() == [1, 10]

    @pytest.mark.asyncio
    async def test_snapshot_is_copy(self, registry: ConnectionRegistry) -> None:
        """Изменение снимка не меняет реестр."""
        await registry.register(10, UserRole.DRIVER, FakeChannel())

        (snapshot,) = await registry.connections_for(10)
        snapshot.alive = False

        assert await registry.is_connected(10)

    @pytest.mark.asyncio
    async def test_sweep_inactive(self, registry: ConnectionRegistry, clock) -> None:
        """Сборщик удаляет неактивные и мёртвые подключения и закрывает каналы."""
        idle = FakeChannel()
        active = FakeChannel()
        dead = FakeChannel()
        await registry.register(1, UserRole.CUSTOMER, idle)
        active_id = await registry.register(2, UserRole.CUSTOMER, active)
        dead_id = await registry.register(3, UserRole.CUSTOMER, dead)
        await registry.mark_dead(dead_id)

        clock.advance(200)
        await registry.touch(active_id)
        clock.advance(200)
        removed = await registry.sweep_inactive(300)

        assert removed == 2
        assert idle.closed and dead.closed
        assert not active.closed
        assert await registry.connected_user_ids() == [2]
        assert (await registry.get_stats()).dead_connections == 0

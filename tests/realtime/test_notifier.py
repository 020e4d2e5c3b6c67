# tests/realtime/test_notifier.py
"""
Тесты рассылки событий.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import FakeChannel
from ridehail.common.constants import UserRole
from ridehail.core.rides.models import Location, Ride
from ridehail.realtime import events
from ridehail.realtime.notifier import Notifier
from ridehail.realtime.registry import ConnectionRegistry


@pytest.fixture
def event(clock) -> events.BaseEvent:
    return events.pong(clock.now())


class TestSend:
    """Тесты доставки."""

    @pytest.mark.asyncio
    async def test_all_user_connections(self, notifier: Notifier, registry: ConnectionRegistry, event) -> None:
        """Событие уходит во все подключения пользователя."""
        phone, laptop = FakeChannel(), FakeChannel()
        await registry.register(1, UserRole.CUSTOMER, phone)
        await registry.register(1, UserRole.CUSTOMER, laptop)

        delivered = await notifier.send_to_user(1, event)

        assert delivered == 2
        assert phone.types() == ["pong"] and laptop.types() == ["pong"]
        assert notifier.messages_sent == 2

    @pytest.mark.asyncio
    async def test_not_connected(self, notifier: Notifier, event) -> None:
        assert await notifier.send_to_user(1, event) == 0

    @pytest.mark.asyncio
    async def test_failure_isolated(self, notifier: Notifier, registry: ConnectionRegistry, event) -> None:
        """Сбой одного подключения помечает его мёртвым и не мешает остальным."""
        broken, healthy = FakeChannel(fail=True), FakeChannel()
        await registry.register(1, UserRole.CUSTOMER, broken)
        await registry.register(1, UserRole.CUSTOMER, healthy)

        delivered = await notifier.send_to_user(1, event)

        assert delivered == 1
        assert healthy.types() == ["pong"]
        assert notifier.delivery_failures == 1
        assert len(await registry.connections_for(1)) == 1

    @pytest.mark.asyncio
    async def test_send_to_users_deduplicates(
        self, notifier: Notifier, registry: ConnectionRegistry, event
    ) -> None:
        channel = FakeChannel()
        await registry.register(10, UserRole.DRIVER, channel)
        await registry.register(11, UserRole.DRIVER, FakeChannel())

        assert await notifier.send_to_users([10, 10, 11], event) == 2
        assert channel.types() == ["pong"]

    @pytest.mark.asyncio
    async def test_broadcast(self, notifier: Notifier, registry: ConnectionRegistry, event) -> None:
        await registry.register(1, UserRole.CUSTOMER, FakeChannel())
        await registry.register(10, UserRole.DRIVER, FakeChannel())

        assert await notifier.broadcast(event) == 2

    @pytest.mark.asyncio
    async def test_forward_after_local_delivery(self, registry: ConnectionRegistry, event) -> None:
        """Событие доставляется локально и передаётся другим процессам."""
        forward = AsyncMock()
        notifier = Notifier(registry, forward=forward)
        channel = FakeChannel()
        await registry.register(1, UserRole.CUSTOMER, channel)

        assert await notifier.send_to_user(1, event) == 1

        assert channel.types() == ["pong"]
        forward.assert_awaited_once_with(1, event)

    @pytest.mark.asyncio
    async def test_forward_failure_counted(self, registry: ConnectionRegistry, event) -> None:
        forward = AsyncMock(side_effect=RuntimeError("broker down"))
        notifier = Notifier(registry, forward=forward)

        assert await notifier.send_to_user(1, event) == 0
        assert notifier.delivery_failures == 1


class TestPush:
    """Тесты push-уведомлений."""

    @pytest.fixture
    def ride(self, clock) -> Ride:
        return Ride(
            customer_id=1,
            pickup=Location(lat=31.95, lng=35.91),
            dropoff=Location(lat=31.97, lng=35.93),
            estimated_fare=Decimal("2.00"),
            created_at=clock.now(),
        )

    @pytest.mark.asyncio
    async def test_notify_pushes(self, registry: ConnectionRegistry, push: AsyncMock, ride, clock) -> None:
        notifier = Notifier(registry, push)

        await notifier.notify(1, events.ride_status_changed(ride, clock.now()), "Title", "Body")
        await notifier.drain()

        push.deliver.assert_awaited_once_with(
            1, "Title", "Body", {"type": "ride_status_changed", "ride_id": ride.id}
        )

    @pytest.mark.asyncio
    async def test_push_failure_logged(self, registry: ConnectionRegistry, push: AsyncMock) -> None:
        """Ошибка провайдера не выходит наружу."""
        push.deliver.side_effect = RuntimeError("provider down")
        notifier = Notifier(registry, push)

        notifier.push(1, "Title", "Body")
        await notifier.drain()

        push.deliver.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_without_provider(self, notifier: Notifier) -> None:
        notifier.push(1, "Title", "Body")
        await notifier.drain()

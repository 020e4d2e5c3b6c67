# ridehail/realtime/registry.py
"""
Реестр подключений реального времени.

Хранит все живые подключения пользователей. Всё состояние защищено одной
asyncio.Lock; каналы закрываются уже после её освобождения.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol
from uuid import uuid4

from ridehail.common.constants import TypeMsg, UserRole
from ridehail.common.logger import log_info, log_warning
from ridehail.core.clock import Clock


class Channel(Protocol):
    """Транспорт подключения (например, fastapi.WebSocket)."""

    async def send_json(self, data: Any) -> None:
        ...

    async def close(self, code: int = 1000) -> None:
        ...


@dataclass
class Connection:
    """Информация о подключении."""
    connection_id: str
    user_id: int
    role: UserRole
    channel: Channel
    connected_at: datetime
    last_activity_at: datetime
    alive: bool = True


@dataclass
class RegistryStats:
    total_connections: int = 0
    connected_users: int = 0
    by_role: dict[str, int] = field(default_factory=dict)
    dead_connections: int = 0


class ConnectionRegistry:
    """
    Реестр подключений.

    Поддерживает:
    - Несколько подключений на пользователя
    - Пометку мёртвых подключений при ошибке доставки
    - Очистку неактивных подключений
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        # connection_id -> Connection
        self._connections: dict[str, Connection] = {}
        # user_id -> connection_ids
        self._by_user: dict[int, set[str]] = {}

    async def register(self, user_id: int, role: UserRole | str, channel: Channel) -> str:
        """Регистрирует живое подключение и возвращает его ID."""
        now = self._clock.now()
        connection = Connection(
            connection_id=str(uuid4()),
            user_id=user_id,
            role=UserRole(role),
            channel=channel,
            connected_at=now,
            last_activity_at=now,
        )
        async with self._lock:
            self._connections[connection.connection_id] = connection
            self._by_user.setdefault(user_id, set()).add(connection.connection_id)

        await log_info(
            f"Подключён {connection.role.value} {user_id} ({connection.connection_id})",
            type_msg=TypeMsg.DEBUG,
        )
        return connection.connection_id

    async def unregister(self, connection_id: str) -> Optional[Connection]:
        """Удаляет подключение. Канал не закрывается."""
        async with self._lock:
            connection = self._remove_locked(connection_id)
        if connection is not None:
            await log_info(
                f"Отключён пользователь {connection.user_id} ({connection_id})",
                type_msg=TypeMsg.DEBUG,
            )
        return connection

    async def mark_dead(self, connection_id: str) -> None:
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is not None:
                connection.alive = False

    async def touch(self, connection_id: str) -> None:
        """Отмечает активность подключения (входящий кадр или ping)."""
        now = self._clock.now()
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is not None:
                connection.last_activity_at = now

    async def connections_for(self, user_id: int) -> list[Connection]:
        """Снимок живых подключений пользователя."""
        async with self._lock:
            return [
                replace(self._connections[cid])
                for cid in self._by_user.get(user_id, ())
                if self._connections[cid].alive
            ]

    async def all_connections(self) -> list[Connection]:
        """Снимок всех живых подключений."""
        async with self._lock:
            return [replace(c) for c in self._connections.values() if c.alive]

    async def is_connected(self, user_id: int) -> bool:
        async with self._lock:
            return any(
                self._connections[cid].alive for cid in self._by_user.get(user_id, ())
            )

    async def connected_user_ids(self) -> list[int]:
        async with self._lock:
            return sorted({c.user_id for c in self._connections.values() if c.alive})

    async def get_stats(self) -> RegistryStats:
        async with self._lock:
            live = [c for c in self._connections.values() if c.alive]
            by_role = Counter(c.role.value for c in live)
            return RegistryStats(
                total_connections=len(live),
                connected_users=len({c.user_id for c in live}),
                by_role=dict(by_role),
                dead_connections=len(self._connections) - len(live),
            )

    async def sweep_inactive(self, stale_after: float | timedelta, now: Optional[datetime] = None) -> int:
        """
        Удаляет мёртвые подключения и те, что не проявляли активности дольше stale_after.

        Returns:
            Количество удалённых подключений
        """
        if not isinstance(stale_after, timedelta):
            stale_after = timedelta(seconds=stale_after)
        now = now or self._clock.now()
        cutoff = now - stale_after

        async with self._lock:
            doomed = [
                cid for cid, c in self._connections.items()
                if not c.alive or c.last_activity_at < cutoff
            ]
            removed = [self._remove_locked(cid) for cid in doomed]

        for connection in removed:
            if connection is None:
                continue
            try:
                await connection.channel.close()
            except Exception as e:
                await log_warning(
                    f"Ошибка закрытия подключения {connection.connection_id}: {e}",
                    extra={"user_id": connection.user_id},
                )

        if removed:
            await log_info(f"Удалено неактивных подключений: {len(removed)}", type_msg=TypeMsg.INFO)
        return len(removed)

    def _remove_locked(self, connection_id: str) -> Optional[Connection]:
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None
        ids = self._by_user.get(connection.user_id)
        if ids is not None:
            ids.discard(connection_id)
            if not ids:
                del self._by_user[connection.user_id]
        return connection

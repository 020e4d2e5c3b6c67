# ridehail/realtime/notifier.py
"""
Рассылка событий по живым подключениям.

Отказ одного подключения не влияет на остальные: ошибка логируется,
подключение помечается мёртвым, методы никогда не выбрасывают исключений
доставки.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, Optional

from ridehail.common.constants import TypeMsg
from ridehail.common.logger import log_error, log_info, log_warning
from ridehail.core.rides.errors import DeliveryFailure
from ridehail.realtime.events import BaseEvent
from ridehail.realtime.push import PushProvider
from ridehail.realtime.registry import Connection, ConnectionRegistry


# Передаёт событие пользователю через другой процесс
Forwarder = Callable[[int, BaseEvent], Awaitable[None]]


class Notifier:
    """Fan-out событий реального времени и push-уведомлений."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        push: Optional[PushProvider] = None,
        forward: Optional[Forwarder] = None,
    ) -> None:
        self._registry = registry
        self._push = push
        # Передача событий другим процессам (EventRelay.forward)
        self._forward = forward
        self._background: set[asyncio.Task[None]] = set()
        # Для статистики
        self.messages_sent: int = 0
        self.delivery_failures: int = 0

    async def _deliver(self, connection: Connection, payload: dict[str, Any], event_type: str) -> bool:
        try:
            await connection.channel.send_json(payload)
            return True
        except Exception as e:
            failure = DeliveryFailure(
                f"failed to deliver {event_type} to connection {connection.connection_id}: {e}",
                user_id=connection.user_id,
                connection_id=connection.connection_id,
            )
            await log_warning(failure.message, extra=failure.details)
            await self._registry.mark_dead(connection.connection_id)
            self.delivery_failures += 1
            return False

    async def _fan_out(self, connections: list[Connection], event: BaseEvent) -> int:
        if not connections:
            return 0
        payload = event.to_wire()
        event_type = payload.get("type", "event")
        results = await asyncio.gather(
            *(self._deliver(c, payload, event_type) for c in connections)
        )
        delivered = sum(1 for ok in results if ok)
        self.messages_sent += delivered
        return delivered

    async def send_to_user(self, user_id: int, event: BaseEvent) -> int:
        """
        Отправляет событие во все живые подключения пользователя.

        Returns:
            Количество успешных доставок
        """
        connections = await self._registry.connections_for(user_id)
        delivered = await self._fan_out(connections, event)
        if self._forward is not None:
            await self._forward_safely(self._forward, user_id, event)
        elif not connections:
            await log_info(
                f"Пользователь {user_id} не подключён, событие {getattr(event, 'type', '')} не доставлено",
                type_msg=TypeMsg.DEBUG,
            )
        return delivered

    async def _forward_safely(self, forward: Forwarder, user_id: int, event: BaseEvent) -> None:
        try:
            await forward(user_id, event)
        except Exception as e:
            self.delivery_failures += 1
            await log_error(
                f"Ошибка передачи события {getattr(event, 'type', '')} для {user_id}: {e}",
                extra={"user_id": user_id},
            )

    async def send_to_users(self, user_ids: Iterable[int], event: BaseEvent) -> int:
        """Отправляет событие нескольким пользователям одновременно."""
        results = await asyncio.gather(
            *(self.send_to_user(user_id, event) for user_id in set(user_ids))
        )
        return sum(results)

    async def broadcast(self, event: BaseEvent) -> int:
        """Отправляет событие во все живые подключения."""
        connections = await self._registry.all_connections()
        return await self._fan_out(connections, event)

    async def notify(self, user_id: int, event: BaseEvent, title: str, message: str) -> int:
        """send_to_user плюс push-уведомление в фоне."""
        delivered = await self.send_to_user(user_id, event)
        self.push(user_id, title, message, {"type": getattr(event, "type", None), "ride_id": event.ride_id})
        return delivered

    def push(self, user_id: int, title: str, message: str, metadata: Optional[dict[str, Any]] = None) -> None:
        """Запускает доставку push-уведомления, не дожидаясь результата."""
        if self._push is None:
            return
        task = asyncio.create_task(self._push_safely(user_id, title, message, metadata))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _push_safely(
        self, user_id: int, title: str, message: str, metadata: Optional[dict[str, Any]]
    ) -> None:
        assert self._push is not None
        try:
            await self._push.deliver(user_id, title, message, metadata)
        except Exception as e:
            await log_error(
                f"Ошибка push-уведомления для {user_id}: {e}",
                extra={"user_id": user_id, "title": title},
            )

    async def drain(self) -> None:
        """Дожидается завершения фоновых push-доставок."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

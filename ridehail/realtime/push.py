# ridehail/realtime/push.py
"""
Провайдеры push-уведомлений.

Доставка выполняется «выстрелил и забыл»: ошибки провайдера логируются
вызывающим и не влияют на бизнес-операцию.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from ridehail.common.constants import TypeMsg
from ridehail.common.logger import log_info
from ridehail.infra.event_bus import DomainEvent, EventBus, EventTypes


class PushProvider(Protocol):
    async def deliver(
        self,
        user_id: int,
        title: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        ...


class LoggingPushProvider:
    """Пишет уведомления в лог (по умолчанию, для разработки)."""

    async def deliver(
        self,
        user_id: int,
        title: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        await log_info(
            f"Push для {user_id}: {title}: {message}",
            type_msg=TypeMsg.DEBUG,
            extra={"user_id": user_id, "metadata": metadata or {}},
        )


class EventBusPushProvider:
    """Публикует notification.send в RabbitMQ для внешнего сервиса уведомлений."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    async def deliver(
        self,
        user_id: int,
        title: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        await self._bus.publish(DomainEvent(
            event_type=EventTypes.NOTIFICATION_SEND,
            payload={
                "user_id": user_id,
                "title": title,
                "message": message,
                "metadata": metadata or {},
            },
        ))

# ridehail/realtime/relay.py
"""
Передача событий реального времени между процессами через шину.

Процесс без WebSocket-подключений (режим workers) публикует события,
каждый экземпляр API получает свою копию и доставляет её в свои
подключения.
"""

from __future__ import annotations

from ridehail.common.logger import log_warning
from ridehail.infra.event_bus import DomainEvent, EventBus, EventTypes
from ridehail.realtime.events import BaseEvent, parse_event
from ridehail.realtime.notifier import Notifier


class EventRelay:
    """Публикация событий пользователям и их приём из шины."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    async def forward(self, user_id: int, event: BaseEvent) -> None:
        """Публикует событие для пользователя."""
        await self._bus.publish(DomainEvent(
            event_type=EventTypes.REALTIME_DELIVER,
            payload={"user_id": user_id, "event": event.to_wire()},
        ))

    async def attach(self, notifier: Notifier) -> None:
        """Подписывает notifier на события из шины."""

        async def deliver(message: DomainEvent) -> None:
            user_id = message.payload.get("user_id")
            raw = message.payload.get("event")
            if not isinstance(user_id, int) or not isinstance(raw, dict):
                await log_warning(f"Некорректное событие шины {message.event_id}")
                return
            await notifier.send_to_user(user_id, parse_event(raw))

        await self._bus.subscribe(EventTypes.REALTIME_DELIVER, deliver)

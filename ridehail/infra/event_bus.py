# ridehail/infra/event_bus.py
"""
Публикация событий в RabbitMQ (aio-pika).
Используется для передачи push-уведомлений внешнему провайдеру
и событий реального времени между процессами.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable
from uuid import uuid4

import aio_pika
from aio_pika import DeliveryMode, ExchangeType, Message
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractRobustConnection,
)

from ridehail.common.constants import TypeMsg
from ridehail.common.logger import log_error, log_info

if TYPE_CHECKING:
    from ridehail.config.loader import RabbitMQSettings


@dataclass
class DomainEvent:
    """Сообщение шины."""
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        """Сериализует событие в JSON."""
        return json.dumps({
            "event_id": self.event_id,
            "event_type": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
        }, ensure_ascii=False, default=str)

    @classmethod
    def from_json(cls, data: str | bytes) -> "DomainEvent":
        """Десериализует событие из JSON."""
        parsed = json.loads(data)
        timestamp = parsed.get("timestamp")
        return cls(
            event_type=parsed.get("event_type", ""),
            payload=parsed.get("payload", {}),
            event_id=parsed.get("event_id", str(uuid4())),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(timezone.utc),
        )


EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventTypes:
    """Константы типов событий (routing keys)."""
    NOTIFICATION_SEND = "notification.send"
    REALTIME_DELIVER = "realtime.deliver"


class EventBus:
    """Публикация и подписка на события topic exchange RabbitMQ."""

    def __init__(self, exchange_name: str = "ridehail.events") -> None:
        self._exchange_name = exchange_name
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None

    @property
    def is_connected(self) -> bool:
        """Проверяет, активно ли соединение."""
        return self._connection is not None and not self._connection.is_closed

    async def connect(self, url: str) -> None:
        """
        Подключается к RabbitMQ и объявляет exchange.

        Args:
            url: URL RabbitMQ
        """
        if self.is_connected:
            return

        await log_info("Подключение к RabbitMQ...", type_msg=TypeMsg.INFO)
        self._connection = await aio_pika.connect_robust(url)
        self._channel = await self._connection.channel()
        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            ExchangeType.TOPIC,
            durable=True,
        )
        await log_info("Подключение к RabbitMQ установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с RabbitMQ."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None
            await log_info("Соединение с RabbitMQ закрыто", type_msg=TypeMsg.INFO)

    async def publish(self, event: DomainEvent) -> None:
        """
        Публикует событие, routing key = event_type.

        Raises:
            RuntimeError: если нет соединения
        """
        if not self.is_connected or self._exchange is None:
            raise RuntimeError("Нет соединения с RabbitMQ")

        message = Message(
            body=event.to_json().encode(),
            content_type="application/json",
            message_id=event.event_id,
            timestamp=event.timestamp,
            delivery_mode=DeliveryMode.PERSISTENT,
        )
        await self._exchange.publish(message, routing_key=event.event_type)

    async def subscribe(
        self,
        event_type: str,
        handler: EventHandler,
        queue_name: str | None = None,
    ) -> None:
        """
        Подписывается на события определённого типа.

        Args:
            event_type: Тип события (routing key)
            handler: Асинхронный обработчик события
            queue_name: Имя durable очереди. Без имени очередь эксклюзивная
                и каждый подписчик получает свою копию события.

        Raises:
            RuntimeError: если нет соединения
        """
        if not self.is_connected or self._channel is None or self._exchange is None:
            raise RuntimeError("Нет соединения с RabbitMQ")

        if queue_name is None:
            queue = await self._channel.declare_queue(exclusive=True, auto_delete=True)
        else:
            queue = await self._channel.declare_queue(queue_name, durable=True)
        await queue.bind(self._exchange, routing_key=event_type)
        await queue.consume(self._make_consumer(event_type, handler))
        await log_info(f"Подписка на события: {event_type}", type_msg=TypeMsg.DEBUG)

    def _make_consumer(
        self, event_type: str, handler: EventHandler
    ) -> Callable[[AbstractIncomingMessage], Awaitable[None]]:
        """Создаёт consumer для обработки сообщений."""
        async def consumer(message: AbstractIncomingMessage) -> None:
            async with message.process():
                try:
                    await handler(DomainEvent.from_json(message.body))
                except Exception as e:
                    await log_error(f"Ошибка обработки события {event_type}: {e}")

        return consumer

    async def health_check(self) -> bool:
        return self.is_connected


async def init_event_bus(config: "RabbitMQSettings") -> EventBus:
    """Создаёт шину по секции rabbitmq настроек и подключается."""
    bus = EventBus(exchange_name=config.RABBITMQ_EXCHANGE)
    await bus.connect(config.url)
    return bus

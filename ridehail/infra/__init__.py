# ridehail/infra/__init__.py
"""
Инфраструктурный слой.
Работа с внешними сервисами: PostgreSQL, Redis, RabbitMQ.
"""

from ridehail.infra.database import DatabaseManager, init_db
from ridehail.infra.redis_client import RedisClient, init_redis
from ridehail.infra.event_bus import EventBus, init_event_bus

__all__ = [
    "DatabaseManager",
    "init_db",
    "RedisClient",
    "init_redis",
    "EventBus",
    "init_event_bus",
]

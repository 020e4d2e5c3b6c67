# ridehail/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли участников поездки."""
    CUSTOMER = "customer"
    DRIVER = "driver"

    def __str__(self) -> str:
        return self.value


class RideStatus(str, Enum):
    """Статусы поездки."""
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        """Конечный ли статус."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})

ACTIVE_STATUSES = frozenset(
    status for status in RideStatus if status not in TERMINAL_STATUSES
)


class StoreBackend(str, Enum):
    """Хранилище поездок."""
    MEMORY = "memory"
    POSTGRES = "postgres"


class LocatorBackend(str, Enum):
    """Хранилище позиций водителей."""
    MEMORY = "memory"
    REDIS = "redis"


class PushBackend(str, Enum):
    """Провайдер push-уведомлений."""
    LOG = "log"
    RABBITMQ = "rabbitmq"

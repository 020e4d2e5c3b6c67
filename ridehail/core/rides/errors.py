# ridehail/core/rides/errors.py
"""
Ошибки домена и типизированный результат операций.

Внутренние компоненты выбрасывают наследников RideError, оркестратор
превращает их в OperationResult. Инфраструктурные сбои пробрасываются.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    ACTIVE_RIDE_EXISTS = "active_ride_exists"
    RIDE_ALREADY_TAKEN = "ride_already_taken"
    REQUEST_EXPIRED = "request_expired"
    ALREADY_ANSWERED = "already_answered"
    DELIVERY_FAILURE = "delivery_failure"
    PERSISTENCE_FAILURE = "persistence_failure"


class RideError(Exception):
    """Базовая ошибка домена."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR
    retryable: bool = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.code.value,
            "message": self.message,
            "details": self.details or None,
        }


class ValidationError(RideError):
    code = ErrorCode.VALIDATION_ERROR


class NotFound(RideError):
    code = ErrorCode.NOT_FOUND


class InvalidTransition(RideError):
    code = ErrorCode.INVALID_TRANSITION


class ActiveRideExists(InvalidTransition):
    code = ErrorCode.ACTIVE_RIDE_EXISTS


class RideAlreadyTaken(InvalidTransition):
    code = ErrorCode.RIDE_ALREADY_TAKEN


class RequestExpired(RideError):
    code = ErrorCode.REQUEST_EXPIRED


class AlreadyAnswered(RideError):
    code = ErrorCode.ALREADY_ANSWERED


class DeliveryFailure(RideError):
    """Не удалось доставить событие в конкретное подключение."""
    code = ErrorCode.DELIVERY_FAILURE


class PersistenceFailure(RideError):
    """Сбой хранилища. Операцию можно повторить."""
    code = ErrorCode.PERSISTENCE_FAILURE
    retryable = True


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Результат публичной операции оркестратора."""

    ok: bool
    value: Optional[T] = None
    error: Optional[RideError] = None

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def fail(cls, error: RideError) -> "OperationResult[T]":
        return cls(ok=False, error=error)

    def unwrap(self) -> T:
        """Возвращает значение или выбрасывает сохранённую ошибку."""
        if not self.ok:
            assert self.error is not None
            raise self.error
        return self.value  # type: ignore[return-value]

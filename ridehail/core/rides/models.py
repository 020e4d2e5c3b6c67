# ridehail/core/rides/models.py
"""
Модели данных поездок и заявок водителям.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ridehail.common.constants import ACTIVE_STATUSES, RideStatus


def new_id() -> str:
    return str(uuid4())


class Location(BaseModel):
    """Точка на карте."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90.0, le=90.0, description="Широта")
    lng: float = Field(..., ge=-180.0, le=180.0, description="Долгота")
    address: str = Field("", description="Адрес")


class Ride(BaseModel):
    """Модель поездки."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str = Field(default_factory=new_id, description="UUID поездки")
    customer_id: int = Field(..., description="ID клиента")
    driver_id: Optional[int] = Field(None, description="ID водителя")

    # Локации
    pickup: Location = Field(..., description="Точка подачи")
    dropoff: Location = Field(..., description="Точка назначения")

    # Статус
    status: RideStatus = Field(RideStatus.REQUESTED, description="Статус поездки")

    # Расчёты
    estimated_fare: Decimal = Field(Decimal("0"), ge=0, description="Расчётная стоимость")
    actual_fare: Optional[Decimal] = Field(None, description="Итоговая стоимость")
    currency: str = Field("JOD", description="Валюта")
    distance_km: Optional[float] = Field(None, ge=0.0, description="Фактическое расстояние")
    duration_minutes: Optional[int] = Field(None, ge=0, description="Фактическая длительность")

    # Временные метки
    created_at: datetime = Field(..., description="Время создания")
    accepted_at: Optional[datetime] = Field(None, description="Время принятия")
    arrived_at: Optional[datetime] = Field(None, description="Время прибытия водителя")
    started_at: Optional[datetime] = Field(None, description="Время начала поездки")
    completed_at: Optional[datetime] = Field(None, description="Время завершения")
    cancelled_at: Optional[datetime] = Field(None, description="Время отмены")

    # Дополнительно
    notes: Optional[str] = Field(None, description="Комментарий клиента")
    cancellation_reason: Optional[str] = Field(None, description="Причина отмены")
    cancelled_by: Optional[int] = Field(None, description="Кто отменил (None: система)")

    @model_validator(mode="after")
    def check_driver_assignment(self) -> "Ride":
        """Водитель назначается только вместе с выходом из статуса requested."""
        if self.driver_id is not None and self.status == RideStatus.REQUESTED:
            raise ValueError("поездка в статусе requested не может иметь водителя")
        return self

    @property
    def is_active(self) -> bool:
        """Активна ли поездка."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active

    def involves(self, user_id: int) -> bool:
        """Является ли пользователь участником поездки."""
        return user_id == self.customer_id or (
            self.driver_id is not None and user_id == self.driver_id
        )

    def counterpart_of(self, user_id: int) -> Optional[int]:
        """Второй участник поездки."""
        if user_id == self.customer_id:
            return self.driver_id
        if user_id == self.driver_id:
            return self.customer_id
        return None


class RideRequest(BaseModel):
    """Предложение поездки конкретному водителю."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str = Field(default_factory=new_id, description="UUID заявки")
    ride_id: str = Field(..., description="ID поездки")
    driver_id: int = Field(..., description="ID водителя")
    distance_km: Optional[float] = Field(None, ge=0.0, description="Расстояние водителя до подачи")
    sent_at: datetime = Field(..., description="Время отправки")
    expires_at: datetime = Field(..., description="Время истечения")
    responded_at: Optional[datetime] = Field(None, description="Время ответа")
    accepted: Optional[bool] = Field(None, description="Ответ водителя")

    @property
    def is_answered(self) -> bool:
        return self.responded_at is not None

    def is_expired(self, now: datetime) -> bool:
        """Истекла ли заявка к моменту now."""
        return now >= self.expires_at

    def is_open(self, now: datetime) -> bool:
        """Можно ли ещё ответить на заявку."""
        return self.responded_at is None and now < self.expires_at


class DriverPosition(BaseModel):
    """Последняя известная позиция водителя."""

    driver_id: int
    lat: float
    lng: float
    updated_at: datetime
    online: bool = True


class TrackingPoint(BaseModel):
    """Точка маршрута водителя во время поездки."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str = Field(default_factory=new_id, description="UUID точки")
    ride_id: str = Field(..., description="ID поездки")
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    speed: Optional[float] = Field(None, ge=0.0, description="Скорость, км/ч")
    heading: Optional[float] = Field(None, ge=0.0, lt=360.0, description="Курс, градусы")
    recorded_at: datetime = Field(..., description="Время фиксации")


class RideTracking(BaseModel):
    """Маршрут поездки: точки по времени, последняя точка и пройденное расстояние."""

    ride_id: str
    points: list[TrackingPoint]
    latest: Optional[TrackingPoint] = None
    distance_km: float = 0.0


class FareEstimate(BaseModel):
    """Предварительный расчёт стоимости."""

    distance_km: float
    duration_minutes: int
    fare: Decimal
    currency: str


class RidePage(BaseModel):
    """Страница истории поездок."""

    items: list[Ride]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def create(cls, items: list[Ride], total: int, page: int, page_size: int) -> "RidePage":
        """Создаёт страницу с подсчётом общего числа страниц."""
        total_pages = (total + page_size - 1) // page_size
        return cls(items=items, total=total, page=page, page_size=page_size, total_pages=total_pages)

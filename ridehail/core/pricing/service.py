# ridehail/core/pricing/service.py
"""
Расчёт стоимости поездки.

Стоимость = (посадка + км × тариф + мин × тариф) × пиковый коэффициент,
не ниже минимальной, с округлением до 2 знаков.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from decimal import ROUND_HALF_EVEN, Decimal
from typing import TYPE_CHECKING

from ridehail.common.geo import estimate_duration_minutes
from ridehail.core.rides.errors import ValidationError
from ridehail.core.rides.models import FareEstimate

if TYPE_CHECKING:
    from ridehail.config.loader import PricingSettings

CENT = Decimal("0.01")


def _money(value: float | str | Decimal) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _parse_time(value: str | time) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(value)


@dataclass(frozen=True)
class Tariff:
    """Параметры тарифа."""

    base_fare: Decimal = Decimal("0.50")
    per_km: Decimal = Decimal("0.28")
    per_minute: Decimal = Decimal("0.05")
    minimum_fare: Decimal = Decimal("1.10")
    peak_multiplier: Decimal = Decimal("1.20")
    peak_windows: tuple[tuple[time, time], ...] = field(default_factory=lambda: (
        (time(7, 0), time(9, 0)),
        (time(15, 0), time(19, 0)),
    ))
    currency: str = "JOD"

    @classmethod
    def from_settings(cls, config: "PricingSettings") -> "Tariff":
        """Создаёт тариф из секции pricing настроек."""
        return cls(
            base_fare=_money(config.BASE_FARE),
            per_km=_money(config.FARE_PER_KM),
            per_minute=_money(config.FARE_PER_MINUTE),
            minimum_fare=_money(config.MIN_FARE),
            peak_multiplier=_money(config.PEAK_MULTIPLIER),
            peak_windows=tuple(
                (_parse_time(start), _parse_time(end)) for start, end in config.PEAK_WINDOWS
            ),
            currency=config.CURRENCY,
        )


class PricingService:
    """Калькулятор стоимости поездки."""

    def __init__(self, tariff: Tariff | None = None, average_speed_kmh: float = 30.0) -> None:
        self.tariff = tariff or Tariff()
        self.average_speed_kmh = average_speed_kmh

    @property
    def minimum_fare(self) -> Decimal:
        return self.tariff.minimum_fare

    @property
    def currency(self) -> str:
        return self.tariff.currency

    def is_peak_hour(self, moment: datetime) -> bool:
        """
        Попадает ли момент в пиковые часы.

        Границы окон включительно, время суток берётся в UTC.
        """
        if moment.tzinfo is not None:
            moment = moment.astimezone(timezone.utc)
        time_of_day = moment.time().replace(tzinfo=None)
        return any(start <= time_of_day <= end for start, end in self.tariff.peak_windows)

    def compute_fare(self, distance_km: float, duration_minutes: int, request_time: datetime) -> Decimal:
        """
        Рассчитывает стоимость поездки.

        Args:
            distance_km: Расстояние в километрах
            duration_minutes: Время поездки в минутах
            request_time: Время заказа (для пикового коэффициента)

        Returns:
            Стоимость, округлённая до 2 знаков
        """
        if distance_km < 0 or duration_minutes < 0:
            raise ValidationError(
                "distance and duration must be non-negative",
                distance_km=distance_km,
                duration_minutes=duration_minutes,
            )

        tariff = self.tariff
        total = (
            tariff.base_fare
            + _money(distance_km) * tariff.per_km
            + Decimal(duration_minutes) * tariff.per_minute
        )

        if self.is_peak_hour(request_time):
            total *= tariff.peak_multiplier

        total = max(total, tariff.minimum_fare)

        return total.quantize(CENT, rounding=ROUND_HALF_EVEN)

    def estimate(self, distance_km: float, request_time: datetime) -> FareEstimate:
        """Предварительная оценка по расстоянию и средней скорости."""
        duration = estimate_duration_minutes(distance_km, self.average_speed_kmh)
        return FareEstimate(
            distance_km=round(distance_km, 3),
            duration_minutes=duration,
            fare=self.compute_fare(distance_km, duration, request_time),
            currency=self.currency,
        )

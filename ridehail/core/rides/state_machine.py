# ridehail/core/rides/state_machine.py
"""
Машина состояний поездки.

Каждый переход является чистой функцией Ride -> Ride. При нарушении предусловия
выбрасывается InvalidTransition, исходная поездка не изменяется.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol

from ridehail.common.constants import RideStatus
from ridehail.core.rides.errors import ActiveRideExists, InvalidTransition, RideAlreadyTaken, ValidationError
from ridehail.core.rides.models import Ride


class FareCalculator(Protocol):
    def compute_fare(self, distance_km: float, duration_minutes: int, request_time: datetime) -> Decimal:
        ...


class RideStateMachine:
    ALLOWED_TRANSITIONS = {
        RideStatus.REQUESTED: [RideStatus.ACCEPTED, RideStatus.CANCELLED],
        RideStatus.ACCEPTED: [RideStatus.ARRIVED, RideStatus.CANCELLED],
        RideStatus.ARRIVED: [RideStatus.IN_PROGRESS, RideStatus.CANCELLED],
        RideStatus.IN_PROGRESS: [RideStatus.COMPLETED, RideStatus.CANCELLED],
        RideStatus.COMPLETED: [],
        RideStatus.CANCELLED: [],
    }

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = RideStatus(current_status)
            new = RideStatus(new_status)
            return new in RideStateMachine.ALLOWED_TRANSITIONS.get(curr, [])
        except ValueError:
            return False


def _require(ride: Ride, target: RideStatus) -> None:
    if not RideStateMachine.can_transition(ride.status, target):
        raise InvalidTransition(
            f"ride {ride.id} cannot move from {ride.status.value} to {target.value}",
            ride_id=ride.id,
            status=ride.status.value,
        )


def accept(ride: Ride, driver_id: int, now: datetime, driver_active_ride: Optional[Ride] = None) -> Ride:
    """requested -> accepted. Водитель не должен иметь другой активной поездки."""
    if driver_active_ride is not None and driver_active_ride.id != ride.id and driver_active_ride.is_active:
        raise ActiveRideExists(
            f"driver {driver_id} already has active ride {driver_active_ride.id}",
            driver_id=driver_id,
            ride_id=driver_active_ride.id,
        )
    if ride.driver_id is not None:
        raise RideAlreadyTaken(
            f"ride {ride.id} already taken by another driver",
            ride_id=ride.id,
        )
    _require(ride, RideStatus.ACCEPTED)
    return ride.model_copy(update={
        "status": RideStatus.ACCEPTED,
        "driver_id": driver_id,
        "accepted_at": now,
    })


def driver_arrived(ride: Ride, now: datetime) -> Ride:
    """accepted -> arrived."""
    _require(ride, RideStatus.ARRIVED)
    return ride.model_copy(update={"status": RideStatus.ARRIVED, "arrived_at": now})


def start(ride: Ride, now: datetime) -> Ride:
    """arrived -> in_progress."""
    _require(ride, RideStatus.IN_PROGRESS)
    return ride.model_copy(update={"status": RideStatus.IN_PROGRESS, "started_at": now})


def complete(
    ride: Ride,
    distance_km: float,
    duration_minutes: int,
    now: datetime,
    pricing: FareCalculator,
) -> Ride:
    """in_progress -> completed, с расчётом итоговой стоимости."""
    _require(ride, RideStatus.COMPLETED)
    if distance_km < 0 or duration_minutes < 0:
        raise ValidationError(
            "distance_km and duration_minutes must be non-negative",
            distance_km=distance_km,
            duration_minutes=duration_minutes,
        )
    fare = pricing.compute_fare(distance_km, duration_minutes, ride.created_at)
    return ride.model_copy(update={
        "status": RideStatus.COMPLETED,
        "completed_at": now,
        "actual_fare": fare,
        "distance_km": distance_km,
        "duration_minutes": duration_minutes,
    })


def cancel(ride: Ride, reason: Optional[str], now: datetime, cancelled_by: Optional[int] = None) -> Ride:
    """Любой нетерминальный статус -> cancelled."""
    _require(ride, RideStatus.CANCELLED)
    return ride.model_copy(update={
        "status": RideStatus.CANCELLED,
        "cancelled_at": now,
        "cancellation_reason": reason,
        "cancelled_by": cancelled_by,
    })

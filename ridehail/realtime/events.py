# ridehail/realtime/events.py
"""
События реального времени.

Исходящие события (сервер -> клиент) и входящие кадры (клиент -> сервер)
описаны закрытыми объединениями с дискриминатором по полю type.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from ridehail.core.rides.models import Location, Ride, RideRequest


# =============================================================================
# ДАННЫЕ СОБЫТИЙ
# =============================================================================

class ConnectionStatusData(BaseModel):
    status: Literal["connected"] = "connected"
    connection_id: str
    role: str


class RideRequestData(BaseModel):
    request_id: str
    ride_id: str
    customer_id: int
    pickup: Location
    dropoff: Location
    estimated_fare: Decimal
    currency: str
    driver_distance_km: Optional[float] = None
    expires_at: datetime
    notes: Optional[str] = None


class RideRequestExpiredData(BaseModel):
    request_id: str
    ride_id: str


class RideAcceptedData(BaseModel):
    ride_id: str
    driver_id: int
    accepted_at: datetime


class DriverArrivedData(BaseModel):
    ride_id: str
    arrived_at: datetime


class TripStartedData(BaseModel):
    ride_id: str
    started_at: datetime


class TripCompletedData(BaseModel):
    ride_id: str
    completed_at: datetime
    distance_km: float
    duration_minutes: int
    fare: Decimal
    currency: str


class RideCancelledData(BaseModel):
    ride_id: str
    reason: Optional[str] = None
    cancelled_by: Optional[int] = None


class RideStatusChangedData(BaseModel):
    ride_id: str
    status: str


class LocationUpdateData(BaseModel):
    driver_id: int
    lat: float
    lng: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    updated_at: datetime


class DriverStatusChangedData(BaseModel):
    driver_id: int
    online: bool


class ErrorData(BaseModel):
    code: str
    message: str


class PongData(BaseModel):
    server_time: datetime


# =============================================================================
# ИСХОДЯЩИЕ СОБЫТИЯ
# =============================================================================

class BaseEvent(BaseModel):
    """Общие поля события."""

    timestamp: datetime
    ride_id: Optional[str] = None
    user_id: Optional[int] = None

    def to_wire(self) -> dict[str, Any]:
        """Представление для send_json."""
        return self.model_dump(mode="json")


class ConnectionStatusEvent(BaseEvent):
    type: Literal["connection_status"] = "connection_status"
    data: ConnectionStatusData


class RideRequestEvent(BaseEvent):
    type: Literal["ride_request"] = "ride_request"
    data: RideRequestData


class RideRequestExpiredEvent(BaseEvent):
    type: Literal["ride_request_expired"] = "ride_request_expired"
    data: RideRequestExpiredData


class RideAcceptedEvent(BaseEvent):
    type: Literal["ride_accepted"] = "ride_accepted"
    data: RideAcceptedData


class DriverArrivedEvent(BaseEvent):
    type: Literal["driver_arrived"] = "driver_arrived"
    data: DriverArrivedData


class TripStartedEvent(BaseEvent):
    type: Literal["trip_started"] = "trip_started"
    data: TripStartedData


class TripCompletedEvent(BaseEvent):
    type: Literal["trip_completed"] = "trip_completed"
    data: TripCompletedData


class RideCancelledEvent(BaseEvent):
    type: Literal["ride_cancelled"] = "ride_cancelled"
    data: RideCancelledData


class RideStatusChangedEvent(BaseEvent):
    type: Literal["ride_status_changed"] = "ride_status_changed"
    data: RideStatusChangedData


class LocationUpdateEvent(BaseEvent):
    type: Literal["location_update"] = "location_update"
    data: LocationUpdateData


class DriverStatusChangedEvent(BaseEvent):
    type: Literal["driver_status_changed"] = "driver_status_changed"
    data: DriverStatusChangedData


class ErrorEvent(BaseEvent):
    type: Literal["error"] = "error"
    data: ErrorData


class PongEvent(BaseEvent):
    type: Literal["pong"] = "pong"
    data: PongData


Event = Annotated[
    Union[
        ConnectionStatusEvent,
        RideRequestEvent,
        RideRequestExpiredEvent,
        RideAcceptedEvent,
        DriverArrivedEvent,
        TripStartedEvent,
        TripCompletedEvent,
        RideCancelledEvent,
        RideStatusChangedEvent,
        LocationUpdateEvent,
        DriverStatusChangedEvent,
        ErrorEvent,
        PongEvent,
    ],
    Field(discriminator="type"),
]

event_adapter: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(payload: dict[str, Any]) -> Event:
    return event_adapter.validate_python(payload)


# =============================================================================
# КОНСТРУКТОРЫ СОБЫТИЙ
# =============================================================================

def connection_status(connection_id: str, user_id: int, role: str, now: datetime) -> ConnectionStatusEvent:
    return ConnectionStatusEvent(
        timestamp=now,
        user_id=user_id,
        data=ConnectionStatusData(connection_id=connection_id, role=role),
    )


def ride_request(ride: Ride, request: RideRequest) -> RideRequestEvent:
    return RideRequestEvent(
        timestamp=request.sent_at,
        ride_id=ride.id,
        user_id=ride.customer_id,
        data=RideRequestData(
            request_id=request.id,
            ride_id=ride.id,
            customer_id=ride.customer_id,
            pickup=ride.pickup,
            dropoff=ride.dropoff,
            estimated_fare=ride.estimated_fare,
            currency=ride.currency,
            driver_distance_km=request.distance_km,
            expires_at=request.expires_at,
            notes=ride.notes,
        ),
    )


def ride_request_expired(request: RideRequest, now: datetime) -> RideRequestExpiredEvent:
    return RideRequestExpiredEvent(
        timestamp=now,
        ride_id=request.ride_id,
        user_id=request.driver_id,
        data=RideRequestExpiredData(request_id=request.id, ride_id=request.ride_id),
    )


def ride_accepted(ride: Ride) -> RideAcceptedEvent:
    assert ride.driver_id is not None and ride.accepted_at is not None
    return RideAcceptedEvent(
        timestamp=ride.accepted_at,
        ride_id=ride.id,
        user_id=ride.driver_id,
        data=RideAcceptedData(ride_id=ride.id, driver_id=ride.driver_id, accepted_at=ride.accepted_at),
    )


def driver_arrived(ride: Ride) -> DriverArrivedEvent:
    assert ride.arrived_at is not None
    return DriverArrivedEvent(
        timestamp=ride.arrived_at,
        ride_id=ride.id,
        user_id=ride.driver_id,
        data=DriverArrivedData(ride_id=ride.id, arrived_at=ride.arrived_at),
    )


def trip_started(ride: Ride) -> TripStartedEvent:
    assert ride.started_at is not None
    return TripStartedEvent(
        timestamp=ride.started_at,
        ride_id=ride.id,
        user_id=ride.driver_id,
        data=TripStartedData(ride_id=ride.id, started_at=ride.started_at),
    )


def trip_completed(ride: Ride) -> TripCompletedEvent:
    assert ride.completed_at is not None and ride.actual_fare is not None
    return TripCompletedEvent(
        timestamp=ride.completed_at,
        ride_id=ride.id,
        user_id=ride.driver_id,
        data=TripCompletedData(
            ride_id=ride.id,
            completed_at=ride.completed_at,
            distance_km=ride.distance_km or 0.0,
            duration_minutes=ride.duration_minutes or 0,
            fare=ride.actual_fare,
            currency=ride.currency,
        ),
    )


def ride_cancelled(ride: Ride, now: datetime) -> RideCancelledEvent:
    return RideCancelledEvent(
        timestamp=ride.cancelled_at or now,
        ride_id=ride.id,
        user_id=ride.cancelled_by,
        data=RideCancelledData(
            ride_id=ride.id,
            reason=ride.cancellation_reason,
            cancelled_by=ride.cancelled_by,
        ),
    )


def ride_status_changed(ride: Ride, now: datetime) -> RideStatusChangedEvent:
    return RideStatusChangedEvent(
        timestamp=now,
        ride_id=ride.id,
        data=RideStatusChangedData(ride_id=ride.id, status=ride.status.value),
    )


def location_update(
    driver_id: int,
    lat: float,
    lng: float,
    now: datetime,
    ride_id: str | None = None,
    speed: float | None = None,
    heading: float | None = None,
) -> LocationUpdateEvent:
    return LocationUpdateEvent(
        timestamp=now,
        ride_id=ride_id,
        user_id=driver_id,
        data=LocationUpdateData(
            driver_id=driver_id, lat=lat, lng=lng, speed=speed, heading=heading, updated_at=now
        ),
    )


def driver_status_changed(
    driver_id: int, online: bool, now: datetime, ride_id: str | None = None
) -> DriverStatusChangedEvent:
    return DriverStatusChangedEvent(
        timestamp=now,
        ride_id=ride_id,
        user_id=driver_id,
        data=DriverStatusChangedData(driver_id=driver_id, online=online),
    )


def error(code: str, message: str, now: datetime, user_id: int | None = None) -> ErrorEvent:
    return ErrorEvent(timestamp=now, user_id=user_id, data=ErrorData(code=code, message=message))


def pong(now: datetime) -> PongEvent:
    return PongEvent(timestamp=now, data=PongData(server_time=now))


# =============================================================================
# ВХОДЯЩИЕ КАДРЫ
# =============================================================================

class PingFrame(BaseModel):
    type: Literal["ping"]


class LocationUpdateFrame(BaseModel):
    type: Literal["location_update"]
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    speed: Optional[float] = Field(None, ge=0.0)
    heading: Optional[float] = Field(None, ge=0.0, lt=360.0)


class RideRequestResponseFrame(BaseModel):
    type: Literal["ride_request_response"]
    request_id: str
    accepted: bool


class DriverArrivedFrame(BaseModel):
    type: Literal["driver_arrived"]
    ride_id: str


class TripStartedFrame(BaseModel):
    type: Literal["trip_started"]
    ride_id: str


class TripCompletedFrame(BaseModel):
    type: Literal["trip_completed"]
    ride_id: str
    distance_km: float = Field(..., ge=0.0)
    duration_minutes: int = Field(..., ge=0)


class RideCancelledFrame(BaseModel):
    type: Literal["ride_cancelled"]
    ride_id: str
    reason: Optional[str] = None


ClientFrame = Annotated[
    Union[
        PingFrame,
        LocationUpdateFrame,
        RideRequestResponseFrame,
        DriverArrivedFrame,
        TripStartedFrame,
        TripCompletedFrame,
        RideCancelledFrame,
    ],
    Field(discriminator="type"),
]

client_frame_adapter: TypeAdapter[ClientFrame] = TypeAdapter(ClientFrame)

# Команды, доступные только водителю
DRIVER_ONLY_FRAMES = frozenset({
    "location_update",
    "ride_request_response",
    "driver_arrived",
    "trip_started",
    "trip_completed",
})


def parse_client_frame(payload: Any) -> ClientFrame:
    """Разбирает входящий кадр. Выбрасывает pydantic.ValidationError."""
    return client_frame_adapter.validate_python(payload)

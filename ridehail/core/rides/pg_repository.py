# ridehail/core/rides/pg_repository.py
"""
Хранилище поездок в PostgreSQL (asyncpg).
Схема: migrations/init.sql.
"""

from __future__ import annotations

from datetime import datetime
from functools import wraps
from typing import Any, Callable, Optional, TypeVar
from uuid import UUID

import asyncpg
from asyncpg import Record

from ridehail.common.constants import RideStatus
from ridehail.common.logger import log_error
from ridehail.core.rides.errors import ActiveRideExists, PersistenceFailure
from ridehail.core.rides.models import Location, Ride, RideRequest, TrackingPoint
from ridehail.core.rides.repository import already_taken
from ridehail.infra.database import CONNECTION_ERRORS, DatabaseManager

T = TypeVar("T")


# =============================================================================
# SQL
# =============================================================================

RIDE_COLUMNS = (
    "id, customer_id, driver_id, pickup_lat, pickup_lng, pickup_address, "
    "dropoff_lat, dropoff_lng, dropoff_address, status, estimated_fare, actual_fare, "
    "currency, distance_km, duration_minutes, notes, cancellation_reason, cancelled_by, "
    "created_at, accepted_at, arrived_at, started_at, completed_at, cancelled_at"
)

REQUEST_COLUMNS = (
    "id, ride_id, driver_id, distance_km, sent_at, expires_at, responded_at, accepted"
)

UPSERT_RIDE = f"""
    INSERT INTO rides ({RIDE_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12,
            $13, $14, $15, $16, $17, $18, $19, $20, $21, $22, $23, $24)
    ON CONFLICT (id) DO UPDATE SET
        driver_id = EXCLUDED.driver_id,
        status = EXCLUDED.status,
        actual_fare = EXCLUDED.actual_fare,
        distance_km = EXCLUDED.distance_km,
        duration_minutes = EXCLUDED.duration_minutes,
        cancellation_reason = EXCLUDED.cancellation_reason,
        cancelled_by = EXCLUDED.cancelled_by,
        accepted_at = EXCLUDED.accepted_at,
        arrived_at = EXCLUDED.arrived_at,
        started_at = EXCLUDED.started_at,
        completed_at = EXCLUDED.completed_at,
        cancelled_at = EXCLUDED.cancelled_at
"""

# Запись только поверх ожидаемого статуса. Для requested водитель пуст
# по ограничению rides_driver_check.
TRANSITION_RIDE = """
    UPDATE rides SET
        driver_id = $2,
        status = $3,
        actual_fare = $4,
        distance_km = $5,
        duration_minutes = $6,
        cancellation_reason = $7,
        cancelled_by = $8,
        accepted_at = $9,
        arrived_at = $10,
        started_at = $11,
        completed_at = $12,
        cancelled_at = $13
    WHERE id = $1 AND status = $14
    RETURNING id
"""

TRACKING_COLUMNS = "id, ride_id, lat, lng, speed, heading, recorded_at"

INSERT_TRACKING_POINT = f"""
    INSERT INTO ride_tracking ({TRACKING_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7)
"""

INSERT_REQUEST = f"""
    INSERT INTO ride_requests ({REQUEST_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
"""

ANSWER_REQUEST = f"""
    UPDATE ride_requests
    SET responded_at = $3, accepted = $2
    WHERE id = $1 AND responded_at IS NULL AND expires_at > $3
    RETURNING {REQUEST_COLUMNS}
"""

EXPIRE_REQUESTS = f"""
    UPDATE ride_requests
    SET responded_at = $1, accepted = FALSE
    WHERE responded_at IS NULL AND expires_at < $1
    RETURNING {REQUEST_COLUMNS}
"""

ACTIVE_STATUS_FILTER = "status NOT IN ('completed', 'cancelled')"


# =============================================================================
# ПРЕОБРАЗОВАНИЯ
# =============================================================================

def _as_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(value)
    except (ValueError, TypeError, AttributeError):
        return None


def ride_from_record(row: Record) -> Ride:
    """Собирает Ride из строки таблицы rides."""
    return Ride(
        id=str(row["id"]),
        customer_id=row["customer_id"],
        driver_id=row["driver_id"],
        pickup=Location(lat=row["pickup_lat"], lng=row["pickup_lng"], address=row["pickup_address"]),
        dropoff=Location(lat=row["dropoff_lat"], lng=row["dropoff_lng"], address=row["dropoff_address"]),
        status=row["status"],
        estimated_fare=row["estimated_fare"],
        actual_fare=row["actual_fare"],
        currency=row["currency"],
        distance_km=row["distance_km"],
        duration_minutes=row["duration_minutes"],
        notes=row["notes"],
        cancellation_reason=row["cancellation_reason"],
        cancelled_by=row["cancelled_by"],
        created_at=row["created_at"],
        accepted_at=row["accepted_at"],
        arrived_at=row["arrived_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        cancelled_at=row["cancelled_at"],
    )


def ride_to_params(ride: Ride) -> tuple[Any, ...]:
    """Параметры для UPSERT_RIDE в порядке RIDE_COLUMNS."""
    return (
        UUID(ride.id),
        ride.customer_id,
        ride.driver_id,
        ride.pickup.lat,
        ride.pickup.lng,
        ride.pickup.address,
        ride.dropoff.lat,
        ride.dropoff.lng,
        ride.dropoff.address,
        ride.status.value,
        ride.estimated_fare,
        ride.actual_fare,
        ride.currency,
        ride.distance_km,
        ride.duration_minutes,
        ride.notes,
        ride.cancellation_reason,
        ride.cancelled_by,
        ride.created_at,
        ride.accepted_at,
        ride.arrived_at,
        ride.started_at,
        ride.completed_at,
        ride.cancelled_at,
    )


def transition_params(ride: Ride, expected_status: RideStatus) -> tuple[Any, ...]:
    """Параметры для TRANSITION_RIDE."""
    return (
        UUID(ride.id),
        ride.driver_id,
        ride.status.value,
        ride.actual_fare,
        ride.distance_km,
        ride.duration_minutes,
        ride.cancellation_reason,
        ride.cancelled_by,
        ride.accepted_at,
        ride.arrived_at,
        ride.started_at,
        ride.completed_at,
        ride.cancelled_at,
        expected_status.value,
    )


def tracking_from_record(row: Record) -> TrackingPoint:
    return TrackingPoint(
        id=str(row["id"]),
        ride_id=str(row["ride_id"]),
        lat=row["lat"],
        lng=row["lng"],
        speed=row["speed"],
        heading=row["heading"],
        recorded_at=row["recorded_at"],
    )


def request_from_record(row: Record) -> RideRequest:
    """Собирает RideRequest из строки таблицы ride_requests."""
    return RideRequest(
        id=str(row["id"]),
        ride_id=str(row["ride_id"]),
        driver_id=row["driver_id"],
        distance_km=row["distance_km"],
        sent_at=row["sent_at"],
        expires_at=row["expires_at"],
        responded_at=row["responded_at"],
        accepted=row["accepted"],
    )


def request_to_params(request: RideRequest) -> tuple[Any, ...]:
    return (
        UUID(request.id),
        UUID(request.ride_id),
        request.driver_id,
        request.distance_km,
        request.sent_at,
        request.expires_at,
        request.responded_at,
        request.accepted,
    )


def storage_errors(func: Callable[..., T]) -> Callable[..., T]:
    """Переводит ошибки asyncpg в ошибки домена."""
    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except asyncpg.UniqueViolationError as e:
            raise ActiveRideExists(
                "user already has an active ride",
                constraint=getattr(e, "constraint_name", None),
            ) from e
        except (asyncpg.PostgresError, *CONNECTION_ERRORS) as e:
            await log_error(
                f"Ошибка хранилища в {func.__name__}: {e}",
                extra={"operation": func.__name__},
            )
            raise PersistenceFailure(f"storage failure in {func.__name__}: {e}") from e

    return wrapper  # type: ignore


# =============================================================================
# ХРАНИЛИЩЕ
# =============================================================================

class PostgresRideStore:
    """Реализация RideStore поверх DatabaseManager."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    @storage_errors
    async def get_ride(self, ride_id: str) -> Optional[Ride]:
        key = _as_uuid(ride_id)
        if key is None:
            return None
        row = await self._db.fetchrow(f"SELECT {RIDE_COLUMNS} FROM rides WHERE id = $1", key)
        return ride_from_record(row) if row else None

    @storage_errors
    async def save_ride(self, ride: Ride) -> Ride:
        await self._db.execute(UPSERT_RIDE, *ride_to_params(ride))
        return ride

    @storage_errors
    async def transition_ride(self, ride: Ride, expected_status: RideStatus) -> Optional[Ride]:
        row = await self._db.fetchrow(TRANSITION_RIDE, *transition_params(ride, expected_status))
        return ride if row else None

    @storage_errors
    async def get_active_ride_for_customer(self, customer_id: int) -> Optional[Ride]:
        row = await self._db.fetchrow(
            f"SELECT {RIDE_COLUMNS} FROM rides WHERE customer_id = $1 AND {ACTIVE_STATUS_FILTER} LIMIT 1",
            customer_id,
        )
        return ride_from_record(row) if row else None

    @storage_errors
    async def get_active_ride_for_driver(self, driver_id: int) -> Optional[Ride]:
        row = await self._db.fetchrow(
            f"SELECT {RIDE_COLUMNS} FROM rides WHERE driver_id = $1 AND {ACTIVE_STATUS_FILTER} LIMIT 1",
            driver_id,
        )
        return ride_from_record(row) if row else None

    @storage_errors
    async def list_ride_history(self, user_id: int, limit: int, offset: int) -> tuple[list[Ride], int]:
        where = "status = 'completed' AND (customer_id = $1 OR driver_id = $1)"
        total = await self._db.fetchval(f"SELECT COUNT(*) FROM rides WHERE {where}", user_id)
        rows = await self._db.fetch(
            f"SELECT {RIDE_COLUMNS} FROM rides WHERE {where} "
            f"ORDER BY completed_at DESC LIMIT $2 OFFSET $3",
            user_id, limit, offset,
        )
        return [ride_from_record(row) for row in rows], int(total or 0)

    @storage_errors
    async def list_active_rides(self) -> list[Ride]:
        rows = await self._db.fetch(
            f"SELECT {RIDE_COLUMNS} FROM rides WHERE {ACTIVE_STATUS_FILTER} ORDER BY created_at"
        )
        return [ride_from_record(row) for row in rows]

    @storage_errors
    async def save_ride_requests(self, requests: list[RideRequest]) -> None:
        if not requests:
            return
        await self._db.executemany(INSERT_REQUEST, [request_to_params(r) for r in requests])

    @storage_errors
    async def get_ride_request(self, request_id: str) -> Optional[RideRequest]:
        key = _as_uuid(request_id)
        if key is None:
            return None
        row = await self._db.fetchrow(
            f"SELECT {REQUEST_COLUMNS} FROM ride_requests WHERE id = $1", key
        )
        return request_from_record(row) if row else None

    @storage_errors
    async def answer_ride_request(
        self, request_id: str, accepted: bool, responded_at: datetime
    ) -> Optional[RideRequest]:
        key = _as_uuid(request_id)
        if key is None:
            return None
        row = await self._db.fetchrow(ANSWER_REQUEST, key, accepted, responded_at)
        return request_from_record(row) if row else None

    @storage_errors
    async def commit_acceptance(
        self, ride: Ride, request_id: str, responded_at: datetime
    ) -> Optional[RideRequest]:
        key = _as_uuid(request_id)
        if key is None:
            return None
        async with self._db.transaction() as conn:
            row = await conn.fetchrow(ANSWER_REQUEST, key, True, responded_at)
            if row is None:
                return None
            taken = await conn.fetchrow(
                TRANSITION_RIDE, *transition_params(ride, RideStatus.REQUESTED)
            )
            if taken is None:
                # Исключение откатывает транзакцию вместе с ответом на заявку
                raise already_taken(ride.id)
        return request_from_record(row)

    @storage_errors
    async def expire_ride_requests(self, now: datetime) -> list[RideRequest]:
        rows = await self._db.fetch(EXPIRE_REQUESTS, now)
        return [request_from_record(row) for row in rows]

    @storage_errors
    async def list_pending_requests(self, driver_id: int, now: datetime) -> list[RideRequest]:
        rows = await self._db.fetch(
            f"SELECT {REQUEST_COLUMNS} FROM ride_requests "
            f"WHERE driver_id = $1 AND responded_at IS NULL AND expires_at > $2 "
            f"ORDER BY sent_at",
            driver_id, now,
        )
        return [request_from_record(row) for row in rows]

    @storage_errors
    async def list_requests_for_ride(self, ride_id: str) -> list[RideRequest]:
        key = _as_uuid(ride_id)
        if key is None:
            return []
        rows = await self._db.fetch(
            f"SELECT {REQUEST_COLUMNS} FROM ride_requests WHERE ride_id = $1 ORDER BY sent_at",
            key,
        )
        return [request_from_record(row) for row in rows]

    @storage_errors
    async def add_tracking_point(self, point: TrackingPoint) -> TrackingPoint:
        await self._db.execute(
            INSERT_TRACKING_POINT,
            UUID(point.id),
            UUID(point.ride_id),
            point.lat,
            point.lng,
            point.speed,
            point.heading,
            point.recorded_at,
        )
        return point

    @storage_errors
    async def list_tracking_points(self, ride_id: str) -> list[TrackingPoint]:
        key = _as_uuid(ride_id)
        if key is None:
            return []
        rows = await self._db.fetch(
            f"SELECT {TRACKING_COLUMNS} FROM ride_tracking WHERE ride_id = $1 ORDER BY recorded_at",
            key,
        )
        return [tracking_from_record(row) for row in rows]

    @storage_errors
    async def get_latest_tracking_point(self, ride_id: str) -> Optional[TrackingPoint]:
        key = _as_uuid(ride_id)
        if key is None:
            return None
        row = await self._db.fetchrow(
            f"SELECT {TRACKING_COLUMNS} FROM ride_tracking WHERE ride_id = $1 "
            f"ORDER BY recorded_at DESC LIMIT 1",
            key,
        )
        return tracking_from_record(row) if row else None

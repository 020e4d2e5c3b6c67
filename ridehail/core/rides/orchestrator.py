# ridehail/core/rides/orchestrator.py
"""
Оркестратор жизненного цикла поездки.

Публичная поверхность ядра. Каждая операция:
1. захватывает блокировки (участник -> поездка);
2. читает состояние, применяет переход машины состояний, сохраняет;
3. освобождает блокировки;
4. рассылает уведомления.

Бизнес-ошибки возвращаются как OperationResult.fail, сбои хранилища
пробрасываются.
"""

from __future__ import annotations

from typing import Any, Awaitable, Iterable, Optional, TypeVar

from ridehail.common.constants import RideStatus, TypeMsg
from ridehail.common.geo import calculate_distance, path_distance
from ridehail.common.locks import KeyedLock, customer_key, driver_key, ride_key
from ridehail.common.logger import log_info, log_warning
from ridehail.core.clock import Clock
from ridehail.core.dispatch.engine import DispatchEngine
from ridehail.core.dispatch.locator import DriverLocator
from ridehail.core.pricing.service import PricingService
from ridehail.core.rides import state_machine as sm
from ridehail.core.rides.errors import (
    ActiveRideExists,
    InvalidTransition,
    NotFound,
    OperationResult,
    PersistenceFailure,
    RideError,
    ValidationError,
)
from ridehail.core.rides.models import (
    DriverPosition,
    Location,
    Ride,
    RidePage,
    RideRequest,
    RideTracking,
    TrackingPoint,
)
from ridehail.core.rides.repository import RideStore, already_taken
from ridehail.realtime import events
from ridehail.realtime.notifier import Notifier

T = TypeVar("T")

MAX_PAGE_SIZE = 100

# Статусы, в которых клиент видит перемещение водителя
TRACKED_STATUSES = (RideStatus.ACCEPTED, RideStatus.ARRIVED, RideStatus.IN_PROGRESS)


class RideOrchestrator:
    """Сервис поездок: создание, принятие, переходы статусов, запросы."""

    def __init__(
        self,
        store: RideStore,
        dispatch: DispatchEngine,
        notifier: Notifier,
        pricing: PricingService,
        locator: DriverLocator,
        clock: Clock,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self._store = store
        self._dispatch = dispatch
        self._notifier = notifier
        self._pricing = pricing
        self._locator = locator
        self._clock = clock
        self._locks = locks if locks is not None else KeyedLock()

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # =========================================================================

    async def _run(self, operation: str, action: Awaitable[T]) -> OperationResult[T]:
        try:
            return OperationResult.success(await action)
        except PersistenceFailure:
            raise
        except RideError as e:
            await log_warning(
                f"{operation}: {e.message}",
                extra={"error_code": e.code.value, **e.details},
            )
            return OperationResult.fail(e)

    async def _load(self, ride_id: str) -> Ride:
        ride = await self._store.get_ride(ride_id)
        if ride is None:
            raise NotFound(f"ride {ride_id} not found", ride_id=ride_id)
        return ride

    async def _commit(self, updated: Ride, expected_status: RideStatus) -> Ride:
        """Сохраняет переход, если поездку не изменил другой экземпляр сервиса."""
        if await self._store.transition_ride(updated, expected_status) is None:
            if expected_status == RideStatus.REQUESTED and updated.status == RideStatus.ACCEPTED:
                raise already_taken(updated.id)
            raise InvalidTransition(
                f"ride {updated.id} is no longer {expected_status.value}",
                ride_id=updated.id,
                expected_status=expected_status.value,
            )
        return updated

    @staticmethod
    def _check_actor(ride: Ride, actor_id: Optional[int]) -> None:
        if actor_id is not None and not ride.involves(actor_id):
            raise InvalidTransition(
                f"user {actor_id} is not a party to ride {ride.id}",
                ride_id=ride.id,
                user_id=actor_id,
            )

    @staticmethod
    def _recipients(ride: Ride, actor_id: Optional[int], default: Iterable[Optional[int]]) -> list[int]:
        if actor_id is not None:
            targets: Iterable[Optional[int]] = [ride.counterpart_of(actor_id)]
        else:
            targets = default
        return [user_id for user_id in targets if user_id is not None]

    async def _notify_all(
        self, user_ids: list[int], event: events.BaseEvent, title: str, message: str
    ) -> None:
        for user_id in user_ids:
            await self._notifier.notify(user_id, event, title, message)

    # =========================================================================
    # СОЗДАНИЕ И ПРИНЯТИЕ
    # =========================================================================

    async def create_ride(
        self,
        customer_id: int,
        pickup: Location,
        dropoff: Location,
        notes: Optional[str] = None,
    ) -> OperationResult[Ride]:
        """Создаёт поездку и рассылает заявки ближайшим водителям."""
        return await self._run("create_ride", self._create_ride(customer_id, pickup, dropoff, notes))

    async def _create_ride(
        self, customer_id: int, pickup: Location, dropoff: Location, notes: Optional[str]
    ) -> Ride:
        if customer_id <= 0:
            raise ValidationError("customer_id must be positive", customer_id=customer_id)

        async with self._locks.hold(customer_key(customer_id)):
            existing = await self._store.get_active_ride_for_customer(customer_id)
            if existing is not None:
                raise ActiveRideExists(
                    f"customer {customer_id} already has active ride {existing.id}",
                    customer_id=customer_id,
                    ride_id=existing.id,
                )

            now = self._clock.now()
            distance = calculate_distance(pickup.lat, pickup.lng, dropoff.lat, dropoff.lng)
            estimate = self._pricing.estimate(distance, now)
            ride = Ride(
                customer_id=customer_id,
                pickup=pickup,
                dropoff=dropoff,
                estimated_fare=estimate.fare,
                currency=estimate.currency,
                created_at=now,
                notes=notes,
            )
            await self._store.save_ride(ride)
            requests = await self._dispatch.prepare_offers(ride)

        await log_info(
            f"Создана поездка {ride.id} клиента {customer_id}, оценка {ride.estimated_fare} {ride.currency}",
            type_msg=TypeMsg.INFO,
        )
        await self._dispatch.send_offers(ride, requests)
        return ride

    async def accept_ride(self, ride_id: str, driver_id: int) -> OperationResult[Ride]:
        """Водитель принимает поездку напрямую (без заявки)."""
        return await self._run("accept_ride", self._accept_ride(ride_id, driver_id))

    async def _accept_ride(self, ride_id: str, driver_id: int) -> Ride:
        async with self._locks.hold_many(driver_key(driver_id), ride_key(ride_id)):
            ride = await self._load(ride_id)
            active = await self._store.get_active_ride_for_driver(driver_id)
            accepted = await self._commit(
                sm.accept(ride, driver_id, self._clock.now(), active), ride.status
            )

        await self._after_acceptance(accepted)
        return accepted

    async def respond_to_request(
        self, request_id: str, driver_id: int, accepted: bool
    ) -> OperationResult[RideRequest]:
        """Ответ водителя на заявку. Принятие заявки принимает и поездку."""
        if not accepted:
            return await self._run(
                "respond_to_request",
                self._dispatch.respond(request_id, False, driver_id),
            )
        return await self._run("respond_to_request", self._accept_request(request_id, driver_id))

    async def _accept_request(self, request_id: str, driver_id: int) -> RideRequest:
        request = await self._dispatch.get_request(request_id, driver_id)

        async with self._locks.hold_many(driver_key(driver_id), ride_key(request.ride_id)):
            now = self._clock.now()
            ride = await self._load(request.ride_id)
            active = await self._store.get_active_ride_for_driver(driver_id)
            # Поездка проверяется до записи ответа: проигравший водитель
            # получает RideAlreadyTaken, а его заявка остаётся нетронутой
            accepted_ride = sm.accept(ride, driver_id, now, active)

            current = await self._dispatch.get_request(request_id, driver_id)
            self._dispatch.ensure_answerable(current, now)

            answered = await self._store.commit_acceptance(accepted_ride, request_id, now)
            if answered is None:
                raise await self._dispatch.lost_race_error(request_id)

        await log_info(
            f"Заявка {request_id}: водитель {driver_id} принял поездку {accepted_ride.id}",
            type_msg=TypeMsg.INFO,
        )
        await self._after_acceptance(accepted_ride)
        return answered

    async def _after_acceptance(self, ride: Ride) -> None:
        await self._notifier.notify(
            ride.customer_id,
            events.ride_accepted(ride),
            "Ride Accepted",
            "Your ride has been accepted by a driver",
        )
        await self._dispatch.withdraw_offers(ride, exclude_driver_id=ride.driver_id)

    # =========================================================================
    # ПЕРЕХОДЫ
    # =========================================================================

    async def driver_arrived(self, ride_id: str, actor_id: Optional[int] = None) -> OperationResult[Ride]:
        return await self._run("driver_arrived", self._driver_arrived(ride_id, actor_id))

    async def _driver_arrived(self, ride_id: str, actor_id: Optional[int]) -> Ride:
        async with self._locks.hold(ride_key(ride_id)):
            ride = await self._load(ride_id)
            self._check_actor(ride, actor_id)
            updated = await self._commit(sm.driver_arrived(ride, self._clock.now()), ride.status)

        await self._notify_all(
            self._recipients(updated, actor_id, [updated.customer_id]),
            events.driver_arrived(updated),
            "Driver Arrived",
            "Your driver has arrived at the pickup location",
        )
        return updated

    async def start_ride(self, ride_id: str, actor_id: Optional[int] = None) -> OperationResult[Ride]:
        return await self._run("start_ride", self._start_ride(ride_id, actor_id))

    async def _start_ride(self, ride_id: str, actor_id: Optional[int]) -> Ride:
        async with self._locks.hold(ride_key(ride_id)):
            ride = await self._load(ride_id)
            self._check_actor(ride, actor_id)
            updated = await self._commit(sm.start(ride, self._clock.now()), ride.status)

        await self._notify_all(
            self._recipients(updated, actor_id, [updated.customer_id]),
            events.trip_started(updated),
            "Trip Started",
            "Your trip has started",
        )
        return updated

    async def complete_ride(
        self,
        ride_id: str,
        distance_km: float,
        duration_minutes: int,
        actor_id: Optional[int] = None,
    ) -> OperationResult[Ride]:
        return await self._run(
            "complete_ride",
            self._complete_ride(ride_id, distance_km, duration_minutes, actor_id),
        )

    async def _complete_ride(
        self, ride_id: str, distance_km: float, duration_minutes: int, actor_id: Optional[int]
    ) -> Ride:
        async with self._locks.hold(ride_key(ride_id)):
            ride = await self._load(ride_id)
            self._check_actor(ride, actor_id)
            updated = await self._commit(
                sm.complete(ride, distance_km, duration_minutes, self._clock.now(), self._pricing),
                ride.status,
            )

        await log_info(
            f"Поездка {ride_id} завершена, стоимость {updated.actual_fare} {updated.currency}",
            type_msg=TypeMsg.INFO,
        )
        await self._notify_all(
            self._recipients(updated, actor_id, [updated.customer_id]),
            events.trip_completed(updated),
            "Trip Completed",
            f"Your trip has been completed. Fare: {updated.actual_fare} {updated.currency}",
        )
        return updated

    async def cancel_ride(
        self,
        ride_id: str,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> OperationResult[Ride]:
        return await self._run("cancel_ride", self._cancel_ride(ride_id, reason, actor_id))

    async def _cancel_ride(self, ride_id: str, reason: Optional[str], actor_id: Optional[int]) -> Ride:
        async with self._locks.hold(ride_key(ride_id)):
            ride = await self._load(ride_id)
            self._check_actor(ride, actor_id)
            was_requested = ride.status == RideStatus.REQUESTED
            updated = await self._commit(
                sm.cancel(ride, reason, self._clock.now(), cancelled_by=actor_id), ride.status
            )

        await log_info(
            f"Поездка {ride_id} отменена ({'система' if actor_id is None else actor_id}): {reason}",
            type_msg=TypeMsg.INFO,
        )
        await self._notify_all(
            self._recipients(updated, actor_id, [updated.customer_id, updated.driver_id]),
            events.ride_cancelled(updated, self._clock.now()),
            "Ride Cancelled",
            f"The ride has been cancelled. Reason: {reason or 'No reason provided'}",
        )
        if was_requested:
            await self._dispatch.withdraw_offers(updated)
        return updated

    # =========================================================================
    # ЗАЯВКИ
    # =========================================================================

    async def expire_old_requests(self, now: Any = None) -> OperationResult[int]:
        """Закрывает просроченные заявки. Возвращает их количество."""
        return await self._run("expire_old_requests", self._expire(now))

    async def _expire(self, now: Any) -> int:
        expired = await self._dispatch.expire_sweep(now)
        return len(expired)

    async def get_pending_requests(self, driver_id: int) -> OperationResult[list[RideRequest]]:
        return await self._run("get_pending_requests", self._dispatch.pending_requests(driver_id))

    async def get_ride_requests(self, ride_id: str) -> OperationResult[list[RideRequest]]:
        return await self._run("get_ride_requests", self._ride_requests(ride_id))

    async def _ride_requests(self, ride_id: str) -> list[RideRequest]:
        await self._load(ride_id)
        return await self._dispatch.requests_for_ride(ride_id)

    # =========================================================================
    # ЗАПРОСЫ ПОЕЗДОК
    # =========================================================================

    async def get_ride(self, ride_id: str) -> OperationResult[Ride]:
        return await self._run("get_ride", self._load(ride_id))

    async def get_active_ride(self, user_id: int) -> OperationResult[Optional[Ride]]:
        """Активная поездка пользователя как клиента или как водителя."""
        return await self._run("get_active_ride", self._active_ride(user_id))

    async def _active_ride(self, user_id: int) -> Optional[Ride]:
        ride = await self._store.get_active_ride_for_customer(user_id)
        if ride is None:
            ride = await self._store.get_active_ride_for_driver(user_id)
        return ride

    async def get_ride_history(
        self, user_id: int, page_size: int = 20, page_number: int = 1
    ) -> OperationResult[RidePage]:
        """Завершённые поездки пользователя, новые первыми."""
        return await self._run("get_ride_history", self._history(user_id, page_size, page_number))

    async def _history(self, user_id: int, page_size: int, page_number: int) -> RidePage:
        if page_number < 1 or not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"page_number must be >= 1 and page_size within 1..{MAX_PAGE_SIZE}",
                page_size=page_size,
                page_number=page_number,
            )
        items, total = await self._store.list_ride_history(
            user_id, limit=page_size, offset=(page_number - 1) * page_size
        )
        return RidePage.create(items, total, page_number, page_size)

    # =========================================================================
    # ВОДИТЕЛИ
    # =========================================================================

    async def update_driver_location(
        self,
        driver_id: int,
        lat: float,
        lng: float,
        speed: Optional[float] = None,
        heading: Optional[float] = None,
    ) -> OperationResult[DriverPosition]:
        """
        Сохраняет позицию водителя.

        Во время активной поездки позиция записывается в маршрут и
        пересылается клиенту.
        """
        return await self._run(
            "update_driver_location",
            self._update_location(driver_id, lat, lng, speed, heading),
        )

    async def _update_location(
        self,
        driver_id: int,
        lat: float,
        lng: float,
        speed: Optional[float],
        heading: Optional[float],
    ) -> DriverPosition:
        if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
            raise ValidationError(f"invalid coordinates ({lat}, {lng})", lat=lat, lng=lng)
        if speed is not None and speed < 0:
            raise ValidationError(f"invalid speed {speed}", speed=speed)
        if heading is not None and not 0.0 <= heading < 360.0:
            raise ValidationError(f"invalid heading {heading}", heading=heading)

        now = self._clock.now()
        position = await self._locator.update_location(driver_id, lat, lng, now)

        ride = await self._store.get_active_ride_for_driver(driver_id)
        if ride is not None and ride.status in TRACKED_STATUSES:
            await self._store.add_tracking_point(TrackingPoint(
                ride_id=ride.id,
                lat=lat,
                lng=lng,
                speed=speed,
                heading=heading,
                recorded_at=now,
            ))
            await self._notifier.send_to_user(
                ride.customer_id,
                events.location_update(
                    driver_id, lat, lng, now, ride_id=ride.id, speed=speed, heading=heading
                ),
            )
        return position

    async def set_driver_online(self, driver_id: int, online: bool) -> OperationResult[bool]:
        """Меняет статус водителя и сообщает о нём его сессиям и клиенту активной поездки."""
        return await self._run("set_driver_online", self._set_online(driver_id, online))

    async def _set_online(self, driver_id: int, online: bool) -> bool:
        now = self._clock.now()
        await self._locator.set_online(driver_id, online, now)
        await log_info(
            f"Водитель {driver_id} {'онлайн' if online else 'офлайн'}",
            type_msg=TypeMsg.INFO,
        )

        recipients = [driver_id]
        ride = await self._store.get_active_ride_for_driver(driver_id)
        if ride is not None:
            recipients.append(ride.customer_id)
        await self._notifier.send_to_users(
            recipients,
            events.driver_status_changed(driver_id, online, now, ride_id=ride.id if ride else None),
        )
        return online

    # =========================================================================
    # МАРШРУТ
    # =========================================================================

    async def get_ride_tracking(self, ride_id: str) -> OperationResult[RideTracking]:
        """Маршрут поездки: точки по времени, последняя точка и пройденное расстояние."""
        return await self._run("get_ride_tracking", self._tracking(ride_id))

    async def _tracking(self, ride_id: str) -> RideTracking:
        await self._load(ride_id)
        points = await self._store.list_tracking_points(ride_id)
        return RideTracking(
            ride_id=ride_id,
            points=points,
            latest=points[-1] if points else None,
            distance_km=path_distance([(p.lat, p.lng) for p in points]),
        )

    async def get_latest_tracking_point(self, ride_id: str) -> OperationResult[Optional[TrackingPoint]]:
        return await self._run("get_latest_tracking_point", self._latest_point(ride_id))

    async def _latest_point(self, ride_id: str) -> Optional[TrackingPoint]:
        await self._load(ride_id)
        return await self._store.get_latest_tracking_point(ride_id)

    async def calculate_tracked_distance(self, ride_id: str) -> OperationResult[float]:
        """Пройденное по маршруту расстояние в км (0 для менее чем двух точек)."""
        return await self._run("calculate_tracked_distance", self._tracked_distance(ride_id))

    async def _tracked_distance(self, ride_id: str) -> float:
        return (await self._tracking(ride_id)).distance_km

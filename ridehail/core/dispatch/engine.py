# ridehail/core/dispatch/engine.py
"""
Рассылка заявок водителям.

Заявка создаётся для каждого онлайн-водителя рядом с точкой подачи и
рассылается всем одновременно: побеждает первый принявший. Победителя
определяет не движок, а машина состояний под блокировкой поездки.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Optional

from ridehail.common.constants import RideStatus, TypeMsg
from ridehail.common.logger import log_info
from ridehail.core.clock import Clock
from ridehail.core.dispatch.locator import DriverCandidate, DriverLocator
from ridehail.core.rides.errors import AlreadyAnswered, NotFound, RequestExpired, ValidationError
from ridehail.core.rides.models import Ride, RideRequest
from ridehail.core.rides.repository import RideStore
from ridehail.realtime import events
from ridehail.realtime.notifier import Notifier
from ridehail.realtime.registry import ConnectionRegistry


class DispatchEngine:
    """
    Движок диспетчеризации.

    Использует DriverLocator для поиска кандидатов, RideStore для заявок,
    ConnectionRegistry для проверки подключения и Notifier для доставки.
    """

    def __init__(
        self,
        store: RideStore,
        locator: DriverLocator,
        registry: ConnectionRegistry,
        notifier: Notifier,
        clock: Clock,
        search_radius_km: float = 5.0,
        expiry_seconds: float = 120,
    ) -> None:
        self._store = store
        self._locator = locator
        self._registry = registry
        self._notifier = notifier
        self._clock = clock
        self.search_radius_km = search_radius_km
        self.expiry_window = timedelta(seconds=expiry_seconds)

    # =========================================================================
    # РАССЫЛКА
    # =========================================================================

    async def find_candidates(self, ride: Ride, now: datetime) -> list[DriverCandidate]:
        """Онлайн-водители рядом, с живым подключением и без активной поездки."""
        nearby = await self._locator.find_online_drivers_near(
            ride.pickup.lat, ride.pickup.lng, self.search_radius_km, now
        )
        candidates = []
        for candidate in nearby:
            if candidate.driver_id == ride.customer_id:
                continue
            if not await self._registry.is_connected(candidate.driver_id):
                continue
            if await self._store.get_active_ride_for_driver(candidate.driver_id) is not None:
                continue
            candidates.append(candidate)
        return candidates

    async def prepare_offers(self, ride: Ride) -> list[RideRequest]:
        """Создаёт и сохраняет заявки одним пакетом, ничего не отправляя."""
        now = self._clock.now()
        candidates = await self.find_candidates(ride, now)
        requests = [
            RideRequest(
                ride_id=ride.id,
                driver_id=c.driver_id,
                distance_km=c.distance_km,
                sent_at=now,
                expires_at=now + self.expiry_window,
            )
            for c in candidates
        ]
        if requests:
            await self._store.save_ride_requests(requests)

        await log_info(
            f"Поездка {ride.id}: подготовлено заявок {len(requests)}",
            type_msg=TypeMsg.INFO,
            extra={"ride_id": ride.id, "drivers": [r.driver_id for r in requests]},
        )
        return requests

    async def send_offers(self, ride: Ride, requests: list[RideRequest]) -> int:
        """Отправляет заявки всем водителям одновременно. Возвращает число доставок."""
        if not requests:
            return 0
        results = await asyncio.gather(*(self._offer(ride, r) for r in requests))
        return sum(results)

    async def _offer(self, ride: Ride, request: RideRequest) -> int:
        delivered = await self._notifier.send_to_user(request.driver_id, events.ride_request(ride, request))
        self._notifier.push(
            request.driver_id,
            "New Ride Request",
            f"New ride request from {ride.pickup.address or 'pickup'} to {ride.dropoff.address or 'destination'}",
            {"ride_id": ride.id, "request_id": request.id},
        )
        return delivered

    async def broadcast(self, ride: Ride) -> list[RideRequest]:
        """Создаёт заявки и рассылает их."""
        requests = await self.prepare_offers(ride)
        await self.send_offers(ride, requests)
        return requests

    # =========================================================================
    # ОТВЕТЫ
    # =========================================================================

    def ensure_answerable(self, request: RideRequest, now: datetime) -> None:
        """Выбрасывает AlreadyAnswered или RequestExpired, если ответить уже нельзя."""
        if request.responded_at is not None:
            raise self._closed_error(request)
        if request.is_expired(now):
            raise RequestExpired(
                f"request {request.id} expired at {request.expires_at.isoformat()}",
                request_id=request.id,
            )

    def _closed_error(self, request: RideRequest) -> AlreadyAnswered | RequestExpired:
        # Ответ после expires_at мог записать только сборщик просроченных заявок
        if request.responded_at is not None and request.responded_at < request.expires_at:
            return AlreadyAnswered(
                f"request {request.id} already answered at {request.responded_at.isoformat()}",
                request_id=request.id,
            )
        return RequestExpired(
            f"request {request.id} expired at {request.expires_at.isoformat()}",
            request_id=request.id,
        )

    async def get_request(self, request_id: str, driver_id: Optional[int] = None) -> RideRequest:
        request = await self._store.get_ride_request(request_id)
        if request is None:
            raise NotFound(f"ride request {request_id} not found", request_id=request_id)
        if driver_id is not None and request.driver_id != driver_id:
            raise ValidationError(
                f"request {request_id} was not sent to driver {driver_id}",
                request_id=request_id,
                driver_id=driver_id,
            )
        return request

    async def lost_race_error(self, request_id: str) -> AlreadyAnswered | RequestExpired:
        """Классифицирует неудачный compare-and-set по текущему состоянию заявки."""
        current = await self._store.get_ride_request(request_id)
        if current is None:
            return RequestExpired(f"request {request_id} is no longer answerable", request_id=request_id)
        return self._closed_error(current)

    async def respond(self, request_id: str, accepted: bool, driver_id: Optional[int] = None) -> RideRequest:
        """
        Записывает ответ водителя.

        Raises:
            NotFound, ValidationError, AlreadyAnswered, RequestExpired
        """
        now = self._clock.now()
        request = await self.get_request(request_id, driver_id)
        self.ensure_answerable(request, now)

        updated = await self._store.answer_ride_request(request_id, accepted, now)
        if updated is None:
            raise await self.lost_race_error(request_id)

        await log_info(
            f"Заявка {request_id}: водитель {request.driver_id} {'принял' if accepted else 'отклонил'}",
            type_msg=TypeMsg.INFO,
        )
        return updated

    # =========================================================================
    # ИСТЕЧЕНИЕ И ОТЗЫВ
    # =========================================================================

    async def expire_sweep(self, now: Optional[datetime] = None) -> list[RideRequest]:
        """Закрывает просроченные заявки и уведомляет водителей. Идемпотентно."""
        now = now or self._clock.now()
        expired = await self._store.expire_ride_requests(now)
        if expired:
            await asyncio.gather(*(
                self._notifier.send_to_user(r.driver_id, events.ride_request_expired(r, now))
                for r in expired
            ))
            await log_info(f"Истекло заявок: {len(expired)}", type_msg=TypeMsg.INFO)
        return expired

    async def withdraw_offers(self, ride: Ride, exclude_driver_id: Optional[int] = None) -> int:
        """
        Сообщает водителям с открытыми заявками, что поездка больше недоступна.

        Для отменённой поездки отправляется ride_cancelled, иначе
        ride_status_changed. Сами заявки не изменяются.
        """
        now = self._clock.now()
        requests = await self._store.list_requests_for_ride(ride.id)
        drivers = {
            r.driver_id for r in requests
            if r.is_open(now) and r.driver_id != exclude_driver_id
        }
        if not drivers:
            return 0
        if ride.status == RideStatus.CANCELLED:
            event: events.BaseEvent = events.ride_cancelled(ride, now)
        else:
            event = events.ride_status_changed(ride, now)
        return await self._notifier.send_to_users(drivers, event)

    # =========================================================================
    # ЗАПРОСЫ
    # =========================================================================

    async def pending_requests(self, driver_id: int, now: Optional[datetime] = None) -> list[RideRequest]:
        return await self._store.list_pending_requests(driver_id, now or self._clock.now())

    async def requests_for_ride(self, ride_id: str) -> list[RideRequest]:
        return await self._store.list_requests_for_ride(ride_id)

# tests/core/test_ride_store.py
"""
Тесты хранилища в памяти.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ridehail.common.constants import RideStatus
from ridehail.core.rides import state_machine as sm
from ridehail.core.rides.errors import RideAlreadyTaken
from ridehail.core.rides.models import Location, Ride, RideRequest, TrackingPoint
from ridehail.core.rides.repository import InMemoryRideStore
from ridehail.core.pricing.service import PricingService

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_ride(customer_id: int = 1, created_at: datetime = NOW) -> Ride:
    return Ride(
        customer_id=customer_id,
        pickup=Location(lat=31.95, lng=35.91),
        dropoff=Location(lat=31.97, lng=35.93),
        estimated_fare=Decimal("2.00"),
        created_at=created_at,
    )


def make_request(ride_id: str, driver_id: int, sent_at: datetime = NOW) -> RideRequest:
    return RideRequest(
        ride_id=ride_id,
        driver_id=driver_id,
        sent_at=sent_at,
        expires_at=sent_at + timedelta(seconds=120),
    )


def complete(ride: Ride, driver_id: int, at: datetime) -> Ride:
    started = sm.start(sm.driver_arrived(sm.accept(ride, driver_id, at), at), at)
    return sm.complete(started, 2.0, 5, at, PricingService())


class TestRides:
    """Тесты операций с поездками."""

    @pytest.mark.asyncio
    async def test_save_and_get(self) -> None:
        """Сохранённая поездка читается по ID."""
        store = InMemoryRideStore()
        ride = await store.save_ride(make_ride())

        assert await store.get_ride(ride.id) == ride
        assert await store.get_ride("missing") is None

    @pytest.mark.asyncio
    async def test_transition_requires_expected_status(self) -> None:
        """Переход записывается только поверх ожидаемого статуса."""
        store = InMemoryRideStore()
        ride = await store.save_ride(make_ride())
        first = sm.accept(ride, 10, NOW)
        second = sm.accept(ride, 11, NOW)

        assert await store.transition_ride(first, RideStatus.REQUESTED) == first
        assert await store.transition_ride(second, RideStatus.REQUESTED) is None
        assert (await store.get_ride(ride.id)).driver_id == 10
        assert await store.transition_ride(make_ride(), RideStatus.REQUESTED) is None

    @pytest.mark.asyncio
    async def test_active_ride_lookup(self) -> None:
        """Активная поездка ищется по клиенту и по водителю."""
        store = InMemoryRideStore()
        ride = await store.save_ride(sm.accept(make_ride(), 10, NOW))

        assert (await store.get_active_ride_for_customer(1)).id == ride.id
        assert (await store.get_active_ride_for_driver(10)).id == ride.id
        assert await store.get_active_ride_for_driver(11) is None

        await store.save_ride(sm.cancel(ride, None, NOW))

        assert await store.get_active_ride_for_customer(1) is None
        assert await store.list_active_rides() == []

    @pytest.mark.asyncio
    async def test_history_newest_first(self) -> None:
        """История содержит только завершённые поездки участника, новые первыми."""
        store = InMemoryRideStore()
        first = await store.save_ride(complete(make_ride(), 10, NOW))
        second = await store.save_ride(complete(make_ride(), 10, NOW + timedelta(hours=1)))
        await store.save_ride(make_ride(customer_id=1))
        await store.save_ride(complete(make_ride(customer_id=2), 11, NOW))

        items, total = await store.list_ride_history(1, limit=10, offset=0)

        assert total == 2
        assert [r.id for r in items] == [second.id, first.id]

        driver_items, driver_total = await store.list_ride_history(10, limit=1, offset=1)
        assert driver_total == 2
        assert [r.id for r in driver_items] == [first.id]


class TestRequests:
    """Тесты заявок и compare-and-set."""

    @pytest.mark.asyncio
    async def test_answer_once(self) -> None:
        """Ответ записывается только один раз."""
        store = InMemoryRideStore()
        request = make_request("ride-1", 10)
        await store.save_ride_requests([request])

        answered = await store.answer_ride_request(request.id, True, NOW + timedelta(seconds=5))
        again = await store.answer_ride_request(request.id, False, NOW + timedelta(seconds=6))

        assert answered is not None and answered.accepted is True
        assert again is None
        assert (await store.get_ride_request(request.id)).accepted is True

    @pytest.mark.asyncio
    async def test_answer_after_expiry(self) -> None:
        """Ответ в момент истечения не записывается."""
        store = InMemoryRideStore()
        request = make_request("ride-1", 10)
        await store.save_ride_requests([request])

        assert await store.answer_ride_request(request.id, True, request.expires_at) is None

    @pytest.mark.asyncio
    async def test_commit_acceptance_atomic(self) -> None:
        """Поездка сохраняется только вместе с успешным ответом на заявку."""
        store = InMemoryRideStore()
        ride = await store.save_ride(make_ride())
        request = make_request(ride.id, 10)
        await store.save_ride_requests([request])
        accepted = sm.accept(ride, 10, NOW)

        late = request.expires_at + timedelta(seconds=1)
        assert await store.commit_acceptance(accepted, request.id, late) is None
        assert (await store.get_ride(ride.id)).driver_id is None

        answered = await store.commit_acceptance(accepted, request.id, NOW + timedelta(seconds=1))
        assert answered is not None
        assert (await store.get_ride(ride.id)).driver_id == 10

    @pytest.mark.asyncio
    async def test_commit_acceptance_ride_taken(self) -> None:
        """Поездка уже принята: ошибка, заявка остаётся открытой."""
        store = InMemoryRideStore()
        ride = await store.save_ride(make_ride())
        request = make_request(ride.id, 11)
        await store.save_ride_requests([request])
        await store.transition_ride(sm.accept(ride, 10, NOW), RideStatus.REQUESTED)

        with pytest.raises(RideAlreadyTaken):
            await store.commit_acceptance(sm.accept(ride, 11, NOW), request.id, NOW)

        assert (await store.get_ride_request(request.id)).responded_at is None
        assert (await store.get_ride(ride.id)).driver_id == 10

    @pytest.mark.asyncio
    async def test_expire_is_idempotent(self) -> None:
        """Просроченные заявки закрываются один раз."""
        store = InMemoryRideStore()
        old = make_request("ride-1", 10)
        fresh = make_request("ride-2", 11, sent_at=NOW + timedelta(seconds=100))
        await store.save_ride_requests([old, fresh])
        now = NOW + timedelta(seconds=121)

        expired = await store.expire_ride_requests(now)

        assert [r.id for r in expired] == [old.id]
        assert expired[0].accepted is False
        assert expired[0].responded_at == now
        assert await store.expire_ride_requests(now) == []

    @pytest.mark.asyncio
    async def test_expire_boundary(self) -> None:
        """Заявка с expires_at == now сборщиком ещё не закрывается."""
        store = InMemoryRideStore()
        request = make_request("ride-1", 10)
        await store.save_ride_requests([request])

        assert await store.expire_ride_requests(request.expires_at) == []

    @pytest.mark.asyncio
    async def test_pending_and_by_ride(self) -> None:
        """Открытые заявки водителя и все заявки поездки по времени отправки."""
        store = InMemoryRideStore()
        later = make_request("ride-1", 10, sent_at=NOW + timedelta(seconds=10))
        earlier = make_request("ride-2", 10)
        other = make_request("ride-1", 11)
        await store.save_ride_requests([later, earlier, other])
        await store.answer_ride_request(other.id, False, NOW + timedelta(seconds=1))

        pending = await store.list_pending_requests(10, NOW + timedelta(seconds=20))
        by_ride = await store.list_requests_for_ride("ride-1")

        assert [r.id for r in pending] == [earlier.id, later.id]
        assert [r.id for r in by_ride] == [other.id, later.id]


class TestTracking:
    """Тесты точек маршрута."""

    @pytest.mark.asyncio
    async def test_points_ordered_by_time(self) -> None:
        store = InMemoryRideStore()
        late = TrackingPoint(ride_id="ride-1", lat=31.96, lng=35.92, recorded_at=NOW + timedelta(seconds=5))
        early = TrackingPoint(ride_id="ride-1", lat=31.95, lng=35.91, recorded_at=NOW)
        await store.add_tracking_point(late)
        await store.add_tracking_point(early)
        await store.add_tracking_point(TrackingPoint(ride_id="ride-2", lat=0.0, lng=0.0, recorded_at=NOW))

        assert await store.list_tracking_points("ride-1") == [early, late]
        assert await store.get_latest_tracking_point("ride-1") == late

    @pytest.mark.asyncio
    async def test_no_points(self) -> None:
        store = InMemoryRideStore()

        assert await store.list_tracking_points("ride-1") == []
        assert await store.get_latest_tracking_point("ride-1") is None

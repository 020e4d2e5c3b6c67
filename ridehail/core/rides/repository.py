# ridehail/core/rides/repository.py
"""
Хранилище поездок и заявок.

RideStore: интерфейс, который использует ядро. InMemoryRideStore:
реализация по умолчанию для одного процесса.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from ridehail.common.constants import RideStatus
from ridehail.core.rides.errors import RideAlreadyTaken
from ridehail.core.rides.models import Ride, RideRequest, TrackingPoint


class RideStore(Protocol):
    """Интерфейс хранилища. Сбои хранилища выбрасываются как PersistenceFailure."""

    async def get_ride(self, ride_id: str) -> Optional[Ride]:
        ...

    async def save_ride(self, ride: Ride) -> Ride:
        """Вставка или полная замена поездки."""
        ...

    async def transition_ride(self, ride: Ride, expected_status: RideStatus) -> Optional[Ride]:
        """
        Оптимистичная запись перехода.

        Сохраняет поездку, только если сохранённая версия всё ещё в статусе
        expected_status. Иначе ничего не пишет и возвращает None.
        """
        ...

    async def get_active_ride_for_customer(self, customer_id: int) -> Optional[Ride]:
        ...

    async def get_active_ride_for_driver(self, driver_id: int) -> Optional[Ride]:
        ...

    async def list_ride_history(self, user_id: int, limit: int, offset: int) -> tuple[list[Ride], int]:
        """Завершённые поездки пользователя (клиент или водитель), новые первыми, и их общее число."""
        ...

    async def list_active_rides(self) -> list[Ride]:
        ...

    async def save_ride_requests(self, requests: list[RideRequest]) -> None:
        ...

    async def get_ride_request(self, request_id: str) -> Optional[RideRequest]:
        ...

    async def answer_ride_request(
        self, request_id: str, accepted: bool, responded_at: datetime
    ) -> Optional[RideRequest]:
        """
        Compare-and-set ответа.

        Записывает ответ, только если responded_at ещё пуст и заявка не истекла
        к моменту responded_at. Возвращает обновлённую заявку или None.
        """
        ...

    async def commit_acceptance(
        self, ride: Ride, request_id: str, responded_at: datetime
    ) -> Optional[RideRequest]:
        """
        Атомарно принимает заявку (как answer_ride_request с accepted=True)
        и сохраняет поездку. Если CAS не прошёл, поездка не сохраняется и
        возвращается None.

        Raises:
            RideAlreadyTaken: сохранённая поездка уже не в статусе requested;
                заявка при этом не изменяется
        """
        ...

    async def expire_ride_requests(self, now: datetime) -> list[RideRequest]:
        """Закрывает все неотвеченные заявки с expires_at < now."""
        ...

    async def list_pending_requests(self, driver_id: int, now: datetime) -> list[RideRequest]:
        """Открытые заявки водителя, старые первыми."""
        ...

    async def list_requests_for_ride(self, ride_id: str) -> list[RideRequest]:
        ...

    async def add_tracking_point(self, point: TrackingPoint) -> TrackingPoint:
        ...

    async def list_tracking_points(self, ride_id: str) -> list[TrackingPoint]:
        """Точки маршрута поездки по времени."""
        ...

    async def get_latest_tracking_point(self, ride_id: str) -> Optional[TrackingPoint]:
        ...


def already_taken(ride_id: str) -> RideAlreadyTaken:
    return RideAlreadyTaken(f"ride {ride_id} already taken by another driver", ride_id=ride_id)


class InMemoryRideStore:
    """
    Хранилище в памяти процесса.

    Методы не содержат await между проверкой и записью, поэтому каждый
    вызов атомарен относительно других корутин того же цикла событий.
    """

    def __init__(self) -> None:
        self._rides: dict[str, Ride] = {}
        self._requests: dict[str, RideRequest] = {}
        self._tracking: dict[str, list[TrackingPoint]] = {}

    # =========================================================================
    # ПОЕЗДКИ
    # =========================================================================

    async def get_ride(self, ride_id: str) -> Optional[Ride]:
        return self._rides.get(ride_id)

    async def save_ride(self, ride: Ride) -> Ride:
        self._rides[ride.id] = ride
        return ride

    async def transition_ride(self, ride: Ride, expected_status: RideStatus) -> Optional[Ride]:
        current = self._rides.get(ride.id)
        if current is None or current.status != expected_status:
            return None
        self._rides[ride.id] = ride
        return ride

    async def get_active_ride_for_customer(self, customer_id: int) -> Optional[Ride]:
        for ride in self._rides.values():
            if ride.customer_id == customer_id and ride.is_active:
                return ride
        return None

    async def get_active_ride_for_driver(self, driver_id: int) -> Optional[Ride]:
        for ride in self._rides.values():
            if ride.driver_id == driver_id and ride.is_active:
                return ride
        return None

    async def list_ride_history(self, user_id: int, limit: int, offset: int) -> tuple[list[Ride], int]:
        completed = [
            ride for ride in self._rides.values()
            if ride.status == RideStatus.COMPLETED and ride.involves(user_id)
        ]
        completed.sort(key=lambda r: r.completed_at or r.created_at, reverse=True)
        return completed[offset:offset + limit], len(completed)

    async def list_active_rides(self) -> list[Ride]:
        return [ride for ride in self._rides.values() if ride.is_active]

    # =========================================================================
    # ЗАЯВКИ
    # =========================================================================

    async def save_ride_requests(self, requests: list[RideRequest]) -> None:
        for request in requests:
            self._requests[request.id] = request

    async def get_ride_request(self, request_id: str) -> Optional[RideRequest]:
        return self._requests.get(request_id)

    def _try_answer(self, request_id: str, accepted: bool, responded_at: datetime) -> Optional[RideRequest]:
        current = self._requests.get(request_id)
        if current is None or not current.is_open(responded_at):
            return None
        updated = current.model_copy(update={"responded_at": responded_at, "accepted": accepted})
        self._requests[request_id] = updated
        return updated

    async def answer_ride_request(
        self, request_id: str, accepted: bool, responded_at: datetime
    ) -> Optional[RideRequest]:
        return self._try_answer(request_id, accepted, responded_at)

    async def commit_acceptance(
        self, ride: Ride, request_id: str, responded_at: datetime
    ) -> Optional[RideRequest]:
        current = self._rides.get(ride.id)
        if current is None or current.status != RideStatus.REQUESTED:
            raise already_taken(ride.id)
        answered = self._try_answer(request_id, True, responded_at)
        if answered is None:
            return None
        self._rides[ride.id] = ride
        return answered

    async def expire_ride_requests(self, now: datetime) -> list[RideRequest]:
        expired: list[RideRequest] = []
        for request_id, request in list(self._requests.items()):
            if request.responded_at is None and request.expires_at < now:
                updated = request.model_copy(update={"responded_at": now, "accepted": False})
                self._requests[request_id] = updated
                expired.append(updated)
        return expired

    async def list_pending_requests(self, driver_id: int, now: datetime) -> list[RideRequest]:
        pending = [
            r for r in self._requests.values()
            if r.driver_id == driver_id and r.is_open(now)
        ]
        return sorted(pending, key=lambda r: r.sent_at)

    async def list_requests_for_ride(self, ride_id: str) -> list[RideRequest]:
        return sorted(
            (r for r in self._requests.values() if r.ride_id == ride_id),
            key=lambda r: r.sent_at,
        )

    # =========================================================================
    # МАРШРУТ
    # =========================================================================

    async def add_tracking_point(self, point: TrackingPoint) -> TrackingPoint:
        self._tracking.setdefault(point.ride_id, []).append(point)
        return point

    async def list_tracking_points(self, ride_id: str) -> list[TrackingPoint]:
        return sorted(self._tracking.get(ride_id, []), key=lambda p: p.recorded_at)

    async def get_latest_tracking_point(self, ride_id: str) -> Optional[TrackingPoint]:
        points = self._tracking.get(ride_id)
        if not points:
            return None
        return max(points, key=lambda p: p.recorded_at)

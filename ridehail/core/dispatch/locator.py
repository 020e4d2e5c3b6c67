# ridehail/core/dispatch/locator.py
"""
Поиск онлайн-водителей рядом с точкой подачи.

Учитываются только водители со статусом online, чья позиция обновлялась
не раньше чем stale_after секунд назад.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from ridehail.common.constants import TypeMsg
from ridehail.common.geo import calculate_distance
from ridehail.common.logger import log_info
from ridehail.core.rides.models import DriverPosition
from ridehail.infra.redis_client import RedisClient


@dataclass
class DriverCandidate:
    """Кандидат водителя для поездки."""
    driver_id: int
    distance_km: float
    last_seen: Optional[datetime] = None


class DriverLocator(Protocol):
    async def find_online_drivers_near(
        self, lat: float, lng: float, radius_km: float, now: datetime
    ) -> list[DriverCandidate]:
        """Онлайн-водители в радиусе, ближние первыми."""
        ...

    async def update_location(self, driver_id: int, lat: float, lng: float, now: datetime) -> DriverPosition:
        ...

    async def set_online(self, driver_id: int, online: bool, now: datetime) -> None:
        ...

    async def get_position(self, driver_id: int) -> Optional[DriverPosition]:
        ...

    async def purge_stale(self, before: datetime) -> int:
        """Удаляет позиции, обновлённые раньше before. Возвращает количество."""
        ...


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryDriverLocator:
    """Позиции водителей в памяти процесса, расстояние по Haversine."""

    def __init__(self, stale_after: float = 300) -> None:
        self.stale_after = timedelta(seconds=stale_after)
        self._positions: dict[int, DriverPosition] = {}
        self._online: set[int] = set()

    async def find_online_drivers_near(
        self, lat: float, lng: float, radius_km: float, now: datetime
    ) -> list[DriverCandidate]:
        cutoff = now - self.stale_after
        candidates = []
        for position in self._positions.values():
            if position.driver_id not in self._online or position.updated_at < cutoff:
                continue
            distance = calculate_distance(lat, lng, position.lat, position.lng)
            if distance <= radius_km:
                candidates.append(DriverCandidate(
                    driver_id=position.driver_id,
                    distance_km=round(distance, 3),
                    last_seen=position.updated_at,
                ))
        candidates.sort(key=lambda c: c.distance_km)
        return candidates

    async def update_location(self, driver_id: int, lat: float, lng: float, now: datetime) -> DriverPosition:
        position = DriverPosition(
            driver_id=driver_id,
            lat=lat,
            lng=lng,
            updated_at=now,
            online=driver_id in self._online,
        )
        self._positions[driver_id] = position
        return position

    async def set_online(self, driver_id: int, online: bool, now: datetime) -> None:
        if online:
            self._online.add(driver_id)
        else:
            self._online.discard(driver_id)
        position = self._positions.get(driver_id)
        if position is not None:
            self._positions[driver_id] = position.model_copy(update={"online": online})

    async def get_position(self, driver_id: int) -> Optional[DriverPosition]:
        return self._positions.get(driver_id)

    async def purge_stale(self, before: datetime) -> int:
        stale = [d for d, p in self._positions.items() if p.updated_at < before]
        for driver_id in stale:
            del self._positions[driver_id]
        return len(stale)


# =============================================================================
# REDIS GEO
# =============================================================================

LOCATIONS_KEY = "drivers:locations"
LAST_SEEN_KEY = "drivers:last_seen"
ONLINE_KEY = "drivers:online"


class RedisDriverLocator:
    """
    Позиции водителей в Redis.

    drivers:locations: geo-индекс, drivers:last_seen: время обновления
    (score = unix timestamp), drivers:online: множество онлайн-водителей.
    """

    def __init__(self, redis: RedisClient, stale_after: float = 300) -> None:
        self._redis = redis
        self.stale_after = stale_after

    async def find_online_drivers_near(
        self, lat: float, lng: float, radius_km: float, now: datetime
    ) -> list[DriverCandidate]:
        results = await self._redis.georadius(LOCATIONS_KEY, lng, lat, radius_km, unit="km")
        cutoff = now.timestamp() - self.stale_after

        candidates = []
        for member, distance in results:
            if not await self._redis.sismember(ONLINE_KEY, member):
                continue
            last_seen = await self._redis.zscore(LAST_SEEN_KEY, member)
            if last_seen is None or last_seen < cutoff:
                continue
            candidates.append(DriverCandidate(
                driver_id=int(member),
                distance_km=round(distance, 3),
                last_seen=datetime.fromtimestamp(last_seen, tz=timezone.utc),
            ))

        await log_info(
            f"Найдено {len(candidates)} водителей в радиусе {radius_km} км",
            type_msg=TypeMsg.DEBUG,
        )
        return candidates

    async def update_location(self, driver_id: int, lat: float, lng: float, now: datetime) -> DriverPosition:
        member = str(driver_id)
        await self._redis.geoadd(LOCATIONS_KEY, lng, lat, member)
        await self._redis.zadd(LAST_SEEN_KEY, member, now.timestamp())
        online = await self._redis.sismember(ONLINE_KEY, member)
        return DriverPosition(driver_id=driver_id, lat=lat, lng=lng, updated_at=now, online=online)

    async def set_online(self, driver_id: int, online: bool, now: datetime) -> None:
        if online:
            await self._redis.sadd(ONLINE_KEY, str(driver_id))
        else:
            await self._redis.srem(ONLINE_KEY, str(driver_id))

    async def get_position(self, driver_id: int) -> Optional[DriverPosition]:
        member = str(driver_id)
        last_seen = await self._redis.zscore(LAST_SEEN_KEY, member)
        if last_seen is None:
            return None
        coords = await self._redis.geopos(LOCATIONS_KEY, member)
        if coords is None:
            return None
        lng, lat = coords
        return DriverPosition(
            driver_id=driver_id,
            lat=float(lat),
            lng=float(lng),
            updated_at=datetime.fromtimestamp(last_seen, tz=timezone.utc),
            online=await self._redis.sismember(ONLINE_KEY, member),
        )

    async def purge_stale(self, before: datetime) -> int:
        stale = await self._redis.zrangebyscore(LAST_SEEN_KEY, "-inf", f"({before.timestamp()}")
        if not stale:
            return 0
        await self._redis.zrem(LOCATIONS_KEY, *stale)
        await self._redis.zrem(LAST_SEEN_KEY, *stale)
        return len(stale)

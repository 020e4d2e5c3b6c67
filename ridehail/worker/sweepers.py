# ridehail/worker/sweepers.py
"""
Фоновые сборщики: просроченные заявки, неактивные подключения,
устаревшие позиции водителей.
"""

from __future__ import annotations

from datetime import timedelta

from ridehail.common.constants import TypeMsg
from ridehail.common.logger import log_info
from ridehail.core.clock import Clock
from ridehail.core.dispatch.locator import DriverLocator
from ridehail.core.rides.orchestrator import RideOrchestrator
from ridehail.realtime.registry import ConnectionRegistry
from ridehail.worker.base import PeriodicWorker


class RequestExpiryWorker(PeriodicWorker):
    """Закрывает заявки, на которые водители не ответили вовремя."""

    name = "request_expiry"

    def __init__(self, orchestrator: RideOrchestrator, interval: float = 30) -> None:
        super().__init__(interval)
        self._orchestrator = orchestrator
        self.expired_total: int = 0

    async def tick(self) -> None:
        result = await self._orchestrator.expire_old_requests()
        self.expired_total += result.unwrap()


class ConnectionSweepWorker(PeriodicWorker):
    """Закрывает подключения без активности дольше stale_after секунд."""

    name = "connection_sweep"

    def __init__(self, registry: ConnectionRegistry, stale_after: float = 300, interval: float = 60) -> None:
        super().__init__(interval)
        self._registry = registry
        self.stale_after = stale_after

    async def tick(self) -> None:
        removed = await self._registry.sweep_inactive(self.stale_after)
        if removed:
            await log_info(f"Закрыто неактивных подключений: {removed}", type_msg=TypeMsg.INFO)


class LocationPurgeWorker(PeriodicWorker):
    """Удаляет позиции водителей старше retention_hours."""

    name = "location_purge"

    def __init__(
        self,
        locator: DriverLocator,
        clock: Clock,
        retention_hours: float = 24,
        interval: float = 3600,
    ) -> None:
        super().__init__(interval)
        self._locator = locator
        self._clock = clock
        self.retention = timedelta(hours=retention_hours)

    async def tick(self) -> None:
        purged = await self._locator.purge_stale(self._clock.now() - self.retention)
        if purged:
            await log_info(f"Удалено устаревших позиций: {purged}", type_msg=TypeMsg.INFO)

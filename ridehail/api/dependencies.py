# ridehail/api/dependencies.py
"""
Dependency Injection для API.

Container собирает компоненты ядра по секции backends настроек.
Инфраструктурные клиенты создаются без подключения; подключение
выполняет lifespan приложения через Container.startup().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from fastapi import Request

from ridehail.common.constants import LocatorBackend, PushBackend, StoreBackend, TypeMsg
from ridehail.common.locks import KeyedLock
from ridehail.common.logger import log_info
from ridehail.core.clock import Clock, SystemClock
from ridehail.core.dispatch.engine import DispatchEngine
from ridehail.core.dispatch.locator import DriverLocator, InMemoryDriverLocator, RedisDriverLocator
from ridehail.core.pricing.service import PricingService, Tariff
from ridehail.core.rides.orchestrator import RideOrchestrator
from ridehail.core.rides.pg_repository import PostgresRideStore
from ridehail.core.rides.repository import InMemoryRideStore, RideStore
from ridehail.infra.database import DatabaseManager, apply_schema
from ridehail.infra.event_bus import EventBus
from ridehail.infra.redis_client import RedisClient
from ridehail.realtime.notifier import Notifier
from ridehail.realtime.push import EventBusPushProvider, LoggingPushProvider, PushProvider
from ridehail.realtime.registry import ConnectionRegistry
from ridehail.realtime.relay import EventRelay
from ridehail.worker.base import PeriodicWorker
from ridehail.worker.sweepers import ConnectionSweepWorker, LocationPurgeWorker, RequestExpiryWorker

if TYPE_CHECKING:
    from ridehail.config.loader import Settings


@dataclass
class Container:
    """Все зависимости приложения."""
    settings: "Settings"
    clock: Clock
    registry: ConnectionRegistry
    notifier: Notifier
    store: RideStore
    locator: DriverLocator
    pricing: PricingService
    dispatch: DispatchEngine
    orchestrator: RideOrchestrator
    workers: list[PeriodicWorker] = field(default_factory=list)
    db: Optional[DatabaseManager] = None
    redis: Optional[RedisClient] = None
    event_bus: Optional[EventBus] = None
    # Приём событий, опубликованных процессом воркеров
    inbound_relay: Optional[EventRelay] = None

    async def startup(self, run_workers: bool = True) -> None:
        """Подключает инфраструктуру и запускает воркеры."""
        config = self.settings
        if self.db is not None:
            await self.db.connect(
                dsn=config.database.dsn,
                min_size=config.database.DB_MIN_POOL_SIZE,
                max_size=config.database.DB_MAX_POOL_SIZE,
                command_timeout=config.database.DB_COMMAND_TIMEOUT,
            )
            await apply_schema(self.db)
        if self.redis is not None:
            await self.redis.connect(config.redis.url, config.redis.REDIS_MAX_CONNECTIONS)
        if self.event_bus is not None:
            await self.event_bus.connect(config.rabbitmq.url)
        if self.inbound_relay is not None:
            await self.inbound_relay.attach(self.notifier)

        if run_workers:
            for worker in self.workers:
                await worker.start()
        await log_info(
            f"Приложение запущено: store={config.backends.STORE_BACKEND}, "
            f"locator={config.backends.LOCATOR_BACKEND}, push={config.backends.PUSH_BACKEND}",
            type_msg=TypeMsg.INFO,
        )

    async def shutdown(self) -> None:
        """Останавливает воркеры и закрывает подключения."""
        for worker in self.workers:
            await worker.stop()
        await self.notifier.drain()
        if self.event_bus is not None:
            await self.event_bus.disconnect()
        if self.redis is not None:
            await self.redis.disconnect()
        if self.db is not None:
            await self.db.disconnect()

    async def health(self) -> dict[str, str]:
        """Статус внешних зависимостей."""
        dependencies: dict[str, str] = {}
        if self.db is not None:
            dependencies["postgres"] = "healthy" if await self.db.health_check() else "unhealthy"
        if self.redis is not None:
            dependencies["redis"] = "healthy" if await self.redis.health_check() else "unhealthy"
        if self.event_bus is not None:
            dependencies["rabbitmq"] = "healthy" if await self.event_bus.health_check() else "unhealthy"
        return dependencies


def build_container(config: "Settings", clock: Optional[Clock] = None) -> Container:
    """Собирает зависимости API по настройкам."""
    return _assemble(config, clock or SystemClock(), workers_only=False)


def build_worker_container(config: "Settings", clock: Optional[Clock] = None) -> Container:
    """
    Собирает зависимости отдельного процесса воркеров.

    У процесса нет WebSocket-подключений, поэтому ему нужны общее
    хранилище (postgres) и шина (rabbitmq): события истечения заявок
    доставляют экземпляры API. Сборщик подключений не запускается,
    сборщик позиций запускается только для общего локатора (redis).

    Raises:
        ValueError: если хранилище или шина не общие
    """
    if config.backends.STORE_BACKEND != StoreBackend.POSTGRES:
        raise ValueError("workers mode requires STORE_BACKEND=postgres")
    if config.backends.PUSH_BACKEND != PushBackend.RABBITMQ:
        raise ValueError("workers mode requires PUSH_BACKEND=rabbitmq to relay events")
    return _assemble(config, clock or SystemClock(), workers_only=True)


def _assemble(config: "Settings", clock: Clock, workers_only: bool) -> Container:
    registry = ConnectionRegistry(clock)

    db: Optional[DatabaseManager] = None
    redis: Optional[RedisClient] = None
    event_bus: Optional[EventBus] = None
    relay: Optional[EventRelay] = None

    push: PushProvider
    if config.backends.PUSH_BACKEND == PushBackend.RABBITMQ:
        event_bus = EventBus(exchange_name=config.rabbitmq.RABBITMQ_EXCHANGE)
        push = EventBusPushProvider(event_bus)
        relay = EventRelay(event_bus)
    else:
        push = LoggingPushProvider()
    # Воркеры отправляют события через шину, API принимает их из шины
    forward = relay.forward if workers_only and relay is not None else None
    notifier = Notifier(registry, push, forward=forward)

    store: RideStore
    if config.backends.STORE_BACKEND == StoreBackend.POSTGRES:
        db = DatabaseManager()
        store = PostgresRideStore(db)
    else:
        store = InMemoryRideStore()

    locator: DriverLocator
    if config.backends.LOCATOR_BACKEND == LocatorBackend.REDIS:
        redis = RedisClient(namespace=config.redis.REDIS_NAMESPACE)
        locator = RedisDriverLocator(redis, stale_after=config.dispatch.LOCATION_STALE_AFTER)
    else:
        locator = InMemoryDriverLocator(stale_after=config.dispatch.LOCATION_STALE_AFTER)

    pricing = PricingService(Tariff.from_settings(config.pricing), config.dispatch.AVERAGE_SPEED_KMH)
    dispatch = DispatchEngine(
        store,
        locator,
        registry,
        notifier,
        clock,
        search_radius_km=config.dispatch.SEARCH_RADIUS_KM,
        expiry_seconds=config.dispatch.REQUEST_EXPIRY_SECONDS,
    )
    orchestrator = RideOrchestrator(store, dispatch, notifier, pricing, locator, clock, KeyedLock())

    workers: list[PeriodicWorker] = [
        RequestExpiryWorker(orchestrator, interval=config.dispatch.EXPIRY_SWEEP_INTERVAL),
    ]
    if not workers_only:
        workers.append(ConnectionSweepWorker(
            registry,
            stale_after=config.connections.CONNECTION_STALE_AFTER,
            interval=config.connections.CONNECTION_SWEEP_INTERVAL,
        ))
    if not workers_only or redis is not None:
        workers.append(LocationPurgeWorker(
            locator,
            clock,
            retention_hours=config.dispatch.LOCATION_RETENTION_HOURS,
            interval=config.dispatch.LOCATION_PURGE_INTERVAL,
        ))

    return Container(
        settings=config,
        clock=clock,
        registry=registry,
        notifier=notifier,
        store=store,
        locator=locator,
        pricing=pricing,
        dispatch=dispatch,
        orchestrator=orchestrator,
        workers=workers,
        db=db,
        redis=redis,
        event_bus=event_bus,
        inbound_relay=None if workers_only else relay,
    )


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_orchestrator(request: Request) -> RideOrchestrator:
    return get_container(request).orchestrator


def get_pricing(request: Request) -> PricingService:
    return get_container(request).pricing

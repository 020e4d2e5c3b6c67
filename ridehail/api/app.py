# ridehail/api/app.py
"""
FastAPI приложение сервиса поездок.

REST endpoints:
- /api/v1/rides, /api/v1/ride-requests, /api/v1/drivers
- GET /health: проверка здоровья
- GET /stats: статистика подключений и поездок

WebSocket: /ws/{role}/{user_id}
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ridehail import __version__
from ridehail.api import routes, websocket
from ridehail.api.dependencies import Container, build_container
from ridehail.common.logger import log_error, log_warning
from ridehail.core.rides.errors import ErrorCode, RideError


# === MODELS ===

class HealthStatus(BaseModel):
    """Статус здоровья сервиса."""
    service: str
    status: str = "healthy"  # healthy, degraded
    version: Optional[str] = None
    dependencies: dict[str, str] = Field(default_factory=dict)


class StatsResponse(BaseModel):
    """Статистика сервиса."""
    active_connections: int
    connected_users: int
    connections_by_role: dict[str, int]
    dead_connections: int
    messages_sent: int
    delivery_failures: int
    active_rides: int


# === ERRORS ===

HTTP_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.ACTIVE_RIDE_EXISTS: 409,
    ErrorCode.RIDE_ALREADY_TAKEN: 409,
    ErrorCode.REQUEST_EXPIRED: 410,
    ErrorCode.ALREADY_ANSWERED: 409,
    ErrorCode.DELIVERY_FAILURE: 502,
    ErrorCode.PERSISTENCE_FAILURE: 503,
}


async def ride_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Преобразует ошибку домена в JSON-ответ."""
    assert isinstance(exc, RideError)
    status_code = HTTP_STATUS_BY_CODE.get(exc.code, 400)
    if exc.retryable:
        await log_error(f"{request.method} {request.url.path}: {exc.message}", extra=exc.details)
    else:
        await log_warning(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# === APP ===

def create_app(container: Optional[Container] = None, run_workers: bool = True) -> FastAPI:
    """
    Создаёт приложение.

    Args:
        container: Готовые зависимости (в тестах). По умолчанию собираются из настроек.
        run_workers: Запускать ли фоновые сборщики в lifespan
    """
    if container is None:
        from ridehail.config import settings
        container = build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await container.startup(run_workers=run_workers)
        try:
            yield
        finally:
            await container.shutdown()

    app = FastAPI(
        title="Ride-hailing Service",
        description="Жизненный цикл поездок, диспетчеризация и уведомления в реальном времени.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.container = container
    app.add_exception_handler(RideError, ride_error_handler)

    prefix = container.settings.deployment.API_PREFIX
    for router in routes.routers:
        app.include_router(router, prefix=prefix)
    app.include_router(websocket.router)

    @app.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health_check() -> HealthStatus:
        """Проверка здоровья сервиса."""
        dependencies = await container.health()
        healthy = all(state == "healthy" for state in dependencies.values())
        return HealthStatus(
            service=container.settings.system.PROJECT_NAME,
            status="healthy" if healthy else "degraded",
            version=__version__,
            dependencies=dependencies,
        )

    @app.get("/stats", response_model=StatsResponse, tags=["Stats"])
    async def get_stats() -> StatsResponse:
        """Статистика подключений, доставок и активных поездок."""
        stats = await container.registry.get_stats()
        active = await container.store.list_active_rides()
        return StatsResponse(
            active_connections=stats.total_connections,
            connected_users=stats.connected_users,
            connections_by_role=stats.by_role,
            dead_connections=stats.dead_connections,
            messages_sent=container.notifier.messages_sent,
            delivery_failures=container.notifier.delivery_failures,
            active_rides=len(active),
        )

    return app


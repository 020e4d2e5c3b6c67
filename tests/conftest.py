# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Optional
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from ridehail.api.app import create_app
from ridehail.api.dependencies import Container, build_container
from ridehail.common.constants import UserRole
from ridehail.config.loader import Settings
from ridehail.core.clock import ManualClock
from ridehail.core.dispatch.engine import DispatchEngine
from ridehail.core.dispatch.locator import InMemoryDriverLocator
from ridehail.core.pricing.service import PricingService
from ridehail.core.rides.models import Location
from ridehail.core.rides.orchestrator import RideOrchestrator
from ridehail.core.rides.repository import InMemoryRideStore
from ridehail.realtime.notifier import Notifier
from ridehail.realtime.registry import ConnectionRegistry


# =============================================================================
# КАНАЛ
# =============================================================================

class FakeChannel:
    """Канал подключения, запоминающий отправленные сообщения."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = fail
        self.closed = False

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed = True

    def types(self) -> list[str]:
        """Типы полученных событий по порядку."""
        return [message["type"] for message in self.sent]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [message for message in self.sent if message["type"] == event_type]


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "=== SYSTEM ===",
        "PROJECT_NAME": "ridehail_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "DEBUG",
        "LOG_TO_FILE": False,
        "LOG_FORMAT": "json",
        "API_PORT": 8100,
        "DB_HOST": "db.test",
        "DB_NAME": "ridehail_test",
        "REDIS_NAMESPACE": "ridehail_test",
        "SEARCH_RADIUS_KM": 3.0,
        "REQUEST_EXPIRY_SECONDS": 60,
        "BASE_FARE": 1.0,
        "PEAK_WINDOWS": [["06:30", "08:30"]],
        "CURRENCY": "EUR",
        "STORE_BACKEND": "memory",
        "LOCATOR_BACKEND": "memory",
        "PUSH_BACKEND": "log",
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Временный config.json."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config), encoding="utf-8")
    return config_file


# =============================================================================
# ФИКСТУРЫ ЯДРА
# =============================================================================

@pytest.fixture
def clock() -> ManualClock:
    """Часы, стоящие на 2024-01-01 12:00 UTC (вне пиковых часов)."""
    return ManualClock()


@pytest.fixture
def store() -> InMemoryRideStore:
    return InMemoryRideStore()


@pytest.fixture
def locator() -> InMemoryDriverLocator:
    return InMemoryDriverLocator(stale_after=300)


@pytest.fixture
def registry(clock: ManualClock) -> ConnectionRegistry:
    return ConnectionRegistry(clock)


@pytest.fixture
def push() -> AsyncMock:
    """Мок провайдера push-уведомлений."""
    provider = AsyncMock()
    provider.deliver = AsyncMock(return_value=None)
    return provider


@pytest.fixture
def notifier(registry: ConnectionRegistry) -> Notifier:
    return Notifier(registry)


@pytest.fixture
def pricing() -> PricingService:
    return PricingService()


@pytest.fixture
def dispatch(
    store: InMemoryRideStore,
    locator: InMemoryDriverLocator,
    registry: ConnectionRegistry,
    notifier: Notifier,
    clock: ManualClock,
) -> DispatchEngine:
    return DispatchEngine(store, locator, registry, notifier, clock, search_radius_km=5.0, expiry_seconds=120)


@pytest.fixture
def orchestrator(
    store: InMemoryRideStore,
    dispatch: DispatchEngine,
    notifier: Notifier,
    pricing: PricingService,
    locator: InMemoryDriverLocator,
    clock: ManualClock,
) -> RideOrchestrator:
    return RideOrchestrator(store, dispatch, notifier, pricing, locator, clock)


# =============================================================================
# ДАННЫЕ
# =============================================================================

@pytest.fixture
def pickup() -> Location:
    """Точка подачи (Амман, центр)."""
    return Location(lat=31.9539, lng=35.9106, address="Rainbow Street")


@pytest.fixture
def dropoff() -> Location:
    """Точка назначения примерно в 2.6 км."""
    return Location(lat=31.9700, lng=35.9300, address="Abdali Boulevard")


@pytest.fixture
def online_driver(
    locator: InMemoryDriverLocator,
    registry: ConnectionRegistry,
    clock: ManualClock,
) -> Callable[..., Awaitable[FakeChannel]]:
    """Фабрика: водитель онлайн, рядом с точкой подачи и подключён."""
    async def _make(
        driver_id: int,
        lat: float = 31.9545,
        lng: float = 35.9110,
        channel: Optional[FakeChannel] = None,
    ) -> FakeChannel:
        channel = channel or FakeChannel()
        await locator.set_online(driver_id, True, clock.now())
        await locator.update_location(driver_id, lat, lng, clock.now())
        await registry.register(driver_id, UserRole.DRIVER, channel)
        return channel

    return _make


@pytest.fixture
def connected_customer(registry: ConnectionRegistry) -> Callable[..., Awaitable[FakeChannel]]:
    """Фабрика: подключённый клиент."""
    async def _make(customer_id: int, channel: Optional[FakeChannel] = None) -> FakeChannel:
        channel = channel or FakeChannel()
        await registry.register(customer_id, UserRole.CUSTOMER, channel)
        return channel

    return _make


# =============================================================================
# ПРИЛОЖЕНИЕ
# =============================================================================

@pytest.fixture
def app_container(mock_config: dict[str, Any], clock: ManualClock) -> Container:
    """Контейнер на in-memory бэкендах с ручными часами."""
    return build_container(Settings.from_dict(mock_config), clock)


@pytest.fixture
def client(app_container: Container) -> Iterator[TestClient]:
    """TestClient с выполненным lifespan (без фоновых воркеров)."""
    with TestClient(create_app(app_container, run_workers=False)) as test_client:
        yield test_client

# tests/api/test_dependencies.py
"""
Тесты сборки контейнеров API и процесса воркеров.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest

from ridehail.api.dependencies import build_container, build_worker_container
from ridehail.config.loader import Settings
from ridehail.infra.event_bus import DomainEvent, EventTypes
from ridehail.realtime import events


def settings(mock_config: dict[str, Any], **backends: str) -> Settings:
    return Settings.from_dict({**mock_config, **backends})


class TestWorkerContainer:
    """Процесс воркеров работает только с общими бэкендами."""

    @pytest.mark.parametrize("backends", [
        {"STORE_BACKEND": "memory", "PUSH_BACKEND": "rabbitmq"},
        {"STORE_BACKEND": "postgres", "PUSH_BACKEND": "log"},
    ])
    def test_refuses_local_backends(self, mock_config: dict[str, Any], backends: dict[str, str]) -> None:
        with pytest.raises(ValueError):
            build_worker_container(settings(mock_config, **backends))

    def test_only_shared_state_workers(self, mock_config: dict[str, Any], clock) -> None:
        """Без общего локатора остаётся только сборщик заявок."""
        container = build_worker_container(
            settings(mock_config, STORE_BACKEND="postgres", PUSH_BACKEND="rabbitmq"), clock
        )

        assert [w.name for w in container.workers] == ["request_expiry"]
        assert container.inbound_relay is None

    def test_location_purge_with_redis(self, mock_config: dict[str, Any], clock) -> None:
        container = build_worker_container(
            settings(mock_config, STORE_BACKEND="postgres", PUSH_BACKEND="rabbitmq", LOCATOR_BACKEND="redis"),
            clock,
        )

        assert [w.name for w in container.workers] == ["request_expiry", "location_purge"]

    @pytest.mark.asyncio
    async def test_events_published_to_bus(self, mock_config: dict[str, Any], clock) -> None:
        """События воркеров уходят в шину для доставки экземплярами API."""
        container = build_worker_container(
            settings(mock_config, STORE_BACKEND="postgres", PUSH_BACKEND="rabbitmq"), clock
        )
        container.event_bus.publish = AsyncMock()

        await container.notifier.send_to_user(10, events.pong(clock.now()))

        published = container.event_bus.publish.await_args.args[0]
        assert isinstance(published, DomainEvent)
        assert published.event_type == EventTypes.REALTIME_DELIVER
        assert published.payload["user_id"] == 10
        assert published.payload["event"]["type"] == "pong"


class TestApiContainer:
    """Контейнер API."""

    def test_all_workers(self, mock_config: dict[str, Any], clock) -> None:
        container = build_container(settings(mock_config), clock)

        assert [w.name for w in container.workers] == ["request_expiry", "connection_sweep", "location_purge"]
        assert container.inbound_relay is None

    @pytest.mark.asyncio
    async def test_subscribes_to_relayed_events(self, mock_config: dict[str, Any], clock) -> None:
        """С шиной API подписывается на события процесса воркеров."""
        container = build_container(settings(mock_config, PUSH_BACKEND="rabbitmq"), clock)
        container.event_bus.connect = AsyncMock()
        container.event_bus.subscribe = AsyncMock()

        await container.startup(run_workers=False)
        await container.shutdown()

        assert container.event_bus.subscribe.await_args.args[0] == "realtime.deliver"

# tests/config/test_loader.py
"""
Тесты для модуля загрузки конфигурации.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from pydantic import ValidationError

from ridehail.common.constants import LocatorBackend, PushBackend, StoreBackend
from ridehail.config.loader import (
    DatabaseSettings,
    DispatchSettings,
    RedisSettings,
    Settings,
    get_config_path,
    get_project_root,
    load_config_json,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Переменные окружения не должны перекрывать значения из файла."""
    for name in ("LOG_LEVEL", "API_PORT", "DB_HOST", "STORE_BACKEND", "RIDEHAIL_CONFIG"):
        monkeypatch.delenv(name, raising=False)


class TestPaths:
    """Тесты определения путей."""

    def test_project_root(self) -> None:
        root = get_project_root()

        assert (root / "ridehail").is_dir()
        assert (root / "config").is_dir()

    def test_default_config_path(self) -> None:
        path = get_config_path()

        assert path.name == "config.json"
        assert path.parent.name == "config"

    def test_config_path_override(self, monkeypatch: pytest.MonkeyPatch, temp_config_file: Path) -> None:
        monkeypatch.setenv("RIDEHAIL_CONFIG", str(temp_config_file))

        assert get_config_path() == temp_config_file
        assert load_config_json()["PROJECT_NAME"] == "ridehail_test"

    def test_missing_file(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("RIDEHAIL_CONFIG", str(tmp_path / "absent.json"))

        with pytest.raises(FileNotFoundError):
            load_config_json()

    def test_repository_config_is_valid(self) -> None:
        """config/config.json из репозитория разбирается без ошибок."""
        settings = Settings.from_dict(load_config_json())

        assert settings.system.PROJECT_NAME == "ridehail"
        assert settings.pricing.CURRENCY == "JOD"


class TestFromDict:
    """Тесты Settings.from_dict."""

    def test_values_from_file(self, mock_config: dict[str, Any]) -> None:
        settings = Settings.from_dict(mock_config)

        assert settings.system.PROJECT_NAME == "ridehail_test"
        assert settings.deployment.API_PORT == 8100
        assert settings.logging.LOG_LEVEL == "DEBUG"
        assert settings.logging.LOG_FORMAT == "json"
        assert settings.database.DB_HOST == "db.test"
        assert settings.dispatch.SEARCH_RADIUS_KM == 3.0
        assert settings.dispatch.REQUEST_EXPIRY_SECONDS == 60
        assert settings.pricing.BASE_FARE == 1.0
        assert settings.pricing.PEAK_WINDOWS == [["06:30", "08:30"]]
        assert settings.backends.STORE_BACKEND == StoreBackend.MEMORY
        assert settings.backends.LOCATOR_BACKEND == LocatorBackend.MEMORY
        assert settings.backends.PUSH_BACKEND == PushBackend.LOG

    def test_defaults(self) -> None:
        """Отсутствующие ключи получают значения по умолчанию."""
        settings = Settings.from_dict({})

        assert settings.deployment.API_PREFIX == "/api/v1"
        assert settings.dispatch.SEARCH_RADIUS_KM == 5.0
        assert settings.dispatch.REQUEST_EXPIRY_SECONDS == 120
        assert settings.pricing.MIN_FARE == 1.10
        assert settings.connections.CONNECTION_STALE_AFTER == 300

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch, mock_config: dict[str, Any]) -> None:
        """Адреса и бэкенды переопределяются из окружения."""
        monkeypatch.setenv("API_PORT", "9000")
        monkeypatch.setenv("DB_HOST", "postgres")
        monkeypatch.setenv("STORE_BACKEND", "postgres")

        settings = Settings.from_dict(mock_config)

        assert settings.deployment.API_PORT == 9000
        assert settings.database.DB_HOST == "postgres"
        assert settings.backends.STORE_BACKEND == StoreBackend.POSTGRES

    def test_comments_ignored(self) -> None:
        settings = Settings.from_dict({"_comment_pricing": "Тариф", "CURRENCY": "EUR"})

        assert settings.pricing.CURRENCY == "EUR"

    def test_unknown_backend_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings.from_dict({"LOCATOR_BACKEND": "etcd"})


class TestSections:
    """Тесты отдельных секций."""

    def test_database_dsn(self) -> None:
        db = DatabaseSettings(DB_HOST="db", DB_NAME="rides", DB_USER="app", DB_PASSWORD="secret")

        assert db.dsn == "postgresql://app:secret@db:5432/rides"

    def test_redis_url(self) -> None:
        assert RedisSettings(REDIS_HOST="cache", REDIS_PASSWORD="pw").url == "redis://:pw@cache:6379/0"

    def test_redis_url_without_password(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REDIS_PASSWORD", "")

        assert RedisSettings(REDIS_HOST="cache").url == "redis://cache:6379/0"

    @pytest.mark.parametrize("field", ["SEARCH_RADIUS_KM", "AVERAGE_SPEED_KMH"])
    def test_dispatch_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError):
            DispatchSettings(**{field: 0})

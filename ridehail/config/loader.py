# ridehail/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины: config/config.json.
Секретные данные и адреса сервисов переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from ridehail.common.constants import LocatorBackend, PushBackend, StoreBackend


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации (можно переопределить через RIDEHAIL_CONFIG)."""
    override = os.getenv("RIDEHAIL_CONFIG")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "ridehail"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"


class DeploymentSettings(BaseModel):
    """Настройки развертывания API."""
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_PREFIX: str = "/api/v1"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "ridehail"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "ridehail"
    REDIS_MAX_CONNECTIONS: int = 50

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "ridehail.events"

    @field_validator("RABBITMQ_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        env_pass = os.getenv("RABBITMQ_PASSWORD", "")
        if env_pass:
            return env_pass
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class DispatchSettings(BaseModel):
    """Настройки рассылки заявок водителям."""
    SEARCH_RADIUS_KM: float = 5.0
    REQUEST_EXPIRY_SECONDS: int = 120
    EXPIRY_SWEEP_INTERVAL: int = 30
    AVERAGE_SPEED_KMH: float = 30.0
    LOCATION_STALE_AFTER: int = 300
    LOCATION_RETENTION_HOURS: int = 24
    LOCATION_PURGE_INTERVAL: int = 3600

    @field_validator("SEARCH_RADIUS_KM", "AVERAGE_SPEED_KMH")
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        """Радиус и скорость должны быть положительными."""
        if v <= 0:
            raise ValueError("значение должно быть больше нуля")
        return v


class ConnectionSettings(BaseModel):
    """Настройки реестра WebSocket-подключений."""
    CONNECTION_STALE_AFTER: int = 300
    CONNECTION_SWEEP_INTERVAL: int = 60


class PricingSettings(BaseModel):
    """Настройки тарифа."""
    BASE_FARE: float = 0.50
    FARE_PER_KM: float = 0.28
    FARE_PER_MINUTE: float = 0.05
    MIN_FARE: float = 1.10
    PEAK_MULTIPLIER: float = 1.20
    PEAK_WINDOWS: list[list[str]] = Field(
        default_factory=lambda: [["07:00", "09:00"], ["15:00", "19:00"]]
    )
    CURRENCY: str = "JOD"


class BackendSettings(BaseModel):
    """Выбор реализаций внешних зависимостей."""
    STORE_BACKEND: StoreBackend = StoreBackend.MEMORY
    LOCATOR_BACKEND: LocatorBackend = LocatorBackend.MEMORY
    PUSH_BACKEND: PushBackend = PushBackend.LOG


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    connections: ConnectionSettings = Field(default_factory=ConnectionSettings)
    pricing: PricingSettings = Field(default_factory=PricingSettings)
    backends: BackendSettings = Field(default_factory=BackendSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты переопределяются из переменных окружения.
        """
        return cls.from_dict(load_config_json())

    @classmethod
    def from_dict(cls, config_data: dict[str, Any]) -> "Settings":
        """Создаёт объект Settings из плоского словаря ключей config.json."""
        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "ridehail"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", True),
                ENVIRONMENT=os.getenv("ENVIRONMENT", data.get("ENVIRONMENT", "development")),
            ),
            deployment=DeploymentSettings(
                API_HOST=os.getenv("API_HOST", data.get("API_HOST", "0.0.0.0")),
                API_PORT=int(os.getenv("API_PORT", data.get("API_PORT", 8000))),
                API_PREFIX=data.get("API_PREFIX", "/api/v1"),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=os.getenv("LOG_LEVEL", data.get("LOG_LEVEL", "DEBUG")),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", data.get("DB_NAME", "ridehail")),
                DB_USER=os.getenv("DB_USER", data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=data.get("DB_MIN_POOL_SIZE", 5),
                DB_MAX_POOL_SIZE=data.get("DB_MAX_POOL_SIZE", 20),
                DB_COMMAND_TIMEOUT=data.get("DB_COMMAND_TIMEOUT", 60),
                DB_RETRY_ATTEMPTS=data.get("DB_RETRY_ATTEMPTS", 3),
                DB_RETRY_DELAY=data.get("DB_RETRY_DELAY", 1.0),
            ),
            redis=RedisSettings(
                REDIS_HOST=os.getenv("REDIS_HOST", data.get("REDIS_HOST", "localhost")),
                REDIS_PORT=int(os.getenv("REDIS_PORT", data.get("REDIS_PORT", 6379))),
                REDIS_DB=data.get("REDIS_DB", 0),
                REDIS_PASSWORD=os.getenv("REDIS_PASSWORD", data.get("REDIS_PASSWORD", "")),
                REDIS_NAMESPACE=data.get("REDIS_NAMESPACE", "ridehail"),
                REDIS_MAX_CONNECTIONS=data.get("REDIS_MAX_CONNECTIONS", 50),
            ),
            rabbitmq=RabbitMQSettings(
                RABBITMQ_HOST=os.getenv("RABBITMQ_HOST", data.get("RABBITMQ_HOST", "localhost")),
                RABBITMQ_PORT=int(os.getenv("RABBITMQ_PORT", data.get("RABBITMQ_PORT", 5672))),
                RABBITMQ_USER=os.getenv("RABBITMQ_USER", data.get("RABBITMQ_USER", "guest")),
                RABBITMQ_PASSWORD=os.getenv("RABBITMQ_PASSWORD", data.get("RABBITMQ_PASSWORD", "guest")),
                RABBITMQ_VHOST=data.get("RABBITMQ_VHOST", "/"),
                RABBITMQ_EXCHANGE=data.get("RABBITMQ_EXCHANGE", "ridehail.events"),
            ),
            dispatch=DispatchSettings(
                SEARCH_RADIUS_KM=data.get("SEARCH_RADIUS_KM", 5.0),
                REQUEST_EXPIRY_SECONDS=data.get("REQUEST_EXPIRY_SECONDS", 120),
                EXPIRY_SWEEP_INTERVAL=data.get("EXPIRY_SWEEP_INTERVAL", 30),
                AVERAGE_SPEED_KMH=data.get("AVERAGE_SPEED_KMH", 30.0),
                LOCATION_STALE_AFTER=data.get("LOCATION_STALE_AFTER", 300),
                LOCATION_RETENTION_HOURS=data.get("LOCATION_RETENTION_HOURS", 24),
                LOCATION_PURGE_INTERVAL=data.get("LOCATION_PURGE_INTERVAL", 3600),
            ),
            connections=ConnectionSettings(
                CONNECTION_STALE_AFTER=data.get("CONNECTION_STALE_AFTER", 300),
                CONNECTION_SWEEP_INTERVAL=data.get("CONNECTION_SWEEP_INTERVAL", 60),
            ),
            pricing=PricingSettings(
                BASE_FARE=data.get("BASE_FARE", 0.50),
                FARE_PER_KM=data.get("FARE_PER_KM", 0.28),
                FARE_PER_MINUTE=data.get("FARE_PER_MINUTE", 0.05),
                MIN_FARE=data.get("MIN_FARE", 1.10),
                PEAK_MULTIPLIER=data.get("PEAK_MULTIPLIER", 1.20),
                PEAK_WINDOWS=data.get("PEAK_WINDOWS", [["07:00", "09:00"], ["15:00", "19:00"]]),
                CURRENCY=data.get("CURRENCY", "JOD"),
            ),
            backends=BackendSettings(
                STORE_BACKEND=os.getenv("STORE_BACKEND", data.get("STORE_BACKEND", "memory")),
                LOCATOR_BACKEND=os.getenv("LOCATOR_BACKEND", data.get("LOCATOR_BACKEND", "memory")),
                PUSH_BACKEND=os.getenv("PUSH_BACKEND", data.get("PUSH_BACKEND", "log")),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    # Загружаем .env файл
    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()

# ridehail/infra/redis_client.py
"""
Клиент Redis для Geo-операций с позициями водителей.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import redis.asyncio as redis

from ridehail.common.constants import TypeMsg
from ridehail.common.logger import log_error, log_info

if TYPE_CHECKING:
    from ridehail.config.loader import RedisSettings


class RedisClient:
    """
    Асинхронный клиент Redis.
    Поддерживает:
    - Geo-операции (GEOADD, GEORADIUS)
    - Сортированные множества (время последней активности)
    - Множества (онлайн-статус)
    """

    def __init__(self, namespace: str = "ridehail") -> None:
        self._client: redis.Redis | None = None
        self._namespace = namespace

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    def attach(self, client: redis.Redis) -> None:
        """Использует уже созданный клиент (например, в тестах)."""
        self._client = client

    def _make_key(self, key: str) -> str:
        """Добавляет namespace к ключу."""
        return f"{self._namespace}:{key}"

    async def connect(self, url: str, max_connections: int = 50) -> None:
        """
        Подключается к Redis.

        Args:
            url: URL Redis
            max_connections: Максимальное количество соединений
        """
        if self._client is not None:
            return

        await log_info("Подключение к Redis...", type_msg=TypeMsg.INFO)
        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        await self._client.ping()
        await log_info("Подключение к Redis установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто", type_msg=TypeMsg.INFO)

    # =========================================================================
    # GEO ОПЕРАЦИИ
    # =========================================================================

    async def geoadd(self, key: str, longitude: float, latitude: float, member: str) -> int:
        """Добавляет или обновляет геолокацию участника."""
        return await self.client.geoadd(self._make_key(key), (longitude, latitude, member))

    async def geopos(self, key: str, member: str) -> tuple[float, float] | None:
        """Позиция участника (longitude, latitude) или None."""
        result = await self.client.geopos(self._make_key(key), member)
        if result and result[0]:
            return float(result[0][0]), float(result[0][1])
        return None

    async def georadius(
        self,
        key: str,
        longitude: float,
        latitude: float,
        radius: float,
        unit: str = "km",
        count: int | None = None,
    ) -> list[tuple[str, float]]:
        """
        Ищет участников в радиусе от точки, ближние первыми.

        Returns:
            Список кортежей (member, distance)
        """
        results = await self.client.georadius(
            self._make_key(key),
            longitude,
            latitude,
            radius,
            unit=unit,
            withdist=True,
            count=count,
            sort="ASC",
        )
        return [(r[0], float(r[1])) for r in results]

    # =========================================================================
    # SORTED SET / SET ОПЕРАЦИИ
    # =========================================================================

    async def zadd(self, key: str, member: str, score: float) -> int:
        return await self.client.zadd(self._make_key(key), {member: score})

    async def zscore(self, key: str, member: str) -> float | None:
        return await self.client.zscore(self._make_key(key), member)

    async def zrangebyscore(self, key: str, min_score: float | str, max_score: float | str) -> list[str]:
        return await self.client.zrangebyscore(self._make_key(key), min_score, max_score)

    async def zrem(self, key: str, *members: str) -> int:
        """Удаляет участников (подходит и для geo-индекса)."""
        if not members:
            return 0
        return await self.client.zrem(self._make_key(key), *members)

    async def sadd(self, key: str, *members: str) -> int:
        return await self.client.sadd(self._make_key(key), *members)

    async def srem(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self.client.srem(self._make_key(key), *members)

    async def sismember(self, key: str, member: str) -> bool:
        return bool(await self.client.sismember(self._make_key(key), member))

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def health_check(self) -> bool:
        """
        Проверяет здоровье подключения к Redis.

        Returns:
            True если подключение работает
        """
        try:
            return await self.client.ping()
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False


async def init_redis(config: "RedisSettings") -> RedisClient:
    """Создаёт клиент по секции redis настроек и подключается."""
    client = RedisClient(namespace=config.REDIS_NAMESPACE)
    await client.connect(url=config.url, max_connections=config.REDIS_MAX_CONNECTIONS)
    await log_info(
        f"Redis подключён: {config.REDIS_HOST}:{config.REDIS_PORT}/{config.REDIS_DB}",
        type_msg=TypeMsg.INFO,
    )
    return client

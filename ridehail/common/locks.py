# ridehail/common/locks.py
"""
Арена именованных блокировок.

Одна asyncio.Lock на ключ (ride:{id}, driver:{id}, customer:{id}).
Блокировка создаётся при первом обращении и удаляется, когда её никто
не держит и не ждёт.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator


def ride_key(ride_id: str) -> str:
    return f"ride:{ride_id}"


def driver_key(driver_id: int) -> str:
    return f"driver:{driver_id}"


def customer_key(customer_id: int) -> str:
    return f"customer:{customer_id}"


class KeyedLock:
    """Набор взаимных исключений по строковому ключу."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Захватывает блокировку ключа на время блока."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @asynccontextmanager
    async def hold_many(self, *keys: str) -> AsyncIterator[None]:
        """
        Захватывает несколько блокировок строго в переданном порядке.

        Порядок задаёт вызывающий: сначала участник, затем поездка.
        """
        async with AsyncExitStack() as stack:
            for key in keys:
                await stack.enter_async_context(self.hold(key))
            yield

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

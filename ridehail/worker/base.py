# ridehail/worker/base.py
"""
Базовый класс для периодических воркеров.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from ridehail.common.constants import TypeMsg
from ridehail.common.logger import log_error, log_info


class PeriodicWorker(ABC):
    """
    Воркер, вызывающий tick() раз в interval секунд.
    Ошибка одного прохода логируется, цикл продолжается.
    """

    def __init__(self, interval: float) -> None:
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task[None]] = None
        self.runs: int = 0
        self.failures: int = 0

    @property
    @abstractmethod
    def name(self) -> str:
        """Имя воркера."""

    @abstractmethod
    async def tick(self) -> None:
        """Один проход воркера."""

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self) -> bool:
        """Выполняет один проход. Возвращает False при ошибке."""
        try:
            await self.tick()
            self.runs += 1
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            await log_error(f"Ошибка в воркере {self.name}: {e}", exc_info=True)
            return False

    async def _loop(self) -> None:
        while self._running:
            await self.run_once()
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        """Запускает воркер."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"worker:{self.name}")
        await log_info(
            f"Воркер {self.name} запущен (интервал {self.interval} с)",
            type_msg=TypeMsg.INFO,
        )

    async def stop(self) -> None:
        """Останавливает воркер."""
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

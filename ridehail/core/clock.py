# ridehail/core/clock.py
"""
Источник времени.

Все компоненты получают текущее время только через Clock, чтобы тесты
могли управлять им явно.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Текущий момент (UTC, timezone-aware)."""
        ...


class SystemClock:
    """Системные часы."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Часы с ручным управлением (для тестов и воспроизведения)."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        if self._now.tzinfo is None:
            self._now = self._now.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0, **kwargs: float) -> datetime:
        """Сдвигает время вперёд и возвращает новое значение."""
        self._now = self._now + timedelta(seconds=seconds, **kwargs)
        return self._now

    def set(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        self._now = moment

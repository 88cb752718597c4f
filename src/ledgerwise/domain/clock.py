"""Injectable source of "today"."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Protocol


class Clock(Protocol):
    """Anything that can tell the current calendar day."""

    def today(self) -> date:  # pragma: no cover - interface
        ...


class SystemClock:
    """Wall-clock date of the running host."""

    def today(self) -> date:
        return date.today()


class FixedClock:
    """Deterministic clock for tests and back-dated batch runs."""

    def __init__(self, current: date):
        self.current = current

    def today(self) -> date:
        return self.current

    def advance(self, days: int = 1) -> date:
        self.current = self.current + timedelta(days=days)
        return self.current

    def set(self, current: date) -> None:
        self.current = current


__all__ = ["Clock", "FixedClock", "SystemClock"]

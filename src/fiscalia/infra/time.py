"""Clock abstraction for consistent, testable timestamps."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return utc_now()


class FixedClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, at: datetime | None = None) -> None:
        self._now = at or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta: float) -> datetime:
        """Move the clock forward, e.g. ``clock.advance(minutes=5)``."""
        self._now = self._now + timedelta(**delta)
        return self._now

    def set(self, at: datetime) -> None:
        self._now = at

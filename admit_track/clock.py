"""
Time sources.

Everything that needs "now" takes a clock, so tests can pin an instant and
hit exact deadline boundaries. Timestamps are naive UTC throughout, matching
what the SQLite/SQLAlchemy DateTime columns round-trip.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


class SystemClock:
    """Wall-clock time in naive UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock:
    """
    A clock pinned to one instant, moved only by explicit calls.

    Usage:
        clock = FixedClock(datetime(2026, 1, 10, 9, 0))
        clock.advance(days=3)
    """

    def __init__(self, instant: datetime) -> None:
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = instant

    def advance(self, **delta) -> datetime:
        self._instant = self._instant + timedelta(**delta)
        return self._instant

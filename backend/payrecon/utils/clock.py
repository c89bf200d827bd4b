from __future__ import annotations
"""Injectable clock.

Timestamps are naive UTC throughout the engine (columns are ``DateTime`` without
timezone). Services take a clock instead of calling ``datetime.now()`` so tests can
pin "now" exactly on window and expiry boundaries.
"""
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SystemClock:
    def now(self) -> datetime:
        return utcnow()


class FixedClock:
    """Clock frozen at a given instant; ``advance`` moves it forward."""

    def __init__(self, at: datetime):
        self._now = at

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now

    def set(self, at: datetime):
        self._now = at

__all__ = ['utcnow', 'SystemClock', 'FixedClock']

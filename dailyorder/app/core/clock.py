"""
Clock abstraction.

Business logic never reads the wall clock directly; routers receive a clock
through the ``get_clock`` dependency and pass ``now`` down explicitly.
All instants are timezone-aware UTC.
"""

from datetime import datetime, timedelta, timezone


def as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


class Clock:
    """Source of the current instant."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant; ``advance`` moves it forward."""

    def __init__(self, instant: datetime):
        self.instant = as_utc(instant)

    def now(self) -> datetime:
        return self.instant

    def set(self, instant: datetime) -> None:
        self.instant = as_utc(instant)

    def advance(self, delta: timedelta) -> None:
        self.instant = self.instant + delta


system_clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency returning the process clock."""
    return system_clock

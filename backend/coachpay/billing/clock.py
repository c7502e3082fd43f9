"""Clock abstraction so grace-period and quota logic can be tested deterministically.

All datetimes are naive UTC, matching the database columns.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in naive UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FrozenClock:
    """A clock pinned to a fixed instant. Advance it explicitly with ``tick``."""

    def __init__(self, instant: datetime) -> None:
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def tick(self, delta: timedelta) -> None:
        self._instant += delta


system_clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency returning the process clock (overridden in tests)."""
    return system_clock


def to_timestamp(value: datetime) -> int:
    """Naive UTC datetime -> Unix seconds (what Stripe expects)."""
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def from_timestamp(ts: int | None) -> datetime | None:
    """Stripe Unix timestamp -> naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)

"""Time sources for entitlement decisions."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""

    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class FrozenClock:
    """Manually advanced clock suitable for tests and replaying transitions."""

    def __init__(self, at: datetime) -> None:
        self._now = ensure_aware(at)

    def __call__(self) -> datetime:
        return self._now

    def set(self, at: datetime) -> None:
        self._now = ensure_aware(at)

    def advance(self, **delta: float) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now

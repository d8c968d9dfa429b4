"""
UTC timestamp utilities and the clock abstraction.

The scheduler reads time only through a ``Clock`` so tests can drive
fire times deterministically with ``autospine.testing.ManualClock``.

STDLIB ONLY.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_iso8601(value: datetime | None) -> str | None:
    """Serialize a datetime (or None) to ISO 8601."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()


@runtime_checkable
class Clock(Protocol):
    """Source of wall-clock time for scheduling decisions."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...


class SystemClock:
    """Clock backed by the system wall clock."""

    def now(self) -> datetime:
        return utc_now()


__all__ = ["utc_now", "ensure_utc", "to_iso8601", "Clock", "SystemClock"]

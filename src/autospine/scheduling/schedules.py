"""Schedule specifications: fixed intervals and cron expressions.

Schedules arrive as strings, numbers or ``timedelta`` objects and are
parsed once, at registration time, into a structured ``Schedule``. A spec
that cannot be parsed is rejected synchronously with
``InvalidScheduleError``; nothing fails silently at fire time.

Accepted forms::

    timedelta(minutes=5)        IntervalSchedule(300s)
    30 / 2.5                    IntervalSchedule(seconds)
    "30s" "5m" "1h30m" "2d"     IntervalSchedule
    "every 5m" "@every 10s"     IntervalSchedule
    "*/5 * * * *"               CronSchedule (5 fields, 6th = seconds)
    "@hourly" "@daily" ...      CronSchedule

Due-time arithmetic always starts from the previous *scheduled* time,
never from when a run finished, so a job every 5 units started at t0
fires at t0+5, t0+10, ... regardless of run duration.
"""

from __future__ import annotations

import re
import zoneinfo
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

from croniter import croniter

from autospine.core.errors import InvalidScheduleError
from autospine.core.timestamps import ensure_utc

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d|w)")
_DURATION_RE = re.compile(r"^(?:\d+(?:\.\d+)?(?:ms|s|m|h|d|w))+$")

CRON_ALIASES = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

# bound on how many missed cron occurrences are walked when catching up
_MAX_CATCHUP = 10_000


class Schedule(ABC):
    """When a job is due."""

    @abstractmethod
    def first_after(self, start: datetime) -> datetime:
        """First due time after ``start`` (the moment the job is scheduled)."""

    @abstractmethod
    def next_after(self, due: datetime) -> datetime:
        """Due time following the previous due time ``due``."""

    def following(self, due: datetime, now: datetime) -> tuple[datetime, int]:
        """Next due time strictly after ``now``, starting from ``due``.

        Returns:
            (next_due, missed) where ``missed`` counts due times that fell
            between ``due`` and ``now`` and are coalesced away.
        """
        nxt = self.next_after(due)
        missed = 0
        while nxt <= now and missed < _MAX_CATCHUP:
            nxt = self.next_after(nxt)
            missed += 1
        if nxt <= now:
            nxt = self.first_after(now)
        return nxt, missed

    @abstractmethod
    def describe(self) -> str: ...

    def upcoming(self, start: datetime, count: int = 5) -> list[datetime]:
        """The next ``count`` due times after ``start``."""
        times: list[datetime] = []
        due = self.first_after(ensure_utc(start))
        for _ in range(count):
            times.append(due)
            due = self.next_after(due)
        return times


@dataclass(frozen=True)
class IntervalSchedule(Schedule):
    """Fixed-period schedule."""

    interval: timedelta

    def __post_init__(self) -> None:
        if self.interval <= timedelta(0):
            raise InvalidScheduleError(self.interval, f"Interval must be positive, got {self.interval}")

    @property
    def seconds(self) -> float:
        return self.interval.total_seconds()

    def first_after(self, start: datetime) -> datetime:
        return ensure_utc(start) + self.interval

    def next_after(self, due: datetime) -> datetime:
        return ensure_utc(due) + self.interval

    def following(self, due: datetime, now: datetime) -> tuple[datetime, int]:
        due, now = ensure_utc(due), ensure_utc(now)
        nxt = due + self.interval
        if nxt > now:
            return nxt, 0
        missed = int((now - nxt) / self.interval) + 1
        nxt = nxt + self.interval * missed
        return nxt, missed

    def describe(self) -> str:
        return f"every {_format_seconds(self.seconds)}"


@dataclass(frozen=True)
class CronSchedule(Schedule):
    """Cron expression evaluated in ``timezone``, yielding UTC due times."""

    expression: str
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        if not croniter.is_valid(self.expression):
            raise InvalidScheduleError(self.expression, f"Invalid cron expression: {self.expression!r}")
        try:
            zoneinfo.ZoneInfo(self.timezone)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidScheduleError(self.timezone, f"Unknown timezone: {self.timezone!r}") from e

    @property
    def tz(self) -> zoneinfo.ZoneInfo:
        return zoneinfo.ZoneInfo(self.timezone)

    def _next(self, after: datetime) -> datetime:
        local = ensure_utc(after).astimezone(self.tz)
        nxt = croniter(self.expression, local).get_next(datetime)
        return ensure_utc(nxt)

    def first_after(self, start: datetime) -> datetime:
        return self._next(start)

    def next_after(self, due: datetime) -> datetime:
        return self._next(due)

    def describe(self) -> str:
        if self.timezone == "UTC":
            return f"cron {self.expression!r}"
        return f"cron {self.expression!r} ({self.timezone})"


def _format_seconds(seconds: float) -> str:
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60)):
        if seconds >= size and seconds % size == 0:
            return f"{int(seconds // size)}{unit}"
    if seconds == int(seconds):
        return f"{int(seconds)}s"
    return f"{seconds}s"


def parse_duration(text: str) -> timedelta:
    """Parse ``"1h30m"``-style durations.

    Raises:
        InvalidScheduleError: Unparseable or non-positive duration.
    """
    compact = text.replace(" ", "").lower()
    if not _DURATION_RE.match(compact):
        raise InvalidScheduleError(text, f"Invalid duration: {text!r}")
    seconds = sum(float(value) * _UNIT_SECONDS[unit] for value, unit in _DURATION_PART.findall(compact))
    if seconds <= 0:
        raise InvalidScheduleError(text, f"Duration must be positive: {text!r}")
    return timedelta(seconds=seconds)


def parse_schedule(spec: object, timezone: str = "UTC") -> Schedule:
    """Parse an interval or cron specification.

    Args:
        spec: ``Schedule``, ``timedelta``, seconds, duration string or cron expression
        timezone: Timezone for cron evaluation

    Raises:
        InvalidScheduleError: The spec is not understood.
    """
    if isinstance(spec, Schedule):
        return spec
    if isinstance(spec, timedelta):
        return IntervalSchedule(spec)
    if isinstance(spec, (int, float)) and not isinstance(spec, bool):
        if spec <= 0:
            raise InvalidScheduleError(spec, f"Interval must be positive, got {spec}")
        return IntervalSchedule(timedelta(seconds=spec))
    if not isinstance(spec, str) or not spec.strip():
        raise InvalidScheduleError(spec)

    text = spec.strip()
    lowered = text.lower()

    for prefix in ("@every ", "every "):
        if lowered.startswith(prefix):
            return IntervalSchedule(parse_duration(text[len(prefix):]))

    if _DURATION_RE.match(lowered.replace(" ", "")):
        return IntervalSchedule(parse_duration(text))

    expression = CRON_ALIASES.get(lowered, text)
    if len(expression.split()) in (5, 6):
        return CronSchedule(expression, timezone)

    raise InvalidScheduleError(spec)


__all__ = [
    "Schedule",
    "IntervalSchedule",
    "CronSchedule",
    "CRON_ALIASES",
    "parse_duration",
    "parse_schedule",
]

"""Test helpers: a controllable clock and an observer that records everything.

Usage::

    clock = ManualClock()
    recorder = RecordingObserver()
    engine = AutomationEngine(observers=[recorder], clock=clock)
    engine.schedule("sync", "5s", sync)

    await advance(engine.scheduler, clock, seconds=15)
    assert len(recorder.runs) == 3
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from autospine.core.timestamps import ensure_utc
from autospine.execution.observers import AutomationObserver
from autospine.scheduling.scheduler import Scheduler


class ManualClock:
    """A ``Clock`` that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = ensure_utc(start) if start else datetime(2024, 1, 1, tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: float | timedelta) -> datetime:
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        self._now += delta
        return self._now

    def set(self, value: datetime) -> None:
        self._now = ensure_utc(value)


@dataclass
class RecordingObserver(AutomationObserver):
    """Keeps every notification in a list for later assertions."""

    retries: list[tuple[Any, str, Any, float]] = field(default_factory=list)
    failures: list[tuple[Any, str, Any]] = field(default_factory=list)
    dispatches: list[Any] = field(default_factory=list)
    runs: list[Any] = field(default_factory=list)
    skipped: list[tuple[str, datetime, str]] = field(default_factory=list)
    fatal: list[Any] = field(default_factory=list)

    def on_delivery_retry(self, envelope, handler_id, error, delay):
        self.retries.append((envelope, handler_id, error, delay))

    def on_delivery_failed(self, envelope, handler_id, error):
        self.failures.append((envelope, handler_id, error))

    def on_dispatch_complete(self, result):
        self.dispatches.append(result)

    def on_job_run(self, run):
        self.runs.append(run)

    def on_job_skipped(self, job_name, scheduled_for, reason):
        self.skipped.append((job_name, scheduled_for, reason))

    def on_scheduler_fatal(self, error):
        self.fatal.append(error)

    def runs_for(self, job_name: str) -> list[Any]:
        return [run for run in self.runs if run.job_name == job_name]

    def skip_reasons(self, job_name: str) -> list[str]:
        return [reason for name, _, reason in self.skipped if name == job_name]


async def advance(
    scheduler: Scheduler,
    clock: ManualClock,
    seconds: float,
    *,
    step: float = 1.0,
    settle: bool = True,
) -> list[str]:
    """Move ``clock`` forward in ``step`` increments, firing due jobs at each step.

    With ``settle`` the helper waits for the runs started at each step
    (and any queued follow-ups) before moving on.

    Returns:
        Names of jobs started, in firing order.
    """
    started: list[str] = []
    elapsed = 0.0
    while elapsed < seconds:
        increment = min(step, seconds - elapsed)
        clock.advance(increment)
        elapsed += increment
        started.extend(await scheduler.run_due())
        if settle:
            await scheduler.join()
    return started


__all__ = ["ManualClock", "RecordingObserver", "advance"]

"""Job descriptors, runs and per-job scheduling state."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from autospine.core.errors import HandlerError, RegistrationError
from autospine.core.timestamps import to_iso8601
from autospine.events.envelope import Outcome
from autospine.execution.handlers import CancellationToken, Invoker
from autospine.scheduling.schedules import Schedule, parse_schedule


class ConcurrencyPolicy(str, Enum):
    """What to do when a job comes due while a previous run is still going.

    SKIP: drop the new firing (next due time still advances)
    QUEUE: run once more right after the current run (at most one pending)
    PARALLEL: start another instance regardless
    """

    SKIP = "skip"
    QUEUE = "queue"
    PARALLEL = "parallel"


class JobStatus(str, Enum):
    """Per-job state machine: IDLE -> DUE -> RUNNING -> IDLE."""

    IDLE = "idle"
    DUE = "due"
    RUNNING = "running"
    PAUSED = "paused"


class RunTrigger(str, Enum):
    SCHEDULE = "schedule"
    QUEUED = "queued"
    MANUAL = "manual"


@dataclass
class JobDescriptor:
    """A named unit of recurring work.

    Attributes:
        name: Unique within a scheduler; redefinition replaces
        schedule: Parsed interval or cron schedule
        handler: Callable taking ``()`` or ``(JobContext)``
        concurrency_policy: Overlap rule
        timeout: Per-run timeout in seconds (None = settings default, 0 disables)
        misfire_grace_seconds: Due times observed later than this are missed
        enabled: Disabled jobs keep their definition but never fire
    """

    name: str
    schedule: Schedule
    handler: Any
    concurrency_policy: ConcurrencyPolicy = ConcurrencyPolicy.SKIP
    timeout: float | None = None
    misfire_grace_seconds: float | None = None
    enabled: bool = True
    invoker: Invoker = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise RegistrationError(f"Job name must be a non-empty string, got {self.name!r}")
        self.schedule = parse_schedule(self.schedule)
        try:
            self.concurrency_policy = ConcurrencyPolicy(self.concurrency_policy)
        except ValueError as e:
            raise RegistrationError(
                f"Unknown concurrency policy {self.concurrency_policy!r} for job {self.name!r}"
            ) from e
        if self.timeout is not None and self.timeout < 0:
            raise RegistrationError(f"timeout must be >= 0, got {self.timeout}")
        if self.misfire_grace_seconds is not None and self.misfire_grace_seconds < 0:
            raise RegistrationError(
                f"misfire_grace_seconds must be >= 0, got {self.misfire_grace_seconds}"
            )
        self.invoker = Invoker.wrap(self.handler, supplied=1)


@dataclass(frozen=True)
class JobContext:
    """Handed to job handlers that accept one argument."""

    job_name: str
    scheduled_for: datetime
    token: CancellationToken
    trigger: RunTrigger = RunTrigger.SCHEDULE


@dataclass(frozen=True)
class JobRun:
    """Ephemeral record of one job execution, exposed to observers."""

    job_name: str
    scheduled_for: datetime
    started_at: datetime
    finished_at: datetime
    outcome: Outcome
    trigger: RunTrigger = RunTrigger.SCHEDULE
    error: HandlerError | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        result = {
            "job_name": self.job_name,
            "scheduled_for": to_iso8601(self.scheduled_for),
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
            "duration_seconds": round(self.duration_seconds, 6),
            "outcome": self.outcome.value,
            "trigger": self.trigger.value,
        }
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


@dataclass
class JobState:
    """Scheduler-internal bookkeeping for one job.

    ``generation`` changes on every redefinition so heap entries pushed
    for an older definition are recognized as stale and discarded.
    """

    descriptor: JobDescriptor
    generation: int
    next_fire: datetime | None = None
    running: set[asyncio.Task[JobRun]] = field(default_factory=set)
    tokens: set[CancellationToken] = field(default_factory=set)
    queued_for: datetime | None = None
    paused: bool = False
    last_run: JobRun | None = None
    run_count: int = 0

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def status(self) -> JobStatus:
        if self.paused or not self.descriptor.enabled:
            return JobStatus.PAUSED
        if self.running:
            return JobStatus.RUNNING
        return JobStatus.IDLE

    def status_at(self, now: datetime) -> JobStatus:
        """Like ``status``, but reports ``DUE`` once ``next_fire`` has passed."""
        status = self.status
        if status is JobStatus.IDLE and self.next_fire is not None and self.next_fire <= now:
            return JobStatus.DUE
        return status

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "schedule": self.descriptor.schedule.describe(),
            "concurrency_policy": self.descriptor.concurrency_policy.value,
            "status": self.status.value,
            "next_fire": to_iso8601(self.next_fire),
            "running": len(self.running),
            "queued": self.queued_for is not None,
            "run_count": self.run_count,
            "last_outcome": self.last_run.outcome.value if self.last_run else None,
        }


__all__ = [
    "ConcurrencyPolicy",
    "JobStatus",
    "RunTrigger",
    "JobDescriptor",
    "JobContext",
    "JobRun",
    "JobState",
]

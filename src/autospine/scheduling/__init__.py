"""Recurring-job scheduling.

Why This Package Exists
-----------------------
Periodic side effects (inventory sync, abandoned-cart sweeps, segment
recomputation) need a timer that respects per-job overlap rules and
survives failing jobs. The scheduler keeps due times in a heap, fires
whatever is due, and applies Skip / Queue / Parallel when a job is still
running at its next due time.

Usage::

    from autospine.scheduling import JobDescriptor, Scheduler

    scheduler = Scheduler()
    scheduler.schedule(JobDescriptor("sync", "5m", sync_inventory))
    scheduler.start()
    ...
    await scheduler.stop()

Modules
-------
schedules   IntervalSchedule, CronSchedule, parse_schedule
jobs        ConcurrencyPolicy, JobDescriptor, JobContext, JobRun, JobState
scheduler   Scheduler, SchedulerStats, SchedulerHealth
"""

from .jobs import (
    ConcurrencyPolicy,
    JobContext,
    JobDescriptor,
    JobRun,
    JobState,
    JobStatus,
    RunTrigger,
)
from .scheduler import Scheduler, SchedulerHealth, SchedulerStats
from .schedules import (
    CronSchedule,
    IntervalSchedule,
    Schedule,
    parse_duration,
    parse_schedule,
)

__all__ = [
    "Schedule",
    "IntervalSchedule",
    "CronSchedule",
    "parse_duration",
    "parse_schedule",
    "ConcurrencyPolicy",
    "JobStatus",
    "RunTrigger",
    "JobDescriptor",
    "JobContext",
    "JobRun",
    "JobState",
    "Scheduler",
    "SchedulerStats",
    "SchedulerHealth",
]

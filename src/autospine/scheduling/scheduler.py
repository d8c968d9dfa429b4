"""Recurring-job scheduler.

Manifesto:
    A scheduled sync that takes longer than its period must not pile up
    copies of itself, a failing job must not take the timer down with it,
    and shutting down must let running work finish instead of leaking it.
    The scheduler keeps due times in a min-heap, wakes exactly when the
    nearest one arrives, and applies each job's concurrency policy at the
    moment it comes due.

Tags:
    autospine, scheduling, heap, cron, interval, concurrency-policy, drain

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER ARCHITECTURE                                                       │
│                                                                               │
│   schedule(descriptor) ──► JobState(generation=n) ──► heap.push(due, name, n) │
│                                         │                                     │
│                                         ▼                                     │
│   ┌──────────────────────────── _run_loop ─────────────────────────────┐      │
│   │  wait(wakeup, timeout = heap[0].due - now)                         │      │
│   │  run_due(now):                                                     │      │
│   │     pop every entry with due <= now  (ties: ascending name)        │      │
│   │     ├── stale generation / paused      → discard                   │      │
│   │     ├── next_due = schedule.following(due, now)  → push            │      │
│   │     ├── past misfire grace             → missed                    │      │
│   │     └── _fire(state, due)                                          │      │
│   │           ├── idle            → start run task                     │      │
│   │           ├── running + SKIP  → skipped                            │      │
│   │           ├── running + QUEUE → queued once (further: coalesced)   │      │
│   │           └── running + PARALLEL → start another run               │      │
│   └────────────────────────────────────────────────────────────────────┘      │
│                                                                               │
│   run task: pool.slot() → handler(JobContext) → JobRun → observer.on_job_run  │
│             done → start the queued firing, if any                            │
│                                                                               │
│   stop(): cancel timer loop → drop queued → wait in-flight (timeout) →        │
│           signal cancellation tokens of stragglers                           │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from autospine.core.errors import (
    ErrorContext,
    HandlerError,
    HandlerTimeoutError,
    SchedulerFatalError,
)
from autospine.core.logging import LogContext, get_logger
from autospine.core.settings import AutomationSettings, get_settings
from autospine.core.timestamps import Clock, SystemClock, to_iso8601
from autospine.events.envelope import Outcome
from autospine.execution.handlers import CancellationToken, Invoker
from autospine.execution.observers import AutomationObserver, LoggingObserver
from autospine.execution.pool import HandlerPool
from autospine.scheduling.jobs import (
    ConcurrencyPolicy,
    JobContext,
    JobDescriptor,
    JobRun,
    JobState,
    JobStatus,
    RunTrigger,
)

logger = get_logger(__name__)


@dataclass
class SchedulerStats:
    """Statistics for the scheduler."""

    tick_count: int = 0
    fired: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    queued: int = 0
    coalesced: int = 0
    missed: int = 0
    last_tick: datetime | None = None


@dataclass
class SchedulerHealth:
    """Health status for the scheduler."""

    healthy: bool
    running: bool
    jobs: int = 0
    in_flight: int = 0
    next_fire: datetime | None = None
    fatal_error: str | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "running": self.running,
            "jobs": self.jobs,
            "in_flight": self.in_flight,
            "next_fire": to_iso8601(self.next_fire),
            "fatal_error": self.fatal_error,
            "stats": {
                "tick_count": self.stats.tick_count,
                "fired": self.stats.fired,
                "succeeded": self.stats.succeeded,
                "failed": self.stats.failed,
                "skipped": self.stats.skipped,
                "queued": self.stats.queued,
                "coalesced": self.stats.coalesced,
                "missed": self.stats.missed,
            },
        }


class Scheduler:
    """Fires due jobs according to their schedules and concurrency policies.

    Example:
        >>> scheduler = Scheduler()
        >>> scheduler.schedule(JobDescriptor("sync", "5m", sync_products))
        >>> scheduler.start()          # inside a running event loop
        >>> # ... later ...
        >>> await scheduler.stop()
    """

    def __init__(
        self,
        *,
        pool: HandlerPool | None = None,
        settings: AutomationSettings | None = None,
        observer: AutomationObserver | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.pool = pool or HandlerPool(self.settings.max_concurrency)
        self.observer = observer or LoggingObserver()
        self.clock = clock or SystemClock()

        self._jobs: dict[str, JobState] = {}
        self._heap: list[tuple[datetime, str, int]] = []
        self._generation = itertools.count(1)
        self._inflight: set[asyncio.Task[JobRun]] = set()
        self._tokens: set[CancellationToken] = set()
        self._wakeup: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._running = False
        self._stopping = False
        self._fatal: SchedulerFatalError | None = None
        self._stats = SchedulerStats()

    # === Definitions ===

    def schedule(self, descriptor: JobDescriptor) -> JobState:
        """Add or replace a job. Replacement resets its next-fire time.

        Runs of the previous definition that are still in flight keep
        counting toward the overlap policy.
        """
        prior = self._jobs.get(descriptor.name)
        state = JobState(descriptor, next(self._generation))
        if prior is not None:
            state.running = prior.running
            state.tokens = prior.tokens
            state.paused = prior.paused
            state.run_count = prior.run_count
            state.last_run = prior.last_run

        self._jobs[descriptor.name] = state
        self._arm(state, self.clock.now())

        logger.info(
            "job_scheduled",
            job_name=descriptor.name,
            schedule=descriptor.schedule.describe(),
            policy=descriptor.concurrency_policy.value,
            next_fire=to_iso8601(state.next_fire),
            replaced=prior is not None,
        )
        self._wake()
        return state

    def unschedule(self, name: str) -> bool:
        """Remove a job. In-flight runs finish; pending queued runs are dropped."""
        state = self._jobs.pop(name, None)
        if state is None:
            return False
        state.queued_for = None
        state.next_fire = None
        logger.info("job_unscheduled", job_name=name, in_flight=len(state.running))
        self._wake()
        return True

    def pause(self, name: str) -> bool:
        state = self._jobs.get(name)
        if state is None:
            return False
        state.paused = True
        state.next_fire = None
        state.queued_for = None
        logger.info("job_paused", job_name=name)
        self._wake()
        return True

    def resume(self, name: str) -> bool:
        state = self._jobs.get(name)
        if state is None:
            return False
        state.paused = False
        self._arm(state, self.clock.now())
        logger.info("job_resumed", job_name=name, next_fire=to_iso8601(state.next_fire))
        self._wake()
        return True

    def get(self, name: str) -> JobState | None:
        return self._jobs.get(name)

    def jobs(self) -> list[JobState]:
        return [self._jobs[name] for name in sorted(self._jobs)]

    def next_fire_time(self, name: str) -> datetime | None:
        state = self._jobs.get(name)
        return state.next_fire if state else None

    def status(self, name: str) -> JobStatus | None:
        """Current status of ``name`` as of the scheduler clock."""
        state = self._jobs.get(name)
        return state.status_at(self.clock.now()) if state else None

    def __contains__(self, name: str) -> bool:
        return name in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    # === Time keeping ===

    async def run_due(self, now: datetime | None = None) -> list[str]:
        """Fire every job due at or before ``now``.

        One step of the timer loop; tests drive it directly with a manual
        clock.

        Returns:
            Names of jobs whose firing started a run, in firing order.
        """
        now = now or self.clock.now()
        self._stats.tick_count += 1
        self._stats.last_tick = now
        started: list[str] = []

        while self._heap and self._heap[0][0] <= now:
            due, name, generation = heapq.heappop(self._heap)
            state = self._jobs.get(name)
            if state is None or state.generation != generation or state.next_fire != due:
                continue
            if state.paused or not state.descriptor.enabled:
                state.next_fire = None
                continue

            next_due, missed = state.descriptor.schedule.following(due, now)
            if next_due <= due:
                raise SchedulerFatalError(
                    f"Schedule for job {name!r} did not advance past {due.isoformat()}",
                    context=ErrorContext(job_name=name),
                )
            state.next_fire = next_due
            heapq.heappush(self._heap, (next_due, name, generation))
            if missed:
                self._stats.coalesced += missed
                logger.debug("job_catch_up", job_name=name, coalesced=missed)

            grace = state.descriptor.misfire_grace_seconds
            if grace is not None and (now - due).total_seconds() > grace:
                self._stats.missed += 1
                self.observer.on_job_skipped(name, due, "missed")
                continue

            if self._fire(state, due):
                started.append(name)

        return started

    def _fire(self, state: JobState, due: datetime) -> bool:
        policy = state.descriptor.concurrency_policy

        if state.running and policy is ConcurrencyPolicy.SKIP:
            self._stats.skipped += 1
            self.observer.on_job_skipped(state.name, due, "overlap")
            return False

        if state.running and policy is ConcurrencyPolicy.QUEUE:
            if state.queued_for is None:
                state.queued_for = due
                self._stats.queued += 1
                logger.debug("job_queued", job_name=state.name, scheduled_for=due.isoformat())
            else:
                self._stats.coalesced += 1
                self.observer.on_job_skipped(state.name, due, "coalesced")
            return False

        self._start_run(state, due, RunTrigger.SCHEDULE)
        return True

    def _start_run(self, state: JobState, due: datetime, trigger: RunTrigger) -> asyncio.Task[JobRun]:
        task = asyncio.get_running_loop().create_task(
            self._execute(state, due, trigger), name=f"autospine-job:{state.name}"
        )
        state.running.add(task)
        self._inflight.add(task)
        task.add_done_callback(lambda t, s=state: self._on_run_done(s, t))
        return task

    def _on_run_done(self, state: JobState, task: asyncio.Task[JobRun]) -> None:
        state.running.discard(task)
        self._inflight.discard(task)

        current = self._jobs.get(state.name)
        if current is None or self._stopping or current.running:
            return
        if current.queued_for is not None:
            due, current.queued_for = current.queued_for, None
            self._start_run(current, due, RunTrigger.QUEUED)

    async def _execute(self, state: JobState, due: datetime, trigger: RunTrigger) -> JobRun:
        descriptor = state.descriptor
        token = CancellationToken()
        state.tokens.add(token)
        self._tokens.add(token)
        context = JobContext(descriptor.name, due, token, trigger)
        timeout = descriptor.timeout if descriptor.timeout is not None else self.settings.job_timeout
        self._stats.fired += 1
        started_at = self.clock.now()
        error: HandlerError | None = None

        try:
            async with LogContext(job_name=descriptor.name, trigger=trigger.value):
                async with self.pool.slot():
                    await self._invoke(descriptor.invoker, context, timeout or None)
        except asyncio.CancelledError:
            error = HandlerError(
                "Job run cancelled", retryable=False, context=ErrorContext(job_name=descriptor.name)
            )
            raise
        except Exception as exc:
            error = HandlerError.from_exception(exc, job_name=descriptor.name)
        finally:
            state.tokens.discard(token)
            self._tokens.discard(token)
            run = JobRun(
                job_name=descriptor.name,
                scheduled_for=due,
                started_at=started_at,
                finished_at=self.clock.now(),
                outcome=Outcome.SUCCESS if error is None else Outcome.FAILURE,
                trigger=trigger,
                error=error,
            )
            state.last_run = run
            state.run_count += 1
            if error is None:
                self._stats.succeeded += 1
            else:
                self._stats.failed += 1
            self.observer.on_job_run(run)

        return run

    @staticmethod
    async def _invoke(invoker: Invoker, context: JobContext, timeout: float | None) -> None:
        if timeout is None:
            await invoker(context)
            return

        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                await invoker(context)
        except TimeoutError:
            if deadline.expired():
                raise HandlerTimeoutError(timeout) from None
            raise

    def _arm(self, state: JobState, now: datetime) -> None:
        if state.paused or not state.descriptor.enabled:
            state.next_fire = None
            return
        state.next_fire = state.descriptor.schedule.first_after(now)
        heapq.heappush(self._heap, (state.next_fire, state.name, state.generation))

    def _seconds_until_next(self) -> float | None:
        while self._heap:
            due, name, generation = self._heap[0]
            state = self._jobs.get(name)
            if state is None or state.generation != generation or state.next_fire != due:
                heapq.heappop(self._heap)
                continue
            return max(0.0, (due - self.clock.now()).total_seconds())
        return None

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    async def _run_loop(self) -> None:
        assert self._wakeup is not None
        logger.info("scheduler_loop_started", jobs=len(self._jobs))
        try:
            while not self._stopping:
                self._wakeup.clear()
                delay = self._seconds_until_next()
                if delay is None:
                    await self._wakeup.wait()
                elif delay > 0:
                    try:
                        await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
                    except TimeoutError:
                        pass
                if self._stopping:
                    break
                await self.run_due()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            fatal = (
                exc
                if isinstance(exc, SchedulerFatalError)
                else SchedulerFatalError(f"Scheduler loop crashed: {exc}", cause=exc)
            )
            self._fatal = fatal
            self._running = False
            self.observer.on_scheduler_fatal(fatal)
            return
        logger.info("scheduler_loop_stopped")

    # === Lifecycle ===

    def start(self) -> None:
        """Start the timer loop. Must be called from a running event loop.

        Due times are recomputed from now, so a job every 5 units started
        at t0 fires at t0+5, t0+10, ... Also clears a previous fatal error.
        """
        if self._running:
            logger.warning("scheduler_already_running")
            return

        loop = asyncio.get_running_loop()
        self._fatal = None
        self._stopping = False
        self._wakeup = asyncio.Event()

        now = self.clock.now()
        self._heap.clear()
        for state in self._jobs.values():
            self._arm(state, now)

        self._loop_task = loop.create_task(self._run_loop(), name="autospine-scheduler")
        self._running = True
        logger.info("scheduler_started", jobs=len(self._jobs))

    async def stop(self, timeout: float | None = None) -> int:
        """Stop firing and drain in-flight runs.

        Args:
            timeout: Seconds to wait for running jobs (None = wait indefinitely)

        Returns:
            Number of runs still in flight when the wait ended; their
            cancellation tokens have been signalled.
        """
        self._stopping = True
        self._running = False
        for state in self._jobs.values():
            state.queued_for = None

        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        pending = set(self._inflight)
        if not pending:
            logger.info("scheduler_stopped", in_flight=0)
            return 0

        logger.info("scheduler_draining", in_flight=len(pending), timeout=timeout)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            self.cancel_inflight("scheduler drain timed out")
            logger.warning("scheduler_drain_timeout", in_flight=len(still_running))
        logger.info("scheduler_stopped", in_flight=len(still_running))
        return len(still_running)

    async def trigger(self, name: str) -> JobRun:
        """Run a job now, outside its schedule, and wait for the result.

        Raises:
            KeyError: If the job is not scheduled
        """
        state = self._jobs.get(name)
        if state is None:
            raise KeyError(f"Job not found: {name}")
        task = self._start_run(state, self.clock.now(), RunTrigger.MANUAL)
        return await asyncio.shield(task)

    async def join(self) -> None:
        """Wait until no run is in flight, including queued follow-up runs."""
        while self._inflight:
            await asyncio.wait(set(self._inflight))

    def cancel_inflight(self, reason: str = "shutdown") -> int:
        """Signal the cancellation token of every running job."""
        tokens = list(self._tokens)
        for token in tokens:
            token.cancel(reason)
        return len(tokens)

    @property
    def is_running(self) -> bool:
        return self._running and self._loop_task is not None and not self._loop_task.done()

    @property
    def fatal_error(self) -> SchedulerFatalError | None:
        return self._fatal

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    def health(self) -> SchedulerHealth:
        upcoming = [s.next_fire for s in self._jobs.values() if s.next_fire is not None]
        return SchedulerHealth(
            healthy=self.is_running and self._fatal is None,
            running=self.is_running,
            jobs=len(self._jobs),
            in_flight=len(self._inflight),
            next_fire=min(upcoming) if upcoming else None,
            fatal_error=self._fatal.message if self._fatal else None,
            stats=self._stats,
        )

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()


__all__ = ["Scheduler", "SchedulerStats", "SchedulerHealth"]

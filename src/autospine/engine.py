"""Automation engine: the composition root.

Manifesto:
    Domain services should not know who reacts to their events or when
    their periodic jobs run. The engine is the single explicit object they
    talk to: ``publish`` an event, ``subscribe`` a handler, ``schedule`` a
    job. It builds the registry, dispatcher and scheduler, shares one
    handler pool and one observer set between them, and owns their
    start/stop lifecycle. There is no process-wide singleton; create as
    many engines as you need.

┌──────────────────────────────────────────────────────────────────────────────┐
│  AUTOMATION ENGINE                                                            │
│                                                                               │
│   collaborators ──► publish / subscribe / schedule                            │
│                          │          │          │                              │
│                          ▼          ▼          ▼                              │
│                     Dispatcher ◄─ Registry   Scheduler ──► job handler        │
│                          │                       │            │               │
│                          └───── HandlerPool ─────┘            │               │
│                          │                                    │               │
│                          └──── ObserverSet ◄──────────────────┘               │
│                                                                               │
│   Lifecycle:  CREATED ──start()──► RUNNING ──stop()──► STOPPED ──start()──┐   │
│                                        ▲                                  │   │
│                                        └──────────────────────────────────┘   │
└──────────────────────────────────────────────────────────────────────────────┘

Example:
    >>> engine = AutomationEngine()
    >>> @engine.on("order.placed")
    ... async def notify(envelope):
    ...     await mailer.send(envelope.payload["customerId"])
    >>> @engine.every("5m")
    ... async def sync_inventory(ctx):
    ...     await engine.publish("inventory.synced", {"at": ctx.scheduled_for.isoformat()})
    >>> async with engine:
    ...     await engine.publish("order.placed", {"customerId": "c1"})

Tags:
    autospine, engine, composition-root, lifecycle, publish, subscribe, schedule

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from autospine.core.errors import EngineStateError
from autospine.core.logging import get_logger
from autospine.core.settings import AutomationSettings, get_settings
from autospine.core.timestamps import Clock
from autospine.events.dispatcher import Dispatcher, DispatchStats
from autospine.events.envelope import DispatchResult
from autospine.events.registry import Subscription, SubscriptionOptions, SubscriptionRegistry
from autospine.execution.observers import AutomationObserver, LoggingObserver, ObserverSet
from autospine.execution.pool import HandlerPool
from autospine.execution.retry import RetryStrategy
from autospine.scheduling.jobs import ConcurrencyPolicy, JobDescriptor, JobRun, JobState
from autospine.scheduling.scheduler import Scheduler, SchedulerHealth
from autospine.scheduling.schedules import parse_schedule

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Stands in for "use settings.drain_timeout" so None can mean "wait forever".
_DRAIN_DEFAULT: Any = object()


class EngineState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class EngineHealth:
    """Point-in-time health snapshot of an engine."""

    state: EngineState
    healthy: bool
    subscriptions: int = 0
    active_handlers: int = 0
    pending_publishes: int = 0
    dispatch: DispatchStats = field(default_factory=DispatchStats)
    scheduler: SchedulerHealth | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "healthy": self.healthy,
            "subscriptions": self.subscriptions,
            "active_handlers": self.active_handlers,
            "pending_publishes": self.pending_publishes,
            "dispatch": {
                "published": self.dispatch.published,
                "deliveries": self.dispatch.deliveries,
                "succeeded": self.dispatch.succeeded,
                "failed": self.dispatch.failed,
                "retries": self.dispatch.retries,
            },
            "scheduler": self.scheduler.to_dict() if self.scheduler else None,
        }


def _default_handler_id(func: Callable[..., Any]) -> str:
    module = getattr(func, "__module__", None) or "handler"
    name = getattr(func, "__qualname__", None) or type(func).__name__
    return f"{module}.{name}"


def _default_job_name(func: Callable[..., Any]) -> str:
    target = getattr(func, "func", func)
    return getattr(target, "__name__", None) or type(target).__name__


class AutomationEngine:
    """Wires a registry, dispatcher and scheduler behind one explicit object.

    Args:
        settings: Engine settings (defaults to ``get_settings()``)
        observers: Extra observers; a ``LoggingObserver`` is always installed
        clock: Time source for the scheduler (tests pass a ``ManualClock``)
        registry: Pre-populated subscription registry to share
    """

    def __init__(
        self,
        settings: AutomationSettings | None = None,
        *,
        observers: Iterable[AutomationObserver] = (),
        clock: Clock | None = None,
        registry: SubscriptionRegistry | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.observers = ObserverSet([LoggingObserver(), *observers])
        self.pool = HandlerPool(self.settings.max_concurrency)
        self.registry = registry if registry is not None else SubscriptionRegistry()
        self.dispatcher = Dispatcher(
            self.registry,
            pool=self.pool,
            settings=self.settings,
            observer=self.observers,
            source=self.settings.service_name,
        )
        self.scheduler = Scheduler(
            pool=self.pool,
            settings=self.settings,
            observer=self.observers,
            clock=clock,
        )
        self._state = EngineState.CREATED

    # === Events ===

    async def publish(
        self,
        event_name: str,
        payload: Mapping[str, Any] | None = None,
        *,
        source: str | None = None,
        correlation_id: str | None = None,
    ) -> DispatchResult:
        """Publish an event and wait for every subscriber to settle.

        Handler failures are reported in the result and to observers, never
        raised here.

        Raises:
            InvalidEventNameError: Malformed event name
            EngineStateError: Engine has been stopped
        """
        self._check_open(event_name)
        return await self.dispatcher.publish(
            event_name, payload, source=source, correlation_id=correlation_id
        )

    def publish_nowait(
        self,
        event_name: str,
        payload: Mapping[str, Any] | None = None,
        *,
        source: str | None = None,
        correlation_id: str | None = None,
    ) -> asyncio.Task[DispatchResult]:
        """Fire-and-forget publish; ``stop()`` drains the returned task."""
        self._check_open(event_name)
        return self.dispatcher.publish_nowait(
            event_name, payload, source=source, correlation_id=correlation_id
        )

    def subscribe(
        self,
        event_name: str,
        handler_id: str,
        handler: Any,
        *,
        max_retries: int | None = None,
        retry_backoff: RetryStrategy | None = None,
        timeout: float | None = None,
    ) -> Subscription:
        """Register ``handler`` for ``event_name`` (exact name or ``prefix.*`` / ``*``).

        Re-subscribing the same ``handler_id`` replaces the previous handler.

        Raises:
            RegistrationError: Invalid name, handler id, handler or options
        """
        options = SubscriptionOptions(
            max_retries=max_retries, retry_backoff=retry_backoff, timeout=timeout
        )
        return self.registry.register(event_name, handler_id, handler, options)

    def unsubscribe(self, event_name: str, handler_id: str) -> bool:
        return self.registry.unregister(event_name, handler_id)

    def on(self, event_name: str, handler_id: str | None = None, **options: Any) -> Callable[[F], F]:
        """Decorator form of ``subscribe``.

        The handler id defaults to the function's qualified name.
        """

        def decorator(func: F) -> F:
            self.subscribe(event_name, handler_id or _default_handler_id(func), func, **options)
            return func

        return decorator

    # === Jobs ===

    def schedule(
        self,
        name: str,
        interval_spec: Any,
        handler: Any,
        concurrency_policy: ConcurrencyPolicy | str | None = None,
        *,
        timeout: float | None = None,
        misfire_grace_seconds: float | None = None,
        timezone: str = "UTC",
        enabled: bool = True,
    ) -> JobDescriptor:
        """Define (or redefine) a recurring job.

        Raises:
            InvalidScheduleError: ``interval_spec`` cannot be parsed
            RegistrationError: Invalid name, handler or policy
        """
        descriptor = JobDescriptor(
            name=name,
            schedule=parse_schedule(interval_spec, timezone),
            handler=handler,
            concurrency_policy=concurrency_policy or self.settings.concurrency_policy(),
            timeout=timeout,
            misfire_grace_seconds=misfire_grace_seconds,
            enabled=enabled,
        )
        self.scheduler.schedule(descriptor)
        return descriptor

    def unschedule(self, name: str) -> bool:
        return self.scheduler.unschedule(name)

    def every(self, interval_spec: Any, name: str | None = None, **options: Any) -> Callable[[F], F]:
        """Decorator form of ``schedule``; the job name defaults to the function name."""

        def decorator(func: F) -> F:
            self.schedule(name or _default_job_name(func), interval_spec, func, **options)
            return func

        return decorator

    async def trigger(self, name: str) -> JobRun:
        """Run a job immediately and return its run record."""
        return await self.scheduler.trigger(name)

    def pause(self, name: str) -> bool:
        return self.scheduler.pause(name)

    def resume(self, name: str) -> bool:
        return self.scheduler.resume(name)

    def jobs(self) -> list[JobState]:
        return self.scheduler.jobs()

    def next_fire_time(self, name: str) -> datetime | None:
        return self.scheduler.next_fire_time(name)

    # === Lifecycle ===

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is EngineState.RUNNING

    async def start(self) -> None:
        """Start the scheduler's timer loop and accept publishes."""
        if self._state is EngineState.RUNNING:
            logger.warning("engine_already_running", service=self.settings.service_name)
            return

        self.dispatcher.reopen()
        self.scheduler.start()
        self._state = EngineState.RUNNING
        logger.info(
            "engine_started",
            service=self.settings.service_name,
            subscriptions=len(self.registry),
            jobs=len(self.scheduler),
            max_concurrency=self.settings.max_concurrency,
        )

    async def stop(self, timeout: float | None = _DRAIN_DEFAULT) -> int:
        """Graceful shutdown.

        Stops firing jobs, waits for running jobs (which may still publish),
        then rejects new publishes and waits for fire-and-forget dispatches.
        Nothing is force-cancelled; when ``timeout`` elapses the cancellation
        tokens of unfinished work are signalled.

        Args:
            timeout: Total drain budget in seconds; ``None`` waits indefinitely
                (default: ``settings.drain_timeout``)

        Returns:
            Number of job runs and dispatches still in flight at the deadline.
        """
        if self._state is EngineState.STOPPED:
            return 0
        if timeout is _DRAIN_DEFAULT:
            timeout = self.settings.drain_timeout

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        def remaining() -> float | None:
            return None if deadline is None else max(0.0, deadline - loop.time())

        logger.info("engine_stopping", service=self.settings.service_name, timeout=timeout)
        jobs_left = await self.scheduler.stop(timeout=remaining())
        self.dispatcher.close()
        publishes_left = await self.dispatcher.drain(timeout=remaining())
        if jobs_left or publishes_left:
            self.dispatcher.cancel_inflight("engine stopped")
        self._state = EngineState.STOPPED

        logger.info(
            "engine_stopped",
            service=self.settings.service_name,
            jobs_in_flight=jobs_left,
            publishes_in_flight=publishes_left,
        )
        return jobs_left + publishes_left

    async def __aenter__(self) -> AutomationEngine:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    def health(self) -> EngineHealth:
        scheduler = self.scheduler.health()
        healthy = self._state is EngineState.RUNNING and scheduler.healthy
        return EngineHealth(
            state=self._state,
            healthy=healthy,
            subscriptions=len(self.registry),
            active_handlers=self.pool.active,
            pending_publishes=self.dispatcher.pending,
            dispatch=self.dispatcher.stats,
            scheduler=scheduler,
        )

    def _check_open(self, event_name: str) -> None:
        if self._state is EngineState.STOPPED:
            raise EngineStateError(f"Engine stopped; cannot publish {event_name!r}")

    def __repr__(self) -> str:
        return (
            f"AutomationEngine(state={self._state.value}, "
            f"subscriptions={len(self.registry)}, jobs={len(self.scheduler)})"
        )


__all__ = ["AutomationEngine", "EngineState", "EngineHealth"]

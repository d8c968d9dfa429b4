"""Observer hooks for dispatch and scheduling outcomes.

Handler failures never propagate to publishers; they surface here.
Observers are plain synchronous callbacks invoked on the event loop, so
they must be quick (append to a list, log, increment a metric).

Manifesto:
    One misbehaving subscriber cannot block or crash unrelated automation
    flows, but its failure must still be visible somewhere. Observers are
    that somewhere: ``LoggingObserver`` is always installed, collaborators
    add their own for alerting or external run logs.

Tags:
    autospine, observability, hooks, job-runs, delivery-failures

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING

from autospine.core.logging import get_logger

if TYPE_CHECKING:
    from autospine.core.errors import HandlerError, SchedulerFatalError
    from autospine.events import DispatchResult, EventEnvelope
    from autospine.scheduling.jobs import JobRun

logger = get_logger(__name__)


class AutomationObserver:
    """Base observer. Override the hooks you care about; the rest are no-ops."""

    def on_delivery_retry(
        self, envelope: EventEnvelope, handler_id: str, error: HandlerError, delay: float
    ) -> None:
        """A delivery attempt failed and will be retried after ``delay`` seconds."""

    def on_delivery_failed(
        self, envelope: EventEnvelope, handler_id: str, error: HandlerError
    ) -> None:
        """A delivery failed and retries are exhausted."""

    def on_dispatch_complete(self, result: DispatchResult) -> None:
        """Every subscriber of one publish call has settled."""

    def on_job_run(self, run: JobRun) -> None:
        """A job run finished (success or failure)."""

    def on_job_skipped(self, job_name: str, scheduled_for: datetime, reason: str) -> None:
        """A due firing produced no run (overlap, coalesced, missed, paused)."""

    def on_scheduler_fatal(self, error: SchedulerFatalError) -> None:
        """The scheduler loop halted and must be restarted explicitly."""


class LoggingObserver(AutomationObserver):
    """Writes every outcome to the structured log."""

    def on_delivery_retry(self, envelope, handler_id, error, delay):
        logger.warning(
            "delivery_retry",
            event_name=envelope.name,
            event_id=envelope.event_id,
            handler_id=handler_id,
            attempt=envelope.attempt,
            delay=round(delay, 3),
            error=error.message,
        )

    def on_delivery_failed(self, envelope, handler_id, error):
        logger.error(
            "delivery_failed",
            event_name=envelope.name,
            event_id=envelope.event_id,
            handler_id=handler_id,
            attempts=envelope.attempt,
            **error.to_dict(),
        )

    def on_dispatch_complete(self, result):
        logger.debug(
            "event_dispatched",
            event_name=result.event.name,
            event_id=result.event.event_id,
            handlers=len(result),
            failed=len(result.failed),
        )

    def on_job_run(self, run):
        if run.error is not None:
            logger.error("job_failed", **run.to_dict())
        else:
            logger.info("job_completed", **run.to_dict())

    def on_job_skipped(self, job_name, scheduled_for, reason):
        logger.info(
            "job_skipped",
            job_name=job_name,
            scheduled_for=scheduled_for.isoformat(),
            reason=reason,
        )

    def on_scheduler_fatal(self, error):
        logger.critical("scheduler_fatal", **error.to_dict())


class ObserverSet(AutomationObserver):
    """Fans a notification out to several observers.

    An observer that raises is logged and skipped; the remaining observers
    still receive the notification.
    """

    def __init__(self, observers: Iterable[AutomationObserver] = ()) -> None:
        self._observers: list[AutomationObserver] = list(observers)

    def add(self, observer: AutomationObserver) -> None:
        self._observers.append(observer)

    def remove(self, observer: AutomationObserver) -> None:
        self._observers.remove(observer)

    def __len__(self) -> int:
        return len(self._observers)

    def __iter__(self):
        return iter(self._observers)

    def _notify(self, hook: str, *args) -> None:
        for observer in self._observers:
            method = getattr(observer, hook, None)
            if method is None:
                continue
            try:
                method(*args)
            except Exception as e:
                logger.warning(
                    "observer_error",
                    observer=type(observer).__name__,
                    hook=hook,
                    error=str(e),
                )

    def on_delivery_retry(self, envelope, handler_id, error, delay):
        self._notify("on_delivery_retry", envelope, handler_id, error, delay)

    def on_delivery_failed(self, envelope, handler_id, error):
        self._notify("on_delivery_failed", envelope, handler_id, error)

    def on_dispatch_complete(self, result):
        self._notify("on_dispatch_complete", result)

    def on_job_run(self, run):
        self._notify("on_job_run", run)

    def on_job_skipped(self, job_name, scheduled_for, reason):
        self._notify("on_job_skipped", job_name, scheduled_for, reason)

    def on_scheduler_fatal(self, error):
        self._notify("on_scheduler_fatal", error)


__all__ = ["AutomationObserver", "LoggingObserver", "ObserverSet"]

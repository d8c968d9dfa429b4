"""Event dispatcher.

Manifesto:
    Publishing an event must never be hostage to its subscribers. Each
    subscriber runs in its own task, isolated from the others, retried
    per its own policy and bounded by its own timeout. Whatever happens,
    the publisher gets a settled ``DispatchResult`` back and failures
    surface through observers, never as exceptions.

┌──────────────────────────────────────────────────────────────────────────────┐
│  DISPATCH FLOW                                                                │
│                                                                               │
│   publish("order.placed", payload)                                            │
│      │                                                                        │
│      ▼                                                                        │
│   registry.lookup(name)  ── snapshot, registration order                     │
│      │                                                                        │
│      ▼                                                                        │
│   create_task(_deliver(sub_A))   create_task(_deliver(sub_B))   ...          │
│      │  (initiation order = registration order; completion order free)       │
│      ▼                                                                        │
│   _deliver:                                                                   │
│      ├── pool.slot()            bounded concurrency                           │
│      ├── asyncio.timeout(t)     per-attempt timeout                           │
│      ├── handler(envelope, token)                                             │
│      ├── on failure: backoff.next_delay → sleep → attempt + 1                │
│      └── exhausted: observer.on_delivery_failed → DeliveryResult(FAILURE)    │
│      │                                                                        │
│      ▼                                                                        │
│   pool.yielded(): gather(...)   ── re-entrant publish can't starve the pool  │
│      │                                                                        │
│      ▼                                                                        │
│   DispatchResult(event, deliveries)                                           │
└──────────────────────────────────────────────────────────────────────────────┘

Tags:
    autospine, events, dispatcher, retry, timeout, fan-out, re-entrant

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Mapping
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any

from autospine.core.errors import EngineStateError, HandlerError, HandlerTimeoutError
from autospine.core.logging import LogContext, get_logger
from autospine.core.settings import AutomationSettings, get_settings
from autospine.core.timestamps import utc_now
from autospine.events.envelope import (
    DeliveryResult,
    DispatchResult,
    EventEnvelope,
    Outcome,
    validate_event_name,
)
from autospine.events.registry import Subscription, SubscriptionRegistry
from autospine.execution.handlers import CancellationToken
from autospine.execution.observers import AutomationObserver, LoggingObserver
from autospine.execution.pool import HandlerPool
from autospine.execution.retry import RetryStrategy

logger = get_logger(__name__)

# Dispatcher whose delivery the current task is running inside, if any.
_delivering: ContextVar[Dispatcher | None] = ContextVar("autospine_delivering", default=None)


@dataclass
class DispatchStats:
    """Counters for dispatcher activity."""

    published: int = 0
    deliveries: int = 0
    succeeded: int = 0
    failed: int = 0
    retries: int = 0


class Dispatcher:
    """Resolves subscribers for an event and delivers it to each of them.

    Example:
        >>> registry = SubscriptionRegistry()
        >>> registry.register("order.placed", "count", handler)
        >>> dispatcher = Dispatcher(registry)
        >>> result = await dispatcher.publish("order.placed", {"customerId": "c1"})
        >>> result.ok
        True
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        *,
        pool: HandlerPool | None = None,
        settings: AutomationSettings | None = None,
        observer: AutomationObserver | None = None,
        source: str = "autospine",
    ) -> None:
        self.registry = registry
        self.settings = settings or get_settings()
        self.pool = pool or HandlerPool(self.settings.max_concurrency)
        self.observer = observer or LoggingObserver()
        self.source = source

        self._pending: set[asyncio.Task[DispatchResult]] = set()
        self._tokens: set[CancellationToken] = set()
        self._closed = False
        self._stats = DispatchStats()

    # === Publishing ===

    async def publish(
        self,
        event_name: str,
        payload: Mapping[str, Any] | None = None,
        *,
        source: str | None = None,
        correlation_id: str | None = None,
    ) -> DispatchResult:
        """Publish an event and wait until every subscriber has settled.

        Raises:
            InvalidEventNameError: Malformed event name
            EngineStateError: Dispatcher already closed
        """
        envelope = self._envelope(event_name, payload, source, correlation_id)
        return await self._dispatch(envelope)

    def publish_nowait(
        self,
        event_name: str,
        payload: Mapping[str, Any] | None = None,
        *,
        source: str | None = None,
        correlation_id: str | None = None,
    ) -> asyncio.Task[DispatchResult]:
        """Fire-and-forget publish.

        The returned task is tracked so ``drain()`` can wait for it. Must be
        called from a running event loop.
        """
        envelope = self._envelope(event_name, payload, source, correlation_id)
        task = asyncio.get_running_loop().create_task(
            self._dispatch(envelope), name=f"autospine-publish:{event_name}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def dispatch(self, envelope: EventEnvelope) -> DispatchResult:
        """Deliver a pre-built envelope to its current subscribers."""
        self._check_open(envelope.name)
        return await self._dispatch(envelope)

    async def _dispatch(self, envelope: EventEnvelope) -> DispatchResult:
        self._stats.published += 1
        subscriptions = self.registry.lookup(envelope.name)

        if not subscriptions:
            logger.debug("event_unhandled", event_name=envelope.name, event_id=envelope.event_id)
            result = DispatchResult(envelope)
            self.observer.on_dispatch_complete(result)
            return result

        tasks = [
            asyncio.create_task(
                self._deliver(sub, envelope),
                name=f"autospine-deliver:{envelope.name}:{sub.handler_id}",
            )
            for sub in subscriptions
        ]

        async with self.pool.yielded():
            deliveries = await asyncio.gather(*tasks)

        result = DispatchResult(envelope, tuple(deliveries))
        self.observer.on_dispatch_complete(result)
        return result

    # === Delivery ===

    async def _deliver(self, sub: Subscription, envelope: EventEnvelope) -> DeliveryResult:
        strategy = self._strategy_for(sub)
        timeout = self._timeout_for(sub)
        token = CancellationToken()
        self._tokens.add(token)
        _delivering.set(self)
        started_at = utc_now()
        attempt = 1
        self._stats.deliveries += 1

        try:
            async with LogContext(
                event_name=envelope.name,
                event_id=envelope.event_id,
                handler_id=sub.handler_id,
            ):
                while True:
                    current = envelope if attempt == 1 else envelope.with_attempt(attempt)
                    try:
                        async with self.pool.slot():
                            await self._invoke(sub, current, token, timeout)
                    except asyncio.CancelledError:
                        raise
                    except Exception as exc:
                        error = HandlerError.from_exception(
                            exc,
                            event_name=envelope.name,
                            handler_id=sub.handler_id,
                            attempt=attempt,
                        )
                        retries_done = attempt - 1
                        if not token.cancelled and strategy.should_retry(retries_done, error):
                            delay = strategy.next_delay(retries_done)
                            self._stats.retries += 1
                            self.observer.on_delivery_retry(current, sub.handler_id, error, delay)
                            if delay > 0:
                                await asyncio.sleep(delay)
                            attempt += 1
                            continue

                        self._stats.failed += 1
                        self.observer.on_delivery_failed(current, sub.handler_id, error)
                        return DeliveryResult(
                            handler_id=sub.handler_id,
                            outcome=Outcome.FAILURE,
                            attempts=attempt,
                            envelope=current,
                            started_at=started_at,
                            finished_at=utc_now(),
                            error=error,
                        )

                    self._stats.succeeded += 1
                    return DeliveryResult(
                        handler_id=sub.handler_id,
                        outcome=Outcome.SUCCESS,
                        attempts=attempt,
                        envelope=current,
                        started_at=started_at,
                        finished_at=utc_now(),
                    )
        finally:
            self._tokens.discard(token)

    @staticmethod
    async def _invoke(
        sub: Subscription,
        envelope: EventEnvelope,
        token: CancellationToken,
        timeout: float | None,
    ) -> None:
        if not timeout:
            await sub.invoker(envelope, token)
            return

        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                await sub.invoker(envelope, token)
        except TimeoutError:
            if deadline.expired():
                raise HandlerTimeoutError(timeout) from None
            raise

    def _strategy_for(self, sub: Subscription) -> RetryStrategy:
        options = sub.options
        strategy = options.retry_backoff or self.settings.default_retry_strategy()
        if options.max_retries is not None and options.max_retries != strategy.max_retries:
            strategy = dataclasses.replace(strategy, max_retries=options.max_retries)
        return strategy

    def _timeout_for(self, sub: Subscription) -> float | None:
        if sub.options.timeout is not None:
            return sub.options.timeout or None
        return self.settings.handler_timeout

    def _envelope(
        self,
        event_name: str,
        payload: Mapping[str, Any] | None,
        source: str | None,
        correlation_id: str | None,
    ) -> EventEnvelope:
        self._check_open(event_name)
        validate_event_name(event_name)
        return EventEnvelope(
            name=event_name,
            payload=payload or {},
            source=source or self.source,
            correlation_id=correlation_id,
        )

    # === Lifecycle ===

    async def drain(self, timeout: float | None = None) -> int:
        """Wait for fire-and-forget dispatches to settle.

        Dispatches started by handlers while draining are waited for too.
        On timeout the cancellation tokens of in-flight deliveries are
        signalled; nothing is force-cancelled.

        Returns:
            Number of dispatches still pending.
        """
        if not self._pending:
            return 0

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        logger.info("dispatcher_draining", pending=len(self._pending), timeout=timeout)
        while True:
            pending = {task for task in self._pending if not task.done()}
            if not pending:
                return 0
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            _, still_pending = await asyncio.wait(pending, timeout=remaining)
            if still_pending:
                break

        logger.warning("dispatcher_drain_timeout", pending=len(still_pending))
        self.cancel_inflight("dispatcher drain timed out")
        return len(still_pending)

    def cancel_inflight(self, reason: str = "shutdown") -> int:
        """Signal every in-flight delivery's cancellation token."""
        tokens = list(self._tokens)
        for token in tokens:
            token.cancel(reason)
        return len(tokens)

    def close(self) -> None:
        """Reject further top-level publishes.

        Publishes made from inside a running delivery are still accepted so
        in-flight event chains can finish while draining.
        """
        self._closed = True

    def reopen(self) -> None:
        self._closed = False

    def _check_open(self, event_name: str) -> None:
        if self._closed and _delivering.get() is not self:
            raise EngineStateError(f"Dispatcher closed; cannot publish {event_name!r}")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Fire-and-forget dispatches not yet settled."""
        return len(self._pending)

    @property
    def stats(self) -> DispatchStats:
        return self._stats


__all__ = ["Dispatcher", "DispatchStats"]

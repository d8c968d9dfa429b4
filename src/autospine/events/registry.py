"""Subscription registry.

Manifesto:
    Dispatch must see a consistent set of subscribers even while
    collaborators subscribe and unsubscribe concurrently. The registry
    is copy-on-write: writers serialize on a lock and publish a brand
    new immutable mapping; readers grab the current mapping reference
    without locking and never observe a half-applied change.

Ordering:
    Every subscription gets a global sequence number the first time its
    ``(event_name, handler_id)`` pair is registered. ``lookup()`` returns
    matching subscriptions sorted by that number, so invocation order is
    registration order across exact and wildcard subscriptions alike.
    Re-registering the same pair replaces handler and options in place.

Tags:
    autospine, events, registry, copy-on-write, subscriptions

Doc-Types:
    api-reference
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from autospine.core.errors import RegistrationError
from autospine.core.logging import get_logger
from autospine.events.envelope import is_wildcard, pattern_matches, validate_pattern
from autospine.execution.handlers import Invoker
from autospine.execution.retry import RetryStrategy

logger = get_logger(__name__)


@dataclass(frozen=True)
class SubscriptionOptions:
    """Per-subscription delivery policy.

    ``None`` fields fall back to the engine settings when the dispatcher
    resolves them.

    Attributes:
        max_retries: Retries after the first failed attempt
        retry_backoff: Delay strategy between attempts
        timeout: Per-attempt timeout in seconds (0 disables)
    """

    max_retries: int | None = None
    retry_backoff: RetryStrategy | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.max_retries is not None and self.max_retries < 0:
            raise RegistrationError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.timeout is not None and self.timeout < 0:
            raise RegistrationError(f"timeout must be >= 0, got {self.timeout}")


@dataclass(frozen=True)
class Subscription:
    """One handler registered for one event name or pattern."""

    event_name: str
    handler_id: str
    invoker: Invoker
    options: SubscriptionOptions = field(default_factory=SubscriptionOptions)
    sequence: int = 0

    @property
    def handler(self) -> Any:
        """The collaborator-supplied handler object."""
        return self.invoker.target

    @property
    def is_pattern(self) -> bool:
        return is_wildcard(self.event_name)

    def matches(self, name: str) -> bool:
        return pattern_matches(self.event_name, name)


class SubscriptionRegistry:
    """Maps event names (and patterns) to ordered subscriptions."""

    def __init__(self) -> None:
        self._write_lock = threading.Lock()
        self._sequence = itertools.count(1)
        self._exact: MappingProxyType[str, tuple[Subscription, ...]] = MappingProxyType({})
        self._patterns: tuple[Subscription, ...] = ()

    def register(
        self,
        event_name: str,
        handler_id: str,
        handler: Any,
        options: SubscriptionOptions | None = None,
    ) -> Subscription:
        """Idempotent upsert of ``handler_id`` under ``event_name``.

        Raises:
            RegistrationError: Invalid event name/pattern, handler id or handler.
        """
        validate_pattern(event_name)
        if not isinstance(handler_id, str) or not handler_id.strip():
            raise RegistrationError(f"handler_id must be a non-empty string, got {handler_id!r}")
        invoker = Invoker.wrap(handler, supplied=2, required=1)
        options = options or SubscriptionOptions()

        with self._write_lock:
            existing = self._find(event_name, handler_id)
            if existing is not None:
                sub = replace(existing, invoker=invoker, options=options)
            else:
                sub = Subscription(event_name, handler_id, invoker, options, next(self._sequence))
            self._store(sub, replacing=existing)

        logger.debug(
            "subscription_registered",
            event_name=event_name,
            handler_id=handler_id,
            handler=invoker.name,
            replaced=existing is not None,
        )
        return sub

    def unregister(self, event_name: str, handler_id: str) -> bool:
        """Remove a subscription. Returns False (no-op) if absent."""
        with self._write_lock:
            existing = self._find(event_name, handler_id)
            if existing is None:
                return False
            self._store(None, replacing=existing)
        logger.debug("subscription_removed", event_name=event_name, handler_id=handler_id)
        return True

    def lookup(self, event_name: str) -> tuple[Subscription, ...]:
        """Snapshot of subscriptions matching ``event_name``, in registration order.

        Never fails; unknown names yield an empty tuple.
        """
        exact = self._exact
        patterns = self._patterns
        found = exact.get(event_name, ())
        matched = [p for p in patterns if p.matches(event_name)]
        if not matched:
            return found
        return tuple(sorted((*found, *matched), key=lambda s: s.sequence))

    def handler_ids(self, event_name: str) -> list[str]:
        return [sub.handler_id for sub in self.lookup(event_name)]

    def subscriptions(self) -> list[Subscription]:
        """Every registered subscription, in registration order."""
        exact = self._exact
        subs = [s for group in exact.values() for s in group]
        subs.extend(self._patterns)
        return sorted(subs, key=lambda s: s.sequence)

    def clear(self) -> None:
        with self._write_lock:
            self._exact = MappingProxyType({})
            self._patterns = ()

    def __len__(self) -> int:
        return sum(len(group) for group in self._exact.values()) + len(self._patterns)

    def __contains__(self, key: tuple[str, str]) -> bool:
        event_name, handler_id = key
        return self._find(event_name, handler_id) is not None

    # -- internals (callers hold _write_lock for mutation) ----------------

    def _find(self, event_name: str, handler_id: str) -> Subscription | None:
        group = self._patterns if is_wildcard(event_name) else self._exact.get(event_name, ())
        for sub in group:
            if sub.event_name == event_name and sub.handler_id == handler_id:
                return sub
        return None

    def _store(self, sub: Subscription | None, *, replacing: Subscription | None) -> None:
        name = (sub or replacing).event_name  # type: ignore[union-attr]

        if is_wildcard(name):
            group = list(self._patterns)
        else:
            group = list(self._exact.get(name, ()))

        if replacing is not None:
            index = next(i for i, s in enumerate(group) if s is replacing)
            if sub is None:
                del group[index]
            else:
                group[index] = sub
        elif sub is not None:
            group.append(sub)

        if is_wildcard(name):
            self._patterns = tuple(group)
            return

        table = dict(self._exact)
        if group:
            table[name] = tuple(group)
        else:
            table.pop(name, None)
        self._exact = MappingProxyType(table)


__all__ = ["SubscriptionOptions", "Subscription", "SubscriptionRegistry"]

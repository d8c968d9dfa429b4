"""
Event envelope and dispatch result models.

Manifesto:
    A handler must be able to trust what it receives: the envelope is
    frozen, carries the attempt number of this particular delivery, and
    keeps the same ``event_id`` across redeliveries so handlers can
    deduplicate. A publisher must be able to trust what it gets back:
    one ``DeliveryResult`` per subscriber, in registration order, each
    tagged SUCCESS or FAILURE.

Tags:
    autospine, events, envelope, dispatch-result, immutable

Doc-Types:
    api-reference
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, overload

from autospine.core.errors import HandlerError, InvalidEventNameError
from autospine.core.timestamps import to_iso8601, utc_now

_SEGMENT = r"[A-Za-z0-9_\-]+"
_NAME_RE = re.compile(rf"^{_SEGMENT}(\.{_SEGMENT})*$")
_PATTERN_RE = re.compile(rf"^(\*|{_SEGMENT}(\.{_SEGMENT})*(\.\*)?)$")


def validate_event_name(name: object) -> str:
    """Return ``name`` if it is a concrete dot-namespaced event name."""
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise InvalidEventNameError(name)
    return name


def validate_pattern(pattern: object) -> str:
    """Return ``pattern`` if it is an event name, ``*`` or ``prefix.*``."""
    if not isinstance(pattern, str) or not _PATTERN_RE.match(pattern):
        raise InvalidEventNameError(pattern, f"Invalid subscription pattern: {pattern!r}")
    return pattern


def is_wildcard(pattern: str) -> bool:
    return pattern == "*" or pattern.endswith(".*")


def pattern_matches(pattern: str, name: str) -> bool:
    """Check if an event name matches a subscription pattern.

    Examples:
        - ``order.*`` matches ``order.placed``, ``order.item.added``
        - ``*`` matches everything
        - ``order.placed`` matches exactly ``order.placed``
    """
    if pattern == "*":
        return True
    if pattern.endswith(".*"):
        return name.startswith(pattern[:-1])
    return name == pattern


def _freeze(payload: Mapping[str, Any] | None) -> Mapping[str, Any]:
    if payload is None:
        return MappingProxyType({})
    if isinstance(payload, MappingProxyType):
        return payload
    return MappingProxyType(dict(payload))


@dataclass(frozen=True)
class EventEnvelope:
    """Immutable record of one named event delivered to one handler.

    Attributes:
        name: Dot-namespaced event name (e.g. ``order.placed``)
        payload: Publisher-owned data, exposed read-only
        occurred_at: When the event was published (UTC)
        attempt: Delivery attempt number, starting at 1
        source: Origin component
        correlation_id: Optional ID linking related events
        event_id: Unique per publish, stable across redeliveries
    """

    name: str
    payload: Mapping[str, Any] = field(default_factory=dict, hash=False)
    occurred_at: datetime = field(default_factory=utc_now)
    attempt: int = 1
    source: str = "autospine"
    correlation_id: str | None = None
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        validate_event_name(self.name)
        if self.attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {self.attempt}")
        object.__setattr__(self, "payload", _freeze(self.payload))

    @property
    def attempt_count(self) -> int:
        return self.attempt

    def with_attempt(self, attempt: int) -> EventEnvelope:
        """Copy of this envelope for a redelivery."""
        return replace(self, attempt=attempt)

    def matches(self, pattern: str) -> bool:
        return pattern_matches(pattern, self.name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "payload": dict(self.payload),
            "occurred_at": to_iso8601(self.occurred_at),
            "attempt": self.attempt,
            "source": self.source,
            "correlation_id": self.correlation_id,
            "event_id": self.event_id,
        }


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class DeliveryResult:
    """Settled outcome of one subscriber for one publish call."""

    handler_id: str
    outcome: Outcome
    attempts: int
    envelope: EventEnvelope
    started_at: datetime
    finished_at: datetime
    error: HandlerError | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        result = {
            "handler_id": self.handler_id,
            "outcome": self.outcome.value,
            "attempts": self.attempts,
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
            "duration_seconds": round(self.duration_seconds, 6),
        }
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


@dataclass(frozen=True)
class DispatchResult(Sequence[DeliveryResult]):
    """All deliveries of one publish call, in registration order."""

    event: EventEnvelope
    deliveries: tuple[DeliveryResult, ...] = ()

    @overload
    def __getitem__(self, index: int) -> DeliveryResult: ...

    @overload
    def __getitem__(self, index: slice) -> Sequence[DeliveryResult]: ...

    def __getitem__(self, index):
        return self.deliveries[index]

    def __len__(self) -> int:
        return len(self.deliveries)

    def __iter__(self) -> Iterator[DeliveryResult]:
        return iter(self.deliveries)

    @property
    def ok(self) -> bool:
        """True when every subscriber succeeded (vacuously true with none)."""
        return all(d.ok for d in self.deliveries)

    @property
    def succeeded(self) -> list[DeliveryResult]:
        return [d for d in self.deliveries if d.outcome is Outcome.SUCCESS]

    @property
    def failed(self) -> list[DeliveryResult]:
        return [d for d in self.deliveries if d.outcome is Outcome.FAILURE]

    def by_handler(self, handler_id: str) -> DeliveryResult | None:
        for delivery in self.deliveries:
            if delivery.handler_id == handler_id:
                return delivery
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.to_dict(),
            "deliveries": [d.to_dict() for d in self.deliveries],
        }


__all__ = [
    "EventEnvelope",
    "Outcome",
    "DeliveryResult",
    "DispatchResult",
    "validate_event_name",
    "validate_pattern",
    "is_wildcard",
    "pattern_matches",
]

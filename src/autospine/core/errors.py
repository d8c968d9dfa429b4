"""
Structured error types for the automation engine.

Every failure that crosses a component boundary is an ``AutomationError``
carrying a category, an explicit retry flag, structured context and the
chained root cause. The dispatcher and scheduler use these attributes to
decide whether a failed handler is worth another attempt, and observers
use ``to_dict()`` to log failures without losing metadata.

Manifesto:
    - **Contained failures:** Handler errors never reach the publisher;
      they are wrapped as ``HandlerError`` and reported to observers.
    - **Synchronous rejection:** Bad registrations (handler ids, event
      names, schedule specs) fail at the call site as ``RegistrationError``.
    - **Explicit retry semantics:** Each error knows if it is retryable.
    - **Error chaining:** The original exception survives as ``cause``.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      AutomationError                             │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  HandlerError          RegistrationError      SchedulerFatalError│
        │  (HANDLER, retryable)  (REGISTRATION)         (INTERNAL)        │
        │       │                     │                                    │
        │  HandlerTimeoutError   InvalidEventNameError                     │
        │                        InvalidScheduleError                      │
        │                                                                  │
        │  EngineStateError      OperationCancelled     ConfigError        │
        │  (LIFECYCLE)           (CANCELLED)            (CONFIG)           │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> err = HandlerError("sync failed", cause=ConnectionError("reset"))
    >>> err.retryable
    True
    >>> err.with_context(handler_id="notify").context.handler_id
    'notify'

Tags:
    error-handling, exception-hierarchy, retry-logic, autospine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    HANDLER = "HANDLER"
    TIMEOUT = "TIMEOUT"
    REGISTRATION = "REGISTRATION"
    LIFECYCLE = "LIFECYCLE"
    CANCELLED = "CANCELLED"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        event_name: Event being dispatched when the error occurred
        handler_id: Subscriber that raised
        job_name: Scheduled job that raised
        attempt: Attempt number (1-based) of the failing invocation
        metadata: Additional key-value pairs
    """

    event_name: str | None = None
    handler_id: str | None = None
    job_name: str | None = None
    attempt: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["event_name", "handler_id", "job_name", "attempt"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class AutomationError(Exception):
    """
    Base exception for all automation engine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    callers get sensible retry behaviour without passing flags around.

    Examples:
        >>> error = AutomationError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> AutomationError:
        """
        Add context to this error (fluent API).

        Unknown keys land in ``context.metadata``.
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# HANDLER ERRORS (contained, retried per policy)
# =============================================================================


class HandlerError(AutomationError):
    """A subscriber or job handler raised.

    Retried per the subscription's retry policy, then recorded and
    surfaced to observers. Never propagated to the publisher.
    """

    default_category = ErrorCategory.HANDLER
    default_retryable = True

    @classmethod
    def from_exception(cls, exc: BaseException, **context: Any) -> HandlerError:
        """Wrap an arbitrary handler exception.

        An ``AutomationError`` raised by the handler keeps its own retry flag,
        so handlers can opt out of retries by raising ``retryable=False``.
        """
        if isinstance(exc, HandlerError):
            return exc.with_context(**context)  # type: ignore[return-value]
        retryable = exc.retryable if isinstance(exc, AutomationError) else None
        err = cls(f"{type(exc).__name__}: {exc}", retryable=retryable, cause=exc)
        err.with_context(**context)
        return err


class HandlerTimeoutError(HandlerError):
    """A handler attempt exceeded its configured timeout."""

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, timeout: float, **kwargs: Any):
        self.timeout = timeout
        super().__init__(f"Handler timed out after {timeout}s", **kwargs)


# =============================================================================
# REGISTRATION ERRORS (returned synchronously to the caller)
# =============================================================================


class RegistrationError(AutomationError):
    """Invalid subscription or job definition."""

    default_category = ErrorCategory.REGISTRATION
    default_retryable = False


class InvalidEventNameError(RegistrationError, ValueError):
    """Event name or subscription pattern is malformed."""

    def __init__(self, name: object, message: str | None = None):
        self.name = name
        super().__init__(message or f"Invalid event name: {name!r}")


class InvalidScheduleError(RegistrationError, ValueError):
    """Interval or cron specification could not be parsed."""

    def __init__(self, spec: object, message: str | None = None):
        self.spec = spec
        super().__init__(message or f"Invalid schedule spec: {spec!r}")


# =============================================================================
# LIFECYCLE / INTERNAL ERRORS
# =============================================================================


class SchedulerFatalError(AutomationError):
    """Unrecoverable scheduler state. The loop halts until restarted."""

    default_category = ErrorCategory.INTERNAL
    default_retryable = False


class EngineStateError(AutomationError):
    """Operation not allowed in the engine's current lifecycle state."""

    default_category = ErrorCategory.LIFECYCLE
    default_retryable = False


class OperationCancelled(AutomationError):
    """Raised by ``CancellationToken.raise_if_cancelled()``."""

    default_category = ErrorCategory.CANCELLED
    default_retryable = False


class ConfigError(AutomationError):
    """Configuration error."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable.

    Non-``AutomationError`` exceptions are treated as transient.
    """
    if isinstance(error, AutomationError):
        return error.retryable
    return True


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "AutomationError",
    "HandlerError",
    "HandlerTimeoutError",
    "RegistrationError",
    "InvalidEventNameError",
    "InvalidScheduleError",
    "SchedulerFatalError",
    "EngineStateError",
    "OperationCancelled",
    "ConfigError",
    "is_retryable",
]

"""
autospine - in-process event dispatch and recurring jobs.

Domain services publish named events and define periodic jobs through one
explicit ``AutomationEngine``; subscribers and jobs run isolated from each
other, retried and time-bounded, and failures surface through observers.

Quick start::

    from autospine import AutomationEngine

    engine = AutomationEngine()

    @engine.on("order.placed")
    async def notify(envelope):
        ...

    @engine.every("5m")
    async def sync_inventory(ctx):
        await engine.publish("inventory.synced")

    async with engine:
        result = await engine.publish("order.placed", {"customerId": "c1"})
"""

from autospine.core.errors import (
    AutomationError,
    EngineStateError,
    HandlerError,
    HandlerTimeoutError,
    InvalidEventNameError,
    InvalidScheduleError,
    OperationCancelled,
    RegistrationError,
    SchedulerFatalError,
)
from autospine.core.logging import configure_logging, get_logger
from autospine.core.settings import AutomationSettings, get_settings
from autospine.engine import AutomationEngine, EngineHealth, EngineState
from autospine.events import (
    DeliveryResult,
    DispatchResult,
    EventEnvelope,
    Outcome,
    Subscription,
    SubscriptionOptions,
)
from autospine.execution import (
    AutomationObserver,
    CancellationToken,
    ConstantBackoff,
    ExponentialBackoff,
    NoRetry,
)
from autospine.scheduling import (
    ConcurrencyPolicy,
    CronSchedule,
    IntervalSchedule,
    JobContext,
    JobDescriptor,
    JobRun,
    parse_schedule,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # engine
    "AutomationEngine",
    "EngineState",
    "EngineHealth",
    # events
    "EventEnvelope",
    "Outcome",
    "DeliveryResult",
    "DispatchResult",
    "Subscription",
    "SubscriptionOptions",
    # execution
    "AutomationObserver",
    "CancellationToken",
    "ExponentialBackoff",
    "ConstantBackoff",
    "NoRetry",
    # scheduling
    "ConcurrencyPolicy",
    "IntervalSchedule",
    "CronSchedule",
    "JobDescriptor",
    "JobContext",
    "JobRun",
    "parse_schedule",
    # errors
    "AutomationError",
    "HandlerError",
    "HandlerTimeoutError",
    "RegistrationError",
    "InvalidEventNameError",
    "InvalidScheduleError",
    "SchedulerFatalError",
    "EngineStateError",
    "OperationCancelled",
    # ambient
    "AutomationSettings",
    "get_settings",
    "configure_logging",
    "get_logger",
]

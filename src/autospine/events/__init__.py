"""Event bus: envelope, subscription registry and dispatcher.

Why This Package Exists
-----------------------
Domain services (orders, customers, catalogue) need to trigger side
effects -- notifications, synchronization, segmentation -- without
importing the code that performs them. The dispatcher decouples
publishers from subscribers: a publisher names an event and hands over a
payload; every subscriber registered for that name receives its own
envelope, isolated from the others.

Usage::

    from autospine.events import Dispatcher, SubscriptionRegistry

    registry = SubscriptionRegistry()

    async def notify(envelope):
        await mailer.send(envelope.payload["customerId"])

    registry.register("order.placed", "notify-customer", notify)

    dispatcher = Dispatcher(registry)
    result = await dispatcher.publish("order.placed", {"customerId": "c1"})

Modules
-------
envelope    EventEnvelope, DeliveryResult, DispatchResult, name validation
registry    SubscriptionRegistry -- copy-on-write, registration-ordered
dispatcher  Dispatcher -- isolated, retried, timed-out deliveries
"""

from __future__ import annotations

from .envelope import (
    DeliveryResult,
    DispatchResult,
    EventEnvelope,
    Outcome,
    pattern_matches,
    validate_event_name,
)
from .registry import Subscription, SubscriptionOptions, SubscriptionRegistry
from .dispatcher import Dispatcher, DispatchStats

__all__ = [
    "EventEnvelope",
    "Outcome",
    "DeliveryResult",
    "DispatchResult",
    "pattern_matches",
    "validate_event_name",
    "Subscription",
    "SubscriptionOptions",
    "SubscriptionRegistry",
    "Dispatcher",
    "DispatchStats",
]

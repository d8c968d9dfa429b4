"""Handler execution: invocation adapter, retry policies, pool and observers.

Modules
-------
handlers    Invoker -- uniform async call over collaborator handlers; CancellationToken
retry       ExponentialBackoff / ConstantBackoff / NoRetry
pool        HandlerPool -- bounded concurrency, re-entrant publish safe
observers   AutomationObserver hooks, LoggingObserver, ObserverSet
"""

from .handlers import CancellationToken, Handler, Invoker
from .observers import AutomationObserver, LoggingObserver, ObserverSet
from .pool import HandlerPool
from .retry import ConstantBackoff, ExponentialBackoff, NoRetry, RetryStrategy

__all__ = [
    "CancellationToken",
    "Handler",
    "Invoker",
    "HandlerPool",
    "RetryStrategy",
    "ExponentialBackoff",
    "ConstantBackoff",
    "NoRetry",
    "AutomationObserver",
    "LoggingObserver",
    "ObserverSet",
]

"""Handler capability adapter and cooperative cancellation.

WHY
───
Collaborators hand the engine whatever they have: an ``async def``, a
plain function, a bound method, a ``functools.partial``, or an object
exposing ``invoke(...)``. The dispatcher and scheduler should not care.
``Invoker`` inspects the target once, at registration time, and from
then on exposes a single ``await invoker(*args)`` call. A target whose
signature cannot take the arguments the engine supplies is rejected
immediately with ``RegistrationError`` instead of failing at first use.

ARCHITECTURE
────────────
::

    Invoker.wrap(target, supplied=("envelope", "token"), required=1)
      ├── resolves target.invoke when present
      ├── counts positional parameters it can accept
      └── __call__(*args)
            ├── async target  → await target(*args[:n])
            └── sync target   → await asyncio.to_thread(target, *args[:n])

    CancellationToken
      ├── .cancel()                ─ signal (thread-safe, idempotent)
      ├── .cancelled               ─ flag for sync handlers
      ├── .wait()                  ─ await the signal
      └── .raise_if_cancelled()    ─ raises OperationCancelled
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import threading
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from autospine.core.errors import OperationCancelled, RegistrationError


@runtime_checkable
class Handler(Protocol):
    """Capability interface for collaborator-supplied handlers."""

    def invoke(self, *args: Any) -> Any: ...


class CancellationToken:
    """Cooperative cancellation signal handed to handlers.

    The engine never force-cancels an in-flight handler on shutdown; it
    signals this token and lets the handler decide when to stop.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            waiters, self._waiters = self._waiters, []
        for loop, fut in waiters:
            loop.call_soon_threadsafe(_resolve, fut)

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[None] = loop.create_future()
        with self._lock:
            if self._event.is_set():
                return
            self._waiters.append((loop, fut))
        await fut

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "operation cancelled")

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


def _resolve(fut: asyncio.Future[None]) -> None:
    if not fut.done():
        fut.set_result(None)


def _positional_capacity(fn: Callable[..., Any]) -> tuple[int, float]:
    """Return (required, maximum) positional argument counts for ``fn``."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return 0, float("inf")

    required = 0
    maximum: float = 0
    for param in sig.parameters.values():
        if param.kind is param.VAR_POSITIONAL:
            maximum = float("inf")
        elif param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            maximum += 1
            if param.default is param.empty:
                required += 1
        elif param.kind is param.KEYWORD_ONLY and param.default is param.empty:
            # cannot be satisfied positionally
            return -1, 0
    return required, maximum


def _is_async_callable(fn: Callable[..., Any]) -> bool:
    while isinstance(fn, functools.partial):
        fn = fn.func
    if inspect.iscoroutinefunction(fn):
        return True
    call = getattr(fn, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


class Invoker:
    """Uniform async call wrapper around a collaborator-supplied handler."""

    __slots__ = ("target", "name", "_fn", "_argc", "_is_async")

    def __init__(self, target: Any, fn: Callable[..., Any], argc: int, is_async: bool, name: str):
        self.target = target
        self.name = name
        self._fn = fn
        self._argc = argc
        self._is_async = is_async

    @classmethod
    def wrap(cls, target: Any, *, supplied: int, required: int = 0) -> Invoker:
        """Build an invoker for ``target``.

        Args:
            target: Callable or object exposing ``invoke``
            supplied: Number of positional arguments the engine passes
            required: Minimum number the handler must accept

        Raises:
            RegistrationError: If the target is not callable or its
                signature is incompatible.
        """
        if isinstance(target, Invoker):
            return target

        fn = target
        is_plain = inspect.isroutine(target) or isinstance(target, functools.partial)
        if not is_plain and isinstance(target, Handler) and callable(target.invoke):
            fn = target.invoke
        if not callable(fn):
            raise RegistrationError(f"Handler {target!r} is neither callable nor exposes invoke()")

        name = getattr(fn, "__qualname__", None) or type(target).__name__
        need, capacity = _positional_capacity(fn)
        if need < 0 or need > supplied:
            raise RegistrationError(
                f"Handler {name} requires arguments the engine cannot supply "
                f"(engine passes {supplied} positional argument(s))"
            )
        argc = int(min(capacity, supplied))
        if argc < required:
            raise RegistrationError(
                f"Handler {name} must accept at least {required} positional argument(s)"
            )
        return cls(target, fn, argc, _is_async_callable(fn), name)

    @property
    def is_async(self) -> bool:
        return self._is_async

    async def __call__(self, *args: Any) -> Any:
        call_args = args[: self._argc]
        if self._is_async:
            result = self._fn(*call_args)
        else:
            result = await asyncio.to_thread(self._fn, *call_args)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        return f"Invoker({self.name}, argc={self._argc}, async={self._is_async})"


__all__ = ["Handler", "CancellationToken", "Invoker"]

"""Handler execution pool.

Bounds how many handler invocations (subscriber deliveries and job runs)
execute at once. ``max_concurrency=None`` means unbounded.

Re-entrancy: a handler that publishes and awaits a downstream event
would, in a bounded pool, hold its own slot while its nested deliveries
wait for one. With ``max_concurrency=1`` that is a deadlock. The
dispatcher therefore wraps nested waits in ``pool.yielded()``, which
hands the caller's slot back for the duration and re-acquires it
afterwards.

Example::

    pool = HandlerPool(max_concurrency=4)
    async with pool.slot():
        await handler(envelope)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass


@dataclass(eq=False)
class _Slot:
    pool: HandlerPool
    owner: asyncio.Task | None
    released: bool = False


_current_slot: ContextVar[_Slot | None] = ContextVar("autospine_pool_slot", default=None)


class HandlerPool:
    """Bounded (or unbounded) concurrency gate for handler invocations."""

    def __init__(self, max_concurrency: int | None = None) -> None:
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.max_concurrency = max_concurrency
        self._sem = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self._active = 0

    @property
    def active(self) -> int:
        """Invocations currently holding a slot."""
        return self._active

    @property
    def bounded(self) -> bool:
        return self._sem is not None

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one execution slot for the duration of the block."""
        if self._sem is not None:
            await self._sem.acquire()
        slot = _Slot(self, asyncio.current_task())
        token = _current_slot.set(slot)
        self._active += 1
        try:
            yield
        finally:
            _current_slot.reset(token)
            if not slot.released:
                self._active -= 1
                if self._sem is not None:
                    self._sem.release()

    @asynccontextmanager
    async def yielded(self) -> AsyncIterator[None]:
        """Give the caller's slot back while awaiting nested work.

        A no-op unless the current task holds a slot of this pool.
        """
        slot = _current_slot.get()
        if (
            self._sem is None
            or slot is None
            or slot.pool is not self
            or slot.released
            or slot.owner is not asyncio.current_task()
        ):
            yield
            return

        slot.released = True
        self._active -= 1
        self._sem.release()
        try:
            yield
        finally:
            await self._sem.acquire()
            self._active += 1
            slot.released = False


__all__ = ["HandlerPool"]

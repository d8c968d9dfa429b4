"""Tests for autospine.execution.pool - HandlerPool."""

import asyncio

import pytest

from autospine.execution.pool import HandlerPool


class TestHandlerPool:
    def test_rejects_zero(self):
        with pytest.raises(ValueError):
            HandlerPool(0)

    def test_unbounded(self):
        assert HandlerPool().bounded is False
        assert HandlerPool(2).bounded is True

    @pytest.mark.asyncio
    async def test_bounds_concurrency(self):
        pool = HandlerPool(2)
        peak = 0

        async def work():
            nonlocal peak
            async with pool.slot():
                peak = max(peak, pool.active)
                await asyncio.sleep(0.01)

        await asyncio.gather(*(work() for _ in range(6)))
        assert peak == 2
        assert pool.active == 0

    @pytest.mark.asyncio
    async def test_fifo_acquisition(self):
        pool = HandlerPool(1)
        order = []

        async def work(n):
            async with pool.slot():
                order.append(n)
                await asyncio.sleep(0)

        await asyncio.gather(*(work(n) for n in range(5)))
        assert order == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_yielded_releases_slot_for_nested_work(self):
        pool = HandlerPool(1)
        nested_ran = asyncio.Event()

        async def nested():
            async with pool.slot():
                nested_ran.set()

        async def outer():
            async with pool.slot():
                task = asyncio.create_task(nested())
                async with pool.yielded():
                    assert pool.active == 0
                    await task
                assert pool.active == 1

        await asyncio.wait_for(outer(), timeout=1)
        assert nested_ran.is_set()
        assert pool.active == 0

    @pytest.mark.asyncio
    async def test_yielded_without_slot_is_noop(self):
        pool = HandlerPool(1)
        async with pool.yielded():
            assert pool.active == 0

    @pytest.mark.asyncio
    async def test_child_task_cannot_yield_parent_slot(self):
        pool = HandlerPool(1)

        async def child():
            async with pool.yielded():
                return pool.active

        async with pool.slot():
            assert await asyncio.create_task(child()) == 1

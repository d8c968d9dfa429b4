"""Tests for autospine.core.logging - scoped structlog context."""

import asyncio

import pytest
import structlog

from autospine.core.logging import LogContext, bind_context, clear_context, get_logger


@pytest.fixture(autouse=True)
def _clean_context():
    clear_context()
    yield
    clear_context()


class TestLogContext:
    def test_binds_and_restores(self):
        bind_context(service_call="outer")
        with LogContext(event_name="order.placed", handler_id="notify"):
            ctx = structlog.contextvars.get_contextvars()
            assert ctx["event_name"] == "order.placed"
            assert ctx["handler_id"] == "notify"
            assert ctx["service_call"] == "outer"
        ctx = structlog.contextvars.get_contextvars()
        assert "event_name" not in ctx
        assert ctx["service_call"] == "outer"

    def test_drops_none_values(self):
        with LogContext(job_name="sync", trigger=None):
            assert "trigger" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_async_tasks_are_isolated(self):
        seen = {}

        async def deliver(handler_id):
            async with LogContext(handler_id=handler_id):
                await asyncio.sleep(0)
                seen[handler_id] = structlog.contextvars.get_contextvars()["handler_id"]

        await asyncio.gather(deliver("a"), deliver("b"))
        assert seen == {"a": "a", "b": "b"}


def test_get_logger_binds_name():
    logger = get_logger("autospine.test")
    assert logger is not None
    logger.debug("logger_smoke_test")

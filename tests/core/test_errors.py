"""Tests for autospine.core.errors - error taxonomy and retry flags."""

import pytest

from autospine.core.errors import (
    AutomationError,
    ErrorCategory,
    HandlerError,
    HandlerTimeoutError,
    InvalidEventNameError,
    InvalidScheduleError,
    RegistrationError,
    SchedulerFatalError,
    is_retryable,
)


class TestAutomationError:
    def test_defaults(self):
        err = AutomationError("boom")
        assert err.message == "boom"
        assert err.category is ErrorCategory.INTERNAL
        assert err.retryable is False
        assert err.cause is None

    def test_cause_is_chained(self):
        cause = ConnectionError("reset")
        err = AutomationError("wrapped", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "ConnectionError: reset"

    def test_with_context_is_fluent(self):
        err = HandlerError("x").with_context(handler_id="notify", attempt=2, region="eu")
        assert err.context.handler_id == "notify"
        assert err.context.attempt == 2
        assert err.context.metadata == {"region": "eu"}
        assert err.to_dict()["context"] == {"handler_id": "notify", "attempt": 2, "region": "eu"}

    def test_repr(self):
        assert repr(RegistrationError("bad")) == "RegistrationError('bad', category=REGISTRATION)"


class TestHandlerError:
    def test_handler_errors_are_retryable(self):
        assert HandlerError("x").retryable is True
        assert HandlerTimeoutError(1.5).retryable is True

    def test_timeout_category(self):
        err = HandlerTimeoutError(2.0)
        assert err.category is ErrorCategory.TIMEOUT
        assert err.timeout == 2.0
        assert "2.0s" in err.message

    def test_from_exception_wraps(self):
        err = HandlerError.from_exception(ValueError("nope"), handler_id="h1", attempt=1)
        assert isinstance(err, HandlerError)
        assert err.message == "ValueError: nope"
        assert isinstance(err.cause, ValueError)
        assert err.context.handler_id == "h1"

    def test_from_exception_keeps_handler_error(self):
        original = HandlerTimeoutError(1.0)
        err = HandlerError.from_exception(original, handler_id="h1")
        assert err is original
        assert err.context.handler_id == "h1"

    def test_from_exception_respects_retry_flag(self):
        err = HandlerError.from_exception(AutomationError("permanent", retryable=False))
        assert err.retryable is False


class TestRegistrationErrors:
    @pytest.mark.parametrize("cls", [InvalidEventNameError, InvalidScheduleError])
    def test_are_value_errors(self, cls):
        err = cls("x")
        assert isinstance(err, RegistrationError)
        assert isinstance(err, ValueError)
        assert err.category is ErrorCategory.REGISTRATION
        assert err.retryable is False

    def test_scheduler_fatal_not_retryable(self):
        assert SchedulerFatalError("corrupt").retryable is False


class TestIsRetryable:
    def test_plain_exceptions_are_transient(self):
        assert is_retryable(RuntimeError("x")) is True

    def test_automation_errors_use_flag(self):
        assert is_retryable(HandlerError("x")) is True
        assert is_retryable(RegistrationError("x")) is False

"""Tests for autospine.execution.retry - backoff strategies."""

import pytest

from autospine.core.errors import AutomationError, HandlerError
from autospine.execution.retry import ConstantBackoff, ExponentialBackoff, NoRetry


class TestExponentialBackoff:
    def test_delays_without_jitter(self):
        strategy = ExponentialBackoff(base_delay=1.0, max_delay=60.0, jitter=False)
        assert [strategy.next_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_capped(self):
        strategy = ExponentialBackoff(base_delay=1.0, max_delay=5.0, jitter=False)
        assert strategy.next_delay(10) == 5.0

    def test_jitter_stays_in_range(self):
        strategy = ExponentialBackoff(base_delay=4.0, max_delay=100.0, jitter=True, jitter_range=0.25)
        for _ in range(50):
            assert 3.0 <= strategy.next_delay(0) <= 5.0

    def test_jitter_never_exceeds_cap(self):
        strategy = ExponentialBackoff(base_delay=10.0, max_delay=10.0, jitter=True)
        for _ in range(50):
            assert strategy.next_delay(3) <= 10.0

    def test_should_retry_until_max(self):
        strategy = ExponentialBackoff(max_retries=2)
        assert strategy.should_retry(0) is True
        assert strategy.should_retry(1) is True
        assert strategy.should_retry(2) is False

    def test_non_retryable_error(self):
        strategy = ExponentialBackoff(max_retries=5)
        assert strategy.should_retry(0, AutomationError("x", retryable=False)) is False
        assert strategy.should_retry(0, HandlerError("x")) is True

    def test_retryable_errors_filter_uses_cause(self):
        strategy = ExponentialBackoff(max_retries=5, retryable_errors=(ConnectionError,))
        assert strategy.should_retry(0, HandlerError.from_exception(ConnectionError("reset"))) is True
        assert strategy.should_retry(0, HandlerError.from_exception(KeyError("id"))) is False


class TestOtherStrategies:
    def test_constant(self):
        strategy = ConstantBackoff(max_retries=2, delay=0.5)
        assert strategy.next_delay(0) == strategy.next_delay(7) == 0.5
        assert strategy.should_retry(1) is True
        assert strategy.should_retry(2) is False

    @pytest.mark.parametrize("attempt", [0, 1, 10])
    def test_no_retry(self, attempt):
        strategy = NoRetry()
        assert strategy.should_retry(attempt) is False
        assert strategy.next_delay(attempt) == 0.0

"""Tests for autospine.core.settings - AutomationSettings."""

import pytest
from pydantic import ValidationError

from autospine.core.errors import ConfigError
from autospine.core.settings import AutomationSettings, get_settings, reset_settings
from autospine.execution.retry import ExponentialBackoff
from autospine.scheduling.jobs import ConcurrencyPolicy


class TestAutomationSettings:
    def test_defaults(self):
        settings = AutomationSettings(_env_file=None)
        assert settings.max_concurrency is None
        assert settings.default_max_retries == 3
        assert settings.handler_timeout == 30.0
        assert settings.job_timeout is None
        assert settings.drain_timeout is None
        assert settings.default_concurrency_policy == "skip"
        assert settings.log_level == "INFO"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("AUTOSPINE_MAX_CONCURRENCY", "4")
        monkeypatch.setenv("AUTOSPINE_DEFAULT_CONCURRENCY_POLICY", "QUEUE")
        monkeypatch.setenv("AUTOSPINE_LOG_LEVEL", "debug")
        settings = AutomationSettings(_env_file=None)
        assert settings.max_concurrency == 4
        assert settings.default_concurrency_policy == "queue"
        assert settings.log_level == "DEBUG"

    def test_rejects_unknown_policy(self):
        with pytest.raises(ValidationError):
            AutomationSettings(_env_file=None, default_concurrency_policy="sometimes")

    def test_rejects_zero_pool(self):
        with pytest.raises(ValidationError):
            AutomationSettings(_env_file=None, max_concurrency=0)

    def test_default_retry_strategy(self):
        settings = AutomationSettings(
            _env_file=None, default_max_retries=5, retry_base_delay=0.1, retry_jitter=False
        )
        strategy = settings.default_retry_strategy()
        assert isinstance(strategy, ExponentialBackoff)
        assert strategy.max_retries == 5
        assert strategy.base_delay == 0.1
        assert strategy.jitter is False

    def test_concurrency_policy(self):
        settings = AutomationSettings(_env_file=None, default_concurrency_policy="parallel")
        assert settings.concurrency_policy() is ConcurrencyPolicy.PARALLEL


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_reset(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("AUTOSPINE_SERVICE_NAME", "shop")
        reset_settings()
        second = get_settings()
        assert second is not first
        assert second.service_name == "shop"

    def test_invalid_environment_raises_config_error(self, monkeypatch):
        monkeypatch.setenv("AUTOSPINE_MAX_CONCURRENCY", "0")
        reset_settings()
        with pytest.raises(ConfigError) as exc_info:
            get_settings()
        assert isinstance(exc_info.value.cause, ValidationError)
        assert exc_info.value.retryable is False

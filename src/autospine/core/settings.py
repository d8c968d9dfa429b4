"""Engine settings.

Every knob the dispatcher and scheduler need (pool size, retry defaults,
handler and drain timeouts, logging) lives on ``AutomationSettings`` so a
deployment can tune behaviour through ``AUTOSPINE_*`` environment
variables or a ``.env`` file without code changes.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not at first publish
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** Works out of the box for development and tests

Examples:
    >>> from autospine.core.settings import AutomationSettings
    >>> settings = AutomationSettings(max_concurrency=8, handler_timeout=5)
    >>> settings.default_retry_strategy().max_retries
    3

Tags:
    settings, configuration, pydantic, environment, autospine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from autospine.core.errors import ConfigError

if TYPE_CHECKING:
    from autospine.execution.retry import ExponentialBackoff
    from autospine.scheduling.jobs import ConcurrencyPolicy


class AutomationSettings(BaseSettings):
    """Settings for an ``AutomationEngine``.

    Fields
    ──────
    max_concurrency            : Handler pool size (None = unbounded)
    default_max_retries        : Retries after the first failed attempt
    retry_base_delay           : First backoff delay in seconds
    retry_max_delay            : Backoff cap in seconds
    retry_multiplier           : Exponential growth factor
    retry_jitter               : Randomize backoff delays
    handler_timeout            : Per-attempt subscriber timeout (None disables)
    job_timeout                : Per-run job timeout (None disables)
    drain_timeout              : Wait bound for in-flight work on stop (None = forever)
    default_concurrency_policy : skip | queue | parallel
    log_level / log_json       : Structlog configuration
    service_name               : ``service.name`` on every log line
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTOSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Execution ────────────────────────────────────────────────
    max_concurrency: int | None = Field(default=None, ge=1)

    # ── Retry ────────────────────────────────────────────────────
    default_max_retries: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1.0)
    retry_jitter: bool = True

    # ── Timeouts ─────────────────────────────────────────────────
    handler_timeout: float | None = Field(default=30.0, gt=0)
    job_timeout: float | None = Field(default=None, gt=0)
    drain_timeout: float | None = Field(default=None, ge=0)

    # ── Scheduling ───────────────────────────────────────────────
    default_concurrency_policy: str = "skip"

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None
    service_name: str = "autospine"

    @field_validator("default_concurrency_policy")
    @classmethod
    def _check_policy(cls, value: str) -> str:
        value = value.lower()
        if value not in ("skip", "queue", "parallel"):
            raise ValueError(f"unknown concurrency policy: {value}")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {value}")
        return value

    def default_retry_strategy(self) -> ExponentialBackoff:
        """Backoff used by subscriptions that don't bring their own."""
        from autospine.execution.retry import ExponentialBackoff

        return ExponentialBackoff(
            max_retries=self.default_max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            multiplier=self.retry_multiplier,
            jitter=self.retry_jitter,
        )

    def concurrency_policy(self) -> ConcurrencyPolicy:
        from autospine.scheduling.jobs import ConcurrencyPolicy

        return ConcurrencyPolicy(self.default_concurrency_policy)


@lru_cache(maxsize=1)
def get_settings() -> AutomationSettings:
    """Return the process-wide settings loaded from the environment.

    Raises:
        ConfigError: The environment or .env holds invalid values
    """
    try:
        return AutomationSettings()
    except ValidationError as e:
        raise ConfigError(f"Invalid autospine settings: {e}", cause=e) from e


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    get_settings.cache_clear()


__all__ = ["AutomationSettings", "get_settings", "reset_settings"]

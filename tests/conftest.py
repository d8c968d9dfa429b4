"""
Shared pytest fixtures for autospine tests.

This module provides:
- Settings isolation (environment-derived settings are never cached across tests)
- Fast retry settings so failing handlers don't slow the suite down
- A manual clock and a recording observer for deterministic scheduling tests
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from autospine.core.logging import configure_logging
from autospine.core.settings import AutomationSettings, reset_settings
from autospine.testing import ManualClock, RecordingObserver

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


def pytest_configure(config: pytest.Config) -> None:
    configure_logging(level="WARNING", json_format=False, add_timestamp=False)


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without explicit markers as unit tests."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path) or "test_engine" in str(test_path):
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop cached settings and any AUTOSPINE_* variables from the real environment."""
    import os

    for key in list(os.environ):
        if key.startswith("AUTOSPINE_"):
            monkeypatch.delenv(key)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> AutomationSettings:
    """Settings with instant, deterministic retries."""
    return AutomationSettings(
        _env_file=None,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        retry_jitter=False,
        handler_timeout=5.0,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def recorder() -> RecordingObserver:
    return RecordingObserver()

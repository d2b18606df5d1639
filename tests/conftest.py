"""Shared fixtures for the Atreides test suite."""

import pytest

from atreides.config import AtreidesConfig
from atreides.logging import LogConfig, set_config
from atreides.runtime import AtreidesRuntime
from atreides.session import SessionStore


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path, monkeypatch):
    """Send every JSONL log to a per-test directory."""
    for name in (
        "ATREIDES_PERSONA",
        "ATREIDES_STRICT_TODOS",
        "ATREIDES_PHASE_TRACKING",
        "ATREIDES_AUTO_ESCALATE",
        "ATREIDES_OBFUSCATION_DETECTION",
        "ATREIDES_NOTIFICATIONS",
        "ATREIDES_THINK_MODE",
    ):
        monkeypatch.delenv(name, raising=False)
    config = LogConfig(log_dir=tmp_path / "logs")
    set_config(config)
    return config


@pytest.fixture
def store():
    """Store that creates sessions with default config."""
    return SessionStore(default_config=AtreidesConfig())


@pytest.fixture
def runtime():
    """Runtime with default configuration."""
    return AtreidesRuntime()

"""
Shared pytest fixtures for the chat relay test suite.

This module provides fixtures that are automatically available to all test files:
- Configuration isolation (no stray CHAT_RELAY_* env vars or config files)
- A fast, deterministic ``RelayConfig`` for pipeline tests
- A ``GameHost`` bound to the test thread
- A fake clock for time-dependent components
"""

from pathlib import Path

import pytest

from chat_relay import config as relay_config
from chat_relay.config import RelayConfig
from chat_relay.host import GameHost
from tests.fakes import FakeClock

# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path: Path):
    """
    Keep every test away from the developer's real configuration.

    Clears CHAT_RELAY_* environment variables and points the default config
    file locations at paths that do not exist, so ``load_config()`` with no
    arguments returns built-in defaults.
    """
    import os

    for name in list(os.environ):
        if name.startswith("CHAT_RELAY_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(relay_config, "CONFIG_FILE", tmp_path / "missing" / "relay.ini")
    monkeypatch.setattr(relay_config, "CONFIG_EXAMPLE", tmp_path / "missing" / "example.ini")


@pytest.fixture
def fast_config() -> RelayConfig:
    """
    Configuration tuned for tests: memory storage, no rate limit, tiny
    backoff and short timeouts so failure paths finish quickly.
    """
    cfg = RelayConfig()
    cfg.translation.providers = ["ollama"]
    cfg.storage.type = "memory"
    cfg.rate_limit.messages = 0
    cfg.dispatch.timeout_seconds = 1.0
    cfg.dispatch.backoff_base_seconds = 0.01
    cfg.dispatch.retry_deadline_seconds = 5.0
    cfg.delivery.buffer_timeout_seconds = 5.0
    cfg.display.mode = "replace"
    return cfg


# ============================================================================
# HOST FIXTURES
# ============================================================================


@pytest.fixture
def host() -> GameHost:
    """A fresh host whose main context is owned by the test thread."""
    return GameHost()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()

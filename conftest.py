"""
Repository-level pytest configuration.

Why this exists:
  - Register the execution history plugin (--record-history / --flaky-report)
  - Keep configuration deterministic for local runs: AI suggestions stay off
    unless explicitly enabled, and the singleton config is reset per test
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Generator

import pytest

from reliability_tools.common import ConfigLoader


pytest_plugins = ["reliability_tools.flaky_detector.pytest_plugin"]


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return repo root path."""
    return Path(__file__).parent


@pytest.fixture(scope="session", autouse=True)
def _offline_env_defaults() -> Generator[None, None, None]:
    """
    Set offline environment defaults if not already provided by the user/CI.

    Prevents test runs from calling the Gemini API by accident.
    """
    defaults = {
        "AI_ENABLED": "false",
    }

    for k, v in defaults.items():
        os.environ.setdefault(k, v)

    yield


@pytest.fixture(autouse=True)
def _fresh_config() -> Generator[None, None, None]:
    """Drop the cached configuration so monkeypatched env vars take effect."""
    ConfigLoader.reset()
    yield
    ConfigLoader.reset()

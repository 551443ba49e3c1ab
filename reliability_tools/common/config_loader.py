"""
================================================================================
Configuration Loader
================================================================================

YAML-based configuration management with environment variable override support.

Features:
    - Hierarchical YAML configuration loading
    - Environment variable override (VISUAL_THRESHOLD overrides visual.threshold)
    - Dot notation path access
    - Default value support
    - Typed settings snapshot for the reliability components

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger


# Default configuration file path, overridable with RELIABILITY_CONFIG
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "config.yaml"


class ConfigurationError(Exception):
    """Raised when configuration loading or access fails."""
    pass


class ConfigLoader:
    """
    Configuration loader with YAML and environment variable support.

    Configuration hierarchy (highest to lowest priority):
        1. Environment variables (VISUAL_THRESHOLD)
        2. YAML configuration file
        3. Default values

    Usage:
        >>> config = ConfigLoader()
        >>> config.get("visual.threshold", 0.2)
        0.05  # From YAML or env var

        >>> config.get("locator.timeout", 10000)
        10000  # Default value if not configured

    Environment Variable Mapping:
        - visual.threshold -> VISUAL_THRESHOLD
        - flaky_test.threshold -> FLAKY_TEST_THRESHOLD
        - google.gemini_api_key -> GOOGLE_GEMINI_API_KEY
    """

    _instance: Optional["ConfigLoader"] = None
    _config: Dict[str, Any] = {}

    def __new__(cls, config_path: Optional[Path] = None) -> "ConfigLoader":
        """Singleton pattern - return existing instance if available."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[Path] = None) -> None:
        """
        Initialize configuration loader.

        Args:
            config_path: Path to YAML configuration file.
                        Uses RELIABILITY_CONFIG or DEFAULT_CONFIG_PATH if not specified.
        """
        if getattr(self, "_initialized", False):
            return

        env_path = os.environ.get("RELIABILITY_CONFIG")
        self._config_path = Path(config_path or env_path or DEFAULT_CONFIG_PATH)
        self._load_config()
        self._initialized = True

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            logger.debug(
                f"Configuration file not found: {self._config_path}. "
                f"Using defaults and environment variables only."
            )
            self._config = {}
            return

        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                self._config = yaml.safe_load(f) or {}
            logger.debug(f"Loaded configuration from: {self._config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {e}"
            ) from e

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        First checks environment variables, then YAML config, then default.

        Args:
            key: Dot-notation path (e.g., "visual.threshold")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        env_key = key.upper().replace(".", "_")
        env_value = os.environ.get(env_key)
        if env_value is not None:
            return self._convert_type(env_value, default)

        value = self._config
        for part in key.split("."):
            if isinstance(value, dict):
                value = value.get(part)
            else:
                value = None

            if value is None:
                return default

        return value

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()
        logger.info(f"Configuration reloaded from: {self._config_path}")

    def _convert_type(self, value: str, reference: Any) -> Any:
        """
        Convert string value to match reference type.

        Used for environment variables which are always strings.
        """
        if reference is None:
            return value

        if isinstance(reference, bool):
            return value.lower() in ("true", "1", "yes", "on")
        if isinstance(reference, int):
            try:
                return int(value)
            except ValueError:
                return value
        if isinstance(reference, float):
            try:
                return float(value)
            except ValueError:
                return value

        return value

    @classmethod
    def reset(cls) -> None:
        """
        Reset singleton instance.

        Useful for testing when configuration needs to be reloaded
        with different settings.
        """
        cls._instance = None
        cls._config = {}


@dataclass
class ReliabilitySettings:
    """
    Typed snapshot of the settings used by the reliability components.

    Timeouts are in milliseconds, thresholds are fractions in [0, 1].
    Build one with `ReliabilitySettings.from_config()` so YAML and
    environment overrides apply; construct directly in tests.
    """
    visual_threshold: float = 0.2
    pixel_threshold: float = 0.1
    flaky_threshold: float = 0.3
    locator_timeout: int = 10000
    cache_probe_timeout: int = 1000
    wait_timeout: int = 30000
    network_idle_timeout: int = 5000
    response_timeout: int = 10000
    animation_timeout: int = 3000
    stability_timeout: int = 2000
    ai_enabled: bool = False
    gemini_api_key: Optional[str] = None
    ai_model: str = "gemini-1.5-flash"
    ai_temperature: float = 0.7
    ai_max_tokens: int = 1000
    ai_timeout: float = 30.0
    history_file: Path = Path("test-results") / "execution-history.jsonl"
    artifacts_dir: Path = Path("test-results")

    @classmethod
    def from_config(cls, config: Optional[ConfigLoader] = None) -> "ReliabilitySettings":
        """Read every setting through the loader (env var > YAML > default)."""
        config = config or ConfigLoader()
        defaults = cls()
        return cls(
            visual_threshold=float(config.get("visual.threshold", defaults.visual_threshold)),
            pixel_threshold=float(config.get("visual.pixel_threshold", defaults.pixel_threshold)),
            flaky_threshold=float(config.get("flaky_test.threshold", defaults.flaky_threshold)),
            locator_timeout=int(config.get("locator.timeout", defaults.locator_timeout)),
            cache_probe_timeout=int(
                config.get("locator.cache_probe_timeout", defaults.cache_probe_timeout)
            ),
            wait_timeout=int(config.get("wait.timeout", defaults.wait_timeout)),
            network_idle_timeout=int(
                config.get("wait.network_idle_timeout", defaults.network_idle_timeout)
            ),
            response_timeout=int(config.get("wait.response_timeout", defaults.response_timeout)),
            animation_timeout=int(config.get("wait.animation_timeout", defaults.animation_timeout)),
            stability_timeout=int(config.get("wait.stability_timeout", defaults.stability_timeout)),
            ai_enabled=bool(config.get("ai.enabled", defaults.ai_enabled)),
            gemini_api_key=config.get("google.gemini_api_key"),
            ai_model=str(config.get("ai.model", defaults.ai_model)),
            ai_temperature=float(config.get("ai.temperature", defaults.ai_temperature)),
            ai_max_tokens=int(config.get("ai.max_tokens", defaults.ai_max_tokens)),
            ai_timeout=float(config.get("ai.timeout", defaults.ai_timeout)),
            history_file=Path(config.get("flaky_test.history_file", str(defaults.history_file))),
            artifacts_dir=Path(config.get("visual.artifacts_dir", str(defaults.artifacts_dir))),
        )


__all__ = [
    "ConfigLoader",
    "ConfigurationError",
    "ReliabilitySettings",
]

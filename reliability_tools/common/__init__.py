"""
================================================================================
Reliability Tools Common Utilities
================================================================================

This module provides shared configuration management and logging setup for
the reliability components.

Exports:
    - ConfigLoader: Singleton YAML + environment configuration loader
    - ReliabilitySettings: Typed settings snapshot
    - get_config: Convenience function to get configuration values
    - get_settings: Convenience function to build a settings snapshot
    - init_logger: Function to initialize loguru logger with standard settings

Usage:
    from reliability_tools.common import get_settings, init_logger

    init_logger()
    threshold = get_settings().visual_threshold

================================================================================
"""

import os
import sys
from typing import Any

from loguru import logger

from .config_loader import ConfigLoader, ConfigurationError, ReliabilitySettings


def get_config(key: str, default: Any = None) -> Any:
    """
    Convenience function to get a configuration value.

    Args:
        key: Configuration key using dot notation
        default: Default value if not found

    Returns:
        Configuration value or default

    Example:
        level = get_config("logging.level", "INFO")
    """
    return ConfigLoader().get(key, default)


def get_settings() -> ReliabilitySettings:
    """Build a settings snapshot from the current configuration."""
    return ReliabilitySettings.from_config(ConfigLoader())


# ============================================================
# Logging Setup
# ============================================================

_logger_initialized = False


def init_logger(
    level: str = None,
    format_string: str = None,
    log_file: str = None
) -> None:
    """
    Initializes the loguru logger with standard settings.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL
            or logging.level from configuration.
        format_string: Log format string. Uses default if not provided.
        log_file: Optional file path to write logs to.

    Example:
        init_logger()  # Use defaults
        init_logger(level="DEBUG", log_file="logs/reliability.log")
    """
    global _logger_initialized

    if _logger_initialized:
        return

    logger.remove()

    level = level or os.environ.get("LOG_LEVEL") or get_config("logging.level", "INFO")
    format_string = format_string or get_config(
        "logging.format",
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )

    logger.add(
        sys.stderr,
        format=format_string,
        level=level.upper(),
        colorize=True,
    )

    log_file = log_file or get_config("logging.file")
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        logger.add(
            log_file,
            format=format_string,
            level=level.upper(),
            rotation=get_config("logging.rotation", "5 MB"),
            retention=get_config("logging.retention", 5),
        )

    _logger_initialized = True
    logger.debug("Logger initialized successfully")


__all__ = [
    "ConfigLoader",
    "ConfigurationError",
    "ReliabilitySettings",
    "get_config",
    "get_settings",
    "init_logger",
]

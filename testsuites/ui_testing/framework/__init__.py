"""
================================================================================
UI Testing Framework
================================================================================

Playwright-based reliability layer for UI tests.

Components:
    - smart_locator: Self-healing element resolution with a validated cache
    - smart_waits: Condition-based waits (element state, network, animations,
      geometric stability, custom predicates)
    - visual_validator: Baseline screenshot comparison with ignore regions

Author: Automation Team
License: MIT
================================================================================
"""

from .smart_locator import LocatorCache, LocatorNotFound, SmartLocator
from .smart_waits import SmartWaits, WaitKind, WaitTimeout
from .visual_validator import (
    DimensionMismatch,
    IgnoreRegion,
    VisualComparisonResult,
    VisualValidator,
)

__all__ = [
    "SmartLocator",
    "LocatorCache",
    "LocatorNotFound",
    "SmartWaits",
    "WaitKind",
    "WaitTimeout",
    "VisualValidator",
    "VisualComparisonResult",
    "IgnoreRegion",
    "DimensionMismatch",
]

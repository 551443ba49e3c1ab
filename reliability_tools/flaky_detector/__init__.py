"""
================================================================================
Flaky Detector
================================================================================

Execution history storage and flaky test scoring.

Exports:
    - ExecutionRecord / Outcome: One test execution
    - HistoryStore, JsonlHistoryStore, InMemoryHistoryStore: Append-only history
    - FlakyTestDetector: Per-test scoring and diagnosis
    - FlakinessReport: Derived report for one test

The pytest recording plugin lives in `reliability_tools.flaky_detector.pytest_plugin`.

Author: Automation Team
License: MIT
================================================================================
"""

from .flaky_detector import (
    FlakinessReport,
    FlakyTestDetector,
    calculate_confidence,
    combine_scores,
    normalize_error,
)
from .history_store import (
    ExecutionRecord,
    HistoryStore,
    InMemoryHistoryStore,
    JsonlHistoryStore,
    Outcome,
)

__all__ = [
    "ExecutionRecord",
    "Outcome",
    "HistoryStore",
    "JsonlHistoryStore",
    "InMemoryHistoryStore",
    "FlakyTestDetector",
    "FlakinessReport",
    "normalize_error",
    "combine_scores",
    "calculate_confidence",
]

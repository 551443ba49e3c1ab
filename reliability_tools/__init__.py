"""
================================================================================
Reliability Tools
================================================================================

Supporting services for the UI reliability framework.

Modules:
    - common: Shared configuration and logging utilities
    - ai_assist: Optional generative suggestion provider (selectors, failure triage)
    - flaky_detector: Execution history storage and flaky test scoring
    - report_tools: Allure attachments and JSON report output

Example:
    from reliability_tools.flaky_detector import FlakyTestDetector, JsonlHistoryStore

    detector = FlakyTestDetector(JsonlHistoryStore("test-results/execution-history.jsonl"))
    reports = await detector.detect_flaky_tests()

================================================================================
"""

__version__ = "1.0.0"

__all__ = [
    "common",
    "ai_assist",
    "flaky_detector",
    "report_tools",
]

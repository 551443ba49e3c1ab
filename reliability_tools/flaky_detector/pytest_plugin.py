"""
================================================================================
Pytest Execution History Plugin
================================================================================

Records one ExecutionRecord per test into the shared history and, optionally,
writes the flakiness report when the session ends.

Options:
    --record-history PATH   Append results to a JSON Lines history file
    --flaky-report PATH     Write the flakiness report JSON at session end

Usage:
    pytest --record-history test-results/execution-history.jsonl \
           --flaky-report test-results/flaky-test-report.json

Author: Automation Team
License: MIT
================================================================================
"""

import asyncio
import platform
from pathlib import Path
from typing import Optional

import pytest
from loguru import logger

from reliability_tools.common import get_config, get_settings

from .flaky_detector import FlakyTestDetector
from .history_store import ExecutionRecord, JsonlHistoryStore, Outcome


PLUGIN_NAME = "flaky-history-recorder"

# Longest error text kept per record
MAX_ERROR_CHARS = 2000


def pytest_addoption(parser):
    group = parser.getgroup("flaky-history", "execution history and flaky test detection")
    group.addoption(
        "--record-history",
        action="store",
        default=None,
        metavar="PATH",
        help="Append one execution record per test to this JSON Lines file",
    )
    group.addoption(
        "--flaky-report",
        action="store",
        default=None,
        metavar="PATH",
        help="Write the flakiness report JSON to this path at session end",
    )


def pytest_configure(config):
    history = config.getoption("--record-history", default=None)
    report = config.getoption("--flaky-report", default=None)
    if not history and not report:
        return

    history_path = Path(history) if history else get_settings().history_file
    recorder = HistoryRecorder(
        store=JsonlHistoryStore(history_path),
        record=bool(history),
        report_path=Path(report) if report else None,
    )
    config.pluginmanager.register(recorder, PLUGIN_NAME)


def _error_text(report) -> Optional[str]:
    if report.passed:
        return None
    crash = getattr(report.longrepr, "reprcrash", None)
    text = crash.message if crash is not None else report.longreprtext
    return text[:MAX_ERROR_CHARS] if text else None


class HistoryRecorder:
    """Plugin object registered when history recording or reporting is enabled."""

    def __init__(self, store: JsonlHistoryStore, record: bool = True, report_path: Optional[Path] = None):
        self.store = store
        self.record = record
        self.report_path = report_path
        self.browser = get_config("browser.name")
        self.os_name = platform.system().lower() or None
        self.detector = FlakyTestDetector(store=store)

    @pytest.hookimpl(hookwrapper=True)
    def pytest_runtest_makereport(self, item, call):
        outcome = yield
        report = outcome.get_result()

        if not self.record:
            return
        # One record per test: the call phase, or setup when it never got that far
        if report.when == "call" or (report.when == "setup" and not report.passed):
            self.detector.record_outcome(self.build_record(item, report))

    def build_record(self, item, report) -> ExecutionRecord:
        if report.passed:
            result = Outcome.PASSED
        elif report.skipped:
            result = Outcome.SKIPPED
        else:
            result = Outcome.FAILED

        return ExecutionRecord(
            test_id=item.nodeid,
            outcome=result,
            duration=round(report.duration, 3),
            retry_count=max(getattr(item, "execution_count", 1) - 1, 0),
            error=_error_text(report),
            browser=self.browser,
            os_name=self.os_name,
        )

    def pytest_sessionfinish(self, session, exitstatus):
        if self.report_path is None:
            return
        # No test is running at session end, so there is no Allure result to attach to
        path = asyncio.run(
            self.detector.export_report(self.report_path, only_flaky=False, attach=False)
        )
        logger.info(f"Flaky test report saved: {path}")

    def pytest_terminal_summary(self, terminalreporter):
        if self.record:
            terminalreporter.write_line(f"execution history: {self.store.path}")
        if self.report_path is not None:
            terminalreporter.write_line(f"flaky test report: {self.report_path}")

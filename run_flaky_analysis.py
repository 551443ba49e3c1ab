#!/usr/bin/env python3
# ================================================================================
# Flaky Test Analysis Script
# ================================================================================
#
# Entry point for analyzing the recorded execution history and producing the
# flakiness report.
#
# Features:
#   - Statistical flakiness scoring per test
#   - Optional AI failure explanations (Gemini)
#   - JSON report output for CI artifacts
#   - Non-zero exit code when flaky tests are found (opt-in)
#
# Usage:
#   python run_flaky_analysis.py
#   python run_flaky_analysis.py --history test-results/execution-history.jsonl --threshold 0.2
#   python run_flaky_analysis.py --ai --fail-on-flaky
#
# ================================================================================

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from reliability_tools.ai_assist import create_suggestion_provider
from reliability_tools.common import get_settings, init_logger
from reliability_tools.flaky_detector import FlakinessReport, FlakyTestDetector, JsonlHistoryStore


DEFAULT_REPORT_NAME = "flaky-test-report.json"


class FlakyAnalysisRunner:
    """
    Runs the flakiness analysis over one history file.

    This class handles:
    - Detector construction from configuration and CLI overrides
    - Report generation
    - Summary output
    """

    def __init__(
        self,
        history: Optional[Path] = None,
        output: Optional[Path] = None,
        threshold: Optional[float] = None,
        use_ai: bool = False,
        only_flaky: bool = False,
        fail_on_flaky: bool = False,
    ):
        """
        Initialize the runner.

        Args:
            history: Execution history file (defaults to flaky_test.history_file)
            output: Report path (defaults to <artifacts_dir>/flaky-test-report.json)
            threshold: Flaky classification threshold override
            use_ai: Enrich the analysis with AI failure explanations
            only_flaky: Write only tests classified as flaky
            fail_on_flaky: Exit with 1 when flaky tests are found
        """
        settings = get_settings()
        if use_ai:
            settings.ai_enabled = True

        self.history = Path(history) if history else settings.history_file
        self.output = Path(output) if output else settings.artifacts_dir / DEFAULT_REPORT_NAME
        self.fail_on_flaky = fail_on_flaky
        self.only_flaky = only_flaky
        self.detector = FlakyTestDetector(
            store=JsonlHistoryStore(self.history),
            suggestion_provider=create_suggestion_provider(settings) if use_ai else None,
            threshold=threshold,
            settings=settings,
        )

    def run(self) -> int:
        """
        Execute the analysis.

        Returns:
            Exit code (0 for success, 1 when flaky tests fail the run)
        """
        logger.info("=" * 60)
        logger.info("Starting Flaky Test Analysis")
        logger.info("=" * 60)
        logger.info(f"History: {self.history}")
        logger.info(f"Threshold: {self.detector.threshold}")
        logger.info("=" * 60)

        if not self.history.exists():
            logger.warning(f"No execution history found at {self.history}")

        reports = asyncio.run(self._analyze())

        flaky = [r for r in reports if r.is_flaky]
        self._print_summary(reports, flaky)

        if flaky and self.fail_on_flaky:
            return 1
        return 0

    async def _analyze(self) -> List[FlakinessReport]:
        reports = await self.detector.analyze()
        await self.detector.export_report(self.output, only_flaky=self.only_flaky, reports=reports)
        return reports

    def _print_summary(self, reports: List[FlakinessReport], flaky: List[FlakinessReport]) -> None:
        logger.info("=" * 60)
        logger.info(f"Tests analyzed: {len(reports)}")
        logger.info(f"Flaky tests: {len(flaky)}")
        for report in flaky:
            logger.warning(
                f"  {report.test_id}: score={report.flaky_score:.2f} "
                f"confidence={report.confidence:.2f} runs={report.total_runs}"
            )
            for reason in report.reasons:
                logger.warning(f"    - {reason}")
        logger.info(f"Report available at: {self.output}")
        logger.info("=" * 60)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Flaky test analysis over the recorded execution history",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze the configured history file
  python run_flaky_analysis.py

  # Stricter threshold, fail the CI job when flaky tests are found
  python run_flaky_analysis.py --threshold 0.1 --fail-on-flaky

  # Add AI explanations (needs GOOGLE_GEMINI_API_KEY)
  python run_flaky_analysis.py --ai
        """
    )

    parser.add_argument(
        "--history",
        type=Path,
        default=None,
        help="Execution history JSON Lines file (default: flaky_test.history_file)"
    )

    parser.add_argument(
        "--output", "-o",
        type=Path,
        default=None,
        help="Report output path (default: test-results/flaky-test-report.json)"
    )

    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Flaky score threshold in [0, 1] (default: flaky_test.threshold)"
    )

    parser.add_argument(
        "--ai",
        action="store_true",
        help="Enrich the analysis with AI failure explanations"
    )

    parser.add_argument(
        "--only-flaky",
        action="store_true",
        help="Write only tests classified as flaky to the report"
    )

    parser.add_argument(
        "--fail-on-flaky",
        action="store_true",
        help="Exit with code 1 when flaky tests are found"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.threshold is not None and not 0 <= args.threshold <= 1:
        logger.error(f"Threshold must be within [0, 1], got {args.threshold}")
        return 2

    init_logger(level="DEBUG" if args.verbose else None)

    runner = FlakyAnalysisRunner(
        history=args.history,
        output=args.output,
        threshold=args.threshold,
        use_ai=args.ai,
        only_flaky=args.only_flaky,
        fail_on_flaky=args.fail_on_flaky,
    )
    return runner.run()


if __name__ == "__main__":
    sys.exit(main())

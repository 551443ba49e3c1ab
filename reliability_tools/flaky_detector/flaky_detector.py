"""
================================================================================
Flaky Test Detector
================================================================================

Identifies unreliable tests from their execution history using statistical
analysis, optionally enriched by the suggestion provider.

Per-test signals:
    - Failure rate (base score)
    - Duration coefficient of variation (timing sensitivity)
    - Recurring normalized error signatures
    - Retry counts
    - Browser / OS segmented pass rates

The history is the source of truth; reports are recomputed on demand and
never raise for malformed or missing data.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import re
import statistics
from collections import Counter, OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from loguru import logger

from reliability_tools.ai_assist import (
    SuggestionProvider,
    SuggestionUnavailable,
    normalize_explanation,
)
from reliability_tools.common import ReliabilitySettings
from reliability_tools.report_tools import attach_flakiness_reports, write_json_report

from .history_store import ExecutionRecord, HistoryStore, InMemoryHistoryStore


# Coefficient of variation above which durations count as timing-sensitive
DURATION_VARIATION_THRESHOLD = 0.5

# Segment pass rate below which a browser / OS is reported
ENVIRONMENT_PASS_RATE_THRESHOLD = 0.8

# Average retries above which retries count as evidence of flakiness
RETRY_AVERAGE_THRESHOLD = 1.0

# Runs needed for full sample-size confidence
CONFIDENCE_SATURATION_RUNS = 10


# ================================================================================
# Data Models
# ================================================================================

@dataclass
class RetryStats:
    """Retry counts across a test's runs."""
    max_retries: int = 0
    avg_retries: float = 0.0


@dataclass
class FlakinessReport:
    """
    Derived flakiness diagnosis for one test.

    Attributes:
        test_id: Test identifier
        flaky_score: Combined score in [0, 1]
        reasons: Ordered, deduplicated contributing reasons
        recommendations: Ordered, deduplicated remediation hints
        confidence: Confidence in the score, in [0, 1]
        is_flaky: flaky_score >= threshold
        total_runs: Number of valid runs analyzed
        pass_rate: passed / total_runs
    """
    test_id: str
    flaky_score: float = 0.0
    reasons: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    confidence: float = 0.0
    is_flaky: bool = False
    total_runs: int = 0
    pass_rate: float = 0.0

    @classmethod
    def empty(cls, test_id: str) -> "FlakinessReport":
        """Most conservative report: no evidence, no confidence."""
        return cls(test_id=test_id)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ================================================================================
# Scoring Helpers
# ================================================================================

_DIGITS = re.compile(r"\d+")
_STACK_FRAME = re.compile(r"at .*?\(.*?\)")
_REPEATED_FRAMES = re.compile(r"(?:at \.\.\.\s*){2,}")
_WHITESPACE = re.compile(r"\s+")


def normalize_error(error: str) -> str:
    """
    Reduce an error message to a signature for clustering.

    Numbers become "N", stack frames become "at ...", consecutive frames
    collapse to one, whitespace collapses to single spaces.

    Example:
        >>> normalize_error("TimeoutError: 30000ms exceeded\\n    at run (a.ts:10:3)")
        'TimeoutError: Nms exceeded at ...'
    """
    text = _DIGITS.sub("N", error)
    text = _STACK_FRAME.sub("at ...", text)
    text = _REPEATED_FRAMES.sub("at ... ", text)
    return _WHITESPACE.sub(" ", text).strip()


def duration_variation(durations: List[float]) -> float:
    """Coefficient of variation (population stddev / mean); 0 when undefined."""
    if len(durations) < 2:
        return 0.0
    mean = statistics.fmean(durations)
    if mean <= 0:
        return 0.0
    return statistics.pstdev(durations) / mean


def combine_scores(statistical: float, external: Optional[float]) -> float:
    """
    Merge the statistical score with an external (suggestion) score.

    Policy: take the maximum. An external opinion can raise the risk of a
    test but can never hide a statistically detected problem.
    """
    if external is None:
        return statistical
    return max(statistical, min(max(external, 0.0), 1.0))


def calculate_confidence(total_runs: int, flaky_score: float) -> float:
    """
    Average of sample-size confidence and score-clarity confidence.

    Sample-size confidence saturates at CONFIDENCE_SATURATION_RUNS runs;
    clarity rises linearly with the score and saturates above 0.5.
    """
    if total_runs <= 0:
        return 0.0
    run_confidence = min(total_runs / CONFIDENCE_SATURATION_RUNS, 1.0)
    score_confidence = 1.0 if flaky_score > 0.5 else flaky_score * 2
    return (run_confidence + score_confidence) / 2


def _unique(items: Iterable[str]) -> List[str]:
    return list(OrderedDict.fromkeys(item for item in items if item))


def _pass_rate(records: List[ExecutionRecord]) -> float:
    return sum(1 for r in records if r.passed) / len(records)


# Reason keyword -> recommendations
_RECOMMENDATION_RULES = [
    (
        re.compile(r"\b(timing|race)\b", re.IGNORECASE),
        ["Add explicit waits and increase timeouts",
         "Use smart wait strategies for dynamic content"],
    ),
    (
        re.compile(r"selector|locator", re.IGNORECASE),
        ["Use more robust selectors with data-testid attributes",
         "Implement self-healing locators"],
    ),
    (
        re.compile(r"\bdata\b", re.IGNORECASE),
        ["Use stable test data and cleanup procedures",
         "Implement data isolation between tests"],
    ),
]


def derive_recommendations(
    reasons: List[str],
    error_patterns: List[str],
    environment_issues: List[str],
) -> List[str]:
    """Map the categories of fired reasons onto remediation hints."""
    recommendations: List[str] = []

    for pattern, advice in _RECOMMENDATION_RULES[:2]:
        if any(pattern.search(r) for r in reasons):
            recommendations.extend(advice)

    if any("timeout" in e.lower() for e in error_patterns):
        recommendations.extend([
            "Increase timeout values for slow operations",
            "Add network idle waits",
        ])

    if environment_issues:
        recommendations.extend([
            "Investigate environment-specific issues",
            "Add environment-specific test configurations",
        ])

    pattern, advice = _RECOMMENDATION_RULES[2]
    if any(pattern.search(r) for r in reasons):
        recommendations.extend(advice)

    return _unique(recommendations)


# ================================================================================
# Detector
# ================================================================================

class FlakyTestDetector:
    """
    Flaky test detection over an append-only execution history.

    Usage:
        >>> detector = FlakyTestDetector(JsonlHistoryStore("history.jsonl"))
        >>> detector.record_outcome(ExecutionRecord("login test", Outcome.FAILED, 3.2))
        >>> report = await detector.report_for("login test")
        >>> report.flaky_score, report.reasons
    """

    def __init__(
        self,
        store: Optional[HistoryStore] = None,
        suggestion_provider: Optional[SuggestionProvider] = None,
        threshold: Optional[float] = None,
        settings: Optional[ReliabilitySettings] = None,
    ) -> None:
        """
        Initialize the detector.

        Args:
            store: History store; an in-memory store is used if None
            suggestion_provider: Optional provider for failure explanations
            threshold: Flaky classification threshold (defaults to settings)
            settings: Settings snapshot (defaults to the loaded configuration)
        """
        self.settings = settings or ReliabilitySettings.from_config()
        self.store = store if store is not None else InMemoryHistoryStore()
        self.suggestion_provider = suggestion_provider
        self.threshold = threshold if threshold is not None else self.settings.flaky_threshold

    def record_outcome(self, record: ExecutionRecord) -> None:
        """Append one execution to the history. Storage failures are logged, not raised."""
        try:
            self.store.append(record)
        except Exception as e:
            logger.error(f"Failed to record test result for {record.test_id}: {e}")

    # ------------------------------------------------------------------
    # Public analysis API
    # ------------------------------------------------------------------

    async def analyze(self) -> List[FlakinessReport]:
        """Report on every test in the history, highest score first."""
        grouped = self._group_by_test(self._read_records())
        explanations = await self._explain(
            [r for records in grouped.values() for r in records]
        )

        reports = [
            self.score(test_id, records, explanations.get(test_id))
            for test_id, records in grouped.items()
        ]
        reports.sort(key=lambda r: r.flaky_score, reverse=True)

        for report in reports:
            if report.is_flaky:
                logger.warning(
                    f"Flaky test detected: {report.test_id} "
                    f"(score={report.flaky_score:.2f}, reasons={report.reasons})"
                )
        return reports

    async def detect_flaky_tests(self) -> List[FlakinessReport]:
        """Only the reports classified as flaky."""
        return [r for r in await self.analyze() if r.is_flaky]

    async def report_for(self, test_id: str) -> FlakinessReport:
        """Report on a single test; empty report if it has no history."""
        records = [r for r in self._read_records() if r.test_id == test_id]
        if not records:
            logger.debug(f"No execution history for {test_id}")
            return FlakinessReport.empty(test_id)

        explanations = await self._explain(records)
        return self.score(test_id, records, explanations.get(test_id))

    async def export_report(
        self,
        path: Union[str, Path],
        only_flaky: bool = True,
        reports: Optional[List[FlakinessReport]] = None,
        attach: bool = True,
    ) -> Path:
        """
        Write the flakiness report JSON artifact and attach it to Allure.

        Args:
            path: Destination file
            only_flaky: Include only tests classified as flaky
            reports: Already computed reports (analyzed now if None)
            attach: Also attach the selected reports to the running Allure test

        Returns:
            The written path
        """
        if reports is None:
            reports = await self.analyze()
        selected = [r for r in reports if r.is_flaky] if only_flaky else reports
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "threshold": self.threshold,
            "totalTests": len(reports),
            "totalFlakyTests": sum(1 for r in reports if r.is_flaky),
            "tests": [r.to_dict() for r in selected],
        }
        if attach:
            attach_flakiness_reports(selected)
        return write_json_report(payload, path)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(
        self,
        test_id: str,
        records: List[ExecutionRecord],
        explanation: Optional[Dict[str, Any]] = None,
    ) -> FlakinessReport:
        """
        Score one test from its records.

        Args:
            test_id: Test identifier
            records: The test's valid execution records
            explanation: Optional suggestion entry `{"score", "reasons"}`

        Returns:
            FlakinessReport; the empty report if scoring is impossible. An
            unusable explanation leaves the statistical report unchanged.
        """
        if not records:
            return FlakinessReport.empty(test_id)

        try:
            statistical = self._score(test_id, records, {})
        except Exception as e:
            logger.error(f"Flakiness scoring failed for {test_id}: {e}")
            return FlakinessReport.empty(test_id)

        if not explanation:
            return statistical
        entry = normalize_explanation({**explanation, "test_id": test_id}) or {}
        try:
            return self._score(test_id, records, entry)
        except Exception as e:
            logger.warning(f"Ignoring AI explanation for {test_id}: {e}")
            return statistical

    def _score(
        self,
        test_id: str,
        records: List[ExecutionRecord],
        explanation: Dict[str, Any],
    ) -> FlakinessReport:
        total_runs = len(records)
        pass_rate = _pass_rate(records)
        statistical_score = 1.0 - pass_rate

        variation = duration_variation([r.duration for r in records])
        error_patterns = self._analyze_error_patterns(records)
        retry_stats = self._analyze_retry_patterns(records)
        environment_issues = self._analyze_environment_issues(records)

        reasons: List[str] = []
        if statistical_score > 0 and statistical_score >= self.threshold:
            reasons.append(f"High failure rate: {statistical_score * 100:.1f}%")
        if variation > DURATION_VARIATION_THRESHOLD:
            reasons.append("High duration variance indicating timing issues")
        if error_patterns:
            reasons.append(f"Recurring errors: {', '.join(error_patterns)}")
        if retry_stats.avg_retries > RETRY_AVERAGE_THRESHOLD:
            reasons.append(
                f"High retry count: {retry_stats.avg_retries:.1f} average retries "
                f"(max {retry_stats.max_retries})"
            )
        reasons.extend(environment_issues)
        reasons.extend(explanation.get("reasons") or [])
        reasons = _unique(reasons)

        flaky_score = combine_scores(statistical_score, explanation.get("score"))
        return FlakinessReport(
            test_id=test_id,
            flaky_score=flaky_score,
            reasons=reasons,
            recommendations=derive_recommendations(reasons, error_patterns, environment_issues),
            confidence=calculate_confidence(total_runs, statistical_score),
            is_flaky=flaky_score >= self.threshold,
            total_runs=total_runs,
            pass_rate=pass_rate,
        )

    def _analyze_error_patterns(self, records: List[ExecutionRecord]) -> List[str]:
        """Normalized error signatures seen more than once, with counts."""
        counts = Counter(normalize_error(r.error) for r in records if r.error)
        return [f"{signature} ({count} times)" for signature, count in counts.items() if count > 1]

    def _analyze_retry_patterns(self, records: List[ExecutionRecord]) -> RetryStats:
        retries = [r.retry_count for r in records]
        return RetryStats(max_retries=max(retries), avg_retries=sum(retries) / len(retries))

    def _analyze_environment_issues(self, records: List[ExecutionRecord]) -> List[str]:
        """Browser and OS segments with a pass rate below the environment threshold."""
        issues: List[str] = []
        extractors: List[Callable[[ExecutionRecord], Optional[str]]] = [
            lambda r: r.browser,
            lambda r: r.os_name,
        ]
        for extract in extractors:
            segments: Dict[str, List[ExecutionRecord]] = {}
            for record in records:
                tag = extract(record)
                if tag:
                    segments.setdefault(tag, []).append(record)
            for tag, segment in segments.items():
                rate = _pass_rate(segment)
                if rate < ENVIRONMENT_PASS_RATE_THRESHOLD:
                    issues.append(f"Environment-specific issue: low pass rate on {tag} ({rate * 100:.1f}%)")
        return issues

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read_records(self) -> List[ExecutionRecord]:
        try:
            return self.store.read_records()
        except Exception as e:
            logger.error(f"Failed to read execution history: {e}")
            return []

    async def _explain(self, records: List[ExecutionRecord]) -> Dict[str, Dict[str, Any]]:
        """Best-effort suggestion explanations keyed by test id."""
        if self.suggestion_provider is None or not records:
            return {}

        try:
            entries = await self.suggestion_provider.explain_failures(
                [r.to_dict() for r in records]
            )
        except SuggestionUnavailable as e:
            logger.warning(f"AI analysis unavailable, using statistical analysis only: {e}")
            return {}
        except Exception as e:
            logger.warning(f"AI analysis failed, using statistical analysis only: {e}")
            return {}

        explanations: Dict[str, Dict[str, Any]] = {}
        if not isinstance(entries, list):
            logger.warning(f"AI analysis returned {type(entries).__name__}, using statistical analysis only")
            return {}
        for entry in map(normalize_explanation, entries):
            if entry is not None:
                explanations[entry["test_id"]] = entry
        return explanations

    @staticmethod
    def _group_by_test(records: List[ExecutionRecord]) -> Dict[str, List[ExecutionRecord]]:
        grouped: Dict[str, List[ExecutionRecord]] = OrderedDict()
        for record in records:
            grouped.setdefault(record.test_id, []).append(record)
        return grouped


__all__ = [
    "FlakyTestDetector",
    "FlakinessReport",
    "RetryStats",
    "normalize_error",
    "duration_variation",
    "combine_scores",
    "calculate_confidence",
    "derive_recommendations",
]

"""
================================================================================
Execution History Store
================================================================================

Append-only storage for test execution records, the single source of truth
for flakiness analysis.

Features:
    - Immutable ExecutionRecord model with tolerant deserialization
    - JSON Lines file store with cross-process write serialization (filelock)
    - Thread-safe in-memory store for tests and single-process runs
    - Reads skip malformed entries instead of failing

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import json
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from filelock import FileLock
from loguru import logger


# Seconds to wait for the history lock before giving up on an append
DEFAULT_LOCK_TIMEOUT = 10.0


# ================================================================================
# Data Models
# ================================================================================

class Outcome(str, Enum):
    """Final outcome of one test execution."""
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ExecutionRecord:
    """
    One test execution.

    Attributes:
        test_id: Stable test identifier (pytest node id, test title, ...)
        outcome: passed / failed / skipped
        duration: Wall-clock duration in seconds
        retry_count: Retries consumed before the final outcome
        error: Failure message, if any
        browser: Browser tag (chromium, firefox, webkit, ...)
        os_name: Operating system tag
        timestamp: ISO-8601 UTC timestamp
    """
    test_id: str
    outcome: Outcome
    duration: float = 0.0
    retry_count: int = 0
    error: Optional[str] = None
    browser: Optional[str] = None
    os_name: Optional[str] = None
    timestamp: str = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if not isinstance(self.outcome, Outcome):
            object.__setattr__(self, "outcome", Outcome(str(self.outcome).lower()))

    @property
    def passed(self) -> bool:
        return self.outcome == Outcome.PASSED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ExecutionRecord":
        """
        Build a record from a stored payload.

        Accepts both snake_case keys and the camelCase keys of older
        histories (testName, status, retryCount, os).

        Raises:
            ValueError: When the payload is not a usable record
        """
        if not isinstance(data, dict):
            raise ValueError(f"Execution record must be an object, got {type(data).__name__}")

        test_id = data.get("test_id") or data.get("testId") or data.get("testName")
        if not test_id or not isinstance(test_id, str):
            raise ValueError("Execution record has no test identifier")

        outcome = data.get("outcome", data.get("status"))
        try:
            outcome = Outcome(str(outcome).lower())
            duration = float(data.get("duration") or 0.0)
            retry_count = int(data.get("retry_count", data.get("retryCount")) or 0)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Malformed execution record for '{test_id}': {e}") from e

        if duration < 0 or retry_count < 0:
            raise ValueError(f"Negative duration or retry count for '{test_id}'")

        error = data.get("error")
        return cls(
            test_id=test_id,
            outcome=outcome,
            duration=duration,
            retry_count=retry_count,
            error=str(error) if error else None,
            browser=data.get("browser") or None,
            os_name=data.get("os_name") or data.get("os") or None,
            timestamp=str(data.get("timestamp") or ""),
        )


# ================================================================================
# Stores
# ================================================================================

class HistoryStore(ABC):
    """Append-only log of execution records."""

    @abstractmethod
    def append(self, record: ExecutionRecord) -> None:
        """Durably append one record."""
        raise NotImplementedError

    @abstractmethod
    def read_raw(self) -> List[Any]:
        """Return every stored payload in append order, unvalidated."""
        raise NotImplementedError

    def read_records(self) -> List[ExecutionRecord]:
        """Return every valid record in append order; malformed entries are skipped."""
        records: List[ExecutionRecord] = []
        skipped = 0
        for payload in self.read_raw():
            try:
                records.append(ExecutionRecord.from_dict(payload))
            except ValueError as e:
                skipped += 1
                logger.debug(f"Skipping malformed execution record: {e}")
        if skipped:
            logger.warning(f"Skipped {skipped} malformed execution record(s)")
        return records

    def records_for(self, test_id: str) -> List[ExecutionRecord]:
        return [r for r in self.read_records() if r.test_id == test_id]


class JsonlHistoryStore(HistoryStore):
    """
    History persisted as JSON Lines, one record per line.

    Appends take an exclusive file lock so parallel workers (pytest-xdist,
    separate CI shards on a shared volume) never interleave partial lines.
    Reads are lock-free and tolerate a partially written last line.

    Usage:
        >>> store = JsonlHistoryStore("test-results/execution-history.jsonl")
        >>> store.append(ExecutionRecord("login test", Outcome.PASSED, duration=1.2))
        >>> len(store.read_records())
        1
    """

    def __init__(self, path: Union[str, Path], lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_timeout = lock_timeout

    def append(self, record: ExecutionRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        with FileLock(str(self.lock_path), timeout=self.lock_timeout):
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())

        logger.debug(f"Recorded test result: {record.test_id} - {record.outcome.value}")

    def read_raw(self) -> List[Any]:
        if not self.path.exists():
            return []

        try:
            data = self.path.read_bytes()
        except OSError as e:
            logger.error(f"Failed to load execution history {self.path}: {e}")
            return []

        # Histories written as a single JSON array are still readable
        if data.lstrip().startswith(b"["):
            try:
                parsed = json.loads(data.decode("utf-8"))
                return parsed if isinstance(parsed, list) else []
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                logger.warning(f"Execution history {self.path} is not valid JSON: {e}")
                return []

        payloads: List[Any] = []
        for number, line in enumerate(data.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                payloads.append(json.loads(line.decode("utf-8")))
            except (UnicodeDecodeError, json.JSONDecodeError):
                logger.warning(f"Unparseable history line {number} in {self.path}")
        return payloads


class InMemoryHistoryStore(HistoryStore):
    """Process-local history guarded by a lock."""

    def __init__(self, initial: Iterable[Any] = ()) -> None:
        self._lock = threading.Lock()
        self._payloads: List[Any] = [
            item.to_dict() if isinstance(item, ExecutionRecord) else item for item in initial
        ]

    def append(self, record: ExecutionRecord) -> None:
        with self._lock:
            self._payloads.append(record.to_dict())

    def read_raw(self) -> List[Any]:
        with self._lock:
            return list(self._payloads)


__all__ = [
    "Outcome",
    "ExecutionRecord",
    "HistoryStore",
    "JsonlHistoryStore",
    "InMemoryHistoryStore",
]

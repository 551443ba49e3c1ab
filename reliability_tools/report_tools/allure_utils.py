"""
================================================================================
Allure Report Utilities
================================================================================

This module provides helpers for attaching reliability artifacts to Allure
test reports and for writing JSON report artifacts to disk.

Features:
- JSON / text / PNG attachment helpers
- Visual comparison attachments (baseline, current, diff)
- Flakiness report attachment
- Atomic JSON artifact writer

================================================================================
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union

import allure
from loguru import logger


# ================================================================================
# Attachment Helpers
# ================================================================================

def attach_json(data: Any, name: str = "Data"):
    """
    Attach JSON data to Allure report.

    Args:
        data: Data to attach (will be JSON serialized)
        name: Attachment name
    """
    json_str = json.dumps(data, indent=2, default=str)
    allure.attach(
        json_str,
        name=name,
        attachment_type=allure.attachment_type.JSON
    )


def attach_text(text: str, name: str = "Text"):
    """
    Attach text content to Allure report.

    Args:
        text: Text to attach
        name: Attachment name
    """
    allure.attach(
        text,
        name=name,
        attachment_type=allure.attachment_type.TEXT
    )


def attach_png(path: Union[str, Path, None], name: str = "Image"):
    """
    Attach a PNG file to Allure report if it exists.

    Args:
        path: PNG file path
        name: Attachment name
    """
    if not path or not Path(path).exists():
        return
    allure.attach.file(
        str(path),
        name=name,
        attachment_type=allure.attachment_type.PNG
    )


def attach_visual_comparison(result, name: str = "Visual comparison"):
    """
    Attach the artifacts of a failed visual comparison.

    Args:
        result: VisualComparisonResult
        name: Step name prefix
    """
    with allure.step(f"{name}: diff {result.diff_ratio:.2%} (threshold {result.threshold:.2%})"):
        attach_png(result.baseline_path, name="Baseline")
        attach_png(result.current_path, name="Current")
        attach_png(result.diff_path, name="Diff")
        if result.mismatch:
            attach_text(result.mismatch, name="Dimension mismatch")


def attach_flakiness_reports(reports, name: str = "Flaky test analysis"):
    """
    Attach flakiness reports as JSON.

    Args:
        reports: Iterable of FlakinessReport
        name: Attachment name
    """
    attach_json([report.to_dict() for report in reports], name=name)


# ================================================================================
# Artifact Output
# ================================================================================

def write_json_report(data: Any, path: Union[str, Path]) -> Path:
    """
    Write a JSON artifact atomically.

    The payload is written to a temporary file in the target directory and
    moved into place, so readers never observe a half-written report.

    Args:
        data: JSON-serializable payload
        path: Destination path

    Returns:
        The destination path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    logger.info(f"Report written: {path}")
    return path

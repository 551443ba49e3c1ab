"""
================================================================================
Report Tools
================================================================================

Allure attachments and JSON artifacts for reliability results.

================================================================================
"""

from .allure_utils import (
    attach_flakiness_reports,
    attach_json,
    attach_png,
    attach_text,
    attach_visual_comparison,
    write_json_report,
)

__all__ = [
    "attach_json",
    "attach_text",
    "attach_png",
    "attach_visual_comparison",
    "attach_flakiness_reports",
    "write_json_report",
]

"""
================================================================================
Root Pytest Configuration
================================================================================

This module provides the root pytest configuration for the entire test suite.
It registers common markers and provides shared fixtures.

================================================================================
"""

from pathlib import Path

import pytest


def pytest_configure(config):
    """Configure pytest with project-wide custom markers."""

    # Priority markers
    config.addinivalue_line(
        "markers", "P0: Critical priority tests - must pass for release"
    )
    config.addinivalue_line(
        "markers", "P1: High priority tests - important functionality"
    )
    config.addinivalue_line(
        "markers", "P2: Medium priority tests - edge cases and minor features"
    )

    # Test type markers
    config.addinivalue_line(
        "markers", "unit: Fast tests without a browser"
    )
    config.addinivalue_line(
        "markers", "integration: Tests driving a real Playwright browser"
    )

    # Domain markers
    config.addinivalue_line(
        "markers", "ui: UI-specific tests"
    )
    config.addinivalue_line(
        "markers", "locator: Tests related to self-healing locators"
    )
    config.addinivalue_line(
        "markers", "waits: Tests related to smart waits"
    )
    config.addinivalue_line(
        "markers", "flaky: Tests related to flaky test detection"
    )
    config.addinivalue_line(
        "markers", "visual: Tests related to visual comparison"
    )


def pytest_collection_modifyitems(config, items):
    """
    Modify collected test items.

    Adds directory-based markers so suites can be selected with -m.
    """
    for item in items:
        # Auto-add 'unit' marker to tests in unit directory
        if "unit" in Path(str(item.fspath)).parts:
            item.add_marker(pytest.mark.unit)

        # Auto-add 'ui' marker to tests in ui_testing directory
        if "ui_testing" in str(item.fspath):
            item.add_marker(pytest.mark.ui)
            item.add_marker(pytest.mark.integration)


def pytest_report_header(config):
    """Add custom header to pytest output."""
    return [
        "",
        "=" * 60,
        "UI Reliability Framework",
        "=" * 60,
        "",
    ]

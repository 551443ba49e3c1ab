"""
================================================================================
UI Testing Pytest Configuration
================================================================================

This module configures pytest for the browser-backed tests of the reliability
components.

Key Features:
- Chromium page lifecycle (skips cleanly when no browser is installed)
- Settings snapshot with short timeouts for local pages

Pages are rendered with `page.set_content`, so no application server is needed.

================================================================================
"""

from pathlib import Path
from typing import AsyncGenerator

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright

from reliability_tools.common import ReliabilitySettings


# ================================================================================
# Browser Fixtures
# ================================================================================

@pytest.fixture
async def page() -> AsyncGenerator[Page, None]:
    """
    Function-scoped chromium page.

    Launches its own browser so each test gets an isolated event loop and
    context. Skips when chromium cannot be launched (e.g. `playwright install`
    was never run).
    """
    async with async_playwright() as playwright:
        try:
            browser = await playwright.chromium.launch(headless=True)
        except PlaywrightError as e:
            pytest.skip(f"Chromium is not available: {str(e).splitlines()[0]}")

        context = await browser.new_context(viewport={"width": 800, "height": 600})
        page = await context.new_page()
        yield page
        await context.close()
        await browser.close()


@pytest.fixture
def settings(tmp_path: Path) -> ReliabilitySettings:
    """
    Settings snapshot tuned for local pages: short probes, artifacts in tmp.
    """
    return ReliabilitySettings(
        locator_timeout=500,
        cache_probe_timeout=200,
        wait_timeout=3000,
        stability_timeout=2000,
        animation_timeout=2000,
        artifacts_dir=tmp_path / "visual",
    )


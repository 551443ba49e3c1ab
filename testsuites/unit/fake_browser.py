"""
In-process stand-ins for the Playwright Page / Locator surface used by the
framework. Visibility, bounding boxes and page waits are scripted per test.
"""

import asyncio
from typing import Dict, Iterable, List, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector
        self.box_calls = 0

    @property
    def first(self) -> "FakeLocator":
        return self

    async def wait_for(self, state: str = "visible", timeout: Optional[float] = None) -> None:
        self.page.probes.append((self.selector, timeout))
        present = self.selector in self.page.visible
        if state in ("visible", "attached") and not present:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {self.selector}")
        if state in ("hidden", "detached") and present:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {self.selector} to be {state}")

    async def is_visible(self) -> bool:
        return self.selector in self.page.visible

    async def bounding_box(self, timeout: Optional[float] = None) -> Optional[Dict[str, float]]:
        self.box_calls += 1
        self.page.box_timeouts.append(timeout)
        if self.page.box_delay:
            # Playwright waits for the element to attach, up to the timeout
            limit = self.page.box_delay if timeout is None else min(self.page.box_delay, timeout / 1000)
            await asyncio.sleep(limit)
            if limit < self.page.box_delay:
                raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {self.selector}")
        boxes = self.page.boxes.get(self.selector, [])
        if not boxes:
            return None
        if len(boxes) > 1:
            return boxes.pop(0)
        return boxes[0]

    async def screenshot(self, **kwargs) -> bytes:
        return self.page.png

    def __repr__(self) -> str:
        return f"FakeLocator({self.selector!r})"


class FakePage:
    def __init__(
        self,
        visible: Iterable[str] = (),
        boxes: Optional[Dict[str, List[Optional[Dict[str, float]]]]] = None,
        png: bytes = b"",
    ):
        self.visible = set(visible)
        self.boxes = boxes or {}
        self.png = png
        self.probes: List[tuple] = []
        self.calls: List[tuple] = []
        self.network_idle = True
        self.animation_delay = 0.0
        self.box_delay = 0.0
        self.box_timeouts: List[Optional[float]] = []
        self.fail_functions = False

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    async def content(self) -> str:
        return "<html><body><button>Log in</button></body></html>"

    async def wait_for_load_state(self, state: str = "load", timeout: Optional[float] = None) -> None:
        self.calls.append(("wait_for_load_state", state, timeout))
        if not self.network_idle:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {state}")

    async def wait_for_response(self, pattern, timeout: Optional[float] = None):
        self.calls.append(("wait_for_response", pattern, timeout))
        if pattern == "**/missing":
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for response {pattern}")
        return {"url": pattern, "status": 200}

    async def evaluate(self, script: str):
        self.calls.append(("evaluate",))
        await asyncio.sleep(self.animation_delay)
        return 2

    async def wait_for_url(self, url: str, timeout: Optional[float] = None) -> None:
        self.calls.append(("wait_for_url", url, timeout))

    async def wait_for_function(self, expression: str, timeout: Optional[float] = None) -> None:
        self.calls.append(("wait_for_function", expression, timeout))
        if self.fail_functions:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for function")

    async def screenshot(self, **kwargs) -> bytes:
        self.calls.append(("screenshot", kwargs))
        return self.png

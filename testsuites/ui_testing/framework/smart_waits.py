"""
================================================================================
Smart Waits
================================================================================

Condition-based waiting for dynamic pages. Every wait is bounded by a
timeout; only the primary condition of a wait can fail it.

Wait kinds:
    - ELEMENT_STATE: visible / hidden / attached / detached
    - NETWORK_IDLE: no network activity (load state "networkidle")
    - RESPONSE: a response matching a URL pattern or predicate
    - ANIMATIONS: all running CSS/Web animations finished
    - STABLE: element bounding box unchanged across consecutive samples
    - CUSTOM: caller predicate or page expression

Secondary conditions (extra page expressions, AI-suggested strategies)
degrade to warnings.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import asyncio
import inspect
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Pattern, Sequence, Union

import allure
from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from reliability_tools.ai_assist import SuggestionProvider, SuggestionUnavailable
from reliability_tools.common import ReliabilitySettings


ELEMENT_STATES = ("visible", "hidden", "attached", "detached")

# Predicate polling interval in seconds
POLL_INTERVAL = 0.1

ANIMATIONS_SCRIPT = """
() => new Promise((resolve) => {
    const animations = document.getAnimations();
    if (animations.length === 0) {
        resolve(0);
        return;
    }
    Promise.all(animations.map((animation) => animation.finished))
        .then(() => resolve(animations.length))
        .catch(() => resolve(animations.length));
})
"""

_URL_CONDITION = re.compile(r"""^\s*url\s*===?\s*['"`]([^'"`]+)['"`]\s*$""")
_SUGGESTED_RESPONSE = re.compile(r"""wait_?for_?response\(\s*['"`]([^'"`]+)['"`]""", re.IGNORECASE)

UrlMatcher = Union[str, Pattern, Callable[[Any], bool]]


class WaitKind(str, Enum):
    """Condition families understood by SmartWaits.await_condition."""
    ELEMENT_STATE = "element_state"
    NETWORK_IDLE = "network_idle"
    RESPONSE = "response"
    ANIMATIONS = "animations"
    STABLE = "stable"
    CUSTOM = "custom"


class WaitTimeout(Exception):
    """Raised when the primary condition of a wait never held."""

    def __init__(self, kind: WaitKind, target: Any, timeout_ms: float, elapsed_ms: float, detail: str = ""):
        self.kind = kind
        self.target = target
        self.timeout_ms = timeout_ms
        self.elapsed_ms = elapsed_ms
        message = (
            f"Timed out waiting for {WaitKind(kind).value} on {target!r} "
            f"after {elapsed_ms:.0f}ms (timeout {timeout_ms:.0f}ms)"
        )
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


@dataclass
class StabilityConfig:
    """
    Geometric stability sampling.

    Attributes:
        interval: Seconds between bounding box samples
        required_samples: Consecutive unchanged samples needed
        epsilon: Max per-coordinate delta (CSS pixels) still counted as unchanged
    """
    interval: float = 0.1
    required_samples: int = 3
    epsilon: float = 1.0


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


def _remaining_ms(deadline: float) -> float:
    return max((deadline - time.monotonic()) * 1000, 1)


def boxes_match(previous: Optional[Dict[str, float]], current: Optional[Dict[str, float]], epsilon: float) -> bool:
    """True when both boxes exist and every coordinate moved less than epsilon."""
    if not previous or not current:
        return False
    return all(
        abs(previous[key] - current[key]) < epsilon
        for key in ("x", "y", "width", "height")
    )


class SmartWaits:
    """
    Condition-based waits for a Playwright page.

    Usage:
        >>> waits = SmartWaits(page)
        >>> await waits.wait_for_element(page.locator("#save"), state="visible")
        >>> await waits.await_condition(page.locator(".toast"), WaitKind.STABLE)
        >>> await waits.wait_for_condition(lambda: page.url.endswith("/done"))
    """

    def __init__(
        self,
        page: Page,
        suggestion_provider: Optional[SuggestionProvider] = None,
        settings: Optional[ReliabilitySettings] = None,
        stability: Optional[StabilityConfig] = None,
    ):
        self.page = page
        self.suggestion_provider = suggestion_provider
        self.settings = settings or ReliabilitySettings.from_config()
        self.stability = stability or StabilityConfig()

    async def await_condition(
        self,
        target: Any,
        kind: Union[WaitKind, str],
        timeout: Optional[int] = None,
        **options: Any,
    ) -> None:
        """
        Wait until the condition of the given kind holds for target.

        Args:
            target: Locator for element kinds, URL matcher for RESPONSE,
                predicate or expression for CUSTOM, ignored otherwise
            kind: WaitKind (or its value)
            timeout: Timeout in ms (kind-specific default when None)
            **options: Passed to the kind-specific method

        Raises:
            WaitTimeout: When the primary condition does not hold in time
        """
        kind = WaitKind(kind)
        if kind == WaitKind.ELEMENT_STATE:
            await self.wait_for_element(target, timeout=timeout, **options)
        elif kind == WaitKind.NETWORK_IDLE:
            await self.wait_for_network_idle(timeout=timeout)
        elif kind == WaitKind.RESPONSE:
            await self.wait_for_response(target, timeout=timeout)
        elif kind == WaitKind.ANIMATIONS:
            await self.wait_for_animations(timeout=timeout)
        elif kind == WaitKind.STABLE:
            await self.wait_for_element_stable(target, timeout=timeout)
        else:
            await self.wait_for_condition(target, timeout=timeout)

    # ------------------------------------------------------------------
    # Element waits
    # ------------------------------------------------------------------

    async def wait_for_element(
        self,
        locator: Locator,
        state: str = "visible",
        timeout: Optional[int] = None,
        secondary_conditions: Optional[Sequence[str]] = None,
        use_ai: Optional[bool] = None,
        description: Optional[str] = None,
    ) -> None:
        """
        Wait for an element state, then for optional secondary conditions.

        Args:
            locator: Element locator
            state: visible / hidden / attached / detached
            timeout: Timeout in ms
            secondary_conditions: Page expressions waited on after the element;
                failures are logged, never raised
            use_ai: Also apply an AI-suggested wait strategy
            description: Element description for the suggestion prompt
        """
        if state not in ELEMENT_STATES:
            raise ValueError(f"Unknown element state '{state}', expected one of {ELEMENT_STATES}")

        timeout = timeout or self.settings.wait_timeout
        started = time.monotonic()

        with allure.step(f"Wait for element to be {state}"):
            try:
                await locator.wait_for(state=state, timeout=timeout)
            except PlaywrightError as e:
                error = WaitTimeout(WaitKind.ELEMENT_STATE, locator, timeout, _elapsed_ms(started), str(e)[:200])
                logger.error(f"Element wait failed: {error}")
                raise error from e

            logger.debug(f"Element is {state}: {locator}")

            for condition in secondary_conditions or []:
                await self._secondary(condition, timeout)

            if use_ai is None:
                use_ai = self.settings.ai_enabled
            if use_ai:
                await self._suggested_wait(description or str(locator), state, timeout)

    async def wait_for_element_stable(
        self,
        locator: Locator,
        timeout: Optional[int] = None,
    ) -> None:
        """
        Wait until the element's bounding box stops changing.

        Raises:
            WaitTimeout: When the box never settles within timeout
        """
        timeout = timeout or self.settings.stability_timeout
        config = self.stability
        started = time.monotonic()
        deadline = started + timeout / 1000

        with allure.step("Wait for element to be stable"):
            previous = await self._bounding_box(locator, _remaining_ms(deadline))
            stable_count = 0

            while stable_count < config.required_samples:
                if time.monotonic() + config.interval > deadline:
                    error = WaitTimeout(
                        WaitKind.STABLE, locator, timeout, _elapsed_ms(started),
                        f"{stable_count}/{config.required_samples} stable samples",
                    )
                    logger.error(f"Element stability wait failed: {error}")
                    raise error

                await asyncio.sleep(config.interval)
                current = await self._bounding_box(locator, _remaining_ms(deadline))
                if boxes_match(previous, current, config.epsilon):
                    stable_count += 1
                else:
                    stable_count = 0
                previous = current

            logger.debug(f"Element is stable: {locator}")

    # ------------------------------------------------------------------
    # Page waits
    # ------------------------------------------------------------------

    async def wait_for_network_idle(self, timeout: Optional[int] = None) -> None:
        """Wait for the "networkidle" load state."""
        timeout = timeout or self.settings.network_idle_timeout
        started = time.monotonic()

        with allure.step("Wait for network idle"):
            try:
                await self.page.wait_for_load_state("networkidle", timeout=timeout)
            except PlaywrightError as e:
                error = WaitTimeout(WaitKind.NETWORK_IDLE, "page", timeout, _elapsed_ms(started), str(e)[:200])
                logger.error(f"Network idle wait failed: {error}")
                raise error from e
            logger.debug("Network idle state reached")

    async def wait_for_response(self, url_or_predicate: UrlMatcher, timeout: Optional[int] = None) -> Any:
        """
        Wait for a response matching a URL glob, regex or predicate.

        Returns:
            The Playwright Response
        """
        timeout = timeout or self.settings.response_timeout
        started = time.monotonic()

        with allure.step(f"Wait for response: {url_or_predicate}"):
            try:
                response = await self.page.wait_for_response(url_or_predicate, timeout=timeout)
            except PlaywrightError as e:
                error = WaitTimeout(WaitKind.RESPONSE, url_or_predicate, timeout, _elapsed_ms(started), str(e)[:200])
                logger.error(f"API wait timeout: {error}")
                raise error from e
            logger.debug(f"API response received: {url_or_predicate}")
            return response

    async def wait_for_animations(self, timeout: Optional[int] = None) -> bool:
        """
        Wait for running animations to finish.

        Stuck or cancelled animations never fail the wait: after timeout
        it resolves with a warning.

        Returns:
            True if animations settled, False if the wait gave up
        """
        timeout = timeout or self.settings.animation_timeout

        with allure.step("Wait for animations"):
            try:
                count = await asyncio.wait_for(
                    self.page.evaluate(ANIMATIONS_SCRIPT),
                    timeout=timeout / 1000,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Animations still running after {timeout}ms, continuing")
                return False
            except PlaywrightError as e:
                logger.warning(f"Animation wait failed: {e}")
                return False

            logger.debug(f"Animations completed ({count or 0} tracked)")
            return True

    async def wait_for_condition(
        self,
        condition: Union[Callable[[], Any], str],
        timeout: Optional[int] = None,
    ) -> None:
        """
        Wait for a custom condition.

        Args:
            condition: Zero-argument callable (sync or async) returning truthy
                when satisfied, `url == "..."` expression, or any other JS
                expression evaluated with page.wait_for_function
            timeout: Timeout in ms

        Raises:
            WaitTimeout: When the condition never holds
        """
        timeout = timeout or self.settings.wait_timeout
        started = time.monotonic()

        with allure.step(f"Wait for condition: {getattr(condition, '__name__', condition)}"):
            if isinstance(condition, str):
                try:
                    await self._wait_for_expression(condition, timeout)
                except PlaywrightError as e:
                    error = WaitTimeout(WaitKind.CUSTOM, condition, timeout, _elapsed_ms(started), str(e)[:200])
                    logger.error(f"Custom condition failed: {error}")
                    raise error from e
                return

            if not await self._poll([condition], started, timeout):
                error = WaitTimeout(WaitKind.CUSTOM, condition, timeout, _elapsed_ms(started))
                logger.error(f"Custom condition failed: {error}")
                raise error

    async def wait_for_all_conditions(
        self,
        conditions: Sequence[Callable[[], Any]],
        timeout: Optional[int] = None,
    ) -> None:
        """Wait until every predicate holds in the same polling round."""
        timeout = timeout or self.settings.wait_timeout
        started = time.monotonic()

        with allure.step(f"Wait for {len(conditions)} conditions"):
            if not await self._poll(list(conditions), started, timeout):
                error = WaitTimeout(WaitKind.CUSTOM, f"{len(conditions)} conditions", timeout, _elapsed_ms(started))
                logger.error(f"Timeout waiting for all conditions: {error}")
                raise error
            logger.debug("All conditions met")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _poll(self, predicates: List[Callable[[], Any]], started: float, timeout: int) -> bool:
        """Poll predicates every POLL_INTERVAL; exceptions count as not yet."""
        deadline = started + timeout / 1000
        while True:
            try:
                results = [await self._call(predicate) for predicate in predicates]
                if all(results):
                    return True
            except Exception as e:
                logger.debug(f"Condition check failed: {e}")

            if time.monotonic() + POLL_INTERVAL > deadline:
                return False
            await asyncio.sleep(POLL_INTERVAL)

    @staticmethod
    async def _call(predicate: Callable[[], Any]) -> Any:
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _wait_for_expression(self, expression: str, timeout: int) -> None:
        match = _URL_CONDITION.match(expression)
        if match:
            await self.page.wait_for_url(match.group(1), timeout=timeout)
        else:
            await self.page.wait_for_function(expression, timeout=timeout)

    async def _secondary(self, condition: str, timeout: int) -> None:
        try:
            await self._wait_for_expression(condition, timeout)
        except PlaywrightError as e:
            logger.warning(f"Secondary condition failed: {condition} ({str(e)[:100]})")

    async def _suggested_wait(self, description: str, state: str, timeout: int) -> None:
        """Apply an AI-suggested wait strategy; every failure is a warning."""
        if self.suggestion_provider is None:
            return

        try:
            code = await self.suggestion_provider.suggest_wait_strategy(description, state)
        except SuggestionUnavailable as e:
            logger.warning(f"AI-enhanced wait unavailable, using basic wait: {e}")
            return
        except Exception as e:
            logger.warning(f"AI-enhanced wait failed, using basic wait: {e}")
            return

        try:
            if re.search(r"wait_?for_?load_?state", code, re.IGNORECASE):
                await self.page.wait_for_load_state("networkidle", timeout=timeout)
            match = _SUGGESTED_RESPONSE.search(code)
            if match:
                await self.page.wait_for_response(match.group(1), timeout=timeout)
        except PlaywrightError as e:
            logger.warning(f"Smart wait execution failed: {str(e)[:100]}")

    @staticmethod
    async def _bounding_box(locator: Locator, timeout: float) -> Optional[Dict[str, float]]:
        """One geometry sample; a detached element or an elapsed timeout reads as None."""
        try:
            return await locator.bounding_box(timeout=timeout)
        except PlaywrightError as e:
            logger.debug(f"Bounding box unavailable: {str(e)[:80]}")
            return None


__all__ = [
    "SmartWaits",
    "WaitKind",
    "WaitTimeout",
    "StabilityConfig",
    "boxes_match",
]

"""
================================================================================
Smart Locator with Self-Healing Element Resolution
================================================================================

Resolves a semantic element description ("login button") to a working
selector, surviving UI drift:
    - Cached last-known-good selector, validated with a short probe
    - Ordered structural strategies derived from the description
    - Caller-supplied fallback selectors
    - Optional AI-suggested selectors (lowest priority)
    - Fallback usage analytics for maintenance insights

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import allure
from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from reliability_tools.ai_assist import SuggestionProvider, SuggestionUnavailable
from reliability_tools.common import ReliabilitySettings


class LocatorNotFound(Exception):
    """Raised when no candidate strategy resolves the element."""

    def __init__(self, description: str, attempted: int):
        self.description = description
        self.attempted = attempted
        super().__init__(
            f"No working locator found for '{description}' "
            f"({attempted} strategies attempted)"
        )


@dataclass
class LocatorHealth:
    """
    Tracks which strategy resolved an element.

    Attributes:
        element_name: Element description
        primary_selector: First (preferred) strategy
        selector: Strategy that resolved the element
        strategy_index: Position of the winning strategy
        used_fallback: Whether anything other than the first strategy won
    """
    element_name: str
    primary_selector: str
    selector: str
    strategy_index: int = 0
    used_fallback: bool = False


@dataclass
class LocatorCache:
    """
    Description -> last successful selector.

    Owned by one SmartLocator; pass the same instance to several locators
    only when they drive the same page.
    """
    entries: Dict[str, str] = field(default_factory=dict)
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @staticmethod
    def key(description: str) -> str:
        return " ".join(description.split()).lower()

    def get(self, description: str) -> Optional[str]:
        return self.entries.get(self.key(description))

    def put(self, description: str, selector: str) -> None:
        self.entries[self.key(description)] = selector

    def evict(self, description: str) -> bool:
        if self.entries.pop(self.key(description), None) is None:
            return False
        self.evictions += 1
        return True

    def clear(self) -> None:
        self.entries.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self.entries),
            "keys": list(self.entries),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }


# Role templates appended when the description mentions a keyword
ROLE_TEMPLATES: List[tuple] = [
    (("button",), ["button", '[role="button"]']),
    (("input", "field"), ["input", '[role="textbox"]', '[role="searchbox"]']),
    (("link",), ["a", '[role="link"]']),
]


def slugify(description: str) -> str:
    """
    Selector-safe slug of a description.

    Example:
        >>> slugify("Submit Order button!")
        'submit-order-button'
    """
    slug = re.sub(r"[^a-z0-9\s]", "", description.lower())
    return re.sub(r"\s+", "-", slug).strip("-")


def _dedupe(selectors: Sequence[str]) -> List[str]:
    seen: List[str] = []
    for selector in selectors:
        if selector and selector not in seen:
            seen.append(selector)
    return seen


class SmartLocator:
    """
    Self-healing element locator.

    Resolution order:
        1. Cached selector (short probe)
        2. data-testid containment
        3. aria-label containment
        4. Visible text
        5. title / placeholder containment
        6. Role templates inferred from keywords
        7. Caller fallbacks
        8. AI suggestions (when enabled)

    Usage:
        >>> smart = SmartLocator(page)
        >>> selector = await smart.resolve("login button")
        >>> locator = await smart.locate("username input", fallback_strategies=["#user"])
    """

    def __init__(
        self,
        page: Page,
        suggestion_provider: Optional[SuggestionProvider] = None,
        cache: Optional[LocatorCache] = None,
        settings: Optional[ReliabilitySettings] = None,
        candidate_timeout: Optional[int] = None,
        cache_probe_timeout: Optional[int] = None,
    ):
        """
        Initialize SmartLocator with Playwright page.

        Args:
            page: Playwright Page object
            suggestion_provider: Optional source of AI selectors
            cache: Locator cache (a private one is created if None)
            settings: Settings snapshot (defaults to the loaded configuration)
            candidate_timeout: Per-candidate probe timeout in ms
            cache_probe_timeout: Cached-selector probe timeout in ms
        """
        settings = settings or ReliabilitySettings.from_config()
        self.page = page
        self.suggestion_provider = suggestion_provider
        self.cache = cache if cache is not None else LocatorCache()
        self.candidate_timeout = candidate_timeout or settings.locator_timeout
        self.cache_probe_timeout = cache_probe_timeout or settings.cache_probe_timeout
        self.ai_enabled = settings.ai_enabled
        self._fallback_used: Dict[str, LocatorHealth] = {}

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(
        self,
        description: str,
        timeout: Optional[int] = None,
        use_ai: Optional[bool] = None,
        fallback_strategies: Optional[Sequence[str]] = None,
    ) -> str:
        """
        Resolve a description to a concrete, currently visible selector.

        Args:
            description: Semantic element description
            timeout: Per-candidate timeout in ms
            use_ai: Consult the suggestion provider (defaults to ai.enabled)
            fallback_strategies: Extra selectors tried after the structural ones

        Returns:
            The winning selector

        Raises:
            LocatorNotFound: When every strategy fails
        """
        timeout = timeout or self.candidate_timeout
        use_ai = self.ai_enabled if use_ai is None else use_ai

        with allure.step(f"Locate element: {description}"):
            cached = self.cache.get(description)
            if cached is not None:
                if await self._probe(cached, self.cache_probe_timeout):
                    self.cache.hits += 1
                    logger.debug(f"Using cached locator for '{description}': {cached}")
                    return cached
                self.cache.evict(description)
                logger.debug(f"Cached locator for '{description}' is stale: {cached}")
            self.cache.misses += 1

            strategies = self.build_strategies(description, fallback_strategies)
            selector = await self._first_visible(description, strategies, timeout)
            attempted = len(strategies)

            if selector is None and use_ai:
                suggested = [s for s in await self._suggest(description) if s not in strategies]
                selector = await self._first_visible(description, suggested, timeout)
                strategies = strategies + suggested
                attempted = len(strategies)

            if selector is None:
                error = LocatorNotFound(description, attempted)
                logger.error(str(error))
                raise error

            self.cache.put(description, selector)
            self._record_health(description, strategies, selector)
            return selector

    async def locate(
        self,
        description: str,
        timeout: Optional[int] = None,
        use_ai: Optional[bool] = None,
        fallback_strategies: Optional[Sequence[str]] = None,
    ) -> Locator:
        """Resolve and wrap the selector in a Playwright Locator."""
        selector = await self.resolve(
            description,
            timeout=timeout,
            use_ai=use_ai,
            fallback_strategies=fallback_strategies,
        )
        return self.page.locator(selector).first

    def build_strategies(
        self,
        description: str,
        fallback_strategies: Optional[Sequence[str]] = None,
    ) -> List[str]:
        """Deterministic candidate list: structural templates then caller fallbacks."""
        slug = slugify(description)
        strategies = [
            f'[data-testid*="{slug}"]',
            f'[aria-label*="{slug}"]',
            f"text={description}",
            f'[title*="{slug}"]',
            f'[placeholder*="{slug}"]',
        ]

        lowered = description.lower()
        for keywords, templates in ROLE_TEMPLATES:
            if any(keyword in lowered for keyword in keywords):
                strategies.extend(templates)

        strategies.extend(fallback_strategies or [])
        return _dedupe(strategies)

    # ------------------------------------------------------------------
    # Cache / analytics
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Locator cache cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def get_health_report(self) -> str:
        """
        Generate locator health report.

        Lists elements whose preferred strategy failed, i.e. candidates for
        a stable data-testid.
        """
        if not self._fallback_used:
            return "All elements resolved with their primary strategy. No maintenance needed."

        report_lines = [
            "Locator Health Report - Fallbacks Used:",
            "",
            "The following elements needed a fallback strategy.",
            "Consider adding stable data-testid attributes:",
            "",
        ]
        for element_name, health in self._fallback_used.items():
            report_lines.extend([
                f"  [{element_name}]",
                f"    Failed primary: {health.primary_selector}",
                f"    Used #{health.strategy_index}: {health.selector}",
                "",
            ])
        return "\n".join(report_lines)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _probe(self, selector: str, timeout: int) -> bool:
        """True when the selector matches a visible element within timeout."""
        try:
            locator = self.page.locator(selector).first
            await locator.wait_for(state="visible", timeout=timeout)
            return await locator.is_visible()
        except PlaywrightError as e:
            logger.debug(f"Strategy failed: {selector} -> {str(e)[:80]}")
            return False

    async def _first_visible(
        self,
        description: str,
        strategies: Sequence[str],
        timeout: int,
    ) -> Optional[str]:
        for selector in strategies:
            if await self._probe(selector, timeout):
                logger.info(f"Self-healing locator for '{description}': {selector}")
                return selector
        return None

    async def _suggest(self, description: str) -> List[str]:
        """AI selectors for the description; empty on any provider failure."""
        if self.suggestion_provider is None:
            return []

        try:
            dom_snapshot = await self.page.content()
        except PlaywrightError:
            dom_snapshot = None

        try:
            return await self.suggestion_provider.suggest_selectors(description, dom_snapshot)
        except SuggestionUnavailable as e:
            logger.warning(f"AI strategy generation unavailable, using fallback strategies: {e}")
        except Exception as e:
            logger.warning(f"AI strategy generation failed, using fallback strategies: {e}")
        return []

    def _record_health(self, description: str, strategies: List[str], selector: str) -> None:
        index = strategies.index(selector) if selector in strategies else 0
        health = LocatorHealth(
            element_name=description,
            primary_selector=strategies[0] if strategies else selector,
            selector=selector,
            strategy_index=index,
            used_fallback=index > 0,
        )
        if health.used_fallback:
            logger.warning(
                f"Element '{description}' used fallback #{index}: {selector}"
            )
            self._fallback_used[description] = health
        else:
            self._fallback_used.pop(description, None)


__all__ = [
    "SmartLocator",
    "LocatorCache",
    "LocatorNotFound",
    "LocatorHealth",
    "slugify",
]

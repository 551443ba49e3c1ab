"""
================================================================================
Suggestion Provider
================================================================================

Optional generative "oracle" used by the reliability components:
    - Candidate selectors for a natural-language element description
    - Qualitative explanations (reasons + score) for unstable test histories
    - A suggested wait strategy for an element/state pair

Every answer is untrusted and best-effort. Callers treat any failure as
`SuggestionUnavailable` and fall back to their deterministic behaviour.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import json
import math
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from reliability_tools.common import ReliabilitySettings


# Cap on the execution records sent in one explanation prompt
MAX_RECORDS_PER_PROMPT = 200

# Cap on the DOM snapshot characters sent in one selector prompt
MAX_DOM_SNAPSHOT_CHARS = 8000

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

SELECTOR_PROMPT = """Generate self-healing Playwright selectors for: "{description}"

The selectors should:
1. Prefer data-testid, role, aria-label and visible text
2. Be resilient to UI changes and dynamic content
3. Be ordered from most to least stable

Return each selector on its own line wrapped in double quotes. No explanations.
{dom_section}"""

EXPLAIN_PROMPT = """Analyze these test execution results to identify flaky tests:

{records}

For each test, calculate a flaky score (0-1) and identify reasons for flakiness:
- Timing issues
- Race conditions
- Environment dependencies
- Unstable selectors
- Data dependencies

Return only JSON: a list of objects with "test_id", "score" and "reasons" (list of strings)."""

WAIT_PROMPT = """Generate a smart wait strategy for:
Element: {description}
Expected State: {state}

Consider network requests completion, DOM mutations, element visibility and
animation completion. Return Playwright wait code only."""


class SuggestionUnavailable(Exception):
    """Raised when the suggestion provider is disabled, unreachable or returns garbage."""
    pass


class SuggestionProvider(ABC):
    """Interface for a generative suggestion source."""

    provider_name = "unknown"

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def suggest_selectors(
        self,
        description: str,
        dom_snapshot: Optional[str] = None,
    ) -> List[str]:
        """Return candidate selector strings for a semantic element description."""
        raise NotImplementedError

    @abstractmethod
    async def explain_failures(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Return `{"test_id", "reasons", "score"}` entries for the given execution records."""
        raise NotImplementedError

    @abstractmethod
    async def suggest_wait_strategy(self, description: str, state: str) -> str:
        """Return free-form wait code describing extra conditions worth waiting on."""
        raise NotImplementedError


class DisabledSuggestionProvider(SuggestionProvider):
    """Stand-in used when suggestions are switched off or not configured."""

    provider_name = "disabled"

    def __init__(self, reason: str = "suggestions are disabled") -> None:
        self.reason = reason

    @property
    def enabled(self) -> bool:
        return False

    async def suggest_selectors(self, description, dom_snapshot=None) -> List[str]:
        raise SuggestionUnavailable(self.reason)

    async def explain_failures(self, records) -> List[Dict[str, Any]]:
        raise SuggestionUnavailable(self.reason)

    async def suggest_wait_strategy(self, description, state) -> str:
        raise SuggestionUnavailable(self.reason)


class GeminiSuggestionProvider(SuggestionProvider):
    """
    Suggestion provider backed by the Gemini `generateContent` REST endpoint.

    Usage:
        >>> provider = GeminiSuggestionProvider(api_key="...")
        >>> await provider.suggest_selectors("login button")
        ['[data-testid="login"]', 'button:has-text("Log in")']
    """

    provider_name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        temperature: float = 0.7,
        max_output_tokens: int = 1000,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the Gemini provider.

        Args:
            api_key: Gemini API key
            model: Model name used in the endpoint path
            temperature: Sampling temperature
            max_output_tokens: Response token cap
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self._transport = transport

    async def suggest_selectors(self, description, dom_snapshot=None) -> List[str]:
        dom_section = ""
        if dom_snapshot:
            dom_section = f"\nCurrent DOM (truncated):\n{dom_snapshot[:MAX_DOM_SNAPSHOT_CHARS]}\n"
        text = await self._generate(
            SELECTOR_PROMPT.format(description=description, dom_section=dom_section)
        )
        selectors = parse_selector_suggestions(text)
        logger.debug(f"Gemini suggested {len(selectors)} selector(s) for '{description}'")
        return selectors

    async def explain_failures(self, records) -> List[Dict[str, Any]]:
        sample = list(records)[-MAX_RECORDS_PER_PROMPT:]
        text = await self._generate(
            EXPLAIN_PROMPT.format(records=json.dumps(sample, indent=2, default=str))
        )
        return parse_failure_explanations(text)

    async def suggest_wait_strategy(self, description, state) -> str:
        return await self._generate(WAIT_PROMPT.format(description=description, state=state))

    async def _generate(self, prompt: str) -> str:
        """Send one prompt and return the concatenated text parts of the first candidate."""
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }
        url = GEMINI_ENDPOINT.format(model=self.model)
        logger.debug(f"AI request to {self.model}: {prompt[:100]}...")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    json=body,
                    headers={"x-goog-api-key": self.api_key},
                )
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SuggestionUnavailable(f"Gemini request failed: {e}") from e

        candidates = payload.get("candidates") or []
        if not candidates:
            raise SuggestionUnavailable("Gemini returned no candidates")
        parts = candidates[0].get("content", {}).get("parts", [])
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()
        if not text:
            raise SuggestionUnavailable("Gemini returned an empty response")
        return text


# ================================================================================
# Response Parsing
# ================================================================================

_QUOTED = re.compile(r'"([^"\n]+)"')
_BACKTICKED = re.compile(r"`([^`\n]+)`")
_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def parse_selector_suggestions(text: str) -> List[str]:
    """
    Extract selector strings from a free-form suggestion response.

    Double-quoted and single-backtick spans are taken as selectors, in order
    of appearance, without duplicates.
    """
    if not text:
        return []
    found: List[str] = []
    for line in text.splitlines():
        matches = _QUOTED.findall(line) or _BACKTICKED.findall(line)
        for match in matches:
            selector = match.strip()
            if selector and selector not in found:
                found.append(selector)
    return found


def parse_failure_explanations(text: str) -> List[Dict[str, Any]]:
    """
    Parse a JSON failure-explanation response into normalized entries.

    Accepts a bare list or an object with a "tests" list, optionally wrapped
    in a markdown code fence. Entries without a test id are dropped.

    Raises:
        SuggestionUnavailable: When the response is not valid JSON
    """
    cleaned = _FENCE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise SuggestionUnavailable(f"Unparseable failure explanation: {e}") from e

    if isinstance(data, dict):
        data = data.get("tests", [])
    if not isinstance(data, list):
        raise SuggestionUnavailable("Failure explanation is not a list")

    entries: List[Dict[str, Any]] = []
    for item in data:
        entry = normalize_explanation(item)
        if entry is not None:
            entries.append(entry)
    return entries


def normalize_explanation(item: Any) -> Optional[Dict[str, Any]]:
    """
    Coerce one explanation entry to `{"test_id": str, "score": float | None, "reasons": [str]}`.

    Scores that are not finite numbers become None and are clamped to [0, 1]
    otherwise. Returns None when the entry is not a dict or names no test.
    """
    if not isinstance(item, dict):
        return None
    test_id = item.get("test_id") or item.get("testId") or item.get("testName")
    if not test_id:
        return None

    score = item.get("score", item.get("flakyScore"))
    try:
        score = float(score) if score is not None and not isinstance(score, bool) else None
    except (TypeError, ValueError):
        score = None
    if score is not None:
        score = min(max(score, 0.0), 1.0) if math.isfinite(score) else None

    reasons = item.get("reasons") or []
    if not isinstance(reasons, (list, tuple)):
        reasons = [reasons]
    return {
        "test_id": str(test_id),
        "score": score,
        "reasons": [str(r) for r in reasons if r],
    }


def create_suggestion_provider(settings: Optional[ReliabilitySettings] = None) -> SuggestionProvider:
    """
    Build the provider selected by configuration.

    Returns a `DisabledSuggestionProvider` when AI is switched off or no
    API key is configured.
    """
    settings = settings or ReliabilitySettings.from_config()
    if not settings.ai_enabled:
        return DisabledSuggestionProvider()
    if not settings.gemini_api_key:
        logger.warning("AI_ENABLED is set but GOOGLE_GEMINI_API_KEY is missing; suggestions disabled")
        return DisabledSuggestionProvider("GOOGLE_GEMINI_API_KEY is not configured")
    return GeminiSuggestionProvider(
        api_key=settings.gemini_api_key,
        model=settings.ai_model,
        temperature=settings.ai_temperature,
        max_output_tokens=settings.ai_max_tokens,
        timeout=settings.ai_timeout,
    )


__all__ = [
    "SuggestionProvider",
    "SuggestionUnavailable",
    "DisabledSuggestionProvider",
    "GeminiSuggestionProvider",
    "create_suggestion_provider",
    "parse_selector_suggestions",
    "parse_failure_explanations",
    "normalize_explanation",
]

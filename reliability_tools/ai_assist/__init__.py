"""
================================================================================
AI Assist
================================================================================

Pluggable, optional suggestion source for selectors, failure triage and wait
strategies. Disabled unless AI_ENABLED and GOOGLE_GEMINI_API_KEY are set.

Author: Automation Team
License: MIT
================================================================================
"""

from .suggestion_client import (
    DisabledSuggestionProvider,
    GeminiSuggestionProvider,
    SuggestionProvider,
    SuggestionUnavailable,
    create_suggestion_provider,
    normalize_explanation,
    parse_failure_explanations,
    parse_selector_suggestions,
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

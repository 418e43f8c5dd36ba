"""
Suggestion Provider Package

Pluggable AI suggestion backends. The engine only ever talks to a
``SuggestionClient``, which turns any provider failure into ``None`` so the
rule-based recommendations still come back.

Architecture:
    BehaviorLearningService → SuggestionClient (timeout, shape check)
                                     ↓
                             SuggestionProvider (abstract)
                                     ↓
                          ┌──────────┴──────────┐
                          ↓                     ↓
                   NullSuggestionProvider  HttpSuggestionProvider
                                              (httpx)

Usage:
    from wellness.providers import get_provider, SuggestionClient

    client = SuggestionClient(get_provider("http", {"base_url": "..."}), timeout=5.0)
    result = await client.content(user_id, preferences, context)  # None on failure
"""

from .base import HealthStatus, ProviderUnavailable, SuggestionClient, SuggestionProvider
from .null_provider import NullSuggestionProvider


__all__ = [
    "HealthStatus",
    "NullSuggestionProvider",
    "ProviderUnavailable",
    "SuggestionClient",
    "SuggestionProvider",
    "get_provider",
]


def get_provider(name: str, config: dict | None = None) -> SuggestionProvider:
    """
    Get a provider instance by name.

    Args:
        name: Provider name (none, http)
        config: Provider configuration

    Returns:
        SuggestionProvider instance

    Raises:
        ValueError: If provider not found
    """
    config = config or {}

    if name in ("none", "null"):
        return NullSuggestionProvider(config)

    elif name == "http":
        from .http_provider import HttpSuggestionProvider

        return HttpSuggestionProvider(config)

    else:
        raise ValueError(f"Unknown provider: {name}. Available providers: none, http")

"""
Null Suggestion Provider

Used when no AI backend is configured. Every call raises
``ProviderUnavailable`` so the engine takes its rule-based path.
"""

from __future__ import annotations

from typing import Any

from .base import HealthStatus, ProviderUnavailable, SuggestionProvider


class NullSuggestionProvider(SuggestionProvider):
    def __init__(self, config: dict[str, Any] | None = None):
        self._config = config or {}

    @property
    def name(self) -> str:
        return "none"

    async def generate_personalized_recommendations(self, user_id, patterns, context):
        raise ProviderUnavailable("No suggestion provider configured")

    async def generate_content_recommendations(self, user_id, preferences, context):
        raise ProviderUnavailable("No suggestion provider configured")

    async def generate_peer_recommendations(self, user_id, profile, candidates):
        raise ProviderUnavailable("No suggestion provider configured")

    async def generate_contextual_adaptations(self, user_id, context, recommendations):
        raise ProviderUnavailable("No suggestion provider configured")

    async def health_check(self) -> HealthStatus:
        return HealthStatus(
            healthy=False,
            provider=self.name,
            latency_ms=0.0,
            details={"reason": "not configured"},
        )

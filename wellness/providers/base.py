"""
Suggestion Provider Base Classes

Abstract base class for the pluggable AI suggestion providers, plus the
``SuggestionClient`` wrapper the engine talks to.

Design Principles:
- Async-first for compatibility with external APIs
- Providers are optional: every call may fail or time out
- The client never raises; a failed call resolves to ``None`` and the
  engine uses its rule-based fallback
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable


logger = logging.getLogger(__name__)


class ProviderUnavailable(Exception):
    """The suggestion provider could not produce a usable answer."""


@dataclass
class HealthStatus:
    """Provider health check result."""

    healthy: bool
    provider: str
    latency_ms: float
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "provider": self.provider,
            "latency_ms": self.latency_ms,
            "details": self.details,
        }


class SuggestionProvider(ABC):
    """
    Abstract base class for AI suggestion providers.

    Every method returns a plain dict. Recommendation lists use the shape
    ``{"recommendations": [{"type": ..., "score": ..., "reason": ...}], "confidence": ...}``;
    peer suggestions use ``{"support_partners": [...], "mentor_connections": [...],
    "activity_partners": [...], "confidence": ...}``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., 'none', 'http')."""
        pass

    @abstractmethod
    async def generate_personalized_recommendations(
        self, user_id: str, patterns: dict[str, Any], context: dict[str, Any]
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def generate_content_recommendations(
        self, user_id: str, preferences: dict[str, Any], context: dict[str, Any]
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def generate_peer_recommendations(
        self, user_id: str, profile: dict[str, Any], candidates: list[dict[str, Any]]
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def generate_contextual_adaptations(
        self, user_id: str, context: dict[str, Any], recommendations: list[dict[str, Any]]
    ) -> dict[str, Any]:
        pass

    async def health_check(self) -> HealthStatus:
        return HealthStatus(healthy=True, provider=self.name, latency_ms=0.0)

    async def teardown(self) -> bool:
        """Release network resources. Default: nothing to release."""
        return True


def _valid_recommendation_list(result: Any) -> bool:
    if not isinstance(result, dict):
        return False
    items = result.get("recommendations")
    if not isinstance(items, list):
        return False
    return all(isinstance(item, dict) and item.get("type") for item in items)


def _valid_peer_payload(result: Any) -> bool:
    if not isinstance(result, dict):
        return False
    keys = ("support_partners", "mentor_connections", "activity_partners")
    if not any(key in result for key in keys):
        return False
    return all(isinstance(result.get(key, []), list) for key in keys)


class SuggestionClient:
    """
    Safe wrapper around a ``SuggestionProvider``.

    Applies a timeout, catches every provider failure and validates the
    response shape. Any failure resolves to ``None``.
    """

    def __init__(self, provider: SuggestionProvider | None, timeout: float = 5.0):
        self.provider = provider
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return self.provider is not None and self.provider.name != "none"

    async def _call(self, operation: str, coro: Awaitable[Any], validator) -> dict[str, Any] | None:
        start = time.time()
        try:
            result = await asyncio.wait_for(coro, timeout=self.timeout)
            if not validator(result):
                raise ValueError(f"Malformed response from {operation}")
            logger.debug(f"{operation} answered in {(time.time() - start) * 1000:.0f}ms")
            return result
        except asyncio.CancelledError:
            raise
        except ProviderUnavailable as e:
            logger.debug(f"Suggestion provider {operation} unavailable: {e}")
            return None
        except Exception as e:
            logger.warning(f"Suggestion provider {operation} failed: {e}")
            return None

    async def personalized(
        self, user_id: str, patterns: dict[str, Any], context: dict[str, Any]
    ) -> dict[str, Any] | None:
        if self.provider is None:
            return None
        return await self._call(
            "generate_personalized_recommendations",
            self.provider.generate_personalized_recommendations(user_id, patterns, context),
            _valid_recommendation_list,
        )

    async def content(
        self, user_id: str, preferences: dict[str, Any], context: dict[str, Any]
    ) -> dict[str, Any] | None:
        if self.provider is None:
            return None
        return await self._call(
            "generate_content_recommendations",
            self.provider.generate_content_recommendations(user_id, preferences, context),
            _valid_recommendation_list,
        )

    async def peers(
        self, user_id: str, profile: dict[str, Any], candidates: list[dict[str, Any]]
    ) -> dict[str, Any] | None:
        if self.provider is None:
            return None
        return await self._call(
            "generate_peer_recommendations",
            self.provider.generate_peer_recommendations(user_id, profile, candidates),
            _valid_peer_payload,
        )

    async def contextual_adaptations(
        self, user_id: str, context: dict[str, Any], recommendations: list[dict[str, Any]]
    ) -> dict[str, Any] | None:
        if self.provider is None:
            return None
        return await self._call(
            "generate_contextual_adaptations",
            self.provider.generate_contextual_adaptations(user_id, context, recommendations),
            _valid_recommendation_list,
        )

    async def close(self) -> None:
        if self.provider is None:
            return
        try:
            await self.provider.teardown()
        except Exception as e:
            logger.warning(f"Provider teardown failed: {e}")

"""
Persistence Gateway Base Classes

Abstract interface to the durable store that is the source of truth across
app restarts. The engine treats every call as best-effort: errors are
classified below and converted to degraded (local-only) behavior.

Error hierarchy:
    GatewayError
        TransientPersistenceError   network / lock / IO failure, may succeed later
            SchemaUnavailableError  tables missing, stop trying for this session
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from wellness.learning.models import AdaptationCacheEntry, BehaviorProfile, InteractionEvent


CONTENT_ACTIONS = ("view", "like", "share", "complete", "skip", "rate")
PEER_ACTIONS = ("message", "support", "activity", "recommendation")
PEER_QUALITIES = ("positive", "neutral", "negative")
PROFILE_LIST_FIELDS = ("mental_health_interests", "shared_experiences")
PROFILE_TEXT_FIELDS = ("preferred_communication_style", "age_range", "activity_level")


class GatewayError(Exception):
    """Base class for persistence failures."""


class TransientPersistenceError(GatewayError):
    """The durable store could not be reached or written right now."""


class SchemaUnavailableError(TransientPersistenceError):
    """Required tables do not exist; the store is unusable for this session."""


class PersistenceGateway(ABC):
    """
    Abstract base class for durable stores.

    Core methods are abstract. Optional capabilities (trending content,
    peer candidates, content and peer interaction logs) have defaults that
    return empty results so minimal adapters stay small.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    # =========================================================================
    # Profiles
    # =========================================================================

    @abstractmethod
    async def ensure_user_profile(self, user_id: str) -> dict[str, Any]:
        """Return the user's profile, creating a minimal one if absent. Idempotent."""
        pass

    async def update_user_profile(self, user_id: str, fields: dict[str, Any]) -> bool:
        return False

    @abstractmethod
    async def load_behavior_profile(self, user_id: str) -> BehaviorProfile | None:
        pass

    @abstractmethod
    async def upsert_behavior_profile(self, profile: BehaviorProfile) -> bool:
        pass

    # =========================================================================
    # Interactions
    # =========================================================================

    @abstractmethod
    async def load_interactions(self, user_id: str, limit: int = 500) -> list[InteractionEvent]:
        """Most recent interactions, oldest first."""
        pass

    @abstractmethod
    async def append_interaction(self, event: InteractionEvent) -> bool:
        """Append one event. Appending the same event id twice is a no-op."""
        pass

    async def append_content_interaction(
        self,
        user_id: str,
        content_type: str,
        content_id: str,
        action: str,
        rating: float | None = None,
        duration_seconds: float | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        return False

    async def append_peer_interaction(
        self,
        user_id: str,
        peer_id: str,
        action: str,
        quality: str | None = None,
        mutual_rating: float | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        return False

    # =========================================================================
    # Adaptation cache
    # =========================================================================

    @abstractmethod
    async def upsert_adaptation_cache(self, user_id: str, entry: AdaptationCacheEntry) -> bool:
        pass

    async def load_adaptation_cache(self, user_id: str, now: datetime) -> list[AdaptationCacheEntry]:
        return []

    @abstractmethod
    async def delete_expired_cache(self, user_id: str, now: datetime) -> int:
        pass

    # =========================================================================
    # Aggregates
    # =========================================================================

    async def load_trending_content(self, since: datetime) -> dict[str, int]:
        """Content type -> interaction count across all users since ``since``."""
        return {}

    async def load_peer_candidates(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        return []

    async def close(self) -> None:
        pass

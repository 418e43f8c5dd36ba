"""
Behavior Learning Data Structures

Provider-agnostic records shared by every stage of the learning pipeline:
interaction events and the context they happened in, the aggregated
per-type preference records, the per-user behavior profile, recommendation
bundles, and the context-keyed adaptation cache entries.

All records serialize through ``to_dict()`` / ``from_dict()`` so the
persistence gateway and the local state file can round-trip them.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Iterator, Mapping


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp a score into ``[low, high]``."""
    return max(low, min(high, float(value)))


def _parse_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class TimeOfDay(StrEnum):
    """Coarse time-of-day buckets."""

    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"
    UNKNOWN = "unknown"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RecommendationCategory(StrEnum):
    ACTIVITY = "activity"
    CONTENT = "content"
    PEER = "peer"


class SourceTag(StrEnum):
    """Where a recommendation came from."""

    AI = "ai"
    RULE = "rule"


class StressStatus(StrEnum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    CRITICAL = "critical"


def priority_for_score(score: float) -> Priority:
    """Map a [0,1] score onto a display priority."""
    if score >= 0.8:
        return Priority.HIGH
    if score >= 0.5:
        return Priority.MEDIUM
    return Priority.LOW


def payload_rating(payload: Mapping[str, Any]) -> float | None:
    """Return the 1..5 user rating carried by a payload, if any."""
    for key in ("rating", "user_rating"):
        value = payload.get(key)
        if isinstance(value, bool) or value is None:
            continue
        if isinstance(value, (int, float)) and value > 0:
            return float(value)
    return None


# =============================================================================
# Context
# =============================================================================


@dataclass(frozen=True)
class MoodReading:
    """Most recent mood reading (emotion label plus detector confidence)."""

    emotion: str
    confidence: float | None = None

    @property
    def category(self) -> str:
        """Normalized mood category (see ``context.normalize_mood``)."""
        from .context import normalize_mood

        return normalize_mood(self.emotion)

    def to_dict(self) -> dict[str, Any]:
        return {"emotion": self.emotion, "confidence": self.confidence}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> MoodReading | None:
        if not data:
            return None
        emotion = data.get("emotion") or data.get("emotion_category")
        if not emotion:
            return None
        confidence = data.get("confidence")
        return cls(
            emotion=str(emotion),
            confidence=clamp(confidence) if confidence is not None else None,
        )


@dataclass(frozen=True)
class ContextSnapshot:
    """Snapshot of "now" captured with every interaction."""

    time_of_day: str
    day_of_week: int
    hour: int
    timestamp: datetime
    mood: MoodReading | None = None
    stress_level: float | None = None
    anxiety_level: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "time_of_day": str(self.time_of_day),
            "day_of_week": self.day_of_week,
            "hour": self.hour,
            "timestamp": _iso(self.timestamp),
            "mood": self.mood.to_dict() if self.mood else None,
            "stress_level": self.stress_level,
            "anxiety_level": self.anxiety_level,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ContextSnapshot:
        timestamp = _parse_datetime(data.get("timestamp")) or datetime.now()
        return cls(
            time_of_day=data.get("time_of_day") or TimeOfDay.UNKNOWN,
            day_of_week=int(data.get("day_of_week", timestamp.weekday())),
            hour=int(data.get("hour", timestamp.hour)),
            timestamp=timestamp,
            mood=MoodReading.from_dict(data.get("mood")),
            stress_level=data.get("stress_level"),
            anxiety_level=data.get("anxiety_level"),
        )


# =============================================================================
# Interactions and preferences
# =============================================================================


@dataclass(frozen=True)
class InteractionEvent:
    """A single immutable user interaction."""

    type: str
    payload: Mapping[str, Any]
    timestamp: datetime
    context: ContextSnapshot
    session_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str | None = None
    effectiveness_score: float | None = None
    user_rating: float | None = None

    def __post_init__(self):
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @property
    def completed(self) -> bool:
        return bool(self.payload.get("completed"))

    @property
    def rating(self) -> float | None:
        rating = payload_rating(self.payload)
        return rating if rating is not None else self.user_rating

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "payload": dict(self.payload),
            "timestamp": _iso(self.timestamp),
            "context": self.context.to_dict(),
            "session_id": self.session_id,
            "effectiveness_score": self.effectiveness_score,
            "user_rating": self.user_rating,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InteractionEvent:
        timestamp = _parse_datetime(data.get("timestamp")) or datetime.now()
        context_data = data.get("context") or {"timestamp": timestamp.isoformat()}
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            user_id=data.get("user_id"),
            type=data["type"],
            payload=data.get("payload") or {},
            timestamp=timestamp,
            context=ContextSnapshot.from_dict(context_data),
            session_id=data.get("session_id") or "",
            effectiveness_score=data.get("effectiveness_score"),
            user_rating=data.get("user_rating"),
        )


@dataclass
class PreferenceRecord:
    """Rolling statistics for one interaction type."""

    frequency: int = 0
    last_used: datetime | None = None
    context_counts: dict[str, int] = field(default_factory=dict)
    effectiveness: float = 0.0
    user_rating: float = 0.0  # mean rating on the 1..5 scale, 0 when unrated
    rating_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency,
            "last_used": _iso(self.last_used),
            "context_counts": dict(self.context_counts),
            "effectiveness": self.effectiveness,
            "user_rating": self.user_rating,
            "rating_count": self.rating_count,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PreferenceRecord:
        return cls(
            frequency=int(data.get("frequency", 0)),
            last_used=_parse_datetime(data.get("last_used")),
            context_counts={str(k): int(v) for k, v in (data.get("context_counts") or {}).items()},
            effectiveness=clamp(data.get("effectiveness", 0.0)),
            user_rating=float(data.get("user_rating", 0.0)),
            rating_count=int(data.get("rating_count", 0)),
        )


@dataclass
class AdaptationSettings:
    learning_rate: float = 0.1
    adaptation_threshold: float = 0.7
    context_sensitivity: float = 0.8

    def to_dict(self) -> dict[str, Any]:
        return {
            "learning_rate": self.learning_rate,
            "adaptation_threshold": self.adaptation_threshold,
            "context_sensitivity": self.context_sensitivity,
        }


@dataclass
class BehaviorProfile:
    """Per-user learned profile, rebuilt periodically from patterns."""

    user_id: str
    learning_preferences: dict[str, Any] = field(default_factory=dict)
    interaction_patterns: dict[str, Any] = field(default_factory=dict)
    content_preferences: dict[str, Any] = field(default_factory=dict)
    peer_preferences: dict[str, Any] = field(default_factory=dict)
    adaptation_settings: AdaptationSettings = field(default_factory=AdaptationSettings)
    last_updated: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "learning_preferences": self.learning_preferences,
            "interaction_patterns": self.interaction_patterns,
            "content_preferences": self.content_preferences,
            "peer_preferences": self.peer_preferences,
            "adaptation_settings": self.adaptation_settings.to_dict(),
            "last_updated": _iso(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BehaviorProfile:
        settings = data.get("adaptation_settings") or {}
        return cls(
            user_id=data["user_id"],
            learning_preferences=dict(data.get("learning_preferences") or {}),
            interaction_patterns=dict(data.get("interaction_patterns") or {}),
            content_preferences=dict(data.get("content_preferences") or {}),
            peer_preferences=dict(data.get("peer_preferences") or {}),
            adaptation_settings=AdaptationSettings(
                learning_rate=float(settings.get("learning_rate", 0.1)),
                adaptation_threshold=float(settings.get("adaptation_threshold", 0.7)),
                context_sensitivity=float(settings.get("context_sensitivity", 0.8)),
            ),
            last_updated=_parse_datetime(data.get("last_updated")) or datetime.now(),
        )


# =============================================================================
# Recommendations
# =============================================================================


@dataclass
class Recommendation:
    """One scored suggestion. Peers carry their id in ``item_id``."""

    type: str
    category: RecommendationCategory
    score: float
    reason: str = ""
    priority: Priority | None = None
    source_tag: SourceTag = SourceTag.RULE
    item_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.score = clamp(self.score)
        if self.priority is None:
            self.priority = priority_for_score(self.score)

    @property
    def key(self) -> str:
        """Merge key: peer id for peers, type for everything else."""
        return self.item_id or self.type

    def boosted(self, amount: float, flag: str) -> Recommendation:
        """Copy with ``amount`` added to the score and ``flag`` set."""
        score = clamp(self.score + amount)
        return replace(
            self,
            score=score,
            priority=max_priority(self.priority, priority_for_score(score)),
            metadata={**self.metadata, flag: True},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "category": str(self.category),
            "score": self.score,
            "reason": self.reason,
            "priority": str(self.priority),
            "source_tag": str(self.source_tag),
            "item_id": self.item_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Recommendation:
        priority = data.get("priority")
        return cls(
            type=str(data["type"]),
            category=RecommendationCategory(data.get("category", "content")),
            score=float(data.get("score", 0.0)),
            reason=str(data.get("reason", "")),
            priority=Priority(priority) if priority else None,
            source_tag=SourceTag(data.get("source_tag", "rule")),
            item_id=data.get("item_id"),
            metadata=dict(data.get("metadata") or {}),
        )


_PRIORITY_ORDER = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.URGENT]


def max_priority(a: Priority | None, b: Priority | None) -> Priority:
    ranked = [p for p in (a, b) if p is not None] or [Priority.LOW]
    return max(ranked, key=_PRIORITY_ORDER.index)


@dataclass
class AdaptationCacheEntry:
    """Context-keyed adaptation observation with a fixed expiry."""

    context_key: str
    adaptation_score: float
    recommendations: list[Recommendation]
    created_at: datetime
    expires_at: datetime

    def __post_init__(self):
        self.adaptation_score = clamp(self.adaptation_score)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "context_key": self.context_key,
            "adaptation_score": self.adaptation_score,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AdaptationCacheEntry:
        return cls(
            context_key=data["context_key"],
            adaptation_score=float(data["adaptation_score"]),
            recommendations=[Recommendation.from_dict(r) for r in data.get("recommendations", [])],
            created_at=_parse_datetime(data["created_at"]),
            expires_at=_parse_datetime(data["expires_at"]),
        )


@dataclass
class PeerRecommendations:
    support_partners: list[Recommendation] = field(default_factory=list)
    mentor_connections: list[Recommendation] = field(default_factory=list)
    activity_partners: list[Recommendation] = field(default_factory=list)
    confidence: float = 0.0

    def all(self) -> list[Recommendation]:
        return [*self.support_partners, *self.mentor_connections, *self.activity_partners]

    def to_dict(self) -> dict[str, Any]:
        return {
            "support_partners": [r.to_dict() for r in self.support_partners],
            "mentor_connections": [r.to_dict() for r in self.mentor_connections],
            "activity_partners": [r.to_dict() for r in self.activity_partners],
            "confidence": self.confidence,
        }


@dataclass
class RecommendationsBundle:
    """Everything the generator produces for one request."""

    suggested_activities: list[Recommendation] = field(default_factory=list)
    optimal_times: list[dict[str, Any]] = field(default_factory=list)
    mood_based_suggestions: list[Recommendation] = field(default_factory=list)
    content: list[Recommendation] = field(default_factory=list)
    peers: PeerRecommendations = field(default_factory=PeerRecommendations)
    confidence: float = 0.0
    degraded: bool = False
    generated_at: datetime = field(default_factory=datetime.now)

    def iter_recommendations(self) -> Iterator[Recommendation]:
        yield from self.suggested_activities
        yield from self.mood_based_suggestions
        yield from self.content
        yield from self.peers.all()

    def to_dict(self) -> dict[str, Any]:
        return {
            "suggested_activities": [r.to_dict() for r in self.suggested_activities],
            "optimal_times": list(self.optimal_times),
            "mood_based_suggestions": [r.to_dict() for r in self.mood_based_suggestions],
            "content": [r.to_dict() for r in self.content],
            "peers": self.peers.to_dict(),
            "confidence": self.confidence,
            "degraded": self.degraded,
            "generated_at": _iso(self.generated_at),
        }


@dataclass
class AdaptedBundle(RecommendationsBundle):
    """A bundle after real-time adaptation to the current context."""

    context_signature: str = ""
    stress_status: StressStatus = StressStatus.NORMAL
    immediate_action: bool = False
    adaptation_score: float = 0.0
    cache_hit: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "context_signature": self.context_signature,
                "stress_status": str(self.stress_status),
                "immediate_action": self.immediate_action,
                "adaptation_score": self.adaptation_score,
                "cache_hit": self.cache_hit,
            }
        )
        return data

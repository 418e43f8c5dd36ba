"""
Real-Time Adaptation Engine

Reshapes a generated bundle for the context the user is in right now:

1. Overlay the live cache entry for the context signature, if any
2. Mood filtering: boost mood-appropriate types
3. Time prioritization: boost types that fit the time of day
4. Stress override: crisis allowlist only, or stress-relief boost
5. Adjust confidence and write the unboosted observation back into the cache

Adaptation is a pure transform of its inputs plus the in-memory cache. It
makes no network calls; durable persistence of the cache entry is left to
the caller.

Cache merge rule (read-merge-write per key):
    adaptation_score -> average of old and new
    recommendations  -> union by key, higher score wins on conflict
    expires_at       -> refreshed on every write
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping

from .config import AdaptationConfig
from .context import mood_category, signature_for
from .models import (
    AdaptationCacheEntry,
    AdaptedBundle,
    ContextSnapshot,
    PeerRecommendations,
    Priority,
    Recommendation,
    RecommendationCategory,
    RecommendationsBundle,
    StressStatus,
    clamp,
)
from .preferences import normalize_rating


logger = logging.getLogger(__name__)


def calculate_adaptation_score(payload: Mapping[str, Any], context: ContextSnapshot | None) -> float:
    """
    Weighted average of whatever feedback signals an interaction carries.

    Signals and weights: rating 0.4, completion 0.3, effectiveness 0.2,
    mood confidence 0.1. Returns 0.5 when no signal is present.
    """
    signals: list[tuple[float, float]] = []

    rating = payload.get("rating", payload.get("user_rating"))
    if isinstance(rating, (int, float)) and not isinstance(rating, bool) and rating > 0:
        signals.append((normalize_rating(rating), 0.4))

    if "completed" in payload:
        signals.append((1.0 if payload.get("completed") else 0.0, 0.3))

    effectiveness = payload.get("effectiveness_score", payload.get("effectiveness"))
    if isinstance(effectiveness, (int, float)) and not isinstance(effectiveness, bool):
        signals.append((clamp(effectiveness), 0.2))

    if context is not None and context.mood is not None and context.mood.confidence is not None:
        signals.append((clamp(context.mood.confidence), 0.1))

    if not signals:
        return 0.5

    total_weight = sum(weight for _, weight in signals)
    return clamp(sum(value * weight for value, weight in signals) / total_weight)


def merge_recommendation_lists(
    existing: Iterable[Recommendation], incoming: Iterable[Recommendation]
) -> list[Recommendation]:
    """Union by key; the higher score wins on conflict. Sorted descending."""
    merged: dict[str, Recommendation] = {}
    for rec in [*existing, *incoming]:
        current = merged.get(rec.key)
        if current is None or rec.score > current.score:
            merged[rec.key] = rec
    return sorted(merged.values(), key=lambda r: r.score, reverse=True)


def merge_entries(
    existing: AdaptationCacheEntry | None, incoming: AdaptationCacheEntry, limit: int | None = None
) -> AdaptationCacheEntry:
    """Merge an incoming observation into an existing entry for the same key.

    Merging an entry into itself yields the same score and recommendation set.
    """
    if existing is None:
        recommendations = merge_recommendation_lists([], incoming.recommendations)
        return replace(incoming, recommendations=recommendations[:limit] if limit else recommendations)

    recommendations = merge_recommendation_lists(existing.recommendations, incoming.recommendations)
    return AdaptationCacheEntry(
        context_key=incoming.context_key,
        adaptation_score=(existing.adaptation_score + incoming.adaptation_score) / 2,
        recommendations=recommendations[:limit] if limit else recommendations,
        created_at=min(existing.created_at, incoming.created_at),
        expires_at=max(existing.expires_at, incoming.expires_at),
    )


class AdaptationCache:
    """In-memory context-keyed adaptation cache with a fixed TTL."""

    def __init__(self, ttl: timedelta = timedelta(hours=24), limit: int = 10):
        self.ttl = ttl
        self.limit = limit
        self._entries: dict[str, AdaptationCacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str, now: datetime) -> AdaptationCacheEntry | None:
        """Live entry for ``key``; an expired entry is never returned."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            del self._entries[key]
            return None
        return entry

    def upsert(
        self,
        key: str,
        adaptation_score: float,
        recommendations: Iterable[Recommendation],
        now: datetime,
    ) -> AdaptationCacheEntry:
        """Read-merge-write the entry for ``key`` with a fresh expiry."""
        incoming = AdaptationCacheEntry(
            context_key=key,
            adaptation_score=adaptation_score,
            recommendations=list(recommendations),
            created_at=now,
            expires_at=now + self.ttl,
        )
        entry = merge_entries(self.get(key, now), incoming, self.limit)
        self._entries[key] = entry
        return entry

    def merge_entry(self, entry: AdaptationCacheEntry, now: datetime) -> AdaptationCacheEntry | None:
        """Merge an entry loaded from elsewhere, keeping its own expiry."""
        if entry.is_expired(now):
            return None
        merged = merge_entries(self.get(entry.context_key, now), entry, self.limit)
        self._entries[entry.context_key] = merged
        return merged

    def purge_expired(self, now: datetime) -> int:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired adaptation cache entries")
        return len(expired)

    def snapshot(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries.values()]


class AdaptationEngine:
    """Applies mood, time and stress rules to a bundle."""

    def __init__(self, config: AdaptationConfig, cache: AdaptationCache):
        self.config = config
        self.cache = cache

    # -------------------------------------------------------------------------
    # Individual rules
    # -------------------------------------------------------------------------

    @staticmethod
    def _boost(
        recommendations: list[Recommendation], types: Iterable[str], amount: float, flag: str
    ) -> list[Recommendation]:
        targets = set(types)
        return [rec.boosted(amount, flag) if rec.type in targets else rec for rec in recommendations]

    def filter_by_mood(
        self, recommendations: list[Recommendation], context: ContextSnapshot
    ) -> list[Recommendation]:
        mood = context.mood
        if mood is None or mood.confidence is None:
            return recommendations
        if mood.confidence <= self.config.mood_confidence_threshold:
            return recommendations

        priority_types = self.config.mood_priority_types.get(mood_category(context))
        if not priority_types:
            return recommendations
        return self._boost(recommendations, priority_types, self.config.mood_boost, "mood_boost")

    def _is_late_night(self, hour: int) -> bool:
        return hour >= self.config.late_night_start_hour or hour < self.config.late_night_end_hour

    def prioritize_by_time(
        self, recommendations: list[Recommendation], context: ContextSnapshot
    ) -> list[Recommendation]:
        cfg = self.config
        priority_types = cfg.time_priority_types.get(str(context.time_of_day), [])
        adapted = self._boost(recommendations, priority_types, cfg.time_boost, "time_optimized")
        if self._is_late_night(context.hour):
            adapted = self._boost(adapted, cfg.calming_types, cfg.night_calming_boost, "late_night_calming")
        return adapted

    def stress_status(self, context: ContextSnapshot) -> StressStatus:
        levels = [x for x in (context.anxiety_level, context.stress_level) if x is not None]
        if not levels:
            return StressStatus.NORMAL
        level = max(levels)
        if level >= self.config.critical_level:
            return StressStatus.CRITICAL
        if level >= self.config.elevated_level:
            return StressStatus.ELEVATED
        return StressStatus.NORMAL

    def crisis_content(self, existing: Iterable[Recommendation] = ()) -> list[Recommendation]:
        """Allowlisted entries from ``existing`` plus urgent injections for the rest."""
        allowlist = self.config.crisis_allowlist
        kept = {
            rec.type: replace(rec, priority=Priority.URGENT, metadata={**rec.metadata, "crisis": True})
            for rec in existing
            if rec.type in allowlist
        }
        for content_type in allowlist:
            if content_type not in kept:
                kept[content_type] = Recommendation(
                    type=content_type,
                    category=RecommendationCategory.CONTENT,
                    score=1.0,
                    reason="Immediate support is available right now",
                    priority=Priority.URGENT,
                    metadata={"crisis": True},
                )
        return sorted(kept.values(), key=lambda r: r.score, reverse=True)

    def _only_allowlisted(self, recommendations: list[Recommendation]) -> list[Recommendation]:
        allowlist = set(self.config.crisis_allowlist)
        return [
            replace(rec, priority=Priority.URGENT)
            for rec in recommendations
            if rec.type in allowlist
        ]

    def adjust_confidence(
        self, confidence: float, context: ContextSnapshot, interaction_count: int
    ) -> float:
        cfg = self.config
        mood = context.mood
        mood_confidence = mood.confidence if mood is not None else None

        if mood_confidence is not None and mood_confidence > cfg.high_mood_confidence:
            confidence += 0.1
        if interaction_count > cfg.experienced_user_interactions:
            confidence += 0.1
        if mood_confidence is None or mood_confidence < cfg.low_mood_confidence:
            confidence -= 0.1
        return clamp(confidence)

    # -------------------------------------------------------------------------
    # Full pass
    # -------------------------------------------------------------------------

    def adapt(
        self,
        base: RecommendationsBundle,
        context: ContextSnapshot,
        interaction_count: int = 0,
    ) -> AdaptedBundle:
        """
        Adapt ``base`` to ``context``.

        Args:
            base: Bundle from the recommendation generator
            context: Snapshot of now
            interaction_count: Total tracked interactions

        Returns:
            AdaptedBundle with the updated cache entry's score
        """
        now = context.timestamp
        signature = signature_for(context)

        content = list(base.content)
        activities = list(base.suggested_activities)
        mood_based = list(base.mood_based_suggestions)
        peers = base.peers
        confidence = base.confidence

        # Cache overlay
        entry = self.cache.get(signature, now)
        if entry is not None:
            content = merge_recommendation_lists(content, entry.recommendations)
            confidence = (confidence + entry.adaptation_score) / 2

        # The cache holds unboosted scores so repeated passes stay stable
        observed_content = list(content)
        observed_confidence = confidence

        # Mood and time
        content = self.prioritize_by_time(self.filter_by_mood(content, context), context)
        activities = self.prioritize_by_time(self.filter_by_mood(activities, context), context)

        # Stress override
        status = self.stress_status(context)
        if status == StressStatus.CRITICAL:
            content = self.crisis_content(content)
            activities = self._only_allowlisted(activities)
            mood_based = self._only_allowlisted(mood_based)
            peers = PeerRecommendations(confidence=peers.confidence)
            logger.info(f"Stress override active for context {signature}")
        elif status == StressStatus.ELEVATED:
            cfg = self.config
            content = self._boost(content, cfg.stress_relief_types, cfg.stress_relief_boost, "stress_relief")
            activities = self._boost(
                activities, cfg.stress_relief_types, cfg.stress_relief_boost, "stress_relief"
            )

        content.sort(key=lambda r: r.score, reverse=True)
        activities.sort(key=lambda r: r.score, reverse=True)

        confidence = self.adjust_confidence(confidence, context, interaction_count)

        # Crisis lists never enter the cache
        cached = [] if status == StressStatus.CRITICAL else observed_content
        updated = self.cache.upsert(signature, observed_confidence, cached, now)

        return AdaptedBundle(
            suggested_activities=activities,
            optimal_times=list(base.optimal_times),
            mood_based_suggestions=mood_based,
            content=content,
            peers=peers,
            confidence=confidence,
            degraded=base.degraded,
            generated_at=base.generated_at,
            context_signature=signature,
            stress_status=status,
            immediate_action=status == StressStatus.CRITICAL,
            adaptation_score=updated.adaptation_score,
            cache_hit=entry is not None,
        )

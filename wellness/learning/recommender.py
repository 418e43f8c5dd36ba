"""
Tool: Recommendation Generator
Purpose: Turn learned patterns into scored recommendation bundles

Three families are produced per request:
    - Activities: rule formula over per-type statistics, merged with AI picks
    - Content: AI + personalized + trending + diversity, averaged on overlap
    - Peers: algorithmic compatibility matching, merged with AI picks by id

The AI provider is optional. When it fails or times out the rule-based half
of every family is still returned, and with no history at all the fixed
fallback bundles guarantee a non-empty answer.

Activity score:
    0.3 * frequency_norm + 0.4 * completion_rate + 0.2 * effectiveness
    + 0.1 * rating_norm
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from .config import RecommendationsConfig
from .context import mood_category
from .models import (
    ContextSnapshot,
    InteractionEvent,
    PeerRecommendations,
    Priority,
    Recommendation,
    RecommendationCategory,
    RecommendationsBundle,
    SourceTag,
    clamp,
)
from .pattern_analyzer import LearnedPatterns, categorize_activity_level
from .peer_matching import match_peers, merge_peer_recommendations, peer_recommendations_from_dict
from .preferences import normalize_rating
from wellness.providers import SuggestionClient


logger = logging.getLogger(__name__)

FEEDBACK_EVENT = "recommendation_engagement"
ACCEPTED_ACTIONS = {"accepted", "completed"}

TIME_PREFERENCES = {
    "morning": "Energizing activities",
    "afternoon": "Productive work",
    "evening": "Relaxing activities",
    "night": "Wind-down activities",
}

# Ties resolve in this order
_REASONS = [
    ("completion", "You usually finish this activity"),
    ("rating", "You rate this activity highly"),
    ("effectiveness", "This has worked well for you"),
    ("frequency", "One of your most frequent activities"),
]


# =============================================================================
# Scoring
# =============================================================================


def activity_score(stats: Mapping[str, Any], max_frequency: int) -> tuple[float, str]:
    """Score one interaction type and name the term that dominated it."""
    frequency_norm = stats.get("frequency", 0) / max_frequency if max_frequency else 0.0
    terms = {
        "completion": 0.4 * clamp(stats.get("completion_rate", 0.0)),
        "rating": 0.1 * normalize_rating(stats.get("user_rating", 0.0) or 0.0),
        "effectiveness": 0.2 * clamp(stats.get("effectiveness_score", 0.0)),
        "frequency": 0.3 * clamp(frequency_norm),
    }

    reason_key, reason = _REASONS[0]
    for key, text in _REASONS:
        if terms[key] > terms[reason_key]:
            reason_key, reason = key, text

    return clamp(sum(terms.values())), reason


def score_content_preferences(
    content_preferences: Mapping[str, Mapping[str, Any]],
    category: RecommendationCategory,
) -> list[Recommendation]:
    """Every type in the content slice, scored and sorted descending."""
    if not content_preferences:
        return []

    max_frequency = max(s.get("frequency", 0) for s in content_preferences.values())
    scored = []
    for interaction_type, stats in content_preferences.items():
        score, reason = activity_score(stats, max_frequency)
        scored.append(
            Recommendation(
                type=interaction_type,
                category=category,
                score=score,
                reason=reason,
                metadata={
                    "frequency": stats.get("frequency", 0),
                    "completion_rate": stats.get("completion_rate", 0.0),
                },
            )
        )

    scored.sort(key=lambda r: r.score, reverse=True)
    return scored


def suggest_activities(
    content_preferences: Mapping[str, Mapping[str, Any]], limit: int = 3
) -> list[Recommendation]:
    return score_content_preferences(content_preferences, RecommendationCategory.ACTIVITY)[:limit]


def find_optimal_times(time_preferences: Mapping[str, Mapping[str, int]]) -> list[dict[str, Any]]:
    """Time buckets with any activity, busiest first."""
    optimal = []
    for time_of_day, activities in time_preferences.items():
        total = sum(activities.values())
        if total <= 0:
            continue
        optimal.append(
            {
                "time_of_day": time_of_day,
                "activity_count": total,
                "top_activity": max(activities, key=activities.get),
                "preference": TIME_PREFERENCES.get(time_of_day, "General activities"),
            }
        )
    optimal.sort(key=lambda t: t["activity_count"], reverse=True)
    return optimal


def mood_based_suggestions(
    mood_preferences: Mapping[str, Mapping[str, int]],
    context: ContextSnapshot | None,
    limit: int = 2,
) -> list[Recommendation]:
    """Types the user has historically reached for in the current mood."""
    mood = mood_category(context)
    counts = mood_preferences.get(mood) or {}
    if not counts:
        return []

    top = max(counts.values())
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:limit]
    return [
        Recommendation(
            type=activity,
            category=RecommendationCategory.ACTIVITY,
            score=count / top,
            reason=f"{activity} has helped during {mood} periods",
            metadata={"mood_fit": mood, "frequency": count},
        )
        for activity, count in ranked
    ]


def trending_content(
    counts: Mapping[str, int], limit: int = 3, weight: float = 0.6
) -> list[Recommendation]:
    """Most-used content types across users in the trending window."""
    counts = {k: v for k, v in counts.items() if v > 0}
    if not counts:
        return []

    top = max(counts.values())
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:limit]
    return [
        Recommendation(
            type=content_type,
            category=RecommendationCategory.CONTENT,
            score=count / top * weight,
            reason="Popular with the community this week",
            metadata={"trending": True, "interactions": count},
        )
        for content_type, count in ranked
    ]


def diversity_content(
    recent: Iterable[InteractionEvent],
    catalog: Iterable[str],
    limit: int = 2,
    score: float = 0.4,
) -> list[Recommendation]:
    """Catalog types absent from the recent interactions."""
    used = {event.type for event in recent}
    picks = [content_type for content_type in catalog if content_type not in used][:limit]
    return [
        Recommendation(
            type=content_type,
            category=RecommendationCategory.CONTENT,
            score=score,
            reason="Something new to try",
            metadata={"diversity": True},
        )
        for content_type in picks
    ]


def merge_recommendations(*sources: Iterable[Recommendation]) -> list[Recommendation]:
    """
    Merge recommendation lists by key.

    Entries sharing a key average their scores; the first occurrence keeps
    its reason, source tag and metadata. Result is sorted descending.
    """
    merged: dict[str, Recommendation] = {}
    scores: dict[str, list[float]] = {}

    for source in sources:
        for rec in source:
            if rec.key not in merged:
                merged[rec.key] = rec
                scores[rec.key] = [rec.score]
            else:
                scores[rec.key].append(rec.score)

    result = []
    for key, rec in merged.items():
        values = scores[key]
        if len(values) == 1:
            result.append(rec)
        else:
            average = sum(values) / len(values)
            result.append(
                Recommendation(
                    type=rec.type,
                    category=rec.category,
                    score=average,
                    reason=rec.reason,
                    source_tag=rec.source_tag,
                    item_id=rec.item_id,
                    metadata={**rec.metadata, "merged_sources": len(values)},
                )
            )

    result.sort(key=lambda r: r.score, reverse=True)
    return result


def recommendations_from_provider(
    payload: Mapping[str, Any] | None, category: RecommendationCategory
) -> list[Recommendation]:
    """Parse a provider recommendation list, tagging every entry as AI."""
    if not payload:
        return []

    parsed = []
    for item in payload.get("recommendations") or []:
        try:
            parsed.append(
                Recommendation(
                    type=str(item["type"]),
                    category=category,
                    score=float(item.get("score", 0.5)),
                    reason=str(item.get("reason", "")),
                    source_tag=SourceTag.AI,
                    metadata=dict(item.get("metadata") or {}),
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Skipping malformed provider recommendation: {e}")
    return parsed


def rule_confidence(interaction_count: int, per: int = 50, cap: float = 0.8) -> float:
    """Confidence grows with history and never exceeds ``cap``."""
    return clamp(min(cap, interaction_count / per))


# =============================================================================
# Fallbacks
# =============================================================================


def fallback_content_recommendations() -> list[Recommendation]:
    """Fixed rule-tagged content used when there is nothing better."""
    return [
        Recommendation(
            type="breathing_exercise",
            category=RecommendationCategory.CONTENT,
            score=0.6,
            reason="Gentle breathing exercise to reduce stress",
            priority=Priority.LOW,
        ),
        Recommendation(
            type="journaling",
            category=RecommendationCategory.CONTENT,
            score=0.5,
            reason="Help process experiences and emotions",
            priority=Priority.LOW,
        ),
        Recommendation(
            type="meditation",
            category=RecommendationCategory.CONTENT,
            score=0.5,
            reason="A few quiet minutes to reset",
            priority=Priority.LOW,
        ),
        Recommendation(
            type="mood_log",
            category=RecommendationCategory.CONTENT,
            score=0.4,
            reason="Check in with how you are feeling",
            priority=Priority.LOW,
        ),
    ]


FALLBACK_CONFIDENCE = 0.3


def fallback_peer_recommendations() -> PeerRecommendations:
    return PeerRecommendations(confidence=0.0)


# =============================================================================
# Feedback
# =============================================================================


def analyze_recommendation_effectiveness(events: Iterable[InteractionEvent]) -> dict[str, Any]:
    """
    Summarize recommendation feedback events.

    A feedback event counts as accepted when its action is ``accepted`` or
    ``completed``, and as effective when it was completed with a rating of
    at least 0.7 after normalization.
    """
    summary: dict[str, Any] = {
        "total": 0,
        "accepted": 0,
        "effective": 0,
        "acceptance_rate": 0.0,
        "effectiveness_rate": 0.0,
        "categories": {},
    }

    for event in events:
        if event.type != FEEDBACK_EVENT:
            continue

        action = event.payload.get("action")
        rating = event.rating
        accepted = action in ACCEPTED_ACTIONS
        effective = action == "completed" and rating is not None and normalize_rating(rating) >= 0.7

        category = event.payload.get("category") or "general"
        bucket = summary["categories"].setdefault(
            category, {"total": 0, "accepted": 0, "effective": 0}
        )

        summary["total"] += 1
        bucket["total"] += 1
        if accepted:
            summary["accepted"] += 1
            bucket["accepted"] += 1
        if effective:
            summary["effective"] += 1
            bucket["effective"] += 1

    if summary["total"]:
        summary["acceptance_rate"] = summary["accepted"] / summary["total"]
        summary["effectiveness_rate"] = summary["effective"] / summary["total"]

    return summary


# =============================================================================
# Generator
# =============================================================================


class RecommendationGenerator:
    """Builds ``RecommendationsBundle``s from learned patterns."""

    def __init__(self, config: RecommendationsConfig, client: SuggestionClient):
        self.config = config
        self.client = client

    async def generate(
        self,
        user_id: str,
        patterns: LearnedPatterns,
        recent: list[InteractionEvent],
        context: ContextSnapshot,
        interaction_count: int,
        trending: Mapping[str, int] | None = None,
        peer_profile: Mapping[str, Any] | None = None,
        peer_candidates: list[dict[str, Any]] | None = None,
        include_peers: bool = True,
    ) -> RecommendationsBundle:
        """
        Generate every recommendation family for the current context.

        Args:
            user_id: Owner of the patterns
            patterns: Output of ``learn_patterns``
            recent: Most recent interactions, newest first
            context: Snapshot of now
            interaction_count: Total tracked interactions (drives confidence)
            trending: Content type counts over the trending window
            peer_profile: The user's own peer profile, if known
            peer_candidates: Candidate peer profiles
            include_peers: Skip peer matching entirely when False

        Returns:
            RecommendationsBundle (never empty: fallbacks fill gaps)
        """
        cfg = self.config
        context_data = context.to_dict()
        degraded = False

        # Activities
        rule_activities = suggest_activities(patterns.content_preferences, cfg.top_activities)
        ai_personal = await self.client.personalized(user_id, patterns.to_dict(), context_data)
        if ai_personal is None:
            degraded = degraded or self.client.available
        activities = merge_recommendations(
            recommendations_from_provider(ai_personal, RecommendationCategory.ACTIVITY),
            rule_activities,
        )[: cfg.top_activities]

        # Content
        ai_content = await self.client.content(
            user_id, dict(patterns.content_preferences), context_data
        )
        if ai_content is None:
            degraded = degraded or self.client.available
        content = merge_recommendations(
            recommendations_from_provider(ai_content, RecommendationCategory.CONTENT),
            score_content_preferences(patterns.content_preferences, RecommendationCategory.CONTENT),
            trending_content(trending or {}, cfg.trending_limit, cfg.trending_weight),
            diversity_content(
                recent[: cfg.diversity_lookback],
                cfg.content_catalog,
                cfg.diversity_limit,
                cfg.diversity_score,
            ),
        )
        if not content or (not patterns.content_preferences and ai_content is None):
            content = merge_recommendations(content, fallback_content_recommendations())

        # Peers
        peers = fallback_peer_recommendations()
        if include_peers and peer_profile is not None:
            activity_level = categorize_activity_level(patterns.engagement or {})
            candidates = list(peer_candidates or [])[: cfg.peer_candidate_limit]
            algorithmic = match_peers(
                peer_profile,
                candidates,
                user_activity_level=activity_level,
                support_threshold=cfg.support_partner_threshold,
                mentor_threshold=cfg.mentor_threshold,
            )
            ai_peers = None
            if candidates:
                ai_peers = peer_recommendations_from_dict(
                    await self.client.peers(user_id, dict(peer_profile), candidates)
                )
            peers = merge_peer_recommendations(ai_peers, algorithmic)

        # Confidence
        confidence = rule_confidence(
            interaction_count, cfg.rule_confidence_interactions, cfg.rule_confidence_cap
        )
        ai_confidences = [
            float(p.get("confidence"))
            for p in (ai_personal, ai_content)
            if p and isinstance(p.get("confidence"), (int, float))
        ]
        if ai_confidences:
            confidence = clamp((confidence + sum(ai_confidences) / len(ai_confidences)) / 2)
        if interaction_count == 0:
            confidence = max(confidence, FALLBACK_CONFIDENCE)

        bundle = RecommendationsBundle(
            suggested_activities=activities,
            optimal_times=find_optimal_times(patterns.time_preferences or {}),
            mood_based_suggestions=mood_based_suggestions(
                patterns.mood_preferences or {}, context, cfg.mood_suggestions
            ),
            content=content,
            peers=peers,
            confidence=confidence,
            degraded=degraded,
            generated_at=context.timestamp,
        )
        logger.debug(
            f"Generated {len(activities)} activities, {len(content)} content, "
            f"{len(peers.all())} peers for {user_id} (confidence {confidence:.2f})"
        )
        return bundle


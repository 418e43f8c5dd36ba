"""
Peer Matching

Scores candidate peers against the user's own profile and sorts them into
support partners (strong match) and mentor connections (moderate match).

Candidate profiles are plain dicts as returned by the persistence gateway:

    {
        "id": "peer-1",
        "mental_health_interests": ["anxiety", "mindfulness"],
        "shared_experiences": ["social_anxiety"],
        "preferred_communication_style": "supportive",
        "age_range": "25-35",
        "activity_level": "medium",
    }

Compatibility weights:
    interests 0.30, experiences 0.25, communication style 0.20,
    activity pattern 0.15, age range 0.10
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping

from .models import PeerRecommendations, Recommendation, RecommendationCategory, SourceTag, clamp


logger = logging.getLogger(__name__)

ACTIVITY_LEVELS = ["low", "medium", "high"]


def _jaccard(a: Iterable[str] | None, b: Iterable[str] | None) -> float:
    left, right = set(a or []), set(b or [])
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def are_activity_levels_compatible(a: str, b: str) -> bool:
    """Equal or adjacent levels are compatible; ``high`` and ``low`` are not."""
    if a not in ACTIVITY_LEVELS or b not in ACTIVITY_LEVELS:
        return False
    return abs(ACTIVITY_LEVELS.index(a) - ACTIVITY_LEVELS.index(b)) <= 1


def activity_pattern_similarity(a: str | None, b: str | None) -> float:
    if not a or not b:
        return 0.5
    if a == b:
        return 1.0
    return 0.5 if are_activity_levels_compatible(a, b) else 0.0


_AGE_RANGE = re.compile(r"^\s*(\d+)\s*(?:-\s*(\d+)|\+)?\s*$")


def parse_age_range(value: str | None) -> tuple[int, int] | None:
    """Parse ``"25-35"`` or ``"55+"`` into an inclusive ``(low, high)`` tuple."""
    if not value:
        return None
    match = _AGE_RANGE.match(str(value))
    if not match:
        return None
    low = int(match.group(1))
    if match.group(2):
        return low, int(match.group(2))
    if str(value).strip().endswith("+"):
        return low, 200
    return low, low


def are_age_ranges_compatible(a: str | None, b: str | None) -> bool:
    left, right = parse_age_range(a), parse_age_range(b)
    if left is None or right is None:
        return False
    return left[0] <= right[1] and right[0] <= left[1]


def calculate_peer_compatibility(
    user_profile: Mapping[str, Any],
    peer: Mapping[str, Any],
    user_activity_level: str | None = None,
) -> float:
    """
    Weighted compatibility between the user and one candidate peer.

    Args:
        user_profile: The user's own peer profile
        peer: Candidate profile
        user_activity_level: Level learned from the user's engagement; falls
            back to ``user_profile["activity_level"]``

    Returns:
        Score in [0, 1]
    """
    interests = _jaccard(
        user_profile.get("mental_health_interests"), peer.get("mental_health_interests")
    )
    experiences = _jaccard(user_profile.get("shared_experiences"), peer.get("shared_experiences"))

    user_style = user_profile.get("preferred_communication_style")
    comm_style = 1.0 if user_style and user_style == peer.get("preferred_communication_style") else 0.5

    activity = activity_pattern_similarity(
        user_activity_level or user_profile.get("activity_level"), peer.get("activity_level")
    )

    age = 1.0 if are_age_ranges_compatible(user_profile.get("age_range"), peer.get("age_range")) else 0.3

    return clamp(
        interests * 0.30 + experiences * 0.25 + comm_style * 0.20 + activity * 0.15 + age * 0.10
    )


def _peer_id(peer: Mapping[str, Any]) -> str | None:
    value = peer.get("id") or peer.get("user_id") or peer.get("peer_id")
    return str(value) if value else None


def match_peers(
    user_profile: Mapping[str, Any],
    candidates: Iterable[Mapping[str, Any]],
    user_activity_level: str | None = None,
    support_threshold: float = 0.7,
    mentor_threshold: float = 0.5,
) -> PeerRecommendations:
    """Score candidates and bucket them; candidates below the mentor threshold are dropped."""
    result = PeerRecommendations()
    user_id = _peer_id(user_profile)

    for peer in candidates:
        peer_id = _peer_id(peer)
        if peer_id is None or peer_id == user_id:
            continue

        score = calculate_peer_compatibility(user_profile, peer, user_activity_level)
        if score > support_threshold:
            bucket, reason = result.support_partners, "Strong match on shared experiences"
        elif score >= mentor_threshold:
            bucket, reason = result.mentor_connections, "Could offer perspective and guidance"
        else:
            continue

        bucket.append(
            Recommendation(
                type="peer_connection",
                category=RecommendationCategory.PEER,
                score=score,
                reason=reason,
                item_id=peer_id,
                metadata={
                    "shared_interests": sorted(
                        set(user_profile.get("mental_health_interests") or [])
                        & set(peer.get("mental_health_interests") or [])
                    ),
                    "activity_level": peer.get("activity_level"),
                },
            )
        )

    for bucket in (result.support_partners, result.mentor_connections):
        bucket.sort(key=lambda r: r.score, reverse=True)

    matched = result.all()
    result.confidence = sum(r.score for r in matched) / len(matched) if matched else 0.0
    logger.debug(
        f"Matched {len(result.support_partners)} support partners, "
        f"{len(result.mentor_connections)} mentor connections"
    )
    return result


def merge_peer_recommendations(
    ai: PeerRecommendations | None, algorithmic: PeerRecommendations
) -> PeerRecommendations:
    """AI entries come first; algorithmic entries are appended only for unseen peer ids."""
    if ai is None:
        return algorithmic

    merged = PeerRecommendations(
        support_partners=list(ai.support_partners),
        mentor_connections=list(ai.mentor_connections),
        activity_partners=list(ai.activity_partners),
    )
    seen = {r.key for r in merged.all()}

    for name in ("support_partners", "mentor_connections", "activity_partners"):
        target = getattr(merged, name)
        for rec in getattr(algorithmic, name):
            if rec.key not in seen:
                seen.add(rec.key)
                target.append(rec)

    confidences = [c for c in (ai.confidence, algorithmic.confidence) if c]
    merged.confidence = clamp(sum(confidences) / len(confidences)) if confidences else 0.0
    return merged


def peer_recommendations_from_dict(data: Mapping[str, Any] | None) -> PeerRecommendations | None:
    """Parse a provider payload; returns None when the shape is unusable."""
    if not isinstance(data, Mapping):
        return None

    def _entries(key: str) -> list[Recommendation]:
        entries = []
        for item in data.get(key) or []:
            if not isinstance(item, Mapping):
                continue
            peer_id = _peer_id(item)
            if peer_id is None:
                continue
            entries.append(
                Recommendation(
                    type=str(item.get("type", "peer_connection")),
                    category=RecommendationCategory.PEER,
                    score=float(item.get("score", item.get("compatibility", 0.5))),
                    reason=str(item.get("reason", "")),
                    source_tag=SourceTag.AI,
                    item_id=peer_id,
                )
            )
        return entries

    return PeerRecommendations(
        support_partners=_entries("support_partners"),
        mentor_connections=_entries("mentor_connections"),
        activity_partners=_entries("activity_partners"),
        confidence=clamp(float(data.get("confidence", 0.0) or 0.0)),
    )

"""
Tool: Pattern Analyzer
Purpose: Derive higher-level behavior patterns from the interaction log

Patterns emerge from observation: nothing here asks the user anything.
Every slice is computed independently, and a slice that fails degrades to an
empty dict instead of aborting the whole pass.

Pattern slices:
- time_preferences: interaction types per time-of-day bucket
- content_preferences: per-type frequency, effectiveness, rating, completion
- mood_preferences: interaction types per normalized mood category
- engagement: session length, weekly rhythm, per-activity engagement
- contextual: time x day and mood x day combinations, peak hours

Dependencies:
    - recorder (session grouping)
    - preferences (rating normalization)
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Iterable, Mapping

from . import MOOD_CATEGORIES, TIME_BUCKETS
from .context import normalize_mood
from .models import InteractionEvent, PreferenceRecord, clamp
from .preferences import normalize_rating
from .recorder import DEFAULT_SESSION_GAP, group_sessions


logger = logging.getLogger(__name__)

PEAK_HOUR_COUNT = 3


@dataclass
class LearnedPatterns:
    """Result of one learning pass."""

    time_preferences: dict[str, dict[str, int]] = field(default_factory=dict)
    content_preferences: dict[str, dict[str, float]] = field(default_factory=dict)
    mood_preferences: dict[str, dict[str, int]] = field(default_factory=dict)
    engagement: dict[str, Any] = field(default_factory=dict)
    contextual: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "time_preferences": self.time_preferences,
            "content_preferences": self.content_preferences,
            "mood_preferences": self.mood_preferences,
            "engagement": self.engagement,
            "contextual": self.contextual,
        }


def analyze_time_preferences(events: Iterable[InteractionEvent]) -> dict[str, dict[str, int]]:
    """Count each interaction type per time-of-day bucket."""
    time_prefs: dict[str, dict[str, int]] = {bucket: {} for bucket in TIME_BUCKETS}

    for event in events:
        bucket = str(event.context.time_of_day)
        counts = time_prefs.setdefault(bucket, {})
        counts[event.type] = counts.get(event.type, 0) + 1

    return time_prefs


def analyze_content_preferences(
    events: Iterable[InteractionEvent], preferences: Mapping[str, PreferenceRecord]
) -> dict[str, dict[str, float]]:
    """Per-type frequency, effectiveness, mean rating and completion rate."""
    completions = Counter(e.type for e in events if e.completed)

    content_prefs = {}
    for interaction_type, record in preferences.items():
        completion_rate = 0.0
        if record.frequency > 0:
            completion_rate = clamp(completions.get(interaction_type, 0) / record.frequency)

        content_prefs[interaction_type] = {
            "frequency": record.frequency,
            "effectiveness_score": record.effectiveness,
            "user_rating": record.user_rating,
            "completion_rate": completion_rate,
        }

    return content_prefs


def analyze_mood_preferences(events: Iterable[InteractionEvent]) -> dict[str, dict[str, int]]:
    """Count interaction types per normalized mood category."""
    mood_prefs: dict[str, dict[str, int]] = {category: {} for category in MOOD_CATEGORIES}

    for event in events:
        if event.context.mood is None:
            continue
        category = normalize_mood(event.context.mood.emotion)
        counts = mood_prefs.setdefault(category, {})
        counts[event.type] = counts.get(event.type, 0) + 1

    return mood_prefs


def analyze_engagement_patterns(
    events: Iterable[InteractionEvent], session_gap: timedelta = DEFAULT_SESSION_GAP
) -> dict[str, Any]:
    """Session length, weekday rhythm and per-activity engagement."""
    events = list(events)
    sessions = group_sessions(events, session_gap)

    engagement: dict[str, Any] = {
        "session_count": len(sessions),
        "average_session_minutes": 0.0,
        "session_frequency": {},
        "preferred_activities": {},
    }

    if sessions:
        total = sum((s.duration for s in sessions), timedelta())
        engagement["average_session_minutes"] = total.total_seconds() / 60 / len(sessions)

        frequency: dict[int, int] = defaultdict(int)
        for session in sessions:
            frequency[session.first_interaction.weekday()] += 1
        engagement["session_frequency"] = dict(frequency)

    activity: dict[str, dict[str, Any]] = {}
    for event in events:
        stats = activity.setdefault(event.type, {"total": 0, "completed": 0, "ratings": []})
        stats["total"] += 1
        if event.completed:
            stats["completed"] += 1
        if event.rating is not None:
            stats["ratings"].append(event.rating)

    for interaction_type, stats in activity.items():
        completion_rate = stats["completed"] / stats["total"]
        ratings = stats["ratings"]
        average_rating = sum(ratings) / len(ratings) if ratings else 0.0
        engagement["preferred_activities"][interaction_type] = {
            "frequency_score": stats["total"],
            "completion_rate": completion_rate,
            "average_rating": average_rating,
            "engagement_score": clamp(
                completion_rate * 0.7 + normalize_rating(average_rating) * 0.3
            ),
        }

    return engagement


def analyze_contextual_preferences(events: Iterable[InteractionEvent]) -> dict[str, Any]:
    """Joint time x day and mood x day distributions plus peak hours."""
    time_day: dict[str, dict[str, int]] = {}
    mood_day: dict[str, dict[str, int]] = {}
    hours: Counter[int] = Counter()

    for event in events:
        ctx = event.context

        key = f"{ctx.time_of_day}_{ctx.day_of_week}"
        counts = time_day.setdefault(key, {})
        counts[event.type] = counts.get(event.type, 0) + 1

        if ctx.mood is not None:
            key = f"{normalize_mood(ctx.mood.emotion)}_{ctx.day_of_week}"
            counts = mood_day.setdefault(key, {})
            counts[event.type] = counts.get(event.type, 0) + 1

        hours[ctx.hour] += 1

    return {
        "time_day_combinations": time_day,
        "mood_day_combinations": mood_day,
        "peak_activity_times": dict(hours.most_common(PEAK_HOUR_COUNT)),
    }


def categorize_activity_level(engagement: Mapping[str, Any]) -> str:
    """Bucket a user's engagement into ``high``, ``medium`` or ``low``."""
    average_minutes = engagement.get("average_session_minutes", 0) or 0
    sessions = sum((engagement.get("session_frequency") or {}).values())

    if sessions > 5 and average_minutes > 30:
        return "high"
    if sessions > 2 and average_minutes > 15:
        return "medium"
    return "low"


def _safe(name: str, fn: Callable[..., Any], *args: Any) -> Any:
    try:
        return fn(*args)
    except Exception as e:
        logger.warning(f"Pattern slice '{name}' failed, continuing without it: {e}")
        return {}


def learn_patterns(
    events: Iterable[InteractionEvent],
    preferences: Mapping[str, PreferenceRecord],
    session_gap: timedelta = DEFAULT_SESSION_GAP,
) -> LearnedPatterns:
    """
    Run every pattern slice over the interaction log.

    Args:
        events: Interaction log (any order)
        preferences: Aggregated records keyed by interaction type
        session_gap: Inactivity gap that splits sessions

    Returns:
        LearnedPatterns with one dict per slice (empty on slice failure)
    """
    events = list(events)

    return LearnedPatterns(
        time_preferences=_safe("time_preferences", analyze_time_preferences, events),
        content_preferences=_safe(
            "content_preferences", analyze_content_preferences, events, preferences
        ),
        mood_preferences=_safe("mood_preferences", analyze_mood_preferences, events),
        engagement=_safe("engagement", analyze_engagement_patterns, events, session_gap),
        contextual=_safe("contextual", analyze_contextual_preferences, events),
    )

"""
Context Resolver

Computes a ``ContextSnapshot`` of "now": time-of-day bucket, weekday, hour
and the most recent mood / stress reading. Also owns the pure key functions
used to index preferences and the adaptation cache.

Mood comes from ``RecentMoodCache``, a short-lived holder that the rest of
the app populates whenever the user logs a mood. When nothing recent is
cached the snapshot carries ``mood=None``; a mood is never invented.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from .models import ContextSnapshot, MoodReading, TimeOfDay


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

MOOD_SYNONYMS = {
    "joy": "happy",
    "happiness": "happy",
    "happy": "happy",
    "sad": "sad",
    "sadness": "sad",
    "depressed": "sad",
    "anxious": "anxious",
    "anxiety": "anxious",
    "worried": "anxious",
    "stressed": "stressed",
    "stress": "stressed",
    "overwhelmed": "stressed",
}


def categorize_time_of_day(hour: int) -> TimeOfDay:
    """Map an hour of day onto its bucket."""
    if 6 <= hour < 12:
        return TimeOfDay.MORNING
    if 12 <= hour < 17:
        return TimeOfDay.AFTERNOON
    if 17 <= hour < 21:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT


def normalize_mood(emotion: str | None) -> str:
    """Normalize a free-form emotion label onto a standard mood category."""
    if not emotion:
        return "neutral"
    return MOOD_SYNONYMS.get(emotion.strip().lower(), "neutral")


def mood_category(context: ContextSnapshot | None) -> str:
    if context is None or context.mood is None:
        return "neutral"
    return context.mood.category


def context_key(context: ContextSnapshot) -> str:
    """Key for per-context preference counts: ``<time_of_day>_<weekday>``."""
    return f"{context.time_of_day}_{context.day_of_week}"


def context_signature(time_of_day: str, day_of_week: int, mood: str) -> str:
    """Adaptation cache key. Pure function of its three inputs."""
    return f"{time_of_day}_{day_of_week}_{mood}"


def signature_for(context: ContextSnapshot) -> str:
    return context_signature(str(context.time_of_day), context.day_of_week, mood_category(context))


class RecentMoodCache:
    """Holds the latest mood / stress reading for a limited time."""

    def __init__(self, ttl: timedelta = timedelta(hours=2), clock: Clock = datetime.now):
        self._ttl = ttl
        self._clock = clock
        self._mood: MoodReading | None = None
        self._stress_level: float | None = None
        self._anxiety_level: float | None = None
        self._recorded_at: datetime | None = None

    def record(
        self,
        emotion: str | None = None,
        confidence: float | None = None,
        stress_level: float | None = None,
        anxiety_level: float | None = None,
    ) -> None:
        """Store a fresh reading. Called by the mood-logging side of the app."""
        self._mood = MoodReading(emotion=emotion, confidence=confidence) if emotion else None
        self._stress_level = stress_level
        self._anxiety_level = anxiety_level
        self._recorded_at = self._clock()

    def clear(self) -> None:
        self._mood = None
        self._stress_level = None
        self._anxiety_level = None
        self._recorded_at = None

    def _is_fresh(self) -> bool:
        return self._recorded_at is not None and self._clock() - self._recorded_at <= self._ttl

    def current(self) -> tuple[MoodReading | None, float | None, float | None]:
        """Return ``(mood, stress_level, anxiety_level)`` or all ``None`` once stale."""
        if not self._is_fresh():
            return None, None, None
        return self._mood, self._stress_level, self._anxiety_level


class ContextResolver:
    """Builds context snapshots from the clock and the recent mood cache."""

    def __init__(self, mood_cache: RecentMoodCache | None = None, clock: Clock = datetime.now):
        self.mood_cache = mood_cache or RecentMoodCache(clock=clock)
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def resolve(self) -> ContextSnapshot:
        """Snapshot of now. Never raises."""
        try:
            now = self._clock()
        except Exception as e:
            logger.warning(f"Clock unavailable while resolving context: {e}")
            now = datetime.now()
            return ContextSnapshot(
                time_of_day=TimeOfDay.UNKNOWN,
                day_of_week=now.weekday(),
                hour=now.hour,
                timestamp=now,
            )

        try:
            mood, stress_level, anxiety_level = self.mood_cache.current()
            return ContextSnapshot(
                time_of_day=categorize_time_of_day(now.hour),
                day_of_week=now.weekday(),
                hour=now.hour,
                timestamp=now,
                mood=mood,
                stress_level=stress_level,
                anxiety_level=anxiety_level,
            )
        except Exception as e:
            logger.warning(f"Failed to resolve context: {e}")
            return ContextSnapshot(
                time_of_day=TimeOfDay.UNKNOWN,
                day_of_week=now.weekday(),
                hour=now.hour,
                timestamp=now,
            )

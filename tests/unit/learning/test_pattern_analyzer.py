"""
Unit tests for pattern analysis.

Tests cover:
- Content preference statistics from the aggregator
- Time and mood distributions
- Session-based engagement and activity levels
- Slice isolation when one analysis fails
"""

from datetime import timedelta

import pytest

from wellness.learning import pattern_analyzer
from wellness.learning.pattern_analyzer import (
    analyze_contextual_preferences,
    analyze_engagement_patterns,
    analyze_mood_preferences,
    analyze_time_preferences,
    categorize_activity_level,
    learn_patterns,
)
from wellness.learning.preferences import PreferenceAggregator


def _aggregate(events):
    prefs = PreferenceAggregator()
    prefs.fold(events)
    return prefs.records


# ============================================================================
# Content preferences
# ============================================================================


class TestContentPreferences:
    def test_completed_highly_rated_activity(self, make_event, fixed_now):
        """Five completed breathing exercises rated 5 dominate the slice."""
        events = [
            make_event(
                "breathing_exercise",
                timestamp=fixed_now + timedelta(minutes=i),
                completed=True,
                rating=5,
            )
            for i in range(5)
        ]
        events.append(make_event("mood_log", timestamp=fixed_now + timedelta(minutes=6)))

        patterns = learn_patterns(events, _aggregate(events))
        stats = patterns.content_preferences["breathing_exercise"]

        assert stats["frequency"] == 5
        assert stats["completion_rate"] == 1.0
        assert stats["user_rating"] == 5.0
        assert stats["effectiveness_score"] > 0.9

        ranked = sorted(
            patterns.content_preferences,
            key=lambda t: patterns.content_preferences[t]["frequency"],
            reverse=True,
        )
        assert ranked[0] == "breathing_exercise"

    def test_partial_completion(self, make_event):
        events = [
            make_event("meditation", completed=True),
            make_event("meditation", completed=False),
        ]
        patterns = learn_patterns(events, _aggregate(events))
        assert patterns.content_preferences["meditation"]["completion_rate"] == 0.5

    def test_empty_history(self):
        patterns = learn_patterns([], {})
        assert patterns.content_preferences == {}
        assert patterns.engagement["session_count"] == 0


# ============================================================================
# Time and mood distributions
# ============================================================================


class TestDistributions:
    def test_time_preferences_have_every_bucket(self, make_event, fixed_now):
        events = [
            make_event("meditation", timestamp=fixed_now.replace(hour=8)),
            make_event("meditation", timestamp=fixed_now.replace(hour=9)),
            make_event("journaling", timestamp=fixed_now.replace(hour=19)),
        ]
        time_prefs = analyze_time_preferences(events)

        assert set(time_prefs) >= {"morning", "afternoon", "evening", "night"}
        assert time_prefs["morning"] == {"meditation": 2}
        assert time_prefs["evening"] == {"journaling": 1}
        assert time_prefs["night"] == {}

    def test_mood_preferences_skip_unknown_mood(self, make_event):
        events = [
            make_event("breathing_exercise", mood="anxiety", mood_confidence=0.9),
            make_event("breathing_exercise", mood="worried", mood_confidence=0.8),
            make_event("journaling"),
        ]
        mood_prefs = analyze_mood_preferences(events)

        assert mood_prefs["anxious"] == {"breathing_exercise": 2}
        assert mood_prefs["neutral"] == {}

    def test_contextual_combinations(self, make_event, fixed_now):
        events = [
            make_event("meditation", timestamp=fixed_now.replace(hour=8), mood="sad"),
            make_event("meditation", timestamp=fixed_now.replace(hour=8, minute=5)),
            make_event("journaling", timestamp=fixed_now.replace(hour=20)),
        ]
        contextual = analyze_contextual_preferences(events)
        day = fixed_now.weekday()

        assert contextual["time_day_combinations"][f"morning_{day}"] == {"meditation": 2}
        assert contextual["mood_day_combinations"] == {f"sad_{day}": {"meditation": 1}}
        assert contextual["peak_activity_times"][8] == 2
        assert len(contextual["peak_activity_times"]) <= 3


# ============================================================================
# Engagement
# ============================================================================


class TestEngagement:
    def test_sessions_and_duration(self, make_event, fixed_now):
        events = [
            make_event("a", timestamp=fixed_now),
            make_event("b", timestamp=fixed_now + timedelta(minutes=20)),
            make_event("c", timestamp=fixed_now + timedelta(hours=3)),
        ]
        engagement = analyze_engagement_patterns(events, timedelta(minutes=30))

        assert engagement["session_count"] == 2
        assert engagement["average_session_minutes"] == pytest.approx(10.0)
        assert engagement["session_frequency"] == {fixed_now.weekday(): 2}

    def test_preferred_activity_scores(self, make_event):
        events = [
            make_event("meditation", completed=True, rating=5),
            make_event("meditation", completed=True, rating=5),
        ]
        activity = analyze_engagement_patterns(events)["preferred_activities"]["meditation"]

        assert activity["frequency_score"] == 2
        assert activity["completion_rate"] == 1.0
        assert activity["average_rating"] == 5.0
        assert activity["engagement_score"] == pytest.approx(1.0)

    @pytest.mark.parametrize(
        "sessions,minutes,expected",
        [
            (6, 31, "high"),
            (6, 20, "medium"),
            (3, 16, "medium"),
            (3, 15, "low"),
            (2, 60, "low"),
            (0, 0, "low"),
        ],
    )
    def test_activity_levels(self, sessions, minutes, expected):
        engagement = {
            "average_session_minutes": minutes,
            "session_frequency": {0: sessions} if sessions else {},
        }
        assert categorize_activity_level(engagement) == expected


# ============================================================================
# Failure isolation
# ============================================================================


class TestSliceIsolation:
    def test_failing_slice_degrades_to_empty(self, make_event, monkeypatch):
        def boom(events):
            raise RuntimeError("analysis exploded")

        monkeypatch.setattr(pattern_analyzer, "analyze_mood_preferences", boom)
        events = [make_event("meditation", completed=True)]

        patterns = learn_patterns(events, _aggregate(events))

        assert patterns.mood_preferences == {}
        assert patterns.content_preferences["meditation"]["frequency"] == 1
        assert patterns.time_preferences["morning"] == {"meditation": 1}

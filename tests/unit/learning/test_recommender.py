"""
Unit tests for recommendation generation.

Tests cover:
- Activity scoring formula and reasons
- Content merging across sources
- Fallback guarantee with no history and no provider
- Provider results merged with rule results
- Recommendation feedback effectiveness
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from wellness.learning.config import RecommendationsConfig
from wellness.learning.models import (
    Priority,
    Recommendation,
    RecommendationCategory,
    SourceTag,
)
from wellness.learning.pattern_analyzer import LearnedPatterns, learn_patterns
from wellness.learning.preferences import PreferenceAggregator
from wellness.learning.recommender import (
    FEEDBACK_EVENT,
    RecommendationGenerator,
    activity_score,
    analyze_recommendation_effectiveness,
    diversity_content,
    fallback_content_recommendations,
    find_optimal_times,
    merge_recommendations,
    mood_based_suggestions,
    recommendations_from_provider,
    rule_confidence,
    suggest_activities,
    trending_content,
)
from wellness.providers import SuggestionClient


def _content(type_, score, tag=SourceTag.RULE):
    return Recommendation(
        type=type_, category=RecommendationCategory.CONTENT, score=score, source_tag=tag
    )


def _patterns(events):
    prefs = PreferenceAggregator()
    prefs.fold(events)
    return learn_patterns(events, prefs.records)


# ============================================================================
# Scoring
# ============================================================================


class TestActivityScore:
    def test_perfect_activity_scores_one(self):
        stats = {
            "frequency": 10,
            "completion_rate": 1.0,
            "effectiveness_score": 1.0,
            "user_rating": 5.0,
        }
        score, reason = activity_score(stats, 10)
        assert score == pytest.approx(1.0)
        assert reason == "You usually finish this activity"

    def test_frequency_dominated_reason(self):
        stats = {"frequency": 10, "completion_rate": 0.0, "effectiveness_score": 0.0}
        score, reason = activity_score(stats, 10)
        assert score == pytest.approx(0.3)
        assert reason == "One of your most frequent activities"

    def test_zero_max_frequency(self):
        score, _ = activity_score({"frequency": 0}, 0)
        assert score == 0.0

    def test_suggest_activities_bounded_and_sorted(self):
        prefs = {
            f"type_{i}": {"frequency": i + 1, "completion_rate": i / 5} for i in range(5)
        }
        suggestions = suggest_activities(prefs, limit=3)

        assert [s.type for s in suggestions] == ["type_4", "type_3", "type_2"]
        assert all(0.0 <= s.score <= 1.0 for s in suggestions)
        assert all(s.category == RecommendationCategory.ACTIVITY for s in suggestions)

    def test_rule_confidence_caps(self):
        assert rule_confidence(0) == 0.0
        assert rule_confidence(25) == pytest.approx(0.5)
        assert rule_confidence(500) == pytest.approx(0.8)


class TestSources:
    def test_optimal_times_busiest_first(self):
        times = find_optimal_times(
            {"morning": {"meditation": 1}, "evening": {"journaling": 3, "mood_log": 1}, "night": {}}
        )
        assert [t["time_of_day"] for t in times] == ["evening", "morning"]
        assert times[0]["top_activity"] == "journaling"
        assert times[0]["preference"] == "Relaxing activities"

    def test_mood_based_uses_current_mood(self, make_context):
        mood_prefs = {"anxious": {"breathing_exercise": 4, "journaling": 2, "walk": 1}}
        ctx = make_context(mood="anxiety", mood_confidence=0.9)

        suggestions = mood_based_suggestions(mood_prefs, ctx, limit=2)

        assert [s.type for s in suggestions] == ["breathing_exercise", "journaling"]
        assert suggestions[0].score == 1.0
        assert suggestions[1].score == 0.5

    def test_mood_based_without_mood_history(self, make_context):
        assert mood_based_suggestions({"anxious": {}}, make_context(mood="anxious")) == []

    def test_trending_is_weighted(self):
        trending = trending_content({"meditation": 10, "journaling": 5, "unused": 0}, weight=0.6)
        assert [t.type for t in trending] == ["meditation", "journaling"]
        assert trending[0].score == pytest.approx(0.6)
        assert trending[1].score == pytest.approx(0.3)

    def test_diversity_skips_recent_types(self, make_event):
        recent = [make_event("meditation"), make_event("journaling")]
        picks = diversity_content(recent, ["meditation", "journaling", "sleep_story", "mood_log", "x"])
        assert [p.type for p in picks] == ["sleep_story", "mood_log"]
        assert all(p.score == 0.4 for p in picks)


# ============================================================================
# Merging
# ============================================================================


class TestMergeRecommendations:
    def test_overlap_averages_scores(self):
        merged = merge_recommendations(
            [_content("meditation", 0.9, SourceTag.AI)],
            [_content("meditation", 0.5), _content("journaling", 0.6)],
        )
        by_type = {r.type: r for r in merged}

        assert by_type["meditation"].score == pytest.approx(0.7)
        assert by_type["meditation"].source_tag == SourceTag.AI
        assert by_type["meditation"].metadata["merged_sources"] == 2
        assert [r.type for r in merged] == ["meditation", "journaling"]

    def test_three_way_overlap(self):
        merged = merge_recommendations(
            [_content("meditation", 0.9)],
            [_content("meditation", 0.6)],
            [_content("meditation", 0.3)],
        )
        assert merged[0].score == pytest.approx(0.6)

    def test_provider_payload_tagged_ai(self):
        recs = recommendations_from_provider(
            {"recommendations": [{"type": "walk", "score": 0.7}, {"score": 0.2}]},
            RecommendationCategory.CONTENT,
        )
        assert len(recs) == 1
        assert recs[0].source_tag == SourceTag.AI
        assert recommendations_from_provider(None, RecommendationCategory.CONTENT) == []


# ============================================================================
# Generator
# ============================================================================


class TestGenerator:
    @pytest.fixture
    def offline_client(self):
        return SuggestionClient(None)

    @pytest.mark.asyncio
    async def test_no_history_no_provider_returns_fallback(self, offline_client, make_context):
        generator = RecommendationGenerator(RecommendationsConfig(), offline_client)

        bundle = await generator.generate("u1", LearnedPatterns(), [], make_context(), 0)

        types = {r.type for r in bundle.content}
        assert {"breathing_exercise", "journaling"} <= types
        assert bundle.confidence >= 0.3
        assert bundle.degraded is False
        assert bundle.peers.all() == []
        assert all(r.source_tag == SourceTag.RULE for r in bundle.content)

    def test_fallback_content_is_low_priority(self):
        fallback = fallback_content_recommendations()
        assert len(fallback) >= 2
        assert all(r.priority == Priority.LOW for r in fallback)

    @pytest.mark.asyncio
    async def test_history_drives_activities(self, offline_client, make_event, make_context, fixed_now):
        events = [
            make_event(
                "breathing_exercise",
                timestamp=fixed_now + timedelta(minutes=i),
                completed=True,
                rating=5,
            )
            for i in range(5)
        ] + [make_event("mood_log", timestamp=fixed_now + timedelta(minutes=9))]
        generator = RecommendationGenerator(RecommendationsConfig(), offline_client)

        bundle = await generator.generate(
            "u1", _patterns(events), list(reversed(events)), make_context(), len(events)
        )

        assert bundle.suggested_activities[0].type == "breathing_exercise"
        assert len(bundle.suggested_activities) <= 3
        assert bundle.confidence == pytest.approx(6 / 50)
        assert bundle.optimal_times[0]["time_of_day"] == "morning"
        assert all(0.0 <= r.score <= 1.0 for r in bundle.iter_recommendations())

    @pytest.mark.asyncio
    async def test_provider_results_are_merged(self, make_context):
        client = MagicMock(spec=SuggestionClient)
        client.available = True
        client.personalized = AsyncMock(
            return_value={
                "recommendations": [{"type": "walk", "score": 0.9, "reason": "Fresh air"}],
                "confidence": 0.9,
            }
        )
        client.content = AsyncMock(return_value=None)
        client.peers = AsyncMock(return_value=None)
        generator = RecommendationGenerator(RecommendationsConfig(), client)

        bundle = await generator.generate("u1", LearnedPatterns(), [], make_context(), 0)

        assert bundle.suggested_activities[0].type == "walk"
        assert bundle.suggested_activities[0].source_tag == SourceTag.AI
        # content call failed while a provider was configured
        assert bundle.degraded is True
        assert bundle.confidence == pytest.approx(0.45)

    @pytest.mark.asyncio
    async def test_peers_matched_when_profile_known(
        self, offline_client, make_context, sample_peer_profile, sample_peer_candidate
    ):
        generator = RecommendationGenerator(RecommendationsConfig(), offline_client)
        far_off = {"id": "peer_999", "age_range": "55+", "activity_level": "high"}

        bundle = await generator.generate(
            "u1",
            LearnedPatterns(),
            [],
            make_context(),
            0,
            peer_profile=sample_peer_profile,
            peer_candidates=[sample_peer_candidate, far_off],
        )

        assert [p.item_id for p in bundle.peers.all()] == ["peer_456"]

    @pytest.mark.asyncio
    async def test_include_peers_false_skips_matching(
        self, offline_client, make_context, sample_peer_profile, sample_peer_candidate
    ):
        generator = RecommendationGenerator(RecommendationsConfig(), offline_client)
        bundle = await generator.generate(
            "u1",
            LearnedPatterns(),
            [],
            make_context(),
            0,
            peer_profile=sample_peer_profile,
            peer_candidates=[sample_peer_candidate],
            include_peers=False,
        )
        assert bundle.peers.all() == []


# ============================================================================
# Feedback
# ============================================================================


class TestRecommendationEffectiveness:
    def test_acceptance_and_effectiveness(self, make_event):
        events = [
            make_event(FEEDBACK_EVENT, action="completed", rating=5, category="content"),
            make_event(FEEDBACK_EVENT, action="completed", rating=2, category="content"),
            make_event(FEEDBACK_EVENT, action="accepted", category="activity"),
            make_event(FEEDBACK_EVENT, action="dismissed"),
            make_event("meditation", completed=True),
        ]
        summary = analyze_recommendation_effectiveness(events)

        assert summary["total"] == 4
        assert summary["accepted"] == 3
        assert summary["effective"] == 1
        assert summary["acceptance_rate"] == pytest.approx(0.75)
        assert summary["effectiveness_rate"] == pytest.approx(0.25)
        assert summary["categories"]["content"] == {"total": 2, "accepted": 2, "effective": 1}
        assert summary["categories"]["general"]["total"] == 1

    def test_empty(self):
        summary = analyze_recommendation_effectiveness([])
        assert summary["total"] == 0
        assert summary["acceptance_rate"] == 0.0

"""
Integration tests for BehaviorLearningService.

Tests the full track → learn → recommend → adapt flow against a real SQLite
gateway, plus degraded operation when the durable store or the suggestion
provider misbehaves, and the local state file round trip.
"""

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import structlog

from wellness.gateway import PersistenceGateway, SchemaUnavailableError, TransientPersistenceError
from wellness.learning.engine import BehaviorLearningService
from wellness.learning.models import Priority, SourceTag, StressStatus
from wellness.providers import ProviderUnavailable, SuggestionProvider


pytestmark = pytest.mark.integration


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


class FailingProvider(SuggestionProvider):
    """Provider whose every call fails."""

    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    @property
    def name(self) -> str:
        return "failing"

    async def _fail(self):
        self.calls += 1
        raise self.error

    async def generate_personalized_recommendations(self, user_id, patterns, context):
        return await self._fail()

    async def generate_content_recommendations(self, user_id, preferences, context):
        return await self._fail()

    async def generate_peer_recommendations(self, user_id, profile, candidates):
        return await self._fail()

    async def generate_contextual_adaptations(self, user_id, context, recommendations):
        return await self._fail()


def mock_gateway() -> AsyncMock:
    gateway = AsyncMock(spec=PersistenceGateway)
    gateway.ensure_user_profile.return_value = {"id": "test_user_123"}
    gateway.load_interactions.return_value = []
    gateway.load_behavior_profile.return_value = None
    gateway.load_adaptation_cache.return_value = []
    gateway.load_trending_content.return_value = {}
    gateway.load_peer_candidates.return_value = []
    return gateway


async def track_breathing(service, clock, count=5):
    for _ in range(count):
        await service.track_interaction("breathing_exercise", {"completed": True, "rating": 5})
        clock.advance(minutes=1)


# ─────────────────────────────────────────────────────────────────────────────
# Happy path
# ─────────────────────────────────────────────────────────────────────────────


class TestFullFlow:
    @pytest.mark.asyncio
    async def test_track_recommend_adapt(self, sqlite_gateway, config, clock, mock_user_id):
        service = BehaviorLearningService(mock_user_id, gateway=sqlite_gateway, config=config, clock=clock)
        assert await service.initialize() is True

        await track_breathing(service, clock)
        await service.track_interaction("mood_log", {})
        await service.drain()

        stored = await sqlite_gateway.load_interactions(mock_user_id)
        assert len(stored) == 6

        bundle = await service.generate_recommendations()
        assert bundle.suggested_activities[0].type == "breathing_exercise"
        assert bundle.degraded is False
        assert bundle.peers.all() == []

        service.record_mood("anxious", 0.9)
        adapted = await service.adapt_recommendations_real_time(bundle)
        boosted = [r for r in adapted.content if r.metadata.get("mood_boost")]
        assert {r.type for r in boosted} <= {"breathing_exercise", "meditation", "mindfulness"}
        assert boosted
        assert adapted.stress_status == StressStatus.NORMAL

        await service.shutdown()
        cached = await sqlite_gateway.load_adaptation_cache(mock_user_id, clock())
        assert [e.context_key for e in cached] == [adapted.context_signature]

    @pytest.mark.asyncio
    async def test_durable_history_is_merged_on_startup(self, sqlite_gateway, config, clock, mock_user_id):
        first = BehaviorLearningService(mock_user_id, gateway=sqlite_gateway, config=config, clock=clock)
        await first.initialize()
        await track_breathing(first, clock, count=3)
        await first.shutdown()

        second = BehaviorLearningService(mock_user_id, gateway=sqlite_gateway, config=config, clock=clock)
        await second.initialize()

        assert len(second.get_recent_interactions()) == 3
        assert second.preferences.get("breathing_exercise").frequency == 3
        assert second.interaction_count == 3

    @pytest.mark.asyncio
    async def test_learning_update_every_tenth_interaction(self, sqlite_gateway, config, clock, mock_user_id):
        service = BehaviorLearningService(mock_user_id, gateway=sqlite_gateway, config=config, clock=clock)
        await service.initialize()

        await track_breathing(service, clock, count=9)
        await service.drain()
        assert await sqlite_gateway.load_behavior_profile(mock_user_id) is None

        await track_breathing(service, clock, count=1)
        await service.drain()
        profile = await sqlite_gateway.load_behavior_profile(mock_user_id)
        assert profile is not None
        assert profile.content_preferences["breathing_exercise"]["frequency"] == 10
        assert profile.peer_preferences["activity_level"] == "low"

    @pytest.mark.asyncio
    async def test_content_and_peer_interactions(self, sqlite_gateway, config, clock, mock_user_id):
        service = BehaviorLearningService(mock_user_id, gateway=sqlite_gateway, config=config, clock=clock)
        await service.initialize()

        event = await service.track_content_interaction("meditation", "med-1", "complete", rating=4)
        assert event.type == "meditation"
        assert event.completed is True

        peer_event = await service.track_peer_interaction("peer_a", "support", quality="positive")
        assert peer_event.type == "peer_support"

        with pytest.raises(ValueError):
            await service.track_content_interaction("meditation", "med-1", "devour")
        with pytest.raises(ValueError):
            await service.track_peer_interaction("peer_a", "support", quality="ecstatic")
        with pytest.raises(ValueError):
            await service.track_interaction("")

        await service.drain()
        trending = await sqlite_gateway.load_trending_content(clock() - timedelta(days=7))
        assert trending == {"meditation": 1}

    @pytest.mark.asyncio
    async def test_recommendation_feedback(self, config, clock, mock_user_id):
        service = BehaviorLearningService(mock_user_id, config=config, clock=clock)
        await service.initialize()

        await service.track_recommendation_feedback("meditation", "completed", rating=5, category="content")
        await service.track_recommendation_feedback("journaling", "dismissed")
        with pytest.raises(ValueError):
            await service.track_recommendation_feedback("journaling", "loved")

        summary = service.analyze_recommendation_effectiveness()
        assert summary["total"] == 2
        assert summary["acceptance_rate"] == pytest.approx(0.5)
        assert summary["effective"] == 1

    @pytest.mark.asyncio
    async def test_update_user_profile(self, sqlite_gateway, config, clock, mock_user_id):
        service = BehaviorLearningService(mock_user_id, gateway=sqlite_gateway, config=config, clock=clock)
        await service.initialize()

        profile = await service.update_user_profile(
            {"mental_health_interests": ["anxiety", "mindfulness"], "age_range": "25-35", "nickname": "x"}
        )
        await service.drain()

        assert profile["mental_health_interests"] == ["anxiety", "mindfulness"]
        assert "nickname" not in profile
        stored = await sqlite_gateway.ensure_user_profile(mock_user_id)
        assert stored["mental_health_interests"] == ["anxiety", "mindfulness"]
        assert stored["age_range"] == "25-35"

        with pytest.raises(ValueError):
            await service.update_user_profile({"nickname": "x"})

    @pytest.mark.asyncio
    async def test_session_id_is_bound_for_logging(self, config, clock, mock_user_id):
        service = BehaviorLearningService(mock_user_id, config=config, clock=clock)
        await service.initialize()

        event = await service.track_interaction("journaling")
        bound = structlog.contextvars.get_contextvars()
        assert bound["user_id"] == mock_user_id
        assert bound["session_id"] == event.session_id

        clock.advance(minutes=45)
        later = await service.track_interaction("journaling")
        assert later.session_id != event.session_id
        assert structlog.contextvars.get_contextvars()["session_id"] == later.session_id

        await service.shutdown()
        assert "session_id" not in structlog.contextvars.get_contextvars()


# ─────────────────────────────────────────────────────────────────────────────
# Degraded operation
# ─────────────────────────────────────────────────────────────────────────────


class TestDegraded:
    @pytest.mark.asyncio
    async def test_missing_schema_goes_local_only(self, config, clock, mock_user_id):
        gateway = mock_gateway()
        gateway.ensure_user_profile.side_effect = SchemaUnavailableError("no such table: user_profiles")

        service = BehaviorLearningService(mock_user_id, gateway=gateway, config=config, clock=clock)
        assert await service.initialize() is False
        assert service.durable_available is False

        event = await service.track_interaction("journaling", {"completed": True})
        await service.drain()

        assert event in service.get_recent_interactions()
        gateway.append_interaction.assert_not_awaited()

        bundle = await service.generate_recommendations()
        assert bundle.degraded is True
        assert bundle.content

    @pytest.mark.asyncio
    async def test_transient_write_failures_are_retried_then_dropped(self, config, clock, mock_user_id):
        gateway = mock_gateway()
        gateway.append_interaction.side_effect = TransientPersistenceError("database is locked")

        service = BehaviorLearningService(mock_user_id, gateway=gateway, config=config, clock=clock)
        await service.initialize()

        event = await service.track_interaction("journaling", {"rating": 4})
        await service.drain()

        assert event.rating == 4
        assert gateway.append_interaction.await_count == 1 + config.maintenance.max_retries
        assert service.tasks.failed == 1
        assert service.durable_available is True

    @pytest.mark.asyncio
    async def test_provider_failure_keeps_rule_results(self, config, clock, mock_user_id):
        provider = FailingProvider(RuntimeError("model offline"))
        service = BehaviorLearningService(mock_user_id, provider=provider, config=config, clock=clock)
        await service.initialize()
        await track_breathing(service, clock)

        bundle = await service.generate_recommendations()

        assert provider.calls >= 2
        assert bundle.degraded is True
        assert bundle.suggested_activities[0].type == "breathing_exercise"
        assert all(r.source_tag == SourceTag.RULE for r in bundle.iter_recommendations())

    @pytest.mark.asyncio
    async def test_unavailable_provider_without_history_returns_fallback(self, config, clock, mock_user_id):
        provider = FailingProvider(ProviderUnavailable("not configured"))
        service = BehaviorLearningService(mock_user_id, provider=provider, config=config, clock=clock)
        await service.initialize()

        bundle = await service.generate_recommendations()

        assert {"breathing_exercise", "journaling"} <= {r.type for r in bundle.content}
        assert bundle.confidence >= 0.3

    @pytest.mark.asyncio
    async def test_generator_crash_returns_fallback_bundle(self, config, clock, mock_user_id, monkeypatch):
        service = BehaviorLearningService(mock_user_id, config=config, clock=clock)
        await service.initialize()
        monkeypatch.setattr(service.generator, "generate", AsyncMock(side_effect=RuntimeError("bug")))

        bundle = await service.generate_recommendations()

        assert bundle.degraded is True
        assert bundle.confidence == pytest.approx(0.3)
        assert all(r.priority == Priority.LOW for r in bundle.content)

    @pytest.mark.asyncio
    async def test_crisis_override_without_durable_store(self, config, clock, mock_user_id):
        service = BehaviorLearningService(mock_user_id, config=config, clock=clock)
        await service.initialize()
        await track_breathing(service, clock)
        service.record_mood("stressed", 0.9, stress_level=8, anxiety_level=7)

        adapted = await service.adapt_recommendations_real_time()

        assert adapted.immediate_action is True
        assert {r.type for r in adapted.content} == set(config.adaptation.crisis_allowlist)
        assert all(r.priority == Priority.URGENT for r in adapted.content)
        assert adapted.peers.all() == []

    @pytest.mark.asyncio
    async def test_shutdown_cancels_stuck_writes(self, config, clock, mock_user_id):
        async def hang(*args, **kwargs):
            await asyncio.Event().wait()

        gateway = mock_gateway()
        gateway.append_interaction.side_effect = hang
        config.maintenance.shutdown_timeout_seconds = 0.05

        service = BehaviorLearningService(mock_user_id, gateway=gateway, config=config, clock=clock)
        await service.initialize()
        await service.track_interaction("journaling")
        assert service.tasks.pending == 1

        await asyncio.wait_for(service.shutdown(), timeout=5)

        assert service.tasks.pending == 0
        gateway.close.assert_awaited_once()


# ─────────────────────────────────────────────────────────────────────────────
# Local state
# ─────────────────────────────────────────────────────────────────────────────


class TestLocalState:
    @pytest.mark.asyncio
    async def test_round_trip(self, state_config, clock, mock_user_id):
        first = BehaviorLearningService(mock_user_id, config=state_config, clock=clock)
        await first.initialize()
        await track_breathing(first, clock, count=3)
        await first.adapt_recommendations_real_time()
        await first.shutdown()

        second = BehaviorLearningService(mock_user_id, config=state_config, clock=clock)
        loaded = second.load_local_state()

        assert loaded == {"interactions": True, "preferences": True, "adaptation_cache": True}
        assert len(second.recorder) == 3
        assert second.preferences.get("breathing_exercise").frequency == 3
        assert len(second.cache) == 1

    @pytest.mark.asyncio
    async def test_corrupt_slice_is_reinitialized(self, state_config, clock, mock_user_id):
        first = BehaviorLearningService(mock_user_id, config=state_config, clock=clock)
        await first.initialize()
        await track_breathing(first, clock, count=3)
        await first.shutdown()

        path = first.local_state_path
        state = json.loads(path.read_text())
        state["preferences"] = "garbage"
        state["adaptation_cache"] = [{"context_key": "broken"}]
        path.write_text(json.dumps(state))

        second = BehaviorLearningService(mock_user_id, config=state_config, clock=clock)
        loaded = second.load_local_state()

        assert loaded == {"interactions": True, "preferences": False, "adaptation_cache": False}
        assert second.preferences.get("breathing_exercise").frequency == 3
        assert len(second.cache) == 0

    @pytest.mark.asyncio
    async def test_corrupt_interactions_are_not_counted_twice(
        self, sqlite_gateway, state_config, clock, mock_user_id
    ):
        first = BehaviorLearningService(mock_user_id, gateway=sqlite_gateway, config=state_config, clock=clock)
        await first.initialize()
        await track_breathing(first, clock, count=3)
        await first.shutdown()

        path = first.local_state_path
        state = json.loads(path.read_text())
        state["interactions"] = "garbage"
        path.write_text(json.dumps(state))

        second = BehaviorLearningService(mock_user_id, gateway=sqlite_gateway, config=state_config, clock=clock)
        await second.initialize()

        assert len(second.recorder) == 3
        assert second.preferences.get("breathing_exercise").frequency == 3
        assert second.preferences.interaction_count == 3

    @pytest.mark.asyncio
    async def test_state_for_another_user_is_ignored(self, state_config, clock, mock_user_id):
        first = BehaviorLearningService("someone_else", config=state_config, clock=clock)
        await track_breathing(first, clock, count=1)
        first.save_local_state()

        second = BehaviorLearningService(mock_user_id, config=state_config, clock=clock)
        assert second.load_local_state() == {
            "interactions": False,
            "preferences": False,
            "adaptation_cache": False,
        }
        assert len(second.recorder) == 0

    def test_unreadable_file_is_discarded(self, state_config, clock, mock_user_id):
        service = BehaviorLearningService(mock_user_id, config=state_config, clock=clock)
        service.local_state_path.write_text("{not json")

        assert not any(service.load_local_state().values())

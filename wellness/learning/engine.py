"""
Behavior Learning Service

Per-user-session composition root. Owns every in-memory structure for the
current user (interaction log, preferences, adaptation cache) and wires them
to the persistence gateway and the optional suggestion provider.

Features:
    - Synchronous local updates, background durable writes
    - Periodic learning update and cache cleanup every N interactions
    - Local-only operation once the durable store proves unusable
    - Rule-based fallbacks whenever the suggestion provider fails
    - Optional local state file for fast warm starts

Usage:
    from wellness.learning.engine import BehaviorLearningService

    service = BehaviorLearningService.from_config("user-1")
    await service.initialize()

    await service.track_interaction("breathing_exercise", {"completed": True, "rating": 5})
    bundle = await service.generate_recommendations()
    adapted = await service.adapt_recommendations_real_time(bundle)

    await service.shutdown()
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

from wellness.gateway import (
    CONTENT_ACTIONS,
    PEER_ACTIONS,
    PEER_QUALITIES,
    PROFILE_LIST_FIELDS,
    PROFILE_TEXT_FIELDS,
    GatewayError,
    PersistenceGateway,
    SchemaUnavailableError,
    get_gateway,
)
from wellness.logging_config import bind_session, clear_session
from wellness.providers import SuggestionClient, SuggestionProvider, get_provider

from . import PROJECT_ROOT
from .adaptation import AdaptationCache, AdaptationEngine, calculate_adaptation_score
from .config import LearningConfig, load_config
from .context import ContextResolver, RecentMoodCache, signature_for
from .maintenance import BackgroundTasks
from .models import (
    AdaptationCacheEntry,
    AdaptedBundle,
    BehaviorProfile,
    ContextSnapshot,
    InteractionEvent,
    RecommendationCategory,
    RecommendationsBundle,
    StressStatus,
)
from .pattern_analyzer import LearnedPatterns, categorize_activity_level, learn_patterns
from .preferences import PreferenceAggregator
from .recommender import (
    FALLBACK_CONFIDENCE,
    FEEDBACK_EVENT,
    RecommendationGenerator,
    analyze_recommendation_effectiveness,
    fallback_content_recommendations,
    fallback_peer_recommendations,
    recommendations_from_provider,
)
from .recorder import InteractionRecorder


logger = logging.getLogger(__name__)

FEEDBACK_ACTIONS = ("viewed", "accepted", "dismissed", "completed")
EFFECTIVENESS_WINDOW = 50


class MalformedLocalState(ValueError):
    """A slice of the local state file could not be parsed."""


class BehaviorLearningService:
    """
    Adaptive behavior learning for one user session.

    Every public coroutine returns a best-effort result. Only invalid
    arguments (unknown actions, empty interaction types) raise ``ValueError``.
    """

    def __init__(
        self,
        user_id: str,
        gateway: PersistenceGateway | None = None,
        provider: SuggestionProvider | SuggestionClient | None = None,
        config: LearningConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        mood_cache: RecentMoodCache | None = None,
    ):
        """
        Args:
            user_id: Owner of this session
            gateway: Durable store, or None for local-only operation
            provider: AI suggestion provider (or an already wrapped client)
            config: Validated configuration (defaults to args/learning.yaml)
            clock: Source of "now"
            mood_cache: Shared recent-mood holder populated by the mood logger
        """
        if not user_id:
            raise ValueError("user_id is required")

        self.user_id = user_id
        self.config = config or load_config()
        self._clock = clock

        cfg = self.config
        self.mood_cache = mood_cache or RecentMoodCache(
            ttl=timedelta(minutes=cfg.context.recent_mood_ttl_minutes), clock=clock
        )
        self.context = ContextResolver(self.mood_cache, clock)
        self.recorder = InteractionRecorder(
            user_id,
            max_events=cfg.recorder.max_local_events,
            session_gap=timedelta(minutes=cfg.recorder.session_gap_minutes),
        )
        self.preferences = self._new_preferences()
        self.cache = AdaptationCache(
            ttl=timedelta(hours=cfg.adaptation.cache_ttl_hours),
            limit=cfg.adaptation.cached_recommendation_limit,
        )
        self.adaptation = AdaptationEngine(cfg.adaptation, self.cache)

        if isinstance(provider, SuggestionClient):
            self.suggestions = provider
        else:
            self.suggestions = SuggestionClient(provider, timeout=cfg.provider.timeout_seconds)
        self.generator = RecommendationGenerator(cfg.recommendations, self.suggestions)

        self.tasks = BackgroundTasks(
            max_retries=cfg.maintenance.max_retries,
            retry_delay=cfg.maintenance.retry_delay_seconds,
        )

        self.gateway = gateway
        self._durable_available = gateway is not None

        self.user_profile: dict[str, Any] | None = None
        self.profile: BehaviorProfile | None = None
        self.patterns: LearnedPatterns | None = None
        self._initialized = False

    @classmethod
    def from_config(
        cls,
        user_id: str,
        config: LearningConfig | None = None,
        **kwargs: Any,
    ) -> BehaviorLearningService:
        """Build a service with the gateway and provider named in the config."""
        config = config or load_config()

        gateway = get_gateway(config.gateway.active, config.gateway.model_dump())

        provider = None
        if config.provider.active not in ("none", "null"):
            provider = get_provider(config.provider.active, config.provider.model_dump())

        return cls(user_id, gateway=gateway, provider=provider, config=config, **kwargs)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def durable_available(self) -> bool:
        return self._durable_available

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def interaction_count(self) -> int:
        return self.preferences.interaction_count

    def now(self) -> datetime:
        return self.context.now()

    def record_mood(
        self,
        emotion: str | None = None,
        confidence: float | None = None,
        stress_level: float | None = None,
        anxiety_level: float | None = None,
    ) -> None:
        """Feed the recent-mood cache (normally done by the mood logger)."""
        self.mood_cache.record(emotion, confidence, stress_level, anxiety_level)

    def _new_preferences(self) -> PreferenceAggregator:
        # Remember enough ids to cover both the local window and a durable reload
        cfg = self.config.recorder
        return PreferenceAggregator(id_window=cfg.max_local_events + cfg.durable_load_limit)

    # =========================================================================
    # Durable store helpers
    # =========================================================================

    def _go_local_only(self, error: Exception) -> None:
        if self._durable_available:
            logger.warning(f"Durable store unavailable, continuing local-only for this session: {error}")
        self._durable_available = False

    async def _durable(self, operation: str, factory: Callable[[], Awaitable[Any]], default: Any) -> Any:
        """Await a gateway call in the caller's path, degrading to ``default``."""
        if not self._durable_available or self.gateway is None:
            return default
        try:
            return await factory()
        except SchemaUnavailableError as e:
            self._go_local_only(e)
        except GatewayError as e:
            logger.warning(f"Gateway {operation} failed: {e}")
        except Exception as e:
            logger.warning(f"Unexpected error during gateway {operation}: {e}")
        return default

    def _persist(self, operation: str, factory: Callable[[], Awaitable[Any]]) -> None:
        """Run a gateway write in the background with bounded retry."""
        if not self._durable_available or self.gateway is None:
            return

        async def guarded() -> Any:
            if not self._durable_available:
                return None
            try:
                return await factory()
            except SchemaUnavailableError as e:
                self._go_local_only(e)
                return None

        self.tasks.spawn(guarded, name=operation)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> bool:
        """
        Load local state, then merge the durable history on top of it.

        Returns:
            True when the durable store was reachable
        """
        self.load_local_state()
        now = self.now()

        if self.gateway is not None:
            self.user_profile = await self._durable(
                "ensure_user_profile", lambda: self.gateway.ensure_user_profile(self.user_id), None
            )

            events = await self._durable(
                "load_interactions",
                lambda: self.gateway.load_interactions(
                    self.user_id, self.config.recorder.durable_load_limit
                ),
                [],
            )
            merged = self.recorder.merge(events)
            self.preferences.fold(merged)
            if merged:
                logger.info(f"Merged {len(merged)} durable interactions for {self.user_id}")

            self.profile = await self._durable(
                "load_behavior_profile",
                lambda: self.gateway.load_behavior_profile(self.user_id),
                None,
            )

            entries = await self._durable(
                "load_adaptation_cache",
                lambda: self.gateway.load_adaptation_cache(self.user_id, now),
                [],
            )
            for entry in entries:
                self.cache.merge_entry(entry, now)

        self._initialized = True
        return self._durable_available

    async def drain(self) -> None:
        """Wait for every background job to finish."""
        await self.tasks.drain()

    async def shutdown(self) -> None:
        """Drain background jobs (cancelling stragglers), save state, close clients."""
        timeout = self.config.maintenance.shutdown_timeout_seconds
        if not await self.tasks.drain(timeout=timeout):
            cancelled = await self.tasks.cancel_all()
            logger.warning(f"Cancelled {cancelled} background jobs still running after {timeout}s")

        self.save_local_state()
        clear_session()
        await self.suggestions.close()
        if self.gateway is not None:
            try:
                await self.gateway.close()
            except Exception as e:
                logger.warning(f"Gateway close failed: {e}")

    # =========================================================================
    # Tracking
    # =========================================================================

    async def track_interaction(
        self,
        interaction_type: str,
        payload: Mapping[str, Any] | None = None,
        context: ContextSnapshot | None = None,
        effectiveness_score: float | None = None,
        user_rating: float | None = None,
    ) -> InteractionEvent:
        """
        Record one interaction.

        Local state is updated before returning; the durable write, the
        periodic learning update and the cache sweep run in the background.

        Args:
            interaction_type: e.g. "breathing_exercise", "mood_log"
            payload: Free-form data ("completed", "rating" and
                "effectiveness_score" feed the learning signals)
            context: Explicit context (defaults to a fresh snapshot of now)
            effectiveness_score: Externally measured effectiveness in [0, 1]
            user_rating: Rating on the 1..5 scale

        Returns:
            The recorded event, even if persistence failed
        """
        if not interaction_type or not isinstance(interaction_type, str):
            raise ValueError("interaction_type must be a non-empty string")

        payload = dict(payload or {})
        ctx = context or self.context.resolve()

        previous_session = self.recorder.current_session_id
        event = self.recorder.record(
            interaction_type,
            payload,
            ctx,
            effectiveness_score=effectiveness_score,
            user_rating=user_rating,
        )
        if event.session_id != previous_session:
            bind_session(self.user_id, event.session_id)
            logger.info(f"Started interaction session {event.session_id} for {self.user_id}")

        self._persist("append_interaction", lambda: self.gateway.append_interaction(event))

        try:
            self.preferences.update_preferences(interaction_type, payload, ctx, event_id=event.id)

            signals = dict(payload)
            if effectiveness_score is not None:
                signals.setdefault("effectiveness_score", effectiveness_score)
            if user_rating is not None:
                signals.setdefault("rating", user_rating)
            self.cache.upsert(
                signature_for(ctx), calculate_adaptation_score(signals, ctx), [], ctx.timestamp
            )
        except Exception as e:
            logger.warning(f"Failed to update learning state for {interaction_type}: {e}")

        if self.recorder.tracked_count % self.config.recorder.learning_update_every == 0:
            self.tasks.spawn(self._learning_update, name="learning_update", retry=False)
            self.tasks.spawn(self.cleanup_cache, name="cache_cleanup", retry=False)

        return event

    async def track_content_interaction(
        self,
        content_type: str,
        content_id: str,
        action: str,
        rating: float | None = None,
        duration_seconds: float | None = None,
        context: ContextSnapshot | None = None,
    ) -> InteractionEvent:
        """Record a view / like / share / complete / skip / rate on a content item."""
        if action not in CONTENT_ACTIONS:
            raise ValueError(f"Invalid content action: {action}. Expected one of {CONTENT_ACTIONS}")

        payload: dict[str, Any] = {"content_id": content_id, "action": action}
        if action in ("complete", "skip"):
            payload["completed"] = action == "complete"
        if rating is not None:
            payload["rating"] = rating
        if duration_seconds is not None:
            payload["duration_seconds"] = duration_seconds

        event = await self.track_interaction(content_type, payload, context=context)
        self._persist(
            "append_content_interaction",
            lambda: self.gateway.append_content_interaction(
                self.user_id,
                content_type,
                content_id,
                action,
                rating=rating,
                duration_seconds=duration_seconds,
                timestamp=event.timestamp,
            ),
        )
        return event

    async def track_peer_interaction(
        self,
        peer_id: str,
        action: str,
        quality: str | None = None,
        mutual_rating: float | None = None,
        context: ContextSnapshot | None = None,
    ) -> InteractionEvent:
        """Record a message / support / activity / recommendation exchange with a peer."""
        if action not in PEER_ACTIONS:
            raise ValueError(f"Invalid peer action: {action}. Expected one of {PEER_ACTIONS}")
        if quality is not None and quality not in PEER_QUALITIES:
            raise ValueError(f"Invalid interaction quality: {quality}. Expected one of {PEER_QUALITIES}")

        payload = {"peer_id": peer_id, "action": action, "quality": quality}
        if mutual_rating is not None:
            payload["mutual_rating"] = mutual_rating

        event = await self.track_interaction(f"peer_{action}", payload, context=context)
        self._persist(
            "append_peer_interaction",
            lambda: self.gateway.append_peer_interaction(
                self.user_id,
                peer_id,
                action,
                quality=quality,
                mutual_rating=mutual_rating,
                timestamp=event.timestamp,
            ),
        )
        return event

    async def track_recommendation_feedback(
        self,
        recommendation_type: str,
        action: str,
        rating: float | None = None,
        category: str | None = None,
        context: ContextSnapshot | None = None,
    ) -> InteractionEvent:
        """Record how the user responded to a recommendation."""
        if action not in FEEDBACK_ACTIONS:
            raise ValueError(f"Invalid feedback action: {action}. Expected one of {FEEDBACK_ACTIONS}")

        payload: dict[str, Any] = {
            "recommendation_type": recommendation_type,
            "action": action,
            "category": category or "general",
        }
        if rating is not None:
            payload["rating"] = rating

        return await self.track_interaction(FEEDBACK_EVENT, payload, context=context)

    def get_recent_interactions(self, limit: int = 20) -> list[InteractionEvent]:
        return self.recorder.recent(limit)

    def analyze_recommendation_effectiveness(self) -> dict[str, Any]:
        return analyze_recommendation_effectiveness(self.recorder.recent(EFFECTIVENESS_WINDOW))

    # =========================================================================
    # Peer profile
    # =========================================================================

    async def update_user_profile(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """
        Update the peer-matching profile (interests, experiences, style, age range).

        The in-memory profile changes immediately; the durable write runs in
        the background. Unknown fields are ignored.

        Returns:
            The updated profile
        """
        known = {
            key: (list(value or []) if key in PROFILE_LIST_FIELDS else value)
            for key, value in fields.items()
            if key in PROFILE_LIST_FIELDS or key in PROFILE_TEXT_FIELDS
        }
        if not known:
            raise ValueError(
                f"No profile fields to update. Expected any of "
                f"{PROFILE_LIST_FIELDS + PROFILE_TEXT_FIELDS}"
            )

        self.user_profile = {**(self.user_profile or {"id": self.user_id}), **known}
        self._persist(
            "update_user_profile", lambda: self.gateway.update_user_profile(self.user_id, known)
        )
        return self.user_profile

    # =========================================================================
    # Learning
    # =========================================================================

    def learn_user_patterns(self) -> LearnedPatterns:
        """Recompute every pattern slice from the local interaction log."""
        self.patterns = learn_patterns(
            self.recorder.events,
            self.preferences.records,
            self.recorder.session_gap,
        )
        return self.patterns

    def build_profile(self, patterns: LearnedPatterns) -> BehaviorProfile:
        settings = self.profile.adaptation_settings if self.profile else None
        profile = BehaviorProfile(
            user_id=self.user_id,
            learning_preferences={
                "time_preferences": patterns.time_preferences,
                "mood_preferences": patterns.mood_preferences,
            },
            interaction_patterns={
                "engagement": patterns.engagement,
                "contextual": patterns.contextual,
            },
            content_preferences=patterns.content_preferences,
            peer_preferences={"activity_level": categorize_activity_level(patterns.engagement or {})},
            last_updated=self.now(),
        )
        if settings is not None:
            profile.adaptation_settings = settings
        return profile

    async def _learning_update(self) -> BehaviorProfile | None:
        try:
            self.profile = self.build_profile(self.learn_user_patterns())
        except Exception as e:
            logger.warning(f"Learning update failed for {self.user_id}: {e}")
            return None

        profile = self.profile
        await self._durable(
            "upsert_behavior_profile", lambda: self.gateway.upsert_behavior_profile(profile), False
        )
        logger.debug(f"Learning update complete for {self.user_id}")
        return profile

    async def cleanup_cache(self) -> dict[str, int]:
        """Purge expired adaptation entries locally and in the durable store."""
        now = self.now()
        local = self.cache.purge_expired(now)
        durable = await self._durable(
            "delete_expired_cache", lambda: self.gateway.delete_expired_cache(self.user_id, now), 0
        )
        return {"local": local, "durable": durable}

    # =========================================================================
    # Recommendations
    # =========================================================================

    def _fallback_bundle(self) -> RecommendationsBundle:
        return RecommendationsBundle(
            content=fallback_content_recommendations(),
            peers=fallback_peer_recommendations(),
            confidence=FALLBACK_CONFIDENCE,
            degraded=True,
            generated_at=self.now(),
        )

    async def generate_recommendations(
        self,
        context: ContextSnapshot | None = None,
        include_peers: bool = True,
    ) -> RecommendationsBundle:
        """
        Generate activities, content and peer recommendations.

        Args:
            context: Explicit context (defaults to a fresh snapshot of now)
            include_peers: Skip peer matching when False

        Returns:
            RecommendationsBundle; the rule-based fallback on any failure
        """
        try:
            ctx = context or self.context.resolve()
            cfg = self.config.recommendations
            patterns = self.learn_user_patterns()

            since = ctx.timestamp - timedelta(days=cfg.trending_days)
            trending = await self._durable(
                "load_trending_content", lambda: self.gateway.load_trending_content(since), {}
            )

            candidates: list[dict[str, Any]] = []
            if include_peers and self.user_profile is not None:
                candidates = await self._durable(
                    "load_peer_candidates",
                    lambda: self.gateway.load_peer_candidates(self.user_id, cfg.peer_candidate_limit),
                    [],
                )

            bundle = await self.generator.generate(
                self.user_id,
                patterns,
                self.recorder.recent(cfg.diversity_lookback),
                ctx,
                self.interaction_count,
                trending=trending,
                peer_profile=self.user_profile,
                peer_candidates=candidates,
                include_peers=include_peers,
            )
            if self.gateway is not None and not self._durable_available:
                bundle.degraded = True
            return bundle

        except Exception as e:
            logger.warning(f"Recommendation generation failed, using fallback: {e}")
            return self._fallback_bundle()

    async def adapt_recommendations_real_time(
        self,
        base: RecommendationsBundle | None = None,
        context: ContextSnapshot | None = None,
    ) -> AdaptedBundle:
        """
        Adapt a bundle to the current mood, time and stress level.

        The hot path touches only in-memory state. Persisting the updated
        cache entry and asking the provider for contextual refinements both
        happen in the background.
        """
        ctx = context or self.context.resolve()
        try:
            if base is None:
                base = await self.generate_recommendations(context=ctx)

            adapted = self.adaptation.adapt(base, ctx, self.interaction_count)

            entry = self.cache.get(adapted.context_signature, ctx.timestamp)
            if entry is not None:
                self._persist(
                    "upsert_adaptation_cache",
                    lambda: self.gateway.upsert_adaptation_cache(self.user_id, entry),
                )

            if self.suggestions.available and adapted.stress_status != StressStatus.CRITICAL:
                self.tasks.spawn(
                    lambda: self._refine_with_provider(adapted, ctx),
                    name="contextual_adaptations",
                    retry=False,
                )
            return adapted

        except Exception as e:
            logger.warning(f"Real-time adaptation failed, using fallback: {e}")
            return self._fallback_adaptation(ctx)

    def _fallback_adaptation(self, ctx: ContextSnapshot) -> AdaptedBundle:
        status = StressStatus.NORMAL
        try:
            status = self.adaptation.stress_status(ctx)
        except Exception as e:
            logger.warning(f"Stress check failed: {e}")

        content = fallback_content_recommendations()
        if status == StressStatus.CRITICAL:
            content = self.adaptation.crisis_content()

        return AdaptedBundle(
            content=content,
            peers=fallback_peer_recommendations(),
            confidence=FALLBACK_CONFIDENCE,
            degraded=True,
            generated_at=ctx.timestamp,
            context_signature=signature_for(ctx),
            stress_status=status,
            immediate_action=status == StressStatus.CRITICAL,
        )

    async def _refine_with_provider(self, adapted: AdaptedBundle, ctx: ContextSnapshot) -> None:
        """Fold provider contextual adaptations into the cache for the next request."""
        result = await self.suggestions.contextual_adaptations(
            self.user_id, ctx.to_dict(), [r.to_dict() for r in adapted.content]
        )
        if result is None:
            return

        recommendations = recommendations_from_provider(result, RecommendationCategory.CONTENT)
        score = result.get("adaptation_score", adapted.adaptation_score)
        if not isinstance(score, (int, float)):
            score = adapted.adaptation_score

        entry = self.cache.upsert(adapted.context_signature, score, recommendations, ctx.timestamp)
        self._persist(
            "upsert_adaptation_cache",
            lambda: self.gateway.upsert_adaptation_cache(self.user_id, entry),
        )

    # =========================================================================
    # Local state
    # =========================================================================

    @property
    def local_state_path(self) -> Path | None:
        path = self.config.state.local_state_path
        if not path:
            return None
        path = Path(path)
        return path if path.is_absolute() else PROJECT_ROOT / path

    def save_local_state(self) -> bool:
        """Write the in-memory slices to the local state file."""
        path = self.local_state_path
        if path is None:
            return False

        state = {
            "user_id": self.user_id,
            "saved_at": self.now().isoformat(),
            "interactions": self.recorder.snapshot(),
            "preferences": self.preferences.snapshot(),
            "adaptation_cache": self.cache.snapshot(),
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(path.suffix + ".tmp")
            with open(tmp_path, "w") as f:
                json.dump(state, f, default=str)
            os.replace(tmp_path, path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to save local state to {path}: {e}")
            return False

    def load_local_state(self) -> dict[str, bool]:
        """
        Load the local state file slice by slice.

        A corrupt slice is discarded and reinitialized empty; the others
        still load.

        Returns:
            Which slices loaded successfully
        """
        loaded = {"interactions": False, "preferences": False, "adaptation_cache": False}
        path = self.local_state_path
        if path is None or not path.exists():
            return loaded

        try:
            with open(path) as f:
                state = json.load(f)
            if not isinstance(state, dict):
                raise MalformedLocalState("state file is not an object")
        except (OSError, ValueError) as e:
            logger.warning(f"Discarding unreadable local state {path}: {e}")
            return loaded

        if state.get("user_id") not in (None, self.user_id):
            logger.warning(f"Local state at {path} belongs to another user, ignoring it")
            return loaded

        now = self.now()

        try:
            events = self._parse_slice(
                "interactions", state, lambda data: [InteractionEvent.from_dict(e) for e in data]
            )
            self.recorder.merge(events)
            loaded["interactions"] = True
        except MalformedLocalState as e:
            logger.warning(str(e))

        def parse_preferences(data: Any) -> PreferenceAggregator:
            aggregator = self._new_preferences()
            aggregator.load(data)
            return aggregator

        try:
            self.preferences = self._parse_slice("preferences", state, parse_preferences)
            loaded["preferences"] = True
        except MalformedLocalState as e:
            logger.warning(str(e))
            self.preferences = self._new_preferences()
            self.preferences.fold(self.recorder.events)

        try:
            entries = self._parse_slice(
                "adaptation_cache",
                state,
                lambda data: [AdaptationCacheEntry.from_dict(e) for e in data],
            )
            for entry in entries:
                self.cache.merge_entry(entry, now)
            loaded["adaptation_cache"] = True
        except MalformedLocalState as e:
            logger.warning(str(e))

        logger.debug(f"Loaded local state from {path}: {loaded}")
        return loaded

    @staticmethod
    def _parse_slice(name: str, state: Mapping[str, Any], parser: Callable[[Any], Any]) -> Any:
        if name not in state:
            raise MalformedLocalState(f"Local state slice '{name}' missing, starting empty")
        try:
            return parser(state[name])
        except Exception as e:
            raise MalformedLocalState(f"Discarding corrupt local state slice '{name}': {e}") from e

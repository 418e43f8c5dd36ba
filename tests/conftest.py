"""Shared test fixtures for wellness engine tests.

This module provides common fixtures used across all test modules:
- A fixed clock so time-of-day buckets are deterministic
- Context snapshot and interaction event builders
- Configuration with the local state file disabled
- SQLite gateway isolation with temporary files

Usage:
    def test_something(make_context):
        ctx = make_context(hour=9, mood="anxious", mood_confidence=0.9)
        ...
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from wellness.gateway import SQLiteGateway
from wellness.learning.config import LearningConfig
from wellness.learning.context import categorize_time_of_day
from wellness.learning.models import ContextSnapshot, InteractionEvent, MoodReading


# ─────────────────────────────────────────────────────────────────────────────
# Path Constants
# ─────────────────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).parent.parent
ARGS_DIR = PROJECT_ROOT / "args"

# Wednesday, mid-morning
FIXED_NOW = datetime(2024, 5, 15, 9, 30)


# ─────────────────────────────────────────────────────────────────────────────
# Clock Fixtures
# ─────────────────────────────────────────────────────────────────────────────


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, now: datetime) -> None:
        self.current = now


@pytest.fixture
def fixed_now() -> datetime:
    """The instant every fake clock starts at."""
    return FIXED_NOW


@pytest.fixture
def clock() -> FakeClock:
    """Controllable clock starting at FIXED_NOW."""
    return FakeClock()


# ─────────────────────────────────────────────────────────────────────────────
# Context Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def make_context() -> Callable[..., ContextSnapshot]:
    """Factory for context snapshots.

    Returns:
        Callable accepting ``timestamp`` or ``hour``, plus optional mood,
        mood_confidence, stress_level and anxiety_level
    """

    def _make(
        timestamp: datetime | None = None,
        hour: int | None = None,
        mood: str | None = None,
        mood_confidence: float | None = None,
        stress_level: float | None = None,
        anxiety_level: float | None = None,
    ) -> ContextSnapshot:
        ts = timestamp or FIXED_NOW
        if hour is not None:
            ts = ts.replace(hour=hour, minute=0)
        return ContextSnapshot(
            time_of_day=categorize_time_of_day(ts.hour),
            day_of_week=ts.weekday(),
            hour=ts.hour,
            timestamp=ts,
            mood=MoodReading(mood, mood_confidence) if mood else None,
            stress_level=stress_level,
            anxiety_level=anxiety_level,
        )

    return _make


@pytest.fixture
def make_event(make_context) -> Callable[..., InteractionEvent]:
    """Factory for interaction events sharing one session id by default."""

    def _make(
        interaction_type: str,
        timestamp: datetime | None = None,
        session_id: str = "session-1",
        mood: str | None = None,
        mood_confidence: float | None = None,
        **payload,
    ) -> InteractionEvent:
        ctx = make_context(timestamp=timestamp, mood=mood, mood_confidence=mood_confidence)
        return InteractionEvent(
            type=interaction_type,
            payload=payload,
            timestamp=ctx.timestamp,
            context=ctx,
            session_id=session_id,
            user_id="test_user_123",
        )

    return _make


# ─────────────────────────────────────────────────────────────────────────────
# Configuration Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def config() -> LearningConfig:
    """Default configuration with the local state file disabled."""
    cfg = LearningConfig()
    cfg.state.local_state_path = None
    cfg.maintenance.retry_delay_seconds = 0
    return cfg


@pytest.fixture
def state_config(config: LearningConfig, tmp_path: Path) -> LearningConfig:
    """Configuration writing local state under tmp_path."""
    config.state.local_state_path = str(tmp_path / "learning_state.json")
    return config


# ─────────────────────────────────────────────────────────────────────────────
# Database Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    """Path for a throwaway SQLite database.

    Returns:
        Path inside pytest's tmp_path (cleaned up automatically)
    """
    return tmp_path / "wellness.db"


@pytest.fixture
def sqlite_gateway(temp_db: Path) -> SQLiteGateway:
    """SQLite gateway backed by a temporary database."""
    return SQLiteGateway({"database_path": str(temp_db)})


# ─────────────────────────────────────────────────────────────────────────────
# User Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def mock_user_id() -> str:
    """Standard test user ID."""
    return "test_user_123"


@pytest.fixture
def sample_peer_profile() -> dict:
    """Peer-matching profile for the test user.

    Returns:
        dict with the fields scored by calculate_peer_compatibility
    """
    return {
        "id": "test_user_123",
        "mental_health_interests": ["anxiety", "depression", "mindfulness"],
        "shared_experiences": ["college_stress", "social_anxiety"],
        "preferred_communication_style": "supportive",
        "age_range": "25-35",
        "activity_level": "medium",
    }


@pytest.fixture
def sample_peer_candidate() -> dict:
    """Candidate peer that overlaps heavily with sample_peer_profile."""
    return {
        "id": "peer_456",
        "mental_health_interests": ["anxiety", "mindfulness"],
        "shared_experiences": ["social_anxiety"],
        "preferred_communication_style": "supportive",
        "age_range": "25-35",
        "activity_level": "medium",
    }

"""
Learning Configuration

Pydantic models for ``args/learning.yaml``. One section per subsystem
(recorder, context, recommendations, adaptation, maintenance, gateway,
provider, state); every field has a default so a missing file still yields
a working engine.

Usage:
    from wellness.learning.config import load_config

    config = load_config()
    ttl = config.adaptation.cache_ttl_hours

String values of the form ``${VAR}`` are replaced from the environment
before validation. A file that fails to parse or validate is logged and
replaced by the defaults.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from wellness.learning import CONFIG_PATH

logger = logging.getLogger(__name__)


# =============================================================================
# Sections of args/learning.yaml
# =============================================================================


class RecorderConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    max_local_events: int = Field(default=500, ge=1)
    session_gap_minutes: float = Field(default=30, gt=0)
    learning_update_every: int = Field(default=10, ge=1)
    durable_load_limit: int = Field(default=500, ge=0)


class ContextConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    recent_mood_ttl_minutes: float = Field(default=120, gt=0)


class RecommendationsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    top_activities: int = Field(default=3, ge=1)
    mood_suggestions: int = Field(default=2, ge=0)
    diversity_lookback: int = Field(default=20, ge=1)
    diversity_limit: int = Field(default=2, ge=0)
    diversity_score: float = Field(default=0.4, ge=0.0, le=1.0)
    trending_days: int = Field(default=7, ge=1)
    trending_limit: int = Field(default=3, ge=0)
    trending_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    support_partner_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    mentor_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    peer_candidate_limit: int = Field(default=50, ge=0)
    rule_confidence_interactions: int = Field(default=50, ge=1)
    rule_confidence_cap: float = Field(default=0.8, ge=0.0, le=1.0)
    content_catalog: list[str] = Field(
        default_factory=lambda: [
            "breathing_exercise",
            "meditation",
            "mindfulness",
            "journaling",
            "gratitude_practice",
            "physical_exercise",
            "sleep_story",
            "progressive_relaxation",
            "mood_log",
            "social_activity",
        ]
    )


class AdaptationConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    cache_ttl_hours: float = Field(default=24, gt=0)
    cached_recommendation_limit: int = Field(default=10, ge=1)
    mood_confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    mood_boost: float = Field(default=0.2, ge=0.0, le=1.0)
    time_boost: float = Field(default=0.1, ge=0.0, le=1.0)
    night_calming_boost: float = Field(default=0.15, ge=0.0, le=1.0)
    late_night_start_hour: int = Field(default=22, ge=0, le=23)
    late_night_end_hour: int = Field(default=6, ge=0, le=23)
    critical_level: float = Field(default=8, ge=0)
    elevated_level: float = Field(default=6, ge=0)
    stress_relief_boost: float = Field(default=0.25, ge=0.0, le=1.0)
    high_mood_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    low_mood_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    experienced_user_interactions: int = Field(default=50, ge=0)
    mood_priority_types: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "anxious": ["breathing_exercise", "meditation", "mindfulness"],
            "sad": ["journaling", "gratitude_practice", "peer_support"],
            "stressed": ["breathing_exercise", "progressive_relaxation", "meditation"],
        }
    )
    time_priority_types: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "morning": ["physical_exercise", "mood_log", "goal_setting"],
            "afternoon": ["mindfulness", "breathing_exercise", "social_activity"],
            "evening": ["journaling", "gratitude_practice", "reflection"],
            "night": ["meditation", "sleep_story", "breathing_exercise"],
        }
    )
    calming_types: list[str] = Field(
        default_factory=lambda: [
            "meditation",
            "breathing_exercise",
            "sleep_story",
            "progressive_relaxation",
        ]
    )
    stress_relief_types: list[str] = Field(
        default_factory=lambda: [
            "breathing_exercise",
            "meditation",
            "progressive_relaxation",
            "mindfulness",
            "grounding_exercise",
        ]
    )
    crisis_allowlist: list[str] = Field(
        default_factory=lambda: ["breathing_exercise", "crisis_support", "emergency_contact"]
    )


class MaintenanceConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    max_retries: int = Field(default=2, ge=0)
    retry_delay_seconds: float = Field(default=0.5, ge=0)
    shutdown_timeout_seconds: float = Field(default=10.0, gt=0)


class GatewayConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    active: str = Field(default="sqlite")
    database_path: str = Field(default="data/wellness.db")
    create_schema: bool = Field(default=True)


class ProviderConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    active: str = Field(default="none")
    timeout_seconds: float = Field(default=5.0, gt=0)
    base_url: Optional[str] = None
    api_key: Optional[str] = None


class StateConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    local_state_path: Optional[str] = None


class LearningConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    recorder: RecorderConfig = Field(default_factory=RecorderConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    recommendations: RecommendationsConfig = Field(default_factory=RecommendationsConfig)
    adaptation: AdaptationConfig = Field(default_factory=AdaptationConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    state: StateConfig = Field(default_factory=StateConfig)


# =============================================================================
# Loading
# =============================================================================


def _expand_env_vars(value: Any) -> Any:
    """Recursively expand ``${VAR}`` references in config values."""
    if isinstance(value, str):
        if value.startswith("${") and value.endswith("}"):
            return os.getenv(value[2:-1], "")
        return value
    elif isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    return value


def load_config(config_path: Path | str | None = None) -> LearningConfig:
    """Load and validate ``args/learning.yaml``, falling back to defaults."""
    path = Path(config_path) if config_path else CONFIG_PATH

    try:
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}
        else:
            raw = {}

        return LearningConfig.model_validate(_expand_env_vars(raw.get("learning", raw)))
    except Exception as e:
        logger.warning(f"Config validation failed for {path}: {e}, using defaults")
        return LearningConfig()

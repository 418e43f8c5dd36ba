"""Behavior Learning - Adaptive, mood- and time-aware recommendations

Philosophy:
    Learn from behavior, not questionnaires.
    Every tracked interaction is a data point; preferences and patterns
    emerge from observation and are never demanded from the user.

Pipeline (leaves first):
    context.py: Snapshot of "now"
        - Time-of-day bucket, weekday, hour
        - Most recent mood / stress reading (never fabricated)
        - Deterministic context keys and cache signatures

    recorder.py: Bounded, append-only interaction log
        - Session grouping on a 30 minute inactivity gap
        - Merge of local and durable histories by event id

    preferences.py: Rolling per-type statistics
        - Frequency, recency, per-context counts
        - Effectiveness and mean rating

    pattern_analyzer.py: Higher-level patterns
        - Time, content, mood, engagement, contextual slices
        - Each slice degrades to {} on failure

    recommender.py / peer_matching.py: Scored recommendation families
        - Activities, content, peers
        - Rule-based fallback whenever the suggestion provider is unavailable

    adaptation.py: Real-time adaptation
        - Mood filtering, time prioritization, stress override
        - 24h context-keyed adaptation cache with merge semantics

    maintenance.py: Fire-and-forget background passes with bounded retry

    engine.py: BehaviorLearningService, the per-session composition root

Safety Rules:
    1. Nothing raises past the public API; results degrade instead
    2. Crisis-relief content is a pure local rule, never provider-dependent
    3. Persistence is best-effort and never blocks the caller
    4. Mood is omitted when unknown, never guessed

Configuration: args/learning.yaml under the project root (``WELLNESS_HOME``)
"""

import os
from pathlib import Path


def resolve_project_root() -> Path:
    """
    Directory that relative paths (args file, database, state file) hang off.

    ``WELLNESS_HOME`` wins when set. A source checkout is recognized by its
    ``args/learning.yaml``; an installed package falls back to the working
    directory.
    """
    home = os.environ.get("WELLNESS_HOME")
    if home:
        return Path(home).expanduser().resolve()

    checkout = Path(__file__).resolve().parent.parent.parent
    if (checkout / "args" / "learning.yaml").exists():
        return checkout
    return Path.cwd()


# Path constants
PROJECT_ROOT = resolve_project_root()
CONFIG_PATH = PROJECT_ROOT / "args" / "learning.yaml"

# Standard normalized mood categories
MOOD_CATEGORIES = ["happy", "neutral", "sad", "anxious", "stressed"]

# Time-of-day buckets in display order
TIME_BUCKETS = ["morning", "afternoon", "evening", "night"]

# Day name mapping (datetime.weekday() order)
DAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

"""Tests for wellness/learning/config.py"""

from pathlib import Path

import pytest

from wellness.learning import resolve_project_root
from wellness.learning.config import LearningConfig, load_config


ARGS_FILE = Path(__file__).parent.parent.parent.parent / "args" / "learning.yaml"


def test_shipped_config_loads():
    """The checked-in args/learning.yaml matches the defaults."""
    config = load_config(ARGS_FILE)

    assert config.recorder.session_gap_minutes == 30
    assert config.adaptation.cache_ttl_hours == 24
    assert config.adaptation.crisis_allowlist == [
        "breathing_exercise",
        "crisis_support",
        "emergency_contact",
    ]
    assert config.recommendations.content_catalog == LearningConfig().recommendations.content_catalog
    assert config.gateway.active == "sqlite"


def test_missing_file_uses_defaults(tmp_path):
    config = load_config(tmp_path / "nope.yaml")
    assert config == LearningConfig()


def test_partial_file_overrides(tmp_path):
    path = tmp_path / "learning.yaml"
    path.write_text("learning:\n  recorder:\n    session_gap_minutes: 45\n")

    config = load_config(path)

    assert config.recorder.session_gap_minutes == 45
    assert config.recorder.learning_update_every == 10


def test_invalid_values_fall_back_to_defaults(tmp_path):
    path = tmp_path / "learning.yaml"
    path.write_text("learning:\n  adaptation:\n    mood_boost: 4.0\n")

    config = load_config(path)

    assert config.adaptation.mood_boost == 0.2


def test_env_vars_are_expanded(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_PROVIDER_URL", "https://suggest.example.com")
    path = tmp_path / "learning.yaml"
    path.write_text("learning:\n  provider:\n    active: http\n    base_url: ${TEST_PROVIDER_URL}\n")

    config = load_config(path)

    assert config.provider.active == "http"
    assert config.provider.base_url == "https://suggest.example.com"


def test_unwrapped_sections_are_accepted(tmp_path):
    path = tmp_path / "learning.yaml"
    path.write_text("maintenance:\n  max_retries: 5\n")
    assert load_config(path).maintenance.max_retries == 5


@pytest.mark.parametrize("bad", ["[1, 2", "just a string"])
def test_unparseable_yaml_uses_defaults(tmp_path, bad):
    path = tmp_path / "learning.yaml"
    path.write_text(bad)
    assert load_config(path) == LearningConfig()


def test_project_root_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("WELLNESS_HOME", str(tmp_path))
    assert resolve_project_root() == tmp_path.resolve()


def test_project_root_defaults_to_checkout(monkeypatch):
    monkeypatch.delenv("WELLNESS_HOME", raising=False)
    assert resolve_project_root() == ARGS_FILE.parent.parent.resolve()

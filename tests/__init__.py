"""Wellness Engine Test Suite

This package contains all tests for the behavior learning engine.

Test organization:
- unit/: Unit tests for individual modules
  - learning/: Context, recorder, preferences, patterns, recommendations, adaptation
  - gateway/: SQLite persistence gateway
  - providers/: Suggestion client and providers
- integration/: End-to-end flows through BehaviorLearningService

Running tests:
    # All tests
    pytest

    # Specific module
    pytest tests/unit/learning/

    # Integration flows only
    pytest -m integration
"""

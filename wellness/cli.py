#!/usr/bin/env python3
"""
Wellness Engine Command Line Interface

Main entry point for the `wellness` command. Every subcommand builds a
BehaviorLearningService for one user, runs a single operation and prints a
JSON result.

Usage:
    wellness track --user alice --type breathing_exercise --completed --rating 5
    wellness recommend --user alice
    wellness adapt --user alice --mood anxious --mood-confidence 0.9
    wellness patterns --user alice
    wellness cleanup --user alice
    wellness profile --user alice --interests anxiety mindfulness --age-range 25-35
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from wellness.learning.config import load_config
from wellness.learning.engine import BehaviorLearningService
from wellness.logging_config import bind_session, get_logger, setup_logging

logger = get_logger(__name__)


def _print(result: dict[str, Any]) -> int:
    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("success") else 1


async def _with_service(args, operation) -> dict[str, Any]:
    bind_session(args.user)
    config = load_config(args.config)
    service = BehaviorLearningService.from_config(args.user, config=config)
    try:
        await service.initialize()
        readings = [getattr(args, name, None) for name in ("mood", "stress", "anxiety")]
        if any(value is not None for value in readings):
            service.record_mood(
                emotion=args.mood,
                confidence=args.mood_confidence,
                stress_level=args.stress,
                anxiety_level=args.anxiety,
            )
        data = await operation(service)
        logger.debug("cli_command_complete", command=args.command, tracked=service.interaction_count)
        return {"success": True, "user_id": args.user, "durable": service.durable_available, **data}
    finally:
        await service.shutdown()


def cmd_track(args):
    """Record one interaction."""
    payload: dict[str, Any] = {}
    if args.data:
        try:
            payload = json.loads(args.data)
        except json.JSONDecodeError as e:
            return _print({"success": False, "error": f"--data is not valid JSON: {e}"})
        if not isinstance(payload, dict):
            return _print({"success": False, "error": "--data must be a JSON object"})
    if args.completed:
        payload["completed"] = True
    if args.rating is not None:
        payload["rating"] = args.rating

    async def operation(service: BehaviorLearningService):
        event = await service.track_interaction(args.type, payload)
        return {"event": event.to_dict()}

    try:
        return _print(asyncio.run(_with_service(args, operation)))
    except ValueError as e:
        return _print({"success": False, "error": str(e)})


def cmd_recommend(args):
    """Generate a recommendation bundle."""

    async def operation(service: BehaviorLearningService):
        bundle = await service.generate_recommendations(include_peers=not args.no_peers)
        return {"recommendations": bundle.to_dict()}

    return _print(asyncio.run(_with_service(args, operation)))


def cmd_adapt(args):
    """Generate and adapt a bundle to the current context."""

    async def operation(service: BehaviorLearningService):
        adapted = await service.adapt_recommendations_real_time()
        return {"recommendations": adapted.to_dict()}

    return _print(asyncio.run(_with_service(args, operation)))


def cmd_patterns(args):
    """Show learned patterns and recommendation effectiveness."""

    async def operation(service: BehaviorLearningService):
        patterns = service.learn_user_patterns()
        return {
            "interaction_count": service.interaction_count,
            "patterns": patterns.to_dict(),
            "recommendation_effectiveness": service.analyze_recommendation_effectiveness(),
        }

    return _print(asyncio.run(_with_service(args, operation)))


def cmd_cleanup(args):
    """Purge expired adaptation cache entries."""

    async def operation(service: BehaviorLearningService):
        return {"purged": await service.cleanup_cache()}

    return _print(asyncio.run(_with_service(args, operation)))


def cmd_profile(args):
    """Update the peer-matching profile."""
    fields: dict[str, Any] = {}
    if args.interests is not None:
        fields["mental_health_interests"] = args.interests
    if args.experiences is not None:
        fields["shared_experiences"] = args.experiences
    if args.style is not None:
        fields["preferred_communication_style"] = args.style
    if args.age_range is not None:
        fields["age_range"] = args.age_range

    async def operation(service: BehaviorLearningService):
        return {"profile": await service.update_user_profile(fields)}

    try:
        return _print(asyncio.run(_with_service(args, operation)))
    except ValueError as e:
        return _print({"success": False, "error": str(e)})


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--user", required=True, help="User ID")
    parser.add_argument("--config", help="Path to learning.yaml (default: args/learning.yaml)")


def _add_mood(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--mood", help="Current emotion label (e.g. anxious, joy)")
    parser.add_argument("--mood-confidence", type=float, help="Mood detector confidence 0-1")
    parser.add_argument("--stress", type=float, help="Stress level 0-10")
    parser.add_argument("--anxiety", type=float, help="Anxiety level 0-10")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="wellness",
        description="Wellness Engine - adaptive behavior learning and recommendations",
    )
    parser.add_argument("--log-level", help="Override WELLNESS_LOG_LEVEL")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # track
    track_parser = subparsers.add_parser("track", help="Record an interaction")
    _add_common(track_parser)
    _add_mood(track_parser)
    track_parser.add_argument("--type", required=True, help="Interaction type")
    track_parser.add_argument("--data", help="Payload as a JSON object")
    track_parser.add_argument("--completed", action="store_true", help="Mark as completed")
    track_parser.add_argument("--rating", type=float, help="Rating 1-5")
    track_parser.set_defaults(func=cmd_track)

    # recommend
    recommend_parser = subparsers.add_parser("recommend", help="Generate recommendations")
    _add_common(recommend_parser)
    _add_mood(recommend_parser)
    recommend_parser.add_argument("--no-peers", action="store_true", help="Skip peer matching")
    recommend_parser.set_defaults(func=cmd_recommend)

    # adapt
    adapt_parser = subparsers.add_parser("adapt", help="Adapt recommendations to right now")
    _add_common(adapt_parser)
    _add_mood(adapt_parser)
    adapt_parser.set_defaults(func=cmd_adapt)

    # patterns
    patterns_parser = subparsers.add_parser("patterns", help="Show learned patterns")
    _add_common(patterns_parser)
    patterns_parser.set_defaults(func=cmd_patterns)

    # cleanup
    cleanup_parser = subparsers.add_parser("cleanup", help="Purge expired adaptation cache")
    _add_common(cleanup_parser)
    cleanup_parser.set_defaults(func=cmd_cleanup)

    # profile
    profile_parser = subparsers.add_parser("profile", help="Update the peer-matching profile")
    _add_common(profile_parser)
    profile_parser.add_argument("--interests", nargs="*", help="Mental health interests")
    profile_parser.add_argument("--experiences", nargs="*", help="Shared experiences")
    profile_parser.add_argument("--style", help="Preferred communication style")
    profile_parser.add_argument("--age-range", help='Age range, e.g. "25-35"')
    profile_parser.set_defaults(func=cmd_profile)

    args = parser.parse_args()

    setup_logging(level=args.log_level, json_output=True if args.json_logs else None)

    # If no command given, show help
    if not args.command:
        parser.print_help()
        return

    # Execute command
    result = args.func(args)

    # Commands may return an exit code
    if isinstance(result, int) and result != 0:
        sys.exit(result)


if __name__ == "__main__":
    main()

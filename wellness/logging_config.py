"""
Structured logging configuration using structlog wrapping stdlib.

Engine modules keep using ``logging.getLogger(__name__)``; this module routes
those records through structlog so the output is JSON in production and
human-readable console output in development.

Usage:
    from wellness.logging_config import bind_session, setup_logging
    setup_logging()
    bind_session(user_id, session_id)  # the engine rebinds on every new session
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog


def _drop_unset_ids(logger: Any, method_name: str, event_dict: dict) -> dict:
    # bind_session(user) without a session yet leaves session_id=None
    for key in ("user_id", "session_id"):
        if event_dict.get(key, "") is None:
            del event_dict[key]
    return event_dict


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    if level is None:
        level = os.environ.get("WELLNESS_LOG_LEVEL", "INFO")

    if json_output is None:
        json_output = os.environ.get("WELLNESS_LOG_FORMAT", "").lower() == "json"

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _drop_unset_ids,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)


def bind_session(user_id: str, session_id: str | None = None) -> None:
    """Attach user/session identifiers to every log line on this context."""
    structlog.contextvars.bind_contextvars(user_id=user_id, session_id=session_id)


def clear_session() -> None:
    structlog.contextvars.unbind_contextvars("user_id", "session_id")


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


__all__ = ["bind_session", "clear_session", "get_logger", "setup_logging"]

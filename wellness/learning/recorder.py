"""
Interaction Recorder

Bounded, append-only log of ``InteractionEvent``s for the current user
session. Assigns session ids (a new session starts once the gap since the
previous event exceeds the inactivity threshold) and merges durable
history loaded at startup without overwriting local events.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping

from .models import ContextSnapshot, InteractionEvent


DEFAULT_SESSION_GAP = timedelta(minutes=30)


@dataclass
class Session:
    """Interactions grouped by the inactivity gap."""

    first_interaction: datetime
    last_interaction: datetime
    interactions: list[InteractionEvent] = field(default_factory=list)

    @property
    def duration(self) -> timedelta:
        return self.last_interaction - self.first_interaction


def group_sessions(
    events: Iterable[InteractionEvent], gap: timedelta = DEFAULT_SESSION_GAP
) -> list[Session]:
    """Split events into sessions; a gap strictly greater than ``gap`` starts a new one."""
    sessions: list[Session] = []
    current: Session | None = None

    for event in sorted(events, key=lambda e: e.timestamp):
        if current is None or event.timestamp - current.last_interaction > gap:
            current = Session(
                first_interaction=event.timestamp,
                last_interaction=event.timestamp,
                interactions=[event],
            )
            sessions.append(current)
        else:
            current.last_interaction = event.timestamp
            current.interactions.append(event)

    return sessions


class InteractionRecorder:
    """In-memory interaction log with session tracking."""

    def __init__(
        self,
        user_id: str,
        max_events: int = 500,
        session_gap: timedelta = DEFAULT_SESSION_GAP,
    ):
        self.user_id = user_id
        self.session_gap = session_gap
        self._events: deque[InteractionEvent] = deque(maxlen=max_events)
        self._ids: set[str] = set()
        self._session_id: str | None = None
        self._last_timestamp: datetime | None = None
        self._tracked_count = 0

    def __len__(self) -> int:
        return len(self._events)

    @property
    def events(self) -> list[InteractionEvent]:
        return list(self._events)

    @property
    def tracked_count(self) -> int:
        """Number of events recorded through ``record`` in this session."""
        return self._tracked_count

    @property
    def current_session_id(self) -> str | None:
        return self._session_id

    def session_for(self, timestamp: datetime) -> str:
        """Reuse the running session id or start a new one after the gap."""
        if (
            self._session_id is None
            or self._last_timestamp is None
            or timestamp - self._last_timestamp > self.session_gap
        ):
            self._session_id = str(uuid.uuid4())
        self._last_timestamp = timestamp
        return self._session_id

    def record(
        self,
        interaction_type: str,
        payload: Mapping[str, Any],
        context: ContextSnapshot,
        effectiveness_score: float | None = None,
        user_rating: float | None = None,
    ) -> InteractionEvent:
        """Build an immutable event and append it to the local window."""
        timestamp = context.timestamp
        event = InteractionEvent(
            type=interaction_type,
            payload=payload,
            timestamp=timestamp,
            context=context,
            session_id=self.session_for(timestamp),
            user_id=self.user_id,
            effectiveness_score=effectiveness_score,
            user_rating=user_rating,
        )
        self._append(event)
        self._tracked_count += 1
        return event

    def _append(self, event: InteractionEvent) -> None:
        if len(self._events) == self._events.maxlen:
            self._ids.discard(self._events[0].id)
        self._events.append(event)
        self._ids.add(event.id)

    def merge(self, events: Iterable[InteractionEvent]) -> list[InteractionEvent]:
        """Merge events loaded elsewhere (durable store, state file) by id.

        Returns:
            The events that were new to the local log
        """
        seen = set(self._ids)
        incoming = []
        for event in events:
            if event.id not in seen:
                seen.add(event.id)
                incoming.append(event)
        if not incoming:
            return []

        combined = sorted([*self._events, *incoming], key=lambda e: e.timestamp)
        self._events.clear()
        self._ids.clear()
        for event in combined:
            self._append(event)

        latest = self._events[-1] if self._events else None
        if latest and (self._last_timestamp is None or latest.timestamp > self._last_timestamp):
            self._last_timestamp = latest.timestamp
            self._session_id = latest.session_id or self._session_id
        return incoming

    def recent(self, limit: int = 20) -> list[InteractionEvent]:
        """Most recent events, newest first."""
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]

    def snapshot(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self._events]

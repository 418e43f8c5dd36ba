"""
Preference Aggregator

Keeps one ``PreferenceRecord`` per interaction type, updated synchronously on
every tracked event.

Effectiveness uses ``(effectiveness + observed) / 2``. This weights the most
recent observation at one half and is not a true moving average; it is kept
as-is pending product review. Ratings arrive on a 1..5 scale and are divided
by ``RATING_SCALE`` before entering that average so effectiveness stays in
[0, 1].
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Iterator, Mapping

from .context import context_key
from .models import ContextSnapshot, InteractionEvent, PreferenceRecord, clamp, payload_rating


logger = logging.getLogger(__name__)

RATING_SCALE = 5.0


def normalize_rating(rating: float) -> float:
    return clamp(rating / RATING_SCALE)


class PreferenceAggregator:
    """Rolling per-interaction-type statistics."""

    def __init__(self, id_window: int = 1000):
        """
        Args:
            id_window: How many recent event ids to remember as already counted
        """
        self.id_window = id_window
        self._records: dict[str, PreferenceRecord] = {}
        self._event_ids: dict[str, None] = {}

    def __contains__(self, interaction_type: str) -> bool:
        return interaction_type in self._records

    def __iter__(self) -> Iterator[tuple[str, PreferenceRecord]]:
        return iter(self._records.items())

    def __len__(self) -> int:
        return len(self._records)

    def get(self, interaction_type: str) -> PreferenceRecord | None:
        return self._records.get(interaction_type)

    @property
    def records(self) -> dict[str, PreferenceRecord]:
        return dict(self._records)

    @property
    def interaction_count(self) -> int:
        return sum(r.frequency for r in self._records.values())

    def _mark_counted(self, event_id: str) -> None:
        self._event_ids[event_id] = None
        while len(self._event_ids) > self.id_window:
            del self._event_ids[next(iter(self._event_ids))]

    def update_preferences(
        self,
        interaction_type: str,
        payload: Mapping[str, Any],
        context: ContextSnapshot,
        event_id: str | None = None,
    ) -> PreferenceRecord:
        """Fold one interaction into the record for its type.

        An ``event_id`` that was already counted leaves the record unchanged.
        """
        if event_id is not None:
            if event_id in self._event_ids and interaction_type in self._records:
                return self._records[interaction_type]
            self._mark_counted(event_id)

        record = self._records.setdefault(interaction_type, PreferenceRecord())

        record.frequency += 1
        record.last_used = context.timestamp

        key = context_key(context)
        record.context_counts[key] = record.context_counts.get(key, 0) + 1

        rating = payload_rating(payload)
        completed = bool(payload.get("completed"))

        if completed or rating is not None:
            observed = normalize_rating(rating) if rating is not None else (1.0 if completed else 0.0)
            record.effectiveness = clamp((record.effectiveness + observed) / 2)

        if rating is not None:
            total = record.user_rating * record.rating_count + rating
            record.rating_count += 1
            record.user_rating = total / record.rating_count

        return record

    def fold(self, events: Iterable[InteractionEvent]) -> None:
        """Replay historical events (oldest first); events already counted are skipped."""
        for event in sorted(events, key=lambda e: e.timestamp):
            self.update_preferences(event.type, event.payload, event.context, event_id=event.id)

    def snapshot(self) -> dict[str, Any]:
        return {
            "records": {k: v.to_dict() for k, v in self._records.items()},
            "event_ids": list(self._event_ids),
        }

    def load(self, data: Mapping[str, Any]) -> None:
        """Replace the records (and the counted event ids) with a saved snapshot."""
        if not isinstance(data, Mapping):
            raise ValueError(f"expected a mapping, got {type(data).__name__}")

        records = data.get("records", {})
        event_ids = data.get("event_ids", [])
        if not isinstance(records, Mapping) or not isinstance(event_ids, list):
            raise ValueError("preference snapshot has the wrong shape")

        self._records = {str(k): PreferenceRecord.from_dict(v) for k, v in records.items()}
        self._event_ids = dict.fromkeys(str(i) for i in event_ids[-self.id_window :])
        logger.debug(f"Loaded {len(self._records)} preference records")

"""
SQLite Persistence Gateway

Local durable store. One connection per operation; tables are created on
first use unless ``create_schema`` is off, in which case missing tables
surface as ``SchemaUnavailableError``.

Tables:
    user_profiles           one row per user, peer-matching fields as JSON
    user_behavior_data      interaction events (id is the event id)
    user_behavior_profiles  learned profile per user
    adaptation_cache        unique (user_id, context_key)
    content_interactions    view / like / share / complete / skip / rate
    peer_interactions       message / support / activity / recommendation
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from wellness.learning import PROJECT_ROOT
from wellness.learning.models import AdaptationCacheEntry, BehaviorProfile, InteractionEvent

from .base import (
    PROFILE_LIST_FIELDS,
    PROFILE_TEXT_FIELDS,
    PersistenceGateway,
    SchemaUnavailableError,
    TransientPersistenceError,
)


logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS user_profiles (
    user_id TEXT PRIMARY KEY,
    mental_health_interests TEXT DEFAULT '[]',
    shared_experiences TEXT DEFAULT '[]',
    preferred_communication_style TEXT,
    age_range TEXT,
    activity_level TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS user_behavior_data (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    interaction_type TEXT NOT NULL,
    interaction_data TEXT NOT NULL,
    context_data TEXT NOT NULL,
    session_id TEXT,
    effectiveness_score REAL,
    user_rating REAL,
    timestamp TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_behavior_user_time ON user_behavior_data(user_id, timestamp);

CREATE TABLE IF NOT EXISTS user_behavior_profiles (
    user_id TEXT PRIMARY KEY,
    profile_data TEXT NOT NULL,
    last_updated TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS adaptation_cache (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    context_key TEXT NOT NULL,
    adaptation_score REAL NOT NULL,
    recommendations TEXT NOT NULL,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    UNIQUE(user_id, context_key)
);

CREATE TABLE IF NOT EXISTS content_interactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    content_type TEXT NOT NULL,
    content_id TEXT NOT NULL,
    action TEXT NOT NULL CHECK (action IN ('view', 'like', 'share', 'complete', 'skip', 'rate')),
    rating REAL,
    duration_seconds REAL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_content_created ON content_interactions(created_at);

CREATE TABLE IF NOT EXISTS peer_interactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    peer_id TEXT NOT NULL,
    action TEXT NOT NULL CHECK (action IN ('message', 'support', 'activity', 'recommendation')),
    quality TEXT CHECK (quality IN ('positive', 'neutral', 'negative')),
    mutual_rating REAL,
    created_at TEXT NOT NULL
);
"""


def _profile_from_row(row: sqlite3.Row) -> dict[str, Any]:
    profile = {"id": row["user_id"], "user_id": row["user_id"]}
    for field in PROFILE_LIST_FIELDS:
        profile[field] = json.loads(row[field] or "[]")
    for field in PROFILE_TEXT_FIELDS:
        profile[field] = row[field]
    return profile


class SQLiteGateway(PersistenceGateway):
    def __init__(self, config: dict[str, Any] | None = None):
        """
        Args:
            config: Gateway configuration from args/learning.yaml
                - database_path: Relative to the project root unless absolute
                - create_schema: Create missing tables on first use (default True)
        """
        config = config or {}
        self._config = config

        db_path = Path(config.get("database_path", "data/wellness.db"))
        self._db_path = db_path if db_path.is_absolute() else PROJECT_ROOT / db_path
        self._create_schema = bool(config.get("create_schema", True))
        self._schema_ready = False

    @property
    def name(self) -> str:
        return "sqlite"

    @property
    def db_path(self) -> Path:
        return self._db_path

    def get_connection(self) -> sqlite3.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        if self._create_schema and not self._schema_ready:
            conn.executescript(SCHEMA)
            conn.commit()
            self._schema_ready = True
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection, translating sqlite errors into gateway errors."""
        conn = None
        try:
            conn = self.get_connection()
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            if "no such table" in str(e):
                raise SchemaUnavailableError(str(e)) from e
            raise TransientPersistenceError(str(e)) from e
        except sqlite3.Error as e:
            raise TransientPersistenceError(str(e)) from e
        except OSError as e:
            raise TransientPersistenceError(str(e)) from e
        finally:
            if conn is not None:
                conn.close()

    # =========================================================================
    # Profiles
    # =========================================================================

    async def ensure_user_profile(self, user_id: str) -> dict[str, Any]:
        with self._connection() as conn:
            conn.execute("INSERT OR IGNORE INTO user_profiles (user_id) VALUES (?)", (user_id,))
            row = conn.execute("SELECT * FROM user_profiles WHERE user_id = ?", (user_id,)).fetchone()
        return _profile_from_row(row)

    async def update_user_profile(self, user_id: str, fields: dict[str, Any]) -> bool:
        values = {}
        for field in PROFILE_LIST_FIELDS:
            if field in fields:
                values[field] = json.dumps(list(fields[field] or []))
        for field in PROFILE_TEXT_FIELDS:
            if field in fields:
                values[field] = fields[field]
        if not values:
            return False

        assignments = ", ".join(f"{field} = ?" for field in values)
        with self._connection() as conn:
            conn.execute("INSERT OR IGNORE INTO user_profiles (user_id) VALUES (?)", (user_id,))
            conn.execute(
                f"UPDATE user_profiles SET {assignments}, updated_at = ? WHERE user_id = ?",
                (*values.values(), datetime.now().isoformat(), user_id),
            )
        return True

    async def load_behavior_profile(self, user_id: str) -> BehaviorProfile | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT profile_data FROM user_behavior_profiles WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return None
        return BehaviorProfile.from_dict(json.loads(row["profile_data"]))

    async def upsert_behavior_profile(self, profile: BehaviorProfile) -> bool:
        data = profile.to_dict()
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO user_behavior_profiles (user_id, profile_data, last_updated)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    profile_data = excluded.profile_data,
                    last_updated = excluded.last_updated""",
                (profile.user_id, json.dumps(data), data["last_updated"]),
            )
        return True

    # =========================================================================
    # Interactions
    # =========================================================================

    async def load_interactions(self, user_id: str, limit: int = 500) -> list[InteractionEvent]:
        with self._connection() as conn:
            rows = conn.execute(
                """SELECT * FROM user_behavior_data WHERE user_id = ?
                ORDER BY timestamp DESC LIMIT ?""",
                (user_id, limit),
            ).fetchall()

        events = []
        for row in reversed(rows):
            try:
                events.append(
                    InteractionEvent.from_dict(
                        {
                            "id": row["id"],
                            "user_id": row["user_id"],
                            "type": row["interaction_type"],
                            "payload": json.loads(row["interaction_data"]),
                            "context": json.loads(row["context_data"]),
                            "session_id": row["session_id"],
                            "effectiveness_score": row["effectiveness_score"],
                            "user_rating": row["user_rating"],
                            "timestamp": row["timestamp"],
                        }
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed interaction row {row['id']}: {e}")
        return events

    async def append_interaction(self, event: InteractionEvent) -> bool:
        data = event.to_dict()
        with self._connection() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO user_behavior_data
                (id, user_id, interaction_type, interaction_data, context_data,
                 session_id, effectiveness_score, user_rating, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    data["id"],
                    data["user_id"],
                    data["type"],
                    json.dumps(data["payload"], default=str),
                    json.dumps(data["context"]),
                    data["session_id"],
                    data["effectiveness_score"],
                    data["user_rating"],
                    data["timestamp"],
                ),
            )
        return True

    async def append_content_interaction(
        self,
        user_id: str,
        content_type: str,
        content_id: str,
        action: str,
        rating: float | None = None,
        duration_seconds: float | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO content_interactions
                (user_id, content_type, content_id, action, rating, duration_seconds, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    user_id,
                    content_type,
                    content_id,
                    action,
                    rating,
                    duration_seconds,
                    (timestamp or datetime.now()).isoformat(),
                ),
            )
        return True

    async def append_peer_interaction(
        self,
        user_id: str,
        peer_id: str,
        action: str,
        quality: str | None = None,
        mutual_rating: float | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO peer_interactions
                (user_id, peer_id, action, quality, mutual_rating, created_at)
                VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    user_id,
                    peer_id,
                    action,
                    quality,
                    mutual_rating,
                    (timestamp or datetime.now()).isoformat(),
                ),
            )
        return True

    # =========================================================================
    # Adaptation cache
    # =========================================================================

    async def upsert_adaptation_cache(self, user_id: str, entry: AdaptationCacheEntry) -> bool:
        data = entry.to_dict()
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO adaptation_cache
                (user_id, context_key, adaptation_score, recommendations, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, context_key) DO UPDATE SET
                    adaptation_score = excluded.adaptation_score,
                    recommendations = excluded.recommendations,
                    expires_at = excluded.expires_at""",
                (
                    user_id,
                    data["context_key"],
                    data["adaptation_score"],
                    json.dumps(data["recommendations"]),
                    data["created_at"],
                    data["expires_at"],
                ),
            )
        return True

    async def load_adaptation_cache(self, user_id: str, now: datetime) -> list[AdaptationCacheEntry]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM adaptation_cache WHERE user_id = ? AND expires_at > ?",
                (user_id, now.isoformat()),
            ).fetchall()

        entries = []
        for row in rows:
            try:
                entries.append(
                    AdaptationCacheEntry.from_dict(
                        {
                            "context_key": row["context_key"],
                            "adaptation_score": row["adaptation_score"],
                            "recommendations": json.loads(row["recommendations"]),
                            "created_at": row["created_at"],
                            "expires_at": row["expires_at"],
                        }
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed cache row {row['context_key']}: {e}")
        return entries

    async def delete_expired_cache(self, user_id: str, now: datetime) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM adaptation_cache WHERE user_id = ? AND expires_at <= ?",
                (user_id, now.isoformat()),
            )
            deleted = cursor.rowcount
        if deleted:
            logger.debug(f"Deleted {deleted} expired cache rows for {user_id}")
        return deleted

    # =========================================================================
    # Aggregates
    # =========================================================================

    async def load_trending_content(self, since: datetime) -> dict[str, int]:
        with self._connection() as conn:
            rows = conn.execute(
                """SELECT content_type, COUNT(*) AS interactions FROM content_interactions
                WHERE created_at >= ? GROUP BY content_type""",
                (since.isoformat(),),
            ).fetchall()
        return {row["content_type"]: row["interactions"] for row in rows}

    async def load_peer_candidates(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM user_profiles WHERE user_id != ? ORDER BY updated_at DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [_profile_from_row(row) for row in rows]

"""
75 Hard Tracker — Local Cache.

Device-side key/value store holding the last known good copy of each remote
resource (profile, challenges, tasks, per-date completions) plus the pending
sync queue. Values are JSON, rows live in a single SQLite table.

The cache is deliberately dumb: no expiry, no size limit, no eviction.
Nothing here raises; failures are logged and reads fall back to the default.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Resource keys
USER_PROFILE = "user_profile"
CHALLENGES = "challenges"
CUSTOM_TASKS = "custom_tasks"
PENDING_CHANGES = "pending_changes"
COMPLETIONS_PREFIX = "task_completions_"


def completions_key(date: str) -> str:
    """Cache key for one day's completion map, e.g. task_completions_2024-01-05."""
    return f"{COMPLETIONS_PREFIX}{date}"


class LocalCache:
    """SQLite-backed JSON key/value storage."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from hard75.config import settings
            db_path = settings.CACHE_PATH

        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._memory_conn: sqlite3.Connection | None = None
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        # A ":memory:" database vanishes with its connection, so keep one open.
        if self._db_path == ":memory:":
            if self._memory_conn is None:
                self._memory_conn = sqlite3.connect(":memory:")
            return self._memory_conn
        return sqlite3.connect(self._db_path)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cache (
                    key        TEXT PRIMARY KEY,
                    value      TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
        logger.debug("Cache table initialized at %s", self._db_path)

    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value for key, or default if absent/unreadable."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT value FROM cache WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as exc:
            logger.error("Error reading '%s' from cache: %s", key, exc)
            return default

        if row is None:
            return default
        try:
            return json.loads(row[0])
        except ValueError as exc:
            logger.error("Corrupt cache entry '%s': %s", key, exc)
            return default

    def set(self, key: str, value: Any) -> None:
        """Serialize and store value under key. Errors are logged, not raised."""
        try:
            serialized = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.error("Error serializing '%s' for cache: %s", key, exc)
            return

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO cache (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, serialized, datetime.now().isoformat()),
                )
        except sqlite3.Error as exc:
            logger.error("Error writing '%s' to cache: %s", key, exc)

    def remove(self, key: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM cache WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            logger.error("Error removing '%s' from cache: %s", key, exc)

    def clear(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM cache")
            logger.info("Cache cleared")
        except sqlite3.Error as exc:
            logger.error("Error clearing cache: %s", exc)

    def keys(self, prefix: str = "") -> list[str]:
        """Stored keys starting with prefix, sorted."""
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT key FROM cache WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                ).fetchall()
        except sqlite3.Error as exc:
            logger.error("Error listing cache keys: %s", exc)
            return []
        return [r[0] for r in rows]

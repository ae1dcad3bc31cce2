# SPDX-License-Identifier: MIT
"""Local/offline entity caches used as the last-resort read path."""

import copy
import json
import sqlite3
from pathlib import Path
from typing import Any

from ..logging_config import get_detail_logger


detail_logger = get_detail_logger()

MAX_KEY_LENGTH = 255


def _check_key(key: str) -> None:
    if not key or not key.strip():
        raise ValueError("Cache key cannot be empty")
    if len(key) > MAX_KEY_LENGTH:
        raise ValueError(
            f"Cache key exceeds maximum length ({MAX_KEY_LENGTH} characters)"
        )


class InMemoryLocalCache:
    """Process-local cache; values are copied on the way in and out."""

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, Any]] = {}

    def get(self, key: str) -> dict[str, Any] | None:
        _check_key(key)
        value = self._entries.get(key)
        return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        _check_key(key)
        self._entries[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        _check_key(key)
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class SqliteLocalCache:
    """SQLite-backed cache that survives restarts; entities stored as JSON."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entity_cache (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
        detail_logger.debug(f"Local cache initialized at {self.db_path}")

    def get(self, key: str) -> dict[str, Any] | None:
        """Get a cached entity.

        Raises:
            ValueError: If key is empty or too long
        """
        _check_key(key)
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM entity_cache WHERE key = ?", (key,)
            ).fetchone()

        if row is None:
            detail_logger.debug(f"Local cache miss for key '{key}'")
            return None

        detail_logger.debug(f"Local cache hit for key '{key}'")
        result: dict[str, Any] = json.loads(row[0])
        return result

    def set(self, key: str, value: dict[str, Any]) -> None:
        """Store an entity, replacing any previous value.

        Raises:
            ValueError: If key is empty or too long
        """
        _check_key(key)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO entity_cache (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                """,
                (key, json.dumps(value, default=str)),
            )
            conn.commit()

    def delete(self, key: str) -> None:
        _check_key(key)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM entity_cache WHERE key = ?", (key,))
            conn.commit()

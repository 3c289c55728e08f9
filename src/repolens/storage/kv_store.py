"""Key-value stores backing the persisted index cache."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Protocol

from repolens.errors import PersistenceFailure

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Protocol for string key-value stores."""

    def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        ...

    def delete(self, key: str) -> None:
        """Remove a key if present."""
        ...


class MemoryKeyValueStore:
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SqliteKeyValueStore:
    """SQLite-backed store: one ``kv`` table, whole-value replacement on write.

    ``max_value_bytes`` caps the size of a single value; writes above it fail
    with PersistenceFailure the same way a full disk or quota would.
    """

    def __init__(self, db_path: Path, max_value_bytes: int | None = None) -> None:
        self._db_path = db_path
        self._max_value_bytes = max_value_bytes
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )
        self._conn.commit()

    def get(self, key: str) -> str | None:
        try:
            cur = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = cur.fetchone()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Could not read {key!r}: {e}") from e
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        size = len(value.encode("utf-8"))
        if self._max_value_bytes is not None and size > self._max_value_bytes:
            raise PersistenceFailure(
                f"Value for {key!r} is {size} bytes, quota is {self._max_value_bytes}"
            )
        try:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (key, value),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Could not write {key!r}: {e}") from e
        logger.debug("Stored %s (%d bytes)", key, size)

    def delete(self, key: str) -> None:
        try:
            self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Could not delete {key!r}: {e}") from e

    def keys(self) -> list[str]:
        cur = self._conn.execute("SELECT key FROM kv ORDER BY key")
        return [row[0] for row in cur.fetchall()]

    def close(self) -> None:
        self._conn.close()

"""SQLite-backed durable cache.

Beginner terms:
- WAL: write-ahead logging; lets readers in other processes see committed
  writes while one process is writing.
- Upsert: insert a row, or replace it when the key already exists.

Each ``get``/``set`` opens its own short connection, so one database file can
be shared by several contexts (threads or processes) without extra
coordination. There is no transaction spanning two keys.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class SqliteLocalCache:
    """Durable key/value store with one row per cache key."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.migrate()

    def migrate(self) -> None:
        """Create the entries table if it does not exist yet."""
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS cache_entries (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at REAL NOT NULL
                    )
                    """)
                conn.commit()
            finally:
                conn.close()

    def get(self, key: str) -> Any | None:
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT value FROM cache_entries WHERE key = ?",
                    (key,),
                ).fetchone()
            finally:
                conn.close()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except ValueError:
            logger.warning("cache event=corrupt_entry backend=sqlite key=%s", key)
            return None

    def set(self, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError):
            logger.warning("cache event=unserializable_value backend=sqlite key=%s", key)
            return
        self._write(key, raw)

    def set_raw(self, key: str, raw: str) -> None:
        """Store ``raw`` text without serialization (used to simulate corruption)."""
        self._write(key, raw)

    def delete(self, key: str) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                conn.commit()
            finally:
                conn.close()

    def keys(self) -> list[str]:
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute("SELECT key FROM cache_entries ORDER BY key").fetchall()
            finally:
                conn.close()
        return [str(row[0]) for row in rows]

    def _write(self, key: str, raw: str) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT INTO cache_entries (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, raw, time.time()),
                )
                conn.commit()
            finally:
                conn.close()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=5.0)

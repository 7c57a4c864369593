"""In-memory cache backend.

Values are stored as JSON text, like the SQLite backend, so a corrupt entry
behaves the same in both. One instance can be shared by several contexts in a
test to stand in for storage shared by browser tabs or processes.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


class InMemoryLocalCache:
    """Process-local key/value store holding serialized JSON values."""

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._entries.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("cache event=corrupt_entry backend=memory key=%s", key)
            return None

    def set(self, key: str, value: Any) -> None:
        try:
            self._entries[key] = json.dumps(value)
        except (TypeError, ValueError):
            logger.warning("cache event=unserializable_value backend=memory key=%s", key)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def set_raw(self, key: str, raw: str) -> None:
        """Store ``raw`` text without serialization (used to simulate corruption)."""
        self._entries[key] = raw

    def keys(self) -> list[str]:
        return sorted(self._entries)

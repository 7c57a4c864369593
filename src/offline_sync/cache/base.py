"""Cache interface shared by the in-memory and SQLite backends."""

from __future__ import annotations

from typing import Any, Protocol


class LocalCache(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

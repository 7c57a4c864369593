"""Local key/value cache backends."""

from offline_sync.cache.base import LocalCache
from offline_sync.cache.memory import InMemoryLocalCache
from offline_sync.cache.sqlite import SqliteLocalCache

__all__ = [
    "InMemoryLocalCache",
    "LocalCache",
    "SqliteLocalCache",
]

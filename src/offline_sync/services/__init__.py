"""Entity services and the project aggregate manager."""

from offline_sync.services.aggregate import (
    AggregateConsistencyManager,
    check_invariant,
    compute_progress,
)
from offline_sync.services.entity import EntityChange, EntityListener, EntityService

__all__ = [
    "AggregateConsistencyManager",
    "EntityChange",
    "EntityListener",
    "EntityService",
    "check_invariant",
    "compute_progress",
]

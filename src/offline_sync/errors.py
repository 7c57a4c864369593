"""Error types and failure classification for the sync layer.

Only validation failures are raised to callers. Every other failure kind is
recorded as a short message on a coarse error slot (per collection for
services, per key for the coalescer) and the operation degrades instead.
"""

from __future__ import annotations

from typing import Literal

ErrorKind = Literal["timeout", "http_error", "validation", "sync_failure"]

TIMEOUT_STATUS = 408
FALLBACK_STATUS = 500


class SyncLayerError(Exception):
    """Base class for errors raised by the sync layer."""


class EntityValidationError(SyncLayerError, ValueError):
    """Raised before any network call when a required field is missing."""

    def __init__(self, collection: str, field_name: str, message: str | None = None):
        self.collection = collection
        self.field_name = field_name
        self.message = message or f"{field_name} is required"
        super().__init__(self.message)


def classify_status(status: int) -> ErrorKind | None:
    """Map a gateway status code to an error kind; None for success."""
    if 200 <= status < 300:
        return None
    if status == TIMEOUT_STATUS:
        return "timeout"
    return "http_error"

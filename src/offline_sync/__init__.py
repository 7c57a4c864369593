"""Offline-first cache and synchronization layer."""

from offline_sync.context import SyncContext, build_context

__all__ = ["SyncContext", "build_context"]

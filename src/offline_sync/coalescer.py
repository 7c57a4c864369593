"""Debounced, last-write-wins background push of full collection snapshots.

Beginner terms:
- Debounce window: each enqueue restarts the timer, so a steady stream of
  edits keeps postponing the push until the stream pauses.
- Coalescing: only the newest snapshot of a burst is sent; older queued
  snapshots from the same burst are dropped.

A failed push keeps its queue and records an error for the key. Nothing is
retried until the next enqueue for that key restarts the timer.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

from offline_sync.gateway import RemoteGateway

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_S = 1.0

Snapshot = list[dict[str, Any]]


class TimerHandle(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def thread_timer(delay_s: float, callback: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(delay_s, callback)
    timer.daemon = True
    return timer


class SyncCoalescer:
    """Collapse bursts of snapshots per key into one POST to the key's sync path."""

    def __init__(
        self,
        gateway: RemoteGateway,
        *,
        debounce_s: float = DEFAULT_DEBOUNCE_S,
        sync_paths: dict[str, str] | None = None,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self._gateway = gateway
        self.debounce_s = debounce_s
        self._sync_paths = dict(sync_paths or {})
        self._timer_factory = timer_factory or thread_timer
        self._lock = threading.RLock()
        self._queues: dict[str, list[Snapshot]] = {}
        self._timers: dict[str, tuple[int, TimerHandle]] = {}
        self._generations = itertools.count(1)
        self._in_flight: set[str] = set()
        self._rearm: set[str] = set()
        self._errors: dict[str, str] = {}
        self._closed = False

    def register(self, key: str, sync_path: str) -> None:
        with self._lock:
            self._sync_paths[key] = sync_path

    def enqueue(self, key: str, snapshot: Snapshot) -> None:
        with self._lock:
            if self._closed:
                logger.warning("sync_push event=enqueue_after_close key=%s", key)
                return
            self._queues.setdefault(key, []).append(snapshot)
            self._schedule_locked(key)

    def flush(self, key: str | None = None) -> None:
        """Push now instead of waiting for the debounce timer."""
        with self._lock:
            keys = [key] if key is not None else [k for k, q in self._queues.items() if q]
            for item in keys:
                self._cancel_timer_locked(item)
        for item in keys:
            self._push(item)

    def pending(self, key: str) -> int:
        with self._lock:
            return len(self._queues.get(key, []))

    def is_syncing(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    def last_error(self, key: str) -> str | None:
        with self._lock:
            return self._errors.get(key)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            for key in list(self._timers):
                self._cancel_timer_locked(key)

    def _schedule_locked(self, key: str) -> None:
        self._cancel_timer_locked(key)
        generation = next(self._generations)
        handle = self._timer_factory(
            self.debounce_s, lambda: self._on_timer(key, generation)
        )
        self._timers[key] = (generation, handle)
        handle.start()

    def _cancel_timer_locked(self, key: str) -> None:
        current = self._timers.pop(key, None)
        if current is not None:
            current[1].cancel()

    def _on_timer(self, key: str, generation: int) -> None:
        with self._lock:
            current = self._timers.get(key)
            # A timer that lost a race with cancel() must not push.
            if current is None or current[0] != generation:
                return
            del self._timers[key]
        self._push(key)

    def _push(self, key: str) -> None:
        with self._lock:
            queue = self._queues.get(key)
            if not queue:
                return
            if key in self._in_flight:
                self._rearm.add(key)
                return
            snapshot = queue[-1]
            pushed_count = len(queue)
            path = self._sync_paths.get(key, f"/{key}/sync")
            self._in_flight.add(key)

        response = self._gateway.post(path, {"data": snapshot})

        with self._lock:
            self._in_flight.discard(key)
            rearm = key in self._rearm
            self._rearm.discard(key)
            if response.ok:
                del queue[:pushed_count]
                self._errors.pop(key, None)
                logger.info(
                    "sync_push event=ok key=%s items=%d coalesced=%d",
                    key,
                    len(snapshot),
                    pushed_count,
                )
            else:
                self._errors[key] = f"Failed to sync {key} with server"
                logger.warning(
                    "sync_push event=failed key=%s status=%d error=%s queued=%d",
                    key,
                    response.status,
                    response.error,
                    len(queue),
                )
            # Snapshots that arrived mid-flight get their own push; a plain failure does not.
            if queue and key not in self._timers and not self._closed and (response.ok or rearm):
                self._schedule_locked(key)

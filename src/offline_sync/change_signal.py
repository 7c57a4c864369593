"""Cross-context change notification through the shared cache.

A context announces "collection X changed" by writing a fresh timestamp under
``sync-X``. Other contexts sharing the same cache notice the new value when
they poll and reload the whole collection. The writer records its own value
as seen, so it never reacts to its own signal.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from offline_sync.cache.base import LocalCache

logger = logging.getLogger(__name__)

SIGNAL_KEY_PREFIX = "sync-"

ChangeListener = Callable[[str], None]


def signal_key(collection: str) -> str:
    return f"{SIGNAL_KEY_PREFIX}{collection}"


class ChangeSignal:
    """Pull-based, payload-free broadcast of collection changes."""

    def __init__(self, cache: LocalCache, *, clock: Callable[[], float] = time.time) -> None:
        self._cache = cache
        self._clock = clock
        self._lock = threading.RLock()
        self._listeners: dict[str, list[ChangeListener]] = {}
        self._seen: dict[str, str | None] = {}
        self._last_issued = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def signal(self, collection: str) -> str:
        key = signal_key(collection)
        with self._lock:
            stamp = max(
                int(self._clock() * 1000),
                self._last_issued + 1,
                _as_int(self._read(key)) + 1,
            )
            self._last_issued = stamp
            value = str(stamp)
            self._cache.set(key, value)
            self._seen[key] = value
        logger.debug("change_signal event=sent key=%s value=%s", key, value)
        return value

    def subscribe(self, collection: str, listener: ChangeListener) -> Callable[[], None]:
        """Register ``listener``; changes written before this call are not replayed."""
        key = signal_key(collection)
        with self._lock:
            if key not in self._seen:
                self._seen[key] = self._read(key)
            self._listeners.setdefault(key, []).append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(key, [])
                if listener in listeners:
                    listeners.remove(listener)

        return _unsubscribe

    def poll(self) -> list[str]:
        """Notify listeners of every key whose value changed; return changed collections."""
        with self._lock:
            keys = [key for key, listeners in self._listeners.items() if listeners]
        changed: list[str] = []
        for key in keys:
            value = self._read(key)
            with self._lock:
                if value is None or value == self._seen.get(key):
                    continue
                self._seen[key] = value
                listeners = list(self._listeners.get(key, []))
            collection = key[len(SIGNAL_KEY_PREFIX):]
            changed.append(collection)
            logger.debug("change_signal event=observed key=%s value=%s", key, value)
            for listener in listeners:
                listener(collection)
        return changed

    def start(self, interval_s: float) -> None:
        """Poll on a daemon thread every ``interval_s`` seconds."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                args=(interval_s,),
                daemon=True,
                name="offline-sync-signal",
            )
            self._thread.start()

    def stop(self, timeout_s: float = 2.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout_s)
        self._thread = None

    def _run(self, interval_s: float) -> None:
        while not self._stop_event.wait(interval_s):
            try:
                self.poll()
            except Exception:  # noqa: BLE001
                logger.exception("change_signal event=listener_failed")

    def _read(self, key: str) -> str | None:
        value = self._cache.get(key)
        if value is None:
            return None
        return str(value)


def _as_int(raw: str | None) -> int:
    if raw is None:
        return 0
    try:
        return int(raw)
    except ValueError:
        return 0

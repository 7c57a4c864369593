"""Wiring for one running instance (context) of the sync layer.

A context owns one cache handle, gateway, coalescer, change signal, one
``EntityService`` per entity kind and the project aggregate manager. Several
contexts may share one cache (same SQLite file, or the same in-memory cache
in tests); they learn about each other's writes only through change signals.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from offline_sync.cache import InMemoryLocalCache, LocalCache, SqliteLocalCache
from offline_sync.change_signal import ChangeSignal
from offline_sync.coalescer import SyncCoalescer, TimerFactory
from offline_sync.config.settings import Settings, get_settings
from offline_sync.gateway import RemoteGateway, TokenProvider, cache_token_provider
from offline_sync.models import (
    ENTITY_KINDS,
    Event,
    Goal,
    Habit,
    Note,
    Project,
    Task,
    TimeTracking,
)
from offline_sync.services.aggregate import AggregateConsistencyManager
from offline_sync.services.entity import EntityService

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    settings: Settings
    cache: LocalCache
    gateway: RemoteGateway
    coalescer: SyncCoalescer
    signal: ChangeSignal
    services: dict[str, EntityService[Any]]
    aggregate: AggregateConsistencyManager
    _unsubscribers: list[Callable[[], None]] = field(default_factory=list)

    @property
    def tasks(self) -> EntityService[Task]:
        return self.services["task"]

    @property
    def projects(self) -> EntityService[Project]:
        return self.services["project"]

    @property
    def events(self) -> EntityService[Event]:
        return self.services["event"]

    @property
    def notes(self) -> EntityService[Note]:
        return self.services["note"]

    @property
    def goals(self) -> EntityService[Goal]:
        return self.services["goal"]

    @property
    def habits(self) -> EntityService[Habit]:
        return self.services["habit"]

    @property
    def time_tracking(self) -> EntityService[TimeTracking]:
        return self.services["time_tracking"]

    def poll(self) -> list[str]:
        """Reload every collection a sibling context signalled since the last poll."""
        return self.signal.poll()

    def start_polling(self) -> None:
        self.signal.start(self.settings.signal_poll_interval_s)

    def close(self) -> None:
        self.signal.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.aggregate.detach()
        self.coalescer.close()


def build_context(
    settings: Settings | None = None,
    *,
    cache: LocalCache | None = None,
    gateway: RemoteGateway | None = None,
    token_provider: TokenProvider | None = None,
    timer_factory: TimerFactory | None = None,
    start_polling: bool = False,
) -> SyncContext:
    """Build a fully wired context; every collaborator can be overridden for tests."""
    resolved = settings or get_settings()
    if cache is None:
        cache_path = resolved.resolved_cache_path()
        cache = SqliteLocalCache(cache_path) if cache_path else InMemoryLocalCache()
    if gateway is None:
        gateway = RemoteGateway(
            resolved.api_url,
            timeout_s=resolved.request_timeout_s,
            token_provider=token_provider or cache_token_provider(cache, resolved.auth_token),
        )

    coalescer = SyncCoalescer(
        gateway,
        debounce_s=resolved.debounce_s,
        timer_factory=timer_factory,
    )
    signal = ChangeSignal(cache)
    services: dict[str, EntityService[Any]] = {
        name: EntityService(kind, cache=cache, gateway=gateway, coalescer=coalescer, signal=signal)
        for name, kind in ENTITY_KINDS.items()
    }
    aggregate = AggregateConsistencyManager(services["task"], services["project"])
    aggregate.attach()

    context = SyncContext(
        settings=resolved,
        cache=cache,
        gateway=gateway,
        coalescer=coalescer,
        signal=signal,
        services=services,
        aggregate=aggregate,
    )
    for service in services.values():
        context._unsubscribers.append(
            signal.subscribe(service.collection, _reload_on_signal(service))
        )
    if start_polling:
        context.start_polling()
    logger.info(
        "sync_context event=built api_url=%s collections=%d debounce_s=%s",
        gateway.base_url,
        len(services),
        resolved.debounce_s,
    )
    return context


def _reload_on_signal(service: EntityService[Any]) -> Callable[[str], None]:
    def _reload(collection: str) -> None:
        logger.info("sync_context event=reload collection=%s", collection)
        service.get_all()

    return _reload

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest

from offline_sync.cache import InMemoryLocalCache
from offline_sync.config.settings import Settings
from offline_sync.context import SyncContext, build_context
from offline_sync.models import GatewayResponse


class FakeGateway:
    """Test double for RemoteGateway: records calls, answers from a script.

    Offline by default: every unscripted call fails like a network error.
    Online mode echoes write payloads back as the remote record.
    """

    def __init__(self, *, online: bool = False) -> None:
        self.base_url = "http://remote.test/api"
        self.online = online
        self.calls: list[tuple[str, str, Any]] = []
        self.responses: dict[tuple[str, str], GatewayResponse] = {}

    def get(self, path: str) -> GatewayResponse:
        return self._handle("GET", path, None)

    def post(self, path: str, payload: Any) -> GatewayResponse:
        return self._handle("POST", path, payload)

    def put(self, path: str, payload: Any) -> GatewayResponse:
        return self._handle("PUT", path, payload)

    def delete(self, path: str) -> GatewayResponse:
        return self._handle("DELETE", path, None)

    def calls_to(self, method: str, path: str) -> list[Any]:
        return [payload for m, p, payload in self.calls if m == method and p == path]

    def _handle(self, method: str, path: str, payload: Any) -> GatewayResponse:
        self.calls.append((method, path, payload))
        scripted = self.responses.get((method, path))
        if scripted is not None:
            return scripted
        if not self.online:
            return GatewayResponse(data=None, error="Network error", status=500)
        if method == "GET":
            return GatewayResponse(data=[], status=200)
        if method == "DELETE":
            return GatewayResponse(data=None, status=200)
        if path.endswith("/sync"):
            return GatewayResponse(data=payload["data"], status=200)
        return GatewayResponse(data=payload, status=201 if method == "POST" else 200)


class ManualTimer:
    def __init__(self, delay_s: float, callback: Callable[[], None]) -> None:
        self.delay_s = delay_s
        self.callback = callback
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.callback()


class ManualTimers:
    """Timer factory whose timers only fire when a test says so."""

    def __init__(self) -> None:
        self.created: list[ManualTimer] = []

    def __call__(self, delay_s: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay_s, callback)
        self.created.append(timer)
        return timer

    def active(self) -> list[ManualTimer]:
        return [t for t in self.created if t.started and not t.cancelled and not t.fired]

    def fire_all(self) -> None:
        for timer in self.active():
            timer.fire()


@pytest.fixture
def cache() -> InMemoryLocalCache:
    return InMemoryLocalCache()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def timers() -> ManualTimers:
    return ManualTimers()


@pytest.fixture
def settings() -> Settings:
    return Settings(api_url="http://remote.test/api", debounce_s=1.0, cache_path="")


@pytest.fixture
def context(
    settings: Settings,
    cache: InMemoryLocalCache,
    gateway: FakeGateway,
    timers: ManualTimers,
) -> Iterator[SyncContext]:
    ctx = build_context(settings, cache=cache, gateway=gateway, timer_factory=timers)
    yield ctx
    ctx.close()


@pytest.fixture
def make_gateway() -> Callable[..., FakeGateway]:
    return FakeGateway


@pytest.fixture
def make_context(
    settings: Settings,
    cache: InMemoryLocalCache,
) -> Iterator[Callable[..., SyncContext]]:
    """Build extra contexts sharing the test's cache, like two open windows."""
    built: list[SyncContext] = []

    def _make(gateway: Any, timer_factory: Any = None) -> SyncContext:
        ctx = build_context(
            settings,
            cache=cache,
            gateway=gateway,
            timer_factory=timer_factory or ManualTimers(),
        )
        built.append(ctx)
        return ctx

    yield _make
    for ctx in built:
        ctx.close()

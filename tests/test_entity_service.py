from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from offline_sync import gateway as gateway_module
from offline_sync.coalescer import SyncCoalescer
from offline_sync.errors import EntityValidationError
from offline_sync.gateway import RemoteGateway
from offline_sync.models import ENTITY_KINDS, GatewayResponse, Task
from offline_sync.services.entity import EntityChange, EntityService


def _service(cache, gateway, **kwargs: Any) -> EntityService[Task]:
    return EntityService(ENTITY_KINDS["task"], cache=cache, gateway=gateway, **kwargs)


def _remote_task(task_id: str, title: str, **extra: Any) -> dict[str, Any]:
    return {
        "id": task_id,
        "title": title,
        "status": "todo",
        "priority": "medium",
        "createdAt": "2026-01-05T09:00:00Z",
        "updatedAt": "2026-01-05T09:00:00Z",
        **extra,
    }


def test_get_all_overwrites_cache_with_remote_result(cache, gateway) -> None:
    cache.set("tasks", [_remote_task("stale", "Old")])
    gateway.responses[("GET", "/tasks")] = GatewayResponse(
        data=[_remote_task("t1", "Fresh", userId="u1")], status=200
    )
    service = _service(cache, gateway)

    tasks = service.get_all()

    assert [task.id for task in tasks] == ["t1"]
    assert [item["id"] for item in cache.get("tasks")] == ["t1"]
    # Remote-only fields survive the cache round trip.
    assert cache.get("tasks")[0]["userId"] == "u1"
    assert service.error is None


def test_get_all_degrades_to_cached_snapshot(cache, gateway) -> None:
    cache.set("tasks", [_remote_task("t1", "Cached")])
    service = _service(cache, gateway)

    tasks = service.get_all()

    assert [task.title for task in tasks] == ["Cached"]
    assert service.error == "Failed to load tasks"


def test_get_all_returns_empty_list_without_cache(cache, gateway) -> None:
    assert _service(cache, gateway).get_all() == []


def test_get_all_treats_corrupt_cache_as_empty(cache, gateway) -> None:
    cache.set_raw("tasks", "[{broken")

    assert _service(cache, gateway).get_all() == []


def test_get_all_is_idempotent_without_mutation(cache, gateway) -> None:
    cache.set("tasks", [_remote_task("t1", "A"), _remote_task("t2", "B")])
    service = _service(cache, gateway)

    first = service.get_all()
    second = service.get_all()

    assert first == second


def test_get_all_keeps_unparseable_remote_rows_for_next_push(cache, gateway, timers) -> None:
    gateway.responses[("GET", "/tasks")] = GatewayResponse(
        data=[_remote_task("good", "Ok"), _remote_task("remote-only", "Blocked", status="blocked")],
        status=200,
    )
    coalescer = SyncCoalescer(gateway, timer_factory=timers)
    service = _service(cache, gateway, coalescer=coalescer, id_factory=lambda: "new")

    tasks = service.get_all()
    service.create({"title": "new"})
    coalescer.flush("tasks")

    assert [task.id for task in tasks] == ["good"]
    pushed = gateway.calls_to("POST", "/tasks/sync")[-1]["data"]
    assert [item["id"] for item in pushed] == ["good", "remote-only", "new"]
    assert pushed[1]["status"] == "blocked"


def test_get_all_falls_back_when_remote_body_is_not_utf8(
    cache, monkeypatch: pytest.MonkeyPatch
) -> None:
    class _BinaryResponse:
        status = 200

        def read(self) -> bytes:
            return b"\xff\xfe{\"data\": []}"

        def __enter__(self) -> _BinaryResponse:
            return self

        def __exit__(self, exc_type, exc, tb) -> bool:
            return False

    monkeypatch.setattr(gateway_module.request, "urlopen", lambda req, timeout: _BinaryResponse())
    cache.set("tasks", [_remote_task("t1", "Cached")])
    service = _service(cache, RemoteGateway("http://remote.test/api"))

    tasks = service.get_all()

    assert [task.id for task in tasks] == ["t1"]
    assert service.error == "Failed to load tasks"


def test_create_offline_inserts_locally_generated_entity(cache, gateway) -> None:
    service = _service(cache, gateway)

    task = service.create({"title": "x"})

    assert task.id
    assert task.status == "todo"
    assert task.created_at == task.updated_at
    assert [item["id"] for item in cache.get("tasks")] == [task.id]
    assert gateway.calls_to("POST", "/tasks")[0]["title"] == "x"


def test_create_online_keeps_remote_record(cache, gateway) -> None:
    gateway.responses[("POST", "/tasks")] = GatewayResponse(
        data=_remote_task("server-1", "x"), status=201
    )
    service = _service(cache, gateway, id_factory=lambda: "local-1")

    task = service.create({"title": "x"})

    assert task.id == "server-1"
    assert [item["id"] for item in cache.get("tasks")] == ["server-1"]


def test_create_ignores_caller_supplied_generated_fields(cache, gateway) -> None:
    service = _service(cache, gateway, id_factory=lambda: "local-1")

    task = service.create({"title": "x", "id": "forged", "createdAt": "1999-01-01T00:00:00Z"})

    assert task.id == "local-1"
    assert task.created_at.year != 1999


def test_create_rejects_blank_title_before_network(cache, gateway) -> None:
    service = _service(cache, gateway)

    with pytest.raises(EntityValidationError, match="Task title is required"):
        service.create({"title": "   "})

    assert gateway.calls == []
    assert cache.get("tasks") is None


def test_create_accepts_snake_case_fields(cache, gateway) -> None:
    task = _service(cache, gateway).create({"title": "x", "project_id": "p1", "due_date": "2026-02-01"})

    assert task.project_id == "p1"
    assert cache.get("tasks")[0]["projectId"] == "p1"
    assert cache.get("tasks")[0]["dueDate"] == "2026-02-01"


def test_update_offline_merges_patch_into_cache(cache, gateway) -> None:
    cache.set("tasks", [_remote_task("t1", "Draft")])
    fixed_now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    service = _service(cache, gateway, clock=lambda: fixed_now)

    updated = service.update("t1", {"status": "completed"})

    assert updated is not None
    assert updated.status == "completed"
    assert updated.title == "Draft"
    assert updated.updated_at == fixed_now
    assert cache.get("tasks")[0]["status"] == "completed"
    assert gateway.calls_to("PUT", "/tasks/t1")[0]["status"] == "completed"


def test_update_online_takes_server_record(cache, gateway) -> None:
    cache.set("tasks", [_remote_task("t1", "Draft")])
    gateway.responses[("PUT", "/tasks/t1")] = GatewayResponse(
        data=_remote_task("t1", "Server title", status="in_progress"), status=200
    )

    updated = _service(cache, gateway).update("t1", {"status": "completed"})

    assert updated is not None
    assert updated.title == "Server title"
    assert updated.status == "in_progress"
    assert cache.get("tasks")[0]["title"] == "Server title"


def test_update_unknown_id_offline_returns_none(cache, gateway) -> None:
    service = _service(cache, gateway)

    assert service.update("ghost", {"status": "completed"}) is None
    assert service.error == "Failed to update tasks"
    assert cache.get("tasks") is None


def test_update_rejects_blank_title(cache, gateway) -> None:
    cache.set("tasks", [_remote_task("t1", "Draft")])

    with pytest.raises(EntityValidationError):
        _service(cache, gateway).update("t1", {"title": ""})

    assert gateway.calls == []


def test_delete_removes_from_cache_even_when_remote_fails(cache, gateway) -> None:
    cache.set("tasks", [_remote_task("t1", "A"), _remote_task("t2", "B")])
    service = _service(cache, gateway)

    service.delete("t1")

    assert [item["id"] for item in cache.get("tasks")] == ["t2"]
    assert service.error == "Failed to delete tasks"


def test_get_by_id_falls_back_to_cache(cache, gateway) -> None:
    cache.set("tasks", [_remote_task("t1", "Cached")])
    service = _service(cache, gateway)

    assert service.get_by_id("t1").title == "Cached"
    assert service.get_by_id("missing") is None


def test_listeners_see_each_write(cache, gateway) -> None:
    service = _service(cache, gateway, id_factory=lambda: "t1")
    seen: list[EntityChange[Any]] = []
    unsubscribe = service.subscribe(seen.append)

    service.create({"title": "A"})
    service.update("t1", {"title": "B"})
    service.delete("t1")
    unsubscribe()
    service.create({"title": "C"})

    assert [(c.action, c.entity_id) for c in seen] == [
        ("created", "t1"),
        ("updated", "t1"),
        ("deleted", "t1"),
    ]
    assert seen[2].entity is not None and seen[2].entity.title == "B"


def test_time_tracking_requires_task_name(cache, gateway) -> None:
    service = EntityService(ENTITY_KINDS["time_tracking"], cache=cache, gateway=gateway)

    with pytest.raises(EntityValidationError, match="taskName"):
        service.create({"startTime": "2026-01-01T09:00:00Z"})

    entry = service.create({"taskName": "Deep work", "startTime": "2026-01-01T09:00:00Z"})
    assert cache.get("timeTracking")[0]["taskName"] == "Deep work"
    assert entry.start_time == "2026-01-01T09:00:00Z"


def test_update_with_invalid_field_value_raises_validation_error(cache, gateway) -> None:
    cache.set("tasks", [_remote_task("t1", "Draft")])

    with pytest.raises(EntityValidationError) as excinfo:
        _service(cache, gateway).update("t1", {"status": "done"})

    assert excinfo.value.field_name == "status"
    assert gateway.calls == []
    assert cache.get("tasks")[0]["status"] == "todo"


def test_create_with_invalid_field_value_raises_validation_error(cache, gateway) -> None:
    with pytest.raises(EntityValidationError, match="priority"):
        _service(cache, gateway).create({"title": "x", "priority": "urgent"})

    assert gateway.calls == []
    assert cache.get("tasks") is None

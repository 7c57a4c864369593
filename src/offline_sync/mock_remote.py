"""In-memory mock of the remote store's REST contract.

Serves ``{data, error}`` bodies for every collection of the entity registry,
including the full-snapshot ``POST /{collection}/sync`` endpoint with replace
semantics (upsert what is sent, delete what is missing). Used by tests and for
local development:

    uvicorn offline_sync.mock_remote:app --port 3005
"""

from __future__ import annotations

import argparse
import logging
import threading
import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from offline_sync.config.settings import configure_logging
from offline_sync.models import ENTITY_KINDS, EntityKind

logger = logging.getLogger(__name__)

KINDS_BY_SEGMENT: dict[str, EntityKind] = {
    kind.path.strip("/"): kind for kind in ENTITY_KINDS.values()
}


class SyncRequest(BaseModel):
    data: list[dict[str, Any]] = Field(default_factory=list)


class MockRemoteStore:
    """Thread-safe in-memory collections keyed by REST path segment."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._collections: dict[str, dict[str, dict[str, Any]]] = {
            segment: {} for segment in KINDS_BY_SEGMENT
        }
        # When True every collection route answers 503.
        self.unavailable = False
        self.sync_calls: list[tuple[str, list[dict[str, Any]]]] = []

    def list_items(self, segment: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(item) for item in self._collections[segment].values()]

    def get_item(self, segment: str, item_id: str) -> dict[str, Any] | None:
        with self._lock:
            item = self._collections[segment].get(item_id)
            return dict(item) if item is not None else None

    def create_item(self, segment: str, payload: dict[str, Any]) -> dict[str, Any]:
        now = _utc_now()
        item = {**payload}
        item.setdefault("id", str(uuid.uuid4()))
        item.setdefault("createdAt", now)
        item["updatedAt"] = now
        with self._lock:
            self._collections[segment][item["id"]] = item
        return dict(item)

    def update_item(self, segment: str, item_id: str, payload: dict[str, Any]) -> dict[str, Any] | None:
        with self._lock:
            current = self._collections[segment].get(item_id)
            if current is None:
                return None
            updated = {**current, **payload, "id": item_id, "updatedAt": _utc_now()}
            self._collections[segment][item_id] = updated
            return dict(updated)

    def delete_item(self, segment: str, item_id: str) -> bool:
        with self._lock:
            return self._collections[segment].pop(item_id, None) is not None

    def replace_collection(self, segment: str, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Upsert every item and delete anything not present in ``items``."""
        with self._lock:
            self.sync_calls.append((segment, [dict(item) for item in items]))
            replaced: dict[str, dict[str, Any]] = {}
            for item in items:
                item_id = item.get("id")
                if not item_id:
                    continue
                replaced[str(item_id)] = {**self._collections[segment].get(str(item_id), {}), **item}
            removed = set(self._collections[segment]) - set(replaced)
            self._collections[segment] = replaced
        logger.info(
            "mock_remote event=sync collection=%s items=%d removed=%d",
            segment,
            len(replaced),
            len(removed),
        )
        return [dict(item) for item in replaced.values()]


def create_mock_remote_app(
    store: MockRemoteStore | None = None,
    *,
    required_token: str | None = None,
) -> FastAPI:
    """Build the mock app; ``required_token`` enables bearer checks on collection routes."""
    remote = store or MockRemoteStore()

    def _check_access(authorization: str | None = Header(default=None)) -> None:
        if remote.unavailable:
            raise HTTPException(status_code=503, detail="Service unavailable")
        if required_token is not None and authorization != f"Bearer {required_token}":
            raise HTTPException(status_code=401, detail="Unauthorized")

    def _kind(segment: str) -> EntityKind:
        kind = KINDS_BY_SEGMENT.get(segment)
        if kind is None:
            raise HTTPException(status_code=404, detail=f"Unknown collection: {segment}")
        return kind

    router = APIRouter(dependencies=[Depends(_check_access)])

    @router.get("/{segment}")
    def list_items(segment: str) -> dict[str, Any]:
        _kind(segment)
        return {"data": remote.list_items(segment), "error": None}

    @router.get("/{segment}/{item_id}")
    def get_item(segment: str, item_id: str) -> dict[str, Any]:
        _kind(segment)
        item = remote.get_item(segment, item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Not found")
        return {"data": item, "error": None}

    @router.post("/{segment}/sync")
    def sync_items(segment: str, payload: SyncRequest) -> dict[str, Any]:
        _kind(segment)
        return {"data": remote.replace_collection(segment, payload.data), "error": None}

    @router.post("/{segment}", status_code=201)
    def create_item(segment: str, payload: dict[str, Any]) -> dict[str, Any]:
        kind = _kind(segment)
        required = payload.get(kind.required_field)
        if not isinstance(required, str) or not required.strip():
            raise HTTPException(status_code=400, detail=f"{kind.required_field} is required")
        return {"data": remote.create_item(segment, payload), "error": None}

    @router.put("/{segment}/{item_id}")
    def update_item(segment: str, item_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        _kind(segment)
        item = remote.update_item(segment, item_id, payload)
        if item is None:
            raise HTTPException(status_code=404, detail="Not found")
        return {"data": item, "error": None}

    @router.delete("/{segment}/{item_id}")
    def delete_item(segment: str, item_id: str) -> dict[str, Any]:
        _kind(segment)
        if not remote.delete_item(segment, item_id):
            raise HTTPException(status_code=404, detail="Not found")
        return {"data": {"id": item_id}, "error": None}

    app = FastAPI(title="offline_sync mock remote", version="0.1.0")
    app.state.store = remote

    @app.exception_handler(HTTPException)
    def _http_error(_request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"data": None, "error": exc.detail})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(router, prefix="/api")
    return app


def _utc_now() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the in-memory mock remote store.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=3005)
    parser.add_argument("--token", default=None, help="Require this bearer token.")
    args = parser.parse_args()

    import uvicorn

    configure_logging()
    uvicorn.run(create_mock_remote_app(required_token=args.token), host=args.host, port=args.port)


# Module-level app for `uvicorn offline_sync.mock_remote:app`.
app = create_mock_remote_app()


if __name__ == "__main__":
    main()

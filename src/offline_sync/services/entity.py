"""Read-through / write-through entity service, one instance per entity kind.

Beginner terms:
- Read-through: ``get_all`` asks the remote store first and refreshes the
  cache; when the remote store fails it serves the last cached snapshot.
- Optimistic write: ``create``/``update``/``delete`` always change the cache,
  whether or not the remote call succeeded. Callers always get an entity back
  and are not told which path produced it.

After each write the service notifies in-process listeners (the aggregate
manager), enqueues a full-collection push on the coalescer and raises the
cross-context change signal for its collection.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Generic, Literal, TypeVar, cast

from pydantic import ValidationError

from offline_sync.cache.base import LocalCache
from offline_sync.change_signal import ChangeSignal
from offline_sync.coalescer import SyncCoalescer
from offline_sync.errors import EntityValidationError
from offline_sync.gateway import RemoteGateway
from offline_sync.models import GENERATED_FIELDS, BaseEntity, EntityKind

logger = logging.getLogger(__name__)

TEntity = TypeVar("TEntity", bound=BaseEntity)
ChangeAction = Literal["created", "updated", "deleted"]


@dataclass(frozen=True)
class EntityChange(Generic[TEntity]):
    """One completed cache write, delivered to listeners synchronously."""

    collection: str
    action: ChangeAction
    entity_id: str
    # None only for deletes of an id that was not cached.
    entity: TEntity | None


EntityListener = Callable[[EntityChange[Any]], None]


class EntityService(Generic[TEntity]):
    """Cache-first CRUD for one collection, degrading to local data on remote failure."""

    def __init__(
        self,
        kind: EntityKind,
        *,
        cache: LocalCache,
        gateway: RemoteGateway,
        coalescer: SyncCoalescer | None = None,
        signal: ChangeSignal | None = None,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.kind = kind
        self.model = cast(type[TEntity], kind.model)
        self.collection = kind.collection
        self._cache = cache
        self._gateway = gateway
        self._coalescer = coalescer
        self._signal = signal
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._clock = clock or (lambda: datetime.now(UTC))
        self._listeners: list[EntityListener] = []
        self._error: str | None = None
        if coalescer is not None:
            coalescer.register(self.collection, kind.sync_path)

    @property
    def error(self) -> str | None:
        """Most recent coarse failure message for this collection."""
        return self._error

    def clear_error(self) -> None:
        self._error = None

    def subscribe(self, listener: EntityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def get_all(self) -> list[TEntity]:
        response = self._gateway.get(self.kind.path)
        if response.ok and isinstance(response.data, list):
            # Rows that fail validation stay cached so the next full push keeps them.
            self._cache.set(self.collection, response.data)
            entities = self._parse_many(response.data)
            self._error = None
            logger.debug(
                "entity_read event=remote collection=%s count=%d",
                self.collection,
                len(entities),
            )
            return entities

        self._error = f"Failed to load {self.collection}"
        cached = self.cached()
        logger.warning(
            "entity_read event=cache_fallback collection=%s status=%d error=%s count=%d",
            self.collection,
            response.status,
            response.error,
            len(cached),
        )
        return cached

    def get_by_id(self, entity_id: str) -> TEntity | None:
        response = self._gateway.get(f"{self.kind.path}/{entity_id}")
        if response.ok:
            remote = self._parse_one(response.data)
            if remote is not None:
                return remote
        for entity in self.cached():
            if entity.id == entity_id:
                return entity
        return None

    def cached(self) -> list[TEntity]:
        """Current cache snapshot without touching the network."""
        return self._parse_many(self._cached_raw())

    def create(self, fields: Mapping[str, Any]) -> TEntity:
        values = {
            key: value
            for key, value in self.model.wire_keys(dict(fields)).items()
            if key not in GENERATED_FIELDS
        }
        self._require(values, self.kind.required_field)
        now = self._clock()
        candidate = self._validate_input(
            {**values, "id": self._id_factory(), "createdAt": now, "updatedAt": now}
        )

        response = self._gateway.post(self.kind.path, candidate.to_wire())
        remote = self._parse_one(response.data) if response.ok else None
        entity = remote if remote is not None else candidate
        self._upsert_cached(entity)
        logger.info(
            "entity_write event=create collection=%s id=%s source=%s",
            self.collection,
            entity.id,
            "remote" if remote is not None else "local",
        )
        self._after_write("created", entity.id, entity)
        return entity

    def update(self, entity_id: str, patch: Mapping[str, Any]) -> TEntity | None:
        changes = {
            key: value
            for key, value in self.model.wire_keys(dict(patch)).items()
            if key not in ("id", "createdAt")
        }
        if self.kind.required_field in changes:
            self._require(changes, self.kind.required_field)
        now = self._clock()

        current = self._find_raw(entity_id)
        merged: TEntity | None = None
        if current is not None:
            merged = self._validate_input({**current, **changes, "updatedAt": now})
            payload = merged.to_wire()
        else:
            payload = {**changes, "id": entity_id, "updatedAt": now.isoformat()}

        response = self._gateway.put(f"{self.kind.path}/{entity_id}", payload)
        remote = self._parse_one(response.data) if response.ok else None
        entity = remote if remote is not None else merged
        if entity is None:
            self._error = f"Failed to update {self.collection}"
            logger.warning(
                "entity_write event=update_missing collection=%s id=%s status=%d",
                self.collection,
                entity_id,
                response.status,
            )
            return None

        self._upsert_cached(entity)
        logger.info(
            "entity_write event=update collection=%s id=%s source=%s",
            self.collection,
            entity.id,
            "remote" if remote is not None else "local",
        )
        self._after_write("updated", entity.id, entity)
        return entity

    def delete(self, entity_id: str) -> None:
        removed_raw = self._find_raw(entity_id)
        response = self._gateway.delete(f"{self.kind.path}/{entity_id}")
        if not response.ok:
            self._error = f"Failed to delete {self.collection}"
            logger.warning(
                "entity_write event=delete_remote_failed collection=%s id=%s status=%d error=%s",
                self.collection,
                entity_id,
                response.status,
                response.error,
            )

        remaining = [item for item in self._cached_raw() if item.get("id") != entity_id]
        self._cache.set(self.collection, remaining)
        removed = self._parse_one(removed_raw) if removed_raw is not None else None
        logger.info(
            "entity_write event=delete collection=%s id=%s cached=%s",
            self.collection,
            entity_id,
            removed is not None,
        )
        self._after_write("deleted", entity_id, removed)

    def _after_write(self, action: ChangeAction, entity_id: str, entity: TEntity | None) -> None:
        change = EntityChange(
            collection=self.collection,
            action=action,
            entity_id=entity_id,
            entity=entity,
        )
        for listener in list(self._listeners):
            listener(change)
        if self._coalescer is not None:
            self._coalescer.enqueue(self.collection, self._cached_raw())
        if self._signal is not None:
            self._signal.signal(self.collection)

    def _require(self, values: Mapping[str, Any], field_name: str) -> None:
        value = values.get(field_name)
        if not isinstance(value, str) or not value.strip():
            raise EntityValidationError(
                self.collection,
                field_name,
                f"{self.model.__name__} {field_name} is required",
            )

    def _validate_input(self, data: dict[str, Any]) -> TEntity:
        try:
            return self.model.model_validate(data)
        except ValidationError as exc:
            first = exc.errors()[0]
            field_name = ".".join(str(part) for part in first["loc"]) or self.collection
            raise EntityValidationError(
                self.collection,
                field_name,
                f"{self.model.__name__} {field_name}: {first['msg']}",
            ) from exc

    def _cached_raw(self) -> list[dict[str, Any]]:
        raw = self._cache.get(self.collection)
        if not isinstance(raw, list):
            return []
        return [item for item in raw if isinstance(item, dict)]

    def _find_raw(self, entity_id: str) -> dict[str, Any] | None:
        for item in self._cached_raw():
            if item.get("id") == entity_id:
                return item
        return None

    def _upsert_cached(self, entity: TEntity) -> None:
        items = self._cached_raw()
        wire = entity.to_wire()
        for index, item in enumerate(items):
            if item.get("id") == entity.id:
                items[index] = wire
                break
        else:
            items.append(wire)
        self._cache.set(self.collection, items)

    def _parse_one(self, raw: Any) -> TEntity | None:
        if not isinstance(raw, dict):
            return None
        try:
            return self.model.model_validate(raw)
        except ValidationError as exc:
            logger.warning(
                "entity_parse event=invalid collection=%s id=%s errors=%d",
                self.collection,
                raw.get("id"),
                exc.error_count(),
            )
            return None

    def _parse_many(self, raw_items: list[Any]) -> list[TEntity]:
        parsed: list[TEntity] = []
        for raw in raw_items:
            entity = self._parse_one(raw)
            if entity is not None:
                parsed.append(entity)
        return parsed

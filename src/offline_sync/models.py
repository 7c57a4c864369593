"""Pydantic models for cached entities and gateway responses.

Terms used in this file:
- Wire form: the camelCase JSON shape used by the remote store and the cache.
- Entity kind: one collection (tasks, projects, ...) with its cache key and REST path.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TaskStatus = Literal["todo", "in_progress", "completed"]
ProjectStatus = Literal["active", "completed", "archived"]
GoalStatus = Literal["not_started", "in_progress", "completed", "archived"]
Priority = Literal["low", "medium", "high"]
EventType = Literal["meeting", "task", "reminder"]
NoteCategory = Literal["work", "personal", "idea", "other"]
Frequency = Literal["daily", "weekly", "monthly"]
TimeOfDay = Literal["morning", "afternoon", "evening", "anytime"]

# Fields generated by the sync layer on create; callers never supply them.
GENERATED_FIELDS = ("id", "createdAt", "updatedAt")


class SyncModel(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        # Keep remote-only fields (userId, notes, ...) through a cache round trip.
        extra="allow",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def wire_keys(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Rename snake_case field names in ``data`` to their wire aliases."""
        renamed: dict[str, Any] = {}
        for key, value in data.items():
            field = cls.model_fields.get(key)
            if field is not None and field.alias:
                key = field.alias
            renamed[key] = value
        return renamed


class BaseEntity(SyncModel):
    id: str
    created_at: datetime
    updated_at: datetime


class Task(BaseEntity):
    title: str
    description: str | None = None
    status: TaskStatus = "todo"
    priority: Priority = "medium"
    due_date: str | None = None
    # Weak reference; a project embeds copies of its tasks separately.
    project_id: str | None = None
    user_id: str | None = None


class Project(BaseEntity):
    title: str
    description: str | None = None
    status: ProjectStatus = "active"
    priority: Priority = "medium"
    start_date: str | None = None
    end_date: str | None = None
    progress: int = Field(default=0, ge=0, le=100)
    tasks: list[Task] = Field(default_factory=list)
    members: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    color: str | None = None
    user_id: str | None = None


class Event(BaseEntity):
    title: str
    date: str
    time: str | None = None
    type: EventType = "task"
    user_id: str | None = None


class Note(BaseEntity):
    title: str
    content: str | None = None
    category: NoteCategory = "other"
    tags: list[str] = Field(default_factory=list)
    color: str | None = None
    is_pinned: bool = False
    related_task_id: str | None = None
    related_project_id: str | None = None
    user_id: str | None = None


class Goal(BaseEntity):
    title: str
    description: str | None = None
    start_date: str | None = None
    due_date: str | None = None
    priority: Priority = "medium"
    progress: int = Field(default=0, ge=0, le=100)
    status: GoalStatus = "not_started"
    user_id: str | None = None


class Habit(BaseEntity):
    title: str
    description: str | None = None
    frequency: Frequency = "daily"
    time_of_day: TimeOfDay = "anytime"
    streak: int = Field(default=0, ge=0)
    user_id: str | None = None


class TimeTracking(BaseEntity):
    task_name: str
    start_time: str
    end_time: str | None = None
    duration: int | None = None
    user_id: str | None = None


class GatewayResponse(BaseModel):
    """Normalized result of one remote call: never an exception."""

    data: Any = None
    error: str | None = None
    status: int

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status < 300


@dataclass(frozen=True)
class EntityKind:
    """Static description of one entity collection."""

    name: str
    model: type[BaseEntity]
    collection: str
    path: str
    required_field: str = "title"

    @property
    def sync_path(self) -> str:
        return f"{self.path}/sync"


ENTITY_KINDS: dict[str, EntityKind] = {
    kind.name: kind
    for kind in (
        EntityKind("task", Task, "tasks", "/tasks"),
        EntityKind("project", Project, "projects", "/projects"),
        EntityKind("event", Event, "events", "/events"),
        EntityKind("note", Note, "notes", "/notes"),
        EntityKind("goal", Goal, "goals", "/goals"),
        EntityKind("habit", Habit, "habits", "/habits"),
        EntityKind(
            "time_tracking",
            TimeTracking,
            "timeTracking",
            "/timetracking",
            required_field="taskName",
        ),
    )
}

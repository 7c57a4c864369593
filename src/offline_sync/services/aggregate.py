"""Keeps each project's embedded task copies and progress in step with the task collection.

The global ``tasks`` collection is the source of truth. Every cached project
also stores copies of its tasks plus a completion percentage; this manager
rewrites those copies inside the same call that changed the task, so the two
views agree once the task write returns.

Progress rule: 0 for an empty task list, otherwise
``round(100 * completed / total)`` rounded half up.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from offline_sync.models import Project, Task
from offline_sync.services.entity import EntityChange, EntityService

logger = logging.getLogger(__name__)


def compute_progress(tasks: Sequence[Task]) -> int:
    total = len(tasks)
    if total == 0:
        return 0
    completed = sum(1 for task in tasks if task.status == "completed")
    # Integer form of floor(100 * completed / total + 0.5).
    return (200 * completed + total) // (2 * total)


def check_invariant(project: Project) -> bool:
    return project.progress == compute_progress(project.tasks)


class AggregateConsistencyManager:
    """Recomputes project aggregates whenever a task or project is written."""

    def __init__(self, tasks: EntityService[Task], projects: EntityService[Project]) -> None:
        self._tasks = tasks
        self._projects = projects
        self._unsubscribers: list[Callable[[], None]] = []

    def attach(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self._tasks.subscribe(self.on_task_change),
            self._projects.subscribe(self.on_project_change),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def on_task_change(self, change: EntityChange[Any]) -> None:
        if change.action == "deleted":
            self.unlink_task(change.entity_id)
        elif change.entity is not None:
            self.sync_task(change.entity)

    def on_project_change(self, change: EntityChange[Any]) -> None:
        if change.action == "deleted":
            self.unlink_project(change.entity_id)

    def sync_task(self, task: Task) -> list[Project]:
        """Refresh, link or unlink ``task`` in every cached project it concerns.

        A task whose ``projectId`` moves away from a project (to another project,
        or to None after being linked) is removed from that project. Embedded
        copies that never carried a ``projectId`` are only refreshed.
        """
        updated: list[Project] = []
        for project in self._projects.cached():
            embedded = next((item for item in project.tasks if item.id == task.id), None)
            moved_away = (
                embedded is not None
                and task.project_id != project.id
                and (task.project_id is not None or embedded.project_id == project.id)
            )
            if moved_away:
                tasks = [item for item in project.tasks if item.id != task.id]
            elif embedded is not None:
                tasks = [task if item.id == task.id else item for item in project.tasks]
            elif task.project_id == project.id:
                tasks = [*project.tasks, task]
            else:
                continue
            persisted = self._persist(project, tasks)
            if persisted is not None:
                updated.append(persisted)
        return updated

    def unlink_task(self, task_id: str) -> list[Project]:
        """Drop a deleted task from every project embedding it."""
        updated: list[Project] = []
        for project in self._projects.cached():
            if not any(item.id == task_id for item in project.tasks):
                continue
            tasks = [item for item in project.tasks if item.id != task_id]
            persisted = self._persist(project, tasks)
            if persisted is not None:
                updated.append(persisted)
        return updated

    def unlink_project(self, project_id: str) -> list[Task]:
        """Clear ``projectId`` on tasks of a deleted project; tasks are kept."""
        unlinked: list[Task] = []
        for task in self._tasks.cached():
            if task.project_id != project_id:
                continue
            result = self._tasks.update(task.id, {"projectId": None})
            if result is not None:
                unlinked.append(result)
        logger.info(
            "aggregate event=project_unlinked project_id=%s tasks=%d",
            project_id,
            len(unlinked),
        )
        return unlinked

    def add_task(self, project_id: str, task: Task) -> Project:
        if self._find_project(project_id) is None:
            raise KeyError(f"Project {project_id} not found")
        linked = None
        if task.project_id != project_id:
            # The task write re-enters sync_task, which appends the copy.
            linked = self._tasks.update(task.id, {"projectId": project_id})
        if linked is None:
            self.sync_task(task.model_copy(update={"project_id": project_id}))
        return self._require_project(project_id)

    def remove_task(self, project_id: str, task_id: str) -> Project:
        project = self._require_project(project_id)
        tasks = [item for item in project.tasks if item.id != task_id]
        self._persist(project, tasks)
        for task in self._tasks.cached():
            if task.id == task_id and task.project_id == project_id:
                self._tasks.update(task_id, {"projectId": None})
        return self._require_project(project_id)

    def _persist(self, project: Project, tasks: list[Task]) -> Project | None:
        progress = compute_progress(tasks)
        logger.info(
            "aggregate event=recompute project_id=%s tasks=%d progress=%d previous=%d",
            project.id,
            len(tasks),
            progress,
            project.progress,
        )
        return self._projects.update(
            project.id,
            {"tasks": [item.to_wire() for item in tasks], "progress": progress},
        )

    def _find_project(self, project_id: str) -> Project | None:
        for project in self._projects.cached():
            if project.id == project_id:
                return project
        return None

    def _require_project(self, project_id: str) -> Project:
        project = self._find_project(project_id)
        if project is None:
            raise KeyError(f"Project {project_id} not found")
        return project

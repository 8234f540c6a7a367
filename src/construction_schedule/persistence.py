from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import yaml

from .engine import ScheduleEngine
from .parse_schedule import parse_calendar, parse_tasks, task_to_dict
from .schedule_models import ScheduleChange, Task
from .scheduling import ConflictError, InvalidInputError, NotFoundError
from .work_calendar import WorkCalendar

logger = logging.getLogger(__name__)


class TaskRepository(Protocol):
    """
    Storage the engine's callers persist through.

    The engine itself never performs I/O; it hands back a ScheduleChange and
    `apply_change` replays it against a repository. Saves are rejected with
    ConflictError when the stored task is not older than the incoming one.
    """

    def load_tasks(self, project_id: str) -> list[Task]: ...

    def add_task(self, project_id: str, task: Task) -> None: ...

    def save_task(self, project_id: str, task: Task) -> None: ...

    def delete_task(self, project_id: str, task_id: str) -> None: ...


def _check_save(stored: Task | None, task: Task) -> None:
    if stored is None:
        raise NotFoundError(f"task '{task.id}' does not exist", task_id=task.id)
    if stored.version >= task.version:
        raise ConflictError(task.id, task.version - 1, stored.version)


class InMemoryTaskRepository:
    """Dictionary-backed repository, mostly for tests and scripting."""

    def __init__(self) -> None:
        self._projects: dict[str, dict[str, Task]] = {}

    def load_tasks(self, project_id: str) -> list[Task]:
        return [task.copy() for task in self._projects.get(project_id, {}).values()]

    def add_task(self, project_id: str, task: Task) -> None:
        tasks = self._projects.setdefault(project_id, {})
        if task.id in tasks:
            raise InvalidInputError(f"task id '{task.id}' already exists", task_id=task.id)
        tasks[task.id] = task.copy()

    def save_task(self, project_id: str, task: Task) -> None:
        tasks = self._projects.get(project_id, {})
        _check_save(tasks.get(task.id), task)
        tasks[task.id] = task.copy()

    def delete_task(self, project_id: str, task_id: str) -> None:
        tasks = self._projects.get(project_id, {})
        if task_id not in tasks:
            raise NotFoundError(f"task '{task_id}' does not exist", task_id=task_id)
        del tasks[task_id]


class YamlTaskRepository:
    """
    Keeps each project in ``<directory>/<project_id>.yaml``.

    Files use the schedule document layout; sections other than ``tasks``
    (calendar, project) are preserved on write, and `load_calendar` reads the
    calendar back so engines built over the file use its working days.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, project_id: str) -> Path:
        return self.directory / f"{project_id}.yaml"

    def load_tasks(self, project_id: str) -> list[Task]:
        document = self._read(project_id)
        return parse_tasks(document.get("tasks"))

    def load_calendar(self, project_id: str) -> tuple[WorkCalendar, bool]:
        """The stored ``calendar`` section as (calendar, same_day_handoff)."""
        document = self._read(project_id)
        return parse_calendar(document.get("calendar"))

    def add_task(self, project_id: str, task: Task) -> None:
        document = self._read(project_id)
        tasks = document.setdefault("tasks", []) or []
        if any(raw.get("id") == task.id for raw in tasks):
            raise InvalidInputError(f"task id '{task.id}' already exists", task_id=task.id)
        tasks.append(task_to_dict(task))
        document["tasks"] = tasks
        self._write(project_id, document)

    def save_task(self, project_id: str, task: Task) -> None:
        document = self._read(project_id)
        tasks = document.get("tasks") or []
        stored = {raw["id"]: idx for idx, raw in enumerate(tasks)}
        existing = None
        if task.id in stored:
            existing = parse_tasks([tasks[stored[task.id]]])[0]
        _check_save(existing, task)
        tasks[stored[task.id]] = task_to_dict(task)
        self._write(project_id, document)

    def delete_task(self, project_id: str, task_id: str) -> None:
        document = self._read(project_id)
        tasks = document.get("tasks") or []
        remaining = [raw for raw in tasks if raw.get("id") != task_id]
        if len(remaining) == len(tasks):
            raise NotFoundError(f"task '{task_id}' does not exist", task_id=task_id)
        document["tasks"] = remaining
        self._write(project_id, document)

    def _read(self, project_id: str) -> dict:
        path = self.path_for(project_id)
        if not path.exists():
            return {"project": {"id": project_id}, "tasks": []}
        with path.open("r", encoding="utf-8") as fh:
            document = yaml.safe_load(fh) or {}
        if not isinstance(document, dict):
            raise InvalidInputError(f"{path}: expected mapping at top level")
        return document

    def _write(self, project_id: str, document: dict) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        with self.path_for(project_id).open("w", encoding="utf-8") as fh:
            yaml.safe_dump(document, fh, sort_keys=False, allow_unicode=True)


def apply_change(
    repository: TaskRepository, project_id: str, engine: ScheduleEngine, change: ScheduleChange
) -> None:
    """Persist the diff described by `change` using the engine's current snapshot."""

    for task_id in change.removed:
        repository.delete_task(project_id, task_id)
    for task_id in change.created:
        repository.add_task(project_id, engine.get_task(task_id))
    for task_id in change.changed:
        repository.save_task(project_id, engine.get_task(task_id))
    logger.debug(
        "Persisted project %s: %d created, %d changed, %d removed",
        project_id,
        len(change.created),
        len(change.changed),
        len(change.removed),
    )


def load_engine(
    repository: TaskRepository,
    project_id: str,
    calendar: WorkCalendar | None = None,
    same_day_handoff: bool | None = None,
) -> ScheduleEngine:
    """
    Build an engine over a fresh snapshot of the project's stored tasks.

    Repositories that keep a calendar (``load_calendar``) supply it and the
    handoff policy unless the caller passes them explicitly.
    """

    load_calendar = getattr(repository, "load_calendar", None)
    if load_calendar is not None and (calendar is None or same_day_handoff is None):
        stored_calendar, stored_handoff = load_calendar(project_id)
        calendar = calendar or stored_calendar
        same_day_handoff = stored_handoff if same_day_handoff is None else same_day_handoff
    return ScheduleEngine(
        repository.load_tasks(project_id),
        calendar=calendar,
        same_day_handoff=bool(same_day_handoff),
        project_id=project_id,
    )

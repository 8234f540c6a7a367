from __future__ import annotations

import datetime as _dt
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Iterable, Iterator

from .schedule_models import DependencyViolation, Edge, ScheduleChange, Task, TaskStatus, TradeType
from .scheduling import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    assert_no_cycles,
    check_new_edge,
    find_violations,
    schedule_successors,
    successors_map,
    toposort,
)
from .work_calendar import WorkCalendar

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset(
    {"name", "trade_type", "status", "assigned_to", "notes", "sort_order", "start_date", "duration_days"}
)


def coerce_trade(value: Any) -> TradeType:
    try:
        return TradeType(value)
    except ValueError as exc:
        raise InvalidInputError(f"unknown trade type {value!r}") from exc


def coerce_status(value: Any) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError as exc:
        raise InvalidInputError(f"unknown task status {value!r}") from exc


def coerce_date(value: Any) -> _dt.date:
    """Accept a date or a YYYY-MM-DD string."""
    if isinstance(value, _dt.datetime):
        return value.date()
    if isinstance(value, _dt.date):
        return value
    if isinstance(value, str):
        try:
            return _dt.date.fromisoformat(value)
        except ValueError as exc:
            raise InvalidInputError(f"invalid date '{value}', expected YYYY-MM-DD") from exc
    raise InvalidInputError(f"invalid date {value!r}, expected YYYY-MM-DD")


def _coerce_name(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError("task name must be a non-empty string")
    return value


def _coerce_text(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInputError(f"{field_name} must be a string")
    return value or None


@contextmanager
def _attributed_to(task_id: str | None) -> Iterator[None]:
    """Tag InvalidInputErrors from the coercion and calendar helpers with `task_id`."""
    try:
        yield
    except InvalidInputError as exc:
        if exc.task_id is None:
            exc.task_id = task_id
        raise


class ScheduleEngine:
    """
    Owns one project's tasks and keeps their dates and links consistent.

    Every mutating operation is applied to a working copy and committed only
    when it completes, so a raised ScheduleError leaves the engine unchanged.
    Operations that edit one task accept `expected_version` for optimistic
    concurrency. Downstream tasks are never shifted implicitly: moves and
    resizes report DependencyViolations and `auto_schedule` is the opt-in fix.
    """

    def __init__(
        self,
        tasks: Iterable[Task] = (),
        calendar: WorkCalendar | None = None,
        same_day_handoff: bool = False,
        project_id: str | None = None,
    ) -> None:
        self.calendar = calendar or WorkCalendar()
        self.same_day_handoff = same_day_handoff
        self.project_id = project_id
        self._tasks: dict[str, Task] = {}

        for task in tasks:
            if task.id in self._tasks:
                raise InvalidInputError(f"duplicate task id '{task.id}'", task_id=task.id)
            loaded = task.copy()
            with _attributed_to(loaded.id):
                loaded.name = _coerce_name(loaded.name)
                loaded.trade_type = coerce_trade(loaded.trade_type)
                loaded.status = coerce_status(loaded.status)
                loaded.start_date, loaded.end_date = self.calendar.project(
                    coerce_date(loaded.start_date), loaded.duration_days
                )
            loaded.dependencies = list(dict.fromkeys(loaded.dependencies))
            self._tasks[loaded.id] = loaded

        for task in self._tasks.values():
            if task.id in task.dependencies:
                raise InvalidInputError(f"task '{task.id}' depends on itself", task_id=task.id)
            for dep_id in task.dependencies:
                if dep_id not in self._tasks:
                    raise NotFoundError(
                        f"task '{task.id}' depends on unknown task '{dep_id}'",
                        task_id=task.id,
                        edge=Edge(dep_id, task.id),
                    )
        assert_no_cycles(self._tasks)

    # Queries

    @property
    def tasks(self) -> list[Task]:
        """Snapshot of all tasks ordered for display."""
        ordered = sorted(self._tasks.values(), key=lambda t: t.sort_order)
        return [task.copy() for task in ordered]

    @property
    def edges(self) -> list[Edge]:
        return [Edge(dep_id, task.id) for task in self.tasks for dep_id in task.dependencies]

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def get_task(self, task_id: str) -> Task:
        return self._require(self._tasks, task_id).copy()

    def predecessors(self, task_id: str) -> list[str]:
        return list(self._require(self._tasks, task_id).dependencies)

    def successors(self, task_id: str) -> list[str]:
        self._require(self._tasks, task_id)
        return successors_map(self._tasks)[task_id]

    def topological_order(self) -> list[str]:
        return toposort(self._tasks)

    def violations(self) -> list[DependencyViolation]:
        """Every finish-to-start violation currently in the schedule."""
        return find_violations(self._tasks, same_day_handoff=self.same_day_handoff)

    def project_span(self) -> tuple[_dt.date | None, _dt.date | None]:
        """Earliest start and latest finish across all tasks."""
        if not self._tasks:
            return None, None
        return (
            min(task.start_date for task in self._tasks.values()),
            max(task.end_date for task in self._tasks.values()),
        )

    # Mutations

    def add_task(
        self,
        name: str,
        start_date: _dt.date | str,
        duration_days: int,
        trade_type: TradeType | str = TradeType.OTHER,
        status: TaskStatus | str = TaskStatus.NOT_STARTED,
        dependencies: Iterable[str] = (),
        assigned_to: str | None = None,
        notes: str | None = None,
        task_id: str | None = None,
        sort_order: int | None = None,
    ) -> ScheduleChange:
        """Create a task, deriving its end date from the calendar."""

        task_id = task_id or uuid.uuid4().hex
        with self._editing(task_id) as working:
            if task_id in working:
                raise InvalidInputError(f"task id '{task_id}' already exists", task_id=task_id)

            deps: list[str] = []
            for dep_id in dependencies:
                if dep_id == task_id:
                    raise InvalidInputError(f"task '{task_id}' cannot depend on itself", task_id=task_id)
                if dep_id not in working:
                    raise NotFoundError(
                        f"dependency '{dep_id}' does not exist", task_id=dep_id, edge=Edge(dep_id, task_id)
                    )
                if dep_id not in deps:
                    deps.append(dep_id)

            start, end = self.calendar.project(coerce_date(start_date), duration_days)
            if sort_order is None:
                sort_order = max((t.sort_order for t in working.values()), default=-1) + 1

            task = Task(
                id=task_id,
                name=_coerce_name(name),
                start_date=start,
                duration_days=duration_days,
                end_date=end,
                trade_type=coerce_trade(trade_type),
                status=coerce_status(status),
                dependencies=deps,
                assigned_to=_coerce_text(assigned_to, "assigned_to"),
                notes=_coerce_text(notes, "notes"),
                sort_order=sort_order,
            )
            working[task_id] = task
            assert_no_cycles(working)

        logger.debug("Added task %s (%s to %s)", task_id, start, end)
        return self._result(task_id, created=[task_id])

    def move_task(
        self, task_id: str, new_start_date: _dt.date | str, expected_version: int | None = None
    ) -> ScheduleChange:
        """Drag-move: shift the start and recompute the end; dependents stay put."""

        with self._editing(task_id) as working:
            task = self._require_version(working, task_id, expected_version)
            task.start_date, task.end_date = self.calendar.project(coerce_date(new_start_date), task.duration_days)
            task.version += 1

        logger.debug("Moved task %s to %s", task_id, task.start_date)
        return self._result(task_id, changed=[task_id])

    def resize_task(
        self, task_id: str, new_duration_days: int, expected_version: int | None = None
    ) -> ScheduleChange:
        """Drag-resize: change the duration keeping the existing start."""

        with self._editing(task_id) as working:
            task = self._require_version(working, task_id, expected_version)
            unchanged = task.duration_days == new_duration_days
            task.start_date, task.end_date = self.calendar.project(task.start_date, new_duration_days)
            task.duration_days = new_duration_days
            if not unchanged:
                task.version += 1

        logger.debug("Resized task %s to %s working days", task_id, new_duration_days)
        return self._result(task_id, changed=[] if unchanged else [task_id])

    def resize_task_to(
        self, task_id: str, new_end_date: _dt.date | str, expected_version: int | None = None
    ) -> ScheduleChange:
        """Drag-resize by end date: the duration becomes the working days up to it."""

        current = self._require(self._tasks, task_id)
        with _attributed_to(task_id):
            end = coerce_date(new_end_date)
            duration = self.calendar.working_days_between(current.start_date, end)
        if duration <= 0:
            raise InvalidInputError(
                f"end date {end} leaves task '{task_id}' with no working days", task_id=task_id
            )
        return self.resize_task(task_id, duration, expected_version)

    def create_dependency(
        self, source_id: str, target_id: str, expected_version: int | None = None
    ) -> ScheduleChange:
        """Make `target_id` wait for `source_id` to finish. Versions refer to the target."""

        edge = Edge(source_id, target_id)
        if source_id == target_id:
            raise InvalidInputError(f"task '{source_id}' cannot depend on itself", task_id=source_id, edge=edge)

        with self._editing(target_id) as working:
            self._require(working, source_id)
            target = self._require_version(working, target_id, expected_version)
            if source_id in target.dependencies:
                raise InvalidInputError(f"dependency {edge} already exists", task_id=target_id, edge=edge)
            check_new_edge(working, source_id, target_id)
            target.dependencies.append(source_id)
            target.version += 1

        logger.debug("Linked %s", edge)
        return self._result(target_id, changed=[target_id])

    def remove_dependency(
        self, source_id: str, target_id: str, expected_version: int | None = None
    ) -> ScheduleChange:
        edge = Edge(source_id, target_id)
        with self._editing(target_id) as working:
            target = self._require_version(working, target_id, expected_version)
            if source_id not in target.dependencies:
                raise NotFoundError(f"dependency {edge} does not exist", task_id=target_id, edge=edge)
            target.dependencies.remove(source_id)
            target.version += 1

        logger.debug("Unlinked %s", edge)
        return self._result(target_id, changed=[target_id])

    def remove_task(self, task_id: str, expected_version: int | None = None) -> ScheduleChange:
        """
        Delete a task and strip it from every other task's dependencies.

        Unknown ids raise NotFoundError. Tasks that lost a predecessor are
        reported as changed so the caller can persist them.
        """

        with self._editing(task_id) as working:
            self._require_version(working, task_id, expected_version)
            del working[task_id]
            changed: list[str] = []
            for other in working.values():
                if task_id in other.dependencies:
                    other.dependencies = [dep for dep in other.dependencies if dep != task_id]
                    other.version += 1
                    changed.append(other.id)

        logger.debug("Removed task %s (unlinked %d dependents)", task_id, len(changed))
        return ScheduleChange(task=None, changed=changed, removed=[task_id])

    def set_status(
        self, task_id: str, status: TaskStatus | str, expected_version: int | None = None
    ) -> ScheduleChange:
        with self._editing(task_id) as working:
            task = self._require_version(working, task_id, expected_version)
            task.status = coerce_status(status)
            task.version += 1
        return self._result(task_id, changed=[task_id])

    def update_task(self, task_id: str, expected_version: int | None = None, **fields: Any) -> ScheduleChange:
        """
        Apply a field edit from a task form.

        Accepts the keys in EDITABLE_FIELDS. Start date or duration changes
        recompute the end date like a move or resize would.
        """

        unknown = sorted(set(fields) - EDITABLE_FIELDS)
        if unknown:
            raise InvalidInputError(f"unexpected fields {unknown}", task_id=task_id)

        with self._editing(task_id) as working:
            task = self._require_version(working, task_id, expected_version)
            before = task.copy()
            if "name" in fields:
                task.name = _coerce_name(fields["name"])
            if "trade_type" in fields:
                task.trade_type = coerce_trade(fields["trade_type"])
            if "status" in fields:
                task.status = coerce_status(fields["status"])
            if "assigned_to" in fields:
                task.assigned_to = _coerce_text(fields["assigned_to"], "assigned_to")
            if "notes" in fields:
                task.notes = _coerce_text(fields["notes"], "notes")
            if "sort_order" in fields:
                if not isinstance(fields["sort_order"], int):
                    raise InvalidInputError("sort_order must be an integer", task_id=task_id)
                task.sort_order = fields["sort_order"]
            if "start_date" in fields or "duration_days" in fields:
                start = coerce_date(fields.get("start_date", task.start_date))
                duration = fields.get("duration_days", task.duration_days)
                task.start_date, task.end_date = self.calendar.project(start, duration)
                task.duration_days = duration
            unchanged = task == before
            if not unchanged:
                task.version += 1

        return self._result(task_id, changed=[] if unchanged else [task_id])

    def auto_schedule(self, task_id: str | None = None, expected_version: int | None = None) -> ScheduleChange:
        """
        Shift successors forward until every finish-to-start link holds.

        With `task_id` only tasks downstream of it move; otherwise the whole
        schedule is resolved. Tasks are never pulled earlier. `expected_version`
        refers to the `task_id` task and needs one to be given.
        """

        if expected_version is not None and task_id is None:
            raise InvalidInputError("expected_version requires a task id")

        with self._editing(task_id) as working:
            if task_id is not None:
                self._require_version(working, task_id, expected_version)
            roots = None if task_id is None else [task_id]
            shifted = schedule_successors(working, self.calendar, roots, self.same_day_handoff)
            for shifted_id in shifted:
                working[shifted_id].version += 1

        if shifted:
            logger.info("Auto-scheduled %d task(s): %s", len(shifted), ", ".join(shifted))
        change = ScheduleChange(
            task=self._tasks[task_id].copy() if task_id is not None else None,
            changed=shifted,
            violations=self.violations(),
        )
        return change

    # Internals

    @contextmanager
    def _editing(self, task_id: str | None = None) -> Iterator[dict[str, Task]]:
        working = {task.id: task.copy() for task in self._tasks.values()}
        with _attributed_to(task_id):
            yield working
        self._tasks = working

    @staticmethod
    def _require(tasks: dict[str, Task], task_id: str) -> Task:
        task = tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"task '{task_id}' does not exist", task_id=task_id)
        return task

    def _require_version(self, tasks: dict[str, Task], task_id: str, expected_version: int | None) -> Task:
        task = self._require(tasks, task_id)
        if expected_version is not None and expected_version != task.version:
            raise ConflictError(task_id, expected_version, task.version)
        return task

    def _result(
        self, task_id: str, changed: list[str] | None = None, created: list[str] | None = None
    ) -> ScheduleChange:
        violations = find_violations(self._tasks, [task_id], self.same_day_handoff)
        for violation in violations:
            logger.info("Dependency violation: %s", violation.message)
        return ScheduleChange(
            task=self._tasks[task_id].copy(),
            created=created or [],
            changed=changed or [],
            violations=violations,
        )

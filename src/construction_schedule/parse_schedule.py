from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .engine import ScheduleEngine, coerce_status, coerce_trade
from .schedule_models import Task
from .scheduling import InvalidInputError
from .work_calendar import DEFAULT_NON_WORKING_DAYS, WEEKDAY_NAMES, StartPolicy, WorkCalendar

TASK_KEYS = {
    "id",
    "name",
    "trade_type",
    "start_date",
    "duration_days",
    "end_date",
    "dependencies",
    "status",
    "assigned_to",
    "notes",
    "sort_order",
    "version",
}
CALENDAR_KEYS = {"non_working_days", "holidays", "start_policy", "same_day_handoff"}


@dataclass(frozen=True)
class _Path:
    """Helper to produce readable YAML path strings like tasks[0].start_date."""

    parts: tuple[str, ...] = ()

    def child(self, segment: str) -> "_Path":
        return _Path(self.parts + (segment,))

    def __str__(self) -> str:  # pragma: no cover - trivial
        return ".".join(self.parts) if self.parts else "root"


def load_schedule(path: str | Path) -> ScheduleEngine:
    """Load a schedule document from YAML and build an engine from it."""

    with open(path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)

    return parse_schedule(raw)


def save_schedule(engine: ScheduleEngine, path: str | Path, name: str | None = None) -> None:
    """Write the engine's tasks and calendar back as a YAML schedule document."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as fh:
        yaml.safe_dump(dump_schedule(engine, name=name), fh, sort_keys=False, allow_unicode=True)


def parse_schedule(data: Any) -> ScheduleEngine:
    path = _Path()
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidInputError(f"{path}: expected mapping at top level")
    _assert_allowed_keys(data, {"project", "calendar", "tasks"}, path)

    project_id = None
    project_raw = data.get("project")
    if project_raw is not None:
        if not isinstance(project_raw, dict):
            raise InvalidInputError(f"{path.child('project')}: expected mapping")
        _assert_allowed_keys(project_raw, {"id", "name"}, path.child("project"))
        if "id" in project_raw:
            project_id = _require_str(project_raw, "id", path.child("project"))

    calendar, same_day_handoff = parse_calendar(data.get("calendar"), path.child("calendar"))
    tasks = parse_tasks(data.get("tasks"), path)
    return ScheduleEngine(tasks, calendar=calendar, same_day_handoff=same_day_handoff, project_id=project_id)


def parse_calendar(data: Any, path: _Path = _Path(("calendar",))) -> tuple[WorkCalendar, bool]:
    if data is None:
        return WorkCalendar(), False
    if not isinstance(data, dict):
        raise InvalidInputError(f"{path}: expected mapping for calendar")
    _assert_allowed_keys(data, CALENDAR_KEYS, path)

    names_raw = data.get("non_working_days")
    if names_raw is None:
        names = [WEEKDAY_NAMES[day] for day in sorted(DEFAULT_NON_WORKING_DAYS)]
    elif isinstance(names_raw, list) and all(isinstance(name, str) for name in names_raw):
        names = names_raw
    else:
        raise InvalidInputError(f"{path.child('non_working_days')}: expected list of weekday names")

    holidays_raw = data.get("holidays") or []
    if not isinstance(holidays_raw, list):
        raise InvalidInputError(f"{path.child('holidays')}: expected list of dates")
    holidays = [_parse_date(value, path.child(f"holidays[{idx}]")) for idx, value in enumerate(holidays_raw)]

    handoff = data.get("same_day_handoff", False)
    if not isinstance(handoff, bool):
        raise InvalidInputError(f"{path.child('same_day_handoff')}: expected boolean")

    try:
        calendar = WorkCalendar.from_names(names, holidays, data.get("start_policy", StartPolicy.SNAP))
    except InvalidInputError as exc:
        raise InvalidInputError(f"{path}: {exc}") from exc
    return calendar, handoff


def parse_tasks(data: Any, path: _Path = _Path()) -> list[Task]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise InvalidInputError(f"{path}.tasks: expected list")
    return [_parse_task(raw, path.child(f"tasks[{idx}]"), idx) for idx, raw in enumerate(data)]


def _parse_task(data: Any, path: _Path, position: int) -> Task:
    if not isinstance(data, dict):
        raise InvalidInputError(f"{path}: expected mapping for task")
    _assert_allowed_keys(data, TASK_KEYS, path)

    task_id = _require_str(data, "id", path)
    name = _require_str(data, "name", path)
    start_date = _parse_date(_require_value(data, "start_date", path), path.child("start_date"))

    duration_days = _require_value(data, "duration_days", path)
    if isinstance(duration_days, bool) or not isinstance(duration_days, int) or duration_days <= 0:
        raise InvalidInputError(f"{path.child('duration_days')}: expected positive integer")

    deps_raw = data.get("dependencies") or []
    if not isinstance(deps_raw, list):
        raise InvalidInputError(f"{path.child('dependencies')}: expected list of task ids")
    dependencies: list[str] = []
    for idx, dep in enumerate(deps_raw):
        if not isinstance(dep, str):
            raise InvalidInputError(f"{path.child(f'dependencies[{idx}]')}: expected string task id")
        if dep not in dependencies:
            dependencies.append(dep)

    try:
        trade_type = coerce_trade(data.get("trade_type", "other"))
        status = coerce_status(data.get("status", "not_started"))
    except InvalidInputError as exc:
        raise InvalidInputError(f"{path}: {exc}", task_id=task_id) from exc

    for key in ("sort_order", "version"):
        if key in data and (isinstance(data[key], bool) or not isinstance(data[key], int)):
            raise InvalidInputError(f"{path.child(key)}: expected integer")

    return Task(
        id=task_id,
        name=name,
        start_date=start_date,
        duration_days=duration_days,
        # Derived again by the engine; stored values are informational.
        end_date=start_date,
        trade_type=trade_type,
        status=status,
        dependencies=dependencies,
        assigned_to=_optional_str(data, "assigned_to", path),
        notes=_optional_str(data, "notes", path),
        sort_order=data.get("sort_order", position),
        version=data.get("version", 1),
    )


def dump_schedule(engine: ScheduleEngine, name: str | None = None) -> dict[str, Any]:
    """Serialise an engine to the document structure read by parse_schedule."""

    document: dict[str, Any] = {}
    project: dict[str, Any] = {}
    if engine.project_id:
        project["id"] = engine.project_id
    if name:
        project["name"] = name
    if project:
        document["project"] = project
    calendar = engine.calendar
    document["calendar"] = {
        "non_working_days": calendar.non_working_names,
        "holidays": [day.isoformat() for day in sorted(calendar.holidays)],
        "start_policy": calendar.start_policy.value,
        "same_day_handoff": engine.same_day_handoff,
    }
    document["tasks"] = [task_to_dict(task) for task in engine.tasks]
    return document


def task_to_dict(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "name": task.name,
        "trade_type": task.trade_type.value,
        "start_date": task.start_date.isoformat(),
        "duration_days": task.duration_days,
        "end_date": task.end_date.isoformat(),
        "dependencies": list(task.dependencies),
        "status": task.status.value,
        "assigned_to": task.assigned_to,
        "notes": task.notes,
        "sort_order": task.sort_order,
        "version": task.version,
    }


def _assert_allowed_keys(data: dict[str, Any], allowed: set[str], path: _Path) -> None:
    extras = sorted(set(data.keys()) - allowed)
    if extras:
        raise InvalidInputError(f"{path}: unexpected fields {extras}")


def _require_str(data: dict[str, Any], key: str, path: _Path) -> str:
    value = _require_value(data, key, path)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{path.child(key)}: expected non-empty string")
    return value


def _optional_str(data: dict[str, Any], key: str, path: _Path) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInputError(f"{path.child(key)}: expected string")
    return value or None


def _require_value(data: dict[str, Any], key: str, path: _Path) -> Any:
    if key not in data:
        raise InvalidInputError(f"{path}: missing required field '{key}'")
    return data[key]


def _parse_date(value: Any, path: _Path) -> _dt.date:
    # safe_load already turns unquoted ISO dates into date objects.
    if isinstance(value, _dt.date) and not isinstance(value, _dt.datetime):
        return value
    if not isinstance(value, str):
        raise InvalidInputError(f"{path}: expected YYYY-MM-DD string")
    try:
        parsed = _dt.date.fromisoformat(value)
    except ValueError as exc:
        raise InvalidInputError(f"{path}: expected YYYY-MM-DD string") from exc
    return parsed

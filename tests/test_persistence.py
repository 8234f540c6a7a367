import datetime as dt

import pytest
import yaml

from construction_schedule.engine import ScheduleEngine
from construction_schedule.parse_schedule import load_schedule
from construction_schedule.persistence import (
    InMemoryTaskRepository,
    YamlTaskRepository,
    apply_change,
    load_engine,
)
from construction_schedule.scheduling import ConflictError, NotFoundError
from construction_schedule.work_calendar import StartPolicy

MONDAY = dt.date(2024, 1, 1)


@pytest.fixture(params=["memory", "yaml"])
def repository(request, tmp_path):
    if request.param == "memory":
        return InMemoryTaskRepository()
    return YamlTaskRepository(tmp_path / "projects")


def _seed(repository):
    engine = load_engine(repository, "kitchen")
    apply_change(repository, "kitchen", engine, engine.add_task("Demo", MONDAY, 5, task_id="A"))
    change = engine.add_task("Framing", dt.date(2024, 1, 8), 3, task_id="B", dependencies=["A"])
    apply_change(repository, "kitchen", engine, change)
    return engine


def test_changes_round_trip_through_repository(repository):
    engine = _seed(repository)
    apply_change(repository, "kitchen", engine, engine.move_task("B", dt.date(2024, 1, 9)))

    reloaded = load_engine(repository, "kitchen")

    assert [task.id for task in reloaded.tasks] == ["A", "B"]
    assert reloaded.get_task("B") == engine.get_task("B")
    assert reloaded.get_task("B").version == 2


def test_remove_task_deletes_and_saves_dependents(repository):
    engine = _seed(repository)

    apply_change(repository, "kitchen", engine, engine.remove_task("A"))

    stored = repository.load_tasks("kitchen")
    assert [task.id for task in stored] == ["B"]
    assert stored[0].dependencies == []


def test_stale_writer_gets_conflict(repository):
    _seed(repository)
    first = load_engine(repository, "kitchen")
    second = load_engine(repository, "kitchen")

    apply_change(repository, "kitchen", first, first.move_task("B", dt.date(2024, 1, 10)))

    with pytest.raises(ConflictError):
        apply_change(repository, "kitchen", second, second.set_status("B", "in_progress"))


def test_missing_tasks_are_not_found(repository):
    engine = ScheduleEngine()
    task = engine.add_task("Orphan", MONDAY, 1, task_id="X").task

    with pytest.raises(NotFoundError):
        repository.save_task("kitchen", task)
    with pytest.raises(NotFoundError):
        repository.delete_task("kitchen", "X")


def test_unknown_project_loads_empty(repository):
    assert repository.load_tasks("nowhere") == []


def test_yaml_repository_preserves_and_applies_calendar_section(tmp_path):
    directory = tmp_path / "projects"
    directory.mkdir()
    path = directory / "kitchen.yaml"
    path.write_text(
        yaml.safe_dump({"project": {"id": "kitchen"}, "calendar": {"holidays": ["2024-01-03"]}, "tasks": []}),
        encoding="utf-8",
    )
    repository = YamlTaskRepository(directory)
    engine = load_engine(repository, "kitchen")

    change = engine.add_task("Demo", MONDAY, 5, task_id="A")
    apply_change(repository, "kitchen", engine, change)

    assert change.task.end_date == dt.date(2024, 1, 8)
    assert load_engine(repository, "kitchen").get_task("A").end_date == dt.date(2024, 1, 8)
    assert load_schedule(path).get_task("A").end_date == dt.date(2024, 1, 8)
    document = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert document["calendar"] == {"holidays": ["2024-01-03"]}
    assert [raw["id"] for raw in document["tasks"]] == ["A"]


def test_yaml_repository_reads_handoff_policy(tmp_path):
    repository = YamlTaskRepository(tmp_path)
    repository.path_for("kitchen").write_text(
        yaml.safe_dump({"calendar": {"same_day_handoff": True, "start_policy": "anchor"}}),
        encoding="utf-8",
    )

    calendar, same_day_handoff = repository.load_calendar("kitchen")

    assert same_day_handoff is True
    assert calendar.start_policy is StartPolicy.ANCHOR
    assert load_engine(repository, "kitchen").same_day_handoff is True
    assert load_engine(repository, "kitchen", same_day_handoff=False).same_day_handoff is False

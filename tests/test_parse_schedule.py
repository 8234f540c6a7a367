import datetime as dt
import textwrap

import pytest

from construction_schedule.parse_schedule import dump_schedule, load_schedule, parse_schedule, save_schedule
from construction_schedule.schedule_models import TradeType
from construction_schedule.scheduling import CycleDetectedError, InvalidInputError, NotFoundError
from construction_schedule.work_calendar import StartPolicy

SCHEDULE_YAML = textwrap.dedent(
    """
    project:
      id: kitchen
      name: Kitchen remodel
    calendar:
      non_working_days: [saturday, sunday]
      holidays: [2024-01-03]
      start_policy: snap
    tasks:
      - id: demo
        name: Kitchen demo
        trade_type: demolition
        start_date: 2024-01-01
        duration_days: 3
      - id: plumbing
        name: Rough-in plumbing
        trade_type: plumbing
        start_date: "2024-01-05"
        duration_days: 2
        dependencies: [demo]
        assigned_to: Acme Plumbing
    """
)


def _write(tmp_path, text):
    path = tmp_path / "schedule.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_schedule_builds_engine_with_calendar(tmp_path):
    engine = load_schedule(_write(tmp_path, SCHEDULE_YAML))

    assert engine.project_id == "kitchen"
    assert engine.calendar.holidays == frozenset({dt.date(2024, 1, 3)})
    demo = engine.get_task("demo")
    assert demo.trade_type is TradeType.DEMOLITION
    # The holiday on Wednesday pushes the third working day to Thursday.
    assert demo.end_date == dt.date(2024, 1, 4)
    plumbing = engine.get_task("plumbing")
    assert plumbing.end_date == dt.date(2024, 1, 8)
    assert plumbing.assigned_to == "Acme Plumbing"
    assert engine.violations() == []


def test_empty_document_gives_empty_engine():
    engine = parse_schedule(None)

    assert len(engine) == 0
    assert engine.calendar.start_policy is StartPolicy.SNAP


@pytest.mark.parametrize(
    "document, message",
    [
        ({"tasks": [{"id": "a", "name": "A", "start_date": "2024-01-01"}]}, "missing required field 'duration_days'"),
        (
            {"tasks": [{"id": "a", "name": "A", "start_date": "2024-01-01", "duration_days": 0}]},
            "tasks[0].duration_days",
        ),
        (
            {"tasks": [{"id": "a", "name": "A", "start_date": "Jan 1", "duration_days": 1}]},
            "tasks[0].start_date",
        ),
        (
            {"tasks": [{"id": "a", "name": "A", "start_date": "2024-01-01", "duration_days": 1, "colour": "x"}]},
            "unexpected fields ['colour']",
        ),
        (
            {"tasks": [{"id": "a", "name": "A", "start_date": "2024-01-01", "duration_days": 1, "trade_type": "x"}]},
            "unknown trade type",
        ),
        ({"calendar": {"non_working_days": ["caturday"]}}, "unknown weekday"),
        ({"calendar": {"start_policy": "later"}}, "unknown start policy"),
        ({"extra": 1}, "unexpected fields ['extra']"),
    ],
)
def test_invalid_documents_report_path(document, message):
    with pytest.raises(InvalidInputError) as exc:
        parse_schedule(document)

    assert message in str(exc.value)


def test_unknown_dependency_is_not_found():
    document = {
        "tasks": [{"id": "a", "name": "A", "start_date": "2024-01-01", "duration_days": 1, "dependencies": ["b"]}]
    }

    with pytest.raises(NotFoundError):
        parse_schedule(document)


def test_cyclic_document_is_rejected():
    document = {
        "tasks": [
            {"id": "a", "name": "A", "start_date": "2024-01-01", "duration_days": 1, "dependencies": ["b"]},
            {"id": "b", "name": "B", "start_date": "2024-01-01", "duration_days": 1, "dependencies": ["a"]},
        ]
    }

    with pytest.raises(CycleDetectedError):
        parse_schedule(document)


def test_save_then_load_keeps_tasks_and_calendar(tmp_path):
    engine = load_schedule(_write(tmp_path, SCHEDULE_YAML))
    engine.move_task("plumbing", dt.date(2024, 1, 9))
    out = tmp_path / "out" / "saved.yaml"

    save_schedule(engine, out, name="Kitchen remodel")
    reloaded = load_schedule(out)

    assert reloaded.get_task("plumbing") == engine.get_task("plumbing")
    assert reloaded.calendar == engine.calendar
    assert dump_schedule(reloaded, name="Kitchen remodel")["project"] == {"id": "kitchen", "name": "Kitchen remodel"}

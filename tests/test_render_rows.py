import datetime as dt

from construction_schedule.engine import ScheduleEngine
from construction_schedule.render_rows import to_chart_data, to_render_rows


def _engine():
    engine = ScheduleEngine()
    engine.add_task("Demo", dt.date(2024, 1, 1), 5, trade_type="demolition", task_id="A", status="completed")
    engine.add_task("Wiring", dt.date(2024, 1, 8), 2, trade_type="electrical", task_id="B", dependencies=["A"])
    return engine


def test_render_rows_follow_display_order():
    engine = _engine()
    engine.update_task("A", sort_order=5)

    rows = to_render_rows(engine)

    assert [(row.order, row.task_id) for row in rows] == [(0, "B"), (1, "A")]
    assert rows[0].depends_on == ["A"]
    assert rows[0].color == "#eab308"


def test_chart_data_contains_tasks_and_finish_to_start_links():
    payload = to_chart_data(_engine())

    assert payload["data"][0] == {
        "id": "A",
        "text": "Demo",
        "start_date": "2024-01-01",
        "end_date": "2024-01-05",
        "duration": 5,
        "trade_type": "demolition",
        "status": "completed",
        "color": "#ef4444",
        "progress": 1.0,
    }
    assert payload["data"][1]["progress"] == 0.0
    assert payload["links"] == [{"id": "B-A", "source": "A", "target": "B", "type": "0"}]

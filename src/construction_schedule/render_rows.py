from __future__ import annotations

from typing import Any, List

from .engine import ScheduleEngine
from .schedule_models import TRADE_COLORS, ChartRow, Task

LINK_FINISH_TO_START = "0"
"""Link type code chart widgets use for finish-to-start."""


def to_render_rows(engine: ScheduleEngine) -> list[ChartRow]:
    """
    Convert the engine's tasks into a flat list of chart rows.

    Rows follow the tasks' display order; each row carries the trade colour,
    derived progress and the ids it depends on.
    """

    rows: List[ChartRow] = []
    for order, task in enumerate(engine.tasks):
        rows.append(_row_for(task, order))
    return rows


def _row_for(task: Task, order: int) -> ChartRow:
    return ChartRow(
        order=order,
        task_id=task.id,
        name=task.name,
        trade_type=task.trade_type,
        status=task.status,
        color=TRADE_COLORS[task.trade_type],
        progress=task.progress,
        start_date=task.start_date,
        end_date=task.end_date,
        duration_days=task.duration_days,
        depends_on=list(task.dependencies),
    )


def to_chart_data(engine: ScheduleEngine) -> dict[str, list[dict[str, Any]]]:
    """
    Build the ``{"data": [...], "links": [...]}`` payload a Gantt widget parses.

    Dates are ISO strings; link ids are ``"<target>-<source>"``.
    """

    data = [
        {
            "id": row.task_id,
            "text": row.name,
            "start_date": row.start_date.isoformat(),
            "end_date": row.end_date.isoformat(),
            "duration": row.duration_days,
            "trade_type": row.trade_type.value,
            "status": row.status.value,
            "color": row.color,
            "progress": row.progress,
        }
        for row in to_render_rows(engine)
    ]
    links = [
        {
            "id": f"{edge.target}-{edge.source}",
            "source": edge.source,
            "target": edge.target,
            "type": LINK_FINISH_TO_START,
        }
        for edge in engine.edges
    ]
    return {"data": data, "links": links}

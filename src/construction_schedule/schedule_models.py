from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum


class TradeType(str, Enum):
    """Construction trade a task belongs to. Classification only."""

    DEMOLITION = "demolition"
    FRAMING = "framing"
    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"
    HVAC = "hvac"
    INSULATION = "insulation"
    DRYWALL = "drywall"
    PAINTING = "painting"
    FLOORING = "flooring"
    ROOFING = "roofing"
    CABINETS = "cabinets"
    COUNTERTOPS = "countertops"
    TILE = "tile"
    TRIM = "trim"
    LANDSCAPING = "landscaping"
    CONCRETE = "concrete"
    OTHER = "other"


class TaskStatus(str, Enum):
    """Progress state of a task; never gates scheduling."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DELAYED = "delayed"


TRADE_COLORS: dict[TradeType, str] = {
    TradeType.DEMOLITION: "#ef4444",
    TradeType.FRAMING: "#f97316",
    TradeType.PLUMBING: "#3b82f6",
    TradeType.ELECTRICAL: "#eab308",
    TradeType.HVAC: "#06b6d4",
    TradeType.INSULATION: "#ec4899",
    TradeType.DRYWALL: "#8b5cf6",
    TradeType.PAINTING: "#10b981",
    TradeType.FLOORING: "#84cc16",
    TradeType.ROOFING: "#78716c",
    TradeType.CABINETS: "#a855f7",
    TradeType.COUNTERTOPS: "#14b8a6",
    TradeType.TILE: "#f43f5e",
    TradeType.TRIM: "#6366f1",
    TradeType.LANDSCAPING: "#22c55e",
    TradeType.CONCRETE: "#64748b",
    TradeType.OTHER: "#94a3b8",
}


@dataclass
class Task:
    """Schedulable unit of work that renders as a bar on the chart."""

    id: str
    name: str
    start_date: date
    duration_days: int
    end_date: date
    trade_type: TradeType = TradeType.OTHER
    status: TaskStatus = TaskStatus.NOT_STARTED
    dependencies: list[str] = field(default_factory=list)
    assigned_to: str | None = None
    notes: str | None = None
    sort_order: int = 0
    version: int = 1

    @property
    def progress(self) -> float:
        """Fraction complete as shown on the chart, derived from status."""
        if self.status is TaskStatus.COMPLETED:
            return 1.0
        if self.status is TaskStatus.IN_PROGRESS:
            return 0.5
        return 0.0

    def copy(self) -> "Task":
        return Task(
            id=self.id,
            name=self.name,
            start_date=self.start_date,
            duration_days=self.duration_days,
            end_date=self.end_date,
            trade_type=self.trade_type,
            status=self.status,
            dependencies=list(self.dependencies),
            assigned_to=self.assigned_to,
            notes=self.notes,
            sort_order=self.sort_order,
            version=self.version,
        )


@dataclass(frozen=True)
class Edge:
    """Finish-to-start link: `target` may not start before `source` finishes."""

    source: str
    target: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.source} -> {self.target}"


@dataclass(frozen=True)
class DependencyViolation:
    """
    Non-fatal report that a successor starts before its predecessor's finish.

    Returned next to a successful edit; the caller decides whether to
    auto-schedule or just warn.
    """

    source: str
    target: str
    source_end: date
    target_start: date

    @property
    def edge(self) -> Edge:
        return Edge(self.source, self.target)

    @property
    def message(self) -> str:
        return (
            f"Task '{self.target}' starts {self.target_start} "
            f"before predecessor '{self.source}' finishes {self.source_end}"
        )

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.message


@dataclass
class ScheduleChange:
    """
    Outcome of a committed engine operation.

    `created` lists new ids to insert, `changed` lists ids whose stored state
    must be saved and `removed` lists ids to delete; together they form the
    diff handed to persistence.
    """

    task: Task | None = None
    created: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    violations: list[DependencyViolation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when the edit left no finish-to-start violations behind."""
        return not self.violations


@dataclass
class ChartRow:
    """
    Flattened view of a task used by chart widgets.

    Only the fields relevant to drawing are kept: position, label, trade
    colour, date boundaries and incoming links.
    """

    order: int
    task_id: str
    name: str
    trade_type: TradeType
    status: TaskStatus
    color: str
    progress: float
    start_date: date
    end_date: date
    duration_days: int
    depends_on: list[str] = field(default_factory=list)

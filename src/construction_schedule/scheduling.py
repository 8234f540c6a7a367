from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Iterable, Mapping

from .schedule_models import DependencyViolation, Edge, Task

if TYPE_CHECKING:
    from .work_calendar import WorkCalendar


class ScheduleError(Exception):
    """Base for rejected schedule operations; the collection is left unchanged."""

    def __init__(self, message: str, task_id: str | None = None, edge: Edge | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.edge = edge


class InvalidInputError(ScheduleError):
    """Raised for non-positive durations, malformed dates, bad enum values or self-links."""


class NotFoundError(ScheduleError):
    """Raised when an operation references an unknown task id or link."""


class CycleDetectedError(ScheduleError):
    """Raised when a proposed dependency would close a cycle."""

    def __init__(self, message: str, cycle: "Cycle", edge: Edge | None = None) -> None:
        super().__init__(message, task_id=edge.target if edge else None, edge=edge)
        self.cycle = cycle


class ConflictError(ScheduleError):
    """Raised when the caller's version token does not match the stored task."""

    def __init__(self, task_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Task '{task_id}' was modified (expected version {expected}, found {actual})",
            task_id=task_id,
        )
        self.expected = expected
        self.actual = actual


@dataclass(frozen=True)
class Cycle:
    """Represents a detected cycle path for error reporting."""

    path: list[str]

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return " -> ".join(self.path)


def find_cycle(order: list[str], dependencies: Mapping[str, Iterable[str]]) -> Cycle | None:
    """Return the first dependency cycle found walking `order`, or None."""

    state: dict[str, str] = {}
    stack: list[str] = []
    positions: dict[str, int] = {}

    def dfs(node_id: str) -> Cycle | None:
        state[node_id] = "visiting"
        positions[node_id] = len(stack)
        stack.append(node_id)

        for dep_id in dependencies.get(node_id, []):
            dep_state = state.get(dep_id)
            if dep_state == "visiting":
                cycle_path = stack[positions[dep_id] :] + [dep_id]
                return Cycle(cycle_path)
            if dep_state is None:
                found = dfs(dep_id)
                if found:
                    return found

        stack.pop()
        positions.pop(node_id, None)
        state[node_id] = "done"
        return None

    for node_id in order:
        if state.get(node_id) is None:
            found = dfs(node_id)
            if found:
                return found
    return None


def dependency_path(tasks: Mapping[str, Task], start_id: str, goal_id: str) -> list[str] | None:
    """
    Return the chain of ids from `start_id` to `goal_id` following dependencies.

    Iterative DFS; each task is expanded at most once, so the search is bounded
    by the task count and terminates on self-references and unknown ids.
    """

    parents: dict[str, str | None] = {start_id: None}
    stack = [start_id]
    while stack:
        current = stack.pop()
        if current == goal_id:
            path: list[str] = []
            node: str | None = current
            while node is not None:
                path.append(node)
                node = parents[node]
            return path[::-1]
        task = tasks.get(current)
        if task is None:
            continue
        for dep_id in task.dependencies:
            if dep_id not in parents:
                parents[dep_id] = current
                stack.append(dep_id)
    return None


def check_new_edge(tasks: Mapping[str, Task], source_id: str, target_id: str) -> None:
    """Raise CycleDetectedError if making `target_id` depend on `source_id` closes a cycle."""

    # The edge closes a cycle when source already (transitively) depends on target.
    path = dependency_path(tasks, source_id, target_id)
    if path is not None:
        cycle = Cycle([target_id] + path)
        raise CycleDetectedError(f"Dependency cycle detected: {cycle}", cycle, edge=Edge(source_id, target_id))


def assert_no_cycles(tasks: Mapping[str, Task]) -> None:
    order = list(tasks)
    dependencies = {task_id: list(task.dependencies) for task_id, task in tasks.items()}
    cycle = find_cycle(order, dependencies)
    if cycle:
        raise CycleDetectedError(f"Dependency cycle detected: {cycle}", cycle)


def successors_map(tasks: Mapping[str, Task]) -> dict[str, list[str]]:
    dependents: dict[str, list[str]] = {task_id: [] for task_id in tasks}
    for task in tasks.values():
        for dep_id in task.dependencies:
            dependents.setdefault(dep_id, []).append(task.id)
    return dependents


def toposort(tasks: Mapping[str, Task]) -> list[str]:
    # Preserve input order by using the incoming iteration order for seeds and adjacency.
    dependents = successors_map(tasks)
    indegree: dict[str, int] = {task_id: len(task.dependencies) for task_id, task in tasks.items()}

    queue = deque([task_id for task_id in tasks if indegree[task_id] == 0])
    result: list[str] = []

    while queue:
        current = queue.popleft()
        result.append(current)
        for child in dependents.get(current, []):
            indegree[child] -= 1
            if indegree[child] == 0:
                queue.append(child)

    if len(result) != len(tasks):
        cycle = find_cycle(list(tasks), {t.id: t.dependencies for t in tasks.values()})
        raise CycleDetectedError("Cycle detected during toposort", cycle or Cycle([]))

    return result


def satisfies(source: Task, target: Task, same_day_handoff: bool = False) -> bool:
    """True when `target` starts late enough after `source` finishes."""
    if same_day_handoff:
        return target.start_date >= source.end_date
    return target.start_date > source.end_date


def find_violations(
    tasks: Mapping[str, Task],
    task_ids: Iterable[str] | None = None,
    same_day_handoff: bool = False,
) -> list[DependencyViolation]:
    """
    Return finish-to-start violations on edges touching `task_ids`.

    With no ids every edge in the graph is checked. Results are ordered by
    target then source as they appear in the collection.
    """

    focus = None if task_ids is None else set(task_ids)
    violations: list[DependencyViolation] = []
    for target in tasks.values():
        for source_id in target.dependencies:
            if focus is not None and target.id not in focus and source_id not in focus:
                continue
            source = tasks[source_id]
            if not satisfies(source, target, same_day_handoff):
                violations.append(
                    DependencyViolation(
                        source=source_id,
                        target=target.id,
                        source_end=source.end_date,
                        target_start=target.start_date,
                    )
                )
    return violations


def earliest_start(
    tasks: Mapping[str, Task], task: Task, calendar: WorkCalendar, same_day_handoff: bool = False
) -> date | None:
    """Earliest compliant start for `task` given its predecessors, or None without predecessors."""

    if not task.dependencies:
        return None
    latest_finish = max(tasks[dep_id].end_date for dep_id in task.dependencies)
    if same_day_handoff:
        return latest_finish
    return calendar.next_working_day(latest_finish)


def schedule_successors(
    tasks: dict[str, Task],
    calendar: WorkCalendar,
    roots: Iterable[str] | None = None,
    same_day_handoff: bool = False,
) -> list[str]:
    """
    Shift successors forward in-place until every finish-to-start edge holds.

    Only tasks downstream of `roots` (or the whole graph when None) are moved,
    and only forward: a task already starting late enough keeps its date.
    Returns the ids of shifted tasks in topological order.
    """

    order = toposort(tasks)
    if roots is None:
        scope = set(order)
    else:
        scope = set()
        dependents = successors_map(tasks)
        pending = deque(child for root in roots for child in dependents.get(root, []))
        while pending:
            current = pending.popleft()
            if current in scope:
                continue
            scope.add(current)
            pending.extend(dependents.get(current, []))

    shifted: list[str] = []
    for task_id in order:
        if task_id not in scope:
            continue
        task = tasks[task_id]
        if all(satisfies(tasks[dep_id], task, same_day_handoff) for dep_id in task.dependencies):
            continue
        start = earliest_start(tasks, task, calendar, same_day_handoff)
        task.start_date, task.end_date = calendar.project(start, task.duration_days)
        shifted.append(task_id)
    return shifted

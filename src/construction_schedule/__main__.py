from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import yaml

from .engine import ScheduleEngine
from .parse_schedule import load_schedule, save_schedule
from .render_rows import to_chart_data, to_render_rows
from .schedule_models import ScheduleChange, TaskStatus, TradeType
from .scheduling import ScheduleError


def _parse_date(value: str):
    import datetime as dt

    try:
        return dt.date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD") from exc


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer '{value}'") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive number of working days, got {parsed}")
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Construction schedule engine",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log engine activity to stderr")
    commands = parser.add_subparsers(dest="command", required=True)

    def command(name: str, help_text: str) -> argparse.ArgumentParser:
        sub = commands.add_parser(name, help=help_text, formatter_class=argparse.ArgumentDefaultsHelpFormatter)
        sub.add_argument("schedule", help="Path to schedule YAML")
        return sub

    command("show", "List tasks, dates and dependency violations")

    add = command("add", "Add a task")
    add.add_argument("--name", required=True, help="Task name")
    add.add_argument("--start", type=_parse_date, required=True, help="Start date (YYYY-MM-DD)")
    add.add_argument("--duration", type=_positive_int, required=True, help="Duration in working days")
    add.add_argument("--trade", default=TradeType.OTHER.value, choices=[t.value for t in TradeType])
    add.add_argument("--status", default=TaskStatus.NOT_STARTED.value, choices=[s.value for s in TaskStatus])
    add.add_argument("--depends-on", nargs="*", default=[], help="Predecessor task ids")
    add.add_argument("--assigned-to", help="Subcontractor or crew name")
    add.add_argument("--notes", help="Free text notes")
    add.add_argument("--id", dest="task_id", help="Explicit task id; generated when omitted")

    move = command("move", "Move a task to a new start date")
    move.add_argument("task_id")
    move.add_argument("start", type=_parse_date)

    resize = command("resize", "Change a task's duration")
    resize.add_argument("task_id")
    resize.add_argument("duration", type=_positive_int)

    link = command("link", "Make TARGET wait for SOURCE to finish")
    link.add_argument("source")
    link.add_argument("target")

    unlink = command("unlink", "Remove the dependency of TARGET on SOURCE")
    unlink.add_argument("source")
    unlink.add_argument("target")

    remove = command("remove", "Delete a task and its links")
    remove.add_argument("task_id")

    status = command("status", "Set a task's status")
    status.add_argument("task_id")
    status.add_argument("status", choices=[s.value for s in TaskStatus])

    auto = command("auto", "Shift successors forward until every dependency holds")
    auto.add_argument("task_id", nargs="?", help="Only reschedule tasks downstream of this one")

    export = command("export", "Write chart data (tasks and links) as JSON")
    export.add_argument("--out", help="Output JSON path; stdout when omitted")

    for sub in (move, resize, link, unlink, remove, status, auto):
        sub.add_argument("--expect-version", type=int, help="Fail if the edited task's version differs")

    return parser


def _extract_project_name(path: Path) -> str | None:
    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError):
        return None
    if isinstance(raw, dict):
        project = raw.get("project")
        if isinstance(project, dict):
            name = project.get("name")
            if isinstance(name, str):
                return name
    return None


def _apply(engine: ScheduleEngine, args: argparse.Namespace) -> ScheduleChange:
    version = getattr(args, "expect_version", None)
    if args.command == "add":
        return engine.add_task(
            name=args.name,
            start_date=args.start,
            duration_days=args.duration,
            trade_type=args.trade,
            status=args.status,
            dependencies=args.depends_on,
            assigned_to=args.assigned_to,
            notes=args.notes,
            task_id=args.task_id,
        )
    if args.command == "move":
        return engine.move_task(args.task_id, args.start, expected_version=version)
    if args.command == "resize":
        return engine.resize_task(args.task_id, args.duration, expected_version=version)
    if args.command == "link":
        return engine.create_dependency(args.source, args.target, expected_version=version)
    if args.command == "unlink":
        return engine.remove_dependency(args.source, args.target, expected_version=version)
    if args.command == "remove":
        return engine.remove_task(args.task_id, expected_version=version)
    if args.command == "status":
        return engine.set_status(args.task_id, args.status, expected_version=version)
    if args.command == "auto":
        return engine.auto_schedule(args.task_id, expected_version=version)
    raise ValueError(f"unsupported command {args.command!r}")


def _print_schedule(engine: ScheduleEngine) -> None:
    for row in to_render_rows(engine):
        deps = ", ".join(row.depends_on) or "-"
        print(
            f"{row.task_id:<14} {row.name:<28} {row.trade_type.value:<12} "
            f"{row.start_date} -> {row.end_date} ({row.duration_days}d) "
            f"{row.status.value:<12} after: {deps}"
        )
    start, finish = engine.project_span()
    if start is not None:
        print(f"Project span: {start} -> {finish}")
    for violation in engine.violations():
        print(f"Warning: {violation.message}", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    schedule_path = Path(args.schedule)

    try:
        if args.command == "add" and not schedule_path.exists():
            engine = ScheduleEngine()
        else:
            engine = load_schedule(schedule_path)
    except (yaml.YAMLError, ScheduleError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except FileNotFoundError:
        print(f"Error: schedule file not found: {schedule_path}", file=sys.stderr)
        return 1
    except Exception as exc:  # Unexpected
        print(f"Unexpected error while loading schedule: {exc}", file=sys.stderr)
        return 1

    if args.command == "show":
        _print_schedule(engine)
        return 0

    if args.command == "export":
        payload = json.dumps(to_chart_data(engine), indent=2)
        if args.out:
            out_path = Path(args.out)
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_text(payload + "\n", encoding="utf-8")
        else:
            print(payload)
        return 0

    try:
        change = _apply(engine, args)
    except ScheduleError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    try:
        save_schedule(engine, schedule_path, name=_extract_project_name(schedule_path))
    except OSError as exc:
        print(f"Unexpected error while saving schedule: {exc}", file=sys.stderr)
        return 1

    if change.task is not None:
        print(f"{change.task.id}: {change.task.start_date} -> {change.task.end_date} (v{change.task.version})")
    for task_id in change.removed:
        print(f"removed {task_id}")
    if args.command == "auto":
        for task_id in change.changed:
            print(f"shifted {task_id}")
    for violation in change.violations:
        print(f"Warning: {violation.message}", file=sys.stderr)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable

from .scheduling import InvalidInputError

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
"""Weekday names indexed like `date.weekday()`."""

DEFAULT_NON_WORKING_DAYS = frozenset({5, 6})


class StartPolicy(str, Enum):
    """How a start date that falls on a non-working day is treated."""

    SNAP = "snap"
    """Move the start forward to the next working day."""
    ANCHOR = "anchor"
    """Keep the start as given; it counts as day zero and consumes no duration."""
    REJECT = "reject"
    """Refuse the date with InvalidInputError."""


@dataclass(frozen=True)
class WorkCalendar:
    """
    Working-day calendar used to project durations onto calendar dates.

    `non_working_days` holds `date.weekday()` numbers (Monday is 0); the
    default excludes Saturday and Sunday. `holidays` are extra non-working
    dates. At least one weekday must be a working day.
    """

    non_working_days: frozenset[int] = DEFAULT_NON_WORKING_DAYS
    holidays: frozenset[date] = frozenset()
    start_policy: StartPolicy = StartPolicy.SNAP

    def __post_init__(self) -> None:
        bad = sorted(day for day in self.non_working_days if day not in range(7))
        if bad:
            raise InvalidInputError(f"non-working weekday numbers must be 0-6, got {bad}")
        if len(self.non_working_days) >= 7:
            raise InvalidInputError("calendar must keep at least one working weekday")

    @classmethod
    def from_names(
        cls,
        names: Iterable[str],
        holidays: Iterable[date] = (),
        start_policy: StartPolicy | str = StartPolicy.SNAP,
    ) -> "WorkCalendar":
        """Build a calendar from weekday names such as ``["saturday", "sunday"]``."""

        days: set[int] = set()
        for name in names:
            key = name.strip().lower()
            if key not in WEEKDAY_NAMES:
                raise InvalidInputError(f"unknown weekday '{name}'")
            days.add(WEEKDAY_NAMES.index(key))
        try:
            policy = StartPolicy(start_policy)
        except ValueError as exc:
            allowed = [p.value for p in StartPolicy]
            raise InvalidInputError(f"unknown start policy '{start_policy}', expected one of {allowed}") from exc
        return cls(non_working_days=frozenset(days), holidays=frozenset(holidays), start_policy=policy)

    @property
    def non_working_names(self) -> list[str]:
        return [WEEKDAY_NAMES[day] for day in sorted(self.non_working_days)]

    def is_working_day(self, day: date) -> bool:
        return day.weekday() not in self.non_working_days and day not in self.holidays

    def next_working_day(self, day: date) -> date:
        """First working day strictly after `day`."""
        current = day + timedelta(days=1)
        while not self.is_working_day(current):
            current += timedelta(days=1)
        return current

    def resolve_start(self, start: date) -> date:
        """Apply the start policy to a requested start date."""
        if self.is_working_day(start) or self.start_policy is StartPolicy.ANCHOR:
            return start
        if self.start_policy is StartPolicy.REJECT:
            raise InvalidInputError(f"start date {start} ({WEEKDAY_NAMES[start.weekday()]}) is not a working day")
        return self.next_working_day(start)

    def project(self, start: date, duration_days: int) -> tuple[date, date]:
        """
        Return the (start, end) pair for a task of `duration_days` working days.

        Walks forward one calendar day at a time from the resolved start and
        counts only working days; the end is the day the last one is counted,
        so a 1-day task on a working day ends the same day.
        """

        if isinstance(duration_days, bool) or not isinstance(duration_days, int) or duration_days <= 0:
            raise InvalidInputError(f"duration_days must be a positive integer, got {duration_days!r}")
        if not isinstance(start, date):
            raise InvalidInputError(f"start date must be a date, got {start!r}")

        start = self.resolve_start(start)
        current = start
        counted = 1 if self.is_working_day(current) else 0
        while counted < duration_days:
            current += timedelta(days=1)
            if self.is_working_day(current):
                counted += 1
        return start, current

    def working_days_between(self, start: date, end: date) -> int:
        """Number of working days in the inclusive range [start, end]."""
        if end < start:
            return 0
        count = 0
        current = start
        while current <= end:
            if self.is_working_day(current):
                count += 1
            current += timedelta(days=1)
        return count

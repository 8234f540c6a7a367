import datetime as dt

import pytest

from construction_schedule.scheduling import InvalidInputError
from construction_schedule.work_calendar import StartPolicy, WorkCalendar

MONDAY = dt.date(2024, 1, 1)
FRIDAY = dt.date(2024, 1, 5)
SATURDAY = dt.date(2024, 1, 6)
NEXT_MONDAY = dt.date(2024, 1, 8)
NEXT_FRIDAY = dt.date(2024, 1, 12)


def test_five_day_task_from_monday_ends_friday():
    assert WorkCalendar().project(MONDAY, 5) == (MONDAY, FRIDAY)


def test_one_day_task_ends_on_its_start_day():
    assert WorkCalendar().project(MONDAY, 1) == (MONDAY, MONDAY)


def test_duration_skips_weekends():
    start, end = WorkCalendar().project(FRIDAY, 2)

    assert start == FRIDAY
    assert end == NEXT_MONDAY


def test_weekend_start_snaps_to_next_working_day_by_default():
    assert WorkCalendar().project(SATURDAY, 5) == (NEXT_MONDAY, NEXT_FRIDAY)


def test_weekend_start_anchor_keeps_saturday_as_day_zero():
    calendar = WorkCalendar(start_policy=StartPolicy.ANCHOR)

    assert calendar.project(SATURDAY, 5) == (SATURDAY, NEXT_FRIDAY)


def test_weekend_start_reject_raises():
    calendar = WorkCalendar(start_policy=StartPolicy.REJECT)

    with pytest.raises(InvalidInputError):
        calendar.project(SATURDAY, 5)


def test_holidays_are_not_counted():
    calendar = WorkCalendar(holidays=frozenset({dt.date(2024, 1, 3)}))

    assert calendar.project(MONDAY, 5) == (MONDAY, NEXT_MONDAY)


@pytest.mark.parametrize("duration", [0, -3, True, 2.5])
def test_non_positive_or_non_integer_duration_is_rejected(duration):
    with pytest.raises(InvalidInputError):
        WorkCalendar().project(MONDAY, duration)


def test_custom_working_week_from_names():
    calendar = WorkCalendar.from_names(["sunday"])

    assert calendar.is_working_day(SATURDAY)
    assert not calendar.is_working_day(dt.date(2024, 1, 7))
    assert calendar.project(FRIDAY, 3) == (FRIDAY, NEXT_MONDAY)


def test_unknown_weekday_name_raises():
    with pytest.raises(InvalidInputError):
        WorkCalendar.from_names(["funday"])


def test_calendar_needs_a_working_day():
    with pytest.raises(InvalidInputError):
        WorkCalendar(non_working_days=frozenset(range(7)))


def test_next_working_day_after_friday_is_monday():
    assert WorkCalendar().next_working_day(FRIDAY) == NEXT_MONDAY


def test_working_days_between_is_inclusive():
    calendar = WorkCalendar()

    assert calendar.working_days_between(MONDAY, NEXT_FRIDAY) == 10
    assert calendar.working_days_between(FRIDAY, MONDAY) == 0

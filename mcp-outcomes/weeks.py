"""Week window arithmetic on local calendar dates.

All math is done on ``datetime.date`` so a day is always one calendar day;
there is no clock time involved and DST never shifts a boundary.
"""

from dataclasses import dataclass
from datetime import date, timedelta

DAYS_IN_WEEK = 7

# 0 = Sunday, matching the weekday numbers stored on outputs.
WEEKDAY_LABELS = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


@dataclass(frozen=True)
class WeekWindow:
    start: date
    end: date

    @property
    def days(self) -> list[date]:
        return week_days(self.start)

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end


def weekday_number(day: date) -> int:
    """Weekday with Sunday as 0 and Saturday as 6."""
    return day.isoweekday() % DAYS_IN_WEEK


def add_days(day: date, days: int) -> date:
    return day + timedelta(days=days)


def week_start(anchor: date, start_of_week: int = 1) -> date:
    """First day of the week containing ``anchor``.

    Args:
        anchor: Any date inside the week
        start_of_week: 0 for Sunday-based weeks, 1 for Monday-based weeks
    """
    offset = (weekday_number(anchor) - start_of_week + DAYS_IN_WEEK) % DAYS_IN_WEEK
    return add_days(anchor, -offset)


def week_end(start: date) -> date:
    return add_days(start, DAYS_IN_WEEK - 1)


def week_days(start: date) -> list[date]:
    return [add_days(start, i) for i in range(DAYS_IN_WEEK)]


def week_window(anchor: date, start_of_week: int = 1) -> WeekWindow:
    start = week_start(anchor, start_of_week)
    return WeekWindow(start=start, end=week_end(start))


def last_day_of_week(start_of_week: int) -> int:
    """Weekday number on which a week beginning on ``start_of_week`` ends."""
    return (start_of_week + DAYS_IN_WEEK - 1) % DAYS_IN_WEEK


def format_day(day: date) -> str:
    """Short label such as ``Mon 2/23``."""
    return f"{WEEKDAY_LABELS[weekday_number(day)]} {day.month}/{day.day}"

from datetime import date
from typing import Protocol, assert_never

from frequency import Daily, FixedWeekly, FlexibleWeekly, Frequency
from weeks import weekday_number


class Commitment(Protocol):
    """Anything carrying a recurrence: an ``Output`` row or an ``OutputDraft``."""

    @property
    def frequency(self) -> Frequency: ...


def is_scheduled(commitment: Commitment, day: date) -> bool:
    """Whether the commitment is due on ``day``.

    Flexible weekly commitments have no due day, so they are never scheduled at
    day granularity; they are judged per week instead.
    """
    frequency = commitment.frequency
    match frequency:
        case Daily():
            return True
        case FixedWeekly(weekdays=days):
            return weekday_number(day) in days
        case FlexibleWeekly():
            return False
        case _:
            assert_never(frequency)

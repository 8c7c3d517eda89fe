"""Completion accounting: turns action logs into statuses and rates.

Everything here is a pure function of its arguments. Callers load the outputs
and the action logs for the window they care about and pass them in; logs
outside ``week_days`` are simply never looked up.
"""

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Mapping, Optional, Protocol, Sequence, assert_never

from frequency import Daily, FixedWeekly, FlexibleWeekly, weekly_target
from schedule import Commitment, is_scheduled


class DayStatus(str, Enum):
    grey = "grey"  # not scheduled
    red = "red"
    yellow = "yellow"
    green = "green"


class LogRecord(Protocol):
    completed: int
    total: int


class LoggedLog(LogRecord, Protocol):
    output_id: int
    action_date: date


class TrackedCommitment(Commitment, Protocol):
    id: Optional[int]


RecordsByDate = Mapping[date, LogRecord]
RecordsByOutput = Mapping[int, RecordsByDate]


@dataclass(frozen=True)
class WeekSummary:
    status: DayStatus
    completed: int
    target: int


@dataclass(frozen=True)
class WeeklyProgress:
    completed: int
    target: int
    rate: float
    target_met: bool


def index_logs(logs: Iterable[LoggedLog]) -> dict[int, dict[date, LoggedLog]]:
    """Group logs as ``{output_id: {action_date: log}}``."""
    indexed: dict[int, dict[date, LoggedLog]] = defaultdict(dict)
    for log in logs:
        indexed[log.output_id][log.action_date] = log
    return dict(indexed)


def round_percent(ratio: float) -> int:
    # Halves round up (49.5 -> 50), unlike round().
    return int(math.floor(ratio * 100 + 0.5))


def day_status(
    commitment: Commitment, day: date, record: Optional[LogRecord]
) -> DayStatus:
    if not is_scheduled(commitment, day):
        return DayStatus.grey
    if record is None or record.completed == 0:
        return DayStatus.red
    if record.total > 0 and record.completed / record.total >= 1:
        return DayStatus.green
    # Includes completed > 0 with total == 0: progress without a known total.
    return DayStatus.yellow


def week_summary(
    commitment: Commitment, week_days: Sequence[date], records: RecordsByDate
) -> WeekSummary:
    """Week-level status for a flexible weekly commitment."""
    completed = sum(records[d].completed for d in week_days if d in records)
    target = weekly_target(commitment.frequency)
    if completed >= target:
        status = DayStatus.green
    elif completed > 0:
        status = DayStatus.yellow
    else:
        status = DayStatus.red
    return WeekSummary(status=status, completed=completed, target=target)


def outcome_completion_rate(
    commitments: Iterable[TrackedCommitment],
    week_days: Sequence[date],
    records_by_output: RecordsByOutput,
) -> int:
    """Completion percentage (0-100) of an outcome's outputs for one week.

    Flexible outputs contribute their weekly target as a single block of units;
    daily and fixed outputs contribute one unit per scheduled day, credited with
    the fraction of that day's log that was completed. A week with nothing
    scheduled is 0%.
    """
    completed_units = 0.0
    target_units = 0

    for commitment in commitments:
        records = records_by_output.get(commitment.id, {})
        frequency = commitment.frequency
        match frequency:
            case FlexibleWeekly():
                summary = week_summary(commitment, week_days, records)
                completed_units += min(summary.completed, summary.target)
                target_units += summary.target
            case Daily() | FixedWeekly():
                for day in week_days:
                    if not is_scheduled(commitment, day):
                        continue
                    target_units += 1
                    log = records.get(day)
                    if log is None or log.completed <= 0 or log.total <= 0:
                        continue
                    completed_units += min(log.completed / log.total, 1)
            case _:
                assert_never(frequency)

    if target_units == 0:
        return 0
    return round_percent(completed_units / target_units)


def weekly_progress(
    commitment: Commitment, week_days: Sequence[date], records: RecordsByDate
) -> WeeklyProgress:
    """Progress toward this week's target, as shown on the daily dashboard.

    Flexible outputs count logged completions against their weekly target;
    daily and fixed outputs count fully completed scheduled days against the
    number of scheduled days.
    """
    frequency = commitment.frequency
    match frequency:
        case FlexibleWeekly():
            summary = week_summary(commitment, week_days, records)
            completed, target = summary.completed, summary.target
        case Daily() | FixedWeekly():
            scheduled = [d for d in week_days if is_scheduled(commitment, d)]
            target = len(scheduled)
            completed = sum(
                1
                for d in scheduled
                if day_status(commitment, d, records.get(d)) is DayStatus.green
            )
        case _:
            assert_never(frequency)

    return WeeklyProgress(
        completed=completed,
        target=target,
        rate=round(completed / target, 2) if target > 0 else 0,
        target_met=target > 0 and completed >= target,
    )


def missed_count(
    commitments: Iterable[TrackedCommitment],
    day: date,
    records_by_output: RecordsByOutput,
) -> int:
    """Number of commitments that were due on ``day`` and have nothing logged."""
    return sum(
        1
        for c in commitments
        if day_status(c, day, records_by_output.get(c.id, {}).get(day))
        is DayStatus.red
    )

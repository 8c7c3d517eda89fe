"""Finds the occurrences in a week that still need a shortfall reason."""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional, Sequence, assert_never

from accounting import (
    DayStatus,
    RecordsByDate,
    TrackedCommitment,
    day_status,
    week_summary,
)
from frequency import Daily, FixedWeekly, FlexibleWeekly
from weeks import format_day


class ShortfallReason(str, Enum):
    time = "time"
    energy = "energy"
    motivation = "motivation"
    external_blocker = "external_blocker"
    forgot = "forgot"
    other = "other"


class ShortfallTagError(ValueError):
    """Raised when a shortfall tag does not identify exactly one occurrence or week."""


@dataclass(frozen=True)
class ShortfallCandidate:
    output_id: int
    label: str
    occurrence_date: Optional[date] = None
    week_start: Optional[date] = None

    @property
    def key(self) -> str:
        if self.occurrence_date is not None:
            return occurrence_key(self.output_id, self.occurrence_date)
        return week_key(self.output_id, self.week_start)


def occurrence_key(output_id: int, occurrence_date: date) -> str:
    return f"{output_id}:occ:{occurrence_date.isoformat()}"


def week_key(output_id: int, week_start: date) -> str:
    return f"{output_id}:week:{week_start.isoformat()}"


def shortfalls_for(
    commitment: TrackedCommitment,
    week_days: Sequence[date],
    records: RecordsByDate,
    week_start: date,
) -> list[ShortfallCandidate]:
    """Occurrences of ``commitment`` in the week that fell short.

    Flexible outputs yield at most one week-level candidate. Daily and fixed
    outputs yield one candidate per scheduled day that is red or yellow.
    """
    frequency = commitment.frequency
    match frequency:
        case FlexibleWeekly():
            summary = week_summary(commitment, week_days, records)
            if summary.status is DayStatus.green:
                return []
            return [
                ShortfallCandidate(
                    output_id=commitment.id,
                    week_start=week_start,
                    label=f"Weekly target shortfall ({summary.completed}/{summary.target})",
                )
            ]
        case Daily() | FixedWeekly():
            candidates = []
            for day in week_days:
                status = day_status(commitment, day, records.get(day))
                if status not in (DayStatus.red, DayStatus.yellow):
                    continue
                candidates.append(
                    ShortfallCandidate(
                        output_id=commitment.id,
                        occurrence_date=day,
                        label=f"{format_day(day)} ({status.value})",
                    )
                )
            return candidates
        case _:
            assert_never(frequency)


def validate_shortfall_tag(
    occurrence_date: Optional[date],
    week_start: Optional[date],
    reason: ShortfallReason,
    other_text: Optional[str],
) -> Optional[str]:
    """Check a tag before it is written and return the text to store with it.

    The free text is only kept for ``other``; it is required there.
    """
    if occurrence_date is None and week_start is None:
        raise ShortfallTagError("Either occurrence_date or week_start is required")
    if occurrence_date is not None and week_start is not None:
        raise ShortfallTagError("Only one of occurrence_date or week_start may be set")

    reason = ShortfallReason(reason)
    text = (other_text or "").strip()
    if reason is ShortfallReason.other:
        if not text:
            raise ShortfallTagError("Other reason requires notes")
        return text
    return None

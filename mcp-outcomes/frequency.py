"""Recurrence kinds for outputs.

An output recurs in one of three ways:

- daily: due every day
- fixed weekly: due on a fixed set of weekdays (0 = Sunday .. 6 = Saturday)
- flexible weekly: N completions per week, on any days

``Frequency`` is the closed union of the three kinds. Code that needs to branch
on the kind matches on it and finishes with ``assert_never`` so that a new kind
is caught by the type checker at every call site.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Optional, Union, assert_never

from weeks import WEEKDAY_LABELS

MIN_WEEKLY_TARGET = 1
MAX_WEEKLY_TARGET = 7
WEEKDAYS = range(7)


class FrequencyType(str, Enum):
    daily = "daily"
    fixed_weekly = "fixed_weekly"
    flexible_weekly = "flexible_weekly"


class DraftValidationError(ValueError):
    """Raised when an output draft cannot be saved as entered."""


@dataclass(frozen=True)
class Daily:
    pass


@dataclass(frozen=True)
class FixedWeekly:
    weekdays: tuple[int, ...] = ()

    @property
    def times_per_week(self) -> int:
        return len(self.weekdays)


@dataclass(frozen=True)
class FlexibleWeekly:
    times_per_week: int = 3


Frequency = Union[Daily, FixedWeekly, FlexibleWeekly]


def sorted_weekdays(weekdays: Optional[Iterable[int]]) -> tuple[int, ...]:
    return tuple(sorted(set(weekdays or ())))


def clamp_weekly_target(value: int) -> int:
    return max(MIN_WEEKLY_TARGET, min(MAX_WEEKLY_TARGET, value))


def frequency_of(
    frequency_type: FrequencyType,
    frequency_value: int,
    weekdays: Optional[Iterable[int]] = None,
) -> Frequency:
    """Build the recurrence value for stored (already normalized) columns."""
    kind = FrequencyType(frequency_type)
    if kind is FrequencyType.daily:
        return Daily()
    if kind is FrequencyType.fixed_weekly:
        return FixedWeekly(weekdays=sorted_weekdays(weekdays))
    if kind is FrequencyType.flexible_weekly:
        return FlexibleWeekly(times_per_week=frequency_value)
    assert_never(kind)


def weekly_target(frequency: Frequency) -> int:
    """Occurrences per week; daily outputs count every day."""
    match frequency:
        case Daily():
            return 7
        case FixedWeekly():
            return frequency.times_per_week
        case FlexibleWeekly():
            return frequency.times_per_week
        case _:
            assert_never(frequency)


@dataclass(frozen=True)
class OutputDraft:
    """An output as entered on a create or edit form.

    Drafts are values: ``normalize`` and the starter advisor return new drafts
    and never modify the one they are given.
    """

    description: str = ""
    frequency_type: FrequencyType = FrequencyType.daily
    frequency_value: int = 1
    schedule_weekdays: tuple[int, ...] = field(default_factory=tuple)
    starter_applied: bool = False

    @property
    def frequency(self) -> Frequency:
        return frequency_of(
            self.frequency_type, self.frequency_value, self.schedule_weekdays
        )

    def with_changes(self, **changes) -> "OutputDraft":
        if "schedule_weekdays" in changes:
            changes["schedule_weekdays"] = tuple(changes["schedule_weekdays"] or ())
        return replace(self, **changes)


def normalize(draft: OutputDraft) -> OutputDraft:
    """Bring a draft's recurrence fields in line with its frequency type.

    Total and idempotent. A fixed weekly draft with no weekdays stays at value 0,
    which evaluates as never due.
    """
    kind = FrequencyType(draft.frequency_type)
    if kind is FrequencyType.daily:
        return draft.with_changes(
            frequency_type=kind, frequency_value=1, schedule_weekdays=()
        )
    if kind is FrequencyType.fixed_weekly:
        days = sorted_weekdays(draft.schedule_weekdays)
        return draft.with_changes(
            frequency_type=kind, frequency_value=len(days), schedule_weekdays=days
        )
    if kind is FrequencyType.flexible_weekly:
        return draft.with_changes(
            frequency_type=kind,
            frequency_value=clamp_weekly_target(draft.frequency_value),
            schedule_weekdays=(),
        )
    assert_never(kind)


def validate_draft(draft: OutputDraft) -> None:
    """Reject drafts the user has to fix before saving."""
    if not draft.description.strip():
        raise DraftValidationError("Output description is required")

    try:
        kind = FrequencyType(draft.frequency_type)
    except ValueError:
        raise DraftValidationError(f"Unknown frequency type: {draft.frequency_type}") from None

    if kind is FrequencyType.fixed_weekly:
        if not draft.schedule_weekdays:
            raise DraftValidationError("Fixed weekly outputs need at least one weekday")
        invalid = [d for d in draft.schedule_weekdays if d not in WEEKDAYS]
        if invalid:
            raise DraftValidationError(f"Weekdays must be between 0 and 6, got {invalid}")
    elif kind is FrequencyType.flexible_weekly:
        if not MIN_WEEKLY_TARGET <= draft.frequency_value <= MAX_WEEKLY_TARGET:
            raise DraftValidationError(
                f"Weekly target must be between {MIN_WEEKLY_TARGET} and "
                f"{MAX_WEEKLY_TARGET}, got {draft.frequency_value}"
            )


def describe(frequency: Frequency) -> str:
    """Human readable recurrence, e.g. ``3x/week (flexible)``."""
    match frequency:
        case Daily():
            return "Daily"
        case FixedWeekly(weekdays=days):
            labels = ", ".join(WEEKDAY_LABELS[d] for d in days)
            return f"Fixed weekly ({labels or 'no days'})"
        case FlexibleWeekly(times_per_week=n):
            return f"{n}x/week (flexible)"
        case _:
            assert_never(frequency)

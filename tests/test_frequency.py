import pytest

from frequency import (
    Daily,
    DraftValidationError,
    FixedWeekly,
    FlexibleWeekly,
    FrequencyType,
    OutputDraft,
    describe,
    normalize,
    validate_draft,
)

DRAFTS = [
    OutputDraft("walk", FrequencyType.daily, 5, (1, 2)),
    OutputDraft("gym", FrequencyType.fixed_weekly, 0, (5, 1, 3, 1)),
    OutputDraft("gym", FrequencyType.fixed_weekly, 4, ()),
    OutputDraft("read", FrequencyType.flexible_weekly, 12, (2,)),
    OutputDraft("read", FrequencyType.flexible_weekly, 0, ()),
    OutputDraft("read", FrequencyType.flexible_weekly, 4, ()),
]


def test_daily_drops_weekdays_and_forces_one():
    draft = normalize(OutputDraft("walk", FrequencyType.daily, 5, (1, 2)))
    assert draft.frequency_value == 1
    assert draft.schedule_weekdays == ()
    assert draft.frequency == Daily()


def test_fixed_weekly_dedupes_sorts_and_counts():
    draft = normalize(OutputDraft("gym", FrequencyType.fixed_weekly, 0, (5, 1, 3, 1)))
    assert draft.schedule_weekdays == (1, 3, 5)
    assert draft.frequency_value == 3
    assert draft.frequency == FixedWeekly(weekdays=(1, 3, 5))


def test_fixed_weekly_with_no_days_is_value_zero():
    draft = normalize(OutputDraft("gym", FrequencyType.fixed_weekly, 4, ()))
    assert draft.frequency_value == 0


@pytest.mark.parametrize("value,expected", [(0, 1), (-3, 1), (4, 4), (12, 7)])
def test_flexible_weekly_clamps_target(value, expected):
    draft = normalize(OutputDraft("read", FrequencyType.flexible_weekly, value, (2,)))
    assert draft.frequency_value == expected
    assert draft.schedule_weekdays == ()
    assert draft.frequency == FlexibleWeekly(times_per_week=expected)


def test_fixed_weekly_all_days_counts_seven():
    draft = normalize(
        OutputDraft("stretch", FrequencyType.fixed_weekly, 1, (0, 1, 2, 3, 4, 5, 6))
    )
    assert draft.frequency_value == 7


@pytest.mark.parametrize("draft", DRAFTS)
def test_normalize_is_idempotent(draft):
    once = normalize(draft)
    assert normalize(once) == once


def test_normalize_does_not_modify_its_input():
    draft = OutputDraft("gym", FrequencyType.fixed_weekly, 0, (5, 1))
    normalize(draft)
    assert draft.schedule_weekdays == (5, 1)
    assert draft.frequency_value == 0


@pytest.mark.parametrize(
    "draft,message",
    [
        (OutputDraft("  ", FrequencyType.daily), "description"),
        (OutputDraft("gym", FrequencyType.fixed_weekly, 0, ()), "at least one weekday"),
        (OutputDraft("gym", FrequencyType.fixed_weekly, 1, (7,)), "between 0 and 6"),
        (OutputDraft("read", FrequencyType.flexible_weekly, 0), "between 1 and 7"),
        (OutputDraft("read", FrequencyType.flexible_weekly, 8), "between 1 and 7"),
    ],
)
def test_validate_rejects_incomplete_drafts(draft, message):
    with pytest.raises(DraftValidationError, match=message):
        validate_draft(draft)


def test_validate_accepts_complete_drafts():
    validate_draft(OutputDraft("walk", FrequencyType.daily))
    validate_draft(OutputDraft("gym", FrequencyType.fixed_weekly, 2, (1, 4)))
    validate_draft(OutputDraft("read", FrequencyType.flexible_weekly, 7))


def test_describe():
    assert describe(Daily()) == "Daily"
    assert describe(FixedWeekly((1, 3))) == "Fixed weekly (Mon, Wed)"
    assert describe(FixedWeekly()) == "Fixed weekly (no days)"
    assert describe(FlexibleWeekly(3)) == "3x/week (flexible)"

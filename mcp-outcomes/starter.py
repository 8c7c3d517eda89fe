"""Starter mode: a gentler first schedule for a brand-new outcome.

Only offered for the first output of an outcome. Each rule produces a draft the
same rule no longer fires on, so accepting a suggestion never leads to another.
"""

import math
from dataclasses import dataclass
from typing import Optional, assert_never

from frequency import Daily, FixedWeekly, FlexibleWeekly, FrequencyType, OutputDraft

STARTER_WEEKLY_TARGET = 3


def halved_target(value: int) -> int:
    # Capped so that 7 -> 3 rather than 4, which would trigger the rule again.
    return min(STARTER_WEEKLY_TARGET, max(1, math.ceil(value / 2)))


@dataclass(frozen=True)
class StarterSuggestion:
    draft: OutputDraft
    reason: str


def suggest_starter(draft: OutputDraft) -> Optional[StarterSuggestion]:
    frequency = draft.frequency
    match frequency:
        case Daily():
            return StarterSuggestion(
                draft=draft.with_changes(
                    frequency_type=FrequencyType.flexible_weekly,
                    frequency_value=STARTER_WEEKLY_TARGET,
                    schedule_weekdays=(),
                ),
                reason="Daily commitments are often too aggressive at the start. Try 3x/week first.",
            )
        case FixedWeekly(weekdays=days) if len(days) > STARTER_WEEKLY_TARGET:
            kept = days[:STARTER_WEEKLY_TARGET]
            return StarterSuggestion(
                draft=draft.with_changes(frequency_value=len(kept), schedule_weekdays=kept),
                reason="A smaller fixed schedule is easier to sustain while building consistency.",
            )
        case FlexibleWeekly(times_per_week=n) if n > STARTER_WEEKLY_TARGET:
            return StarterSuggestion(
                draft=draft.with_changes(frequency_value=halved_target(n)),
                reason="Reducing weekly target helps avoid early burnout.",
            )
        case FixedWeekly() | FlexibleWeekly():
            return None
        case _:
            assert_never(frequency)

import json
from datetime import date, datetime

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

import store
from conftest import MONDAY, THURSDAY
from frequency import DraftValidationError, FrequencyType, OutputDraft
from models import (
    ActionLog,
    Outcome,
    OutcomeStatus,
    OutputStatus,
    ReminderNotification,
    ShortfallTag,
)
from reminders import ReminderSettings, check_reminders
from shortfall import ShortfallReason, ShortfallTagError


@pytest.fixture
def outcome(session):
    return store.create_outcome(session, "Run a half marathon", "health")


def test_create_outcome_requires_title(session):
    with pytest.raises(ValueError):
        store.create_outcome(session, "   ")


def test_outcome_status_transitions(session, outcome):
    store.set_outcome_status(session, outcome.id, OutcomeStatus.archived)
    store.set_outcome_status(session, outcome.id, OutcomeStatus.retired)
    with pytest.raises(store.StatusTransitionError):
        store.set_outcome_status(session, outcome.id, OutcomeStatus.archived)
    assert store.set_outcome_status(session, outcome.id, "active").status is OutcomeStatus.active


def test_list_outcomes_filters_by_status(session, outcome):
    other = store.create_outcome(session, "Learn Spanish")
    store.set_outcome_status(session, other.id, OutcomeStatus.archived)
    assert [o.id for o in store.list_outcomes(session, OutcomeStatus.active)] == [outcome.id]
    assert len(store.list_outcomes(session)) == 2


def test_missing_rows_raise_not_found(session):
    with pytest.raises(store.NotFoundError):
        store.get_outcome(session, 99)
    with pytest.raises(store.NotFoundError):
        store.upsert_action_log(session, 99, MONDAY, 1, 1)


def test_create_output_normalizes_draft(session, outcome):
    draft = OutputDraft("Long run", FrequencyType.fixed_weekly, 0, (6, 2, 2))
    output = store.create_output(session, outcome.id, draft)
    assert output.frequency_value == 2
    assert output.weekday_list == [2, 6]
    assert json.loads(output.schedule_weekdays) == [2, 6]


def test_create_output_rejects_invalid_draft_without_writing(session, outcome):
    draft = OutputDraft("Long run", FrequencyType.fixed_weekly, 0, ())
    with pytest.raises(DraftValidationError):
        store.create_output(session, outcome.id, draft)
    assert store.count_outputs(session, outcome.id) == 0


def test_starter_flag_only_on_first_output(session, outcome):
    draft = OutputDraft("Easy run", FrequencyType.flexible_weekly, 3, starter_applied=True)
    first = store.create_output(session, outcome.id, draft)
    second = store.create_output(session, outcome.id, draft)
    assert first.is_starter
    assert not second.is_starter


def test_update_output_renormalizes_and_records_change(session, outcome):
    output = store.create_output(session, outcome.id, OutputDraft("Run", FrequencyType.daily))
    draft = OutputDraft("Run", FrequencyType.flexible_weekly, 5, (1, 2))
    updated = store.update_output(session, output.id, draft, reason="too much")

    assert updated.frequency_type is FrequencyType.flexible_weekly
    assert updated.frequency_value == 5
    assert updated.schedule_weekdays is None

    [change] = store.list_output_changes(session, output.id)
    assert json.loads(change.old_value)["frequency_type"] == "daily"
    assert json.loads(change.new_value)["frequency_value"] == 5
    assert change.reason == "too much"


def test_output_status_change_is_logged(session, outcome):
    output = store.create_output(session, outcome.id, OutputDraft("Run", FrequencyType.daily))
    store.set_output_status(session, output.id, OutputStatus.paused)
    with pytest.raises(store.StatusTransitionError):
        store.set_output_status(session, output.id, OutputStatus.paused)
    changes = store.list_output_changes(session, output.id)
    assert [c.change_type for c in changes] == ["status_changed"]
    assert store.list_outputs(session, [outcome.id], active_only=True) == []


def test_action_log_upsert_keeps_one_row_per_day(session, outcome):
    output = store.create_output(session, outcome.id, OutputDraft("Run", FrequencyType.daily))
    store.upsert_action_log(session, output.id, MONDAY, 1, 2, "slow")
    log = store.upsert_action_log(session, output.id, MONDAY, 2, 2, "  ")

    rows = session.exec(select(ActionLog)).all()
    assert len(rows) == 1
    assert (log.completed, log.total, log.notes) == (2, 2, None)


def test_action_log_clamps_negative_counts(session, outcome):
    output = store.create_output(session, outcome.id, OutputDraft("Run", FrequencyType.daily))
    log = store.upsert_action_log(session, output.id, MONDAY, -2, -1)
    assert (log.completed, log.total) == (0, 0)


def test_logs_in_window(session, outcome):
    output = store.create_output(session, outcome.id, OutputDraft("Run", FrequencyType.daily))
    store.upsert_action_log(session, output.id, MONDAY, 1, 1)
    store.upsert_action_log(session, output.id, date(2026, 3, 2), 1, 1)
    logs = store.logs_in_window(session, [output.id], MONDAY, date(2026, 3, 1))
    assert [log.action_date for log in logs] == [MONDAY]
    assert store.logs_in_window(session, [], MONDAY, date(2026, 3, 1)) == []


def test_shortfall_tag_second_save_updates(session, outcome):
    output = store.create_output(session, outcome.id, OutputDraft("Run", FrequencyType.daily))
    store.save_shortfall_tag(session, output.id, ShortfallReason.time, occurrence_date=MONDAY)
    tag = store.save_shortfall_tag(
        session, output.id, "other", "knee pain", occurrence_date=MONDAY
    )
    assert len(session.exec(select(ShortfallTag)).all()) == 1
    assert tag.reason is ShortfallReason.other
    assert tag.other_text == "knee pain"


def test_shortfall_tag_violation_writes_nothing(session, outcome):
    output = store.create_output(session, outcome.id, OutputDraft("Run", FrequencyType.daily))
    with pytest.raises(ShortfallTagError):
        store.save_shortfall_tag(session, output.id, ShortfallReason.other, "", occurrence_date=MONDAY)
    with pytest.raises(ShortfallTagError):
        store.save_shortfall_tag(session, output.id, ShortfallReason.time)
    assert session.exec(select(ShortfallTag)).all() == []


def test_tags_in_window_covers_days_and_week(session, outcome):
    daily = store.create_output(session, outcome.id, OutputDraft("Run", FrequencyType.daily))
    flexible = store.create_output(
        session, outcome.id, OutputDraft("Swim", FrequencyType.flexible_weekly, 2)
    )
    store.save_shortfall_tag(session, daily.id, "energy", occurrence_date=THURSDAY)
    store.save_shortfall_tag(session, daily.id, "energy", occurrence_date=date(2026, 3, 3))
    store.save_shortfall_tag(session, flexible.id, "forgot", week_start=MONDAY)

    tags = store.tags_in_window(session, [daily.id, flexible.id], MONDAY, date(2026, 3, 1))
    assert sorted((t.output_id, t.occurrence_date, t.week_start) for t in tags) == [
        (daily.id, THURSDAY, None),
        (flexible.id, None, MONDAY),
    ]


def test_reflection_upsert(session, outcome):
    store.save_reflection(session, outcome.id, MONDAY, "early runs", "", "")
    store.save_reflection(session, outcome.id, MONDAY, "early runs", "late nights", "sleep")
    [reflection] = store.reflections_for_week(session, [outcome.id], MONDAY)
    assert reflection.what_didnt == "late nights"


def test_settings_created_with_defaults(session):
    settings = store.get_settings(session)
    assert settings.start_of_week == 1
    assert not settings.reminders_enabled
    assert store.get_settings(session).id == settings.id


@pytest.mark.parametrize(
    "changes",
    [
        {"start_of_week": 3},
        {"daily_reminder_time": "8:00"},
        {"daily_reminder_time": "24:00"},
        {"weekly_review_reminder_time": "18:60"},
    ],
)
def test_settings_rejects_bad_values(session, changes):
    with pytest.raises(store.SettingsError):
        store.update_settings(session, **changes)


def test_settings_update_and_clear_time(session):
    settings = store.update_settings(
        session, start_of_week=0, reminders_enabled=True, daily_reminder_time="07:30"
    )
    assert store.reminder_settings(settings) == ReminderSettings(
        reminders_enabled=True, daily_reminder_time="07:30", start_of_week=0
    )
    settings = store.update_settings(session, daily_reminder_time="")
    assert settings.daily_reminder_time is None


def test_reminder_tick_against_database(engine, session):
    markers = store.SqlMarkerStore(engine)
    notifier = store.InboxNotifier(engine, permitted=True)
    settings = ReminderSettings(reminders_enabled=True, daily_reminder_time="08:00")
    now = datetime(2026, 2, 26, 8, 0)

    check_reminders(settings, now, markers, notifier)
    check_reminders(settings, now, markers, notifier)

    assert markers.get("daily-reminder:2026-02-26") == "1"
    [notification] = store.list_notifications(session)
    assert store.mark_notifications_read(session, [notification.id]) == 1
    assert store.list_notifications(session) == []
    assert len(store.list_notifications(session, unread_only=False)) == 1


def test_primary_metric_is_unique_per_outcome(session, outcome):
    first = store.create_metric(session, outcome.id, "Weekly km", "km", is_primary=True)
    second = store.create_metric(session, outcome.id, "Resting HR", "bpm", is_primary=True)
    session.refresh(first)
    assert not first.is_primary
    assert second.is_primary

    store.update_metric(session, first.id, is_primary=True)
    session.refresh(second)
    assert not second.is_primary


def test_metric_entries_and_delete(session, outcome):
    metric = store.create_metric(session, outcome.id, "Weekly km", "km")
    entry = store.create_metric_entry(session, metric.id, MONDAY, 12.5)
    store.update_metric_entry(session, entry.id, value=14.0)
    assert [e.value for e in store.list_metric_entries(session, metric.id)] == [14.0]

    store.delete_metric(session, metric.id)
    assert store.list_metrics(session, outcome.id) == []
    assert store.list_metric_entries(session, metric.id) == []


def test_purge_all(engine, session, outcome):
    output = store.create_output(session, outcome.id, OutputDraft("Run", FrequencyType.daily))
    store.upsert_action_log(session, output.id, MONDAY, 1, 1)
    store.save_shortfall_tag(session, output.id, "time", occurrence_date=THURSDAY)
    store.get_settings(session)

    store.purge_all(session)

    with Session(engine) as fresh:
        assert fresh.exec(select(Outcome)).all() == []
        assert fresh.exec(select(ActionLog)).all() == []
        assert fresh.exec(select(ReminderNotification)).all() == []


def test_duplicate_shortfall_tags_are_rejected_by_the_table(session, outcome):
    daily = store.create_output(session, outcome.id, OutputDraft("Run", FrequencyType.daily))
    flexible = store.create_output(
        session, outcome.id, OutputDraft("Swim", FrequencyType.flexible_weekly, 2)
    )
    session.add(ShortfallTag(output_id=daily.id, occurrence_date=MONDAY, reason=ShortfallReason.time))
    session.add(ShortfallTag(output_id=daily.id, occurrence_date=THURSDAY, reason=ShortfallReason.time))
    session.add(ShortfallTag(output_id=flexible.id, week_start=MONDAY, reason=ShortfallReason.forgot))
    session.commit()

    session.add(ShortfallTag(output_id=daily.id, occurrence_date=MONDAY, reason=ShortfallReason.energy))
    with pytest.raises(IntegrityError):
        session.commit()
    session.rollback()

    session.add(ShortfallTag(output_id=flexible.id, week_start=MONDAY, reason=ShortfallReason.energy))
    with pytest.raises(IntegrityError):
        session.commit()

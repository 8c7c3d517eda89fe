"""Reads and writes against the outcomes database.

Functions take an open ``Session`` and commit their own writes. Validation
happens before anything is added to the session, so a rejected call leaves the
database untouched. Lookups of missing rows raise ``NotFoundError``.
"""

import json
import logging
import re
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import and_, or_
from sqlmodel import Session, select

from frequency import OutputDraft, normalize, validate_draft
from models import (
    ActionLog,
    Metric,
    MetricEntry,
    Outcome,
    OutcomeStatus,
    Output,
    OutputChangeLog,
    OutputStatus,
    Reflection,
    ReminderMarker,
    ReminderNotification,
    ShortfallTag,
    UserSettings,
)
from reminders import ReminderSettings
from shortfall import ShortfallReason, validate_shortfall_tag

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

OUTCOME_TRANSITIONS = {
    OutcomeStatus.active: {OutcomeStatus.archived, OutcomeStatus.retired},
    OutcomeStatus.archived: {OutcomeStatus.active, OutcomeStatus.retired},
    OutcomeStatus.retired: {OutcomeStatus.active},
}

OUTPUT_TRANSITIONS = {
    OutputStatus.active: {OutputStatus.paused, OutputStatus.retired},
    OutputStatus.paused: {OutputStatus.active, OutputStatus.retired},
    OutputStatus.retired: {OutputStatus.active},
}


class NotFoundError(LookupError):
    pass


class SettingsError(ValueError):
    pass


class StatusTransitionError(ValueError):
    pass


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _get(session: Session, model, row_id: int):
    row = session.get(model, row_id)
    if row is None:
        raise NotFoundError(f"{model.__name__} {row_id} not found")
    return row


# --- Outcomes ---


def get_outcome(session: Session, outcome_id: int) -> Outcome:
    return _get(session, Outcome, outcome_id)


def list_outcomes(session: Session, status: Optional[OutcomeStatus] = None) -> list[Outcome]:
    stmt = select(Outcome).order_by(Outcome.created_at.desc(), Outcome.id.desc())
    if status is not None:
        stmt = stmt.where(Outcome.status == status)
    return list(session.exec(stmt).all())


def create_outcome(session: Session, title: str, category: Optional[str] = None) -> Outcome:
    title = title.strip()
    if not title:
        raise ValueError("Outcome title is required")
    outcome = Outcome(title=title, category=_clean(category))
    session.add(outcome)
    session.commit()
    session.refresh(outcome)
    logger.info("Created outcome %s (%s)", outcome.id, outcome.title)
    return outcome


def update_outcome(
    session: Session, outcome_id: int, title: str, category: Optional[str] = None
) -> Outcome:
    outcome = get_outcome(session, outcome_id)
    title = title.strip()
    if not title:
        raise ValueError("Outcome title is required")
    outcome.title = title
    outcome.category = _clean(category)
    outcome.updated_at = datetime.utcnow()
    session.add(outcome)
    session.commit()
    session.refresh(outcome)
    return outcome


def set_outcome_status(session: Session, outcome_id: int, status: OutcomeStatus) -> Outcome:
    outcome = get_outcome(session, outcome_id)
    status = OutcomeStatus(status)
    if status not in OUTCOME_TRANSITIONS[outcome.status]:
        raise StatusTransitionError(
            f"Outcome cannot move from {outcome.status.value} to {status.value}"
        )
    outcome.status = status
    outcome.updated_at = datetime.utcnow()
    session.add(outcome)
    session.commit()
    session.refresh(outcome)
    return outcome


# --- Outputs ---


def get_output(session: Session, output_id: int) -> Output:
    return _get(session, Output, output_id)


def list_outputs(
    session: Session,
    outcome_ids: Optional[Iterable[int]] = None,
    active_only: bool = False,
) -> list[Output]:
    stmt = select(Output).order_by(Output.created_at, Output.id)
    if outcome_ids is not None:
        stmt = stmt.where(Output.outcome_id.in_(list(outcome_ids)))
    if active_only:
        stmt = stmt.where(Output.status == OutputStatus.active)
    return list(session.exec(stmt).all())


def count_outputs(session: Session, outcome_id: int) -> int:
    return len(list_outputs(session, [outcome_id]))


def _apply_draft(output: Output, draft: OutputDraft) -> None:
    output.description = draft.description.strip()
    output.frequency_type = draft.frequency_type
    output.frequency_value = draft.frequency_value
    output.schedule_weekdays = (
        json.dumps(list(draft.schedule_weekdays)) if draft.schedule_weekdays else None
    )


def _frequency_snapshot(output: Output) -> dict:
    return {
        "description": output.description,
        "frequency_type": output.frequency_type.value,
        "frequency_value": output.frequency_value,
        "schedule_weekdays": output.weekday_list or None,
    }


def draft_from_output(output: Output) -> OutputDraft:
    return OutputDraft(
        description=output.description,
        frequency_type=output.frequency_type,
        frequency_value=output.frequency_value,
        schedule_weekdays=tuple(output.weekday_list),
        starter_applied=output.is_starter,
    )


def create_output(session: Session, outcome_id: int, draft: OutputDraft) -> Output:
    """Validate, normalize and insert a new output.

    ``is_starter`` is only kept when the output is the outcome's first one and
    the draft came from an accepted starter suggestion.
    """
    get_outcome(session, outcome_id)
    validate_draft(draft)
    draft = normalize(draft)
    is_first = count_outputs(session, outcome_id) == 0

    output = Output(outcome_id=outcome_id, description="", is_starter=is_first and draft.starter_applied)
    _apply_draft(output, draft)
    session.add(output)
    session.commit()
    session.refresh(output)
    logger.info("Created output %s under outcome %s", output.id, outcome_id)
    return output


def update_output(
    session: Session,
    output_id: int,
    draft: OutputDraft,
    reason: str = "manual edit",
) -> Output:
    """Re-normalize and save an edited output, recording the change."""
    output = get_output(session, output_id)
    validate_draft(draft)
    draft = normalize(draft)

    before = _frequency_snapshot(output)
    _apply_draft(output, draft)
    output.updated_at = datetime.utcnow()
    session.add(output)
    session.add(
        OutputChangeLog(
            output_id=output_id,
            change_type="output_updated",
            old_value=json.dumps(before),
            new_value=json.dumps(_frequency_snapshot(output)),
            reason=_clean(reason),
        )
    )
    session.commit()
    session.refresh(output)
    return output


def set_output_status(session: Session, output_id: int, status: OutputStatus) -> Output:
    output = get_output(session, output_id)
    status = OutputStatus(status)
    if status not in OUTPUT_TRANSITIONS[output.status]:
        raise StatusTransitionError(
            f"Output cannot move from {output.status.value} to {status.value}"
        )
    old = output.status
    output.status = status
    output.updated_at = datetime.utcnow()
    session.add(output)
    session.add(
        OutputChangeLog(
            output_id=output_id,
            change_type="status_changed",
            old_value=json.dumps({"status": old.value}),
            new_value=json.dumps({"status": status.value}),
        )
    )
    session.commit()
    session.refresh(output)
    return output


def list_output_changes(session: Session, output_id: int) -> list[OutputChangeLog]:
    return list(
        session.exec(
            select(OutputChangeLog)
            .where(OutputChangeLog.output_id == output_id)
            .order_by(OutputChangeLog.created_at, OutputChangeLog.id)
        ).all()
    )


# --- Action logs ---


def upsert_action_log(
    session: Session,
    output_id: int,
    action_date: date,
    completed: int,
    total: int,
    notes: Optional[str] = None,
) -> ActionLog:
    """Insert or overwrite the log for (output, date). Negative counts become 0."""
    get_output(session, output_id)
    log = session.exec(
        select(ActionLog).where(
            ActionLog.output_id == output_id, ActionLog.action_date == action_date
        )
    ).first()
    if log is None:
        log = ActionLog(output_id=output_id, action_date=action_date)
    log.completed = max(0, int(completed or 0))
    log.total = max(0, int(total or 0))
    log.notes = _clean(notes)
    session.add(log)
    session.commit()
    session.refresh(log)
    return log


def logs_in_window(
    session: Session, output_ids: Iterable[int], start: date, end: date
) -> list[ActionLog]:
    ids = list(output_ids)
    if not ids:
        return []
    return list(
        session.exec(
            select(ActionLog).where(
                ActionLog.output_id.in_(ids),
                ActionLog.action_date >= start,
                ActionLog.action_date <= end,
            )
        ).all()
    )


# --- Shortfall tags and reflections ---


def tags_in_window(
    session: Session, output_ids: Iterable[int], week_start: date, week_end: date
) -> list[ShortfallTag]:
    ids = list(output_ids)
    if not ids:
        return []
    return list(
        session.exec(
            select(ShortfallTag).where(
                ShortfallTag.output_id.in_(ids),
                or_(
                    and_(
                        ShortfallTag.occurrence_date >= week_start,
                        ShortfallTag.occurrence_date <= week_end,
                    ),
                    ShortfallTag.week_start == week_start,
                ),
            )
        ).all()
    )


def save_shortfall_tag(
    session: Session,
    output_id: int,
    reason: ShortfallReason,
    other_text: Optional[str] = None,
    occurrence_date: Optional[date] = None,
    week_start: Optional[date] = None,
) -> ShortfallTag:
    """Create or update the one tag for an occurrence or a week."""
    text = validate_shortfall_tag(occurrence_date, week_start, reason, other_text)
    get_output(session, output_id)

    stmt = select(ShortfallTag).where(ShortfallTag.output_id == output_id)
    if occurrence_date is not None:
        stmt = stmt.where(ShortfallTag.occurrence_date == occurrence_date)
    else:
        stmt = stmt.where(ShortfallTag.week_start == week_start)
    tag = session.exec(stmt).first()
    if tag is None:
        tag = ShortfallTag(
            output_id=output_id,
            occurrence_date=occurrence_date,
            week_start=week_start,
            reason=reason,
        )
    tag.reason = ShortfallReason(reason)
    tag.other_text = text
    session.add(tag)
    session.commit()
    session.refresh(tag)
    return tag


def reflections_for_week(
    session: Session, outcome_ids: Iterable[int], week_start: date
) -> list[Reflection]:
    ids = list(outcome_ids)
    if not ids:
        return []
    return list(
        session.exec(
            select(Reflection).where(
                Reflection.outcome_id.in_(ids),
                Reflection.period_type == "weekly",
                Reflection.period_start == week_start,
            )
        ).all()
    )


def save_reflection(
    session: Session,
    outcome_id: int,
    week_start: date,
    what_worked: str = "",
    what_didnt: str = "",
    what_to_change: str = "",
) -> Reflection:
    get_outcome(session, outcome_id)
    reflection = session.exec(
        select(Reflection).where(
            Reflection.outcome_id == outcome_id,
            Reflection.period_type == "weekly",
            Reflection.period_start == week_start,
        )
    ).first()
    if reflection is None:
        reflection = Reflection(outcome_id=outcome_id, period_start=week_start)
    reflection.what_worked = what_worked
    reflection.what_didnt = what_didnt
    reflection.what_to_change = what_to_change
    session.add(reflection)
    session.commit()
    session.refresh(reflection)
    return reflection


# --- Settings ---


def get_settings(session: Session) -> UserSettings:
    """Return the settings row, creating it with defaults on first use."""
    settings = session.exec(select(UserSettings)).first()
    if settings is None:
        settings = UserSettings()
        session.add(settings)
        session.commit()
        session.refresh(settings)
    return settings


def _check_time(name: str, value: Optional[str]) -> Optional[str]:
    value = _clean(value)
    if value is not None and not TIME_PATTERN.match(value):
        raise SettingsError(f"{name} must be HH:MM, got {value!r}")
    return value


def update_settings(
    session: Session,
    start_of_week: Optional[int] = None,
    reminders_enabled: Optional[bool] = None,
    daily_reminder_time: Optional[str] = None,
    weekly_review_reminder_time: Optional[str] = None,
    notifications_permitted: Optional[bool] = None,
) -> UserSettings:
    """Update provided fields. Pass an empty string to clear a reminder time."""
    settings = get_settings(session)
    if start_of_week is not None:
        if start_of_week not in (0, 1):
            raise SettingsError("start_of_week must be 0 (Sunday) or 1 (Monday)")
        settings.start_of_week = start_of_week
    if daily_reminder_time is not None:
        settings.daily_reminder_time = _check_time("daily_reminder_time", daily_reminder_time)
    if weekly_review_reminder_time is not None:
        settings.weekly_review_reminder_time = _check_time(
            "weekly_review_reminder_time", weekly_review_reminder_time
        )
    if reminders_enabled is not None:
        settings.reminders_enabled = reminders_enabled
    if notifications_permitted is not None:
        settings.notifications_permitted = notifications_permitted
    session.add(settings)
    session.commit()
    session.refresh(settings)
    return settings


def reminder_settings(settings: UserSettings) -> ReminderSettings:
    return ReminderSettings(
        reminders_enabled=settings.reminders_enabled,
        daily_reminder_time=settings.daily_reminder_time,
        weekly_review_reminder_time=settings.weekly_review_reminder_time,
        start_of_week=settings.start_of_week,
    )


# --- Reminder markers and inbox ---


class SqlMarkerStore:
    """Reminder markers kept in the ``remindermarker`` table."""

    def __init__(self, engine):
        self.engine = engine

    def get(self, key: str) -> Optional[str]:
        with Session(self.engine) as session:
            marker = session.exec(
                select(ReminderMarker).where(ReminderMarker.key == key)
            ).first()
            return marker.value if marker else None

    def set(self, key: str, value: str) -> None:
        with Session(self.engine) as session:
            marker = session.exec(
                select(ReminderMarker).where(ReminderMarker.key == key)
            ).first()
            if marker is None:
                marker = ReminderMarker(key=key, value=value)
            marker.value = value
            session.add(marker)
            session.commit()


class InboxNotifier:
    """Delivers reminders by storing them for the client to fetch."""

    def __init__(self, engine, permitted: bool):
        self.engine = engine
        self.permitted = permitted

    def permission_granted(self) -> bool:
        return self.permitted

    def fire(self, title: str, body: str) -> None:
        with Session(self.engine) as session:
            session.add(ReminderNotification(title=title, body=body))
            session.commit()


def list_notifications(session: Session, unread_only: bool = True) -> list[ReminderNotification]:
    stmt = select(ReminderNotification).order_by(ReminderNotification.created_at.desc())
    if unread_only:
        stmt = stmt.where(ReminderNotification.read == False)  # noqa: E712
    return list(session.exec(stmt).all())


def mark_notifications_read(session: Session, ids: Iterable[int]) -> int:
    count = 0
    for notification_id in ids:
        notification = session.get(ReminderNotification, notification_id)
        if notification and not notification.read:
            notification.read = True
            session.add(notification)
            count += 1
    session.commit()
    return count


# --- Metrics ---


def _clear_primary(session: Session, outcome_id: int, keep_id: Optional[int] = None) -> None:
    stmt = select(Metric).where(Metric.outcome_id == outcome_id, Metric.is_primary == True)  # noqa: E712
    for metric in session.exec(stmt).all():
        if metric.id != keep_id:
            metric.is_primary = False
            session.add(metric)


def list_metrics(session: Session, outcome_id: Optional[int] = None) -> list[Metric]:
    stmt = select(Metric).order_by(Metric.created_at.desc(), Metric.id.desc())
    if outcome_id is not None:
        stmt = stmt.where(Metric.outcome_id == outcome_id)
    return list(session.exec(stmt).all())


def create_metric(
    session: Session, outcome_id: int, name: str, unit: str, is_primary: bool = False
) -> Metric:
    """Add a metric; a new primary metric demotes the outcome's previous one."""
    get_outcome(session, outcome_id)
    if is_primary:
        _clear_primary(session, outcome_id)
    metric = Metric(outcome_id=outcome_id, name=name.strip(), unit=unit.strip(), is_primary=is_primary)
    session.add(metric)
    session.commit()
    session.refresh(metric)
    return metric


def update_metric(
    session: Session,
    metric_id: int,
    name: Optional[str] = None,
    unit: Optional[str] = None,
    is_primary: Optional[bool] = None,
) -> Metric:
    metric = _get(session, Metric, metric_id)
    if name is not None:
        metric.name = name.strip()
    if unit is not None:
        metric.unit = unit.strip()
    if is_primary is not None:
        if is_primary:
            _clear_primary(session, metric.outcome_id, keep_id=metric.id)
        metric.is_primary = is_primary
    metric.updated_at = datetime.utcnow()
    session.add(metric)
    session.commit()
    session.refresh(metric)
    return metric


def delete_metric(session: Session, metric_id: int) -> None:
    metric = _get(session, Metric, metric_id)
    for entry in list_metric_entries(session, metric_id):
        session.delete(entry)
    session.delete(metric)
    session.commit()


def list_metric_entries(session: Session, metric_id: int) -> list[MetricEntry]:
    return list(
        session.exec(
            select(MetricEntry)
            .where(MetricEntry.metric_id == metric_id)
            .order_by(MetricEntry.entry_date, MetricEntry.id)
        ).all()
    )


def create_metric_entry(session: Session, metric_id: int, entry_date: date, value: float) -> MetricEntry:
    _get(session, Metric, metric_id)
    entry = MetricEntry(metric_id=metric_id, entry_date=entry_date, value=value)
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry


def update_metric_entry(
    session: Session,
    entry_id: int,
    entry_date: Optional[date] = None,
    value: Optional[float] = None,
) -> MetricEntry:
    entry = _get(session, MetricEntry, entry_id)
    if entry_date is not None:
        entry.entry_date = entry_date
    if value is not None:
        entry.value = value
    entry.updated_at = datetime.utcnow()
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry


def delete_metric_entry(session: Session, entry_id: int) -> None:
    entry = _get(session, MetricEntry, entry_id)
    session.delete(entry)
    session.commit()


# --- Purge ---


def purge_all(session: Session) -> None:
    """Delete every row the service owns, children first."""
    for model in (
        MetricEntry,
        Metric,
        ShortfallTag,
        ActionLog,
        OutputChangeLog,
        Reflection,
        Output,
        Outcome,
        ReminderMarker,
        ReminderNotification,
        UserSettings,
    ):
        for row in session.exec(select(model)).all():
            session.delete(row)
    session.commit()
    logger.info("Purged all outcome data")

"""MCP Outcomes Service – outputs-to-outcomes tracker with FastMCP."""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import Callable, Optional, assert_never

from jose import JWTError, jwt
from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings
from sqlmodel import Session, SQLModel, create_engine
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Mount
from starlette.types import ASGIApp, Receive, Scope, Send

import store
from accounting import (
    DayStatus,
    day_status,
    index_logs,
    missed_count,
    outcome_completion_rate,
    round_percent,
    week_summary,
    weekly_progress,
)
from frequency import Daily, FixedWeekly, FlexibleWeekly, FrequencyType, OutputDraft, describe
from models import (
    ActionLog,
    Metric,
    MetricEntry,
    Outcome,
    OutcomeStatus,
    Output,
    OutputStatus,
    Reflection,
    ShortfallTag,
    UserSettings,
)
from reminders import CHECK_INTERVAL_SECONDS, start_reminder_scheduler
from schedule import is_scheduled
from shortfall import ShortfallReason, occurrence_key, shortfalls_for, week_key
from starter import suggest_starter
from weeks import week_window

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Database setup
# ---------------------------------------------------------------------------

DB_PATH = os.getenv("DB_PATH", "/data/outcomes.db")
engine = create_engine(f"sqlite:///{DB_PATH}", echo=False)


def init_db():
    SQLModel.metadata.create_all(engine)


init_db()

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
REMINDER_INTERVAL_SECONDS = int(
    os.getenv("REMINDER_INTERVAL_SECONDS", str(CHECK_INTERVAL_SECONDS))
)

# ---------------------------------------------------------------------------
# FastMCP server
# ---------------------------------------------------------------------------

INSTRUCTIONS = """You help the user keep the recurring outputs that move their outcomes forward.

- Outcomes are goals; outputs are the recurring actions under them
  (daily, fixed weekdays, or N times per week).
- Use get_daily_dashboard() to see what is due today and log progress with log_action().
- When the user adds the first output to an outcome, call suggest_starter_output()
  first and offer the gentler schedule if there is one.
- At the end of the week use get_weekly_review(), ask for a reason for each shortfall
  and save it with save_shortfall_tag(), then save a reflection per outcome.
- Check get_reminders() for reminders that fired since the last conversation."""

# DNS rebinding protection is disabled: this service runs behind Traefik (trusted network)
_security = TransportSecuritySettings(allowed_hosts=["localhost"])
mcp = FastMCP(
    "mcp-outcomes",
    stateless_http=True,
    transport_security=_security,
    instructions=INSTRUCTIONS,
)

# ---------------------------------------------------------------------------
# JWT auth middleware (raw ASGI, streams pass through untouched)
# ---------------------------------------------------------------------------


class JWTAuthMiddleware:
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            response = Response(status_code=401)
            await response(scope, receive, send)
            return

        token = auth_header[7:]
        try:
            jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        except JWTError:
            response = Response(status_code=401)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def date_module_today() -> date:
    """Get today's date. Separated for testability."""
    return date.today()


def _parse_date(value: Optional[str]) -> date:
    return date.fromisoformat(value) if value else date_module_today()


def _error(e: Exception) -> dict:
    return {"error": str(e)}


def _outcome_to_dict(outcome: Outcome) -> dict:
    return {
        "id": outcome.id,
        "title": outcome.title,
        "category": outcome.category,
        "status": outcome.status.value,
        "created_at": outcome.created_at.isoformat(),
        "updated_at": outcome.updated_at.isoformat(),
    }


def _output_to_dict(output: Output) -> dict:
    return {
        "id": output.id,
        "outcome_id": output.outcome_id,
        "description": output.description,
        "frequency_type": output.frequency_type.value,
        "frequency_value": output.frequency_value,
        "schedule_weekdays": output.weekday_list or None,
        "frequency": describe(output.frequency),
        "is_starter": output.is_starter,
        "status": output.status.value,
        "created_at": output.created_at.isoformat(),
        "updated_at": output.updated_at.isoformat(),
    }


def _log_to_dict(log: Optional[ActionLog]) -> Optional[dict]:
    if log is None:
        return None
    return {
        "id": log.id,
        "output_id": log.output_id,
        "action_date": log.action_date.isoformat(),
        "completed": log.completed,
        "total": log.total,
        "notes": log.notes,
    }


def _tag_to_dict(tag: Optional[ShortfallTag]) -> Optional[dict]:
    if tag is None:
        return None
    return {
        "id": tag.id,
        "output_id": tag.output_id,
        "occurrence_date": tag.occurrence_date.isoformat() if tag.occurrence_date else None,
        "week_start": tag.week_start.isoformat() if tag.week_start else None,
        "reason": tag.reason.value,
        "other_text": tag.other_text,
    }


def _reflection_to_dict(reflection: Optional[Reflection]) -> Optional[dict]:
    if reflection is None:
        return None
    return {
        "id": reflection.id,
        "outcome_id": reflection.outcome_id,
        "week_start": reflection.period_start.isoformat(),
        "what_worked": reflection.what_worked,
        "what_didnt": reflection.what_didnt,
        "what_to_change": reflection.what_to_change,
    }


def _settings_to_dict(settings: UserSettings) -> dict:
    return {
        "start_of_week": settings.start_of_week,
        "reminders_enabled": settings.reminders_enabled,
        "daily_reminder_time": settings.daily_reminder_time,
        "weekly_review_reminder_time": settings.weekly_review_reminder_time,
        "notifications_permitted": settings.notifications_permitted,
    }


def _metric_to_dict(metric: Metric, entries: list[MetricEntry]) -> dict:
    return {
        "id": metric.id,
        "outcome_id": metric.outcome_id,
        "name": metric.name,
        "unit": metric.unit,
        "is_primary": metric.is_primary,
        "entries": [
            {"id": e.id, "entry_date": e.entry_date.isoformat(), "value": e.value}
            for e in entries
        ],
    }


def _draft(
    description: str,
    frequency_type: str,
    frequency_value: int,
    schedule_weekdays: Optional[list[int]],
    starter_applied: bool = False,
) -> OutputDraft:
    return OutputDraft(
        description=description,
        frequency_type=FrequencyType(frequency_type),
        frequency_value=frequency_value,
        schedule_weekdays=tuple(schedule_weekdays or ()),
        starter_applied=starter_applied,
    )


# ---------------------------------------------------------------------------
# Reminder scheduler
# ---------------------------------------------------------------------------

_stop_reminders: Callable[[], Optional[asyncio.Task]] = lambda: None


async def stop_reminders() -> None:
    """Cancel the reminder task, if any, and wait until it has finished."""
    global _stop_reminders
    task = _stop_reminders()
    _stop_reminders = lambda: None
    if task is None:
        return
    try:
        await task
    except asyncio.CancelledError:
        pass


async def restart_reminders() -> None:
    """(Re)start the reminder scheduler from the stored settings."""
    global _stop_reminders
    await stop_reminders()
    with Session(engine) as session:
        settings = store.get_settings(session)
        permitted = settings.notifications_permitted
        reminder_settings = store.reminder_settings(settings)
    _stop_reminders = start_reminder_scheduler(
        reminder_settings,
        store.SqlMarkerStore(engine),
        store.InboxNotifier(engine, permitted),
        interval=REMINDER_INTERVAL_SECONDS,
    )


# ---------------------------------------------------------------------------
# Tools: outcomes
# ---------------------------------------------------------------------------


@mcp.tool()
def list_outcomes(status: Optional[str] = None) -> list[dict] | dict:
    """List outcomes (newest first) with their outputs.

    Args:
        status: Optional filter: active, archived or retired
    """
    try:
        status_filter = OutcomeStatus(status) if status else None
    except ValueError as e:
        return _error(e)

    with Session(engine) as session:
        outcomes = store.list_outcomes(session, status_filter)
        outputs = store.list_outputs(session, [o.id for o in outcomes])
        result = []
        for outcome in outcomes:
            d = _outcome_to_dict(outcome)
            d["outputs"] = [_output_to_dict(o) for o in outputs if o.outcome_id == outcome.id]
            result.append(d)
        return result


@mcp.tool()
def create_outcome(title: str, category: Optional[str] = None) -> dict:
    """Create a new outcome (goal)."""
    with Session(engine) as session:
        try:
            outcome = store.create_outcome(session, title, category)
        except ValueError as e:
            return _error(e)
        return _outcome_to_dict(outcome)


@mcp.tool()
def update_outcome(outcome_id: int, title: str, category: Optional[str] = None) -> dict:
    """Rename an outcome or change its category."""
    with Session(engine) as session:
        try:
            outcome = store.update_outcome(session, outcome_id, title, category)
        except (LookupError, ValueError) as e:
            return _error(e)
        return _outcome_to_dict(outcome)


@mcp.tool()
def set_outcome_status(outcome_id: int, status: str) -> dict:
    """Archive, retire or reactivate an outcome.

    Args:
        outcome_id: Outcome to change
        status: active, archived or retired
    """
    with Session(engine) as session:
        try:
            outcome = store.set_outcome_status(session, outcome_id, OutcomeStatus(status))
        except (LookupError, ValueError) as e:
            return _error(e)
        return _outcome_to_dict(outcome)


# ---------------------------------------------------------------------------
# Tools: outputs
# ---------------------------------------------------------------------------


@mcp.tool()
def suggest_starter_output(
    outcome_id: int,
    description: str,
    frequency_type: str,
    frequency_value: int = 1,
    schedule_weekdays: Optional[list[int]] = None,
) -> dict:
    """Suggest a gentler schedule for an outcome's first output.

    Returns {"suggestion": None} when the outcome already has outputs or the
    schedule is already modest. Pass starter_applied=True to create_output when
    the user accepts the suggestion.

    Args:
        outcome_id: Outcome the output will belong to
        description: What the output is
        frequency_type: daily, fixed_weekly or flexible_weekly
        frequency_value: Times per week (flexible_weekly only)
        schedule_weekdays: Weekday numbers, 0 = Sunday (fixed_weekly only)
    """
    with Session(engine) as session:
        try:
            store.get_outcome(session, outcome_id)
            draft = _draft(description, frequency_type, frequency_value, schedule_weekdays)
        except (LookupError, ValueError) as e:
            return _error(e)
        if store.count_outputs(session, outcome_id) > 0:
            return {"suggestion": None}

    suggestion = suggest_starter(draft)
    if suggestion is None:
        return {"suggestion": None}
    revised = suggestion.draft
    return {
        "suggestion": {
            "frequency_type": revised.frequency_type.value,
            "frequency_value": revised.frequency_value,
            "schedule_weekdays": list(revised.schedule_weekdays) or None,
            "frequency": describe(revised.frequency),
            "reason": suggestion.reason,
        }
    }


@mcp.tool()
def create_output(
    outcome_id: int,
    description: str,
    frequency_type: str = "daily",
    frequency_value: int = 1,
    schedule_weekdays: Optional[list[int]] = None,
    starter_applied: bool = False,
) -> dict:
    """Add a recurring output to an outcome.

    Args:
        outcome_id: Owning outcome
        description: What the output is
        frequency_type: daily, fixed_weekly or flexible_weekly
        frequency_value: Times per week (flexible_weekly, 1-7)
        schedule_weekdays: Weekday numbers, 0 = Sunday (fixed_weekly)
        starter_applied: True when the schedule came from suggest_starter_output
    """
    with Session(engine) as session:
        try:
            draft = _draft(
                description, frequency_type, frequency_value, schedule_weekdays, starter_applied
            )
            output = store.create_output(session, outcome_id, draft)
        except (LookupError, ValueError) as e:
            return _error(e)
        return _output_to_dict(output)


@mcp.tool()
def update_output(
    output_id: int,
    description: Optional[str] = None,
    frequency_type: Optional[str] = None,
    frequency_value: Optional[int] = None,
    schedule_weekdays: Optional[list[int]] = None,
    reason: Optional[str] = None,
) -> dict:
    """Update provided fields of an output. The schedule is re-normalized on every edit."""
    with Session(engine) as session:
        try:
            output = store.get_output(session, output_id)
            changes = {}
            if description is not None:
                changes["description"] = description
            if frequency_type is not None:
                changes["frequency_type"] = FrequencyType(frequency_type)
            if frequency_value is not None:
                changes["frequency_value"] = frequency_value
            if schedule_weekdays is not None:
                changes["schedule_weekdays"] = schedule_weekdays
            draft = store.draft_from_output(output).with_changes(**changes)
            output = store.update_output(
                session, output_id, draft, reason or "manual edit"
            )
        except (LookupError, ValueError) as e:
            return _error(e)
        return _output_to_dict(output)


@mcp.tool()
def set_output_status(output_id: int, status: str) -> dict:
    """Pause, retire or reactivate an output.

    Args:
        output_id: Output to change
        status: active, paused or retired
    """
    with Session(engine) as session:
        try:
            output = store.set_output_status(session, output_id, OutputStatus(status))
        except (LookupError, ValueError) as e:
            return _error(e)
        return _output_to_dict(output)


@mcp.tool()
def get_output_history(output_id: int) -> list[dict]:
    """Schedule and status changes recorded for an output, oldest first."""
    with Session(engine) as session:
        return [
            {
                "change_type": c.change_type,
                "old_value": c.old_value,
                "new_value": c.new_value,
                "reason": c.reason,
                "created_at": c.created_at.isoformat(),
            }
            for c in store.list_output_changes(session, output_id)
        ]


# ---------------------------------------------------------------------------
# Tools: daily logging
# ---------------------------------------------------------------------------


@mcp.tool()
def log_action(
    output_id: int,
    completed: int,
    total: int = 1,
    notes: Optional[str] = None,
    action_date: Optional[str] = None,
) -> dict:
    """Record progress on an output for a day (replaces that day's entry).

    Args:
        output_id: Output being logged
        completed: Units done
        total: Units planned for the day
        notes: Optional note
        action_date: Date in YYYY-MM-DD format (defaults to today)
    """
    with Session(engine) as session:
        try:
            day = _parse_date(action_date)
            output = store.get_output(session, output_id)
            log = store.upsert_action_log(session, output_id, day, completed, total, notes)
        except (LookupError, ValueError) as e:
            return _error(e)
        d = _log_to_dict(log)
        d["status"] = day_status(output, day, log).value
        return d


@mcp.tool()
def get_daily_dashboard(date: Optional[str] = None) -> dict:
    """Outputs due on a date, what was logged, and progress toward the weekly targets.

    Args:
        date: Date in YYYY-MM-DD format (defaults to today)
    """
    try:
        day = _parse_date(date)
    except ValueError as e:
        return _error(e)

    with Session(engine) as session:
        settings = store.get_settings(session)
        window = week_window(day, settings.start_of_week)
        yesterday = day - timedelta(days=1)

        outcomes = store.list_outcomes(session, OutcomeStatus.active)
        outputs = store.list_outputs(session, [o.id for o in outcomes], active_only=True)
        logs = index_logs(
            store.logs_in_window(
                session, [o.id for o in outputs], min(window.start, yesterday), window.end
            )
        )

        scheduled_count = 0
        completed_count = 0
        payload_outcomes = []
        for outcome in outcomes:
            rows = []
            for output in (o for o in outputs if o.outcome_id == outcome.id):
                records = logs.get(output.id, {})
                today_log = records.get(day)
                scheduled = is_scheduled(output, day)
                status = day_status(output, day, today_log)
                if scheduled:
                    scheduled_count += 1
                    if status is DayStatus.green:
                        completed_count += 1
                progress = weekly_progress(output, window.days, records)
                d = _output_to_dict(output)
                d.update(
                    scheduled_today=scheduled,
                    today_status=status.value,
                    today_log=_log_to_dict(today_log),
                    weekly_progress={
                        "completed": progress.completed,
                        "target": progress.target,
                        "rate": progress.rate,
                        "target_met": progress.target_met,
                    },
                )
                rows.append(d)
            payload_outcomes.append(
                {
                    "id": outcome.id,
                    "title": outcome.title,
                    "category": outcome.category,
                    "outputs": rows,
                }
            )

        return {
            "date": day.isoformat(),
            "week_start": window.start.isoformat(),
            "week_end": window.end.isoformat(),
            "start_of_week": settings.start_of_week,
            "missed_yesterday_count": missed_count(outputs, yesterday, logs),
            "scheduled_count": scheduled_count,
            "completed_count": completed_count,
            "completion_rate": round_percent(completed_count / scheduled_count)
            if scheduled_count
            else 0,
            "outcomes": payload_outcomes,
        }


# ---------------------------------------------------------------------------
# Tools: weekly review
# ---------------------------------------------------------------------------


@mcp.tool()
def get_weekly_review(anchor_date: Optional[str] = None) -> dict:
    """Week grid, completion percent per outcome, and the shortfalls that need a reason.

    Args:
        anchor_date: Any date in the week, YYYY-MM-DD (defaults to today)
    """
    try:
        anchor = _parse_date(anchor_date)
    except ValueError as e:
        return _error(e)

    with Session(engine) as session:
        settings = store.get_settings(session)
        window = week_window(anchor, settings.start_of_week)
        days = window.days

        outcomes = store.list_outcomes(session, OutcomeStatus.active)
        outcome_ids = [o.id for o in outcomes]
        outputs = store.list_outputs(session, outcome_ids, active_only=True)
        output_ids = [o.id for o in outputs]
        logs = index_logs(store.logs_in_window(session, output_ids, window.start, window.end))

        tags = {}
        for tag in store.tags_in_window(session, output_ids, window.start, window.end):
            if tag.occurrence_date is not None:
                tags[occurrence_key(tag.output_id, tag.occurrence_date)] = tag
            else:
                tags[week_key(tag.output_id, tag.week_start)] = tag
        reflections = {
            r.outcome_id: r
            for r in store.reflections_for_week(session, outcome_ids, window.start)
        }

        payload_outcomes = []
        for outcome in outcomes:
            members = [o for o in outputs if o.outcome_id == outcome.id]
            rows = []
            for output in members:
                records = logs.get(output.id, {})
                d = _output_to_dict(output)
                frequency = output.frequency
                match frequency:
                    case FlexibleWeekly():
                        summary = week_summary(output, days, records)
                        d["week_summary"] = {
                            "status": summary.status.value,
                            "completed": summary.completed,
                            "target": summary.target,
                        }
                    case Daily() | FixedWeekly():
                        d["days"] = [
                            {
                                "date": day.isoformat(),
                                "status": day_status(output, day, records.get(day)).value,
                            }
                            for day in days
                        ]
                    case _:
                        assert_never(frequency)
                d["shortfalls"] = [
                    {
                        "key": c.key,
                        "label": c.label,
                        "occurrence_date": c.occurrence_date.isoformat()
                        if c.occurrence_date
                        else None,
                        "week_start": c.week_start.isoformat() if c.week_start else None,
                        "tag": _tag_to_dict(tags.get(c.key)),
                    }
                    for c in shortfalls_for(output, days, records, window.start)
                ]
                rows.append(d)
            payload_outcomes.append(
                {
                    "id": outcome.id,
                    "title": outcome.title,
                    "category": outcome.category,
                    "completion_rate": outcome_completion_rate(members, days, logs),
                    "reflection": _reflection_to_dict(reflections.get(outcome.id)),
                    "outputs": rows,
                }
            )

        return {
            "week_start": window.start.isoformat(),
            "week_end": window.end.isoformat(),
            "start_of_week": settings.start_of_week,
            "days": [day.isoformat() for day in days],
            "outcomes": payload_outcomes,
        }


@mcp.tool()
def save_shortfall_tag(
    output_id: int,
    reason: str,
    other_text: Optional[str] = None,
    occurrence_date: Optional[str] = None,
    week_start: Optional[str] = None,
) -> dict:
    """Record why an occurrence (daily/fixed outputs) or a week (flexible outputs) fell short.

    Args:
        output_id: Output the shortfall belongs to
        reason: time, energy, motivation, external_blocker, forgot or other
        other_text: Required when reason is other
        occurrence_date: Missed day, YYYY-MM-DD (daily and fixed weekly outputs)
        week_start: Week start, YYYY-MM-DD (flexible weekly outputs)
    """
    with Session(engine) as session:
        try:
            tag = store.save_shortfall_tag(
                session,
                output_id,
                ShortfallReason(reason),
                other_text,
                occurrence_date=date.fromisoformat(occurrence_date) if occurrence_date else None,
                week_start=date.fromisoformat(week_start) if week_start else None,
            )
        except (LookupError, ValueError) as e:
            return _error(e)
        return _tag_to_dict(tag)


@mcp.tool()
def save_reflection(
    outcome_id: int,
    week_start: str,
    what_worked: str = "",
    what_didnt: str = "",
    what_to_change: str = "",
) -> dict:
    """Save (or replace) the weekly reflection for an outcome."""
    with Session(engine) as session:
        try:
            reflection = store.save_reflection(
                session,
                outcome_id,
                date.fromisoformat(week_start),
                what_worked,
                what_didnt,
                what_to_change,
            )
        except (LookupError, ValueError) as e:
            return _error(e)
        return _reflection_to_dict(reflection)


# ---------------------------------------------------------------------------
# Tools: settings and reminders
# ---------------------------------------------------------------------------


@mcp.tool()
def get_settings() -> dict:
    """Current week start and reminder settings."""
    with Session(engine) as session:
        return _settings_to_dict(store.get_settings(session))


@mcp.tool()
async def update_settings(
    start_of_week: Optional[int] = None,
    reminders_enabled: Optional[bool] = None,
    daily_reminder_time: Optional[str] = None,
    weekly_review_reminder_time: Optional[str] = None,
    notifications_permitted: Optional[bool] = None,
) -> dict:
    """Update provided settings and restart the reminder scheduler.

    Args:
        start_of_week: 0 = Sunday, 1 = Monday
        reminders_enabled: Turn reminders on or off
        daily_reminder_time: HH:MM local time, empty string to clear
        weekly_review_reminder_time: HH:MM on the last day of the week, empty string to clear
        notifications_permitted: Whether the user allows reminder notifications
    """
    with Session(engine) as session:
        try:
            settings = store.update_settings(
                session,
                start_of_week=start_of_week,
                reminders_enabled=reminders_enabled,
                daily_reminder_time=daily_reminder_time,
                weekly_review_reminder_time=weekly_review_reminder_time,
                notifications_permitted=notifications_permitted,
            )
        except ValueError as e:
            return _error(e)
        result = _settings_to_dict(settings)
    await restart_reminders()
    return result


@mcp.tool()
def get_reminders(unread_only: bool = True) -> list[dict]:
    """Reminders that have fired, newest first."""
    with Session(engine) as session:
        return [
            {
                "id": n.id,
                "title": n.title,
                "body": n.body,
                "read": n.read,
                "created_at": n.created_at.isoformat(),
            }
            for n in store.list_notifications(session, unread_only)
        ]


@mcp.tool()
def mark_reminders_read(reminder_ids: list[int]) -> dict:
    """Mark fired reminders as read."""
    with Session(engine) as session:
        return {"marked": store.mark_notifications_read(session, reminder_ids)}


# ---------------------------------------------------------------------------
# Tools: metrics
# ---------------------------------------------------------------------------


@mcp.tool()
def list_metrics(outcome_id: Optional[int] = None) -> list[dict]:
    """Metrics (optionally for one outcome) with their entries in date order."""
    with Session(engine) as session:
        return [
            _metric_to_dict(m, store.list_metric_entries(session, m.id))
            for m in store.list_metrics(session, outcome_id)
        ]


@mcp.tool()
def create_metric(outcome_id: int, name: str, unit: str, is_primary: bool = False) -> dict:
    """Add a metric to an outcome. Only one metric per outcome can be primary."""
    with Session(engine) as session:
        try:
            metric = store.create_metric(session, outcome_id, name, unit, is_primary)
        except LookupError as e:
            return _error(e)
        return _metric_to_dict(metric, [])


@mcp.tool()
def update_metric(
    metric_id: int,
    name: Optional[str] = None,
    unit: Optional[str] = None,
    is_primary: Optional[bool] = None,
) -> dict:
    """Update provided fields of a metric."""
    with Session(engine) as session:
        try:
            metric = store.update_metric(session, metric_id, name, unit, is_primary)
        except LookupError as e:
            return _error(e)
        return _metric_to_dict(metric, store.list_metric_entries(session, metric_id))


@mcp.tool()
def delete_metric(metric_id: int) -> dict:
    """Delete a metric and all of its entries."""
    with Session(engine) as session:
        try:
            store.delete_metric(session, metric_id)
        except LookupError as e:
            return _error(e)
        return {"deleted": metric_id}


@mcp.tool()
def add_metric_entry(metric_id: int, value: float, entry_date: Optional[str] = None) -> dict:
    """Record a metric value (entry_date defaults to today)."""
    with Session(engine) as session:
        try:
            entry = store.create_metric_entry(session, metric_id, _parse_date(entry_date), value)
        except (LookupError, ValueError) as e:
            return _error(e)
        return {"id": entry.id, "metric_id": metric_id, "entry_date": entry.entry_date.isoformat(), "value": entry.value}


@mcp.tool()
def update_metric_entry(
    entry_id: int, value: Optional[float] = None, entry_date: Optional[str] = None
) -> dict:
    """Correct a metric entry's value or date."""
    with Session(engine) as session:
        try:
            entry = store.update_metric_entry(
                session,
                entry_id,
                date.fromisoformat(entry_date) if entry_date else None,
                value,
            )
        except (LookupError, ValueError) as e:
            return _error(e)
        return {"id": entry.id, "metric_id": entry.metric_id, "entry_date": entry.entry_date.isoformat(), "value": entry.value}


@mcp.tool()
def delete_metric_entry(entry_id: int) -> dict:
    """Delete a metric entry."""
    with Session(engine) as session:
        try:
            store.delete_metric_entry(session, entry_id)
        except LookupError as e:
            return _error(e)
        return {"deleted": entry_id}


@mcp.tool()
async def purge_all_data(confirm: bool = False) -> dict:
    """Delete every outcome, output, log, tag, reflection, metric and setting.

    Args:
        confirm: Must be True; nothing is deleted otherwise
    """
    if not confirm:
        return {"error": "Pass confirm=True to delete all data"}
    await stop_reminders()
    with Session(engine) as session:
        store.purge_all(session)
    return {"status": "purged"}


# ---------------------------------------------------------------------------
# ASGI app
# ---------------------------------------------------------------------------


@asynccontextmanager
async def app_lifespan(app):
    init_db()
    async with mcp.session_manager.run():
        await restart_reminders()
        try:
            yield
        finally:
            await stop_reminders()


_mcp_inner = mcp.streamable_http_app()
_app = Starlette(routes=[Mount("/", app=_mcp_inner)], lifespan=app_lifespan)

app = JWTAuthMiddleware(_app)

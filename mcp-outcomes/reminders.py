"""Daily and weekly-review reminders.

A reminder fires when the local ``HH:MM`` equals the configured time. Each
firing is recorded in a marker store under a key for the day (or for the week's
start date); a key that is already present means the reminder went out and the
tick does nothing. Old keys are never cleared, they just stop matching.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

from weeks import last_day_of_week, week_start, weekday_number

logger = logging.getLogger(__name__)

CHECK_INTERVAL_SECONDS = 60

DAILY_TITLE = "Daily output reminder"
DAILY_BODY = "Log today's outputs in Outputs To Outcomes."
WEEKLY_TITLE = "Weekly review reminder"
WEEKLY_BODY = "Open your weekly review and reflect on the week."


class MarkerStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class Notifier(Protocol):
    def permission_granted(self) -> bool: ...

    def fire(self, title: str, body: str) -> None: ...


@dataclass(frozen=True)
class ReminderSettings:
    reminders_enabled: bool = False
    daily_reminder_time: Optional[str] = None  # "HH:MM"
    weekly_review_reminder_time: Optional[str] = None
    start_of_week: int = 1


def daily_key(now: datetime) -> str:
    return f"daily-reminder:{now.date().isoformat()}"


def weekly_key(now: datetime, start_of_week: int) -> str:
    return f"weekly-review:{week_start(now.date(), start_of_week).isoformat()}"


def check_reminders(
    settings: ReminderSettings,
    now: datetime,
    markers: MarkerStore,
    notifier: Notifier,
) -> list[str]:
    """Run a single tick. Returns the marker keys written by this tick."""
    fired = []
    time = now.strftime("%H:%M")

    if settings.daily_reminder_time and time == settings.daily_reminder_time:
        key = daily_key(now)
        if not markers.get(key):
            notifier.fire(DAILY_TITLE, DAILY_BODY)
            markers.set(key, "1")
            fired.append(key)

    if (
        settings.weekly_review_reminder_time
        and weekday_number(now.date()) == last_day_of_week(settings.start_of_week)
        and time == settings.weekly_review_reminder_time
    ):
        key = weekly_key(now, settings.start_of_week)
        if not markers.get(key):
            notifier.fire(WEEKLY_TITLE, WEEKLY_BODY)
            markers.set(key, "1")
            fired.append(key)

    for key in fired:
        logger.info("Reminder fired: %s", key)
    return fired


def _noop() -> Optional[asyncio.Task]:
    return None


async def reminder_loop(
    settings: ReminderSettings,
    markers: MarkerStore,
    notifier: Notifier,
    clock: Callable[[], datetime] = datetime.now,
    interval: float = CHECK_INTERVAL_SECONDS,
):
    """Tick now, then once per ``interval`` seconds until cancelled."""
    while True:
        try:
            check_reminders(settings, clock(), markers, notifier)
        except Exception:
            logger.exception("Reminder check failed")
        await asyncio.sleep(interval)


def start_reminder_scheduler(
    settings: ReminderSettings,
    markers: MarkerStore,
    notifier: Notifier,
    clock: Callable[[], datetime] = datetime.now,
    interval: float = CHECK_INTERVAL_SECONDS,
) -> Callable[[], Optional[asyncio.Task]]:
    """Start polling on the running event loop and return a function that stops it.

    The stop function cancels the polling task and returns it, so a caller on the
    loop can await it until the cancellation has finished. Nothing is started when
    reminders are disabled or notifications are not permitted; the returned
    function is then a no-op that returns None.
    """
    if not settings.reminders_enabled or not notifier.permission_granted():
        logger.info("Reminder scheduler not started (disabled or not permitted)")
        return _noop

    task = asyncio.get_running_loop().create_task(
        reminder_loop(settings, markers, notifier, clock, interval)
    )
    logger.info(
        "Reminder scheduler started (daily=%s, weekly=%s)",
        settings.daily_reminder_time,
        settings.weekly_review_reminder_time,
    )

    def dispose() -> asyncio.Task:
        if not task.done():
            task.cancel()
            logger.info("Reminder scheduler stopped")
        return task

    return dispose

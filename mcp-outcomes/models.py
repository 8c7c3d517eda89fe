import json
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from frequency import Frequency, FrequencyType, frequency_of
from shortfall import ShortfallReason


class OutcomeStatus(str, Enum):
    active = "active"
    archived = "archived"
    retired = "retired"


class OutputStatus(str, Enum):
    active = "active"
    paused = "paused"
    retired = "retired"


class Outcome(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    category: Optional[str] = None
    status: OutcomeStatus = OutcomeStatus.active
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Output(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    outcome_id: int = Field(foreign_key="outcome.id", index=True)
    description: str
    frequency_type: FrequencyType = FrequencyType.daily
    frequency_value: int = 1
    schedule_weekdays: Optional[str] = None  # JSON list: [1, 3, 5], 0 = Sunday
    is_starter: bool = False
    status: OutputStatus = OutputStatus.active
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def weekday_list(self) -> list[int]:
        return json.loads(self.schedule_weekdays) if self.schedule_weekdays else []

    @property
    def frequency(self) -> Frequency:
        return frequency_of(self.frequency_type, self.frequency_value, self.weekday_list)


class ActionLog(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("output_id", "action_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    output_id: int = Field(foreign_key="output.id", index=True)
    action_date: date = Field(index=True)
    completed: int = 0
    total: int = 0
    notes: Optional[str] = None


class ShortfallTag(SQLModel, table=True):
    # Exactly one of occurrence_date (daily/fixed) or week_start (flexible) is set.
    # NULLs are distinct in SQLite, so each constraint only binds its own kind of tag.
    __table_args__ = (
        UniqueConstraint("output_id", "occurrence_date"),
        UniqueConstraint("output_id", "week_start"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    output_id: int = Field(foreign_key="output.id", index=True)
    occurrence_date: Optional[date] = None
    week_start: Optional[date] = None
    reason: ShortfallReason
    other_text: Optional[str] = None


class Reflection(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    outcome_id: int = Field(foreign_key="outcome.id", index=True)
    period_type: str = "weekly"
    period_start: date
    what_worked: str = ""
    what_didnt: str = ""
    what_to_change: str = ""


class OutputChangeLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    output_id: int = Field(foreign_key="output.id", index=True)
    change_type: str
    old_value: str  # JSON object
    new_value: str  # JSON object
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class UserSettings(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    start_of_week: int = 1  # 0 = Sunday, 1 = Monday
    reminders_enabled: bool = False
    daily_reminder_time: Optional[str] = None  # "HH:MM"
    weekly_review_reminder_time: Optional[str] = None
    notifications_permitted: bool = False


class ReminderMarker(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(unique=True, index=True)
    value: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ReminderNotification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    body: str
    read: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Metric(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    outcome_id: int = Field(foreign_key="outcome.id", index=True)
    name: str
    unit: str
    is_primary: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class MetricEntry(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    metric_id: int = Field(foreign_key="metric.id", index=True)
    entry_date: date
    value: float
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

import asyncio
import json
import os
import tempfile
from datetime import date

# main.py opens its database at import time
os.environ["DB_PATH"] = os.path.join(tempfile.mkdtemp(), "outcomes-test.db")

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from frequency import FrequencyType
from models import ActionLog, Output

# Monday 2026-02-23 .. Sunday 2026-03-01
MONDAY = date(2026, 2, 23)
THURSDAY = date(2026, 2, 26)
SUNDAY = date(2026, 3, 1)


def make_output(
    frequency_type=FrequencyType.daily,
    frequency_value=1,
    weekdays=None,
    output_id=1,
    outcome_id=1,
) -> Output:
    return Output(
        id=output_id,
        outcome_id=outcome_id,
        description=f"output {output_id}",
        frequency_type=frequency_type,
        frequency_value=frequency_value,
        schedule_weekdays=json.dumps(weekdays) if weekdays else None,
    )


def make_log(day: date, completed: int, total: int = 1, output_id: int = 1) -> ActionLog:
    return ActionLog(output_id=output_id, action_date=day, completed=completed, total=total)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def service(monkeypatch):
    """The MCP service module on a clean database, with today pinned to THURSDAY."""
    import main

    SQLModel.metadata.drop_all(main.engine)
    SQLModel.metadata.create_all(main.engine)
    monkeypatch.setattr(main, "date_module_today", lambda: THURSDAY)
    yield main
    asyncio.run(main.stop_reminders())

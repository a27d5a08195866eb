"""Shared test fixtures and configuration.

Sets up environment variables before any choreledger import, and provides
temp-file databases, a controllable clock and an event recorder.
"""

import os
import tempfile

# Patch env vars BEFORE any choreledger imports
os.environ.setdefault("DATABASE_PATH", os.path.join(tempfile.mkdtemp(), "ledger.db"))
os.environ.setdefault("TIMEZONE", "America/New_York")
os.environ.setdefault("UNDO_WINDOW_MINUTES", "5")
os.environ.setdefault("STREAK_MILESTONES", "3,7")

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

NY = ZoneInfo("America/New_York")

# Wednesday 2026-03-04, 10:00 in New York
WEDNESDAY_10AM_UTC = datetime(2026, 3, 4, 15, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingEvents:
    """EventPort that keeps every published event."""

    def __init__(self) -> None:
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)

    def of_type(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_ledger.db")


@pytest.fixture
def ledger_db(tmp_db_path):
    from choreledger.data.db import LedgerDB
    return LedgerDB(db_path=tmp_db_path)


@pytest.fixture
def clock():
    return FakeClock(WEDNESDAY_10AM_UTC)


@pytest.fixture
def events():
    return RecordingEvents()


@pytest.fixture
def service(ledger_db, events, clock):
    from choreledger.core.ledger_service import LedgerService
    return LedgerService(ledger_db, events=events, clock=clock, tz=NY)


@pytest.fixture
def user(service):
    return service.users.add_user(household_id=1, display_name="Noa")


@pytest.fixture
def other_user(service):
    return service.users.add_user(household_id=1, display_name="Eli")


@pytest.fixture
def bonus_task(service):
    return service.tasks.add_task(
        household_id=1, name="Wash the car", task_type="bonus", dollar_value="2.00",
    )


@pytest.fixture
def free_task(service):
    """A routine task with no monetary value."""
    return service.tasks.add_task(household_id=1, name="Make bed", task_type="routine")

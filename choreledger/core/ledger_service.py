"""
Chore Ledger — Ledger Service.

Entry point for the task, routine and dashboard surfaces. Wires the
schedule evaluator, recorder, balance ledger, streak tracker and undo
coordinator together and returns structured result objects that each
surface renders its own way.

A task completion is two units of work: (completion + credit), then the
streak update when the completion finishes its routine for the day. The
streak update depends only on the date, so re-running it is harmless if
the second unit fails.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from choreledger.core.balance_ledger import BalanceLedger
from choreledger.core.completion_recorder import CompletionRecorder
from choreledger.core.errors import NotFoundError
from choreledger.core.schedule import parse_date
from choreledger.core.streak_tracker import StreakTracker
from choreledger.core.undo import UndoCoordinator
from choreledger.data.db import LedgerDB, TaskDB, UserDB, utc_now

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from choreledger.data.models import Completion, Streak, Task
    from choreledger.ports.event_port import EventPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


@dataclass
class CompletionOutcome:
    completion: Completion
    balance: Decimal
    streak: Streak | None = None      # set when the completion finished its routine


@dataclass
class TaskStatus:
    task: Task
    completion: Completion | None = None

    @property
    def done(self) -> bool:
        return self.completion is not None


@dataclass
class DashboardSummary:
    user_id: int
    day: date
    balance: Decimal
    total_streak: int
    streaks: list[Streak] = field(default_factory=list)
    tasks: list[TaskStatus] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "date": self.day.isoformat(),
            "balance": str(self.balance),
            "totalStreak": self.total_streak,
            "streaks": [s.to_dict() for s in self.streaks],
            "tasks": [
                {
                    "taskId": ts.task.id,
                    "name": ts.task.name,
                    "type": ts.task.task_type.value,
                    "dollarValue": str(ts.task.dollar_value),
                    "done": ts.done,
                    "completion": ts.completion.to_dict() if ts.completion else None,
                }
                for ts in self.tasks
            ],
        }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class LedgerService:
    """Stateless orchestration over the ledger components."""

    def __init__(
        self,
        db: LedgerDB,
        events: EventPort | None = None,
        clock: Callable[[], datetime] = utc_now,
        tz: ZoneInfo | None = None,
    ) -> None:
        from choreledger.config import settings

        if tz is None:
            tz = settings.tz
        self.db = db
        self.tz = tz
        self.users = UserDB(db)
        self.tasks = TaskDB(db)
        self.ledger = BalanceLedger(db, events=events, clock=clock)
        self.streaks = StreakTracker(db, events=events, tz=tz)
        self.recorder = CompletionRecorder(
            db, self.tasks, self.ledger, events=events, clock=clock, tz=tz,
        )
        self.undoer = UndoCoordinator(db, self.ledger, events=events, clock=clock)

    def complete_task(
        self, task_id: int, user_id: int, day: date | datetime | str | None = None,
    ) -> CompletionOutcome:
        """Record a completion, then advance the routine streak if it's now done."""
        completion = self.recorder.create(task_id, user_id, day)
        task = self.tasks.get_task(task_id)

        streak = None
        if task is not None and task.routine_id is not None:
            if self.routine_completed(task.routine_id, user_id, completion.completion_date):
                streak = self.streaks.update(
                    user_id, task.routine_id, completion.completion_date,
                )

        return CompletionOutcome(
            completion=completion,
            balance=self.ledger.get_balance(user_id),
            streak=streak,
        )

    def undo_completion(self, completion_id: int) -> Decimal:
        """Undo a completion and return the user's balance afterwards."""
        completion = self.recorder.get(completion_id)
        if completion is None:
            raise NotFoundError(f"Completion {completion_id} not found")
        self.undoer.undo(completion_id)
        return self.ledger.get_balance(completion.user_id)

    def record_routine(
        self, user_id: int, routine_id: int, day: date | datetime | str | None = None,
    ) -> Streak:
        """Advance a routine streak directly (routine surface)."""
        if self.tasks.get_routine(routine_id) is None:
            raise NotFoundError(f"Routine {routine_id} not found")
        return self.streaks.update(user_id, routine_id, self.recorder.resolve_date(day))

    def routine_completed(self, routine_id: int, user_id: int, day: date) -> bool:
        """True when every routine task the user owes on ``day`` is done.

        Tasks assigned only to other household members don't count.
        """
        due = self.tasks.tasks_for_user(user_id, day, routine_id=routine_id, tz=self.tz)
        if not due:
            return False
        return all(self.recorder.is_completed(t.id, user_id, day) for t in due)

    def dashboard(
        self, user_id: int, day: date | datetime | str | None = None,
    ) -> DashboardSummary:
        """Balance, streaks and the user's tasks for the day.

        Lists the tasks the user owes that day plus anything they completed
        that day, even off-schedule or assigned to someone else.
        """
        user = self.users.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        day = self.recorder.today() if day is None else parse_date(day, self.tz)

        done = {c.task_id: c for c in self.recorder.list_for_user(user_id, day)}
        due = {t.id for t in self.tasks.tasks_for_user(user_id, day, tz=self.tz)}
        statuses = [
            TaskStatus(task=t, completion=done.get(t.id))
            for t in self.tasks.list_tasks(household_id=user.household_id)
            if t.id in due or t.id in done
        ]
        return DashboardSummary(
            user_id=user_id,
            day=day,
            balance=self.ledger.get_balance(user_id),
            total_streak=self.streaks.get_total_streak(user_id),
            streaks=self.streaks.list_for_user(user_id),
            tasks=statuses,
        )


def build_ledger_service(
    db_path: str | None = None,
    events: EventPort | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> LedgerService:
    """Return a LedgerService on the configured database.

    Args:
        db_path: SQLite file; defaults to DATABASE_PATH.
        events: Subscriber for ledger events, e.g. a NotificationRelay.
        clock: Source of the current instant (timezone-aware).
    """
    db = LedgerDB(db_path=db_path)
    logger.info("Ledger service ready on %s", db.path)
    return LedgerService(db, events=events, clock=clock)

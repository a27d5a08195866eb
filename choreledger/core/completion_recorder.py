"""
Chore Ledger — Completion Recorder.

Records that a user finished a task on a household-local day, and credits
the task's value in the same transaction. The store's UNIQUE index on
(task, user, day) is the idempotency guard: a second attempt for the same
day fails with ConflictError no matter how the two writers interleave.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from datetime import date, datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from choreledger.core.errors import ConflictError, NotFoundError, ValidationError
from choreledger.core.events import BalanceChanged, CompletionCreated, publish
from choreledger.core.schedule import (
    day_name,
    is_scheduled,
    local_today,
    parse_date,
    weekday_number,
)
from choreledger.data.db import utc_now
from choreledger.data.models import Completion, TransactionType

if TYPE_CHECKING:
    from choreledger.core.balance_ledger import BalanceLedger
    from choreledger.data.db import LedgerDB, TaskDB
    from choreledger.ports.event_port import EventPort

logger = logging.getLogger(__name__)


class CompletionRecorder:
    """Creates and looks up completion records."""

    def __init__(
        self,
        db: LedgerDB,
        tasks: TaskDB,
        ledger: BalanceLedger,
        events: EventPort | None = None,
        clock: Callable[[], datetime] = utc_now,
        tz: ZoneInfo | None = None,
    ) -> None:
        if tz is None:
            from choreledger.config import settings
            tz = settings.tz
        self._db = db
        self._tasks = tasks
        self._ledger = ledger
        self._events = events
        self._clock = clock
        self._tz = tz

    @staticmethod
    def _row_to_completion(row: sqlite3.Row) -> Completion:
        return Completion(
            id=row["id"],
            task_id=row["task_id"],
            user_id=row["user_id"],
            completed_at=datetime.fromisoformat(row["completed_at"]),
            completion_date=date.fromisoformat(row["completion_date"]),
        )

    def today(self) -> date:
        """Household-local date right now."""
        return local_today(self._clock, self._tz)

    def resolve_date(self, day: date | datetime | str | None) -> date:
        """Validate a completion day: defaults to today, never in the future."""
        today = self.today()
        if day is None:
            return today
        resolved = parse_date(day, self._tz)
        if resolved > today:
            raise ValidationError(
                f"Completion date {resolved} is after today ({today})"
            )
        return resolved

    def create(
        self,
        task_id: int,
        user_id: int,
        day: date | datetime | str | None = None,
    ) -> Completion:
        """Record ``task_id`` as done by ``user_id`` on ``day`` (default today).

        Raises ConflictError if that completion already exists,
        NotFoundError if the task or user is unknown.
        """
        if task_id is None or user_id is None:
            raise ValidationError("Both a task and a user are required")
        completion_date = self.resolve_date(day)

        task = self._tasks.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")

        on_schedule = is_scheduled(task, completion_date, self._tz)
        if not on_schedule:
            logger.info(
                "Task #%d '%s' completed off-schedule on %s %s (scheduled: %s)",
                task.id, task.name, day_name(weekday_number(completion_date)),
                completion_date, ", ".join(day_name(d) for d in sorted(task.schedule)),
            )

        credit = None
        try:
            with self._db.transaction() as conn:
                # Read the clock inside the lock so completed_at orders like the commits
                completed_at = self._clock()
                cursor = conn.execute(
                    """
                    INSERT INTO completions (task_id, user_id, completed_at, completion_date)
                    VALUES (?, ?, ?, ?)
                    """,
                    (task.id, user_id, completed_at.isoformat(), completion_date.isoformat()),
                )
                completion = Completion(
                    id=cursor.lastrowid,
                    task_id=task.id,
                    user_id=user_id,
                    completed_at=completed_at,
                    completion_date=completion_date,
                )
                if task.dollar_value > 0:
                    credit = self._ledger.post(
                        conn, user_id, task.dollar_value, TransactionType.EARNED, task.name,
                    )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                logger.warning(
                    "Duplicate completion: task #%d user %d on %s",
                    task.id, user_id, completion_date,
                )
                raise ConflictError(
                    f"Task {task.id} already completed by user {user_id} on {completion_date}"
                ) from exc
            raise NotFoundError(f"User {user_id} not found") from exc

        logger.info(
            "Completion #%d: task #%d '%s' by user %d on %s",
            completion.id, task.id, task.name, user_id, completion_date,
        )

        events = [CompletionCreated(completion=completion, task_name=task.name, on_schedule=on_schedule)]
        if credit is not None:
            tx, balance = credit
            events.append(BalanceChanged(
                user_id=user_id,
                transaction_id=tx.id,
                amount=tx.amount,
                balance=balance,
                description=tx.description,
            ))
        publish(self._events, *events)
        return completion

    def get(self, completion_id: int) -> Completion | None:
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT * FROM completions WHERE id = ?", (completion_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_completion(row)

    def is_completed(
        self, task_id: int, user_id: int, day: date | datetime | str | None = None,
    ) -> Completion | None:
        """The completion for (task, user, day), if any. No side effects."""
        day = self.today() if day is None else parse_date(day, self._tz)
        with self._db.read() as conn:
            row = conn.execute(
                """
                SELECT * FROM completions
                WHERE task_id = ? AND user_id = ? AND completion_date = ?
                """,
                (task_id, user_id, day.isoformat()),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_completion(row)

    def list_for_user(
        self, user_id: int, day: date | datetime | str | None = None,
    ) -> list[Completion]:
        """Completions by a user on a day, newest first."""
        day = self.today() if day is None else parse_date(day, self._tz)
        with self._db.read() as conn:
            rows = conn.execute(
                """
                SELECT * FROM completions
                WHERE user_id = ? AND completion_date = ?
                ORDER BY completed_at DESC, id DESC
                """,
                (user_id, day.isoformat()),
            ).fetchall()
        return [self._row_to_completion(r) for r in rows]

    def list_for_task(
        self, task_id: int, day: date | datetime | str | None = None,
    ) -> list[Completion]:
        """Completions of a task on a day, newest first."""
        day = self.today() if day is None else parse_date(day, self._tz)
        with self._db.read() as conn:
            rows = conn.execute(
                """
                SELECT * FROM completions
                WHERE task_id = ? AND completion_date = ?
                ORDER BY completed_at DESC, id DESC
                """,
                (task_id, day.isoformat()),
            ).fetchall()
        return [self._row_to_completion(r) for r in rows]

    def history(self, user_id: int, limit: int = 50) -> list[Completion]:
        """The user's most recent completions across all days."""
        with self._db.read() as conn:
            rows = conn.execute(
                """
                SELECT * FROM completions
                WHERE user_id = ?
                ORDER BY completion_date DESC, completed_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        return [self._row_to_completion(r) for r in rows]

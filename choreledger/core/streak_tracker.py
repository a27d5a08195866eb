"""
Chore Ledger — Streak Tracker.

Consecutive-day streaks per (user, routine). The transition rule is a pure
function (``next_state``); ``StreakTracker.update`` applies it as one
read-modify-write under the store's write lock, so two same-day updates
submitted at once cannot both start from the old row.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import replace
from datetime import date, datetime
from typing import TYPE_CHECKING

from choreledger.core.errors import NotFoundError
from choreledger.core.events import StreakUpdated, publish
from choreledger.core.schedule import parse_date
from choreledger.data.models import Streak

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from choreledger.data.db import LedgerDB
    from choreledger.ports.event_port import EventPort

logger = logging.getLogger(__name__)


def next_state(prior: Streak, day: date) -> Streak:
    """Apply one contributing completion on ``day`` to ``prior``.

    - first completion ever: 1
    - the day after the last one: +1
    - the same day again: unchanged
    - a gap, or a day before the last one: back to 1
    """
    last = prior.last_completion_date
    if last is None:
        current = 1
    else:
        delta = (day - last).days
        if delta == 1:
            current = prior.current_count + 1
        elif delta == 0:
            current = prior.current_count
        else:
            current = 1

    return replace(
        prior,
        current_count=current,
        best_count=max(prior.best_count, current),
        last_completion_date=day,
    )


class StreakTracker:
    """Reads and advances streak rows."""

    def __init__(
        self,
        db: LedgerDB,
        events: EventPort | None = None,
        milestones: Iterable[int] | None = None,
        tz: ZoneInfo | None = None,
    ) -> None:
        from choreledger.config import settings

        if milestones is None:
            milestones = settings.STREAK_MILESTONES
        self._db = db
        self._events = events
        self._milestones = frozenset(milestones)
        self._tz = tz if tz is not None else settings.tz

    @staticmethod
    def _row_to_streak(row: sqlite3.Row) -> Streak:
        last = row["last_completion_date"]
        return Streak(
            user_id=row["user_id"],
            routine_id=row["routine_id"],
            current_count=row["current_count"],
            best_count=row["best_count"],
            last_completion_date=date.fromisoformat(last) if last else None,
        )

    @classmethod
    def _fetch(cls, conn: sqlite3.Connection, user_id: int, routine_id: int) -> Streak:
        row = conn.execute(
            "SELECT * FROM streaks WHERE user_id = ? AND routine_id = ?",
            (user_id, routine_id),
        ).fetchone()
        if row is None:
            return Streak(user_id=user_id, routine_id=routine_id)
        return cls._row_to_streak(row)

    def get(self, user_id: int, routine_id: int) -> Streak:
        """Current state; (0, 0, None) if the user never contributed."""
        with self._db.read() as conn:
            return self._fetch(conn, user_id, routine_id)

    def update(self, user_id: int, routine_id: int, day: date | datetime | str) -> Streak:
        """Record a contributing completion on ``day`` and return the new state.

        ``day`` is normalized to the household-local calendar day first.
        """
        day = parse_date(day, self._tz)
        try:
            with self._db.transaction() as conn:
                prior = self._fetch(conn, user_id, routine_id)
                new = next_state(prior, day)
                conn.execute(
                    """
                    INSERT INTO streaks
                        (user_id, routine_id, current_count, best_count, last_completion_date)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT (user_id, routine_id) DO UPDATE SET
                        current_count = excluded.current_count,
                        best_count = excluded.best_count,
                        last_completion_date = excluded.last_completion_date
                    """,
                    (
                        user_id, routine_id, new.current_count, new.best_count,
                        new.last_completion_date.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise NotFoundError(
                f"User {user_id} or routine {routine_id} not found"
            ) from exc

        logger.info(
            "Streak user %d routine %d on %s: %d -> %d (best %d)",
            user_id, routine_id, day, prior.current_count,
            new.current_count, new.best_count,
        )

        changed = new.current_count != prior.current_count
        publish(self._events, StreakUpdated(
            user_id=user_id,
            routine_id=routine_id,
            previous_count=prior.current_count,
            current_count=new.current_count,
            best_count=new.best_count,
            milestone=changed and new.current_count in self._milestones,
            broken=new.current_count == 1 and prior.current_count >= 2,
        ))
        return new

    def get_total_streak(self, user_id: int) -> int:
        """Sum of current streaks across all of the user's routines."""
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(current_count), 0) FROM streaks WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return int(row[0])

    def list_for_user(self, user_id: int) -> list[Streak]:
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM streaks WHERE user_id = ? ORDER BY routine_id",
                (user_id,),
            ).fetchall()
        return [self._row_to_streak(r) for r in rows]

"""
Chore Ledger — Undo Coordinator.

Reverses a completion within a short window: an offsetting ledger entry and
the deletion of the completion row, committed together. The window is
checked against the clock at execution time, inside the write lock.

Streak state is left as is; undo only reverses money and the completion.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from choreledger.core.errors import ExpiredError, NotFoundError
from choreledger.core.events import BalanceChanged, CompletionUndone, publish
from choreledger.data.db import utc_now
from choreledger.data.models import TransactionType, from_cents

if TYPE_CHECKING:
    from choreledger.core.balance_ledger import BalanceLedger
    from choreledger.data.db import LedgerDB
    from choreledger.ports.event_port import EventPort

logger = logging.getLogger(__name__)


class UndoCoordinator:
    """Reverses recent completions."""

    def __init__(
        self,
        db: LedgerDB,
        ledger: BalanceLedger,
        events: EventPort | None = None,
        clock: Callable[[], datetime] = utc_now,
        window: timedelta | None = None,
    ) -> None:
        if window is None:
            from choreledger.config import settings
            window = timedelta(minutes=settings.UNDO_WINDOW_MINUTES)
        self._db = db
        self._ledger = ledger
        self._events = events
        self._clock = clock
        self._window = window

    @property
    def window(self) -> timedelta:
        return self._window

    def _expired(self, completed_at: datetime) -> bool:
        return self._clock() - completed_at > self._window

    def can_undo(self, completion_id: int) -> bool:
        """True if the completion exists and is still inside the window."""
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT completed_at FROM completions WHERE id = ?", (completion_id,)
            ).fetchone()
        if row is None:
            return False
        return not self._expired(datetime.fromisoformat(row["completed_at"]))

    def undo(self, completion_id: int) -> None:
        """Reverse a completion.

        Raises NotFoundError for an unknown completion and ExpiredError once
        the window has passed; in both cases nothing is changed.
        """
        debit = None
        with self._db.transaction() as conn:
            row = conn.execute(
                """
                SELECT c.id, c.task_id, c.user_id, c.completed_at, c.completion_date,
                       t.name AS task_name, t.dollar_value_cents
                FROM completions c
                JOIN tasks t ON t.id = c.task_id
                WHERE c.id = ?
                """,
                (completion_id,),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Completion {completion_id} not found")

            completed_at = datetime.fromisoformat(row["completed_at"])
            if self._expired(completed_at):
                logger.warning(
                    "Undo of completion #%d refused: completed at %s, window %s",
                    completion_id, completed_at.isoformat(), self._window,
                )
                raise ExpiredError(
                    f"Undo window expired ({int(self._window.total_seconds() // 60)} minutes)"
                )

            value = from_cents(row["dollar_value_cents"])
            if value > 0:
                debit = self._ledger.post(
                    conn, row["user_id"], -value, TransactionType.ADJUSTMENT,
                    f"Undone: {row['task_name']}",
                )
            conn.execute("DELETE FROM completions WHERE id = ?", (completion_id,))

        logger.info(
            "Completion #%d undone (task #%d, user %d)",
            completion_id, row["task_id"], row["user_id"],
        )

        events = [CompletionUndone(
            completion_id=completion_id,
            task_id=row["task_id"],
            user_id=row["user_id"],
            completion_date=date.fromisoformat(row["completion_date"]),
            task_name=row["task_name"],
        )]
        if debit is not None:
            tx, balance = debit
            events.append(BalanceChanged(
                user_id=tx.user_id,
                transaction_id=tx.id,
                amount=tx.amount,
                balance=balance,
                description=tx.description,
            ))
        publish(self._events, *events)

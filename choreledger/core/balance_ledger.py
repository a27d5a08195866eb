"""
Chore Ledger — Balance Ledger.

Append-only transaction log plus a cached balance per user. The cached
balance always equals the sum of the user's transactions: every entry is
appended and the balance incremented in the same transaction, with the
increment done by the store (``balance = balance + ?``) so concurrent
credits cannot lose updates.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from choreledger.core.errors import ConsistencyError, NotFoundError, ValidationError
from choreledger.core.events import BalanceChanged, publish
from choreledger.data.db import utc_now
from choreledger.data.models import (
    MAX_CENTS,
    BalanceTransaction,
    TransactionType,
    from_cents,
    to_cents,
    to_decimal,
)

if TYPE_CHECKING:
    from choreledger.data.db import LedgerDB
    from choreledger.ports.event_port import EventPort

logger = logging.getLogger(__name__)


def _checked_amount(amount: Decimal | int | str) -> Decimal:
    try:
        value = to_decimal(amount)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if value < 0:
        raise ValidationError(f"Amount must be non-negative, got {value}")
    return value


def _checked_type(tx_type: TransactionType | str) -> TransactionType:
    try:
        return TransactionType(tx_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown transaction type: {tx_type!r}") from exc


class BalanceLedger:
    """Credits, debits and balance reads for user accounts."""

    def __init__(
        self,
        db: LedgerDB,
        events: EventPort | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = db
        self._events = events
        self._clock = clock

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> BalanceTransaction:
        return BalanceTransaction(
            id=row["id"],
            user_id=row["user_id"],
            amount=from_cents(row["amount_cents"]),
            type=TransactionType(row["type"]),
            description=row["description"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def ensure_account(self, user_id: int, conn: sqlite3.Connection | None = None) -> None:
        """Create a zero-balance account for the user if none exists."""
        try:
            with self._db.transaction(conn) as c:
                c.execute(
                    """
                    INSERT INTO balances (user_id, current_balance_cents)
                    VALUES (?, 0)
                    ON CONFLICT (user_id) DO NOTHING
                    """,
                    (user_id,),
                )
        except sqlite3.IntegrityError as exc:
            raise NotFoundError(f"User {user_id} not found") from exc

    def post(
        self,
        conn: sqlite3.Connection,
        user_id: int,
        amount: Decimal,
        tx_type: TransactionType,
        description: str,
    ) -> tuple[BalanceTransaction, Decimal]:
        """Append a signed entry inside the caller's transaction.

        Returns the entry and the balance after it. Raises ConsistencyError,
        which rolls the caller's transaction back, if the cached balance no
        longer matches the log.
        """
        self.ensure_account(user_id, conn)
        cents = to_cents(amount)
        current = conn.execute(
            "SELECT current_balance_cents FROM balances WHERE user_id = ?",
            (user_id,),
        ).fetchone()[0]
        if abs(current + cents) > MAX_CENTS:
            raise ValidationError(
                f"Balance for user {user_id} would leave the storable range"
            )
        created_at = self._clock()
        cursor = conn.execute(
            """
            INSERT INTO balance_transactions (user_id, amount_cents, type, description, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user_id, cents, tx_type.value, description, created_at.isoformat()),
        )
        conn.execute(
            """
            UPDATE balances
            SET current_balance_cents = current_balance_cents + ?
            WHERE user_id = ?
            """,
            (cents, user_id),
        )
        balance = self._reconcile(conn, user_id)

        tx = BalanceTransaction(
            id=cursor.lastrowid,
            user_id=user_id,
            amount=from_cents(cents),
            type=tx_type,
            description=description,
            created_at=created_at,
        )
        logger.info(
            "Ledger entry #%d for user %d: %s %s (%s), balance %s",
            tx.id, user_id, tx_type.value, tx.amount, description, balance,
        )
        return tx, balance

    def _apply(
        self, user_id: int, amount: Decimal, tx_type: TransactionType, description: str,
    ) -> BalanceTransaction:
        with self._db.transaction() as conn:
            tx, balance = self.post(conn, user_id, amount, tx_type, description)
        publish(self._events, BalanceChanged(
            user_id=user_id,
            transaction_id=tx.id,
            amount=tx.amount,
            balance=balance,
            description=description,
        ))
        return tx

    def credit(
        self,
        user_id: int,
        amount: Decimal | int | str,
        tx_type: TransactionType | str = TransactionType.EARNED,
        description: str = "",
    ) -> BalanceTransaction:
        """Add ``amount`` (non-negative) to the user's balance."""
        return self._apply(
            user_id, _checked_amount(amount), _checked_type(tx_type), description,
        )

    def debit(
        self,
        user_id: int,
        amount: Decimal | int | str,
        tx_type: TransactionType | str = TransactionType.ADJUSTMENT,
        description: str = "",
    ) -> BalanceTransaction:
        """Subtract ``amount`` (non-negative) from the user's balance."""
        return self._apply(
            user_id, -_checked_amount(amount), _checked_type(tx_type), description,
        )

    def payout(
        self, user_id: int, amount: Decimal | int | str, description: str = "Payout",
    ) -> BalanceTransaction:
        """Record money handed out to the user. Balances may go negative."""
        return self.debit(user_id, amount, TransactionType.PAYOUT, description)

    def get_balance(self, user_id: int) -> Decimal:
        """Cached balance; zero for a user with no account yet."""
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT current_balance_cents FROM balances WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return from_cents(row[0] if row else 0)

    def transactions(self, user_id: int, limit: int | None = None) -> list[BalanceTransaction]:
        """The user's ledger entries, newest first."""
        query = "SELECT * FROM balance_transactions WHERE user_id = ? ORDER BY id DESC"
        params: list = [user_id]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._db.read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_transaction(r) for r in rows]

    def reconcile(self, user_id: int) -> Decimal:
        """Verify the cached balance against the log and return it."""
        with self._db.read() as conn:
            return self._reconcile(conn, user_id)

    @staticmethod
    def _reconcile(conn: sqlite3.Connection, user_id: int) -> Decimal:
        row = conn.execute(
            """
            SELECT
                (SELECT current_balance_cents FROM balances WHERE user_id = ?) AS cached,
                (SELECT COALESCE(SUM(amount_cents), 0)
                   FROM balance_transactions WHERE user_id = ?) AS logged
            """,
            (user_id, user_id),
        ).fetchone()
        cached = row["cached"] or 0
        if cached != row["logged"]:
            logger.error(
                "Balance mismatch for user %d: cached %d cents, log sums to %d cents",
                user_id, cached, row["logged"],
            )
            raise ConsistencyError(
                f"Balance for user {user_id} is {from_cents(cached)} "
                f"but transactions sum to {from_cents(row['logged'])}"
            )
        return from_cents(cached)

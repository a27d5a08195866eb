"""Typed failures surfaced by the ledger core.

Callers map these to their own presentation; the core never retries.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every failure raised by the ledger core."""


class ValidationError(LedgerError):
    """Malformed date, missing task/user reference, or negative amount."""


class ConflictError(LedgerError):
    """A completion already exists for this task, user and day.

    Means "already done today", not a transient fault to retry.
    """


class NotFoundError(LedgerError):
    """Referenced completion, task, routine or user does not exist."""


class ExpiredError(LedgerError):
    """Undo requested after the undo window closed."""


class ConsistencyError(LedgerError):
    """Cached balance no longer equals the sum of its transactions.

    Indicates a bug, never user input.
    """

"""
Chore Ledger — Domain events.

Published after a write commits, for the notification trigger and any other
subscriber. Delivery is fire-and-forget: the ledger never waits on it, and
a failing subscriber never fails the operation that produced the event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from choreledger.data.models import Completion
    from choreledger.ports.event_port import EventPort

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionCreated:
    completion: Completion
    task_name: str
    on_schedule: bool


@dataclass(frozen=True)
class CompletionUndone:
    completion_id: int
    task_id: int
    user_id: int
    completion_date: date
    task_name: str


@dataclass(frozen=True)
class BalanceChanged:
    user_id: int
    transaction_id: int
    amount: Decimal          # signed
    balance: Decimal         # after the change
    description: str


@dataclass(frozen=True)
class StreakUpdated:
    user_id: int
    routine_id: int
    previous_count: int
    current_count: int
    best_count: int
    milestone: bool = False
    broken: bool = False


LedgerEvent = CompletionCreated | CompletionUndone | BalanceChanged | StreakUpdated


def publish(port: EventPort | None, *events: LedgerEvent) -> None:
    """Hand events to the subscriber, logging (never raising) its failures."""
    if port is None:
        return
    for event in events:
        try:
            port.publish(event)
        except Exception:
            logger.exception("Event subscriber failed on %s", type(event).__name__)

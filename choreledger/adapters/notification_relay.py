"""Notification relay — implements EventPort on top of a NotificationPort.

Turns ledger events into short user messages and schedules their delivery
on an asyncio event loop without waiting for it. Delivery failures are
logged; they never reach the code that published the event.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future
from typing import TYPE_CHECKING

from choreledger.core.events import (
    BalanceChanged,
    CompletionCreated,
    CompletionUndone,
    StreakUpdated,
)

if TYPE_CHECKING:
    from choreledger.core.events import LedgerEvent
    from choreledger.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


def format_event(event: LedgerEvent) -> tuple[int, str] | None:
    """Return (user_id, text) for events worth telling the user about."""
    if isinstance(event, CompletionCreated):
        return event.completion.user_id, f"✅ Done: {event.task_name}"
    if isinstance(event, CompletionUndone):
        return event.user_id, f"↩️ Undone: {event.task_name}"
    if isinstance(event, BalanceChanged):
        sign = "+" if event.amount >= 0 else "−"
        return event.user_id, (
            f"💰 {sign}{abs(event.amount)} ({event.description}). "
            f"Balance: {event.balance}"
        )
    if isinstance(event, StreakUpdated):
        if event.milestone:
            return event.user_id, f"🔥 {event.current_count}-day streak!"
        if event.broken:
            return event.user_id, (
                f"Streak reset after {event.previous_count} days. "
                f"Best so far: {event.best_count}"
            )
    return None


class NotificationRelay:
    """EventPort that forwards user-facing events to a NotificationPort."""

    def __init__(
        self,
        notifier: NotificationPort,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._notifier = notifier
        self._loop = loop
        self._pending: set[asyncio.Task] = set()

    def publish(self, event: LedgerEvent) -> None:
        message = format_event(event)
        if message is None:
            return
        user_id, text = message

        if self._loop is not None:
            future = asyncio.run_coroutine_threadsafe(
                self._notifier.send_message(user_id, text), self._loop,
            )
            future.add_done_callback(self._log_failure)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No event loop running; notification to %d dropped", user_id)
            return
        task = loop.create_task(self._notifier.send_message(user_id, text))
        # Keep a reference until done so the task isn't garbage-collected
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        task.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future: asyncio.Future | Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Failed to deliver notification: %s", exc)

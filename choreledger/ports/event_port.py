"""Event port — abstract sink for ledger events.

Core modules depend on this protocol, never on a specific subscriber.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from choreledger.core.events import LedgerEvent


class EventPort(Protocol):
    """Receives events after the write that produced them has committed.

    Implementations must return promptly; slow delivery belongs on a queue
    or an event loop, not in ``publish``.
    """

    def publish(self, event: LedgerEvent) -> None: ...

"""
Chore Ledger — Maintenance entry point.

`python main.py` creates or migrates the ledger database at DATABASE_PATH,
then checks every balance against its transaction log.
Exits with status 1 if any account fails to reconcile.
"""

import logging
import sys

from choreledger.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from choreledger.core.errors import ConsistencyError
from choreledger.core.ledger_service import build_ledger_service

logger = logging.getLogger("choreledger")


def main() -> int:
    service = build_ledger_service()
    failures = 0
    for user in service.users.list_users():
        try:
            balance = service.ledger.reconcile(user.id)
        except ConsistencyError as exc:
            logger.error("%s", exc)
            failures += 1
            continue
        logger.info("User %d '%s': balance %s", user.id, user.display_name, balance)
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())

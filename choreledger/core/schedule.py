"""Schedule evaluation — pure business logic.

Decides whether a task is active on a calendar day, and owns the single
household-local day convention the rest of the ledger relies on.
Weekdays are numbered 0=Sunday … 6=Saturday.

No I/O: this module only transforms data.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import date, datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from choreledger.core.errors import ValidationError

if TYPE_CHECKING:
    from choreledger.data.models import Task

_DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

_DAY_LOOKUP = {
    "sunday": 0, "sun": 0,
    "monday": 1, "mon": 1,
    "tuesday": 2, "tue": 2,
    "wednesday": 3, "wed": 3,
    "thursday": 4, "thu": 4,
    "friday": 5, "fri": 5,
    "saturday": 6, "sat": 6,
}


def weekday_number(day: date) -> int:
    """Weekday with Sunday as 0 (Python's ``date.weekday()`` has Monday as 0)."""
    return (day.weekday() + 1) % 7


def day_name(number: int) -> str:
    if 0 <= number <= 6:
        return _DAY_NAMES[number]
    return "Unknown"


def day_numbers(names: Iterable[str]) -> list[int]:
    """Map day names ("Mon", "friday", ...) to numbers, dropping unknown names."""
    return [
        _DAY_LOOKUP[name.strip().lower()]
        for name in names
        if name.strip().lower() in _DAY_LOOKUP
    ]


def local_date(instant: datetime, tz: ZoneInfo) -> date:
    """Household-local calendar day of an instant.

    Naive datetimes are taken to already be household-local.
    """
    if instant.tzinfo is None:
        return instant.date()
    return instant.astimezone(tz).date()


def local_today(clock: Callable[[], datetime], tz: ZoneInfo) -> date:
    return local_date(clock(), tz)


def parse_date(value: date | datetime | str, tz: ZoneInfo) -> date:
    """Normalize a caller-supplied day to a ``date``.

    Accepts a date, a datetime (converted to its household-local day) or an
    ISO ``YYYY-MM-DD`` string. Anything else is a ValidationError.
    """
    if isinstance(value, datetime):
        return local_date(value, tz)
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValidationError(f"Invalid date: {value!r}") from exc
    raise ValidationError(f"Invalid date: {value!r}")


def is_scheduled(task: Task, day: date | datetime | str, tz: ZoneInfo | None = None) -> bool:
    """True if ``task`` is active on ``day``.

    An empty or absent schedule means the task has no restriction.
    """
    if tz is None:
        from choreledger.config import settings
        tz = settings.tz
    day = parse_date(day, tz)
    if not task.schedule:
        return True
    return weekday_number(day) in task.schedule

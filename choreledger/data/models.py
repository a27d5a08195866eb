"""
Chore Ledger — Data Models.

Plain records handed across the library boundary. Money is a Decimal here
and integer cents in the store, so sums over the ledger stay exact.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum

from pydantic import BaseModel, field_validator, model_validator

from choreledger.core.schedule import day_numbers

_CENT = Decimal("0.01")

# Largest single amount accepted anywhere in the ledger
MAX_AMOUNT = Decimal("1000000000.00")

# Cents are stored as SQLite INTEGER (signed 64-bit)
MAX_CENTS = 2**63 - 1


class TaskType(str, Enum):
    ROUTINE = "routine"
    BONUS = "bonus"


class TransactionType(str, Enum):
    EARNED = "earned"
    ADJUSTMENT = "adjustment"
    PAYOUT = "payout"


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Coerce a money value to a Decimal rounded half-up to cents.

    Raises ValueError for values that are not numbers, and for amounts
    larger than MAX_AMOUNT in either direction.
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    if abs(amount) > MAX_AMOUNT:
        raise ValueError(f"Amount {value!r} exceeds the limit of {MAX_AMOUNT}")
    try:
        return amount.quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc


def to_cents(value: Decimal) -> int:
    return int(to_decimal(value) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(_CENT)


@dataclass
class TimeWindow:
    """Advisory clock window for a task, e.g. 07:00–08:30. Never enforced."""

    start: str   # HH:MM
    end: str     # HH:MM


@dataclass
class User:
    """A household member who completes tasks and owns a balance."""

    id: int
    household_id: int
    display_name: str
    is_admin: bool = False
    created_at: str = ""


@dataclass
class Routine:
    """A named grouping of tasks that drives streak tracking."""

    id: int
    household_id: int
    name: str


@dataclass
class Task:
    """A unit of household work.

    An empty schedule means the task is active every day.
    """

    id: int
    household_id: int
    name: str
    task_type: TaskType
    dollar_value: Decimal = Decimal("0.00")
    schedule: frozenset[int] = field(default_factory=frozenset)
    time_window: TimeWindow | None = None
    routine_id: int | None = None
    description: str | None = None
    created_at: str = ""


@dataclass
class Completion:
    """A user finished a task on a household-local calendar day."""

    id: int
    task_id: int
    user_id: int
    completed_at: datetime       # timezone-aware
    completion_date: date        # household-local, not UTC

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "userId": self.user_id,
            "completedAt": self.completed_at.isoformat(),
            "completionDate": self.completion_date.isoformat(),
        }


@dataclass
class Streak:
    user_id: int
    routine_id: int
    current_count: int = 0
    best_count: int = 0
    last_completion_date: date | None = None

    def to_dict(self) -> dict:
        last = self.last_completion_date
        return {
            "userId": self.user_id,
            "routineId": self.routine_id,
            "currentCount": self.current_count,
            "bestCount": self.best_count,
            "lastCompletionDate": last.isoformat() if last else None,
        }


@dataclass
class BalanceTransaction:
    """Append-only ledger entry. Never mutated or deleted once written."""

    id: int
    user_id: int
    amount: Decimal              # signed
    type: TransactionType
    description: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "amount": str(self.amount),
            "type": self.type.value,
            "description": self.description,
            "createdAt": self.created_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Input contract for the task editor
# ---------------------------------------------------------------------------


class TaskDraft(BaseModel):
    """Validated task attributes, as accepted from the task editor surface.

    JSON example:
    {
        "name": "Feed the cat",
        "task_type": "bonus",
        "dollar_value": "2.00",
        "schedule": [1, 3, 5],
        "time_window": {"start": "07:00", "end": "08:00"}
    }
    """

    name: str
    task_type: TaskType
    dollar_value: Decimal = Decimal("0.00")
    schedule: list[int] = []
    time_window: dict[str, str] | None = None
    routine_id: int | None = None
    description: str | None = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be empty")
        return v.strip()

    @field_validator("dollar_value", mode="before")
    @classmethod
    def parse_value(cls, v: Decimal | int | float | str | None) -> Decimal:
        amount = to_decimal(v if v is not None else 0)
        if amount < 0:
            raise ValueError("dollar_value must be non-negative")
        return amount

    @field_validator("schedule", mode="before")
    @classmethod
    def parse_schedule(
        cls, v: list[int | str] | set[int] | frozenset[int] | None,
    ) -> list[int]:
        """Accept day numbers or day names ("Mon", "friday")."""
        if v is None:
            return []
        numbers: set[int] = set()
        for d in v:
            if isinstance(d, str) and not d.strip().lstrip("-").isdigit():
                found = day_numbers([d])
                if not found:
                    raise ValueError(f"unknown day name: {d!r}")
                numbers.update(found)
            else:
                try:
                    numbers.add(int(d))
                except (TypeError, ValueError) as exc:
                    raise ValueError(f"not a day: {d!r}") from exc
        days = sorted(numbers)
        bad = [d for d in days if not 0 <= d <= 6]
        if bad:
            raise ValueError(f"schedule days must be 0-6 (0=Sunday), got {bad}")
        return days

    @field_validator("time_window")
    @classmethod
    def check_window(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        if v is None:
            return None
        if set(v) != {"start", "end"}:
            raise ValueError("time_window needs exactly 'start' and 'end'")
        for key in ("start", "end"):
            datetime.strptime(v[key], "%H:%M")
        return v

    @model_validator(mode="after")
    def check_bonus_value(self) -> TaskDraft:
        if self.task_type is TaskType.BONUS and self.dollar_value <= 0:
            raise ValueError("bonus tasks need a dollar_value > 0")
        return self

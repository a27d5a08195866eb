"""Tests for choreledger.data.models — money helpers, records and TaskDraft."""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from pydantic import ValidationError as PydanticValidationError

from choreledger.data.models import (
    MAX_AMOUNT,
    BalanceTransaction,
    Completion,
    Streak,
    TaskDraft,
    TaskType,
    TransactionType,
    from_cents,
    to_cents,
    to_decimal,
)


class TestMoney:
    def test_to_decimal_rounds_half_up(self):
        assert to_decimal("1.005") == Decimal("1.01")
        assert to_decimal(2) == Decimal("2.00")

    def test_to_decimal_float_uses_repr(self):
        assert to_decimal(0.1) == Decimal("0.10")

    def test_to_decimal_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_decimal("two dollars")

    def test_to_decimal_rejects_nan(self):
        with pytest.raises(ValueError):
            to_decimal("NaN")

    def test_to_decimal_rejects_amounts_over_limit(self):
        with pytest.raises(ValueError):
            to_decimal("1e30")
        with pytest.raises(ValueError):
            to_decimal(Decimal("-1e20"))
        with pytest.raises(ValueError):
            to_decimal(MAX_AMOUNT + Decimal("0.01"))
        assert to_decimal(MAX_AMOUNT) == MAX_AMOUNT

    def test_cents(self):
        assert to_cents(Decimal("2.50")) == 250
        assert to_cents(Decimal("-0.75")) == -75
        assert from_cents(199) == Decimal("1.99")


class TestTaskDraft:
    def test_bonus_task(self):
        draft = TaskDraft(name=" Wash car ", task_type="bonus", dollar_value="2")
        assert draft.name == "Wash car"
        assert draft.task_type is TaskType.BONUS
        assert draft.dollar_value == Decimal("2.00")
        assert draft.schedule == []

    def test_bonus_requires_positive_value(self):
        with pytest.raises(PydanticValidationError):
            TaskDraft(name="Free bonus", task_type="bonus", dollar_value=0)

    def test_huge_value_rejected(self):
        with pytest.raises(PydanticValidationError):
            TaskDraft(name="Gold bar", task_type="bonus", dollar_value="1e30")

    def test_routine_may_be_free(self):
        draft = TaskDraft(name="Brush teeth", task_type="routine")
        assert draft.dollar_value == Decimal("0.00")

    def test_negative_value_rejected(self):
        with pytest.raises(PydanticValidationError):
            TaskDraft(name="Bad", task_type="routine", dollar_value="-1")

    def test_schedule_deduplicated_and_sorted(self):
        draft = TaskDraft(name="Trash", task_type="routine", schedule={5, 1, 3, 1})
        assert draft.schedule == [1, 3, 5]

    def test_schedule_accepts_day_names(self):
        draft = TaskDraft(name="Trash", task_type="routine", schedule=["Fri", "monday", 3, "1"])
        assert draft.schedule == [1, 3, 5]

    def test_schedule_unknown_day_name(self):
        with pytest.raises(PydanticValidationError):
            TaskDraft(name="Trash", task_type="routine", schedule=["Someday"])

    def test_schedule_out_of_range(self):
        with pytest.raises(PydanticValidationError):
            TaskDraft(name="Trash", task_type="routine", schedule=[7])

    def test_unknown_type(self):
        with pytest.raises(PydanticValidationError):
            TaskDraft(name="Trash", task_type="chore")

    def test_time_window(self):
        draft = TaskDraft(
            name="Walk dog", task_type="routine",
            time_window={"start": "07:00", "end": "08:00"},
        )
        assert draft.time_window == {"start": "07:00", "end": "08:00"}

    def test_time_window_bad_clock(self):
        with pytest.raises(PydanticValidationError):
            TaskDraft(
                name="Walk dog", task_type="routine",
                time_window={"start": "7am", "end": "08:00"},
            )


class TestRecordShapes:
    def test_completion_to_dict(self):
        c = Completion(
            id=1, task_id=2, user_id=3,
            completed_at=datetime(2026, 3, 4, 15, 0, tzinfo=timezone.utc),
            completion_date=date(2026, 3, 4),
        )
        assert c.to_dict() == {
            "id": 1,
            "taskId": 2,
            "userId": 3,
            "completedAt": "2026-03-04T15:00:00+00:00",
            "completionDate": "2026-03-04",
        }

    def test_streak_defaults(self):
        s = Streak(user_id=1, routine_id=2)
        assert (s.current_count, s.best_count, s.last_completion_date) == (0, 0, None)
        assert s.to_dict()["lastCompletionDate"] is None

    def test_transaction_to_dict(self):
        tx = BalanceTransaction(
            id=9, user_id=1, amount=Decimal("-2.00"), type=TransactionType.ADJUSTMENT,
            description="Undone: Wash car",
            created_at=datetime(2026, 3, 4, 15, 0, tzinfo=timezone.utc),
        )
        d = tx.to_dict()
        assert d["amount"] == "-2.00"
        assert d["type"] == "adjustment"

"""Tests for choreledger.core.completion_recorder — create, lookups, atomicity."""

import logging
import threading

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from choreledger.core.errors import ConflictError, NotFoundError, ValidationError
from choreledger.core.events import BalanceChanged, CompletionCreated
from choreledger.data.models import TransactionType

WEDNESDAY = date(2026, 3, 4)


@pytest.fixture
def recorder(service):
    return service.recorder


class TestCreate:
    def test_defaults_to_household_today(self, recorder, user, free_task, clock):
        completion = recorder.create(free_task.id, user.id)
        assert completion.id is not None
        assert completion.completion_date == WEDNESDAY
        assert completion.completed_at == clock.now

    def test_uses_local_day_near_midnight(self, recorder, user, free_task, clock):
        # 03:30 UTC Thursday is 22:30 Wednesday in New York
        clock.now = datetime(2026, 3, 5, 3, 30, tzinfo=timezone.utc)
        completion = recorder.create(free_task.id, user.id)
        assert completion.completion_date == WEDNESDAY

    def test_duplicate_fails_with_conflict(self, recorder, user, free_task):
        recorder.create(free_task.id, user.id, WEDNESDAY)
        with pytest.raises(ConflictError):
            recorder.create(free_task.id, user.id, WEDNESDAY)
        assert len(recorder.list_for_task(free_task.id, WEDNESDAY)) == 1

    def test_same_task_other_user_or_day_is_fine(self, recorder, user, other_user, free_task):
        recorder.create(free_task.id, user.id, WEDNESDAY)
        recorder.create(free_task.id, other_user.id, WEDNESDAY)
        recorder.create(free_task.id, user.id, "2026-03-03")
        assert len(recorder.history(user.id)) == 2

    def test_bonus_credits_balance(self, service, recorder, user, bonus_task):
        recorder.create(bonus_task.id, user.id)
        assert service.ledger.get_balance(user.id) == Decimal("2.00")

        [tx] = service.ledger.transactions(user.id)
        assert tx.amount == Decimal("2.00")
        assert tx.type is TransactionType.EARNED
        assert tx.description == "Wash the car"
        assert service.ledger.reconcile(user.id) == Decimal("2.00")

    def test_free_task_writes_no_transaction(self, service, recorder, user, free_task):
        recorder.create(free_task.id, user.id)
        assert service.ledger.transactions(user.id) == []

    def test_duplicate_does_not_credit_twice(self, service, recorder, user, bonus_task):
        recorder.create(bonus_task.id, user.id)
        with pytest.raises(ConflictError):
            recorder.create(bonus_task.id, user.id)
        assert service.ledger.get_balance(user.id) == Decimal("2.00")
        assert len(service.ledger.transactions(user.id)) == 1

    def test_off_schedule_still_recorded(self, service, recorder, user, events, caplog):
        sundays = service.tasks.add_task(
            household_id=1, name="Laundry", task_type="routine", schedule=["Sun"],
        )
        with caplog.at_level(logging.INFO):
            completion = recorder.create(sundays.id, user.id, WEDNESDAY)
        assert "off-schedule on Wednesday 2026-03-04 (scheduled: Sunday)" in caplog.text
        assert completion.completion_date == WEDNESDAY
        [created] = events.of_type(CompletionCreated)
        assert created.on_schedule is False

    def test_backdated_allowed(self, recorder, user, free_task):
        completion = recorder.create(free_task.id, user.id, "2026-02-20")
        assert completion.completion_date == date(2026, 2, 20)

    def test_future_date_rejected(self, recorder, user, free_task):
        with pytest.raises(ValidationError):
            recorder.create(free_task.id, user.id, "2026-03-05")

    def test_invalid_date_rejected(self, recorder, user, free_task):
        with pytest.raises(ValidationError):
            recorder.create(free_task.id, user.id, "03/04/2026")

    def test_missing_references(self, recorder, user, free_task):
        with pytest.raises(ValidationError):
            recorder.create(None, user.id)
        with pytest.raises(ValidationError):
            recorder.create(free_task.id, None)

    def test_unknown_task(self, recorder, user):
        with pytest.raises(NotFoundError):
            recorder.create(999, user.id)

    def test_unknown_user(self, recorder, bonus_task):
        with pytest.raises(NotFoundError):
            recorder.create(bonus_task.id, 999)
        assert recorder.list_for_task(bonus_task.id) == []

    def test_events_published_after_commit(self, recorder, user, bonus_task, events):
        completion = recorder.create(bonus_task.id, user.id)
        created, changed = events.events
        assert isinstance(created, CompletionCreated)
        assert created.completion == completion
        assert isinstance(changed, BalanceChanged)
        assert changed.amount == Decimal("2.00")

    def test_failing_subscriber_does_not_fail_create(self, service, recorder, user, bonus_task):
        class Exploding:
            def publish(self, event):
                raise RuntimeError("subscriber down")

        recorder._events = Exploding()
        completion = recorder.create(bonus_task.id, user.id)
        assert recorder.get(completion.id) is not None
        assert service.ledger.get_balance(user.id) == Decimal("2.00")


class TestAtomicity:
    def test_failed_credit_rolls_back_completion(self, service, recorder, user, bonus_task, monkeypatch):
        def broken_post(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(service.ledger, "post", broken_post)
        with pytest.raises(RuntimeError):
            recorder.create(bonus_task.id, user.id)

        assert recorder.is_completed(bonus_task.id, user.id) is None
        assert service.ledger.get_balance(user.id) == Decimal("0.00")
        assert service.ledger.transactions(user.id) == []

    def test_retry_after_rollback_succeeds(self, service, recorder, user, bonus_task, monkeypatch):
        real_post = service.ledger.post
        calls = []

        def flaky_post(*args, **kwargs):
            if not calls:
                calls.append(1)
                raise RuntimeError("transient")
            return real_post(*args, **kwargs)

        monkeypatch.setattr(service.ledger, "post", flaky_post)
        with pytest.raises(RuntimeError):
            recorder.create(bonus_task.id, user.id)
        recorder.create(bonus_task.id, user.id)
        assert service.ledger.get_balance(user.id) == Decimal("2.00")


class TestLookups:
    def test_is_completed(self, recorder, user, free_task):
        assert recorder.is_completed(free_task.id, user.id, WEDNESDAY) is None
        created = recorder.create(free_task.id, user.id, WEDNESDAY)
        found = recorder.is_completed(free_task.id, user.id, WEDNESDAY)
        assert found == created
        assert recorder.is_completed(free_task.id, user.id, "2026-03-03") is None

    def test_get(self, recorder, user, free_task):
        created = recorder.create(free_task.id, user.id)
        assert recorder.get(created.id) == created
        assert recorder.get(999) is None

    def test_list_for_user_newest_first(self, recorder, user, free_task, bonus_task, clock):
        first = recorder.create(free_task.id, user.id)
        clock.advance(minutes=1)
        second = recorder.create(bonus_task.id, user.id)
        assert [c.id for c in recorder.list_for_user(user.id)] == [second.id, first.id]

    def test_history_spans_days(self, recorder, user, free_task):
        recorder.create(free_task.id, user.id, "2026-03-02")
        recorder.create(free_task.id, user.id, "2026-03-04")
        recorder.create(free_task.id, user.id, "2026-03-03")
        dates = [c.completion_date.isoformat() for c in recorder.history(user.id)]
        assert dates == ["2026-03-04", "2026-03-03", "2026-03-02"]
        assert len(recorder.history(user.id, limit=1)) == 1


class TestConcurrency:
    def test_concurrent_duplicates_one_wins(self, service, recorder, user, bonus_task):
        barrier = threading.Barrier(2)
        outcomes = []

        def worker():
            barrier.wait()
            try:
                outcomes.append(recorder.create(bonus_task.id, user.id, WEDNESDAY))
            except ConflictError as exc:
                outcomes.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(isinstance(o, ConflictError) for o in outcomes) == 1
        assert len(recorder.list_for_task(bonus_task.id, WEDNESDAY)) == 1
        assert service.ledger.get_balance(user.id) == Decimal("2.00")

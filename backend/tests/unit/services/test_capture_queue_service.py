# backend/tests/unit/services/test_capture_queue_service.py
"""Tests for CaptureQueueService bookkeeping against an in-memory ledger."""

from datetime import timedelta

import pytest
from sqlalchemy import update

from ridepay.core.enums import CaptureOutcome, CaptureQueueStatus
from ridepay.core.exceptions import InvalidStateError, NotFoundException, PaymentNotFoundError
from ridepay.core.time_utils import utcnow
from ridepay.models.capture_queue import CaptureQueueEntry


@pytest.fixture
def payment(authorize):
    return authorize(1000).payment_intent


@pytest.fixture
def claimed_entry(queue, payment):
    entry = queue.enqueue(payment.id)
    assert queue.claim(entry.id) is True
    return entry


class TestEnqueue:
    def test_enqueue_creates_pending_entry(self, queue, payment):
        entry = queue.enqueue(payment.id)

        assert entry.status == CaptureQueueStatus.PENDING.value
        assert entry.attempts == 0
        assert entry.ride_id == payment.ride_id

    def test_enqueue_is_idempotent(self, queue, payment, db):
        first = queue.enqueue(payment.id)
        second = queue.enqueue(payment.id)

        assert first.id == second.id
        assert db.query(CaptureQueueEntry).count() == 1

    def test_enqueue_does_not_reset_terminal_entry(self, queue, claimed_entry, payment):
        queue.record_attempt(claimed_entry.id, CaptureOutcome.FAILED, max_attempts=5, error_message="declined")

        again = queue.enqueue(payment.id)

        assert again.status == CaptureQueueStatus.FAILED.value
        assert again.attempts == 1

    def test_enqueue_unknown_payment(self, queue):
        with pytest.raises(PaymentNotFoundError):
            queue.enqueue("01HXXXXXXXXXXXXXXXXXXXXXXX")

    def test_enqueue_canceled_payment_rejected(self, queue, lifecycle, payment):
        lifecycle.cancel(payment.id)

        with pytest.raises(InvalidStateError):
            queue.enqueue(payment.id)

    def test_enqueue_ride_queues_authorized_payments(self, queue, authorize):
        first = authorize(1000, ride_id="ride-7").payment_intent
        second = authorize(500, ride_id="ride-7", rider_id="rider-2").payment_intent
        authorize(800, ride_id="ride-8")

        entries = queue.enqueue_ride("ride-7")

        assert {entry.payment_intent_id for entry in entries} == {first.id, second.id}

    def test_enqueue_ride_without_payments(self, queue):
        assert queue.enqueue_ride("ride-none") == []

    def test_enqueue_ride_twice_reports_only_new_entries(self, queue, authorize, db):
        first = authorize(1000, ride_id="ride-7").payment_intent

        assert [entry.payment_intent_id for entry in queue.enqueue_ride("ride-7")] == [first.id]
        assert queue.enqueue_ride("ride-7") == []

        second = authorize(500, ride_id="ride-7", rider_id="rider-2").payment_intent
        assert [entry.payment_intent_id for entry in queue.enqueue_ride("ride-7")] == [second.id]
        assert db.query(CaptureQueueEntry).count() == 2


class TestClaimAndAttempts:
    def test_claim_is_exclusive(self, queue, payment):
        entry = queue.enqueue(payment.id)

        assert queue.claim(entry.id) is True
        assert queue.claim(entry.id) is False
        assert queue.get_entry(entry.id).status == CaptureQueueStatus.PROCESSING.value

    def test_success_completes_entry(self, queue, claimed_entry):
        updated = queue.record_attempt(claimed_entry.id, CaptureOutcome.SUCCEEDED, max_attempts=5)

        assert updated.status == CaptureQueueStatus.COMPLETED.value
        assert updated.attempts == 1
        assert updated.claimed_at is None

    def test_retryable_failure_returns_to_pending(self, queue, claimed_entry):
        updated = queue.record_attempt(
            claimed_entry.id, CaptureOutcome.RETRYABLE, max_attempts=5, error_message="timeout"
        )

        assert updated.status == CaptureQueueStatus.PENDING.value
        assert updated.attempts == 1
        assert updated.error_message == "timeout"
        assert updated.last_attempt_at is not None

    def test_entry_fails_after_max_attempts(self, queue, payment):
        entry = queue.enqueue(payment.id)

        for _ in range(3):
            assert queue.claim(entry.id)
            updated = queue.record_attempt(
                entry.id, CaptureOutcome.RETRYABLE, max_attempts=3, error_message="timeout"
            )

        assert updated.status == CaptureQueueStatus.FAILED.value
        assert updated.attempts == 3
        assert queue.dequeue_batch(10, 3) == []

    def test_permanent_failure_fails_immediately(self, queue, claimed_entry):
        updated = queue.record_attempt(claimed_entry.id, CaptureOutcome.FAILED, max_attempts=5)

        assert updated.status == CaptureQueueStatus.FAILED.value
        assert updated.attempts == 1

    def test_attempt_on_unclaimed_entry_is_not_counted(self, queue, payment):
        entry = queue.enqueue(payment.id)

        updated = queue.record_attempt(entry.id, CaptureOutcome.RETRYABLE, max_attempts=5)

        assert updated.status == CaptureQueueStatus.PENDING.value
        assert updated.attempts == 0

    def test_long_error_message_is_truncated(self, queue, claimed_entry):
        updated = queue.record_attempt(
            claimed_entry.id, CaptureOutcome.RETRYABLE, max_attempts=5, error_message="x" * 5000
        )

        assert len(updated.error_message) == 1000

    def test_release_returns_claim_without_attempt(self, queue, claimed_entry):
        assert queue.release(claimed_entry.id) is True

        entry = queue.get_entry(claimed_entry.id)
        assert entry.status == CaptureQueueStatus.PENDING.value
        assert entry.attempts == 0

    def test_get_entry_unknown(self, queue):
        with pytest.raises(NotFoundException):
            queue.get_entry("missing")


class TestDequeue:
    def test_oldest_first_with_limit(self, queue, authorize, db):
        entries = [
            queue.enqueue(authorize(1000, ride_id=f"ride-{i}").payment_intent.id) for i in range(3)
        ]
        base = utcnow()
        for offset, entry in zip((2, 0, 1), entries):
            db.execute(
                update(CaptureQueueEntry)
                .where(CaptureQueueEntry.id == entry.id)
                .values(created_at=base + timedelta(seconds=offset))
            )
        db.commit()

        batch = queue.dequeue_batch(2, 5)

        assert [entry.id for entry in batch] == [entries[1].id, entries[2].id]

    def test_only_pending_entries_are_due(self, queue, authorize, claimed_entry):
        other = queue.enqueue(authorize(1000, ride_id="ride-2").payment_intent.id)

        batch = queue.dequeue_batch(10, 5)

        assert [entry.id for entry in batch] == [other.id]


class TestRecovery:
    def test_stale_claims_are_released(self, queue, claimed_entry, clock):
        assert queue.release_stale_claims(300) == 0

        clock.advance(minutes=10)

        assert queue.release_stale_claims(300) == 1
        assert queue.get_entry(claimed_entry.id).status == CaptureQueueStatus.PENDING.value

    def test_complete_for_payment_closes_open_entry(self, queue, payment):
        entry = queue.enqueue(payment.id)

        closed = queue.complete_for_payment(payment.id)

        assert closed.id == entry.id
        assert closed.status == CaptureQueueStatus.COMPLETED.value

    def test_complete_for_payment_leaves_claimed_entry(self, queue, claimed_entry, payment):
        entry = queue.complete_for_payment(payment.id)

        assert entry.status == CaptureQueueStatus.PROCESSING.value

    def test_complete_for_payment_without_entry(self, queue, payment):
        assert queue.complete_for_payment(payment.id) is None

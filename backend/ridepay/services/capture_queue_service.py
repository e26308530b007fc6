"""
Capture queue service.

Durable list of authorized payments waiting to be captured. The queue
never talks to the processor; it only tracks attempts so the
reconciliation worker knows what to pick up next and when to give up.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.constants import MAX_ERROR_MESSAGE_LENGTH
from ..core.enums import CaptureOutcome, CaptureQueueStatus, PaymentStatus
from ..core.exceptions import InvalidStateError, NotFoundException, PaymentNotFoundError
from ..core.time_utils import utcnow
from ..models.capture_queue import CaptureQueueEntry
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

_NOT_CAPTURABLE = {
    PaymentStatus.CANCELED.value,
    PaymentStatus.REFUNDED.value,
    PaymentStatus.FAILED.value,
}


class CaptureQueueService(BaseService):
    def __init__(self, db: Session, *, clock: Callable[[], datetime] = utcnow):
        super().__init__(db)
        self.clock = clock
        self.queue_repository = RepositoryFactory.create_capture_queue_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)

    def get_entry(self, entry_id: str) -> CaptureQueueEntry:
        entry = self.queue_repository.reload(entry_id)
        if entry is None:
            raise NotFoundException(f"Capture queue entry {entry_id} not found", details={"entry_id": entry_id})
        return entry

    def get_entry_for_payment(self, payment_intent_id: str) -> Optional[CaptureQueueEntry]:
        return self.queue_repository.get_by_payment_intent(payment_intent_id)

    @BaseService.measure_operation("enqueue")
    def enqueue(self, payment_intent_id: str) -> CaptureQueueEntry:
        """
        Queue a payment for capture.

        Idempotent per payment intent: an existing entry is returned as is,
        whatever its status. Terminal entries are never reset.
        """
        entry, _created = self._enqueue(payment_intent_id)
        return entry

    def _enqueue(self, payment_intent_id: str) -> Tuple[CaptureQueueEntry, bool]:
        """Return the payment's queue entry and whether this call created it."""
        existing = self.queue_repository.get_by_payment_intent(payment_intent_id)
        if existing is not None:
            return existing, False

        intent = self.payment_repository.reload(payment_intent_id)
        if intent is None:
            raise PaymentNotFoundError(payment_intent_id)
        if intent.status in _NOT_CAPTURABLE:
            raise InvalidStateError(
                f"Payment {payment_intent_id} in status {intent.status} cannot be queued for capture",
                local_status=intent.status,
            )

        with self.transaction():
            entry = self.queue_repository.insert_pending(payment_intent_id, intent.ride_id)
        if entry is None:
            # Lost an insert race; the other writer's row is the entry
            entry = self.queue_repository.get_by_payment_intent(payment_intent_id)
            if entry is None:
                raise InvalidStateError(f"Capture queue entry for {payment_intent_id} vanished")
            return entry, False
        self.logger.info(f"Queued capture for payment {payment_intent_id} (ride {intent.ride_id})")
        return entry, True

    def enqueue_ride(self, ride_id: str) -> List[CaptureQueueEntry]:
        """
        Queue every authorized, uncaptured payment of a completed ride.

        Returns only the entries this call created; payments that were
        already queued are left alone and not reported again.
        """
        created: List[CaptureQueueEntry] = []
        for intent in self.payment_repository.find_authorized_for_ride(ride_id):
            entry, is_new = self._enqueue(intent.id)
            if is_new:
                created.append(entry)
        if not created:
            self.logger.info(f"Nothing new to queue for ride {ride_id}")
        return created

    def dequeue_batch(self, limit: int, max_attempts: int) -> List[CaptureQueueEntry]:
        """Oldest pending entries with attempts left. Does not claim them."""
        return self.queue_repository.find_due(limit, max_attempts)

    def claim(self, entry_id: str) -> bool:
        """pending -> processing. False when another worker already holds it."""
        with self.transaction():
            return self.queue_repository.transition(
                entry_id,
                CaptureQueueStatus.PENDING,
                CaptureQueueStatus.PROCESSING,
                claimed_at=self.clock(),
            )

    def release(self, entry_id: str) -> bool:
        """Give a claim back without counting an attempt."""
        with self.transaction():
            return self.queue_repository.transition(
                entry_id,
                CaptureQueueStatus.PROCESSING,
                CaptureQueueStatus.PENDING,
                claimed_at=None,
            )

    @BaseService.measure_operation("record_attempt")
    def record_attempt(
        self,
        entry_id: str,
        outcome: CaptureOutcome,
        *,
        max_attempts: int,
        error_message: Optional[str] = None,
    ) -> CaptureQueueEntry:
        """
        Count one attempt against a claimed entry.

        succeeded -> completed; failed -> failed; retryable -> pending, or
        failed once this attempt uses up ``max_attempts``.
        """
        entry = self.get_entry(entry_id)
        if outcome == CaptureOutcome.SUCCEEDED:
            new_status = CaptureQueueStatus.COMPLETED
        elif outcome == CaptureOutcome.FAILED or entry.attempts + 1 >= max_attempts:
            new_status = CaptureQueueStatus.FAILED
        else:
            new_status = CaptureQueueStatus.PENDING

        message = error_message[:MAX_ERROR_MESSAGE_LENGTH] if error_message else None
        with self.transaction():
            recorded = self.queue_repository.record_attempt(entry_id, new_status, self.clock(), message)
        if not recorded:
            self.logger.warning(
                f"Queue entry {entry_id} was not claimed (status {entry.status}); attempt not recorded"
            )
        elif new_status == CaptureQueueStatus.FAILED:
            self.logger.error(
                f"Capture permanently failed for payment {entry.payment_intent_id} "
                f"after {entry.attempts + 1} attempt(s): {message}"
            )
        return self.get_entry(entry_id)

    def complete_for_payment(self, payment_intent_id: str) -> Optional[CaptureQueueEntry]:
        """Close a pending or failed entry after a capture made outside the worker."""
        entry = self.queue_repository.get_by_payment_intent(payment_intent_id)
        closable = (CaptureQueueStatus.PENDING.value, CaptureQueueStatus.FAILED.value)
        if entry is None or entry.status not in closable:
            return entry
        with self.transaction():
            self.queue_repository.transition(
                entry.id,
                CaptureQueueStatus(entry.status),
                CaptureQueueStatus.COMPLETED,
                last_attempt_at=self.clock(),
                error_message=None,
            )
        return self.get_entry(entry.id)

    def release_stale_claims(self, older_than_seconds: int) -> int:
        """Return claims abandoned by a crashed run to pending."""
        cutoff = self.clock() - timedelta(seconds=older_than_seconds)
        with self.transaction():
            released = self.queue_repository.release_stale(cutoff)
        if released:
            self.logger.warning(f"Released {released} stale capture claim(s)")
        return released

"""
Capture Queue Repository for the RidePay ledger.

Durable queue of deferred captures. Claiming an entry is a guarded
UPDATE so two workers never hold the same entry at once.
"""

from datetime import datetime
import logging
from typing import Any, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import CaptureQueueStatus
from ..core.exceptions import RepositoryException
from ..core.time_utils import utcnow
from ..models.capture_queue import CaptureQueueEntry
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CaptureQueueRepository(BaseRepository[CaptureQueueEntry]):
    def __init__(self, db: Session):
        super().__init__(db, CaptureQueueEntry)
        self.logger = logging.getLogger(__name__)

    def get_by_payment_intent(self, payment_intent_id: str) -> Optional[CaptureQueueEntry]:
        try:
            return (
                self.db.query(CaptureQueueEntry)
                .populate_existing()
                .filter(CaptureQueueEntry.payment_intent_id == payment_intent_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get queue entry for payment {payment_intent_id}: {str(e)}")
            raise RepositoryException(f"Failed to get capture queue entry: {str(e)}")

    def reload(self, entry_id: str) -> Optional[CaptureQueueEntry]:
        try:
            return self.db.get(CaptureQueueEntry, entry_id, populate_existing=True)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to reload queue entry {entry_id}: {str(e)}")
            raise RepositoryException(f"Failed to reload capture queue entry: {str(e)}")

    def insert_pending(self, payment_intent_id: str, ride_id: str) -> Optional[CaptureQueueEntry]:
        """
        Insert a pending entry.

        Returns None when an entry for this payment intent already exists
        (the unique constraint fired). The session is rolled back in that case.
        """
        try:
            entry = CaptureQueueEntry(
                payment_intent_id=payment_intent_id,
                ride_id=ride_id,
                status=CaptureQueueStatus.PENDING.value,
                attempts=0,
            )
            self.db.add(entry)
            self.db.flush()
            return entry
        except IntegrityError:
            self.db.rollback()
            self.logger.info(f"Capture already queued for payment {payment_intent_id}")
            return None
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to enqueue capture for payment {payment_intent_id}: {str(e)}")
            raise RepositoryException(f"Failed to enqueue capture: {str(e)}")

    def find_due(self, limit: int, max_attempts: int) -> List[CaptureQueueEntry]:
        """Pending entries with attempts left, oldest first."""
        try:
            return (
                self.db.query(CaptureQueueEntry)
                .populate_existing()
                .filter(
                    CaptureQueueEntry.status == CaptureQueueStatus.PENDING.value,
                    CaptureQueueEntry.attempts < max_attempts,
                )
                .order_by(CaptureQueueEntry.created_at, CaptureQueueEntry.id)
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to dequeue capture batch: {str(e)}")
            raise RepositoryException(f"Failed to dequeue capture batch: {str(e)}")

    def transition(
        self,
        entry_id: str,
        expected: CaptureQueueStatus,
        new_status: CaptureQueueStatus,
        **fields: Any,
    ) -> bool:
        values = {"status": new_status.value, "updated_at": utcnow()}
        values.update(fields)
        try:
            result = self.db.execute(
                update(CaptureQueueEntry)
                .where(
                    CaptureQueueEntry.id == entry_id,
                    CaptureQueueEntry.status == expected.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.db.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to move queue entry {entry_id} to {new_status.value}: {str(e)}")
            raise RepositoryException(f"Failed to update capture queue entry: {str(e)}")

    def record_attempt(
        self,
        entry_id: str,
        new_status: CaptureQueueStatus,
        attempted_at: datetime,
        error_message: Optional[str],
    ) -> bool:
        """Count one attempt against a claimed entry and set its resulting status."""
        try:
            result = self.db.execute(
                update(CaptureQueueEntry)
                .where(
                    CaptureQueueEntry.id == entry_id,
                    CaptureQueueEntry.status == CaptureQueueStatus.PROCESSING.value,
                )
                .values(
                    status=new_status.value,
                    attempts=CaptureQueueEntry.attempts + 1,
                    last_attempt_at=attempted_at,
                    claimed_at=None,
                    error_message=error_message,
                    updated_at=attempted_at,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to record attempt for queue entry {entry_id}: {str(e)}")
            raise RepositoryException(f"Failed to record capture attempt: {str(e)}")

    def release_stale(self, claimed_before: datetime) -> int:
        """Return abandoned claims to pending without counting an attempt."""
        try:
            result = self.db.execute(
                update(CaptureQueueEntry)
                .where(
                    CaptureQueueEntry.status == CaptureQueueStatus.PROCESSING.value,
                    CaptureQueueEntry.claimed_at < claimed_before,
                )
                .values(status=CaptureQueueStatus.PENDING.value, claimed_at=None, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.flush()
            return result.rowcount
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to release stale capture claims: {str(e)}")
            raise RepositoryException(f"Failed to release stale claims: {str(e)}")

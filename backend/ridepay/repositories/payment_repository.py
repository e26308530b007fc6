"""
Payment Repository for the RidePay ledger.

Implements data access for ride payment intents and the rows derived from
them:
- Payment intent records and compare-and-swap status transitions
- Capture log entries
- Driver earnings (creation, refund reversal, per-driver summary)
- Rider payment history
"""

from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import EarningsStatus, PaymentStatus, TransactionType
from ..core.exceptions import RepositoryException
from ..core.time_utils import utcnow
from ..models.payment import CaptureLogEntry, DriverEarning, PaymentHistoryEntry, PaymentIntent
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[PaymentIntent]):
    """
    Repository for payment data access.

    Status changes never go through a plain read-modify-write. Every
    transition is an UPDATE guarded by the expected current status, and
    only the caller that sees ``rowcount == 1`` owns the follow-up writes.
    """

    def __init__(self, db: Session):
        super().__init__(db, PaymentIntent)
        self.logger = logging.getLogger(__name__)

    # ========== Payment intents ==========

    def get_by_processor_id(self, processor_intent_id: str) -> Optional[PaymentIntent]:
        try:
            return (
                self.db.query(PaymentIntent)
                .populate_existing()
                .filter(PaymentIntent.processor_intent_id == processor_intent_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment by processor id {processor_intent_id}: {str(e)}")
            raise RepositoryException(f"Failed to get payment: {str(e)}")

    def reload(self, payment_intent_id: str) -> Optional[PaymentIntent]:
        """Re-read a payment intent, discarding whatever the session has cached."""
        try:
            return self.db.get(PaymentIntent, payment_intent_id, populate_existing=True)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to reload payment {payment_intent_id}: {str(e)}")
            raise RepositoryException(f"Failed to reload payment: {str(e)}")

    def transition_status(
        self,
        payment_intent_id: str,
        expected: Iterable[PaymentStatus],
        new_status: PaymentStatus,
        **fields: Any,
    ) -> bool:
        """
        Move a payment intent to ``new_status`` only if it is currently in ``expected``.

        Returns:
            True when this call performed the transition, False when another
            writer got there first (or the row does not exist).
        """
        expected_values = [status.value for status in expected]
        values: Dict[str, Any] = {"status": new_status.value, "updated_at": utcnow()}
        values.update(fields)
        try:
            result = self.db.execute(
                update(PaymentIntent)
                .where(
                    PaymentIntent.id == payment_intent_id,
                    PaymentIntent.status.in_(expected_values),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.db.flush()
            won = result.rowcount == 1
            if won:
                self.reload(payment_intent_id)
            return won
        except SQLAlchemyError as e:
            self.logger.error(
                f"Failed to transition payment {payment_intent_id} to {new_status.value}: {str(e)}"
            )
            raise RepositoryException(f"Failed to transition payment status: {str(e)}")

    def find_authorized_for_ride(self, ride_id: str) -> List[PaymentIntent]:
        """Authorized, not yet captured intents for a ride."""
        try:
            return (
                self.db.query(PaymentIntent)
                .populate_existing()
                .filter(
                    PaymentIntent.ride_id == ride_id,
                    PaymentIntent.status == PaymentStatus.AUTHORIZED.value,
                    PaymentIntent.captured_at.is_(None),
                )
                .order_by(PaymentIntent.created_at)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get authorized payments for ride {ride_id}: {str(e)}")
            raise RepositoryException(f"Failed to get payments for ride: {str(e)}")

    def find_orphaned_authorizations(
        self, created_before: datetime, limit: int = 100
    ) -> List[PaymentIntent]:
        """Authorized intents that never got a booking attached."""
        try:
            return (
                self.db.query(PaymentIntent)
                .populate_existing()
                .filter(
                    PaymentIntent.status == PaymentStatus.AUTHORIZED.value,
                    PaymentIntent.booking_id.is_(None),
                    PaymentIntent.created_at < created_before,
                )
                .order_by(PaymentIntent.created_at)
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to find orphaned authorizations: {str(e)}")
            raise RepositoryException(f"Failed to find orphaned authorizations: {str(e)}")

    # ========== Capture log ==========

    def create_capture_log(
        self,
        payment_intent_id: str,
        amount_captured: int,
        currency: str,
        charge_ref: Optional[str],
        captured_at: datetime,
    ) -> CaptureLogEntry:
        try:
            entry = CaptureLogEntry(
                payment_intent_id=payment_intent_id,
                amount_captured=amount_captured,
                currency=currency,
                charge_ref=charge_ref,
                captured_at=captured_at,
            )
            self.db.add(entry)
            self.db.flush()
            return entry
        except IntegrityError as e:
            self.logger.error(f"Duplicate capture log for payment {payment_intent_id}: {str(e)}")
            raise RepositoryException(f"Capture already logged: {str(e)}") from e
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to create capture log: {str(e)}")
            raise RepositoryException(f"Failed to create capture log: {str(e)}")

    def get_capture_log(self, payment_intent_id: str) -> Optional[CaptureLogEntry]:
        try:
            return (
                self.db.query(CaptureLogEntry)
                .populate_existing()
                .filter(CaptureLogEntry.payment_intent_id == payment_intent_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get capture log: {str(e)}")
            raise RepositoryException(f"Failed to get capture log: {str(e)}")

    # ========== Driver earnings ==========

    def create_driver_earning(
        self,
        *,
        payment_intent_id: str,
        driver_id: str,
        ride_id: str,
        gross_amount: int,
        platform_fee: int,
        net_amount: int,
        fee_percent: int,
    ) -> DriverEarning:
        try:
            earning = DriverEarning(
                payment_intent_id=payment_intent_id,
                driver_id=driver_id,
                ride_id=ride_id,
                gross_amount=gross_amount,
                platform_fee=platform_fee,
                net_amount=net_amount,
                fee_percent=fee_percent,
                status=EarningsStatus.PENDING.value,
            )
            self.db.add(earning)
            self.db.flush()
            return earning
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to create driver earning: {str(e)}")
            raise RepositoryException(f"Failed to create driver earning: {str(e)}")

    def get_driver_earning(self, payment_intent_id: str) -> Optional[DriverEarning]:
        try:
            return (
                self.db.query(DriverEarning)
                .populate_existing()
                .filter(DriverEarning.payment_intent_id == payment_intent_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get driver earning: {str(e)}")
            raise RepositoryException(f"Failed to get driver earning: {str(e)}")

    def reverse_driver_earning(self, payment_intent_id: str, refunded_at: datetime) -> bool:
        try:
            result = self.db.execute(
                update(DriverEarning)
                .where(
                    DriverEarning.payment_intent_id == payment_intent_id,
                    DriverEarning.status == EarningsStatus.PENDING.value,
                )
                .values(status=EarningsStatus.REFUNDED.value, refunded_at=refunded_at)
                .execution_options(synchronize_session=False)
            )
            self.db.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to reverse driver earning: {str(e)}")
            raise RepositoryException(f"Failed to reverse driver earning: {str(e)}")

    def get_driver_earnings_summary(self, driver_id: str) -> Dict[str, Dict[str, int]]:
        """
        Aggregate a driver's earnings by status.

        Returns:
            {"pending": {"rides": n, "gross": ..., "platform_fee": ..., "net": ...}, ...}
        """
        try:
            rows = self.db.execute(
                select(
                    DriverEarning.status,
                    func.count(DriverEarning.id),
                    func.coalesce(func.sum(DriverEarning.gross_amount), 0),
                    func.coalesce(func.sum(DriverEarning.platform_fee), 0),
                    func.coalesce(func.sum(DriverEarning.net_amount), 0),
                )
                .where(DriverEarning.driver_id == driver_id)
                .group_by(DriverEarning.status)
            ).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to summarize earnings for driver {driver_id}: {str(e)}")
            raise RepositoryException(f"Failed to summarize driver earnings: {str(e)}")

        summary: Dict[str, Dict[str, int]] = {}
        for status, rides, gross, fee, net in rows:
            summary[status] = {
                "rides": int(rides),
                "gross": int(gross),
                "platform_fee": int(fee),
                "net": int(net),
            }
        return summary

    # ========== Payment history ==========

    def create_history_entry(
        self,
        *,
        payment_intent_id: str,
        rider_id: str,
        ride_id: str,
        amount: int,
        currency: str,
        status: str,
        transaction_type: TransactionType,
        description: Optional[str] = None,
    ) -> PaymentHistoryEntry:
        try:
            entry = PaymentHistoryEntry(
                payment_intent_id=payment_intent_id,
                rider_id=rider_id,
                ride_id=ride_id,
                amount=amount,
                currency=currency,
                status=status,
                transaction_type=transaction_type.value,
                description=description,
            )
            self.db.add(entry)
            self.db.flush()
            return entry
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to create payment history entry: {str(e)}")
            raise RepositoryException(f"Failed to create payment history entry: {str(e)}")

    def set_ride_payment_history_status(self, payment_intent_id: str, status: str) -> int:
        """Update the status of the original ride payment row (not refund rows)."""
        try:
            result = self.db.execute(
                update(PaymentHistoryEntry)
                .where(
                    PaymentHistoryEntry.payment_intent_id == payment_intent_id,
                    PaymentHistoryEntry.transaction_type == TransactionType.RIDE_PAYMENT.value,
                )
                .values(status=status, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.flush()
            return result.rowcount
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to update payment history: {str(e)}")
            raise RepositoryException(f"Failed to update payment history: {str(e)}")

    def get_history_for_payment(self, payment_intent_id: str) -> List[PaymentHistoryEntry]:
        try:
            return (
                self.db.query(PaymentHistoryEntry)
                .populate_existing()
                .filter(PaymentHistoryEntry.payment_intent_id == payment_intent_id)
                .order_by(PaymentHistoryEntry.created_at, PaymentHistoryEntry.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment history: {str(e)}")
            raise RepositoryException(f"Failed to get payment history: {str(e)}")

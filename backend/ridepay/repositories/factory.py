"""
Repository Factory for the RidePay ledger.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from sqlalchemy.orm import Session

from .capture_queue_repository import CaptureQueueRepository
from .payment_repository import PaymentRepository
from .referral_repository import ReferralRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_payment_repository(db: Session) -> PaymentRepository:
        """Create repository for payment intents, capture log, earnings and history."""
        return PaymentRepository(db)

    @staticmethod
    def create_capture_queue_repository(db: Session) -> CaptureQueueRepository:
        """Create repository for the deferred capture queue."""
        return CaptureQueueRepository(db)

    @staticmethod
    def create_referral_repository(db: Session) -> ReferralRepository:
        """Create repository for referral codes."""
        return ReferralRepository(db)

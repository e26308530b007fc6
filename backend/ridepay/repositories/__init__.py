"""Repository layer for the RidePay ledger."""

from .base_repository import BaseRepository
from .capture_queue_repository import CaptureQueueRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository
from .referral_repository import ReferralRepository

__all__ = [
    "BaseRepository",
    "CaptureQueueRepository",
    "PaymentRepository",
    "ReferralRepository",
    "RepositoryFactory",
]

"""SQLAlchemy models for the RidePay ledger."""

from .capture_queue import CaptureQueueEntry
from .payment import CaptureLogEntry, DriverEarning, PaymentHistoryEntry, PaymentIntent
from .referral import ReferralCode

__all__ = [
    "CaptureLogEntry",
    "CaptureQueueEntry",
    "DriverEarning",
    "PaymentHistoryEntry",
    "PaymentIntent",
    "ReferralCode",
]

"""
Core enums for the RidePay payments service.

Status columns are stored as plain strings; always persist ``.value``.
"""

from enum import Enum


class PaymentStatus(str, Enum):
    """Local lifecycle status of a ride payment intent."""

    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    AUTHORIZED = "authorized"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"
    REFUNDED = "refunded"
    FAILED = "failed"


class CaptureQueueStatus(str, Enum):
    """Status of a deferred capture job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EarningsStatus(str, Enum):
    PENDING = "pending"
    REFUNDED = "refunded"


class PaymentHistoryStatus(str, Enum):
    """User-visible status shown in a rider's payment history."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    REFUNDED = "refunded"
    FAILED = "failed"


class TransactionType(str, Enum):
    RIDE_PAYMENT = "ride_payment"
    REFUND = "refund"


class CaptureOutcome(str, Enum):
    """Result of a single capture attempt as seen by the queue."""

    SUCCEEDED = "succeeded"
    RETRYABLE = "retryable"
    FAILED = "failed"

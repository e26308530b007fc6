"""Request and response schemas for the ride payment endpoints."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ConfigDict, Field

from ._strict_base import StrictModel, StrictRequestModel


class AuthorizePaymentRequest(StrictRequestModel):
    rider_id: str = Field(min_length=1, max_length=64)
    driver_id: str = Field(min_length=1, max_length=64)
    ride_id: str = Field(min_length=1, max_length=64)
    amount_subtotal: int = Field(gt=0, description="Ride price in cents before discounts")
    referral_code: Optional[str] = Field(default=None, max_length=64)
    booking_id: Optional[str] = Field(default=None, max_length=64)
    payment_method_id: Optional[str] = Field(
        default=None, max_length=255, description="Saved processor payment method to confirm off-session"
    )


class CancelPaymentRequest(StrictRequestModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class RefundPaymentRequest(StrictRequestModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class LinkBookingRequest(StrictRequestModel):
    booking_id: str = Field(min_length=1, max_length=64)


class CaptureBatchRequest(StrictRequestModel):
    batch_size: Optional[int] = Field(default=None, ge=1, le=500)
    max_attempts: Optional[int] = Field(default=None, ge=1, le=50)


class PaymentIntentResponse(StrictModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True, from_attributes=True)

    id: str
    processor_intent_id: str
    rider_id: str
    driver_id: str
    ride_id: str
    booking_id: Optional[str] = None
    amount_subtotal: int
    discount_amount: int
    amount_total: int
    currency: str
    referral_code: Optional[str] = None
    status: str
    captured_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime


class AuthorizePaymentResponse(StrictModel):
    payment_intent: PaymentIntentResponse
    client_secret: Optional[str] = None
    discount_applied: bool


class CaptureResponse(StrictModel):
    payment_intent_id: str
    status: str
    captured_amount: int
    platform_fee: int
    driver_earnings: int
    already_captured: bool


class CancelResponse(StrictModel):
    payment_intent_id: str
    status: str
    already_canceled: bool


class RefundResponse(StrictModel):
    payment_intent_id: str
    refund_id: str
    amount_refunded: int
    status: str


class CaptureQueueEntryResponse(StrictModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True, from_attributes=True)

    id: str
    payment_intent_id: str
    ride_id: str
    status: str
    attempts: int
    last_attempt_at: Optional[datetime] = None
    error_message: Optional[str] = None


class RideCompletedResponse(StrictModel):
    ride_id: str
    queued: List[CaptureQueueEntryResponse]


class CaptureEntryResultResponse(StrictModel):
    entry_id: str
    payment_intent_id: str
    outcome: str
    queue_status: str
    attempts: int
    error: Optional[str] = None


class CaptureBatchResponse(StrictModel):
    processed: int
    succeeded: int
    failed: int
    retried: int
    skipped: int
    released_stale: int
    halted: bool
    error: Optional[str] = None
    results: List[CaptureEntryResultResponse]


class EarningsBucket(StrictModel):
    rides: int
    gross: int
    platform_fee: int
    net: int


class DriverEarningsResponse(StrictModel):
    driver_id: str
    by_status: Dict[str, EarningsBucket]

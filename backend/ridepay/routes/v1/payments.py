# backend/ridepay/routes/v1/payments.py
"""
Ride payment endpoints.

Authorize holds funds when a ride is booked; capture, cancel and refund
move the hold through the rest of its lifecycle. Capture and refund are
restricted to internal callers holding the service token.
"""

from __future__ import annotations

import asyncio
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from ...api.dependencies import (
    get_capture_worker,
    get_lifecycle_service,
    require_service_token,
)
from ...core.exceptions import DomainException
from ...schemas.payment_schemas import (
    AuthorizePaymentRequest,
    AuthorizePaymentResponse,
    CancelPaymentRequest,
    CancelResponse,
    CaptureResponse,
    LinkBookingRequest,
    PaymentIntentResponse,
    RefundPaymentRequest,
    RefundResponse,
)
from ...services.capture_worker import ReconciliationWorker
from ...services.payment_lifecycle_service import PaymentLifecycleService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["payments-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception() from exc
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post(
    "/authorize",
    response_model=AuthorizePaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def authorize_payment(
    payload: AuthorizePaymentRequest,
    lifecycle: PaymentLifecycleService = Depends(get_lifecycle_service),
) -> AuthorizePaymentResponse:
    """
    Place an authorization hold for a ride.

    A referral code that is unknown, expired or already used is ignored and
    the full subtotal is held.
    """
    try:
        result = await asyncio.to_thread(
            lambda: lifecycle.authorize(
                rider_id=payload.rider_id,
                driver_id=payload.driver_id,
                ride_id=payload.ride_id,
                amount_subtotal=payload.amount_subtotal,
                referral_code=payload.referral_code,
                booking_id=payload.booking_id,
                payment_method_id=payload.payment_method_id,
            )
        )
        return AuthorizePaymentResponse(
            payment_intent=PaymentIntentResponse.model_validate(result.payment_intent),
            client_secret=result.client_secret,
            discount_applied=result.discount_applied,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{payment_intent_id}", response_model=PaymentIntentResponse)
async def get_payment(
    payment_intent_id: str,
    lifecycle: PaymentLifecycleService = Depends(get_lifecycle_service),
) -> PaymentIntentResponse:
    try:
        intent = await asyncio.to_thread(lifecycle.get_payment, payment_intent_id)
        return PaymentIntentResponse.model_validate(intent)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{payment_intent_id}/capture",
    response_model=CaptureResponse,
    dependencies=[Depends(require_service_token)],
)
async def capture_payment(
    payment_intent_id: str,
    worker: ReconciliationWorker = Depends(get_capture_worker),
) -> CaptureResponse:
    """
    Capture one payment immediately (admin/manual trigger).

    Runs the same engine path as the queue worker and closes any pending
    queue entry for the payment.
    """
    try:
        result = await asyncio.to_thread(worker.capture_one, payment_intent_id)
        return CaptureResponse(
            payment_intent_id=result.payment_intent_id,
            status=result.status,
            captured_amount=result.captured_amount,
            platform_fee=result.platform_fee,
            driver_earnings=result.driver_earnings,
            already_captured=result.already_captured,
        )
    except DomainException as e:
        logger.warning(f"Manual capture of {payment_intent_id} failed: {e.message}")
        handle_domain_exception(e)


@router.post("/{payment_intent_id}/cancel", response_model=CancelResponse)
async def cancel_payment(
    payment_intent_id: str,
    payload: Optional[CancelPaymentRequest] = Body(default=None),
    lifecycle: PaymentLifecycleService = Depends(get_lifecycle_service),
) -> CancelResponse:
    """Release the authorization hold of a canceled booking."""
    reason = payload.reason if payload else None
    try:
        result = await asyncio.to_thread(lifecycle.cancel, payment_intent_id, reason)
        return CancelResponse(
            payment_intent_id=result.payment_intent_id,
            status=result.status,
            already_canceled=result.already_canceled,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{payment_intent_id}/refund",
    response_model=RefundResponse,
    dependencies=[Depends(require_service_token)],
)
async def refund_payment(
    payment_intent_id: str,
    payload: Optional[RefundPaymentRequest] = Body(default=None),
    lifecycle: PaymentLifecycleService = Depends(get_lifecycle_service),
) -> RefundResponse:
    reason = payload.reason if payload else None
    try:
        result = await asyncio.to_thread(lifecycle.refund, payment_intent_id, reason)
        return RefundResponse(
            payment_intent_id=result.payment_intent_id,
            refund_id=result.refund_id,
            amount_refunded=result.amount_refunded,
            status=result.status,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{payment_intent_id}/booking", response_model=PaymentIntentResponse)
async def link_booking(
    payment_intent_id: str,
    payload: LinkBookingRequest,
    lifecycle: PaymentLifecycleService = Depends(get_lifecycle_service),
) -> PaymentIntentResponse:
    """Attach the booking created after authorization."""
    try:
        intent = await asyncio.to_thread(lifecycle.link_booking, payment_intent_id, payload.booking_id)
        return PaymentIntentResponse.model_validate(intent)
    except DomainException as e:
        handle_domain_exception(e)

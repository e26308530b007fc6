"""
Stripe Webhook Endpoints

Receives payment_intent.* events, verifies the signature and re-syncs the
referenced ride payment from the processor. The event body is only used
to find the intent; the status applied always comes from a fresh read.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..api.dependencies import get_lifecycle_service, get_runtime
from ..core.exceptions import ConfigurationError, DomainException, PaymentValidationError
from ..runtime import PaymentRuntime
from ..schemas.main_responses import WebhookResponse
from ..services.payment_lifecycle_service import PaymentLifecycleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/stripe", tags=["stripe-webhooks"])


@router.post("", response_model=WebhookResponse)
async def handle_stripe_event(
    request: Request,
    runtime: PaymentRuntime = Depends(get_runtime),
    lifecycle: PaymentLifecycleService = Depends(get_lifecycle_service),
) -> WebhookResponse:
    """
    Handle Stripe payment-related webhook events.

    Processes events like:
    - payment_intent.succeeded
    - payment_intent.canceled
    - payment_intent.amount_capturable_updated

    Other event types are acknowledged and ignored.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.warning("Missing Stripe signature header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing stripe-signature header"
        )

    try:
        event = runtime.processor.construct_event(payload, signature)
    except PaymentValidationError as e:
        logger.warning(f"Rejected Stripe webhook: {e.message}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except ConfigurationError as e:
        logger.error(f"Stripe webhook received but not configured: {e.message}")
        raise e.to_http_exception() from e

    event_type = str(event.get("type", ""))
    logger.info(f"Processing Stripe webhook event: {event_type}")

    try:
        result = await asyncio.to_thread(lifecycle.handle_processor_event, event)
    except DomainException as e:
        logger.error(f"Error processing Stripe webhook {event_type}: {e.message}")
        raise e.to_http_exception() from e

    if result is None:
        return WebhookResponse(status="ignored", event_type=event_type, message="No matching payment")
    return WebhookResponse(
        status="success",
        event_type=event_type,
        message=f"Payment {result.payment_intent.id} is {result.payment_intent.status}",
    )

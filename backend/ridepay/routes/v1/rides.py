# backend/ridepay/routes/v1/rides.py
"""Ride lifecycle hooks called by the dispatch service."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends

from ...api.dependencies import get_capture_queue_service, require_service_token
from ...core.exceptions import DomainException
from ...schemas.payment_schemas import CaptureQueueEntryResponse, RideCompletedResponse
from ...services.capture_queue_service import CaptureQueueService
from .payments import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rides-v1"])


@router.post(
    "/{ride_id}/completed",
    response_model=RideCompletedResponse,
    dependencies=[Depends(require_service_token)],
)
async def ride_completed(
    ride_id: str,
    queue: CaptureQueueService = Depends(get_capture_queue_service),
) -> RideCompletedResponse:
    """
    Queue the authorized payments of a completed ride for capture.

    Calling this twice for the same ride queues nothing new.
    """
    try:
        entries = await asyncio.to_thread(queue.enqueue_ride, ride_id)
        return RideCompletedResponse(
            ride_id=ride_id,
            queued=[CaptureQueueEntryResponse.model_validate(entry) for entry in entries],
        )
    except DomainException as e:
        handle_domain_exception(e)

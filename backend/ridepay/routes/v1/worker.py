# backend/ridepay/routes/v1/worker.py
"""
Scheduler entry point for the capture queue.

An external cron (or Celery beat through the task module) posts here to
run one reconciliation batch. The batch itself never raises; a processor
configuration problem is reported in the body with ``halted`` set.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends

from ...api.dependencies import get_capture_worker, require_service_token
from ...schemas.payment_schemas import CaptureBatchRequest, CaptureBatchResponse
from ...services.capture_worker import ReconciliationWorker

logger = logging.getLogger(__name__)

router = APIRouter(tags=["worker-v1"])


@router.post(
    "/payment-capture",
    response_model=CaptureBatchResponse,
    dependencies=[Depends(require_service_token)],
)
async def run_payment_capture(
    payload: Optional[CaptureBatchRequest] = Body(default=None),
    worker: ReconciliationWorker = Depends(get_capture_worker),
) -> CaptureBatchResponse:
    batch_size = payload.batch_size if payload else None
    max_attempts = payload.max_attempts if payload else None
    summary = await asyncio.to_thread(worker.run_capture_batch, batch_size, max_attempts)
    if summary.halted:
        logger.critical(f"Payment capture batch halted: {summary.error}")
    return CaptureBatchResponse(**summary.to_dict())

# backend/ridepay/routes/v1/drivers.py
"""Driver earnings read endpoints."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends

from ...api.dependencies import get_lifecycle_service
from ...schemas.payment_schemas import DriverEarningsResponse, EarningsBucket
from ...services.payment_lifecycle_service import PaymentLifecycleService

router = APIRouter(tags=["drivers-v1"])


@router.get("/{driver_id}/earnings", response_model=DriverEarningsResponse)
async def get_driver_earnings(
    driver_id: str,
    lifecycle: PaymentLifecycleService = Depends(get_lifecycle_service),
) -> DriverEarningsResponse:
    """Totals of a driver's earnings grouped by status (pending, refunded)."""
    summary = await asyncio.to_thread(lifecycle.get_driver_earnings_summary, driver_id)
    return DriverEarningsResponse(
        driver_id=driver_id,
        by_status={key: EarningsBucket(**bucket) for key, bucket in summary.items()},
    )

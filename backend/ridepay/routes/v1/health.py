# backend/ridepay/routes/v1/health.py
"""
Health check endpoints for monitoring and load balancer probes.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Request

from ...core.constants import API_VERSION, BRAND_NAME
from ...schemas.main_responses import HealthLiteResponse, HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _health_payload(environment: str) -> HealthResponse:
    """Generate the standard health response payload."""
    return HealthResponse(
        status="healthy",
        service=f"{BRAND_NAME.lower()}-api",
        version=API_VERSION,
        environment=environment,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    )


@router.get("", response_model=HealthResponse)
def health_check(request: Request) -> HealthResponse:
    """
    Health check endpoint.

    Returns basic liveness status including service info and environment.
    Touches neither the database nor the processor.
    """
    runtime = getattr(request.app.state, "runtime", None)
    environment = runtime.settings.environment if runtime is not None else "unknown"
    return _health_payload(environment)


@router.get("/lite", response_model=HealthLiteResponse)
def health_check_lite() -> HealthLiteResponse:
    """Smallest possible liveness probe for high-frequency checks."""
    return HealthLiteResponse(status="ok")

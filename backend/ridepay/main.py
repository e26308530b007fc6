# backend/ridepay/main.py
"""
FastAPI application for the ride payment service.

The payment runtime (settings, engine, processor client) is built in the
lifespan handler and stored on ``app.state``; tests pass their own
runtime to ``create_app`` instead.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, FastAPI

from .core.constants import API_DESCRIPTION, API_TITLE, API_VERSION, BRAND_NAME
from .routes import stripe_webhooks
from .routes.v1 import (
    drivers as drivers_v1,
    health as health_v1,
    payments as payments_v1,
    prometheus as prometheus_v1,
    rides as rides_v1,
    worker as worker_v1,
)
from .runtime import PaymentRuntime, build_runtime

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def create_app(runtime: Optional[PaymentRuntime] = None) -> FastAPI:
    """Build the API. A runtime passed in is used as is and never disposed."""

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Handle application startup/shutdown without deprecated events."""
        logger.info(f"{BRAND_NAME} API starting up...")
        owned = runtime is None
        app.state.runtime = runtime or build_runtime()
        if not app.state.runtime.processor_configured:
            logger.warning("Stripe secret key not set; processor calls will fail until configured")
        try:
            yield
        finally:
            logger.info(f"{BRAND_NAME} API shutting down...")
            if owned:
                app.state.runtime.dispose()

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    if runtime is not None:
        app.state.runtime = runtime

    # API v1 routers
    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(payments_v1.router, prefix="/payments")
    api_v1.include_router(rides_v1.router, prefix="/rides")
    api_v1.include_router(drivers_v1.router, prefix="/drivers")
    api_v1.include_router(worker_v1.router, prefix="/worker")

    app.include_router(api_v1)
    app.include_router(health_v1.router, prefix="/health")
    app.include_router(stripe_webhooks.router)
    app.include_router(prometheus_v1.router)
    return app


app = create_app()

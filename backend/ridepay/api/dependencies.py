"""FastAPI dependencies: runtime, database session, services and service-token auth."""

from __future__ import annotations

import logging
import secrets
from typing import Iterator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ..runtime import PaymentRuntime
from ..services.capture_queue_service import CaptureQueueService
from ..services.capture_worker import ReconciliationWorker
from ..services.payment_lifecycle_service import PaymentLifecycleService

logger = logging.getLogger(__name__)


def get_runtime(request: Request) -> PaymentRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment runtime not initialized",
        )
    return runtime


def get_db(runtime: PaymentRuntime = Depends(get_runtime)) -> Iterator[Session]:
    """Yield a session for one request."""
    db = runtime.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_lifecycle_service(
    db: Session = Depends(get_db), runtime: PaymentRuntime = Depends(get_runtime)
) -> PaymentLifecycleService:
    return runtime.lifecycle_service(db)


def get_capture_queue_service(
    db: Session = Depends(get_db), runtime: PaymentRuntime = Depends(get_runtime)
) -> CaptureQueueService:
    return runtime.capture_queue_service(db)


def get_capture_worker(
    db: Session = Depends(get_db), runtime: PaymentRuntime = Depends(get_runtime)
) -> ReconciliationWorker:
    return runtime.capture_worker(db)


def require_service_token(
    request: Request, runtime: PaymentRuntime = Depends(get_runtime)
) -> None:
    """Bearer-token guard for scheduler, admin and internal callers."""
    configured = runtime.settings.worker_api_token
    expected = configured.get_secret_value().strip() if configured else ""
    if not expected:
        logger.error("Service token not configured; rejecting privileged request")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service token not configured",
        )

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        logger.warning("service_auth_missing_header", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
        )
    if not secrets.compare_digest(auth_header[7:], expected):
        logger.warning("service_auth_bad_token", extra={"path": request.url.path})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid service token")

"""
Celery tasks for ride payment processing.

Runs the capture queue on a schedule and sweeps authorizations that were
never attached to a booking. Both tasks share one payment runtime per
worker process.
"""

from datetime import datetime, timezone
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, ParamSpec, Protocol, TypedDict, TypeVar, cast

from celery.result import AsyncResult

from ridepay.core.exceptions import ConfigurationError
from ridepay.runtime import PaymentRuntime, build_runtime
from ridepay.tasks.celery_app import celery_app

P = ParamSpec("P")
R = TypeVar("R", covariant=True)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


class CaptureJobResults(TypedDict):
    processed: int
    succeeded: int
    failed: int
    retried: int
    skipped: int
    halted: bool
    error: Optional[str]
    processed_at: str


class OrphanSweepResults(TypedDict):
    canceled: int
    failed: int
    failures: List[Dict[str, Any]]
    processed_at: str


logger = logging.getLogger(__name__)

_runtime: Optional[PaymentRuntime] = None
_runtime_lock = threading.Lock()


def get_task_runtime() -> PaymentRuntime:
    """Payment runtime shared by every task in this worker process."""
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = build_runtime()
        return _runtime


def set_task_runtime(runtime: Optional[PaymentRuntime]) -> None:
    global _runtime
    with _runtime_lock:
        _runtime = runtime


@typed_task(bind=True, name="ridepay.tasks.payment_tasks.run_capture_batch")
def run_capture_batch(
    self: Any, batch_size: Optional[int] = None, max_attempts: Optional[int] = None
) -> CaptureJobResults:
    """
    Capture one batch of queued ride payments.

    Not retried: the batch records per-entry failures itself and the next
    scheduled run picks up whatever is left.
    """
    runtime = get_task_runtime()
    with runtime.session() as db:
        summary = runtime.capture_worker(db).run_capture_batch(batch_size, max_attempts)

    if summary.halted:
        logger.critical(f"Capture batch halted: {summary.error}")

    return {
        "processed": summary.processed,
        "succeeded": summary.succeeded,
        "failed": summary.failed,
        "retried": summary.retried,
        "skipped": summary.skipped,
        "halted": summary.halted,
        "error": summary.error,
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }


@typed_task(
    bind=True,
    max_retries=3,
    name="ridepay.tasks.payment_tasks.release_orphaned_authorizations",
)
def release_orphaned_authorizations(self: Any, limit: int = 100) -> OrphanSweepResults:
    """
    Cancel authorization holds that never got a booking attached.

    A processor configuration error is retried later; per-payment failures
    are reported in the result.
    """
    runtime = get_task_runtime()
    try:
        with runtime.session() as db:
            results = runtime.lifecycle_service(db).release_orphaned_authorizations(limit=limit)
    except ConfigurationError as exc:
        logger.error(f"Orphaned authorization sweep blocked: {exc.message}")
        raise self.retry(exc=exc, countdown=300)

    return {
        "canceled": results["canceled"],
        "failed": results["failed"],
        "failures": results["failures"],
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }

"""
Reconciliation worker for deferred captures.

Processes one batch of the capture queue strictly sequentially with a
fixed pause between entries. Per-entry failures are recorded against the
entry and the batch continues. Only a configuration error (bad or
missing processor credentials) stops the run early.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.config import Settings
from ..core.enums import CaptureOutcome, CaptureQueueStatus, PaymentStatus
from ..core.exceptions import (
    ConfigurationError,
    DomainException,
    StateConflictError,
    TransientProcessorError,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from .capture_queue_service import CaptureQueueService
from .payment_lifecycle_service import CaptureResult, PaymentLifecycleService

logger = logging.getLogger(__name__)


@dataclass
class CaptureEntryResult:
    entry_id: str
    payment_intent_id: str
    outcome: str
    queue_status: str
    attempts: int
    error: Optional[str] = None


@dataclass
class CaptureBatchSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0
    released_stale: int = 0
    halted: bool = False
    error: Optional[str] = None
    results: List[CaptureEntryResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def classify_capture_error(exc: Exception) -> Tuple[CaptureOutcome, str]:
    """Map a capture failure onto a queue outcome."""
    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    if isinstance(exc, TransientProcessorError):
        return CaptureOutcome.RETRYABLE, message
    if isinstance(exc, StateConflictError):
        # Another capture holds the intent; look again next run
        if exc.local_status == PaymentStatus.PROCESSING.value:
            return CaptureOutcome.RETRYABLE, message
        return CaptureOutcome.FAILED, message
    if isinstance(exc, DomainException):
        return CaptureOutcome.FAILED, message
    return CaptureOutcome.RETRYABLE, f"{exc.__class__.__name__}: {message}"


class ReconciliationWorker:
    """Drives queued captures through the lifecycle engine."""

    def __init__(
        self,
        queue: CaptureQueueService,
        engine: PaymentLifecycleService,
        settings: Settings,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.queue = queue
        self.engine = engine
        self.settings = settings
        self.sleep = sleep
        self.logger = logging.getLogger(self.__class__.__name__)

    def run_capture_batch(
        self,
        batch_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
        delay_ms: Optional[int] = None,
    ) -> CaptureBatchSummary:
        """
        Capture up to ``batch_size`` queued payments. Never raises.

        Returns:
            CaptureBatchSummary with processed/succeeded/failed counts
        """
        batch_size = self.settings.capture_batch_size if batch_size is None else batch_size
        max_attempts = self.settings.capture_max_attempts if max_attempts is None else max_attempts
        delay_ms = self.settings.capture_delay_ms if delay_ms is None else delay_ms
        summary = CaptureBatchSummary()

        try:
            summary.released_stale = self.queue.release_stale_claims(
                self.settings.capture_stale_after_seconds
            )
            entries = self.queue.dequeue_batch(batch_size, max_attempts)
        except Exception as exc:
            self.logger.error(f"Capture batch could not load the queue: {exc}", exc_info=True)
            self._reset_session()
            summary.error = str(exc)
            return summary

        self.logger.info(f"Capture batch starting with {len(entries)} queued capture(s)")

        for index, entry in enumerate(entries):
            if index > 0 and delay_ms > 0:
                self.sleep(delay_ms / 1000.0)

            entry_id = entry.id
            payment_intent_id = entry.payment_intent_id
            try:
                claimed = self.queue.claim(entry_id)
            except Exception as exc:
                self.logger.error(f"Could not claim queue entry {entry_id}: {exc}")
                self._reset_session()
                summary.skipped += 1
                continue
            if not claimed:
                summary.skipped += 1
                continue

            error_message: Optional[str] = None
            try:
                self.engine.capture(payment_intent_id)
                outcome = CaptureOutcome.SUCCEEDED
            except ConfigurationError as exc:
                self.logger.critical(f"Capture batch halted, processor configuration error: {exc.message}")
                self._reset_session()
                self._release_quietly(entry_id)
                prometheus_metrics.record_capture_attempt("halted")
                summary.halted = True
                summary.error = exc.message
                break
            except Exception as exc:
                outcome, error_message = classify_capture_error(exc)
                log = self.logger.warning if outcome == CaptureOutcome.RETRYABLE else self.logger.error
                log(f"Capture of payment {payment_intent_id} failed ({outcome.value}): {error_message}")
                self._reset_session()

            summary.processed += 1
            try:
                updated = self.queue.record_attempt(
                    entry_id, outcome, max_attempts=max_attempts, error_message=error_message
                )
            except Exception as exc:
                # Entry stays claimed; release_stale_claims returns it next run
                self.logger.error(f"Could not record attempt for queue entry {entry_id}: {exc}")
                self._reset_session()
                continue

            prometheus_metrics.record_capture_attempt(outcome.value)
            if updated.status == CaptureQueueStatus.COMPLETED.value:
                summary.succeeded += 1
            elif updated.status == CaptureQueueStatus.FAILED.value:
                summary.failed += 1
            else:
                summary.retried += 1
            summary.results.append(
                CaptureEntryResult(
                    entry_id=entry_id,
                    payment_intent_id=payment_intent_id,
                    outcome=outcome.value,
                    queue_status=updated.status,
                    attempts=updated.attempts,
                    error=error_message,
                )
            )

        prometheus_metrics.record_capture_batch(summary.processed)
        self.logger.info(
            f"Capture batch done: processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} retried={summary.retried} halted={summary.halted}"
        )
        return summary

    def capture_one(self, payment_intent_id: str) -> CaptureResult:
        """
        Operator-initiated capture of a single payment.

        Uses the same engine path as the batch; errors propagate to the caller.
        """
        self.logger.info(f"Manual capture requested for payment {payment_intent_id}")
        result = self.engine.capture(payment_intent_id)
        self.queue.complete_for_payment(payment_intent_id)
        return result

    def _release_quietly(self, entry_id: str) -> None:
        try:
            self.queue.release(entry_id)
        except Exception as exc:
            self.logger.error(f"Could not release queue entry {entry_id}: {exc}")
            self._reset_session()

    def _reset_session(self) -> None:
        self.queue.db.rollback()

# backend/ridepay/services/payment_lifecycle_service.py
"""
Payment lifecycle engine for ride payments.

Owns every status change of a PaymentIntent:
- Authorize: referral claim, processor hold and ledger insert as one saga
- Capture: sync with the processor, claim the intent, capture, finalize
- Cancel / Refund: release the hold or return the money
- Sync: re-derive local status from the processor (also used by webhooks)

Every operation re-reads the processor's view of the intent before it
mutates anything, and every status write is a compare-and-swap against
the status the operation started from.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from ..core.config import Settings
from ..core.constants import (
    DEFAULT_CANCELLATION_REASON,
    DEFAULT_REFUND_REASON,
    MAX_ERROR_MESSAGE_LENGTH,
    MAX_REASON_LENGTH,
    PENDING_BOOKING_PLACEHOLDER,
)
from ..core.enums import PaymentHistoryStatus, PaymentStatus, TransactionType
from ..core.exceptions import (
    ConfigurationError,
    InvalidStateError,
    PaymentNotFoundError,
    PaymentValidationError,
    ProcessorError,
    ProcessorRejectedError,
    StateConflictError,
    TransientProcessorError,
)
from ..core.time_utils import utcnow
from ..core.ulid_helper import generate_ulid
from ..domain.payment_state import (
    LOCALLY_OWNED_STATUSES,
    can_sync_transition,
    can_transition,
    ensure_transition,
    is_stale_processing,
    map_processor_status,
)
from ..integrations.processor_client import ProcessorClient, ProcessorIntent
from ..models.payment import PaymentIntent
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .pricing_service import PriceBreakdown, compute_discount, compute_fee_split
from .saga import Saga

logger = logging.getLogger(__name__)

# Stripe only accepts these values as a refund reason
_PROCESSOR_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}


@dataclass(frozen=True)
class AuthorizationResult:
    payment_intent: PaymentIntent
    client_secret: Optional[str]
    discount_applied: bool


@dataclass(frozen=True)
class CaptureResult:
    payment_intent_id: str
    status: str
    captured_amount: int
    platform_fee: int
    driver_earnings: int
    already_captured: bool = False


@dataclass(frozen=True)
class CancelResult:
    payment_intent_id: str
    status: str
    already_canceled: bool = False


@dataclass(frozen=True)
class RefundResult:
    payment_intent_id: str
    refund_id: str
    amount_refunded: int
    status: str


@dataclass(frozen=True)
class SyncResult:
    payment_intent: PaymentIntent
    processor_status: str
    corrected: bool


def _processor_error_kind(exc: Exception) -> str:
    if isinstance(exc, TransientProcessorError):
        return "transient"
    if isinstance(exc, ConfigurationError):
        return "configuration"
    return "rejected"


class PaymentLifecycleService(BaseService):
    """
    The only writer of PaymentIntent status.

    Collaborators are injected: a session for the ledger store, a
    ProcessorClient for the processor and the settings the engine reads
    its fee percent, currency and recovery thresholds from.
    """

    def __init__(
        self,
        db: Session,
        processor: ProcessorClient,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(db)
        self.processor = processor
        self.settings = settings
        self.clock = clock
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.referral_repository = RepositoryFactory.create_referral_repository(db)

    # ========== Lookups ==========

    def get_payment(self, payment_intent_id: str) -> PaymentIntent:
        intent = self.payment_repository.reload(payment_intent_id)
        if intent is None:
            raise PaymentNotFoundError(payment_intent_id)
        return intent

    def get_driver_earnings_summary(self, driver_id: str) -> Dict[str, Dict[str, int]]:
        return self.payment_repository.get_driver_earnings_summary(driver_id)

    # ========== Authorize ==========

    @BaseService.measure_operation("authorize")
    def authorize(
        self,
        *,
        rider_id: str,
        driver_id: str,
        ride_id: str,
        amount_subtotal: int,
        referral_code: Optional[str] = None,
        booking_id: Optional[str] = None,
        payment_method_id: Optional[str] = None,
    ) -> AuthorizationResult:
        """
        Place an authorization hold for a ride.

        Runs as a saga: claim referral -> processor authorize -> ledger insert.
        A failure in a later step undoes the earlier ones (the referral is
        given back, a fresh processor hold is canceled) before the error is
        re-raised. Authorize is never retried automatically.
        """
        self._validate_authorize_input(rider_id, driver_id, ride_id, amount_subtotal)
        referral_code = referral_code.strip() if referral_code else None
        payment_intent_id = generate_ulid()

        saga = Saga("authorize_ride_payment", saga_id=payment_intent_id)
        saga.add_step("referral", self._claim_referral_step(referral_code, rider_id), self._release_claimed_referral)
        saga.add_step(
            "processor_intent",
            self._processor_authorize_step(
                payment_intent_id=payment_intent_id,
                rider_id=rider_id,
                driver_id=driver_id,
                ride_id=ride_id,
                amount_subtotal=amount_subtotal,
                booking_id=booking_id,
                payment_method_id=payment_method_id,
            ),
            self._cancel_orphaned_authorization,
        )
        saga.add_step(
            "payment_intent",
            self._persist_intent_step(
                payment_intent_id=payment_intent_id,
                rider_id=rider_id,
                driver_id=driver_id,
                ride_id=ride_id,
                booking_id=booking_id,
            ),
        )

        try:
            context = saga.execute()
        except ProcessorError as exc:
            prometheus_metrics.record_processor_error("authorize", _processor_error_kind(exc))
            raise
        except ConfigurationError:
            prometheus_metrics.record_processor_error("authorize", "configuration")
            raise

        intent: PaymentIntent = context["payment_intent"]
        processor_intent: ProcessorIntent = context["processor_intent"]
        self.logger.info(
            f"Authorized ride payment {intent.id} ({intent.amount_total} {intent.currency}) "
            f"for ride {ride_id}, status={intent.status}"
        )
        return AuthorizationResult(
            payment_intent=intent,
            client_secret=processor_intent.client_secret,
            discount_applied=context["referral"] is not None,
        )

    def _validate_authorize_input(
        self, rider_id: str, driver_id: str, ride_id: str, amount_subtotal: Any
    ) -> None:
        for label, value in (("rider_id", rider_id), ("driver_id", driver_id), ("ride_id", ride_id)):
            if not isinstance(value, str) or not value.strip():
                raise PaymentValidationError(f"{label} is required", details={"field": label})
        if isinstance(amount_subtotal, bool) or not isinstance(amount_subtotal, int):
            raise PaymentValidationError(
                "Amount must be an integer number of cents",
                details={"amount_subtotal": amount_subtotal},
            )
        if amount_subtotal <= 0:
            raise PaymentValidationError(
                "Amount must be greater than zero", details={"amount_subtotal": amount_subtotal}
            )

    def _claim_referral_step(
        self, referral_code: Optional[str], rider_id: str
    ) -> Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]:
        def claim(_context: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            if not referral_code:
                return None
            with self.transaction():
                claimed = self.referral_repository.claim(referral_code, rider_id, self.clock())
            if not claimed:
                self.logger.info(
                    f"Referral code {referral_code} unavailable for rider {rider_id}; no discount applied"
                )
                return None
            referral = self.referral_repository.get_by_code(referral_code)
            if referral is None:
                return None
            return {"code": referral.code, "discount_percent": referral.discount_percent}

        return claim

    def _release_claimed_referral(self, _context: Dict[str, Any], claimed: Optional[Dict[str, Any]]) -> None:
        if not claimed:
            return
        with self.transaction():
            self.referral_repository.release(claimed["code"])
        self.logger.info(f"Released referral code {claimed['code']} after failed authorization")

    def _processor_authorize_step(
        self,
        *,
        payment_intent_id: str,
        rider_id: str,
        driver_id: str,
        ride_id: str,
        amount_subtotal: int,
        booking_id: Optional[str],
        payment_method_id: Optional[str],
    ) -> Callable[[Dict[str, Any]], ProcessorIntent]:
        def authorize(context: Dict[str, Any]) -> ProcessorIntent:
            referral = context.get("referral")
            percent = referral["discount_percent"] if referral else 0
            breakdown = compute_discount(amount_subtotal, percent)
            if breakdown.amount_total <= 0:
                raise PaymentValidationError(
                    "Discounted total must be greater than zero",
                    details={"amount_subtotal": amount_subtotal, "discount_percent": percent},
                )
            context["breakdown"] = breakdown

            metadata = {
                "payment_intent_id": payment_intent_id,
                "ride_id": ride_id,
                "booking_id": booking_id or PENDING_BOOKING_PLACEHOLDER,
                "rider_id": rider_id,
                "driver_id": driver_id,
                "referral_code": referral["code"] if referral else "",
            }

            def request() -> ProcessorIntent:
                return self.processor.authorize(
                    breakdown.amount_total,
                    self.settings.stripe_currency,
                    metadata,
                    idempotency_key=f"authorize-{payment_intent_id}",
                    payment_method_id=payment_method_id,
                    description=f"Ride {ride_id}",
                )

            try:
                processor_intent = request()
            except TransientProcessorError:
                self._release_unconfirmed_authorization(payment_intent_id, request)
                raise
            status = map_processor_status(processor_intent.status)
            if status not in (PaymentStatus.REQUIRES_PAYMENT_METHOD, PaymentStatus.AUTHORIZED):
                raise ProcessorRejectedError(
                    f"Unexpected processor status after authorization: {processor_intent.status}",
                    details={"processor_intent_id": processor_intent.id},
                )
            return processor_intent

        return authorize

    def _release_unconfirmed_authorization(
        self, payment_intent_id: str, replay: Callable[[], ProcessorIntent]
    ) -> None:
        """
        Cancel the hold left behind by an authorize call that timed out.

        The processor may have created the intent before the response was
        lost. Replaying the request with the same idempotency key returns
        that intent; when the replay fails as well, the intent is looked up
        by the local payment id stored in its metadata. Errors here are
        logged and never replace the original timeout.
        """
        try:
            found: Optional[ProcessorIntent] = replay()
        except (ProcessorError, ConfigurationError) as exc:
            self.logger.warning(f"Replay of timed-out authorize for {payment_intent_id} failed: {exc}")
            try:
                found = self.processor.find_by_reference(payment_intent_id)
            except (ProcessorError, ConfigurationError) as lookup_exc:
                self.logger.error(
                    f"Could not look up processor intent for {payment_intent_id}; "
                    f"a hold may be left until it expires: {lookup_exc}"
                )
                return

        if found is None:
            self.logger.info(f"No processor intent was created for timed-out authorize {payment_intent_id}")
            return
        if found.status == "canceled":
            return
        try:
            self._cancel_orphaned_authorization({}, found)
        except (ProcessorError, ConfigurationError) as exc:
            self.logger.error(f"Could not cancel processor intent {found.id} after authorize timeout: {exc}")

    def _cancel_orphaned_authorization(self, context: Dict[str, Any], processor_intent: ProcessorIntent) -> None:
        self.logger.warning(f"Canceling processor intent {processor_intent.id}: local record was not written")
        self.processor.cancel(
            processor_intent.id,
            idempotency_key=f"authorize-compensation-{processor_intent.id}",
            reason="abandoned",
        )

    def _persist_intent_step(
        self,
        *,
        payment_intent_id: str,
        rider_id: str,
        driver_id: str,
        ride_id: str,
        booking_id: Optional[str],
    ) -> Callable[[Dict[str, Any]], PaymentIntent]:
        def persist(context: Dict[str, Any]) -> PaymentIntent:
            processor_intent: ProcessorIntent = context["processor_intent"]
            breakdown: PriceBreakdown = context["breakdown"]
            referral = context.get("referral")
            status = map_processor_status(processor_intent.status)
            with self.transaction():
                intent = self.payment_repository.create(
                    id=payment_intent_id,
                    processor_intent_id=processor_intent.id,
                    rider_id=rider_id,
                    driver_id=driver_id,
                    ride_id=ride_id,
                    booking_id=booking_id,
                    amount_subtotal=breakdown.amount_subtotal,
                    discount_amount=breakdown.discount_amount,
                    amount_total=breakdown.amount_total,
                    currency=self.settings.stripe_currency,
                    referral_code=referral["code"] if referral else None,
                    status=status.value,
                    client_secret=processor_intent.client_secret,
                )
                self.payment_repository.create_history_entry(
                    payment_intent_id=payment_intent_id,
                    rider_id=rider_id,
                    ride_id=ride_id,
                    amount=breakdown.amount_total,
                    currency=self.settings.stripe_currency,
                    status=PaymentHistoryStatus.PENDING.value,
                    transaction_type=TransactionType.RIDE_PAYMENT,
                    description=f"Ride {ride_id}",
                )
            return intent

        return persist

    # ========== Sync ==========

    @BaseService.measure_operation("sync_status")
    def sync_status(self, payment_intent_id: str) -> SyncResult:
        """Re-read the processor's view of an intent and persist any correction."""
        intent = self.get_payment(payment_intent_id)
        return self._sync(intent)

    def _sync(self, intent: PaymentIntent) -> SyncResult:
        try:
            remote = self.processor.fetch_status(intent.processor_intent_id)
        except (ProcessorError, ConfigurationError) as exc:
            prometheus_metrics.record_processor_error("fetch_status", _processor_error_kind(exc))
            raise
        remote_status = map_processor_status(remote.status)
        local_status = PaymentStatus(intent.status)

        if remote_status == local_status or local_status in LOCALLY_OWNED_STATUSES:
            return SyncResult(intent, remote.status, corrected=False)

        corrected = False
        if remote_status == PaymentStatus.SUCCEEDED and local_status in (
            PaymentStatus.AUTHORIZED,
            PaymentStatus.PROCESSING,
            PaymentStatus.REQUIRES_PAYMENT_METHOD,
        ):
            self.logger.warning(
                f"Payment {intent.id} already captured at processor while local status is "
                f"{local_status.value}; finalizing locally"
            )
            corrected = self._finalize_capture(intent, [local_status], remote.charge_ref)
        elif local_status == PaymentStatus.PROCESSING and remote_status == PaymentStatus.AUTHORIZED:
            if not is_stale_processing(
                intent.capture_started_at, self.clock(), self.settings.capture_stale_after_seconds
            ):
                raise StateConflictError(
                    f"Capture already in progress for payment {intent.id}",
                    local_status=local_status.value,
                    processor_status=remote.status,
                )
            self.logger.warning(f"Resetting abandoned capture of payment {intent.id} to authorized")
            corrected = self._transition(
                intent, [PaymentStatus.PROCESSING], PaymentStatus.AUTHORIZED, capture_started_at=None
            )
        elif remote_status == PaymentStatus.CANCELED and can_sync_transition(local_status, PaymentStatus.CANCELED):
            corrected = self._finalize_cancel(
                intent, [local_status], reason="canceled_at_processor"
            )
        elif can_transition(local_status, remote_status) and remote_status != PaymentStatus.PROCESSING:
            corrected = self._transition(intent, [local_status], remote_status, from_processor=True)
        else:
            self.logger.warning(
                f"Payment {intent.id} local status {local_status.value} disagrees with processor "
                f"status {remote.status}; no automatic correction"
            )

        refreshed = self.get_payment(intent.id)
        return SyncResult(refreshed, remote.status, corrected=corrected)

    def _transition(
        self,
        intent: PaymentIntent,
        expected: List[PaymentStatus],
        target: PaymentStatus,
        from_processor: bool = False,
        **fields: Any,
    ) -> bool:
        for current in expected:
            ensure_transition(current, target, from_processor=from_processor)
        previous = intent.status
        with self.transaction():
            won = self.payment_repository.transition_status(intent.id, expected, target, **fields)
        if won:
            prometheus_metrics.record_transition(previous, target.value)
        return won

    # ========== Capture ==========

    @BaseService.measure_operation("capture")
    def capture(self, payment_intent_id: str) -> CaptureResult:
        """
        Capture an authorized payment exactly once.

        Safe to call concurrently and repeatedly: an intent that is already
        succeeded returns its recorded result, and only the caller that wins
        the authorized -> processing swap talks to the processor.
        """
        intent = self.get_payment(payment_intent_id)
        if intent.status == PaymentStatus.SUCCEEDED.value:
            return self._capture_result(intent, already_captured=True)

        sync = self._sync(intent)
        intent = sync.payment_intent
        if intent.status == PaymentStatus.SUCCEEDED.value:
            return self._capture_result(intent, already_captured=True)

        local_status = PaymentStatus(intent.status)
        processor_mapped = map_processor_status(sync.processor_status)
        if local_status != PaymentStatus.AUTHORIZED or processor_mapped != PaymentStatus.AUTHORIZED:
            raise InvalidStateError(
                f"Payment {intent.id} cannot be captured: local status {local_status.value}, "
                f"processor status {sync.processor_status}",
                local_status=local_status.value,
                processor_status=sync.processor_status,
            )

        if not self._transition(
            intent,
            [PaymentStatus.AUTHORIZED],
            PaymentStatus.PROCESSING,
            capture_started_at=self.clock(),
        ):
            current = self.get_payment(intent.id)
            if current.status == PaymentStatus.SUCCEEDED.value:
                return self._capture_result(current, already_captured=True)
            raise StateConflictError(
                f"Payment {intent.id} was claimed by another capture",
                local_status=current.status,
                processor_status=sync.processor_status,
            )

        try:
            captured = self.processor.capture(
                intent.processor_intent_id, idempotency_key=f"capture-{intent.id}"
            )
        except ProcessorRejectedError as exc:
            prometheus_metrics.record_processor_error("capture", "rejected")
            self._mark_failed(intent, [PaymentStatus.PROCESSING], exc.message)
            raise
        except Exception as exc:
            prometheus_metrics.record_processor_error("capture", _processor_error_kind(exc))
            self.logger.warning(f"Capture of payment {intent.id} failed, reverting to authorized: {exc}")
            self._transition(
                intent, [PaymentStatus.PROCESSING], PaymentStatus.AUTHORIZED, capture_started_at=None
            )
            raise

        if captured.status != "succeeded":
            # Left in processing; the next sync picks up the processor's final answer
            raise TransientProcessorError(
                f"Capture of payment {intent.id} not yet settled (processor status {captured.status})",
                details={"processor_status": captured.status},
            )

        self._finalize_capture(intent, [PaymentStatus.PROCESSING], captured.charge_ref)
        result = self._capture_result(self.get_payment(intent.id), already_captured=False)
        self.logger.info(
            f"Captured payment {intent.id}: {result.captured_amount} {intent.currency}, "
            f"platform fee {result.platform_fee}, driver net {result.driver_earnings}"
        )
        return result

    def _finalize_capture(
        self,
        intent: PaymentIntent,
        expected: List[PaymentStatus],
        charge_ref: Optional[str],
    ) -> bool:
        """
        Mark succeeded and write the capture log, driver earnings and history.

        All four writes share one transaction, and only the caller whose
        status swap succeeds writes the derived rows.
        """
        for current in expected:
            ensure_transition(current, PaymentStatus.SUCCEEDED, from_processor=True)
        now = self.clock()
        split = compute_fee_split(intent.amount_total, self.settings.platform_fee_percent)
        with self.transaction():
            won = self.payment_repository.transition_status(
                intent.id,
                expected,
                PaymentStatus.SUCCEEDED,
                captured_at=now,
                capture_started_at=None,
                charge_ref=charge_ref,
            )
            if not won:
                return False
            self.payment_repository.create_capture_log(
                intent.id, intent.amount_total, intent.currency, charge_ref, now
            )
            self.payment_repository.create_driver_earning(
                payment_intent_id=intent.id,
                driver_id=intent.driver_id,
                ride_id=intent.ride_id,
                gross_amount=split.gross_amount,
                platform_fee=split.platform_fee,
                net_amount=split.net_amount,
                fee_percent=split.fee_percent,
            )
            self.payment_repository.set_ride_payment_history_status(
                intent.id, PaymentHistoryStatus.SUCCEEDED.value
            )
        prometheus_metrics.record_transition(expected[0].value, PaymentStatus.SUCCEEDED.value)
        return True

    def _capture_result(self, intent: PaymentIntent, *, already_captured: bool) -> CaptureResult:
        earning = self.payment_repository.get_driver_earning(intent.id)
        if earning is None:
            split = compute_fee_split(intent.amount_total, self.settings.platform_fee_percent)
            platform_fee, net = split.platform_fee, split.net_amount
        else:
            platform_fee, net = earning.platform_fee, earning.net_amount
        return CaptureResult(
            payment_intent_id=intent.id,
            status=intent.status,
            captured_amount=intent.amount_total,
            platform_fee=platform_fee,
            driver_earnings=net,
            already_captured=already_captured,
        )

    def _mark_failed(self, intent: PaymentIntent, expected: List[PaymentStatus], reason: str) -> bool:
        for current in expected:
            ensure_transition(current, PaymentStatus.FAILED)
        with self.transaction():
            won = self.payment_repository.transition_status(
                intent.id,
                expected,
                PaymentStatus.FAILED,
                failure_reason=reason[:MAX_ERROR_MESSAGE_LENGTH],
                capture_started_at=None,
            )
            if won:
                self.payment_repository.set_ride_payment_history_status(
                    intent.id, PaymentHistoryStatus.FAILED.value
                )
        if won:
            prometheus_metrics.record_transition(expected[0].value, PaymentStatus.FAILED.value)
            self.logger.error(f"Payment {intent.id} marked failed: {reason}")
        return won

    # ========== Cancel ==========

    @BaseService.measure_operation("cancel")
    def cancel(self, payment_intent_id: str, reason: Optional[str] = None) -> CancelResult:
        """Release an authorization hold. A second cancel is a no-op."""
        reason = (reason or DEFAULT_CANCELLATION_REASON).strip()[:MAX_REASON_LENGTH]
        intent = self.get_payment(payment_intent_id)
        if intent.status == PaymentStatus.CANCELED.value:
            return CancelResult(intent.id, intent.status, already_canceled=True)

        sync = self._sync(intent)
        intent = sync.payment_intent
        if intent.status == PaymentStatus.CANCELED.value:
            return CancelResult(intent.id, intent.status, already_canceled=True)
        if intent.status != PaymentStatus.AUTHORIZED.value:
            raise InvalidStateError(
                f"Payment {intent.id} cannot be canceled from status {intent.status}",
                local_status=intent.status,
                processor_status=sync.processor_status,
            )

        try:
            self.processor.cancel(
                intent.processor_intent_id,
                idempotency_key=f"cancel-{intent.id}",
                reason="requested_by_customer",
            )
        except (ProcessorError, ConfigurationError) as exc:
            prometheus_metrics.record_processor_error("cancel", _processor_error_kind(exc))
            raise

        if not self._finalize_cancel(intent, [PaymentStatus.AUTHORIZED], reason=reason):
            current = self.get_payment(intent.id)
            if current.status == PaymentStatus.CANCELED.value:
                return CancelResult(current.id, current.status, already_canceled=True)
            raise StateConflictError(
                f"Payment {intent.id} changed status during cancel",
                local_status=current.status,
                processor_status="canceled",
            )
        self.logger.info(f"Canceled payment {intent.id} ({reason})")
        return CancelResult(intent.id, PaymentStatus.CANCELED.value)

    def _finalize_cancel(self, intent: PaymentIntent, expected: List[PaymentStatus], *, reason: str) -> bool:
        for current in expected:
            ensure_transition(current, PaymentStatus.CANCELED, from_processor=True)
        now = self.clock()
        with self.transaction():
            won = self.payment_repository.transition_status(
                intent.id,
                expected,
                PaymentStatus.CANCELED,
                canceled_at=now,
                cancellation_reason=reason,
            )
            if not won:
                return False
            self.payment_repository.set_ride_payment_history_status(
                intent.id, PaymentHistoryStatus.REFUNDED.value
            )
            if intent.referral_code:
                self.referral_repository.release(
                    intent.referral_code,
                    expires_at=now + timedelta(days=self.settings.referral_release_extension_days),
                )
        prometheus_metrics.record_transition(expected[0].value, PaymentStatus.CANCELED.value)
        return True

    # ========== Refund ==========

    @BaseService.measure_operation("refund")
    def refund(self, payment_intent_id: str, reason: Optional[str] = None) -> RefundResult:
        """Refund the full captured amount and reverse the driver's earnings."""
        intent = self.get_payment(payment_intent_id)
        if intent.status != PaymentStatus.SUCCEEDED.value:
            raise InvalidStateError(
                f"Payment {intent.id} cannot be refunded from status {intent.status}",
                local_status=intent.status,
            )

        sync = self._sync(intent)
        intent = sync.payment_intent
        ensure_transition(PaymentStatus(intent.status), PaymentStatus.REFUNDED, processor_status=sync.processor_status)

        processor_reason = reason if reason in _PROCESSOR_REFUND_REASONS else DEFAULT_REFUND_REASON
        try:
            refund = self.processor.refund(
                intent.processor_intent_id,
                amount=intent.amount_total,
                idempotency_key=f"refund-{intent.id}",
                reason=processor_reason,
            )
        except (ProcessorError, ConfigurationError) as exc:
            prometheus_metrics.record_processor_error("refund", _processor_error_kind(exc))
            raise

        now = self.clock()
        with self.transaction():
            won = self.payment_repository.transition_status(
                intent.id,
                [PaymentStatus.SUCCEEDED],
                PaymentStatus.REFUNDED,
                refunded_at=now,
                refund_ref=refund.id,
            )
            if not won:
                raise StateConflictError(
                    f"Payment {intent.id} changed status during refund",
                    local_status=self.payment_repository.reload(intent.id).status,
                    processor_status=sync.processor_status,
                )
            self.payment_repository.create_history_entry(
                payment_intent_id=intent.id,
                rider_id=intent.rider_id,
                ride_id=intent.ride_id,
                amount=-intent.amount_total,
                currency=intent.currency,
                status=PaymentHistoryStatus.REFUNDED.value,
                transaction_type=TransactionType.REFUND,
                description=reason or DEFAULT_REFUND_REASON,
            )
            self.payment_repository.reverse_driver_earning(intent.id, now)
        prometheus_metrics.record_transition(PaymentStatus.SUCCEEDED.value, PaymentStatus.REFUNDED.value)
        self.logger.info(f"Refunded payment {intent.id}: {intent.amount_total} {intent.currency} ({refund.id})")
        return RefundResult(
            payment_intent_id=intent.id,
            refund_id=refund.id,
            amount_refunded=intent.amount_total,
            status=PaymentStatus.REFUNDED.value,
        )

    # ========== Booking link ==========

    def link_booking(self, payment_intent_id: str, booking_id: str) -> PaymentIntent:
        """Attach the booking created after a successful authorization."""
        if not booking_id or not booking_id.strip():
            raise PaymentValidationError("booking_id is required", details={"field": "booking_id"})
        intent = self.get_payment(payment_intent_id)
        if intent.booking_id == booking_id:
            return intent
        if intent.booking_id:
            raise StateConflictError(
                f"Payment {intent.id} is already linked to booking {intent.booking_id}",
                local_status=intent.status,
                details={"booking_id": intent.booking_id},
            )
        with self.transaction():
            self.payment_repository.update(intent.id, booking_id=booking_id)
        return self.get_payment(intent.id)

    # ========== Processor events ==========

    def handle_processor_event(self, event: Mapping[str, Any]) -> Optional[SyncResult]:
        """Sync the intent referenced by a verified payment_intent.* webhook event."""
        event_type = str(event.get("type") or "")
        if not event_type.startswith("payment_intent."):
            self.logger.debug(f"Ignoring processor event {event_type}")
            return None
        data_object = (event.get("data") or {}).get("object") or {}
        processor_intent_id = data_object.get("id")
        if not processor_intent_id:
            return None
        intent = self.payment_repository.get_by_processor_id(processor_intent_id)
        if intent is None:
            self.logger.info(f"Processor event {event_type} for unknown intent {processor_intent_id}")
            return None
        return self._sync(intent)

    # ========== Orphaned authorizations ==========

    @BaseService.measure_operation("release_orphaned_authorizations")
    def release_orphaned_authorizations(self, limit: int = 100) -> Dict[str, Any]:
        """
        Cancel authorizations that never got a booking attached.

        Anything still unlinked after ``orphan_authorization_hours`` is
        treated as an abandoned booking flow and its hold is released.
        """
        cutoff = self.clock() - timedelta(hours=self.settings.orphan_authorization_hours)
        orphans = self.payment_repository.find_orphaned_authorizations(cutoff, limit=limit)
        results: Dict[str, Any] = {"canceled": 0, "failed": 0, "failures": []}
        for orphan in orphans:
            try:
                self.cancel(orphan.id, reason="orphaned_authorization")
                results["canceled"] += 1
            except ConfigurationError:
                raise
            except Exception as exc:
                self.logger.error(f"Failed to release orphaned authorization {orphan.id}: {exc}")
                results["failed"] += 1
                results["failures"].append({"payment_intent_id": orphan.id, "error": str(exc)})
        if orphans:
            self.logger.info(
                f"Orphaned authorization sweep: {results['canceled']} canceled, {results['failed']} failed"
            )
        return results

"""
Stripe implementation of the processor boundary.

Uses one ``stripe.StripeClient`` per process with an explicit API key, a
bounded request timeout and a bounded network retry count. Nothing here
touches the SDK's global ``stripe.api_key``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

import stripe

from ridepay.core.exceptions import (
    ConfigurationError,
    PaymentValidationError,
    ProcessorError,
    ProcessorRejectedError,
    ServiceException,
    TransientProcessorError,
)

from .processor_client import ProcessorIntent, ProcessorRefund

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ALREADY_CAPTURED_MARKERS = ("already been captured", "already captured")


def _field(obj: Any, name: str) -> Any:
    value = getattr(obj, name, None)
    if value is None and isinstance(obj, Mapping):
        value = obj.get(name)
    return value


def _charge_ref(intent: Any) -> Optional[str]:
    latest = _field(intent, "latest_charge")
    if latest is None:
        return None
    if isinstance(latest, str):
        return latest
    return _field(latest, "id")


def _to_intent(intent: Any) -> ProcessorIntent:
    return ProcessorIntent(
        id=_field(intent, "id"),
        status=_field(intent, "status"),
        amount=_field(intent, "amount"),
        client_secret=_field(intent, "client_secret"),
        charge_ref=_charge_ref(intent),
    )


def translate_stripe_error(exc: stripe.StripeError, operation: str) -> ServiceException:
    """Classify a Stripe SDK error as transient, rejected or configuration."""
    message = getattr(exc, "user_message", None) or str(exc) or exc.__class__.__name__
    details = {
        "operation": operation,
        "stripe_code": getattr(exc, "code", None),
        "http_status": getattr(exc, "http_status", None),
        "request_id": getattr(exc, "request_id", None),
    }
    if isinstance(exc, (stripe.AuthenticationError, stripe.PermissionError)):
        return ConfigurationError(f"Stripe rejected credentials during {operation}: {message}", details=details)
    if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)):
        return TransientProcessorError(f"Stripe unavailable during {operation}: {message}", details=details)
    http_status = getattr(exc, "http_status", None)
    if isinstance(http_status, int) and http_status >= 500:
        return TransientProcessorError(f"Stripe server error during {operation}: {message}", details=details)
    if isinstance(exc, stripe.IdempotencyError):
        return ProcessorRejectedError(f"Idempotency conflict during {operation}: {message}", details=details)
    # InvalidRequestError, CardError and anything else the SDK reports as a 4xx
    return ProcessorRejectedError(f"Stripe rejected {operation}: {message}", details=details)


class StripeProcessorClient:
    """ProcessorClient backed by the Stripe Python SDK."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        webhook_secret: Optional[str] = None,
        timeout_seconds: int = 8,
        max_network_retries: int = 1,
        client: Optional[Any] = None,
    ) -> None:
        self._webhook_secret = webhook_secret
        self.logger = logging.getLogger(self.__class__.__name__)
        if client is not None:
            self._client = client
        elif api_key:
            self._client = stripe.StripeClient(
                api_key,
                http_client=stripe.RequestsClient(timeout=timeout_seconds),
                max_network_retries=max_network_retries,
            )
        else:
            self._client = None
            logger.warning("Stripe secret key not configured; processor calls will fail")

    @property
    def configured(self) -> bool:
        return self._client is not None

    def _require_client(self) -> Any:
        if self._client is None:
            raise ConfigurationError("Stripe secret key is not configured")
        return self._client

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except stripe.StripeError as exc:
            translated = translate_stripe_error(exc, operation)
            self.logger.warning(f"Stripe {operation} failed ({type(translated).__name__}): {exc}")
            raise translated from exc

    def authorize(
        self,
        amount: int,
        currency: str,
        metadata: Mapping[str, str],
        *,
        idempotency_key: str,
        payment_method_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ProcessorIntent:
        client = self._require_client()
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "capture_method": "manual",
            "metadata": dict(metadata),
        }
        if description:
            params["description"] = description
        if payment_method_id:
            params.update(
                {
                    "payment_method": payment_method_id,
                    "confirm": True,
                    "off_session": True,
                }
            )
        else:
            params["automatic_payment_methods"] = {"enabled": True}

        intent = self._call(
            "authorize",
            lambda: client.payment_intents.create(
                params=params, options={"idempotency_key": idempotency_key}
            ),
        )
        return _to_intent(intent)

    def capture(self, processor_intent_id: str, *, idempotency_key: str) -> ProcessorIntent:
        client = self._require_client()
        try:
            intent = client.payment_intents.capture(
                processor_intent_id, options={"idempotency_key": idempotency_key}
            )
        except stripe.InvalidRequestError as exc:
            if any(marker in str(exc).lower() for marker in _ALREADY_CAPTURED_MARKERS):
                self.logger.info(f"PaymentIntent {processor_intent_id} already captured")
                return self.fetch_status(processor_intent_id)
            current = self._safe_fetch(processor_intent_id)
            if current is not None and current.status == "succeeded":
                self.logger.info(f"PaymentIntent {processor_intent_id} already succeeded at Stripe")
                return current
            raise translate_stripe_error(exc, "capture") from exc
        except stripe.StripeError as exc:
            raise translate_stripe_error(exc, "capture") from exc
        return _to_intent(intent)

    def cancel(
        self,
        processor_intent_id: str,
        *,
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> ProcessorIntent:
        client = self._require_client()
        params: Dict[str, Any] = {"cancellation_reason": reason or "requested_by_customer"}
        try:
            intent = client.payment_intents.cancel(
                processor_intent_id,
                params=params,
                options={"idempotency_key": idempotency_key},
            )
        except stripe.InvalidRequestError as exc:
            current = self._safe_fetch(processor_intent_id)
            if current is not None and current.status == "canceled":
                return current
            raise translate_stripe_error(exc, "cancel") from exc
        except stripe.StripeError as exc:
            raise translate_stripe_error(exc, "cancel") from exc
        return _to_intent(intent)

    def refund(
        self,
        processor_intent_id: str,
        *,
        amount: int,
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> ProcessorRefund:
        client = self._require_client()
        params: Dict[str, Any] = {"payment_intent": processor_intent_id, "amount": amount}
        if reason:
            params["reason"] = reason
        refund = self._call(
            "refund",
            lambda: client.refunds.create(params=params, options={"idempotency_key": idempotency_key}),
        )
        return ProcessorRefund(
            id=_field(refund, "id"),
            status=_field(refund, "status"),
            amount=int(_field(refund, "amount") or amount),
        )

    def fetch_status(self, processor_intent_id: str) -> ProcessorIntent:
        client = self._require_client()
        intent = self._call("fetch_status", lambda: client.payment_intents.retrieve(processor_intent_id))
        return _to_intent(intent)

    def find_by_reference(self, reference: str) -> Optional[ProcessorIntent]:
        client = self._require_client()
        query = f"metadata['payment_intent_id']:'{reference}'"
        result = self._call(
            "find_by_reference",
            lambda: client.payment_intents.search(params={"query": query, "limit": 1}),
        )
        data = _field(result, "data") or []
        if not data:
            return None
        return _to_intent(data[0])

    def _safe_fetch(self, processor_intent_id: str) -> Optional[ProcessorIntent]:
        try:
            return self.fetch_status(processor_intent_id)
        except ProcessorError as exc:
            self.logger.warning(f"Could not re-read PaymentIntent {processor_intent_id}: {exc}")
            return None

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify a webhook signature and return the event payload."""
        if not self._webhook_secret:
            raise ConfigurationError("Stripe webhook secret is not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise PaymentValidationError("Invalid webhook signature") from exc
        except ValueError as exc:
            raise PaymentValidationError("Invalid webhook payload") from exc
        return event

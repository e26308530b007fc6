# backend/tests/unit/integrations/test_stripe_processor.py
"""Tests for StripeProcessorClient with a mocked StripeClient."""

from unittest.mock import MagicMock, patch

import pytest
import stripe

from ridepay.core.exceptions import (
    ConfigurationError,
    PaymentValidationError,
    ProcessorRejectedError,
    TransientProcessorError,
)
from ridepay.integrations.stripe_processor import StripeProcessorClient, translate_stripe_error


def _intent(status="requires_capture", **extra):
    data = {
        "id": "pi_123",
        "status": status,
        "amount": 1000,
        "client_secret": "pi_123_secret",
        "latest_charge": None,
    }
    data.update(extra)
    return data


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def processor(client):
    return StripeProcessorClient("sk_test_123", webhook_secret="whsec_123", client=client)


class TestAuthorize:
    def test_creates_manual_capture_intent(self, processor, client):
        client.payment_intents.create.return_value = _intent()

        result = processor.authorize(
            1800, "cad", {"ride_id": "ride-1"}, idempotency_key="authorize-abc", description="Ride ride-1"
        )

        assert result.id == "pi_123"
        assert result.status == "requires_capture"
        assert result.client_secret == "pi_123_secret"
        kwargs = client.payment_intents.create.call_args.kwargs
        assert kwargs["params"]["capture_method"] == "manual"
        assert kwargs["params"]["amount"] == 1800
        assert kwargs["params"]["currency"] == "cad"
        assert kwargs["params"]["metadata"] == {"ride_id": "ride-1"}
        assert kwargs["params"]["automatic_payment_methods"] == {"enabled": True}
        assert kwargs["options"] == {"idempotency_key": "authorize-abc"}

    def test_saved_payment_method_is_confirmed_off_session(self, processor, client):
        client.payment_intents.create.return_value = _intent()

        processor.authorize(1000, "cad", {}, idempotency_key="k", payment_method_id="pm_1")

        params = client.payment_intents.create.call_args.kwargs["params"]
        assert params["payment_method"] == "pm_1"
        assert params["confirm"] is True
        assert params["off_session"] is True
        assert "automatic_payment_methods" not in params

    def test_card_error_is_rejection(self, processor, client):
        client.payment_intents.create.side_effect = stripe.CardError("Your card was declined", None, "card_declined")

        with pytest.raises(ProcessorRejectedError):
            processor.authorize(1000, "cad", {}, idempotency_key="k")

    def test_connection_error_is_transient(self, processor, client):
        client.payment_intents.create.side_effect = stripe.APIConnectionError("timed out")

        with pytest.raises(TransientProcessorError):
            processor.authorize(1000, "cad", {}, idempotency_key="k")


class TestCapture:
    def test_returns_charge_reference(self, processor, client):
        client.payment_intents.capture.return_value = _intent("succeeded", latest_charge="ch_1")

        result = processor.capture("pi_123", idempotency_key="capture-abc")

        assert result.status == "succeeded"
        assert result.charge_ref == "ch_1"
        client.payment_intents.capture.assert_called_once_with(
            "pi_123", options={"idempotency_key": "capture-abc"}
        )

    def test_expanded_charge_object(self, processor, client):
        client.payment_intents.capture.return_value = _intent("succeeded", latest_charge={"id": "ch_2"})

        assert processor.capture("pi_123", idempotency_key="k").charge_ref == "ch_2"

    def test_already_captured_is_success(self, processor, client):
        client.payment_intents.capture.side_effect = stripe.InvalidRequestError(
            "This PaymentIntent has already been captured.", None
        )
        client.payment_intents.retrieve.return_value = _intent("succeeded", latest_charge="ch_1")

        result = processor.capture("pi_123", idempotency_key="k")

        assert result.status == "succeeded"
        assert result.charge_ref == "ch_1"

    def test_invalid_request_on_succeeded_intent_is_success(self, processor, client):
        client.payment_intents.capture.side_effect = stripe.InvalidRequestError(
            "This PaymentIntent could not be captured because it has a status of succeeded.", None
        )
        client.payment_intents.retrieve.return_value = _intent("succeeded")

        assert processor.capture("pi_123", idempotency_key="k").status == "succeeded"

    def test_invalid_request_on_uncaptured_intent_is_rejection(self, processor, client):
        client.payment_intents.capture.side_effect = stripe.InvalidRequestError(
            "This PaymentIntent's authorization has expired.", None
        )
        client.payment_intents.retrieve.return_value = _intent("canceled")

        with pytest.raises(ProcessorRejectedError):
            processor.capture("pi_123", idempotency_key="k")

    def test_rate_limit_is_transient(self, processor, client):
        client.payment_intents.capture.side_effect = stripe.RateLimitError("Too many requests")

        with pytest.raises(TransientProcessorError):
            processor.capture("pi_123", idempotency_key="k")


class TestCancelRefundFetch:
    def test_cancel_sends_reason(self, processor, client):
        client.payment_intents.cancel.return_value = _intent("canceled")

        result = processor.cancel("pi_123", idempotency_key="cancel-abc", reason="abandoned")

        assert result.status == "canceled"
        kwargs = client.payment_intents.cancel.call_args.kwargs
        assert kwargs["params"] == {"cancellation_reason": "abandoned"}
        assert kwargs["options"] == {"idempotency_key": "cancel-abc"}

    def test_cancel_of_canceled_intent_is_success(self, processor, client):
        client.payment_intents.cancel.side_effect = stripe.InvalidRequestError(
            "You cannot cancel this PaymentIntent because it has a status of canceled.", None
        )
        client.payment_intents.retrieve.return_value = _intent("canceled")

        assert processor.cancel("pi_123", idempotency_key="k").status == "canceled"

    def test_refund(self, processor, client):
        client.refunds.create.return_value = {"id": "re_1", "status": "succeeded", "amount": 1800}

        refund = processor.refund("pi_123", amount=1800, idempotency_key="refund-abc", reason="duplicate")

        assert (refund.id, refund.status, refund.amount) == ("re_1", "succeeded", 1800)
        kwargs = client.refunds.create.call_args.kwargs
        assert kwargs["params"] == {"payment_intent": "pi_123", "amount": 1800, "reason": "duplicate"}
        assert kwargs["options"] == {"idempotency_key": "refund-abc"}

    def test_fetch_status(self, processor, client):
        client.payment_intents.retrieve.return_value = _intent("processing")

        assert processor.fetch_status("pi_123").status == "processing"

    def test_find_by_reference_searches_metadata(self, processor, client):
        client.payment_intents.search.return_value = {"data": [_intent("requires_capture")]}

        found = processor.find_by_reference("01HLOCAL")

        assert found.id == "pi_123"
        assert found.status == "requires_capture"
        params = client.payment_intents.search.call_args.kwargs["params"]
        assert params == {"query": "metadata['payment_intent_id']:'01HLOCAL'", "limit": 1}

    def test_find_by_reference_without_match(self, processor, client):
        client.payment_intents.search.return_value = {"data": []}

        assert processor.find_by_reference("01HLOCAL") is None

    def test_find_by_reference_connection_error_is_transient(self, processor, client):
        client.payment_intents.search.side_effect = stripe.APIConnectionError("Network down")

        with pytest.raises(TransientProcessorError):
            processor.find_by_reference("01HLOCAL")

    def test_bad_credentials_are_configuration_errors(self, processor, client):
        client.payment_intents.retrieve.side_effect = stripe.AuthenticationError("Invalid API Key provided")

        with pytest.raises(ConfigurationError):
            processor.fetch_status("pi_123")


class TestUnconfigured:
    def test_missing_key_fails_every_call(self):
        processor = StripeProcessorClient(None)

        assert processor.configured is False
        with pytest.raises(ConfigurationError):
            processor.fetch_status("pi_123")
        with pytest.raises(ConfigurationError):
            processor.capture("pi_123", idempotency_key="k")


class TestWebhookVerification:
    def test_valid_event(self, processor):
        event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_123"}}}
        with patch("stripe.Webhook.construct_event", return_value=event) as construct:
            assert processor.construct_event(b"{}", "sig") == event
        construct.assert_called_once_with(b"{}", "sig", "whsec_123")

    def test_bad_signature(self, processor):
        error = stripe.SignatureVerificationError("No signatures found", "sig")
        with patch("stripe.Webhook.construct_event", side_effect=error):
            with pytest.raises(PaymentValidationError):
                processor.construct_event(b"{}", "sig")

    def test_missing_secret(self, client):
        processor = StripeProcessorClient("sk_test_123", client=client)

        with pytest.raises(ConfigurationError):
            processor.construct_event(b"{}", "sig")


class TestTranslateStripeError:
    def test_server_error_status_is_transient(self):
        exc = stripe.InvalidRequestError("upstream failure", None, http_status=502)
        assert isinstance(translate_stripe_error(exc, "capture"), TransientProcessorError)

    def test_details_carry_operation(self):
        translated = translate_stripe_error(stripe.APIError("boom"), "refund")
        assert translated.details["operation"] == "refund"

# backend/tests/routes/test_payment_routes.py
"""HTTP-level tests for the payment, ride, driver, worker and webhook routes."""

from datetime import timedelta
import json

from fastapi.testclient import TestClient
import pytest

from ridepay.core.exceptions import TransientProcessorError
from ridepay.main import create_app
from ridepay.models.payment import PaymentIntent
from tests.helpers.fake_processor import VALID_SIGNATURE

# Matches worker_api_token in the shared test settings
AUTH = {"Authorization": "Bearer test-service-token"}


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime))


@pytest.fixture
def authorized(client):
    """Authorize a 10.00 ride and return the response body."""

    def _authorize(ride_id: str = "ride-1", **overrides):
        payload = {
            "rider_id": "rider-1",
            "driver_id": "driver-1",
            "ride_id": ride_id,
            "amount_subtotal": 1000,
            "booking_id": f"booking-{ride_id}",
        }
        payload.update(overrides)
        response = client.post("/api/v1/payments/authorize", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _authorize


class TestAuthorizeRoute:
    def test_authorize_creates_hold(self, authorized, processor):
        body = authorized()

        intent = body["payment_intent"]
        assert intent["status"] == "authorized"
        assert intent["amount_total"] == 1000
        assert intent["processor_intent_id"] == "pi_test_1"
        assert body["client_secret"] == "pi_test_1_secret"
        assert body["discount_applied"] is False
        assert processor.count("authorize") == 1

    def test_referral_discount(self, client, make_referral):
        make_referral("FRIEND10")

        response = client.post(
            "/api/v1/payments/authorize",
            json={
                "rider_id": "rider-1",
                "driver_id": "driver-1",
                "ride_id": "ride-1",
                "amount_subtotal": 2000,
                "referral_code": "FRIEND10",
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["discount_applied"] is True
        assert body["payment_intent"]["amount_total"] == 1800

    def test_referral_expiry_follows_runtime_clock(self, client, make_referral, clock):
        make_referral("SOON", expires_at=clock() + timedelta(minutes=5))
        make_referral("GONE", expires_at=clock() - timedelta(minutes=5))
        payload = {"rider_id": "rider-1", "driver_id": "driver-1", "amount_subtotal": 2000}

        live = client.post(
            "/api/v1/payments/authorize", json={**payload, "ride_id": "ride-1", "referral_code": "SOON"}
        )
        expired = client.post(
            "/api/v1/payments/authorize", json={**payload, "ride_id": "ride-2", "referral_code": "GONE"}
        )

        assert live.json()["discount_applied"] is True
        assert expired.json()["discount_applied"] is False
        assert expired.json()["payment_intent"]["amount_total"] == 2000

    def test_rejects_non_positive_amount(self, client):
        response = client.post(
            "/api/v1/payments/authorize",
            json={"rider_id": "r", "driver_id": "d", "ride_id": "x", "amount_subtotal": 0},
        )
        assert response.status_code == 422

    def test_rejects_unknown_fields(self, client):
        response = client.post(
            "/api/v1/payments/authorize",
            json={"rider_id": "r", "driver_id": "d", "ride_id": "x", "amount_subtotal": 100, "tip": 5},
        )
        assert response.status_code == 422

    def test_processor_outage_is_503(self, client, processor):
        processor.fail_next("authorize", TransientProcessorError("Stripe unavailable"))

        response = client.post(
            "/api/v1/payments/authorize",
            json={"rider_id": "r", "driver_id": "d", "ride_id": "x", "amount_subtotal": 100},
        )

        assert response.status_code == 503


class TestReadAndLinkRoutes:
    def test_get_payment(self, client, authorized):
        payment_id = authorized()["payment_intent"]["id"]

        response = client.get(f"/api/v1/payments/{payment_id}")

        assert response.status_code == 200
        assert response.json()["id"] == payment_id

    def test_get_unknown_payment_is_404(self, client):
        assert client.get("/api/v1/payments/missing").status_code == 404

    def test_link_booking(self, client, authorized):
        payment_id = authorized(booking_id=None)["payment_intent"]["id"]

        response = client.post(f"/api/v1/payments/{payment_id}/booking", json={"booking_id": "booking-9"})

        assert response.status_code == 200
        assert response.json()["booking_id"] == "booking-9"


class TestCaptureRoute:
    def test_requires_bearer_token(self, client, authorized):
        payment_id = authorized()["payment_intent"]["id"]

        assert client.post(f"/api/v1/payments/{payment_id}/capture").status_code == 401
        response = client.post(
            f"/api/v1/payments/{payment_id}/capture", headers={"Authorization": "Bearer wrong"}
        )
        assert response.status_code == 403

    def test_manual_capture(self, client, authorized, processor):
        payment_id = authorized()["payment_intent"]["id"]

        response = client.post(f"/api/v1/payments/{payment_id}/capture", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "succeeded"
        assert body["captured_amount"] == 1000
        assert body["platform_fee"] == 150
        assert body["driver_earnings"] == 850
        assert body["already_captured"] is False

        again = client.post(f"/api/v1/payments/{payment_id}/capture", headers=AUTH)
        assert again.status_code == 200
        assert again.json()["already_captured"] is True
        assert processor.count("capture") == 1

    def test_capture_of_canceled_payment_is_conflict(self, client, authorized):
        payment_id = authorized()["payment_intent"]["id"]
        assert client.post(f"/api/v1/payments/{payment_id}/cancel").status_code == 200

        response = client.post(f"/api/v1/payments/{payment_id}/capture", headers=AUTH)

        assert response.status_code == 409


class TestCancelAndRefundRoutes:
    def test_cancel_is_idempotent(self, client, authorized):
        payment_id = authorized()["payment_intent"]["id"]

        first = client.post(f"/api/v1/payments/{payment_id}/cancel", json={"reason": "rider_canceled"})
        second = client.post(f"/api/v1/payments/{payment_id}/cancel")

        assert first.status_code == 200
        assert first.json() == {"payment_intent_id": payment_id, "status": "canceled", "already_canceled": False}
        assert second.json()["already_canceled"] is True

    def test_refund_after_capture(self, client, authorized):
        payment_id = authorized()["payment_intent"]["id"]
        client.post(f"/api/v1/payments/{payment_id}/capture", headers=AUTH)

        response = client.post(
            f"/api/v1/payments/{payment_id}/refund", json={"reason": "duplicate"}, headers=AUTH
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "refunded"
        assert body["amount_refunded"] == 1000

    def test_refund_requires_token(self, client, authorized):
        payment_id = authorized()["payment_intent"]["id"]
        assert client.post(f"/api/v1/payments/{payment_id}/refund").status_code == 401


class TestRideCompletedAndWorkerRoutes:
    def test_ride_completed_enqueues_once(self, client, authorized):
        payment_id = authorized()["payment_intent"]["id"]

        first = client.post("/api/v1/rides/ride-1/completed", headers=AUTH)
        second = client.post("/api/v1/rides/ride-1/completed", headers=AUTH)

        assert first.status_code == 200
        queued = first.json()["queued"]
        assert [entry["payment_intent_id"] for entry in queued] == [payment_id]
        assert queued[0]["status"] == "pending"
        assert second.json()["queued"] == []

    def test_worker_batch_captures_queued_payments(self, client, authorized, processor):
        authorized("ride-1")
        authorized("ride-2")
        client.post("/api/v1/rides/ride-1/completed", headers=AUTH)
        client.post("/api/v1/rides/ride-2/completed", headers=AUTH)

        response = client.post("/api/v1/worker/payment-capture", headers=AUTH, json={"batch_size": 10})

        assert response.status_code == 200
        body = response.json()
        assert body["processed"] == 2
        assert body["succeeded"] == 2
        assert body["halted"] is False
        assert {result["outcome"] for result in body["results"]} == {"succeeded"}
        assert processor.count("capture") == 2

    def test_worker_requires_token(self, client):
        assert client.post("/api/v1/worker/payment-capture").status_code == 401

    def test_unconfigured_token_is_503(self, runtime):
        runtime.settings = runtime.settings.model_copy(update={"worker_api_token": None})
        client = TestClient(create_app(runtime))

        response = client.post("/api/v1/worker/payment-capture", headers=AUTH)

        assert response.status_code == 503


class TestDriverEarningsRoute:
    def test_earnings_by_status(self, client, authorized):
        payment_id = authorized()["payment_intent"]["id"]
        client.post(f"/api/v1/payments/{payment_id}/capture", headers=AUTH)

        response = client.get("/api/v1/drivers/driver-1/earnings")

        assert response.status_code == 200
        assert response.json() == {
            "driver_id": "driver-1",
            "by_status": {"pending": {"rides": 1, "gross": 1000, "platform_fee": 150, "net": 850}},
        }

    def test_driver_without_rides(self, client):
        assert client.get("/api/v1/drivers/nobody/earnings").json()["by_status"] == {}


class TestHealthAndMetrics:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["environment"] == "testing"
        assert body["timestamp"].endswith("Z")

    def test_health_lite(self, client):
        assert client.get("/health/lite").json() == {"status": "ok"}

    def test_metrics_exposition(self, client, authorized):
        authorized()

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "ridepay_service_operations_total" in response.text


class TestStripeWebhook:
    def _event(self, processor_intent_id: str, event_type: str = "payment_intent.succeeded") -> bytes:
        return json.dumps({"type": event_type, "data": {"object": {"id": processor_intent_id}}}).encode()

    def test_missing_signature(self, client):
        assert client.post("/webhooks/stripe", content=b"{}").status_code == 400

    def test_bad_signature(self, client):
        response = client.post(
            "/webhooks/stripe", content=self._event("pi_test_1"), headers={"stripe-signature": "t=1,v1=bad"}
        )
        assert response.status_code == 400

    def test_event_resyncs_payment(self, client, authorized, processor, session_factory):
        body = authorized()
        processor_intent_id = body["payment_intent"]["processor_intent_id"]
        processor.set_status(processor_intent_id, "canceled")

        response = client.post(
            "/webhooks/stripe",
            content=self._event(processor_intent_id, "payment_intent.canceled"),
            headers={"stripe-signature": VALID_SIGNATURE},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "success"
        with session_factory() as db:
            assert db.get(PaymentIntent, body["payment_intent"]["id"]).status == "canceled"

    def test_unrelated_event_is_ignored(self, client):
        response = client.post(
            "/webhooks/stripe",
            content=json.dumps({"type": "customer.created", "data": {"object": {"id": "cus_1"}}}),
            headers={"stripe-signature": VALID_SIGNATURE},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

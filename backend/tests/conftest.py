# backend/tests/conftest.py
"""
Pytest configuration for the RidePay test suite.

Every test gets its own in-memory SQLite ledger, a FakeProcessor and a
controllable clock. Nothing here talks to Stripe, Redis or Postgres.
"""

import os

# Set before any ridepay import so settings never pick up a developer .env database
os.environ.setdefault("CI", "true")
os.environ.setdefault("ENVIRONMENT", "testing")

from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ridepay.core.config import Settings
from ridepay.database import create_all_tables, create_db_engine, create_session_factory
from ridepay.models.referral import ReferralCode
from ridepay.runtime import PaymentRuntime
from ridepay.services.capture_queue_service import CaptureQueueService
from ridepay.services.capture_worker import ReconciliationWorker
from ridepay.services.payment_lifecycle_service import PaymentLifecycleService
from tests.helpers.fake_processor import FakeProcessor

SERVICE_TOKEN = "test-service-token"


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "testing",
        "database_url": "sqlite://",
        "stripe_currency": "cad",
        "platform_fee_percent": 15,
        "capture_delay_ms": 0,
        "capture_batch_size": 10,
        "capture_max_attempts": 5,
        "worker_api_token": SERVICE_TOKEN,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def engine() -> Iterator[Engine]:
    engine = create_db_engine("sqlite://")
    create_all_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def lifecycle(db, processor, settings, clock) -> PaymentLifecycleService:
    return PaymentLifecycleService(db, processor, settings, clock=clock)


@pytest.fixture
def queue(db, clock) -> CaptureQueueService:
    return CaptureQueueService(db, clock=clock)


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def worker(queue, lifecycle, settings, sleeps) -> ReconciliationWorker:
    return ReconciliationWorker(queue, lifecycle, settings, sleep=sleeps.append)


@pytest.fixture
def runtime(engine, session_factory, processor, settings, clock) -> PaymentRuntime:
    return PaymentRuntime(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        processor=processor,
        sleep=lambda _seconds: None,
        clock=clock,
    )


@pytest.fixture
def make_referral(db, clock):
    """Insert a referral code; expires a week after the test clock by default."""

    def _make(
        code: str = "FRIEND10",
        *,
        discount_percent: int = 10,
        rider_id: Optional[str] = "rider-1",
        used: bool = False,
        expires_at: Optional[datetime] = None,
    ) -> ReferralCode:
        referral = ReferralCode(
            code=code,
            rider_id=rider_id,
            discount_percent=discount_percent,
            used=used,
            expires_at=expires_at or clock() + timedelta(days=7),
        )
        db.add(referral)
        db.commit()
        return referral

    return _make


@pytest.fixture
def authorize(lifecycle):
    """Authorize a ride payment with sensible defaults."""

    def _authorize(amount_subtotal: int = 1000, **kwargs):
        params = {
            "rider_id": "rider-1",
            "driver_id": "driver-1",
            "ride_id": "ride-1",
            "amount_subtotal": amount_subtotal,
        }
        params.update(kwargs)
        return lifecycle.authorize(**params)

    return _authorize

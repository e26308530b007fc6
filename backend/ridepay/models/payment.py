"""
Payment ledger models.

The local record of every ride payment authorization, plus the rows that
hang off a successful capture (capture log, driver earnings) and the
rider-facing payment history.
"""

from datetime import datetime
from typing import Optional

import ulid
from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ridepay.core.enums import EarningsStatus, PaymentStatus
from ridepay.core.time_utils import utcnow
from ridepay.database import Base


class PaymentIntent(Base):
    """A rider's payment for one ride, mirrored from the processor."""

    __tablename__ = "ride_payment_intents"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    processor_intent_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    rider_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    driver_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    ride_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    booking_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    amount_subtotal: Mapped[int] = mapped_column(Integer, nullable=False, comment="Amount in cents")
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_total: Mapped[int] = mapped_column(Integer, nullable=False, comment="Amount in cents")
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    referral_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=PaymentStatus.REQUIRES_PAYMENT_METHOD.value
    )
    client_secret: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    charge_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    refund_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Timestamps
    capture_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    captured_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    canceled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount_total >= 0", name="ck_ride_payment_amount_total_nonnegative"),
        CheckConstraint("discount_amount >= 0", name="ck_ride_payment_discount_nonnegative"),
        CheckConstraint(
            "amount_total = amount_subtotal - discount_amount",
            name="ck_ride_payment_total_matches_discount",
        ),
        Index("ix_ride_payment_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<PaymentIntent(id={self.id}, ride_id={self.ride_id}, amount={self.amount_total}, status={self.status})>"


class CaptureLogEntry(Base):
    """Append-only record of a successful capture. One per payment intent."""

    __tablename__ = "payment_capture_log"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payment_intent_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("ride_payment_intents.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    amount_captured: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    charge_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<CaptureLogEntry(payment_intent_id={self.payment_intent_id}, amount={self.amount_captured})>"


class DriverEarning(Base):
    """Driver's share of a captured ride payment."""

    __tablename__ = "driver_earnings"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payment_intent_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("ride_payment_intents.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    driver_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    ride_id: Mapped[str] = mapped_column(String(64), nullable=False)
    gross_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    net_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    fee_percent: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=EarningsStatus.PENDING.value)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("platform_fee + net_amount = gross_amount", name="ck_driver_earnings_split"),
    )

    def __repr__(self) -> str:
        return f"<DriverEarning(driver_id={self.driver_id}, net={self.net_amount}, status={self.status})>"


class PaymentHistoryEntry(Base):
    """Rider-visible payment history. Refunds appear as negative amounts."""

    __tablename__ = "payment_history"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payment_intent_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("ride_payment_intents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    rider_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    ride_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<PaymentHistoryEntry(rider_id={self.rider_id}, amount={self.amount}, status={self.status})>"

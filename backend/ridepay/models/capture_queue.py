"""Deferred capture job queue."""

from datetime import datetime
from typing import Optional

import ulid
from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ridepay.core.enums import CaptureQueueStatus
from ridepay.core.time_utils import utcnow
from ridepay.database import Base


class CaptureQueueEntry(Base):
    """A pending capture for an authorized ride payment. At most one per payment intent."""

    __tablename__ = "payment_capture_queue"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payment_intent_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("ride_payment_intents.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    ride_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CaptureQueueStatus.PENDING.value
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (Index("ix_capture_queue_status_created", "status", "created_at"),)

    def __repr__(self) -> str:
        return f"<CaptureQueueEntry(payment_intent_id={self.payment_intent_id}, status={self.status}, attempts={self.attempts})>"

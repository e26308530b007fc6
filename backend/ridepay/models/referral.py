"""Referral discount codes."""

from datetime import datetime
from typing import Optional

import ulid
from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ridepay.core.time_utils import utcnow
from ridepay.database import Base


class ReferralCode(Base):
    """Single-use percentage discount owned by one rider."""

    __tablename__ = "referral_codes"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    rider_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    discount_percent: Mapped[int] = mapped_column(Integer, nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "discount_percent >= 0 AND discount_percent <= 100",
            name="ck_referral_discount_percent_range",
        ),
    )

    def __repr__(self) -> str:
        return f"<ReferralCode(code={self.code}, used={self.used})>"

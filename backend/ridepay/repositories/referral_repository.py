"""Referral code data access."""

from datetime import datetime
import logging
from typing import Any, Dict, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.referral import ReferralCode
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ReferralRepository(BaseRepository[ReferralCode]):
    def __init__(self, db: Session):
        super().__init__(db, ReferralCode)
        self.logger = logging.getLogger(__name__)

    def get_by_code(self, code: str) -> Optional[ReferralCode]:
        try:
            return (
                self.db.query(ReferralCode)
                .populate_existing()
                .filter(ReferralCode.code == code)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get referral code {code}: {str(e)}")
            raise RepositoryException(f"Failed to get referral code: {str(e)}")

    def claim(self, code: str, rider_id: str, now: datetime) -> bool:
        """
        Mark a referral code used, only if it is still unused, unexpired and
        owned by ``rider_id`` (or unowned).

        Of any number of concurrent callers, exactly one gets True.
        """
        try:
            result = self.db.execute(
                update(ReferralCode)
                .where(
                    ReferralCode.code == code,
                    ReferralCode.used.is_(False),
                    ReferralCode.expires_at > now,
                    or_(ReferralCode.rider_id.is_(None), ReferralCode.rider_id == rider_id),
                )
                .values(used=True, used_at=now)
                .execution_options(synchronize_session=False)
            )
            self.db.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to claim referral code {code}: {str(e)}")
            raise RepositoryException(f"Failed to claim referral code: {str(e)}")

    def release(self, code: str, expires_at: Optional[datetime] = None) -> bool:
        """Give a used code back to its owner, optionally with a fresh expiry."""
        values: Dict[str, Any] = {"used": False, "used_at": None}
        if expires_at is not None:
            values["expires_at"] = expires_at
        try:
            result = self.db.execute(
                update(ReferralCode)
                .where(ReferralCode.code == code, ReferralCode.used.is_(True))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.db.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to release referral code {code}: {str(e)}")
            raise RepositoryException(f"Failed to release referral code: {str(e)}")

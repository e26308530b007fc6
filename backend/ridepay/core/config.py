# backend/ridepay/core/config.py
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    BRAND_NAME,
    DEFAULT_CAPTURE_BATCH_SIZE,
    DEFAULT_CAPTURE_DELAY_MS,
    DEFAULT_CAPTURE_MAX_ATTEMPTS,
    DEFAULT_CAPTURE_STALE_AFTER_SECONDS,
    DEFAULT_CURRENCY,
    DEFAULT_PLATFORM_FEE_PERCENT,
    ORPHAN_AUTHORIZATION_HOURS,
    REFERRAL_RELEASE_EXTENSION_DAYS,
)

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = f"{BRAND_NAME.lower()}-payments"
    environment: str = Field(default="development", alias="ENVIRONMENT")

    database_url: str = Field(
        default="sqlite:///./ridepay.db",
        validation_alias=AliasChoices("DATABASE_URL", "database_url"),
        description="SQLAlchemy URL for the ledger store",
    )
    redis_url: str = "redis://localhost:6379"

    # Stripe
    stripe_secret_key: Optional[SecretStr] = Field(
        default=None, description="Stripe secret API key (sk_...)"
    )
    stripe_webhook_secret: Optional[SecretStr] = Field(
        default=None, description="Signing secret for the Stripe webhook endpoint"
    )
    stripe_currency: str = Field(default=DEFAULT_CURRENCY, description="Currency for all payments")
    stripe_timeout_seconds: int = Field(default=8, ge=1, le=60)
    stripe_max_network_retries: int = Field(default=1, ge=0, le=5)

    # Lifecycle
    platform_fee_percent: int = Field(default=DEFAULT_PLATFORM_FEE_PERCENT, ge=0, le=100)
    capture_stale_after_seconds: int = Field(default=DEFAULT_CAPTURE_STALE_AFTER_SECONDS, ge=1)
    referral_release_extension_days: int = Field(default=REFERRAL_RELEASE_EXTENSION_DAYS, ge=1)
    orphan_authorization_hours: int = Field(default=ORPHAN_AUTHORIZATION_HOURS, ge=1)

    # Capture queue / reconciliation worker
    capture_batch_size: int = Field(default=DEFAULT_CAPTURE_BATCH_SIZE, ge=1, le=500)
    capture_max_attempts: int = Field(default=DEFAULT_CAPTURE_MAX_ATTEMPTS, ge=1)
    capture_delay_ms: int = Field(default=DEFAULT_CAPTURE_DELAY_MS, ge=0)

    # Bearer token shared with the scheduler and the admin tooling
    worker_api_token: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("WORKER_API_TOKEN", "worker_api_token"),
    )

    @field_validator("stripe_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        value = value.strip().lower()
        if len(value) != 3 or not value.isalpha():
            raise ValueError("stripe_currency must be a 3-letter ISO currency code")
        return value

    def stripe_key_value(self) -> Optional[str]:
        if self.stripe_secret_key is None:
            return None
        value = self.stripe_secret_key.get_secret_value().strip()
        return value or None


def get_settings() -> Settings:
    """Build settings from the environment. Called once per process by the runtime."""
    return Settings()

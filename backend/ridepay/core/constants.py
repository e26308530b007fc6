"""Application-wide constants for the RidePay payments service."""

from __future__ import annotations

BRAND_NAME = "RidePay"

API_TITLE = f"{BRAND_NAME} Payments API"
API_VERSION = "1.0.0"
API_DESCRIPTION = "Deferred-capture payment lifecycle for ride bookings."

# Money is always stored in integer minor units (cents)
DEFAULT_CURRENCY = "cad"
DEFAULT_PLATFORM_FEE_PERCENT = 15

# Capture queue defaults
DEFAULT_CAPTURE_BATCH_SIZE = 10
DEFAULT_CAPTURE_MAX_ATTEMPTS = 5
DEFAULT_CAPTURE_DELAY_MS = 500

# A row stuck in "processing" longer than this is treated as an abandoned capture
DEFAULT_CAPTURE_STALE_AFTER_SECONDS = 300

REFERRAL_RELEASE_EXTENSION_DAYS = 30
ORPHAN_AUTHORIZATION_HOURS = 24

DEFAULT_CANCELLATION_REASON = "booking_canceled"
DEFAULT_REFUND_REASON = "requested_by_customer"

# Metadata placeholder written before the booking row exists
PENDING_BOOKING_PLACEHOLDER = "pending"

MAX_REASON_LENGTH = 255
MAX_ERROR_MESSAGE_LENGTH = 1000

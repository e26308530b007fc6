"""
Payment lifecycle state machine.

One transition table drives every lifecycle operation, plus the mapping
from Stripe's PaymentIntent vocabulary onto local statuses.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional

from ridepay.core.enums import PaymentStatus
from ridepay.core.exceptions import InvalidStateError
from ridepay.core.time_utils import ensure_utc

S = PaymentStatus

ALLOWED_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    S.REQUIRES_PAYMENT_METHOD: frozenset({S.AUTHORIZED, S.FAILED}),
    S.AUTHORIZED: frozenset({S.PROCESSING, S.CANCELED, S.FAILED}),
    S.PROCESSING: frozenset({S.SUCCEEDED, S.AUTHORIZED, S.FAILED}),
    S.SUCCEEDED: frozenset({S.REFUNDED}),
    S.CANCELED: frozenset(),
    S.REFUNDED: frozenset(),
    S.FAILED: frozenset(),
}

# Extra moves allowed only when applying a status the processor already reports,
# e.g. a capture that completed remotely before the local write happened.
SYNC_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    S.REQUIRES_PAYMENT_METHOD: frozenset({S.SUCCEEDED, S.CANCELED}),
    S.AUTHORIZED: frozenset({S.SUCCEEDED}),
    S.PROCESSING: frozenset({S.CANCELED}),
}

TERMINAL_STATUSES: FrozenSet[PaymentStatus] = frozenset({S.CANCELED, S.REFUNDED, S.FAILED})

# Statuses derived from local bookkeeping that a processor read must never undo
LOCALLY_OWNED_STATUSES: FrozenSet[PaymentStatus] = frozenset({S.REFUNDED, S.FAILED})

_PROCESSOR_STATUS_MAP: Dict[str, PaymentStatus] = {
    "requires_capture": S.AUTHORIZED,
    "requires_payment_method": S.REQUIRES_PAYMENT_METHOD,
    "requires_confirmation": S.REQUIRES_PAYMENT_METHOD,
    "requires_action": S.REQUIRES_PAYMENT_METHOD,
    "processing": S.PROCESSING,
    "succeeded": S.SUCCEEDED,
    "canceled": S.CANCELED,
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def can_sync_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return can_transition(current, target) or target in SYNC_TRANSITIONS.get(current, frozenset())


def ensure_transition(
    current: PaymentStatus,
    target: PaymentStatus,
    *,
    processor_status: Optional[str] = None,
    from_processor: bool = False,
) -> None:
    """
    Raise InvalidStateError unless ``current -> target`` is legal.

    ``from_processor`` also admits the SYNC_TRANSITIONS moves.
    """
    allowed = can_sync_transition if from_processor else can_transition
    if not allowed(current, target):
        raise InvalidStateError(
            f"Cannot move payment from {current.value} to {target.value}",
            local_status=current.value,
            processor_status=processor_status,
        )


def map_processor_status(processor_status: str) -> PaymentStatus:
    """
    Translate a Stripe PaymentIntent status into a local status.

    Unknown statuses are rejected rather than guessed.
    """
    try:
        return _PROCESSOR_STATUS_MAP[processor_status]
    except KeyError:
        raise InvalidStateError(
            f"Unrecognized processor status: {processor_status}",
            processor_status=processor_status,
        ) from None


def is_stale_processing(
    capture_started_at: Optional[datetime], now: datetime, stale_after_seconds: int
) -> bool:
    """True when a local 'processing' marker is old enough to be an abandoned capture."""
    started = ensure_utc(capture_started_at)
    if started is None:
        return True
    return now - started >= timedelta(seconds=stale_after_seconds)

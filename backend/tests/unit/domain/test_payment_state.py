"""Unit tests for the payment status transition table and processor mapping."""

from datetime import datetime, timedelta, timezone

import pytest

from ridepay.core.enums import PaymentStatus as S
from ridepay.core.exceptions import InvalidStateError
from ridepay.domain.payment_state import (
    ALLOWED_TRANSITIONS,
    can_sync_transition,
    can_transition,
    ensure_transition,
    is_stale_processing,
    map_processor_status,
)


class TestTransitionTable:
    @pytest.mark.parametrize(
        "current,target",
        [
            (S.REQUIRES_PAYMENT_METHOD, S.AUTHORIZED),
            (S.AUTHORIZED, S.PROCESSING),
            (S.AUTHORIZED, S.CANCELED),
            (S.PROCESSING, S.SUCCEEDED),
            (S.PROCESSING, S.AUTHORIZED),
            (S.PROCESSING, S.FAILED),
            (S.SUCCEEDED, S.REFUNDED),
        ],
    )
    def test_allowed_moves(self, current, target):
        assert can_transition(current, target)
        ensure_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (S.SUCCEEDED, S.CANCELED),
            (S.SUCCEEDED, S.PROCESSING),
            (S.REFUNDED, S.SUCCEEDED),
            (S.CANCELED, S.AUTHORIZED),
            (S.FAILED, S.AUTHORIZED),
            (S.AUTHORIZED, S.REFUNDED),
            (S.AUTHORIZED, S.SUCCEEDED),
        ],
    )
    def test_rejected_moves(self, current, target):
        assert not can_transition(current, target)
        with pytest.raises(InvalidStateError) as exc_info:
            ensure_transition(current, target, processor_status="requires_capture")
        assert exc_info.value.local_status == current.value
        assert exc_info.value.processor_status == "requires_capture"

    def test_terminal_statuses_have_no_exits(self):
        for status in (S.CANCELED, S.REFUNDED, S.FAILED):
            assert ALLOWED_TRANSITIONS[status] == frozenset()

    def test_processor_reported_capture_allowed_only_when_syncing(self):
        assert not can_transition(S.AUTHORIZED, S.SUCCEEDED)
        assert can_sync_transition(S.AUTHORIZED, S.SUCCEEDED)
        ensure_transition(S.AUTHORIZED, S.SUCCEEDED, from_processor=True)

    def test_sync_never_reopens_terminal_statuses(self):
        assert not can_sync_transition(S.REFUNDED, S.SUCCEEDED)
        assert not can_sync_transition(S.CANCELED, S.SUCCEEDED)


class TestProcessorStatusMapping:
    @pytest.mark.parametrize(
        "processor_status,expected",
        [
            ("requires_capture", S.AUTHORIZED),
            ("requires_payment_method", S.REQUIRES_PAYMENT_METHOD),
            ("requires_confirmation", S.REQUIRES_PAYMENT_METHOD),
            ("requires_action", S.REQUIRES_PAYMENT_METHOD),
            ("processing", S.PROCESSING),
            ("succeeded", S.SUCCEEDED),
            ("canceled", S.CANCELED),
        ],
    )
    def test_known_statuses(self, processor_status, expected):
        assert map_processor_status(processor_status) == expected

    def test_unknown_status_is_rejected(self):
        with pytest.raises(InvalidStateError):
            map_processor_status("partially_captured")


class TestStaleProcessing:
    now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    def test_recent_marker_is_not_stale(self):
        assert not is_stale_processing(self.now - timedelta(seconds=30), self.now, 300)

    def test_old_marker_is_stale(self):
        assert is_stale_processing(self.now - timedelta(minutes=10), self.now, 300)

    def test_naive_marker_is_treated_as_utc(self):
        naive = (self.now - timedelta(minutes=10)).replace(tzinfo=None)
        assert is_stale_processing(naive, self.now, 300)

    def test_missing_marker_counts_as_stale(self):
        assert is_stale_processing(None, self.now, 300)

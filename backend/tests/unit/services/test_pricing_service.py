"""Unit tests for discount and platform fee arithmetic."""

import pytest

from ridepay.core.exceptions import PaymentValidationError
from ridepay.services.pricing_service import compute_discount, compute_fee_split


class TestComputeDiscount:
    def test_ten_percent_off(self):
        breakdown = compute_discount(2000, 10)
        assert breakdown.discount_amount == 200
        assert breakdown.amount_total == 1800

    def test_discount_is_floored(self):
        breakdown = compute_discount(999, 10)
        assert breakdown.discount_amount == 99
        assert breakdown.amount_total == 900

    def test_no_discount(self):
        breakdown = compute_discount(1500, 0)
        assert breakdown.amount_total == 1500

    def test_full_discount_leaves_zero(self):
        assert compute_discount(1500, 100).amount_total == 0

    @pytest.mark.parametrize("subtotal", [0, -100])
    def test_non_positive_subtotal_rejected(self, subtotal):
        with pytest.raises(PaymentValidationError):
            compute_discount(subtotal, 10)

    @pytest.mark.parametrize("percent", [-1, 101])
    def test_percent_out_of_range_rejected(self, percent):
        with pytest.raises(PaymentValidationError):
            compute_discount(1000, percent)


class TestComputeFeeSplit:
    def test_fifteen_percent_of_ten_dollars(self):
        split = compute_fee_split(1000, 15)
        assert (split.platform_fee, split.net_amount) == (150, 850)

    def test_fee_is_floored_and_parts_add_up(self):
        split = compute_fee_split(1999, 15)
        assert split.platform_fee == 299
        assert split.net_amount == 1700
        assert split.platform_fee + split.net_amount == split.gross_amount

    def test_discounted_ride(self):
        split = compute_fee_split(1800, 15)
        assert (split.platform_fee, split.net_amount) == (270, 1530)

    def test_negative_gross_rejected(self):
        with pytest.raises(PaymentValidationError):
            compute_fee_split(-1, 15)

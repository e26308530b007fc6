"""
Ride payment arithmetic.

All amounts are integer cents. Percentage results are floored to whole cents.
"""

from dataclasses import dataclass

from ..core.exceptions import PaymentValidationError


@dataclass(frozen=True)
class PriceBreakdown:
    amount_subtotal: int
    discount_amount: int
    amount_total: int


@dataclass(frozen=True)
class FeeSplit:
    gross_amount: int
    platform_fee: int
    net_amount: int
    fee_percent: int


def _check_percent(percent: int, label: str) -> None:
    if percent < 0 or percent > 100:
        raise PaymentValidationError(f"{label} must be between 0 and 100", details={label: percent})


def compute_discount(amount_subtotal: int, discount_percent: int) -> PriceBreakdown:
    """Apply a percentage referral discount: floor(subtotal * percent / 100)."""
    if amount_subtotal <= 0:
        raise PaymentValidationError(
            "Amount must be a positive number of cents", details={"amount_subtotal": amount_subtotal}
        )
    _check_percent(discount_percent, "discount_percent")
    discount = (amount_subtotal * discount_percent) // 100
    return PriceBreakdown(
        amount_subtotal=amount_subtotal,
        discount_amount=discount,
        amount_total=amount_subtotal - discount,
    )


def compute_fee_split(gross_amount: int, fee_percent: int) -> FeeSplit:
    """Split a captured amount into platform fee (floored) and driver net."""
    if gross_amount < 0:
        raise PaymentValidationError("Captured amount cannot be negative", details={"gross": gross_amount})
    _check_percent(fee_percent, "fee_percent")
    fee = (gross_amount * fee_percent) // 100
    return FeeSplit(
        gross_amount=gross_amount,
        platform_fee=fee,
        net_amount=gross_amount - fee,
        fee_percent=fee_percent,
    )

"""Percentage checks and escrow splits"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from disputeflow.core.exceptions import InvalidPercent, PercentSumMismatch

CENT = Decimal("0.01")


def validate_percent(value: Any) -> int:
    """Return value if it is an integer 0-100, else raise InvalidPercent."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidPercent(value)
    if not 0 <= value <= 100:
        raise InvalidPercent(value)
    return value


def check_split(customer_percent: int, vendor_percent: int) -> None:
    """Invariant check: both sides valid and summing to exactly 100."""
    if (
        isinstance(customer_percent, bool)
        or isinstance(vendor_percent, bool)
        or not isinstance(customer_percent, int)
        or not isinstance(vendor_percent, int)
        or not 0 <= customer_percent <= 100
        or customer_percent + vendor_percent != 100
    ):
        raise PercentSumMismatch(
            f"customer {customer_percent!r}% + vendor {vendor_percent!r}% does not make 100%"
        )


def split_amount(amount: Decimal, customer_percent: int) -> tuple[Decimal, Decimal]:
    """Split an escrow amount into (customer, vendor) parts.

    The customer part is rounded half-up to the cent; the vendor receives the
    remainder so both parts always add back to the escrow.
    """
    validate_percent(customer_percent)
    customer = (amount * customer_percent / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
    return customer, amount - customer

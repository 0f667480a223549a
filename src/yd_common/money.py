"""Decimal arithmetic utilities for money amounts.

All principals, profits and balances are Decimal quantized to cents. No float.
"""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize_amount(value: Decimal) -> Decimal:
    """Round half-up to whole cents, matching NUMERIC(18,2) storage rounding."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_period_amount(principal: Decimal, rate_per_period: Decimal) -> Decimal:
    """Yield owed for one period: principal * rate, rounded half-up to cents.

    1000.00 * 0.02 -> 20.00
    333.33 * 0.015 -> 5.00 (4.99995 rounded)
    100.00 * 0.00004 -> 0.00 (0.004 rounded)
    """
    return quantize_amount(principal * rate_per_period)


def amount_to_display(amount: Decimal) -> str:
    """Format for display: Decimal('1100') -> '$1,100.00', Decimal('-12.5') -> '-$12.50'."""
    value = quantize_amount(amount)
    if value < 0:
        return f"-${-value:,.2f}"
    return f"${value:,.2f}"

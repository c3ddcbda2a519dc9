"""
FinLedger - Money Helpers

Decimal helpers shared by the reconstructor, the reconciliation runner and
the statement calculator.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# Balances closer than this are considered equal
DEFAULT_TOLERANCE = CENT


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Coerce a stored amount to Decimal.

    Returns None for missing, boolean, or non-numeric values so callers can
    treat the source record as malformed.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def quantize_money(value: Decimal) -> Decimal:
    """Round to cents, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def within_tolerance(a: Decimal, b: Decimal, tolerance: Decimal = DEFAULT_TOLERANCE) -> bool:
    """Two amounts match when their absolute difference does not exceed the tolerance."""
    return abs(Decimal(a) - Decimal(b)) <= tolerance


def percentage(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole * 100, 0 when whole is 0."""
    if not whole:
        return ZERO
    return quantize_money(Decimal(part) / Decimal(whole) * HUNDRED)


def floor_zero(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO

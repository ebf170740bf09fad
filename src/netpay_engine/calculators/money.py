"""Currency arithmetic helpers."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from netpay_engine.errors import ValidationError

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """Coerce a user or database value to Decimal.

    Floats go through ``str`` so 0.1 stays 0.1. None becomes zero.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric", {"field": field})
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be numeric", {"field": field}) from exc


def round_currency(value: Any) -> Decimal:
    """Round to centavos, half-up. Apply once per final amount."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def half_up(value: Decimal) -> Decimal:
    """First half of a split amount, rounded; the remainder goes to the second."""
    return round_currency(value / 2)


def clamp(value: Decimal, low: Decimal | None, high: Decimal | None) -> Decimal:
    if low is not None and value < low:
        return low
    if high is not None and value > high:
        return high
    return value

"""Decimal helpers shared by the calculators, reconciler and gateway.

Rounding:
- Currency to 2 decimals (ROUND_HALF_UP) at every bucket boundary
- Gateway amounts in minor units (integer pesewas)
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from collector_earnings.errors import InvalidInputError

ZERO = Decimal("0")
CENT = Decimal("0.01")
MINOR_UNITS = Decimal("100")


def round_to_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(
    value: Any,
    field: str,
    *,
    default: Decimal | None = None,
    allow_negative: bool = False,
) -> Decimal:
    """Coerce a row value to Decimal, rejecting negatives and garbage.

    None falls back to default when one is given.
    """
    if value is None:
        if default is not None:
            return default
        raise InvalidInputError(field, value, "missing")
    if isinstance(value, bool):
        raise InvalidInputError(field, value, "not a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInputError(field, value, "not a number") from None
    if not amount.is_finite():
        raise InvalidInputError(field, value, "not finite")
    if amount < 0 and not allow_negative:
        raise InvalidInputError(field, value, "negative")
    return amount


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to integer minor units (pesewas)."""
    return int((amount * MINOR_UNITS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: int | str) -> Decimal:
    """Convert integer minor units back to a 2dp amount."""
    return round_to_cents(Decimal(str(value)) / MINOR_UNITS)

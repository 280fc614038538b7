"""
Decimal helpers for quantities and money.

Quantities (stocking units, pallet/colis counts) are held at 4 decimals and
money at 2 decimals, matching the Numeric column scales on the models.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO = Decimal("0")
QTY_STEP = Decimal("0.0001")
MONEY_STEP = Decimal("0.01")


def to_decimal(value, *, field: str = "value") -> Decimal:
    """Coerce int/float/str/Decimal input to Decimal, raising ValueError on garbage."""
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValueError(f"{field} must be numeric")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() keeps floats like 0.1 from dragging binary noise along
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValueError(f"{field} must be numeric")
    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number")
    return result


def quantize_qty(value) -> Decimal:
    return to_decimal(value).quantize(QTY_STEP, rounding=ROUND_HALF_UP)


def quantize_money(value) -> Decimal:
    return to_decimal(value).quantize(MONEY_STEP, rounding=ROUND_HALF_UP)


def clamp_zero(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO


def as_float(value) -> float | None:
    """JSON-friendly view of a Decimal column."""
    if value is None:
        return None
    return float(value)

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

TWO_DP = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Coerce to Decimal via str() so floats don't drag binary noise along."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a monetary amount: {value!r}")


def round2(amount: Number) -> Decimal:
    try:
        return to_money(amount).quantize(TWO_DP, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Not a finite amount: {amount!r}")


def apply_multiplier(amount: Number, multiplier: Number) -> Decimal:
    """Return ``amount * multiplier`` rounded to 2 dp."""
    return round2(to_money(amount) * to_money(multiplier))

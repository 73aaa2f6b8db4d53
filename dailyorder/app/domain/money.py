"""
Fixed-point money helpers (2 fraction digits, no float accumulation).
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, str, float]


def to_money(value: Number) -> Decimal:
    """Coerce to a 2dp Decimal; floats go through str() to avoid binary noise."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def line_amount(qty: int, rate: Number) -> Decimal:
    return to_money(Decimal(qty) * to_money(rate))


def money_sum(values: Iterable[Number]) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value)
    return to_money(total)

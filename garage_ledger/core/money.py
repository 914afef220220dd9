"""
Money arithmetic.

All amounts are exact decimals with two places of precision.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyLike = Union[Decimal, int, float, str]


def to_decimal(value: MoneyLike) -> Decimal:
    """Convert a value to an exact Decimal without rounding.

    Floats go through ``str`` first so that 0.1 becomes Decimal("0.1")
    rather than its binary expansion.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount


def to_money(value: MoneyLike) -> Decimal:
    """Convert a value to a two-place Decimal.

    Args:
        value: Amount as Decimal, int, float or numeric string

    Returns:
        Amount quantized to cents

    Raises:
        ValueError: If the value is not a finite number
    """
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def is_whole_cents(value: MoneyLike) -> bool:
    """True if the amount has no fraction of a cent."""
    amount = to_decimal(value)
    return amount == amount.quantize(CENT)


def sum_money(amounts: Iterable[MoneyLike]) -> Decimal:
    """Sum amounts exactly and return a two-place Decimal."""
    total = ZERO
    for amount in amounts:
        total += to_money(amount)
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal) -> str:
    """Format an amount with thousands separators, e.g. 1,234.50."""
    return f"{to_money(amount):,.2f}"

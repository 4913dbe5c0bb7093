# app/payouts/money.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation

MINOR_UNITS = 100


def to_minor_units(amount: Decimal | str | int) -> int:
    """
    "5000.00" -> 500000. Rejects fractions finer than one minor unit
    instead of rounding them away.
    """
    if isinstance(amount, float):
        raise TypeError("float amounts are not accepted; pass a Decimal or str")
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e

    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    if value < 0:
        raise ValueError("amount must be >= 0")

    scaled = value * MINOR_UNITS
    if scaled != scaled.to_integral_value():
        raise ValueError(f"amount has more than 2 decimal places: {amount!r}")
    return int(scaled)


def format_minor_units(amount: int) -> str:
    # 500000 -> "5000.00"
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError("amount must be an integer number of minor units")
    sign = "-" if amount < 0 else ""
    major, minor = divmod(abs(amount), MINOR_UNITS)
    return f"{sign}{major}.{minor:02d}"

"""
Domain: money helpers.

All amounts are Decimal, quantized to centavos with ROUND_HALF_UP.
Floats never enter arithmetic; stored values are parsed through str().
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CURRENCY: str = "PHP"
CENTAVO = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """
    Coerce a number or numeric string into a quantized Decimal amount.

    Raises:
        ValueError: if the value is not numeric (bool included)
    """

    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a monetary amount: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount.quantize(CENTAVO, rounding=ROUND_HALF_UP)


def money_str(value: Decimal) -> str:
    """Serialize an amount for storage (string keeps Decimal precision in JSON)."""

    return str(to_money(value))

"""Decimal helpers for currency amounts.

Upstream payloads carry amounts as strings ("12.50"), floats or nothing at
all; everything is funnelled through ``to_amount`` so comparisons never
touch binary floating point.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
PLACEHOLDER = "—"


def to_amount(value: Any) -> Decimal:
    """Parse ``value`` into a cent-quantized Decimal; unparseable values become 0.00."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            # str() first so floats keep their printed value (0.1 -> "0.1")
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return ZERO
    if not amount.is_finite():
        return ZERO
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value: Decimal | None, currency: str | None = None) -> str:
    if value is None:
        return PLACEHOLDER
    text = f"{value:,.2f}"
    return f"{text} {currency}" if currency else text


__all__ = ["CENT", "ZERO", "PLACEHOLDER", "to_amount", "format_amount"]

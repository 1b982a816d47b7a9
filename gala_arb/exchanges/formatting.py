from __future__ import annotations

from decimal import Decimal


def format_amount(value: float) -> str:
    """Plain decimal string without exponent or trailing zeros."""
    text = format(Decimal(repr(float(value))), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

QUANTITY_PLACES = Decimal("0.00000001")
CURRENCY_PLACES = Decimal("0.01")


def format_decimal(value: Decimal) -> str:
    """Asset quantity with at most eight decimals and no trailing zeros."""
    quantized = value.quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP).normalize()
    if quantized == quantized.to_integral():
        return f"{quantized:.0f}"
    return format(quantized, "f")


def format_currency(value: Decimal, currency: str | None = None) -> str:
    cents = value.quantize(CURRENCY_PLACES, rounding=ROUND_HALF_UP)
    text = f"{cents:.2f}"
    if currency:
        return f"{text} {currency}"
    return text

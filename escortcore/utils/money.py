"""Decimal money helpers shared by commission, ledger and debt code."""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from escortcore.config import COMMISSION_SETTINGS

CENT = Decimal(str(COMMISSION_SETTINGS.get("currency_quantum", "0.01")))
ZERO = Decimal("0.00")


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """Coerce to a Decimal quantized to the currency unit (half-up)."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        # str() first so floats like 0.1 do not drag binary noise in
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate: Decimal | int | float) -> Decimal:
    """round(amount * rate / 100) to the currency unit."""
    return to_money(to_money(amount) * Decimal(str(rate)) / Decimal(100))


__all__ = ["CENT", "ZERO", "to_money", "percent_of"]

from __future__ import annotations

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, ROUND_UP
from typing import Literal

from promo_engine.core.config import settings


MoneyRounding = Literal["half_up", "half_even", "up", "down"]


_ROUNDING_MAP: dict[str, str] = {
    "half_up": ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
    "up": ROUND_UP,
    "down": ROUND_DOWN,
}

ZERO = Decimal("0")


def money_quant(minor_units: int | None = None) -> Decimal:
    places = settings.currency_minor_units if minor_units is None else minor_units
    return Decimal(1).scaleb(-max(0, int(places)))


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(
    value: Decimal,
    *,
    rounding: MoneyRounding = "half_even",
    minor_units: int | None = None,
) -> Decimal:
    mode = _ROUNDING_MAP.get(str(rounding), ROUND_HALF_EVEN)
    return to_decimal(value).quantize(money_quant(minor_units), rounding=mode)

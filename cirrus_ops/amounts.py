"""Unit conversion helpers for node-reported amounts."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Iterable

UNITS_PER_COIN = 10**8
EIGHT_DP = Decimal("0.00000001")


def units_to_coins(units: int) -> Decimal:
    """Convert an integer amount in base units to whole coins."""

    return Decimal(int(units)) / UNITS_PER_COIN


def total_coins(units: Iterable[int]) -> Decimal:
    return units_to_coins(sum(int(u) for u in units))


def format_coins(value: Decimal) -> str:
    """Render a whole-coin amount as the decimal string the wallet API expects."""

    quantized = Decimal(value).quantize(EIGHT_DP)
    text = format(quantized, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def parse_coins(raw: str | int | float | Decimal) -> Decimal:
    try:
        value = Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw}") from exc
    if not value.is_finite():
        raise ValueError(f"invalid amount: {raw}")
    return value

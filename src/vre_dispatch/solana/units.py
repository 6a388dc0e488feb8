"""Conversion between human-readable token amounts and base units."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

VRE_DECIMALS = 9


def to_base_units(amount: Decimal, decimals: int = VRE_DECIMALS) -> int:
    """Shift by `decimals` places and truncate; never rounds up."""
    shifted = Decimal(amount).scaleb(decimals)
    return int(shifted.to_integral_value(rounding=ROUND_FLOOR))


def from_base_units(base_units: int, decimals: int = VRE_DECIMALS) -> Decimal:
    return Decimal(int(base_units)).scaleb(-decimals)


def format_ui_amount(base_units: int, decimals: int = VRE_DECIMALS) -> str:
    """Exact decimal string for a base-unit amount, e.g. 1999999999 -> '1.999999999'."""
    return f"{from_base_units(base_units, decimals):.{decimals}f}"

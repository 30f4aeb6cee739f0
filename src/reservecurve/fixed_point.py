"""Fixed-point arithmetic and the raw/wad rescaling boundary.

Token amounts are integers with 18 decimals. Quote assets arrive in their
own raw units (USDC has 6 decimals, most others 18) and are rescaled to
18-decimal "wad" units before touching curve math. The curve itself never
sees a decimal count.

Rounding always favours the reserve: conversions out of wad floor, and
helpers that compute what a caller must supply round up.

Decimal is used only at the edges (config, CLI, reporting). No floats.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_DOWN
from typing import Union

WAD = 10 ** 18
TOKEN_DECIMALS = 18
BPS_DIVISOR = 10_000


def mul_div(a: int, b: int, denominator: int) -> int:
    """Return floor(a * b / denominator)."""
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    return (a * b) // denominator


def mul_div_up(a: int, b: int, denominator: int) -> int:
    """Return ceil(a * b / denominator)."""
    if denominator == 0:
        raise ZeroDivisionError("mul_div_up denominator is zero")
    return -((-a * b) // denominator)


def bps_of(amount: int, bps: int) -> int:
    """Share of amount expressed in basis points, rounded down."""
    return mul_div(amount, bps, BPS_DIVISOR)


def quote_scale(decimals: int) -> int:
    """Multiplier that lifts a raw quote amount to wad units."""
    if decimals < 0 or decimals > TOKEN_DECIMALS:
        raise ValueError(
            f"Quote decimals must be within [0, {TOKEN_DECIMALS}], got {decimals}"
        )
    return 10 ** (TOKEN_DECIMALS - decimals)


def raw_to_wad(raw: int, decimals: int) -> int:
    """Lift a raw quote amount to wad units (exact)."""
    return raw * quote_scale(decimals)


def wad_to_raw(wad: int, decimals: int) -> int:
    """Lower a wad amount to raw quote units, rounding down."""
    return wad // quote_scale(decimals)


def wad_to_raw_up(wad: int, decimals: int) -> int:
    """Lower a wad amount to raw quote units, rounding up."""
    scale = quote_scale(decimals)
    return -(-wad // scale)


def to_decimal(amount: int, decimals: int = TOKEN_DECIMALS) -> Decimal:
    """Render an integer base-unit amount as a Decimal."""
    return Decimal(amount).scaleb(-decimals)


def from_decimal(value: Union[Decimal, str, int], decimals: int = TOKEN_DECIMALS) -> int:
    """Parse a human amount into integer base units, truncating dust."""
    amount = Decimal(str(value)) if not isinstance(value, Decimal) else value
    if amount < 0:
        raise ValueError(f"Amount must not be negative, got {amount}")
    units = amount.scaleb(decimals).quantize(Decimal("1"), rounding=ROUND_DOWN)
    return int(units)

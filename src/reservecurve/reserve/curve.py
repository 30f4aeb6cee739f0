"""Constant-product pricing curve.

With Q = virtual + real quote (wad) and T = unissued token reserve, trades
preserve Q * T net of fees:

    buy   n quote in   →  T * n / (Q + n) tokens out
    sell  m tokens in  →  Q * m / (T + m) quote out

Forward functions round the output down and inverse functions round the
required input up, so integer rounding can only grow Q * T.

market price = Q / T, floor price = virtual / max supply, both wad-scaled.
"""

from __future__ import annotations

from reservecurve.errors import InsufficientLiquidity
from reservecurve.fixed_point import WAD, mul_div, mul_div_up


def token_out_for_quote_in(quote_reserve: int, token_reserve: int, quote_in: int) -> int:
    if quote_in <= 0:
        return 0
    return mul_div(token_reserve, quote_in, quote_reserve + quote_in)


def quote_out_for_token_in(quote_reserve: int, token_reserve: int, token_in: int) -> int:
    if token_in <= 0:
        return 0
    return mul_div(quote_reserve, token_in, token_reserve + token_in)


def quote_in_for_token_out(quote_reserve: int, token_reserve: int, token_out: int) -> int:
    """Net quote that must enter the curve to release ``token_out``."""
    if token_out <= 0:
        return 0
    if token_out >= token_reserve:
        raise InsufficientLiquidity(
            f"Requested {token_out} tokens but only {token_reserve} remain in reserve"
        )
    return mul_div_up(quote_reserve, token_out, token_reserve - token_out)


def token_in_for_quote_out(quote_reserve: int, token_reserve: int, quote_out: int) -> int:
    """Net tokens that must enter the curve to release ``quote_out``."""
    if quote_out <= 0:
        return 0
    if quote_out >= quote_reserve:
        raise InsufficientLiquidity(
            f"Requested {quote_out} quote but the curve holds {quote_reserve}"
        )
    return mul_div_up(token_reserve, quote_out, quote_reserve - quote_out)


def market_price(quote_reserve: int, token_reserve: int) -> int:
    if token_reserve == 0:
        return 0
    return mul_div(quote_reserve, WAD, token_reserve)


def floor_price(virt_quote: int, max_supply: int) -> int:
    if max_supply == 0:
        return 0
    return mul_div(virt_quote, WAD, max_supply)

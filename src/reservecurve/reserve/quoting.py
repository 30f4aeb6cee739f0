"""Read-only trade estimates for one engine.

Forward quotes run the same preview the engine executes, so an estimate
taken against unchanged state is exactly what the trade will yield.
Inverse quotes invert the curve and gross the result up for the fee,
rounding so the returned input is always sufficient.

Price impact is reported in basis points against the pre-trade market
price: positive means the trader pays more (buy) or receives less (sell).
"""

from __future__ import annotations

from dataclasses import dataclass

from reservecurve.fixed_point import (
    BPS_DIVISOR,
    WAD,
    mul_div,
    mul_div_up,
    raw_to_wad,
    wad_to_raw_up,
)
from reservecurve.reserve import curve
from reservecurve.reserve.engine import ReserveEngine


@dataclass(frozen=True)
class BuyQuote:
    quote_in: int
    fee: int
    token_out: int
    min_token_out: int
    price_impact_bps: int


@dataclass(frozen=True)
class SellQuote:
    token_in: int
    fee: int
    quote_out: int
    min_quote_out: int
    price_impact_bps: int


def _apply_slippage(amount: int, slippage_bps: int) -> int:
    if not 0 <= slippage_bps <= BPS_DIVISOR:
        raise ValueError(f"Slippage must be within [0, {BPS_DIVISOR}] bps, got {slippage_bps}")
    return mul_div(amount, BPS_DIVISOR - slippage_bps, BPS_DIVISOR)


def _gross_up(net: int, fee_rate_bps: int) -> int:
    """Smallest gross amount whose post-fee remainder covers ``net``."""
    return mul_div_up(net, BPS_DIVISOR, BPS_DIVISOR - fee_rate_bps)


def _impact(reference: int, execution: int) -> int:
    if reference == 0:
        return 0
    return mul_div(execution - reference, BPS_DIVISOR, reference)


class QuoteHelper:
    """Estimates against an engine's current reserves. Never mutates state.

    Usage:
        helper = QuoteHelper(engine)
        estimate = helper.quote_buy_in(5_000_000, slippage_bps=50)
        engine.buy("alice", 5_000_000, estimate.min_token_out, to="alice")
    """

    def __init__(self, engine: ReserveEngine) -> None:
        self.engine = engine

    def _reserves(self):
        snap = self.engine.reserves()
        return snap.reserve_virt_quote + snap.reserve_real_quote, snap.reserve_token, snap.market_price

    def quote_buy_in(self, quote_in: int, slippage_bps: int = 0) -> BuyQuote:
        """Tokens received for spending ``quote_in`` raw quote."""
        if quote_in <= 0:
            return BuyQuote(quote_in=0, fee=0, token_out=0, min_token_out=0, price_impact_bps=0)
        preview = self.engine.preview_buy(quote_in)
        market = self.engine.market_price()
        impact = 0
        if preview.token_out > 0:
            paid = raw_to_wad(quote_in, self.engine.quote.decimals)
            impact = _impact(market, mul_div(paid, WAD, preview.token_out))
        return BuyQuote(
            quote_in=quote_in,
            fee=preview.fee,
            token_out=preview.token_out,
            min_token_out=_apply_slippage(preview.token_out, slippage_bps),
            price_impact_bps=impact,
        )

    def quote_for_token_out(self, token_out: int) -> BuyQuote:
        """Raw quote (fee included) needed to receive ``token_out`` tokens."""
        if token_out <= 0:
            return BuyQuote(quote_in=0, fee=0, token_out=0, min_token_out=0, price_impact_bps=0)
        q, t, market = self._reserves()
        net_wad = curve.quote_in_for_token_out(q, t, token_out)
        net_raw = wad_to_raw_up(net_wad, self.engine.quote.decimals)
        quote_in = _gross_up(net_raw, self.engine.fee_rate_bps)
        estimate = self.quote_buy_in(quote_in)
        return BuyQuote(
            quote_in=quote_in,
            fee=estimate.fee,
            token_out=estimate.token_out,
            min_token_out=token_out,
            price_impact_bps=estimate.price_impact_bps,
        )

    def quote_sell_in(self, token_in: int, slippage_bps: int = 0) -> SellQuote:
        """Raw quote received for selling ``token_in`` tokens."""
        if token_in <= 0:
            return SellQuote(token_in=0, fee=0, quote_out=0, min_quote_out=0, price_impact_bps=0)
        preview = self.engine.preview_sell(token_in)
        market = self.engine.market_price()
        received = raw_to_wad(preview.quote_out, self.engine.quote.decimals)
        impact = -_impact(market, mul_div(received, WAD, token_in))
        return SellQuote(
            token_in=token_in,
            fee=preview.fee,
            quote_out=preview.quote_out,
            min_quote_out=_apply_slippage(preview.quote_out, slippage_bps),
            price_impact_bps=impact,
        )

    def token_for_quote_out(self, quote_out: int) -> SellQuote:
        """Tokens (fee included) that must be sold to receive ``quote_out``."""
        if quote_out <= 0:
            return SellQuote(token_in=0, fee=0, quote_out=0, min_quote_out=0, price_impact_bps=0)
        q, t, _ = self._reserves()
        wanted = raw_to_wad(quote_out, self.engine.quote.decimals)
        net_tokens = curve.token_in_for_quote_out(q, t, wanted)
        token_in = _gross_up(net_tokens, self.engine.fee_rate_bps)
        estimate = self.quote_sell_in(token_in)
        return SellQuote(
            token_in=token_in,
            fee=estimate.fee,
            quote_out=estimate.quote_out,
            min_quote_out=quote_out,
            price_impact_bps=estimate.price_impact_bps,
        )

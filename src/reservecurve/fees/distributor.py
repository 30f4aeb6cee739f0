"""Fee distributor: splits every trading fee and routes each slice.

Shares of a fee f (basis points of f):
- owner:    owner_share_bps, paid only while the owner has fee collection on
- provider: provider_share_bps, only when the trade names a provider
- treasury: the remainder, paid only while a treasury is configured

A slice with no live recipient is redirected into the reserve instead:
quote fees (buys) are absorbed the way a heal is, token fees (sells) are
retired from max supply. The slices always sum to f.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from reservecurve.fixed_point import BPS_DIVISOR, bps_of
from reservecurve.models.reserve import FeeAsset, FeeBreakdown, FeeCategory, FeeLine
from reservecurve.ownership import OwnershipDirectory

if TYPE_CHECKING:
    from reservecurve.reserve.engine import ReserveEngine
    from reservecurve.reserve.guard import Transaction

log = logging.getLogger(__name__)

DEFAULT_OWNER_SHARE_BPS = 1500
DEFAULT_PROVIDER_SHARE_BPS = 1500


class FeeDistributor:
    """Per-token fee policy.

    Usage:
        distributor = FeeDistributor(directory, "tok-1")
        lines = distributor.split(10_000, provider="referrer")
    """

    def __init__(
        self,
        directory: OwnershipDirectory,
        token_id: str,
        owner_share_bps: int = DEFAULT_OWNER_SHARE_BPS,
        provider_share_bps: int = DEFAULT_PROVIDER_SHARE_BPS,
        owner_fees_active: bool = True,
    ) -> None:
        if owner_share_bps < 0 or provider_share_bps < 0:
            raise ValueError("Fee shares must not be negative")
        if owner_share_bps + provider_share_bps > BPS_DIVISOR:
            raise ValueError(
                f"Owner and provider shares exceed {BPS_DIVISOR} bps: "
                f"{owner_share_bps} + {provider_share_bps}"
            )
        self._directory = directory
        self.token_id = token_id
        self.owner_share_bps = owner_share_bps
        self.provider_share_bps = provider_share_bps
        self._owner_fees_active = owner_fees_active

    @property
    def owner_fees_active(self) -> bool:
        return self._owner_fees_active

    @property
    def owner(self) -> str:
        return self._directory.owner_of(self.token_id)

    def set_owner_fee_status(self, caller: str, active: bool) -> bool:
        """Toggle owner fee collection. Owner only. Returns the previous flag."""
        self._directory.require_owner(self.token_id, caller)
        previous = self._owner_fees_active
        self._owner_fees_active = bool(active)
        log.info("Owner fees for %s set to %s by %s", self.token_id, self._owner_fees_active, caller)
        return previous

    def split(self, fee: int, provider: Optional[str] = None) -> List[FeeLine]:
        """Divide ``fee`` into owner/provider/treasury slices.

        Zero slices are omitted. A line with recipient None is redirected.
        """
        if fee < 0:
            raise ValueError(f"Fee must not be negative, got {fee}")
        owner_cut = bps_of(fee, self.owner_share_bps)
        provider_cut = bps_of(fee, self.provider_share_bps) if provider else 0
        treasury_cut = fee - owner_cut - provider_cut

        owner = self.owner if self._owner_fees_active else None
        lines = [
            FeeLine(FeeCategory.OWNER, owner_cut, owner),
            FeeLine(FeeCategory.PROVIDER, provider_cut, provider),
            FeeLine(FeeCategory.TREASURY, treasury_cut, self._directory.treasury),
        ]
        return [line for line in lines if line.amount > 0]

    def route_quote_fee(
        self,
        engine: ReserveEngine,
        tx: Transaction,
        fee: int,
        provider: Optional[str] = None,
    ) -> FeeBreakdown:
        """Pay out a buy fee the engine already holds, absorbing the rest."""
        lines = self.split(fee, provider)
        redirected = 0
        for line in lines:
            if line.redirected:
                redirected += line.amount
            else:
                engine.pay_fee_quote(tx, line.recipient, line.amount)
        if redirected:
            engine.absorb_fee_quote(redirected)
        return FeeBreakdown(asset=FeeAsset.QUOTE, total=fee, lines=tuple(lines))

    def route_token_fee(
        self,
        engine: ReserveEngine,
        fee: int,
        provider: Optional[str] = None,
    ) -> FeeBreakdown:
        """Mint a sell fee to its recipients, retiring redirected slices."""
        lines = self.split(fee, provider)
        for line in lines:
            if line.redirected:
                engine.retire_fee_tokens(line.amount)
            else:
                engine.mint_fee_tokens(line.recipient, line.amount)
        return FeeBreakdown(asset=FeeAsset.TOKEN, total=fee, lines=tuple(lines))

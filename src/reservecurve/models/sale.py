"""Contribution sale models.

State machine:
    OPEN → CLOSED          (window elapsed, market not yet opened)
    OPEN → MARKET_OPEN     (first redeem/open after the window, same call)
    CLOSED → MARKET_OPEN

MARKET_OPEN is terminal. The flip to MARKET_OPEN happens exactly once and
converts every contributed quote unit into the opening token batch.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Optional


class SalePhase(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    MARKET_OPEN = "market_open"


SALE_TRANSITIONS: Dict[SalePhase, frozenset] = {
    SalePhase.OPEN: frozenset({SalePhase.CLOSED, SalePhase.MARKET_OPEN}),
    SalePhase.CLOSED: frozenset({SalePhase.MARKET_OPEN}),
    SalePhase.MARKET_OPEN: frozenset(),
}


class AccountPhase(enum.IntEnum):
    """Coarse per-account status reported in account views."""
    PENDING = 0
    MARKET = 1
    REDEEMABLE = 2


@dataclass
class SaleRecord:
    """Sale bookkeeping for one token instance.

    Mutable: contributions accumulate while OPEN, are zeroed one by one as
    contributors redeem after MARKET_OPEN.
    """
    token_id: str
    quote_symbol: str
    end_timestamp: int
    phase: SalePhase = SalePhase.OPEN
    total_quote_contributed: int = 0
    total_tokens_from_opening: int = 0
    opened_timestamp: Optional[int] = None
    contributions: Dict[str, int] = field(default_factory=dict)

    @property
    def ended(self) -> bool:
        return self.phase == SalePhase.MARKET_OPEN

    def contribution_of(self, account: str) -> int:
        return self.contributions.get(account, 0)

    def transition_to(self, new_phase: SalePhase) -> None:
        """Transition to a new phase, validating the transition is legal."""
        allowed = SALE_TRANSITIONS.get(self.phase, frozenset())
        if new_phase not in allowed:
            raise ValueError(
                f"Invalid sale transition: {self.phase.value} -> {new_phase.value}"
            )
        self.phase = new_phase

    def snapshot(self) -> SaleRecord:
        return SaleRecord(
            token_id=self.token_id,
            quote_symbol=self.quote_symbol,
            end_timestamp=self.end_timestamp,
            phase=self.phase,
            total_quote_contributed=self.total_quote_contributed,
            total_tokens_from_opening=self.total_tokens_from_opening,
            opened_timestamp=self.opened_timestamp,
            contributions=dict(self.contributions),
        )

    def restore(self, snapshot: SaleRecord) -> None:
        self.phase = snapshot.phase
        self.total_quote_contributed = snapshot.total_quote_contributed
        self.total_tokens_from_opening = snapshot.total_tokens_from_opening
        self.opened_timestamp = snapshot.opened_timestamp
        self.contributions = dict(snapshot.contributions)


@dataclass(frozen=True)
class ContributionReceipt:
    token_id: str
    payer: str
    account: str
    amount: int
    account_total: int
    total_contributed: int


@dataclass(frozen=True)
class MarketOpening:
    token_id: str
    opened_by: str
    total_quote_contributed: int
    total_tokens_from_opening: int
    market_price: int
    floor_price: int
    timestamp: int


@dataclass(frozen=True)
class Redemption:
    token_id: str
    account: str
    contribution: int
    token_amount: int
    opening: Optional[MarketOpening] = None

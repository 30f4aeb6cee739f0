"""Reserve models: curve state, trade results, fee breakdowns and views.

All amounts are integers in base units. Quote reserves are wad-scaled;
quote amounts that cross the API (paid in, paid out, debt) are in the quote
asset's raw units. Prices are wad-scaled quote per whole token.

Invariants checked by the engine after every mutation:
- reserve_real_quote >= 0 and held quote + total debt >= reserve_real_quote
- reserve_token + total_supply >= max_supply
- (virt + real) * reserve_token >= virt * (reserve_token + total_supply)
- total_debt == sum of account debts
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import Optional


@dataclass
class ReserveState:
    """Mutable curve reserves for one token instance."""
    reserve_real_quote: int = 0
    reserve_virt_quote: int = 0
    reserve_token: int = 0
    market_open: bool = False

    def snapshot(self) -> ReserveState:
        return replace(self)

    def restore(self, snapshot: ReserveState) -> None:
        self.reserve_real_quote = snapshot.reserve_real_quote
        self.reserve_virt_quote = snapshot.reserve_virt_quote
        self.reserve_token = snapshot.reserve_token
        self.market_open = snapshot.market_open


class TradeSide(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"


class FeeCategory(str, enum.Enum):
    """Who a slice of the trading fee is earmarked for."""
    OWNER = "owner"
    PROVIDER = "provider"
    TREASURY = "treasury"


class FeeAsset(str, enum.Enum):
    QUOTE = "quote"
    TOKEN = "token"


@dataclass(frozen=True)
class FeeLine:
    """One routed slice of a fee.

    ``recipient`` is None when the slice was redirected into the reserve
    (healed on buys, retired on sells) instead of paid out.
    """
    category: FeeCategory
    amount: int
    recipient: Optional[str] = None

    @property
    def redirected(self) -> bool:
        return self.recipient is None


@dataclass(frozen=True)
class FeeBreakdown:
    """Full routing of a single fee.

    Invariant: sum(line.amount for line in lines) == total
    """
    asset: FeeAsset
    total: int
    lines: tuple[FeeLine, ...] = ()

    @property
    def paid(self) -> int:
        return sum(line.amount for line in self.lines if not line.redirected)

    @property
    def redirected(self) -> int:
        return sum(line.amount for line in self.lines if line.redirected)

    def amount_for(self, category: FeeCategory) -> int:
        return sum(line.amount for line in self.lines if line.category == category)


NO_FEE_QUOTE = FeeBreakdown(asset=FeeAsset.QUOTE, total=0)


@dataclass(frozen=True)
class TradeResult:
    """Outcome of a buy or sell against the curve."""
    side: TradeSide
    account: str
    recipient: str
    amount_in: int
    amount_out: int
    fee: FeeBreakdown
    market_price: int
    floor_price: int


@dataclass(frozen=True)
class CreditResult:
    """Outcome of a borrow or repay."""
    account: str
    counterparty: str
    amount: int
    debt_after: int
    total_debt_after: int


@dataclass(frozen=True)
class HealResult:
    account: str
    amount: int
    virt_increase: int
    market_price: int
    floor_price: int


@dataclass(frozen=True)
class BurnResult:
    account: str
    amount: int
    max_supply_after: int
    floor_price: int


@dataclass(frozen=True)
class TransferResult:
    sender: str
    recipient: str
    amount: int


@dataclass(frozen=True)
class ReserveSnapshot:
    """Read-only copy of the reserve and supply figures."""
    reserve_real_quote: int
    reserve_virt_quote: int
    reserve_token: int
    total_supply: int
    max_supply: int
    total_debt: int
    market_price: int
    floor_price: int
    market_open: bool


@dataclass(frozen=True)
class TokenView:
    """Everything an off-chain reader needs about one token instance."""
    token_id: str
    name: str
    symbol: str
    quote_symbol: str
    owner: str
    owner_fees_active: bool
    reserves: ReserveSnapshot
    sale_phase: str
    sale_end_timestamp: int
    sale_total_contributed: int
    sale_tokens_from_opening: int


@dataclass(frozen=True)
class AccountView:
    """Per-account position in one token instance."""
    token_id: str
    account: str
    quote_balance: int
    token_balance: int
    debt: int
    credit: int
    transferable: int
    contributed_quote: int
    redeemable_token: int
    phase: int

"""Core data models for reserve-curve."""

from reservecurve.models.reserve import (
    AccountView,
    BurnResult,
    CreditResult,
    FeeAsset,
    FeeBreakdown,
    FeeCategory,
    FeeLine,
    HealResult,
    ReserveSnapshot,
    ReserveState,
    TokenView,
    TradeResult,
    TradeSide,
    TransferResult,
)
from reservecurve.models.sale import (
    AccountPhase,
    ContributionReceipt,
    MarketOpening,
    Redemption,
    SalePhase,
    SaleRecord,
)

__all__ = [
    "AccountPhase",
    "AccountView",
    "BurnResult",
    "ContributionReceipt",
    "CreditResult",
    "FeeAsset",
    "FeeBreakdown",
    "FeeCategory",
    "FeeLine",
    "HealResult",
    "MarketOpening",
    "Redemption",
    "ReserveSnapshot",
    "ReserveState",
    "SalePhase",
    "SaleRecord",
    "TokenView",
    "TradeResult",
    "TradeSide",
    "TransferResult",
]

"""Bonding-curve reserve: pricing, trading, credit and estimates."""

from reservecurve.reserve.engine import BuyPreview, ReserveEngine, SellPreview
from reservecurve.reserve.guard import OperationGuard, Transaction
from reservecurve.reserve.quoting import BuyQuote, QuoteHelper, SellQuote

__all__ = [
    "BuyPreview",
    "BuyQuote",
    "OperationGuard",
    "QuoteHelper",
    "ReserveEngine",
    "SellPreview",
    "SellQuote",
    "Transaction",
]

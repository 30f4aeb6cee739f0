"""Ledgers: token balances/debts and the quote asset balances."""

from reservecurve.ledger.quote_asset import QuoteAsset
from reservecurve.ledger.token_ledger import TokenLedger

__all__ = [
    "QuoteAsset",
    "TokenLedger",
]

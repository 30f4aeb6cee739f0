"""Pre-market contribution sale."""

from reservecurve.sale.contribution import DEFAULT_SALE_DURATION_SECONDS, ContributionSale

__all__ = [
    "ContributionSale",
    "DEFAULT_SALE_DURATION_SECONDS",
]

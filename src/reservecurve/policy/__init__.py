"""Protocol configuration."""

from reservecurve.policy.resolver import FeePolicy, PolicyResolver, QuoteAssetPolicy

__all__ = [
    "FeePolicy",
    "PolicyResolver",
    "QuoteAssetPolicy",
]

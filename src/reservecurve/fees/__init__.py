"""Trading fee split and routing."""

from reservecurve.fees.distributor import (
    DEFAULT_OWNER_SHARE_BPS,
    DEFAULT_PROVIDER_SHARE_BPS,
    FeeDistributor,
)

__all__ = [
    "DEFAULT_OWNER_SHARE_BPS",
    "DEFAULT_PROVIDER_SHARE_BPS",
    "FeeDistributor",
]

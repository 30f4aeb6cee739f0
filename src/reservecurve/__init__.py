"""reserve-curve: contribution sale, bonding-curve reserve and credit engine."""

__version__ = "0.1.0"

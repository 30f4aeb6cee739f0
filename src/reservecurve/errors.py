"""Protocol error taxonomy.

Every rejection carries a stable ``code`` so callers can branch on it
without parsing messages. All errors derive from ValueError, which is how
the rest of the package signals a refused operation.

Categories:
- InputError: zero/negative amounts, balances that cannot cover a pull.
- PhaseError: the sale or market is in the wrong phase for the call.
- EconomicError: slippage, credit or collateral bounds would be breached.
- AuthorizationError: caller lacks the required capability.

A raised error always means no state was changed.
"""

from __future__ import annotations

from typing import Optional


class ProtocolError(ValueError):
    """Base class for every refused protocol operation."""

    code: str = "ProtocolError"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.code)

    def __str__(self) -> str:
        text = super().__str__()
        if text == self.code:
            return self.code
        return f"{self.code}: {text}"


# ----------------------------------------------------------------------
# Input validation
# ----------------------------------------------------------------------

class InputError(ProtocolError):
    code = "InvalidInput"


class ZeroInput(InputError):
    code = "ZeroInput"


class InsufficientBalance(InputError):
    code = "InsufficientBalance"


# ----------------------------------------------------------------------
# Phase violations
# ----------------------------------------------------------------------

class PhaseError(ProtocolError):
    code = "InvalidPhase"


class SaleClosed(PhaseError):
    """Contribution attempted after the window elapsed or the sale ended."""
    code = "Closed"


class SaleConcluded(PhaseError):
    """Market open requested a second time."""
    code = "Concluded"


class SaleInProgress(PhaseError):
    """Market open requested before the window elapsed."""
    code = "Open"


class NotEligible(PhaseError):
    """Redemption requested while the sale window is still running."""
    code = "NotEligible"


class NothingToRedeem(PhaseError):
    code = "NothingToRedeem"


class MarketClosed(PhaseError):
    code = "MarketClosed"


class DeadlineExpired(PhaseError):
    code = "DeadlineExpired"


# ----------------------------------------------------------------------
# Economic violations
# ----------------------------------------------------------------------

class EconomicError(ProtocolError):
    code = "EconomicViolation"


class SlippageToleranceExceeded(EconomicError):
    code = "SlippageToleranceExceeded"


class CreditLimit(EconomicError):
    code = "CreditLimit"


class CollateralLocked(EconomicError):
    """Tokens backing outstanding debt may not leave the account."""
    code = "CollateralLocked"


class CollateralRequirement(CollateralLocked):
    """An account would be left with debt above its floor valuation."""
    code = "CollateralRequirement"


class InsufficientLiquidity(EconomicError):
    code = "InsufficientLiquidity"


# ----------------------------------------------------------------------
# Authorization
# ----------------------------------------------------------------------

class AuthorizationError(ProtocolError):
    code = "Unauthorized"


class NotOwner(AuthorizationError):
    code = "NotOwner"


class NotAuthorized(AuthorizationError):
    code = "NotAuthorized"


# ----------------------------------------------------------------------
# Execution model
# ----------------------------------------------------------------------

class ReentrancyError(ProtocolError):
    code = "Reentrancy"


class InvariantViolation(ProtocolError):
    """A post-operation reserve invariant check failed; the call is undone."""
    code = "InvariantViolation"


class UnknownToken(ProtocolError):
    code = "UnknownToken"

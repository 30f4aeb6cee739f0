"""Token ledger: per-account balances and debts for one token instance.

The ledger is a leaf data structure. It knows nothing about prices or
collateral; the reserve engine decides whether a movement is allowed and
then asks the ledger to apply it.

Tracked totals:
- total_supply: sum of all account balances
- max_supply: ceiling on tokens that can ever be issued (only ever shrinks)
- total_debt: sum of all account debts, in raw quote units
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, Tuple

from reservecurve.errors import InsufficientBalance


@dataclass(frozen=True)
class LedgerSnapshot:
    balances: Tuple[Tuple[str, int], ...]
    debts: Tuple[Tuple[str, int], ...]
    total_supply: int
    max_supply: int
    total_debt: int


class TokenLedger:
    """In-memory balances and debts.

    Usage:
        ledger = TokenLedger(max_supply=10**27)
        ledger.mint("alice", 100)
        ledger.move("alice", "bob", 40)
        ledger.add_debt("alice", 5_000_000)
    """

    def __init__(self, max_supply: int) -> None:
        if max_supply <= 0:
            raise ValueError("max_supply must be positive")
        self._balances: Dict[str, int] = {}
        self._debts: Dict[str, int] = {}
        self.total_supply = 0
        self.max_supply = max_supply
        self.total_debt = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def debt_of(self, account: str) -> int:
        return self._debts.get(account, 0)

    def holders(self) -> Iterator[Tuple[str, int]]:
        """Accounts with a non-zero balance."""
        return ((a, b) for a, b in self._balances.items() if b > 0)

    def debtors(self) -> Iterator[Tuple[str, int]]:
        return ((a, d) for a, d in self._debts.items() if d > 0)

    def sum_of_debts(self) -> int:
        return sum(self._debts.values())

    def sum_of_balances(self) -> int:
        return sum(self._balances.values())

    # ------------------------------------------------------------------
    # Balance mutations
    # ------------------------------------------------------------------

    def mint(self, account: str, amount: int) -> None:
        """Issue tokens to an account. Caller ensures the reserve covers it."""
        if amount < 0:
            raise ValueError(f"Mint amount must not be negative, got {amount}")
        if amount == 0:
            return
        self._balances[account] = self.balance_of(account) + amount
        self.total_supply += amount

    def burn_from(self, account: str, amount: int) -> None:
        """Remove tokens from an account and from total supply."""
        if amount < 0:
            raise ValueError(f"Burn amount must not be negative, got {amount}")
        balance = self.balance_of(account)
        if amount > balance:
            raise InsufficientBalance(
                f"{account} holds {balance}, cannot remove {amount}"
            )
        self._balances[account] = balance - amount
        self.total_supply -= amount

    def move(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Transfer amount must not be negative, got {amount}")
        balance = self.balance_of(sender)
        if amount > balance:
            raise InsufficientBalance(
                f"{sender} holds {balance}, cannot transfer {amount}"
            )
        self._balances[sender] = balance - amount
        self._balances[recipient] = self.balance_of(recipient) + amount

    def retire(self, amount: int) -> None:
        """Permanently lower the issuable ceiling."""
        if amount < 0 or amount > self.max_supply:
            raise ValueError(f"Cannot retire {amount} of max supply {self.max_supply}")
        self.max_supply -= amount

    # ------------------------------------------------------------------
    # Debt mutations
    # ------------------------------------------------------------------

    def add_debt(self, account: str, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Debt increase must not be negative, got {amount}")
        self._debts[account] = self.debt_of(account) + amount
        self.total_debt += amount

    def reduce_debt(self, account: str, amount: int) -> int:
        """Reduce an account's debt, capped at what is outstanding.

        Returns the amount actually cleared.
        """
        if amount < 0:
            raise ValueError(f"Debt decrease must not be negative, got {amount}")
        cleared = min(amount, self.debt_of(account))
        if cleared:
            self._debts[account] = self.debt_of(account) - cleared
            self.total_debt -= cleared
        return cleared

    # ------------------------------------------------------------------
    # Rollback support
    # ------------------------------------------------------------------

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            balances=tuple(self._balances.items()),
            debts=tuple(self._debts.items()),
            total_supply=self.total_supply,
            max_supply=self.max_supply,
            total_debt=self.total_debt,
        )

    def restore(self, snapshot: LedgerSnapshot) -> None:
        self._balances = dict(snapshot.balances)
        self._debts = dict(snapshot.debts)
        self.total_supply = snapshot.total_supply
        self.max_supply = snapshot.max_supply
        self.total_debt = snapshot.total_debt

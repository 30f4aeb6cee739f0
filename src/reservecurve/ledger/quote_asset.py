"""Quote asset ledger: the external fungible asset tokens trade against.

One QuoteAsset is shared by every token instance priced in it, so it is
never snapshotted wholesale. Operations that move quote register an undo
callback with their operation guard instead.

Transfer hooks stand in for receiver callbacks: they run after a transfer
has been applied and may call back into the protocol. The reserve engine's
guard rejects such re-entry into an instance that is mid-operation.
"""

from __future__ import annotations

from typing import Callable, Dict, List

from reservecurve.errors import InsufficientBalance, ZeroInput
from reservecurve.fixed_point import TOKEN_DECIMALS

TransferHook = Callable[[str, str, int], None]


class QuoteAsset:
    """Balances of one quote asset, in raw units.

    Usage:
        usdc = QuoteAsset("USDC", decimals=6)
        usdc.mint("alice", 10_000_000)
        usdc.transfer("alice", "bob", 2_500_000)
    """

    def __init__(self, symbol: str, decimals: int) -> None:
        if not symbol.strip():
            raise ValueError("Quote asset symbol must not be blank")
        if decimals < 0 or decimals > TOKEN_DECIMALS:
            raise ValueError(
                f"Quote decimals must be within [0, {TOKEN_DECIMALS}], got {decimals}"
            )
        self.symbol = symbol.strip()
        self.decimals = decimals
        self._balances: Dict[str, int] = {}
        self._hooks: List[TransferHook] = []
        self.total_minted = 0

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def mint(self, account: str, amount: int) -> None:
        """Credit externally sourced funds (faucet, bridge, test fixture)."""
        if amount <= 0:
            raise ZeroInput(f"Mint amount must be positive, got {amount}")
        self._balances[account] = self.balance_of(account) + amount
        self.total_minted += amount

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Move funds and notify hooks. Raises InsufficientBalance.

        A hook that raises aborts the transfer: the move is reverted and the
        hook's exception propagates to the caller.
        """
        self._move(sender, recipient, amount)
        try:
            for hook in list(self._hooks):
                hook(sender, recipient, amount)
        except Exception:
            self._move(recipient, sender, amount)
            raise

    def revert_transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Undo a transfer previously made with ``transfer``. No hooks fire."""
        self._move(recipient, sender, amount)

    def add_transfer_hook(self, hook: TransferHook) -> None:
        self._hooks.append(hook)

    def remove_transfer_hook(self, hook: TransferHook) -> None:
        self._hooks.remove(hook)

    def _move(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Transfer amount must not be negative, got {amount}")
        balance = self.balance_of(sender)
        if amount > balance:
            raise InsufficientBalance(
                f"{sender} holds {balance} {self.symbol}, cannot send {amount}"
            )
        self._balances[sender] = balance - amount
        self._balances[recipient] = self.balance_of(recipient) + amount

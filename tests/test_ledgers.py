"""Tests for the token ledger and the quote asset ledger."""

import pytest

from reservecurve.errors import InsufficientBalance, ZeroInput
from reservecurve.ledger import QuoteAsset, TokenLedger


@pytest.fixture
def ledger() -> TokenLedger:
    return TokenLedger(max_supply=1_000)


@pytest.fixture
def usdc() -> QuoteAsset:
    asset = QuoteAsset("USDC", decimals=6)
    asset.mint("alice", 1_000)
    return asset


class TestTokenLedgerBalances:
    def test_mint_tracks_supply(self, ledger: TokenLedger) -> None:
        ledger.mint("alice", 100)
        assert ledger.balance_of("alice") == 100
        assert ledger.total_supply == 100

    def test_move(self, ledger: TokenLedger) -> None:
        ledger.mint("alice", 100)
        ledger.move("alice", "bob", 40)
        assert ledger.balance_of("alice") == 60
        assert ledger.balance_of("bob") == 40
        assert ledger.total_supply == 100

    def test_move_above_balance_rejected(self, ledger: TokenLedger) -> None:
        ledger.mint("alice", 10)
        with pytest.raises(InsufficientBalance):
            ledger.move("alice", "bob", 11)

    def test_burn_from(self, ledger: TokenLedger) -> None:
        ledger.mint("alice", 100)
        ledger.burn_from("alice", 30)
        assert ledger.total_supply == 70
        assert ledger.sum_of_balances() == 70

    def test_retire_lowers_ceiling(self, ledger: TokenLedger) -> None:
        ledger.retire(250)
        assert ledger.max_supply == 750

    def test_retire_above_ceiling_rejected(self, ledger: TokenLedger) -> None:
        with pytest.raises(ValueError):
            ledger.retire(1_001)

    def test_holders_skip_empty_accounts(self, ledger: TokenLedger) -> None:
        ledger.mint("alice", 5)
        ledger.mint("bob", 5)
        ledger.burn_from("bob", 5)
        assert dict(ledger.holders()) == {"alice": 5}


class TestTokenLedgerDebts:
    def test_add_and_reduce(self, ledger: TokenLedger) -> None:
        ledger.add_debt("alice", 50)
        assert ledger.reduce_debt("alice", 20) == 20
        assert ledger.debt_of("alice") == 30
        assert ledger.total_debt == 30

    def test_reduce_is_capped(self, ledger: TokenLedger) -> None:
        ledger.add_debt("alice", 50)
        assert ledger.reduce_debt("alice", 80) == 50
        assert ledger.total_debt == 0
        assert ledger.sum_of_debts() == 0


class TestTokenLedgerSnapshot:
    def test_restore_discards_later_writes(self, ledger: TokenLedger) -> None:
        ledger.mint("alice", 100)
        snap = ledger.snapshot()
        ledger.move("alice", "bob", 50)
        ledger.add_debt("alice", 9)
        ledger.retire(10)
        ledger.restore(snap)
        assert ledger.balance_of("alice") == 100
        assert ledger.balance_of("bob") == 0
        assert ledger.total_debt == 0
        assert ledger.max_supply == 1_000


class TestQuoteAsset:
    def test_decimals_above_eighteen_rejected(self) -> None:
        with pytest.raises(ValueError):
            QuoteAsset("BIG", decimals=24)

    def test_mint_zero_rejected(self, usdc: QuoteAsset) -> None:
        with pytest.raises(ZeroInput):
            usdc.mint("bob", 0)

    def test_transfer(self, usdc: QuoteAsset) -> None:
        usdc.transfer("alice", "bob", 400)
        assert usdc.balance_of("alice") == 600
        assert usdc.balance_of("bob") == 400

    def test_transfer_above_balance_rejected(self, usdc: QuoteAsset) -> None:
        with pytest.raises(InsufficientBalance):
            usdc.transfer("alice", "bob", 1_001)

    def test_hooks_see_transfers(self, usdc: QuoteAsset) -> None:
        seen = []
        usdc.add_transfer_hook(lambda s, r, a: seen.append((s, r, a)))
        usdc.transfer("alice", "bob", 1)
        assert seen == [("alice", "bob", 1)]

    def test_failing_hook_reverts_transfer(self, usdc: QuoteAsset) -> None:
        def hook(sender: str, recipient: str, amount: int) -> None:
            raise RuntimeError("receiver refused")

        usdc.add_transfer_hook(hook)
        with pytest.raises(RuntimeError):
            usdc.transfer("alice", "bob", 10)
        assert usdc.balance_of("alice") == 1_000
        assert usdc.balance_of("bob") == 0

    def test_revert_transfer_skips_hooks(self, usdc: QuoteAsset) -> None:
        usdc.transfer("alice", "bob", 10)
        seen = []
        usdc.add_transfer_hook(lambda s, r, a: seen.append(a))
        usdc.revert_transfer("alice", "bob", 10)
        assert seen == []
        assert usdc.balance_of("alice") == 1_000

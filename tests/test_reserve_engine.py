"""Tests for the reserve engine: trading, credit, backing and atomicity."""

import threading

import pytest

from reservecurve.clock import ManualClock
from reservecurve.errors import (
    CollateralLocked,
    CreditLimit,
    DeadlineExpired,
    InsufficientBalance,
    MarketClosed,
    NotAuthorized,
    ReentrancyError,
    SlippageToleranceExceeded,
    ZeroInput,
)
from reservecurve.fees import FeeDistributor
from reservecurve.fixed_point import raw_to_wad
from reservecurve.ledger import QuoteAsset
from reservecurve.models import FeeCategory
from reservecurve.ownership import OwnershipDirectory
from reservecurve.reserve import ReserveEngine

TOKEN = "TOK-1"
SALE = "sale:TOK-1"
MAX_SUPPLY = 10 ** 27          # 1e9 tokens
INITIAL_VIRT = 1_000_000_000   # 1000 USDC
USDC = 10 ** 6


def _make_engine(treasury="treasury", open_market=True, fee_rate_bps=100):
    quote = QuoteAsset("USDC", decimals=6)
    directory = OwnershipDirectory(admin="admin", treasury=treasury)
    directory.register(TOKEN, "owner")
    distributor = FeeDistributor(directory, TOKEN)
    clock = ManualClock(1_000)
    engine = ReserveEngine(
        TOKEN,
        quote,
        initial_virt_quote=INITIAL_VIRT,
        max_supply=MAX_SUPPLY,
        distributor=distributor,
        clock=clock,
        sale_account=SALE,
        fee_rate_bps=fee_rate_bps,
    )
    if open_market:
        engine.open_market(SALE, 0, to=SALE)
    quote.mint("alice", 1_000 * USDC)
    quote.mint("bob", 1_000 * USDC)
    return engine, quote, directory, clock


def _snapshot(engine: ReserveEngine, quote: QuoteAsset, accounts=("alice", "bob", "owner", "treasury")):
    return (
        engine.reserves(),
        {a: (quote.balance_of(a), engine.balance_of(a), engine.debt_of(a)) for a in accounts},
        engine.held_quote(),
    )


class TestMarketGate:
    def test_buy_before_open_rejected(self) -> None:
        engine, _, _, _ = _make_engine(open_market=False)
        with pytest.raises(MarketClosed):
            engine.buy("alice", USDC, 0, to="alice")

    def test_sell_before_open_rejected(self) -> None:
        engine, _, _, _ = _make_engine(open_market=False)
        with pytest.raises(MarketClosed):
            engine.sell("alice", 1, 0, to="alice")

    def test_only_sale_account_opens(self) -> None:
        engine, _, _, _ = _make_engine(open_market=False)
        with pytest.raises(NotAuthorized):
            engine.open_market("alice", 0, to="alice")
        assert not engine.market_open

    def test_opening_buy_is_fee_exempt(self) -> None:
        engine, quote, _, _ = _make_engine(open_market=False)
        quote.mint(SALE, 20 * USDC)
        expected = engine.preview_buy(20 * USDC, charge_fee=False).token_out
        result = engine.open_market(SALE, 20 * USDC, to=SALE)
        assert result.amount_out == expected
        assert result.fee.total == 0
        assert engine.balance_of(SALE) == expected
        assert engine.reserves().reserve_real_quote == raw_to_wad(20 * USDC, 6)
        assert quote.balance_of("treasury") == 0

    def test_open_twice_rejected(self) -> None:
        engine, _, _, _ = _make_engine()
        with pytest.raises(NotAuthorized):
            engine.open_market(SALE, 0, to=SALE)


class TestBuy:
    def test_buy_moves_tokens_and_quote(self) -> None:
        engine, quote, _, _ = _make_engine()
        preview = engine.preview_buy(100 * USDC)
        result = engine.buy("alice", 100 * USDC, 0, to="alice")

        assert result.amount_out == preview.token_out > 0
        assert engine.balance_of("alice") == preview.token_out
        assert quote.balance_of("alice") == 900 * USDC
        reserves = engine.reserves()
        assert reserves.reserve_real_quote == raw_to_wad(99 * USDC, 6)
        assert reserves.reserve_token == MAX_SUPPLY - preview.token_out
        assert reserves.total_supply == preview.token_out

    def test_fee_split_without_provider(self) -> None:
        engine, quote, _, _ = _make_engine()
        result = engine.buy("alice", 100 * USDC, 0, to="alice")
        assert result.fee.total == USDC
        assert quote.balance_of("owner") == 150_000
        assert quote.balance_of("treasury") == 850_000
        assert result.fee.redirected == 0

    def test_fee_split_with_provider(self) -> None:
        engine, quote, _, _ = _make_engine()
        result = engine.buy("alice", 100 * USDC, 0, to="alice", provider="ref")
        assert quote.balance_of("ref") == 150_000
        assert quote.balance_of("owner") == 150_000
        assert quote.balance_of("treasury") == 700_000
        assert result.fee.amount_for(FeeCategory.PROVIDER) == 150_000

    def test_recipient_can_differ_from_payer(self) -> None:
        engine, quote, _, _ = _make_engine()
        engine.buy("alice", 10 * USDC, 0, to="carol")
        assert engine.balance_of("carol") > 0
        assert engine.balance_of("alice") == 0

    def test_buy_raises_market_price(self) -> None:
        engine, _, _, _ = _make_engine()
        before = engine.market_price()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        assert engine.market_price() > before

    def test_zero_buy_rejected(self) -> None:
        engine, _, _, _ = _make_engine()
        with pytest.raises(ZeroInput):
            engine.buy("alice", 0, 0, to="alice")

    def test_buy_above_balance_rejected(self) -> None:
        engine, _, _, _ = _make_engine()
        with pytest.raises(InsufficientBalance):
            engine.buy("alice", 1_001 * USDC, 0, to="alice")

    def test_slippage_rejected_without_state_change(self) -> None:
        engine, quote, _, _ = _make_engine()
        before = _snapshot(engine, quote)
        preview = engine.preview_buy(100 * USDC)
        with pytest.raises(SlippageToleranceExceeded):
            engine.buy("alice", 100 * USDC, preview.token_out + 1, to="alice")
        assert _snapshot(engine, quote) == before

    def test_exact_minimum_accepted(self) -> None:
        engine, _, _, _ = _make_engine()
        preview = engine.preview_buy(100 * USDC)
        result = engine.buy("alice", 100 * USDC, preview.token_out, to="alice")
        assert result.amount_out == preview.token_out


class TestDeadline:
    def test_expired_deadline_rejected(self) -> None:
        engine, quote, _, clock = _make_engine()
        with pytest.raises(DeadlineExpired):
            engine.buy("alice", USDC, 0, to="alice", deadline=clock.now() - 1)
        assert quote.balance_of("alice") == 1_000 * USDC

    def test_deadline_at_now_accepted(self) -> None:
        engine, _, _, clock = _make_engine()
        engine.buy("alice", USDC, 0, to="alice", deadline=clock.now())
        assert engine.balance_of("alice") > 0

    def test_sell_deadline(self) -> None:
        engine, _, _, clock = _make_engine()
        engine.buy("alice", 10 * USDC, 0, to="alice")
        clock.advance(60)
        with pytest.raises(DeadlineExpired):
            engine.sell("alice", 1, 0, to="alice", deadline=clock.now() - 30)


class TestSell:
    def test_sell_pays_quote(self) -> None:
        engine, quote, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        tokens = engine.balance_of("alice")
        preview = engine.preview_sell(tokens // 2)
        before = quote.balance_of("alice")
        result = engine.sell("alice", tokens // 2, 0, to="alice")
        assert result.amount_out == preview.quote_out
        assert quote.balance_of("alice") == before + preview.quote_out
        assert engine.balance_of("alice") == tokens - tokens // 2

    def test_round_trip_never_profits(self) -> None:
        engine, quote, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        result = engine.sell("alice", engine.balance_of("alice"), 0, to="alice")
        assert result.amount_out <= 100 * USDC

    def test_token_fee_minted_to_recipients(self) -> None:
        engine, _, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        tokens = engine.balance_of("alice")
        result = engine.sell("alice", tokens, 0, to="alice", provider="ref")
        fee = result.fee
        assert fee.total == tokens // 100
        assert engine.balance_of("owner") == fee.amount_for(FeeCategory.OWNER)
        assert engine.balance_of("ref") == fee.amount_for(FeeCategory.PROVIDER)
        assert engine.balance_of("treasury") == fee.amount_for(FeeCategory.TREASURY)
        reserves = engine.reserves()
        assert reserves.reserve_token + reserves.total_supply == reserves.max_supply == MAX_SUPPLY

    def test_unclaimed_token_fee_is_retired(self) -> None:
        engine, _, directory, _ = _make_engine(treasury=None)
        engine.distributor.set_owner_fee_status("owner", False)
        engine.buy("alice", 100 * USDC, 0, to="alice")
        tokens = engine.balance_of("alice")
        floor_before = engine.floor_price()
        result = engine.sell("alice", tokens, 0, to="alice")
        assert result.fee.redirected == result.fee.total > 0
        reserves = engine.reserves()
        assert reserves.max_supply == MAX_SUPPLY - result.fee.total
        assert reserves.reserve_token + reserves.total_supply == reserves.max_supply
        assert engine.floor_price() >= floor_before

    def test_zero_sell_rejected(self) -> None:
        engine, _, _, _ = _make_engine()
        with pytest.raises(ZeroInput):
            engine.sell("alice", 0, 0, to="alice")

    def test_sell_above_balance_rejected(self) -> None:
        engine, _, _, _ = _make_engine()
        engine.buy("alice", USDC, 0, to="alice")
        with pytest.raises(InsufficientBalance):
            engine.sell("alice", engine.balance_of("alice") + 1, 0, to="alice")

    def test_slippage_one_unit_above_output(self) -> None:
        engine, quote, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        tokens = engine.balance_of("alice")
        exact = engine.preview_sell(tokens).quote_out
        before = _snapshot(engine, quote)
        with pytest.raises(SlippageToleranceExceeded):
            engine.sell("alice", tokens, exact + 1, to="alice")
        assert _snapshot(engine, quote) == before
        result = engine.sell("alice", tokens, 0, to="alice")
        assert result.amount_out == exact


class TestCredit:
    def test_credit_valued_at_floor(self) -> None:
        engine, _, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        balance = engine.balance_of("alice")
        # floor = 1000 USDC / 1e9 tokens = 1e-6 USDC per token
        assert engine.credit_of("alice") == balance * INITIAL_VIRT // MAX_SUPPLY

    def test_borrow_full_credit_locks_collateral(self) -> None:
        engine, quote, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        credit = engine.credit_of("alice")
        before = quote.balance_of("alice")

        result = engine.borrow("alice", "alice", credit)
        assert result.debt_after == credit
        assert quote.balance_of("alice") == before + credit
        assert engine.credit_of("alice") == 0

        transferable = engine.transferable_of("alice")
        assert transferable < engine.balance_of("alice")
        with pytest.raises(CollateralLocked):
            engine.transfer("alice", "bob", transferable + 1)
        with pytest.raises(CollateralLocked):
            engine.sell("alice", transferable + 1, 0, to="alice")
        with pytest.raises(CollateralLocked):
            engine.burn("alice", transferable + 1)

        if transferable:
            engine.transfer("alice", "bob", transferable)

        engine.repay("alice", "alice", credit)
        assert engine.debt_of("alice") == 0
        assert engine.transferable_of("alice") == engine.balance_of("alice")
        engine.transfer("alice", "bob", engine.balance_of("alice"))

    def test_borrow_above_credit_rejected(self) -> None:
        engine, _, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        with pytest.raises(CreditLimit):
            engine.borrow("alice", "alice", engine.credit_of("alice") + 1)

    def test_borrow_without_tokens_rejected(self) -> None:
        engine, _, _, _ = _make_engine()
        with pytest.raises(CreditLimit):
            engine.borrow("bob", "bob", 1)

    def test_repay_capped_at_debt(self) -> None:
        engine, quote, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        engine.borrow("alice", "alice", 10 * USDC)
        before = quote.balance_of("bob")
        result = engine.repay("bob", "alice", 50 * USDC)
        assert result.amount == 10 * USDC
        assert quote.balance_of("bob") == before - 10 * USDC
        assert engine.reserves().total_debt == 0

    def test_repay_zero_rejected(self) -> None:
        engine, _, _, _ = _make_engine()
        with pytest.raises(ZeroInput):
            engine.repay("alice", "alice", 0)

    def test_borrow_keeps_real_reserve(self) -> None:
        engine, _, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        real = engine.reserves().reserve_real_quote
        engine.borrow("alice", "carol", 5 * USDC)
        assert engine.reserves().reserve_real_quote == real
        assert engine.reserves().total_debt == 5 * USDC


class TestHealAndBurn:
    def test_heal_raises_floor_and_market(self) -> None:
        engine, _, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        before = engine.reserves()
        result = engine.heal("bob", 10 * USDC)
        after = engine.reserves()

        assert after.reserve_real_quote == before.reserve_real_quote + raw_to_wad(10 * USDC, 6)
        expected_virt = raw_to_wad(10 * USDC, 6) * before.reserve_token // before.total_supply
        assert result.virt_increase == expected_virt
        assert after.reserve_virt_quote == before.reserve_virt_quote + expected_virt
        assert after.floor_price > before.floor_price
        assert after.market_price >= before.market_price

    def test_heal_with_nothing_issued_raises_floor(self) -> None:
        engine, _, _, _ = _make_engine()
        before = engine.reserves()
        assert before.total_supply == 0
        result = engine.heal("bob", 100 * USDC)
        after = engine.reserves()

        assert result.virt_increase == raw_to_wad(100 * USDC, 6)
        assert after.floor_price > before.floor_price
        assert after.market_price >= before.market_price
        engine.check_invariants()

        engine.buy("alice", 50 * USDC, 0, to="alice")
        engine.sell("alice", engine.balance_of("alice"), 0, to="alice")
        engine.check_invariants()

    def test_heal_zero_rejected(self) -> None:
        engine, _, _, _ = _make_engine()
        with pytest.raises(ZeroInput):
            engine.heal("bob", 0)

    def test_burn_shrinks_ceiling(self) -> None:
        engine, _, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        before = engine.reserves()
        amount = engine.balance_of("alice") // 4
        result = engine.burn("alice", amount)
        after = engine.reserves()
        assert result.max_supply_after == MAX_SUPPLY - amount
        assert after.total_supply == before.total_supply - amount
        assert after.reserve_token == before.reserve_token
        assert after.market_price == before.market_price
        assert after.floor_price > before.floor_price

    def test_burn_zero_rejected(self) -> None:
        engine, _, _, _ = _make_engine()
        with pytest.raises(ZeroInput):
            engine.burn("alice", 0)


class TestTransfer:
    def test_transfer(self) -> None:
        engine, _, _, _ = _make_engine()
        engine.buy("alice", USDC, 0, to="alice")
        amount = engine.balance_of("alice")
        engine.transfer("alice", "bob", amount)
        assert engine.balance_of("bob") == amount

    def test_transfer_zero_rejected(self) -> None:
        engine, _, _, _ = _make_engine()
        with pytest.raises(ZeroInput):
            engine.transfer("alice", "bob", 0)

    def test_transfer_above_balance_rejected(self) -> None:
        engine, _, _, _ = _make_engine()
        with pytest.raises(InsufficientBalance):
            engine.transfer("alice", "bob", 1)


class TestAtomicity:
    def test_reentrant_buy_rejected_and_rolled_back(self) -> None:
        engine, quote, _, _ = _make_engine()
        before = _snapshot(engine, quote)

        def hook(sender: str, recipient: str, amount: int) -> None:
            if recipient == engine.account:
                engine.buy("bob", USDC, 0, to="bob")

        quote.add_transfer_hook(hook)
        with pytest.raises(ReentrancyError):
            engine.buy("alice", 10 * USDC, 0, to="alice")
        quote.remove_transfer_hook(hook)

        assert _snapshot(engine, quote) == before
        assert not engine.in_flight

    def test_reentrant_borrow_from_payout_rejected(self) -> None:
        engine, quote, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        before = _snapshot(engine, quote)

        def hook(sender: str, recipient: str, amount: int) -> None:
            if sender == engine.account and recipient == "alice":
                engine.borrow("alice", "alice", 1)

        quote.add_transfer_hook(hook)
        with pytest.raises(ReentrancyError):
            engine.sell("alice", engine.balance_of("alice") // 2, 0, to="alice")
        quote.remove_transfer_hook(hook)
        assert _snapshot(engine, quote) == before

    def test_failed_fee_payment_undoes_earlier_payments(self) -> None:
        engine, quote, _, _ = _make_engine()
        before = _snapshot(engine, quote)

        def hook(sender: str, recipient: str, amount: int) -> None:
            if recipient == "treasury":
                raise RuntimeError("treasury rejects funds")

        quote.add_transfer_hook(hook)
        with pytest.raises(RuntimeError):
            engine.buy("alice", 100 * USDC, 0, to="alice")
        quote.remove_transfer_hook(hook)

        assert _snapshot(engine, quote) == before
        assert quote.balance_of("owner") == 0

    def test_invariants_hold_after_mixed_operations(self) -> None:
        engine, _, _, _ = _make_engine()
        engine.buy("alice", 300 * USDC, 0, to="alice", provider="ref")
        engine.borrow("alice", "alice", 50 * USDC)
        engine.heal("bob", 3 * USDC)
        engine.sell("alice", engine.transferable_of("alice") // 2, 0, to="alice")
        engine.burn("alice", engine.transferable_of("alice") // 3)
        engine.check_invariants()
        reserves = engine.reserves()
        assert reserves.reserve_token + reserves.total_supply >= reserves.max_supply
        held = raw_to_wad(engine.held_quote(), 6) + raw_to_wad(reserves.total_debt, 6)
        assert held >= reserves.reserve_real_quote
        value = engine.floor_value_of(engine.balance_of("alice"))
        assert raw_to_wad(engine.debt_of("alice"), 6) <= value
        assert reserves.market_price >= reserves.floor_price > 0


class TestConcurrency:
    def test_waiting_buy_prices_against_the_committed_state(self) -> None:
        engine, quote, _, _ = _make_engine()
        inside = threading.Event()
        release = threading.Event()

        def hold(sender: str, recipient: str, amount: int) -> None:
            if sender == "alice" and recipient == engine.account:
                inside.set()
                release.wait(5)

        quote.add_transfer_hook(hold)
        first = threading.Thread(target=engine.buy, args=("alice", 1_000 * USDC, 0, "alice"))
        first.start()
        assert inside.wait(5)

        outcome = {}

        def second_buy() -> None:
            try:
                outcome["result"] = engine.buy("bob", 1_000 * USDC, 0, to="bob")
            except Exception as exc:
                outcome["error"] = exc

        second = threading.Thread(target=second_buy)
        second.start()
        second.join(0.2)
        assert second.is_alive()
        release.set()
        first.join(5)
        second.join(5)
        quote.remove_transfer_hook(hold)

        serial, _, _, _ = _make_engine()
        serial.buy("alice", 1_000 * USDC, 0, to="alice")
        expected = serial.buy("bob", 1_000 * USDC, 0, to="bob")

        assert "error" not in outcome
        assert outcome["result"].amount_out == expected.amount_out
        assert engine.balance_of("bob") == serial.balance_of("bob")
        assert engine.reserves() == serial.reserves()
        engine.check_invariants()

    def test_waiting_borrow_sees_the_committed_debt(self) -> None:
        engine, quote, _, _ = _make_engine()
        engine.buy("alice", 100 * USDC, 0, to="alice")
        credit = engine.credit_of("alice")
        inside = threading.Event()
        release = threading.Event()

        def hold(sender: str, recipient: str, amount: int) -> None:
            if sender == engine.account and recipient == "alice":
                inside.set()
                release.wait(5)

        quote.add_transfer_hook(hold)
        first = threading.Thread(target=engine.borrow, args=("alice", "alice", credit))
        first.start()
        assert inside.wait(5)

        errors = []

        def second_borrow() -> None:
            try:
                engine.borrow("alice", "carol", credit)
            except CreditLimit as exc:
                errors.append(exc)

        second = threading.Thread(target=second_borrow)
        second.start()
        second.join(0.2)
        assert second.is_alive()
        release.set()
        first.join(5)
        second.join(5)
        quote.remove_transfer_hook(hold)

        assert len(errors) == 1
        assert engine.debt_of("alice") == credit
        assert quote.balance_of("carol") == 0

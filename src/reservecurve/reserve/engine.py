"""Reserve engine: bonding-curve trading and floor-valued credit.

One engine per token instance. It owns the curve reserves and the token
ledger, holds the real quote under its own account on the shared quote
asset, and enforces after every mutation:

1. reserve_real_quote >= 0 and held quote + total debt >= reserve_real_quote
2. reserve_token + total_supply >= max_supply
3. (virt + real) * reserve_token >= virt * (reserve_token + total_supply)
4. total_debt == sum of account debts
5. every debtor's balance at floor price covers its debt

Each public method validates and commits inside one pass of the operation
guard, so checks always see the state they commit against. A breach of
1-4 raises InvariantViolation, of 5 raises CollateralRequirement; either way
the guard restores the prior state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from reservecurve.clock import Clock
from reservecurve.errors import (
    CollateralLocked,
    CollateralRequirement,
    CreditLimit,
    DeadlineExpired,
    InsufficientBalance,
    InvariantViolation,
    MarketClosed,
    NotAuthorized,
    SlippageToleranceExceeded,
    ZeroInput,
)
from reservecurve.fixed_point import (
    BPS_DIVISOR,
    bps_of,
    mul_div,
    mul_div_up,
    raw_to_wad,
    wad_to_raw,
)
from reservecurve.ledger.quote_asset import QuoteAsset
from reservecurve.ledger.token_ledger import TokenLedger
from reservecurve.models.reserve import (
    NO_FEE_QUOTE,
    BurnResult,
    CreditResult,
    HealResult,
    ReserveSnapshot,
    ReserveState,
    TradeResult,
    TradeSide,
    TransferResult,
)
from reservecurve.reserve import curve
from reservecurve.reserve.guard import OperationGuard, Transaction

if TYPE_CHECKING:
    from reservecurve.fees.distributor import FeeDistributor

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuyPreview:
    quote_in: int
    fee: int
    net_quote_wad: int
    token_out: int


@dataclass(frozen=True)
class SellPreview:
    token_in: int
    fee: int
    net_token: int
    quote_out_wad: int
    quote_out: int


class ReserveEngine:
    """Curve, ledger and credit line for one token instance.

    Usage:
        engine = ReserveEngine("tok-1", usdc, initial_virt_quote=1_000_000_000,
                               max_supply=10**27, distributor=distributor,
                               clock=clock, sale_account="sale:tok-1")
        engine.open_market("sale:tok-1", 20_000_000, to="sale:tok-1")
        engine.buy("alice", 5_000_000, min_token_out=0, to="alice")
    """

    def __init__(
        self,
        token_id: str,
        quote: QuoteAsset,
        initial_virt_quote: int,
        max_supply: int,
        distributor: FeeDistributor,
        clock: Clock,
        sale_account: str,
        fee_rate_bps: int = 100,
    ) -> None:
        if initial_virt_quote <= 0:
            raise ValueError("Initial virtual quote reserve must be positive")
        if not 0 <= fee_rate_bps < BPS_DIVISOR:
            raise ValueError(f"Fee rate must be within [0, {BPS_DIVISOR}), got {fee_rate_bps}")
        self.token_id = token_id
        self.quote = quote
        self.fee_rate_bps = fee_rate_bps
        self.sale_account = sale_account
        self.account = f"engine:{token_id}"
        self._distributor = distributor
        self._clock = clock
        self._ledger = TokenLedger(max_supply)
        self._state = ReserveState(
            reserve_real_quote=0,
            reserve_virt_quote=raw_to_wad(initial_virt_quote, quote.decimals),
            reserve_token=max_supply,
        )
        self._guard = OperationGuard(f"engine {token_id}")
        self._opening: Optional[TradeResult] = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def market_open(self) -> bool:
        return self._state.market_open

    @property
    def in_flight(self) -> bool:
        return self._guard.in_flight

    @property
    def distributor(self) -> FeeDistributor:
        return self._distributor

    @property
    def opening(self) -> Optional[TradeResult]:
        """The committed opening buy, once the market is open."""
        return self._opening

    def balance_of(self, account: str) -> int:
        return self._ledger.balance_of(account)

    def debt_of(self, account: str) -> int:
        return self._ledger.debt_of(account)

    def holders(self):
        return self._ledger.holders()

    def debtors(self):
        return self._ledger.debtors()

    def market_price(self) -> int:
        s = self._state
        return curve.market_price(s.reserve_virt_quote + s.reserve_real_quote, s.reserve_token)

    def floor_price(self) -> int:
        return curve.floor_price(self._state.reserve_virt_quote, self._ledger.max_supply)

    def reserves(self) -> ReserveSnapshot:
        s = self._state
        return ReserveSnapshot(
            reserve_real_quote=s.reserve_real_quote,
            reserve_virt_quote=s.reserve_virt_quote,
            reserve_token=s.reserve_token,
            total_supply=self._ledger.total_supply,
            max_supply=self._ledger.max_supply,
            total_debt=self._ledger.total_debt,
            market_price=self.market_price(),
            floor_price=self.floor_price(),
            market_open=s.market_open,
        )

    def held_quote(self) -> int:
        return self.quote.balance_of(self.account)

    def floor_value_of(self, token_amount: int) -> int:
        """Wad quote value of ``token_amount`` at the floor price."""
        return mul_div(token_amount, self._state.reserve_virt_quote, self._ledger.max_supply)

    def credit_of(self, account: str) -> int:
        """Raw quote the account may still borrow against its balance."""
        capacity = wad_to_raw(
            self.floor_value_of(self._ledger.balance_of(account)), self.quote.decimals
        )
        return max(0, capacity - self._ledger.debt_of(account))

    def required_collateral_of(self, account: str) -> int:
        """Tokens that must stay in the account to back its debt."""
        debt = self._ledger.debt_of(account)
        if debt == 0:
            return 0
        return mul_div_up(
            raw_to_wad(debt, self.quote.decimals),
            self._ledger.max_supply,
            self._state.reserve_virt_quote,
        )

    def transferable_of(self, account: str) -> int:
        return max(0, self._ledger.balance_of(account) - self.required_collateral_of(account))

    def preview_buy(self, quote_in: int, charge_fee: bool = True) -> BuyPreview:
        """Fee split and curve output for a buy, without mutating anything."""
        fee = bps_of(quote_in, self.fee_rate_bps) if charge_fee else 0
        net_wad = raw_to_wad(quote_in - fee, self.quote.decimals)
        s = self._state
        token_out = curve.token_out_for_quote_in(
            s.reserve_virt_quote + s.reserve_real_quote, s.reserve_token, net_wad
        )
        return BuyPreview(quote_in=quote_in, fee=fee, net_quote_wad=net_wad, token_out=token_out)

    def preview_sell(self, token_in: int) -> SellPreview:
        fee = bps_of(token_in, self.fee_rate_bps)
        net = token_in - fee
        s = self._state
        out_wad = curve.quote_out_for_token_in(
            s.reserve_virt_quote + s.reserve_real_quote, s.reserve_token, net
        )
        return SellPreview(
            token_in=token_in,
            fee=fee,
            net_token=net,
            quote_out_wad=out_wad,
            quote_out=wad_to_raw(out_wad, self.quote.decimals),
        )

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    def open_market(self, caller: str, quote_in: int, to: str) -> TradeResult:
        """Single fee-exempt buy that converts the sale pot and opens trading.

        Only the sale account may call this, and only once.
        """
        with self._guard.atomic(self._state, self._ledger) as tx:
            if caller != self.sale_account:
                raise NotAuthorized(f"{caller} may not open the market for {self.token_id}")
            if self._state.market_open:
                raise NotAuthorized(f"Market for {self.token_id} is already open")
            if quote_in < 0:
                raise ZeroInput(f"Opening quote must not be negative, got {quote_in}")
            preview = self.preview_buy(quote_in, charge_fee=False)
            if quote_in > 0:
                self._pull_quote(tx, caller, quote_in)
                self._apply_buy(preview, to)
            self._state.market_open = True
            self.check_invariants()
            result = self._trade_result(
                TradeSide.BUY, caller, to, quote_in, preview.token_out, NO_FEE_QUOTE
            )
            self._opening = result

        log.info(
            "Market opened for %s: %d quote in, %d tokens out",
            self.token_id, quote_in, preview.token_out,
        )
        return result

    def buy(
        self,
        caller: str,
        quote_in: int,
        min_token_out: int,
        to: str,
        provider: Optional[str] = None,
        deadline: Optional[int] = None,
    ) -> TradeResult:
        """Spend ``quote_in`` raw quote on tokens for ``to``."""
        with self._guard.atomic(self._state, self._ledger) as tx:
            self._check_deadline(deadline)
            self._require_open()
            if quote_in <= 0:
                raise ZeroInput(f"Buy amount must be positive, got {quote_in}")
            preview = self.preview_buy(quote_in)
            if preview.token_out < min_token_out:
                raise SlippageToleranceExceeded(
                    f"Buy yields {preview.token_out} tokens, below minimum {min_token_out}"
                )
            if self.quote.balance_of(caller) < quote_in:
                raise InsufficientBalance(
                    f"{caller} holds {self.quote.balance_of(caller)} {self.quote.symbol}, "
                    f"cannot pay {quote_in}"
                )
            self._pull_quote(tx, caller, quote_in)
            self._apply_buy(preview, to)
            fee = self._distributor.route_quote_fee(self, tx, preview.fee, provider)
            self.check_invariants()
            result = self._trade_result(
                TradeSide.BUY, caller, to, quote_in, preview.token_out, fee
            )

        log.debug(
            "Buy on %s: %s paid %d, %s received %d tokens",
            self.token_id, caller, quote_in, to, preview.token_out,
        )
        return result

    def sell(
        self,
        caller: str,
        token_in: int,
        min_quote_out: int,
        to: str,
        provider: Optional[str] = None,
        deadline: Optional[int] = None,
    ) -> TradeResult:
        """Sell ``token_in`` tokens from ``caller`` for raw quote paid to ``to``."""
        with self._guard.atomic(self._state, self._ledger) as tx:
            self._check_deadline(deadline)
            self._require_open()
            if token_in <= 0:
                raise ZeroInput(f"Sell amount must be positive, got {token_in}")
            self._require_movable(caller, token_in)
            preview = self.preview_sell(token_in)
            if preview.quote_out < min_quote_out:
                raise SlippageToleranceExceeded(
                    f"Sell yields {preview.quote_out} {self.quote.symbol}, "
                    f"below minimum {min_quote_out}"
                )
            self._ledger.burn_from(caller, token_in)
            self._state.reserve_token += preview.net_token
            self._state.reserve_real_quote -= preview.quote_out_wad
            fee = self._distributor.route_token_fee(self, preview.fee, provider)
            self._pay_quote(tx, to, preview.quote_out)
            self.check_invariants()
            result = self._trade_result(
                TradeSide.SELL, caller, to, token_in, preview.quote_out, fee
            )

        log.debug(
            "Sell on %s: %s sold %d tokens, %s received %d",
            self.token_id, caller, token_in, to, preview.quote_out,
        )
        return result

    # ------------------------------------------------------------------
    # Credit
    # ------------------------------------------------------------------

    def borrow(self, caller: str, to: str, amount: int) -> CreditResult:
        """Borrow raw quote against the caller's balance at floor price."""
        with self._guard.atomic(self._state, self._ledger) as tx:
            if amount <= 0:
                raise ZeroInput(f"Borrow amount must be positive, got {amount}")
            credit = self.credit_of(caller)
            if amount > credit:
                raise CreditLimit(f"{caller} may borrow at most {credit}, requested {amount}")
            self._ledger.add_debt(caller, amount)
            self._pay_quote(tx, to, amount)
            self.check_invariants()
            result = CreditResult(
                account=caller,
                counterparty=to,
                amount=amount,
                debt_after=self._ledger.debt_of(caller),
                total_debt_after=self._ledger.total_debt,
            )

        log.debug("Borrow on %s: %s drew %d for %s", self.token_id, caller, amount, to)
        return result

    def repay(self, caller: str, account: str, amount: int) -> CreditResult:
        """Pay down ``account``'s debt from ``caller``. Capped at what is owed."""
        with self._guard.atomic(self._state, self._ledger) as tx:
            if amount <= 0:
                raise ZeroInput(f"Repay amount must be positive, got {amount}")
            cleared = min(amount, self._ledger.debt_of(account))
            if self.quote.balance_of(caller) < cleared:
                raise InsufficientBalance(
                    f"{caller} holds {self.quote.balance_of(caller)} {self.quote.symbol}, "
                    f"cannot repay {cleared}"
                )
            if cleared:
                self._pull_quote(tx, caller, cleared)
                self._ledger.reduce_debt(account, cleared)
            self.check_invariants()
            result = CreditResult(
                account=account,
                counterparty=caller,
                amount=cleared,
                debt_after=self._ledger.debt_of(account),
                total_debt_after=self._ledger.total_debt,
            )

        log.debug("Repay on %s: %s cleared %d of %s's debt", self.token_id, caller, cleared, account)
        return result

    # ------------------------------------------------------------------
    # Backing
    # ------------------------------------------------------------------

    def heal(self, caller: str, amount: int) -> HealResult:
        """Donate raw quote to the reserve, raising floor and market price."""
        with self._guard.atomic(self._state, self._ledger) as tx:
            if amount <= 0:
                raise ZeroInput(f"Heal amount must be positive, got {amount}")
            if self.quote.balance_of(caller) < amount:
                raise InsufficientBalance(
                    f"{caller} holds {self.quote.balance_of(caller)} {self.quote.symbol}, "
                    f"cannot heal {amount}"
                )
            self._pull_quote(tx, caller, amount)
            virt_increase = self._absorb_quote(amount)
            self.check_invariants()
            result = HealResult(
                account=caller,
                amount=amount,
                virt_increase=virt_increase,
                market_price=self.market_price(),
                floor_price=self.floor_price(),
            )

        log.debug("Heal on %s: %s added %d", self.token_id, caller, amount)
        return result

    def burn(self, caller: str, amount: int) -> BurnResult:
        """Destroy tokens and lower the issuable ceiling by the same amount."""
        with self._guard.atomic(self._state, self._ledger):
            if amount <= 0:
                raise ZeroInput(f"Burn amount must be positive, got {amount}")
            self._require_movable(caller, amount)
            self._ledger.burn_from(caller, amount)
            self._ledger.retire(amount)
            self.check_invariants()
            result = BurnResult(
                account=caller,
                amount=amount,
                max_supply_after=self._ledger.max_supply,
                floor_price=self.floor_price(),
            )

        log.debug("Burn on %s: %s destroyed %d", self.token_id, caller, amount)
        return result

    def transfer(self, caller: str, to: str, amount: int) -> TransferResult:
        with self._guard.atomic(self._state, self._ledger):
            if amount <= 0:
                raise ZeroInput(f"Transfer amount must be positive, got {amount}")
            self._require_movable(caller, amount)
            self._ledger.move(caller, to, amount)
            self.check_invariants()

        return TransferResult(sender=caller, recipient=to, amount=amount)

    # ------------------------------------------------------------------
    # Fee routing hooks (called by the distributor inside an operation)
    # ------------------------------------------------------------------

    def pay_fee_quote(self, tx: Transaction, recipient: str, amount: int) -> None:
        self._pay_quote(tx, recipient, amount)

    def absorb_fee_quote(self, amount: int) -> int:
        return self._absorb_quote(amount)

    def mint_fee_tokens(self, recipient: str, amount: int) -> None:
        self._ledger.mint(recipient, amount)

    def retire_fee_tokens(self, amount: int) -> None:
        self._ledger.retire(amount)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_buy(self, preview: BuyPreview, to: str) -> None:
        self._state.reserve_real_quote += preview.net_quote_wad
        self._state.reserve_token -= preview.token_out
        self._ledger.mint(to, preview.token_out)

    def _absorb_quote(self, amount: int) -> int:
        """Fold raw quote already held by the engine into the reserve.

        Real reserve grows by the full amount; virtual reserve grows by the
        amount scaled by reserve_token / total_supply, or by the full amount
        while nothing is issued. Returns that increase.
        """
        wad = raw_to_wad(amount, self.quote.decimals)
        supply = self._ledger.total_supply
        if supply:
            virt_increase = mul_div(wad, self._state.reserve_token, supply)
        else:
            # reserve_token == max_supply here, so floor backing holds for any increase
            virt_increase = wad
        self._state.reserve_real_quote += wad
        self._state.reserve_virt_quote += virt_increase
        return virt_increase

    def _pull_quote(self, tx: Transaction, sender: str, amount: int) -> None:
        self.quote.transfer(sender, self.account, amount)
        tx.on_rollback(lambda: self.quote.revert_transfer(sender, self.account, amount))

    def _pay_quote(self, tx: Transaction, recipient: str, amount: int) -> None:
        if amount == 0:
            return
        self.quote.transfer(self.account, recipient, amount)
        tx.on_rollback(lambda: self.quote.revert_transfer(self.account, recipient, amount))

    def _require_open(self) -> None:
        if not self._state.market_open:
            raise MarketClosed(f"Market for {self.token_id} has not opened")

    def _check_deadline(self, deadline: Optional[int]) -> None:
        if deadline is None:
            return
        now = self._clock.now()
        if now > deadline:
            raise DeadlineExpired(f"Deadline {deadline} passed at {now}")

    def _require_movable(self, account: str, amount: int) -> None:
        balance = self._ledger.balance_of(account)
        if amount > balance:
            raise InsufficientBalance(f"{account} holds {balance}, cannot move {amount}")
        transferable = self.transferable_of(account)
        if amount > transferable:
            raise CollateralLocked(
                f"{account} may move at most {transferable} tokens while debt is outstanding"
            )

    def _trade_result(self, side, account, recipient, amount_in, amount_out, fee) -> TradeResult:
        return TradeResult(
            side=side,
            account=account,
            recipient=recipient,
            amount_in=amount_in,
            amount_out=amount_out,
            fee=fee,
            market_price=self.market_price(),
            floor_price=self.floor_price(),
        )

    def check_invariants(self) -> None:
        s = self._state
        ledger = self._ledger
        decimals = self.quote.decimals

        if s.reserve_real_quote < 0:
            raise InvariantViolation(f"Real reserve negative: {s.reserve_real_quote}")
        held = raw_to_wad(self.held_quote(), decimals) + raw_to_wad(ledger.total_debt, decimals)
        if held < s.reserve_real_quote:
            raise InvariantViolation(
                f"Held quote plus debt {held} below real reserve {s.reserve_real_quote}"
            )
        if s.reserve_token + ledger.total_supply < ledger.max_supply:
            raise InvariantViolation("Token reserve plus supply below max supply")
        q = s.reserve_virt_quote + s.reserve_real_quote
        if q * s.reserve_token < s.reserve_virt_quote * (s.reserve_token + ledger.total_supply):
            raise InvariantViolation("Floor backing under-collateralized")
        if ledger.total_debt != ledger.sum_of_debts():
            raise InvariantViolation("Total debt does not match account debts")
        if ledger.total_supply != ledger.sum_of_balances():
            raise InvariantViolation("Total supply does not match account balances")

        for account, debt in ledger.debtors():
            value = self.floor_value_of(ledger.balance_of(account))
            if raw_to_wad(debt, decimals) > value:
                raise CollateralRequirement(
                    f"{account} debt {debt} exceeds floor value of its balance"
                )

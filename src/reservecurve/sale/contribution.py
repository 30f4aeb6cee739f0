"""Contribution sale: fixed window, batched opening buy, pro-rata redemption.

Lifecycle:
1. OPEN: accounts contribute quote until the window end (inclusive).
2. After the window, the first ``redeem`` or ``open_market`` converts the
   whole pot into tokens with one fee-exempt buy and flips the sale to
   MARKET_OPEN. Every contributor gets the same entry price.
3. Each contributor redeems total_tokens * contribution // total_contributed
   once; the contribution is zeroed so a replay fails NothingToRedeem.
"""

from __future__ import annotations

import logging
from typing import Optional

from reservecurve.clock import Clock
from reservecurve.errors import (
    InsufficientBalance,
    NotEligible,
    NothingToRedeem,
    SaleClosed,
    SaleConcluded,
    SaleInProgress,
    ZeroInput,
)
from reservecurve.fixed_point import mul_div
from reservecurve.ledger.quote_asset import QuoteAsset
from reservecurve.models.sale import (
    AccountPhase,
    ContributionReceipt,
    MarketOpening,
    Redemption,
    SalePhase,
    SaleRecord,
)
from reservecurve.reserve.engine import ReserveEngine
from reservecurve.reserve.guard import OperationGuard

log = logging.getLogger(__name__)

DEFAULT_SALE_DURATION_SECONDS = 7200


class ContributionSale:
    """Pre-market sale for one token instance.

    Usage:
        sale = ContributionSale(record, engine, usdc, clock)
        sale.contribute("alice", "alice", 10_000_000)
        clock.advance(7201)
        sale.redeem("alice")
    """

    def __init__(
        self,
        record: SaleRecord,
        engine: ReserveEngine,
        quote: QuoteAsset,
        clock: Clock,
    ) -> None:
        if record.quote_symbol != quote.symbol:
            raise ValueError(
                f"Sale quotes {record.quote_symbol} but engine trades {quote.symbol}"
            )
        self.record = record
        self.engine = engine
        self.quote = quote
        self._clock = clock
        self._guard = OperationGuard(f"sale {record.token_id}")

    @property
    def account(self) -> str:
        """Account that holds the pot and the opening batch."""
        return self.engine.sale_account

    @property
    def token_id(self) -> str:
        return self.record.token_id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def phase(self, now: Optional[int] = None) -> SalePhase:
        """Effective phase: OPEN reads as CLOSED once the window elapsed."""
        now = self._clock.now() if now is None else now
        if self.record.phase == SalePhase.OPEN and now > self.record.end_timestamp:
            return SalePhase.CLOSED
        return self.record.phase

    def contribution_of(self, account: str) -> int:
        return self.record.contribution_of(account)

    def redeemable_of(self, account: str) -> int:
        """Tokens the account would receive. Estimated until the market opens."""
        contribution = self.record.contribution_of(account)
        total = self.record.total_quote_contributed
        if contribution == 0 or total == 0:
            return 0
        if self.record.ended:
            batch = self.record.total_tokens_from_opening
        else:
            batch = self.engine.preview_buy(total, charge_fee=False).token_out
        return mul_div(batch, contribution, total)

    def account_phase(self, account: str, now: Optional[int] = None) -> AccountPhase:
        phase = self.phase(now)
        pending = self.record.contribution_of(account) > 0
        if phase == SalePhase.OPEN:
            return AccountPhase.PENDING
        if pending:
            return AccountPhase.REDEEMABLE
        if phase == SalePhase.MARKET_OPEN:
            return AccountPhase.MARKET
        return AccountPhase.PENDING

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def contribute(self, caller: str, to: str, amount: int) -> ContributionReceipt:
        """Pull ``amount`` raw quote from ``caller`` and credit it to ``to``."""
        with self._guard.atomic(self.record) as tx:
            if amount <= 0:
                raise ZeroInput(f"Contribution must be positive, got {amount}")
            now = self._clock.now()
            if self.record.ended:
                raise SaleClosed(f"Sale for {self.token_id} has ended")
            if now > self.record.end_timestamp:
                raise SaleClosed(
                    f"Sale for {self.token_id} closed at {self.record.end_timestamp}"
                )
            if self.quote.balance_of(caller) < amount:
                raise InsufficientBalance(
                    f"{caller} holds {self.quote.balance_of(caller)} {self.quote.symbol}, "
                    f"cannot contribute {amount}"
                )
            self.quote.transfer(caller, self.account, amount)
            tx.on_rollback(lambda: self.quote.revert_transfer(caller, self.account, amount))
            self.record.contributions[to] = self.record.contribution_of(to) + amount
            self.record.total_quote_contributed += amount
            receipt = ContributionReceipt(
                token_id=self.token_id,
                payer=caller,
                account=to,
                amount=amount,
                account_total=self.record.contribution_of(to),
                total_contributed=self.record.total_quote_contributed,
            )

        log.debug("Contribution to %s: %s credited %s with %d", self.token_id, caller, to, amount)
        return receipt

    def open_market(self, caller: str) -> MarketOpening:
        """Explicitly open the market once the window has elapsed."""
        with self._guard.atomic(self.record):
            now = self._clock.now()
            if self.record.ended:
                raise SaleConcluded(f"Market for {self.token_id} is already open")
            if now <= self.record.end_timestamp:
                raise SaleInProgress(
                    f"Sale for {self.token_id} runs until {self.record.end_timestamp}"
                )
            return self._open(caller, now)

    def redeem(self, account: str) -> Redemption:
        """Pay ``account`` its share of the opening batch, opening first if needed."""
        with self._guard.atomic(self.record):
            now = self._clock.now()
            if not self.record.ended and now <= self.record.end_timestamp:
                raise NotEligible(
                    f"Sale for {self.token_id} runs until {self.record.end_timestamp}"
                )
            contribution = self.record.contribution_of(account)
            if contribution == 0:
                raise NothingToRedeem(f"{account} has nothing to redeem from {self.token_id}")
            opening = None
            if not self.record.ended:
                opening = self._open(account, now)
            amount = mul_div(
                self.record.total_tokens_from_opening,
                contribution,
                self.record.total_quote_contributed,
            )
            self.record.contributions[account] = 0
            if amount:
                self.engine.transfer(self.account, account, amount)

        log.debug("Redemption on %s: %s received %d tokens", self.token_id, account, amount)
        return Redemption(
            token_id=self.token_id,
            account=account,
            contribution=contribution,
            token_amount=amount,
            opening=opening,
        )

    def _open(self, caller: str, now: int) -> MarketOpening:
        total = self.record.total_quote_contributed
        self.record.transition_to(SalePhase.MARKET_OPEN)
        trade = self.engine.opening
        if trade is None:
            trade = self.engine.open_market(self.account, total, to=self.account)
        else:
            # an earlier redeem opened the engine, then failed and rolled this record back
            log.warning("Engine for %s already open, adopting its opening batch", self.token_id)
        self.record.total_tokens_from_opening = trade.amount_out
        self.record.opened_timestamp = now
        log.info(
            "Sale for %s concluded: %d quote converted into %d tokens",
            self.token_id, total, trade.amount_out,
        )
        return MarketOpening(
            token_id=self.token_id,
            opened_by=caller,
            total_quote_contributed=total,
            total_tokens_from_opening=trade.amount_out,
            market_price=trade.market_price,
            floor_price=trade.floor_price,
            timestamp=now,
        )

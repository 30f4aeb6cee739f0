"""Service layer: creates token instances and routes every public operation.

Protocol failures come back as data: each method returns a ServiceResult
whose ``code`` is the stable error identifier, so callers (CLI, routers,
simulations) branch on it without catching exceptions. Successful state
changes append hashed records to the event log when one is attached.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

from reservecurve.clock import Clock, MonotonicClock
from reservecurve.errors import ProtocolError, UnknownToken
from reservecurve.fees.distributor import FeeDistributor
from reservecurve.ledger.quote_asset import QuoteAsset
from reservecurve.models.reserve import (
    AccountView,
    FeeAsset,
    FeeBreakdown,
    TokenView,
    TradeResult,
)
from reservecurve.models.sale import MarketOpening, SaleRecord
from reservecurve.ownership import OwnershipDirectory
from reservecurve.persistence.event_log import EventKind, EventLog, EventRecord
from reservecurve.policy.resolver import PolicyResolver
from reservecurve.reserve.engine import ReserveEngine
from reservecurve.reserve.quoting import QuoteHelper
from reservecurve.sale.contribution import ContributionSale

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    code: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenInstance:
    """Everything wired together for one token."""
    token_id: str
    name: str
    symbol: str
    creator: str
    quote: QuoteAsset
    engine: ReserveEngine
    distributor: FeeDistributor
    sale: ContributionSale
    quotes: QuoteHelper


class ProtocolService:
    """Protocol facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = ProtocolService(resolver, clock=ManualClock(0))

        service.fund("alice", "USDC", 10_000_000)
        token_id = service.create_token(
            "owner", "Example", "EXM", "USDC", initial_virt_quote=1_000_000_000,
        ).data["token_id"]
        service.contribute(token_id, "alice", 10_000_000)
        # ... window elapses ...
        service.redeem(token_id, "alice")
        service.buy(token_id, "alice", 1_000_000)

    Persistence (optional):
        service = ProtocolService(resolver, event_log=EventLog(path))
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        event_log: Optional[EventLog] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._resolver = resolver
        self._event_log = event_log
        self._clock = clock or MonotonicClock()
        self._fees = resolver.fee_policy()
        self._directory = OwnershipDirectory(
            admin=resolver.protocol_admin(),
            treasury=resolver.treasury(),
        )
        self._quote_assets: dict[str, QuoteAsset] = {
            policy.symbol: QuoteAsset(policy.symbol, policy.decimals)
            for policy in resolver.quote_assets()
        }
        self._tokens: dict[str, TokenInstance] = {}
        self._event_counter = event_log.count if event_log is not None else 0

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def directory(self) -> OwnershipDirectory:
        return self._directory

    @property
    def event_log(self) -> Optional[EventLog]:
        return self._event_log

    def token_ids(self) -> list[str]:
        return list(self._tokens)

    def get_token(self, token_id: str) -> TokenInstance:
        instance = self._tokens.get(token_id)
        if instance is None:
            raise UnknownToken(f"Unknown token: {token_id}")
        return instance

    def quote_asset(self, symbol: str) -> QuoteAsset:
        asset = self._quote_assets.get(symbol)
        if asset is None:
            raise UnknownToken(f"Quote asset not configured: {symbol}")
        return asset

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    def create_token(
        self,
        creator: str,
        name: str,
        symbol: str,
        quote_symbol: str,
        initial_virt_quote: int,
        max_supply: Optional[int] = None,
        token_id: Optional[str] = None,
    ) -> ServiceResult:
        """Create engine, fee distributor and sale for a new token.

        ``initial_virt_quote`` is in the quote asset's raw units and must
        meet the configured minimum for that asset.
        """
        def _create() -> ServiceResult:
            quote = self.quote_asset(quote_symbol)
            policy = self._resolver.quote_asset(quote_symbol)
            if initial_virt_quote < policy.min_initial_virt_quote:
                raise ValueError(
                    f"Initial virtual quote {initial_virt_quote} below minimum "
                    f"{policy.min_initial_virt_quote} for {quote_symbol}"
                )
            if not name.strip() or not symbol.strip():
                raise ValueError("Token name and symbol must not be blank")
            tid = token_id or f"TOK-{len(self._tokens) + 1:04d}"
            if tid in self._tokens:
                raise ValueError(f"Token already exists: {tid}")
            supply = max_supply if max_supply is not None else self._resolver.max_supply()
            now = self._clock.now()

            distributor = FeeDistributor(
                self._directory,
                tid,
                owner_share_bps=self._fees.owner_share_bps,
                provider_share_bps=self._fees.provider_share_bps,
            )
            engine = ReserveEngine(
                tid,
                quote,
                initial_virt_quote=initial_virt_quote,
                max_supply=supply,
                distributor=distributor,
                clock=self._clock,
                sale_account=f"sale:{tid}",
                fee_rate_bps=self._fees.fee_rate_bps,
            )
            record = SaleRecord(
                token_id=tid,
                quote_symbol=quote_symbol,
                end_timestamp=now + self._resolver.sale_duration_seconds(),
            )
            sale = ContributionSale(record, engine, quote, self._clock)
            self._directory.register(tid, creator)
            self._tokens[tid] = TokenInstance(
                token_id=tid,
                name=name.strip(),
                symbol=symbol.strip(),
                creator=creator,
                quote=quote,
                engine=engine,
                distributor=distributor,
                sale=sale,
                quotes=QuoteHelper(engine),
            )
            log.info("Created token %s (%s) quoted in %s", tid, symbol, quote_symbol)

            data = {
                "token_id": tid,
                "owner": creator,
                "quote_symbol": quote_symbol,
                "initial_virt_quote": initial_virt_quote,
                "max_supply": supply,
                "sale_end_timestamp": record.end_timestamp,
            }
            return self._ok(EventKind.TOKEN_CREATED, creator, data)

        return self._run("create_token", _create)

    def fund(self, account: str, quote_symbol: str, amount: int) -> ServiceResult:
        """Credit external quote funds to an account."""
        def _fund() -> ServiceResult:
            asset = self.quote_asset(quote_symbol)
            asset.mint(account, amount)
            return ServiceResult(
                success=True,
                data={"account": account, "balance": asset.balance_of(account)},
            )

        return self._run("fund", _fund)

    # ------------------------------------------------------------------
    # Sale
    # ------------------------------------------------------------------

    def contribute(
        self,
        token_id: str,
        caller: str,
        amount: int,
        to: Optional[str] = None,
    ) -> ServiceResult:
        def _contribute() -> ServiceResult:
            receipt = self.get_token(token_id).sale.contribute(caller, to or caller, amount)
            return self._ok(EventKind.CONTRIBUTION_RECORDED, caller, asdict(receipt))

        return self._run("contribute", _contribute)

    def open_market(self, token_id: str, caller: str) -> ServiceResult:
        def _open() -> ServiceResult:
            opening = self.get_token(token_id).sale.open_market(caller)
            return self._ok(EventKind.MARKET_OPENED, caller, asdict(opening))

        return self._run("open_market", _open)

    def redeem(self, token_id: str, account: str) -> ServiceResult:
        def _redeem() -> ServiceResult:
            redemption = self.get_token(token_id).sale.redeem(account)
            warnings = []
            if redemption.opening is not None:
                warnings.extend(self._record_opening(redemption.opening))
            data = {
                "token_id": token_id,
                "account": account,
                "contribution": redemption.contribution,
                "token_amount": redemption.token_amount,
                "opened_market": redemption.opening is not None,
            }
            warnings.extend(self._record(EventKind.REDEEMED, account, data))
            return self._result(data, warnings)

        return self._run("redeem", _redeem)

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    def buy(
        self,
        token_id: str,
        caller: str,
        quote_in: int,
        min_token_out: int = 0,
        to: Optional[str] = None,
        provider: Optional[str] = None,
        deadline: Optional[int] = None,
    ) -> ServiceResult:
        def _buy() -> ServiceResult:
            engine = self.get_token(token_id).engine
            trade = engine.buy(caller, quote_in, min_token_out, to or caller, provider, deadline)
            return self._trade(token_id, EventKind.BUY, trade)

        return self._run("buy", _buy)

    def sell(
        self,
        token_id: str,
        caller: str,
        token_in: int,
        min_quote_out: int = 0,
        to: Optional[str] = None,
        provider: Optional[str] = None,
        deadline: Optional[int] = None,
    ) -> ServiceResult:
        def _sell() -> ServiceResult:
            engine = self.get_token(token_id).engine
            trade = engine.sell(caller, token_in, min_quote_out, to or caller, provider, deadline)
            return self._trade(token_id, EventKind.SELL, trade)

        return self._run("sell", _sell)

    # ------------------------------------------------------------------
    # Credit and backing
    # ------------------------------------------------------------------

    def borrow(
        self,
        token_id: str,
        caller: str,
        amount: int,
        to: Optional[str] = None,
    ) -> ServiceResult:
        def _borrow() -> ServiceResult:
            result = self.get_token(token_id).engine.borrow(caller, to or caller, amount)
            return self._ok(EventKind.BORROW, caller, {"token_id": token_id, **asdict(result)})

        return self._run("borrow", _borrow)

    def repay(
        self,
        token_id: str,
        caller: str,
        amount: int,
        account: Optional[str] = None,
    ) -> ServiceResult:
        def _repay() -> ServiceResult:
            result = self.get_token(token_id).engine.repay(caller, account or caller, amount)
            return self._ok(EventKind.REPAY, caller, {"token_id": token_id, **asdict(result)})

        return self._run("repay", _repay)

    def heal(self, token_id: str, caller: str, amount: int) -> ServiceResult:
        def _heal() -> ServiceResult:
            result = self.get_token(token_id).engine.heal(caller, amount)
            return self._ok(EventKind.HEAL, caller, {"token_id": token_id, **asdict(result)})

        return self._run("heal", _heal)

    def burn(self, token_id: str, caller: str, amount: int) -> ServiceResult:
        def _burn() -> ServiceResult:
            result = self.get_token(token_id).engine.burn(caller, amount)
            return self._ok(EventKind.BURN, caller, {"token_id": token_id, **asdict(result)})

        return self._run("burn", _burn)

    def transfer(self, token_id: str, caller: str, to: str, amount: int) -> ServiceResult:
        def _transfer() -> ServiceResult:
            result = self.get_token(token_id).engine.transfer(caller, to, amount)
            return self._ok(EventKind.TRANSFER, caller, {"token_id": token_id, **asdict(result)})

        return self._run("transfer", _transfer)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def set_owner_fee_status(self, token_id: str, caller: str, active: bool) -> ServiceResult:
        def _set() -> ServiceResult:
            previous = self.get_token(token_id).distributor.set_owner_fee_status(caller, active)
            data = {"token_id": token_id, "active": bool(active), "previous": previous}
            return self._ok(EventKind.OWNER_FEE_STATUS_SET, caller, data)

        return self._run("set_owner_fee_status", _set)

    def transfer_ownership(self, token_id: str, caller: str, new_owner: str) -> ServiceResult:
        def _transfer() -> ServiceResult:
            self.get_token(token_id)
            previous = self._directory.transfer_ownership(token_id, caller, new_owner)
            data = {"token_id": token_id, "previous_owner": previous, "owner": new_owner}
            return self._ok(EventKind.OWNERSHIP_TRANSFERRED, caller, data)

        return self._run("transfer_ownership", _transfer)

    def set_treasury(self, caller: str, treasury: Optional[str]) -> ServiceResult:
        def _set() -> ServiceResult:
            previous = self._directory.set_treasury(caller, treasury)
            data = {"treasury": self._directory.treasury, "previous": previous}
            return self._ok(EventKind.TREASURY_SET, caller, data)

        return self._run("set_treasury", _set)

    # ------------------------------------------------------------------
    # Read-only estimates
    # ------------------------------------------------------------------

    def quote_buy(self, token_id: str, quote_in: int, slippage_bps: int = 0) -> ServiceResult:
        return self._estimate(lambda h: h.quote_buy_in(quote_in, slippage_bps), token_id)

    def quote_for_token_out(self, token_id: str, token_out: int) -> ServiceResult:
        return self._estimate(lambda h: h.quote_for_token_out(token_out), token_id)

    def quote_sell(self, token_id: str, token_in: int, slippage_bps: int = 0) -> ServiceResult:
        return self._estimate(lambda h: h.quote_sell_in(token_in, slippage_bps), token_id)

    def token_for_quote_out(self, token_id: str, quote_out: int) -> ServiceResult:
        return self._estimate(lambda h: h.token_for_quote_out(quote_out), token_id)

    def _estimate(self, fn: Callable[[QuoteHelper], Any], token_id: str) -> ServiceResult:
        def _quote() -> ServiceResult:
            estimate = fn(self.get_token(token_id).quotes)
            return ServiceResult(success=True, data=asdict(estimate))

        return self._run("quote", _quote)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def token_view(self, token_id: str) -> TokenView:
        instance = self.get_token(token_id)
        record = instance.sale.record
        return TokenView(
            token_id=token_id,
            name=instance.name,
            symbol=instance.symbol,
            quote_symbol=instance.quote.symbol,
            owner=self._directory.owner_of(token_id),
            owner_fees_active=instance.distributor.owner_fees_active,
            reserves=instance.engine.reserves(),
            sale_phase=instance.sale.phase().value,
            sale_end_timestamp=record.end_timestamp,
            sale_total_contributed=record.total_quote_contributed,
            sale_tokens_from_opening=record.total_tokens_from_opening,
        )

    def account_view(self, token_id: str, account: str) -> AccountView:
        instance = self.get_token(token_id)
        engine = instance.engine
        return AccountView(
            token_id=token_id,
            account=account,
            quote_balance=instance.quote.balance_of(account),
            token_balance=engine.balance_of(account),
            debt=engine.debt_of(account),
            credit=engine.credit_of(account),
            transferable=engine.transferable_of(account),
            contributed_quote=instance.sale.contribution_of(account),
            redeemable_token=instance.sale.redeemable_of(account),
            phase=int(instance.sale.account_phase(account)),
        )

    def check_invariants(self) -> dict[str, list[str]]:
        """Re-run the engine invariant checks for every token.

        Returns {token_id: [errors]} for tokens that fail; empty when sound.
        """
        failures: dict[str, list[str]] = {}
        for token_id, instance in self._tokens.items():
            try:
                instance.engine.check_invariants()
            except ProtocolError as e:
                failures[token_id] = [str(e)]
        return failures

    def status(self) -> dict[str, Any]:
        return {
            "now": self._clock.now(),
            "admin": self._directory.admin,
            "treasury": self._directory.treasury,
            "fee_rate_bps": self._fees.fee_rate_bps,
            "quote_assets": sorted(self._quote_assets),
            "tokens": {
                token_id: {
                    "symbol": instance.symbol,
                    "sale_phase": instance.sale.phase().value,
                    "market_open": instance.engine.market_open,
                }
                for token_id, instance in self._tokens.items()
            },
            "event_count": self._event_log.count if self._event_log is not None else 0,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self, action: str, fn: Callable[[], ServiceResult]) -> ServiceResult:
        try:
            return fn()
        except ValueError as e:
            code = getattr(e, "code", "InvalidInput")
            log.warning("Rejected %s: %s", action, e)
            return ServiceResult(success=False, errors=[str(e)], code=code)

    def _ok(self, kind: EventKind, actor: str, data: dict[str, Any]) -> ServiceResult:
        return self._result(data, self._record(kind, actor, data))

    @staticmethod
    def _result(data: dict[str, Any], warnings: list[str]) -> ServiceResult:
        if warnings:
            data = {**data, "warning": "; ".join(warnings)}
        return ServiceResult(success=True, data=data)

    def _trade(self, token_id: str, kind: EventKind, trade: TradeResult) -> ServiceResult:
        data = {
            "token_id": token_id,
            "account": trade.account,
            "recipient": trade.recipient,
            "amount_in": trade.amount_in,
            "amount_out": trade.amount_out,
            "fee": trade.fee.total,
            "fee_paid": trade.fee.paid,
            "fee_redirected": trade.fee.redirected,
            "market_price": trade.market_price,
            "floor_price": trade.floor_price,
        }
        warnings = self._record(kind, trade.account, data)
        warnings.extend(self._record_fees(token_id, trade.account, trade.fee))
        return self._result(data, warnings)

    def _record_fees(self, token_id: str, actor: str, fee: FeeBreakdown) -> list[str]:
        warnings: list[str] = []
        mode = "heal" if fee.asset == FeeAsset.QUOTE else "retire"
        for line in fee.lines:
            payload = {
                "token_id": token_id,
                "category": line.category.value,
                "asset": fee.asset.value,
                "amount": line.amount,
            }
            if line.redirected:
                warnings.extend(
                    self._record(EventKind.FEE_REDIRECTED, actor, {**payload, "mode": mode})
                )
            else:
                warnings.extend(
                    self._record(EventKind.FEE_PAID, actor, {**payload, "recipient": line.recipient})
                )
        return warnings

    def _record_opening(self, opening: MarketOpening) -> list[str]:
        return self._record(EventKind.MARKET_OPENED, opening.opened_by, asdict(opening))

    def _next_event_id(self) -> str:
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record(self, kind: EventKind, actor: str, payload: dict[str, Any]) -> list[str]:
        """Append one event. State is already committed, so a log failure
        is reported as a warning rather than undoing the operation.
        """
        if self._event_log is None:
            return []
        try:
            event = EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=kind,
                actor_id=actor,
                payload=_jsonable(payload),
                timestamp=self._clock.now(),
            )
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            log.error("Event log failure for %s: %s", kind.value, e)
            return [f"Event log failure: {e}"]
        return []


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, enum.Enum):
        return value.value
    return value

"""reserve-curve CLI: inspect policy, replay scenarios, estimate trades.

Usage:
    reservecurve status
    reservecurve check-invariants
    reservecurve simulate --scenario scenarios/sale.json
    reservecurve quote --quote USDC --virt 1000 --side buy --amount 250

Amounts on the command line and in scenario files are human decimals:
quote amounts use the quote asset's decimals, token amounts use 18.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

from reservecurve.clock import ManualClock
from reservecurve.fixed_point import TOKEN_DECIMALS, from_decimal
from reservecurve.persistence.event_log import EventLog
from reservecurve.policy.resolver import PolicyResolver
from reservecurve.service import ProtocolService, ServiceResult

DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"


def _make_service(
    config_dir: Path,
    clock: Optional[ManualClock] = None,
    events: Optional[Path] = None,
) -> ProtocolService:
    resolver = PolicyResolver.from_config_dir(config_dir)
    event_log = EventLog(storage_path=events) if events else None
    return ProtocolService(resolver, event_log=event_log, clock=clock)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, events=args.events)
    _print_json(service.status())
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Validate the policy file."""
    resolver = PolicyResolver.from_config_dir(args.config)
    errors = resolver.validate()
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1
    print("Invariant check passed.")
    return 0


# ----------------------------------------------------------------------
# simulate
# ----------------------------------------------------------------------

def _quote_units(service: ProtocolService, token_id: str, value: Any) -> int:
    decimals = service.get_token(token_id).quote.decimals
    return from_decimal(str(value), decimals)


def _token_units(value: Any) -> int:
    return from_decimal(str(value), TOKEN_DECIMALS)


def apply_operation(
    service: ProtocolService,
    clock: ManualClock,
    op: dict[str, Any],
) -> ServiceResult:
    """Run one scenario step against the service."""
    kind = op["op"]
    token = op.get("token")

    if kind == "advance":
        clock.advance(int(op["seconds"]))
        return ServiceResult(success=True, data={"now": clock.now()})
    if kind == "fund":
        decimals = service.quote_asset(op["quote"]).decimals
        return service.fund(op["account"], op["quote"], from_decimal(str(op["amount"]), decimals))
    if kind == "create_token":
        decimals = service.quote_asset(op["quote"]).decimals
        max_supply = op.get("max_supply")
        return service.create_token(
            creator=op["creator"],
            name=op["name"],
            symbol=op["symbol"],
            quote_symbol=op["quote"],
            initial_virt_quote=from_decimal(str(op["initial_virt_quote"]), decimals),
            max_supply=_token_units(max_supply) if max_supply is not None else None,
            token_id=op.get("token_id"),
        )
    if kind == "contribute":
        return service.contribute(
            token, op["caller"], _quote_units(service, token, op["amount"]), op.get("to"),
        )
    if kind == "open_market":
        return service.open_market(token, op["caller"])
    if kind == "redeem":
        return service.redeem(token, op["account"])
    if kind == "buy":
        return service.buy(
            token,
            op["caller"],
            _quote_units(service, token, op["amount"]),
            min_token_out=_token_units(op.get("min_out", 0)),
            to=op.get("to"),
            provider=op.get("provider"),
            deadline=op.get("deadline"),
        )
    if kind == "sell":
        return service.sell(
            token,
            op["caller"],
            _token_units(op["amount"]),
            min_quote_out=_quote_units(service, token, op.get("min_out", 0)),
            to=op.get("to"),
            provider=op.get("provider"),
            deadline=op.get("deadline"),
        )
    if kind == "borrow":
        return service.borrow(
            token, op["caller"], _quote_units(service, token, op["amount"]), op.get("to"),
        )
    if kind == "repay":
        return service.repay(
            token, op["caller"], _quote_units(service, token, op["amount"]), op.get("account"),
        )
    if kind == "heal":
        return service.heal(token, op["caller"], _quote_units(service, token, op["amount"]))
    if kind == "burn":
        return service.burn(token, op["caller"], _token_units(op["amount"]))
    if kind == "transfer":
        return service.transfer(token, op["caller"], op["to"], _token_units(op["amount"]))
    if kind == "set_owner_fee_status":
        return service.set_owner_fee_status(token, op["caller"], bool(op["active"]))
    if kind == "transfer_ownership":
        return service.transfer_ownership(token, op["caller"], op["new_owner"])
    if kind == "set_treasury":
        return service.set_treasury(op["caller"], op.get("treasury"))
    return ServiceResult(
        success=False, errors=[f"Unknown scenario operation: {kind}"], code="InvalidInput",
    )


def _accounts_in(operations: list[dict[str, Any]]) -> list[str]:
    seen: list[str] = []
    for op in operations:
        for key in ("caller", "account", "to", "provider", "creator"):
            value = op.get(key)
            if isinstance(value, str) and value not in seen:
                seen.append(value)
    return seen


def cmd_simulate(args: argparse.Namespace) -> int:
    """Replay a scenario file and print the final token and account views.

    A scenario is either a list of operations or an object with
    ``start`` (clock origin) and ``operations``. An operation may carry
    ``expect`` with the error code it should fail with.
    """
    with args.scenario.open("r", encoding="utf-8") as handle:
        scenario = json.load(handle)
    if isinstance(scenario, list):
        scenario = {"operations": scenario}
    operations = scenario.get("operations", [])

    clock = ManualClock(int(scenario.get("start", 0)))
    service = _make_service(args.config, clock=clock, events=args.events)

    mismatches = 0
    for index, op in enumerate(operations, 1):
        try:
            result = apply_operation(service, clock, op)
        except (KeyError, ValueError) as e:
            result = ServiceResult(
                success=False, errors=[str(e)], code=getattr(e, "code", "InvalidInput"),
            )
        expected = op.get("expect")
        if result.success:
            outcome = "ok"
        else:
            outcome = f"failed {result.code}: {'; '.join(result.errors)}"
        if (expected is None and not result.success) or (
            expected is not None and result.code != expected
        ):
            mismatches += 1
            outcome += f" (expected {expected or 'success'})"
        print(f"[{index}] {op['op']}: {outcome}")

    accounts = _accounts_in(operations)
    report = {
        "tokens": {
            token_id: {
                "view": asdict(service.token_view(token_id)),
                "accounts": {
                    account: asdict(service.account_view(token_id, account))
                    for account in accounts
                },
            }
            for token_id in service.token_ids()
        },
        "invariant_failures": service.check_invariants(),
    }
    _print_json(report)

    if mismatches or report["invariant_failures"]:
        return 1
    return 0


# ----------------------------------------------------------------------
# quote
# ----------------------------------------------------------------------

def cmd_quote(args: argparse.Namespace) -> int:
    """Estimate a trade against a freshly opened instance."""
    clock = ManualClock(0)
    service = _make_service(args.config, clock=clock)
    decimals = service.quote_asset(args.quote).decimals
    created = service.create_token(
        creator="cli",
        name="Quote",
        symbol="QTE",
        quote_symbol=args.quote,
        initial_virt_quote=from_decimal(args.virt, decimals),
    )
    if not created.success:
        print(f"Failed: {'; '.join(created.errors)}", file=sys.stderr)
        return 1
    token_id = created.data["token_id"]
    clock.advance(service.get_token(token_id).sale.record.end_timestamp + 1)
    service.open_market(token_id, "cli")

    if args.side == "buy":
        result = service.quote_buy(token_id, from_decimal(args.amount, decimals), args.slippage_bps)
    elif args.side == "buy-exact":
        result = service.quote_for_token_out(token_id, from_decimal(args.amount, TOKEN_DECIMALS))
    elif args.side == "sell":
        result = service.quote_sell(
            token_id, from_decimal(args.amount, TOKEN_DECIMALS), args.slippage_bps,
        )
    else:
        result = service.token_for_quote_out(token_id, from_decimal(args.amount, decimals))

    if result.success:
        _print_json(result.data)
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reservecurve",
        description="reserve-curve: contribution sale and bonding-curve reserve",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--events",
        type=Path,
        default=None,
        help="Append events to this JSONL file",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show protocol status")

    # check-invariants
    sub.add_parser("check-invariants", help="Validate the protocol policy file")

    # simulate
    p_sim = sub.add_parser("simulate", help="Replay a JSON scenario")
    p_sim.add_argument("--scenario", type=Path, required=True, help="Scenario file")

    # quote
    p_quote = sub.add_parser("quote", help="Estimate a trade on a fresh instance")
    p_quote.add_argument("--quote", default="USDC", help="Quote asset symbol")
    p_quote.add_argument("--virt", required=True, help="Initial virtual quote (Decimal)")
    p_quote.add_argument(
        "--side",
        choices=["buy", "buy-exact", "sell", "sell-exact"],
        default="buy",
        help="buy/sell: amount in; buy-exact: tokens out; sell-exact: quote out",
    )
    p_quote.add_argument("--amount", required=True, help="Amount (Decimal)")
    p_quote.add_argument("--slippage-bps", type=int, default=0, help="Slippage tolerance")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "check-invariants": cmd_check_invariants,
        "simulate": cmd_simulate,
        "quote": cmd_quote,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())

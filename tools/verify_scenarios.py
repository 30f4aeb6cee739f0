#!/usr/bin/env python3
"""Validate scenario files against the protocol policy before replaying them."""

import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
PARAMS_PATH = ROOT / "config" / "protocol_params.json"
SCENARIOS_DIR = ROOT / "scenarios"

REQUIRED_FIELDS = {
    "advance": ("seconds",),
    "fund": ("account", "quote", "amount"),
    "create_token": ("creator", "name", "symbol", "quote", "initial_virt_quote"),
    "contribute": ("token", "caller", "amount"),
    "open_market": ("token", "caller"),
    "redeem": ("token", "account"),
    "buy": ("token", "caller", "amount"),
    "sell": ("token", "caller", "amount"),
    "borrow": ("token", "caller", "amount"),
    "repay": ("token", "caller", "amount"),
    "heal": ("token", "caller", "amount"),
    "burn": ("token", "caller", "amount"),
    "transfer": ("token", "caller", "to", "amount"),
    "set_owner_fee_status": ("token", "caller", "active"),
    "transfer_ownership": ("token", "caller", "new_owner"),
    "set_treasury": ("caller",),
}

KNOWN_CODES = {
    "ZeroInput", "InsufficientBalance", "InvalidInput",
    "Closed", "Concluded", "Open", "NotEligible", "NothingToRedeem",
    "MarketClosed", "DeadlineExpired",
    "SlippageToleranceExceeded", "CreditLimit", "CollateralLocked",
    "CollateralRequirement", "InsufficientLiquidity",
    "NotOwner", "NotAuthorized", "UnknownToken", "Reentrancy",
}


def load_json(path: Path):
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def validate_scenario(name: str, scenario, params: dict) -> list[str]:
    errors: list[str] = []
    if isinstance(scenario, list):
        scenario = {"operations": scenario}
    operations = scenario.get("operations", [])
    if not operations:
        return [f"{name} has no operations"]

    quote_symbols = {q["symbol"] for q in params.get("quote_assets", [])}
    created: set[str] = set()

    for idx, op in enumerate(operations, 1):
        kind = op.get("op")
        if kind not in REQUIRED_FIELDS:
            errors.append(f"{name}[{idx}] unknown op {kind!r}")
            continue
        for key in REQUIRED_FIELDS[kind]:
            if key not in op:
                errors.append(f"{name}[{idx}] {kind} missing {key}")

        if kind in ("fund", "create_token") and op.get("quote") not in quote_symbols:
            errors.append(
                f"{name}[{idx}] quote {op.get('quote')!r} not in {sorted(quote_symbols)}"
            )
        if kind == "create_token":
            if "token_id" not in op:
                errors.append(f"{name}[{idx}] create_token needs an explicit token_id")
            else:
                created.add(op["token_id"])
        elif "token" in op and op["token"] not in created:
            errors.append(f"{name}[{idx}] {kind} refers to unknown token {op['token']!r}")

        expected = op.get("expect")
        if expected is not None and expected not in KNOWN_CODES:
            errors.append(f"{name}[{idx}] expects unknown code {expected!r}")

    return errors


def main() -> int:
    params = load_json(PARAMS_PATH)
    paths = [Path(p) for p in sys.argv[1:]] or sorted(SCENARIOS_DIR.glob("*.json"))
    all_errors: list[str] = []
    for path in paths:
        all_errors.extend(validate_scenario(path.name, load_json(path), params))

    if all_errors:
        print("Scenario verification failed:")
        for err in all_errors:
            print(f"- {err}")
        return 1

    print(f"Scenario verification passed ({len(paths)} files).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

#!/usr/bin/env python3
"""reserve-curve invariant checks against the protocol policy file."""

import json
from decimal import Decimal, InvalidOperation
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
PARAMS_PATH = ROOT / "config" / "protocol_params.json"

BPS_DIVISOR = 10_000
TOKEN_DECIMALS = 18


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def positive_decimal(value: object) -> bool:
    try:
        return Decimal(str(value)) > 0
    except InvalidOperation:
        return False


def check_quote_assets(assets: list, errors: list[str]) -> None:
    """Every quote asset needs a unique symbol, sane decimals and a minimum."""
    if not assets:
        errors.append("at least one quote asset must be configured")
    seen: set[str] = set()
    for entry in assets:
        symbol = entry.get("symbol")
        if not symbol:
            errors.append("quote asset missing symbol")
            continue
        if symbol in seen:
            errors.append(f"quote asset listed twice: {symbol}")
        seen.add(symbol)
        decimals = entry.get("decimals", -1)
        if not 0 <= decimals <= TOKEN_DECIMALS:
            errors.append(f"{symbol} decimals must be in [0, {TOKEN_DECIMALS}], got {decimals}")
        if not positive_decimal(entry.get("min_initial_virt_quote")):
            errors.append(f"{symbol} min_initial_virt_quote must be > 0")


def check() -> int:
    params = load_json(PARAMS_PATH)
    errors: list[str] = []

    # --- Fee invariants ---
    fees = params["fees"]
    if fees.get("bps_divisor") != BPS_DIVISOR:
        errors.append(f"bps_divisor must be {BPS_DIVISOR}, got {fees.get('bps_divisor')}")
    rate = fees["fee_rate_bps"]
    if not 0 <= rate < BPS_DIVISOR:
        errors.append(f"fee_rate_bps must be in [0, {BPS_DIVISOR}), got {rate}")
    owner = fees["owner_share_bps"]
    provider = fees["provider_share_bps"]
    if owner < 0 or provider < 0:
        errors.append("fee shares must be >= 0")
    if owner + provider > BPS_DIVISOR:
        errors.append(f"owner_share_bps + provider_share_bps must be <= {BPS_DIVISOR}")

    # --- Sale invariants ---
    if params["sale"]["duration_seconds"] <= 0:
        errors.append("sale duration_seconds must be > 0")

    # --- Token invariants ---
    token = params["token"]
    if token.get("decimals") != TOKEN_DECIMALS:
        errors.append(f"token decimals must be {TOKEN_DECIMALS}")
    if not positive_decimal(token.get("max_supply")):
        errors.append("token max_supply must be > 0")

    check_quote_assets(params.get("quote_assets", []), errors)

    # --- Protocol accounts ---
    protocol = params.get("protocol", {})
    if not protocol.get("admin"):
        errors.append("protocol admin must be set")

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())

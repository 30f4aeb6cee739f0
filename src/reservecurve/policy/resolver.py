"""Policy resolver: protocol parameters from JSON config plus env overrides.

Config lives in ``<config_dir>/protocol_params.json``. A small set of
deployment knobs can be overridden from the environment, read after
``load_dotenv`` so a ``.env`` file next to the config directory works:

    RESERVECURVE_FEE_RATE_BPS           fee on every buy/sell, in bps
    RESERVECURVE_TREASURY               treasury account ("" or "none" clears it)
    RESERVECURVE_SALE_DURATION_SECONDS  contribution window length

Human-readable amounts (max supply, minimum virtual quote) are decimal
strings in the config and are converted to integer base units here.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from reservecurve.errors import UnknownToken
from reservecurve.fixed_point import BPS_DIVISOR, TOKEN_DECIMALS, from_decimal

PARAMS_FILE = "protocol_params.json"

ENV_FEE_RATE = "RESERVECURVE_FEE_RATE_BPS"
ENV_TREASURY = "RESERVECURVE_TREASURY"
ENV_SALE_DURATION = "RESERVECURVE_SALE_DURATION_SECONDS"


@dataclass(frozen=True)
class FeePolicy:
    fee_rate_bps: int
    owner_share_bps: int
    provider_share_bps: int


@dataclass(frozen=True)
class QuoteAssetPolicy:
    symbol: str
    decimals: int
    min_initial_virt_quote: int  # raw units


class PolicyResolver:
    """Resolves protocol parameters.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        fees = resolver.fee_policy()
        usdc = resolver.quote_asset("USDC")
    """

    def __init__(
        self,
        params: dict[str, Any],
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._params = params
        self._environ: Mapping[str, str] = os.environ if environ is None else environ

    @classmethod
    def from_config_dir(
        cls,
        config_dir: Path,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[Path] = None,
    ) -> PolicyResolver:
        """Load ``protocol_params.json`` and pick up ``.env`` overrides.

        ``environ`` replaces the process environment (tests pass a dict);
        when omitted, ``env_file`` (default ``<config_dir>/../.env``) is
        loaded into the process environment first.
        """
        config_dir = Path(config_dir)
        with (config_dir / PARAMS_FILE).open("r", encoding="utf-8") as handle:
            params = json.load(handle)
        if environ is None:
            load_dotenv(env_file or config_dir.parent / ".env")
        return cls(params, environ)

    @property
    def params(self) -> dict[str, Any]:
        return self._params

    def _env(self, key: str) -> Optional[str]:
        value = self._environ.get(key)
        if value is None:
            return None
        return value.strip()

    # ------------------------------------------------------------------
    # Fees and sale
    # ------------------------------------------------------------------

    def fee_policy(self) -> FeePolicy:
        fees = self._params["fees"]
        rate = fees["fee_rate_bps"]
        override = self._env(ENV_FEE_RATE)
        if override:
            rate = int(override)
        return FeePolicy(
            fee_rate_bps=int(rate),
            owner_share_bps=int(fees["owner_share_bps"]),
            provider_share_bps=int(fees["provider_share_bps"]),
        )

    def sale_duration_seconds(self) -> int:
        override = self._env(ENV_SALE_DURATION)
        if override:
            return int(override)
        return int(self._params["sale"]["duration_seconds"])

    # ------------------------------------------------------------------
    # Token and quote assets
    # ------------------------------------------------------------------

    def max_supply(self) -> int:
        """Default max supply in token base units."""
        return from_decimal(self._params["token"]["max_supply"], TOKEN_DECIMALS)

    def quote_assets(self) -> list[QuoteAssetPolicy]:
        return [self._quote_policy(entry) for entry in self._params.get("quote_assets", [])]

    def quote_asset(self, symbol: str) -> QuoteAssetPolicy:
        for entry in self._params.get("quote_assets", []):
            if entry["symbol"] == symbol:
                return self._quote_policy(entry)
        raise UnknownToken(f"Quote asset not configured: {symbol}")

    @staticmethod
    def _quote_policy(entry: dict[str, Any]) -> QuoteAssetPolicy:
        decimals = int(entry["decimals"])
        return QuoteAssetPolicy(
            symbol=entry["symbol"],
            decimals=decimals,
            min_initial_virt_quote=from_decimal(entry["min_initial_virt_quote"], decimals),
        )

    # ------------------------------------------------------------------
    # Protocol accounts
    # ------------------------------------------------------------------

    def protocol_admin(self) -> str:
        return self._params["protocol"]["admin"]

    def treasury(self) -> Optional[str]:
        override = self._env(ENV_TREASURY)
        if override is not None:
            if override == "" or override.lower() == "none":
                return None
            return override
        return self._params["protocol"].get("treasury") or None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> list[str]:
        """Return a list of policy errors (empty when the policy is sound)."""
        errors: list[str] = []

        try:
            fees = self.fee_policy()
        except (KeyError, ValueError) as e:
            return [f"fees section unreadable: {e}"]
        divisor = self._params["fees"].get("bps_divisor", BPS_DIVISOR)
        if divisor != BPS_DIVISOR:
            errors.append(f"bps_divisor must be {BPS_DIVISOR}, got {divisor}")
        if not 0 <= fees.fee_rate_bps < BPS_DIVISOR:
            errors.append(f"fee_rate_bps must be in [0, {BPS_DIVISOR}), got {fees.fee_rate_bps}")
        if fees.owner_share_bps < 0 or fees.provider_share_bps < 0:
            errors.append("fee shares must be >= 0")
        if fees.owner_share_bps + fees.provider_share_bps > BPS_DIVISOR:
            errors.append(
                f"owner_share_bps + provider_share_bps must be <= {BPS_DIVISOR}"
            )

        try:
            if self.sale_duration_seconds() <= 0:
                errors.append("sale duration must be > 0")
        except (KeyError, ValueError) as e:
            errors.append(f"sale duration unreadable: {e}")

        try:
            if self.max_supply() <= 0:
                errors.append("token max_supply must be > 0")
        except (KeyError, ValueError, ArithmeticError) as e:
            errors.append(f"token max_supply unreadable: {e}")

        if self._params.get("token", {}).get("decimals", TOKEN_DECIMALS) != TOKEN_DECIMALS:
            errors.append(f"token decimals must be {TOKEN_DECIMALS}")

        seen: set[str] = set()
        for entry in self._params.get("quote_assets", []):
            symbol = entry.get("symbol", "")
            if not symbol:
                errors.append("quote asset missing symbol")
                continue
            if symbol in seen:
                errors.append(f"quote asset listed twice: {symbol}")
            seen.add(symbol)
            decimals = entry.get("decimals", -1)
            if not 0 <= decimals <= TOKEN_DECIMALS:
                errors.append(f"{symbol} decimals must be in [0, {TOKEN_DECIMALS}], got {decimals}")
                continue
            try:
                minimum = self._quote_policy(entry).min_initial_virt_quote
            except (KeyError, ValueError, ArithmeticError) as e:
                errors.append(f"{symbol} min_initial_virt_quote unreadable: {e}")
                continue
            if minimum <= 0:
                errors.append(f"{symbol} min_initial_virt_quote must be > 0")
        if not seen:
            errors.append("at least one quote asset must be configured")

        if not self._params.get("protocol", {}).get("admin"):
            errors.append("protocol admin must be set")

        return errors

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from solders.pubkey import Pubkey

from .constants import BPS_DENOMINATOR, DEFAULT_FEE_BPS, DEFAULT_MAX_PER_TX, DEFAULT_RPC_URL
from .errors import ValidationError

logger = logging.getLogger(__name__)


def default_rpc_url(env: Mapping[str, str] | None = None) -> str:
    env = os.environ if env is None else env
    override = (env.get("RPC_URL") or env.get("SOLANA_URL") or "").strip()
    if override:
        return override
    api_key = (env.get("HELIUS_API_KEY") or "").strip()
    if api_key:
        return f"https://mainnet.helius-rpc.com/?api-key={api_key}"
    logger.warning("HELIUS_API_KEY not set; using public mainnet RPC (slower).")
    return DEFAULT_RPC_URL


def parse_fee_recipient(value: object) -> Optional[Pubkey]:
    """Empty means zero-fee mode; anything else must be a valid address."""
    if value is None:
        return None
    if isinstance(value, Pubkey):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return Pubkey.from_string(text)
    except ValueError as exc:
        raise ValidationError(f"Malformed fee recipient: {text!r}") from exc


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer (got {raw!r})") from exc


def _env_float(env: Mapping[str, str], name: str) -> Optional[float]:
    raw = (env.get(name) or "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be a number (got {raw!r})") from exc


@dataclass(slots=True, frozen=True)
class ReclaimConfig:
    """Validated once at construction and passed to the orchestrator."""

    rpc_url: str = DEFAULT_RPC_URL
    fee_recipient: Optional[Pubkey] = None
    fee_bps: int = DEFAULT_FEE_BPS
    max_per_tx: int = DEFAULT_MAX_PER_TX
    commitment: str = "confirmed"
    confirm_poll_s: float = 0.5
    confirm_timeout_s: Optional[float] = None
    sign_timeout_s: Optional[float] = None
    http_timeout_s: float = 30.0
    max_retries: int = 8

    def __post_init__(self) -> None:
        if isinstance(self.fee_bps, bool) or not isinstance(self.fee_bps, int):
            raise ValidationError(f"fee_bps must be an integer (got {self.fee_bps!r})")
        if not 0 <= self.fee_bps <= BPS_DENOMINATOR:
            raise ValidationError(f"fee_bps must be within 0..{BPS_DENOMINATOR} (got {self.fee_bps})")
        if isinstance(self.max_per_tx, bool) or not isinstance(self.max_per_tx, int) or self.max_per_tx < 1:
            raise ValidationError(f"max_per_tx must be a positive integer (got {self.max_per_tx!r})")
        if self.fee_recipient is not None and not isinstance(self.fee_recipient, Pubkey):
            raise ValidationError(f"fee_recipient must be a Pubkey (got {self.fee_recipient!r})")
        if self.commitment not in ("processed", "confirmed", "finalized"):
            raise ValidationError(f"Unknown commitment: {self.commitment!r}")
        for name in ("confirm_timeout_s", "sign_timeout_s"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValidationError(f"{name} must be positive (got {value})")

    @property
    def fee_enabled(self) -> bool:
        return self.fee_recipient is not None and self.fee_bps > 0

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides) -> "ReclaimConfig":
        """Build from environment variables; keyword overrides win when not None."""
        env = os.environ if env is None else env
        values = dict(
            rpc_url=default_rpc_url(env) if not overrides.get("rpc_url") else overrides["rpc_url"],
            fee_recipient=parse_fee_recipient(env.get("FEE_RECIPIENT")),
            fee_bps=_env_int(env, "FEE_BPS", DEFAULT_FEE_BPS),
            max_per_tx=_env_int(env, "MAX_ACCOUNTS_PER_TX", DEFAULT_MAX_PER_TX),
            confirm_timeout_s=_env_float(env, "CONFIRM_TIMEOUT_S"),
            sign_timeout_s=_env_float(env, "SIGN_TIMEOUT_S"),
        )
        for key, value in overrides.items():
            if value is None or key == "rpc_url":
                continue
            if key == "fee_recipient":
                value = parse_fee_recipient(value)
            values[key] = value
        return cls(**values)

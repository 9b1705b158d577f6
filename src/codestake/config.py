"""
Runtime configuration.

Values come from the process environment, after ``~/.codestake/.env`` has
been loaded with python-dotenv (``codestake genesis`` writes the defaults
there).  Environment variables always win over the file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

CODESTAKE_DIR = Path.home() / ".codestake"
CODESTAKE_ENV = CODESTAKE_DIR / ".env"

DEFAULT_CONTRACT_ADDRESS = "0x5b4050c163Fb24522Fa25876b8F6A983a69D9165"


def load_env(env_path: Optional[Path] = None) -> None:
    """Load ~/.codestake/.env into os.environ without overriding set values."""
    env_path = env_path or CODESTAKE_ENV
    if env_path.exists():
        load_dotenv(env_path, override=False)


def get_contract_address() -> str:
    return os.environ.get("CODESTAKE_CONTRACT_ADDRESS", DEFAULT_CONTRACT_ADDRESS)


@dataclass(frozen=True)
class PipelineConfig:
    """Timeouts, retry bound and gas margin for the transaction pipeline."""

    gas_margin: Decimal = Decimal("1.3")
    settle_delay: float = 1.0
    estimate_timeout: float = 20.0
    signature_timeout: float = 120.0
    confirm_timeout: float = 180.0
    poll_interval: float = 2.0
    transient_retries: int = 1

    def __post_init__(self) -> None:
        if self.gas_margin < 1:
            raise ValueError("gas_margin must be >= 1")
        if self.transient_retries < 0:
            raise ValueError("transient_retries must be >= 0")
        for name in ("settle_delay", "estimate_timeout", "signature_timeout", "confirm_timeout", "poll_interval"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PipelineConfig":
        env = os.environ if environ is None else environ
        defaults = cls()

        def _float(key: str, default: float) -> float:
            raw = env.get(key)
            return float(raw) if raw else default

        return cls(
            gas_margin=Decimal(env.get("CODESTAKE_GAS_MARGIN") or defaults.gas_margin),
            settle_delay=_float("CODESTAKE_SETTLE_DELAY", defaults.settle_delay),
            estimate_timeout=_float("CODESTAKE_ESTIMATE_TIMEOUT", defaults.estimate_timeout),
            signature_timeout=_float("CODESTAKE_SIGNATURE_TIMEOUT", defaults.signature_timeout),
            confirm_timeout=_float("CODESTAKE_CONFIRM_TIMEOUT", defaults.confirm_timeout),
            poll_interval=_float("CODESTAKE_POLL_INTERVAL", defaults.poll_interval),
            transient_retries=int(env.get("CODESTAKE_TRANSIENT_RETRIES") or defaults.transient_retries),
        )

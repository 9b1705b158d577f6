"""
Network Context Guard.

Makes sure the wallet is pointed at the network the contract is deployed
on before anything is estimated or signed.  Gas estimation against the
wrong chain fails deterministically, so every write starts here.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import httpx

from ..canon.schemas import SchemaRegistry, load_json
from .errors import (
    UNRECOGNIZED_CHAIN_CODE,
    USER_REJECTED_CODE,
    ErrorKind,
    LedgerError,
    RpcError,
    as_ledger_error,
)
from .rpc import from_hex

if TYPE_CHECKING:
    from ..sigil.session import WalletSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NativeCurrency:
    name: str
    symbol: str
    decimals: int = 18


@dataclass(frozen=True)
class NetworkProfile:
    """Descriptor of the network the contract lives on (EIP-3085 fields)."""

    chain_id: int
    name: str
    currency: NativeCurrency
    rpc_urls: tuple[str, ...]
    explorer_urls: tuple[str, ...] = field(default_factory=tuple)

    @property
    def hex_chain_id(self) -> str:
        return hex(self.chain_id)

    @property
    def rpc_url(self) -> str:
        return self.rpc_urls[0]

    def tx_url(self, tx_hash: str) -> Optional[str]:
        if not self.explorer_urls:
            return None
        return f"{self.explorer_urls[0].rstrip('/')}/tx/{tx_hash}"

    def to_add_params(self) -> dict[str, Any]:
        """Parameters for wallet_addEthereumChain."""
        return {
            "chainId": self.hex_chain_id,
            "chainName": self.name,
            "nativeCurrency": {
                "name": self.currency.name,
                "symbol": self.currency.symbol,
                "decimals": self.currency.decimals,
            },
            "rpcUrls": list(self.rpc_urls),
            "blockExplorerUrls": list(self.explorer_urls),
        }

    @classmethod
    def from_add_params(cls, params: dict[str, Any]) -> "NetworkProfile":
        currency = params.get("nativeCurrency") or {}
        return cls(
            chain_id=from_hex(params["chainId"]),
            name=params.get("chainName", ""),
            currency=NativeCurrency(
                name=currency.get("name", ""),
                symbol=currency.get("symbol", ""),
                decimals=int(currency.get("decimals", 18)),
            ),
            rpc_urls=tuple(params.get("rpcUrls") or ()),
            explorer_urls=tuple(params.get("blockExplorerUrls") or ()),
        )

    @classmethod
    def from_dict(cls, payload: dict[str, Any], registry: SchemaRegistry | None = None) -> "NetworkProfile":
        registry = registry or SchemaRegistry.default()
        registry.validate_instance(payload, "network.profile.schema.json")
        currency = payload["native_currency"]
        return cls(
            chain_id=payload["chain_id"],
            name=payload["name"],
            currency=NativeCurrency(currency["name"], currency["symbol"], currency["decimals"]),
            rpc_urls=tuple(payload["rpc_urls"]),
            explorer_urls=tuple(payload.get("explorer_urls", ())),
        )

    @classmethod
    def from_path(cls, path: Path, registry: SchemaRegistry | None = None) -> "NetworkProfile":
        return cls.from_dict(load_json(path), registry=registry)

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "name": self.name,
            "native_currency": {
                "name": self.currency.name,
                "symbol": self.currency.symbol,
                "decimals": self.currency.decimals,
            },
            "rpc_urls": list(self.rpc_urls),
            "explorer_urls": list(self.explorer_urls),
        }

    @classmethod
    def from_env(cls) -> "NetworkProfile":
        """
        The required network for this process.

        Priority: CODESTAKE_NETWORK_FILE (JSON profile), then EDU Chain
        testnet with CHAIN_ID / CODESTAKE_RPC overrides.
        """
        profile_file = os.environ.get("CODESTAKE_NETWORK_FILE")
        if profile_file:
            return cls.from_path(Path(profile_file).expanduser())

        profile = EDU_CHAIN_TESTNET
        rpc = os.environ.get("CODESTAKE_RPC")
        chain_id = os.environ.get("CHAIN_ID")
        if rpc or chain_id:
            profile = cls(
                chain_id=int(chain_id) if chain_id else profile.chain_id,
                name=profile.name if not chain_id or int(chain_id) == profile.chain_id else network_name(int(chain_id)),
                currency=profile.currency,
                rpc_urls=(rpc,) if rpc else profile.rpc_urls,
                explorer_urls=profile.explorer_urls,
            )
        return profile


EDU_CHAIN_TESTNET = NetworkProfile(
    chain_id=656476,
    name="EDU Chain Testnet",
    currency=NativeCurrency(name="EDU", symbol="EDU", decimals=18),
    rpc_urls=("https://rpc.open-campus-codex.gelato.digital",),
    explorer_urls=("https://opencampus-codex.blockscout.com",),
)

_NETWORK_NAMES: dict[int, str] = {
    1: "Ethereum Mainnet",
    5: "Goerli Testnet",
    137: "Polygon Mainnet",
    80001: "Mumbai Testnet",
    11155111: "Sepolia Testnet",
    84532: "Base Sepolia",
    EDU_CHAIN_TESTNET.chain_id: EDU_CHAIN_TESTNET.name,
}


def network_name(chain_id: Optional[int]) -> str:
    if chain_id is None:
        return "Not Connected"
    return _NETWORK_NAMES.get(chain_id, "Unknown Network")


class MismatchReason(str, Enum):
    MISMATCH_PERSISTS = "MismatchPersists"
    REJECTED = "Rejected"
    ADD_FAILED = "AddFailed"
    SWITCH_FAILED = "SwitchFailed"


class NetworkError(LedgerError):
    """The wallet is not, and could not be put, on the required network."""

    def __init__(self, reason: MismatchReason, message: str, *, current: Optional[int] = None) -> None:
        super().__init__(ErrorKind.NETWORK_MISMATCH, message)
        self.reason = reason
        self.current = current


@dataclass(frozen=True)
class NetworkReady:
    chain_id: int
    switched: bool = False


class NetworkGuard:
    """
    Compares the wallet's active chain with a required profile and drives
    wallet_switchEthereumChain / wallet_addEthereumChain when they differ.
    """

    def __init__(
        self,
        session: "WalletSession",
        *,
        settle_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.session = session
        self.settle_delay = settle_delay
        self._sleep = sleep

    async def _request(self, method: str, params: Optional[list] = None) -> Any:
        try:
            return await self.session.provider.request(method, params or [])
        except httpx.HTTPError as exc:
            raise as_ledger_error(exc, method=method) from exc

    async def current_network(self) -> int:
        try:
            return from_hex(await self._request("eth_chainId"))
        except RpcError as exc:
            raise as_ledger_error(exc, method="eth_chainId") from exc

    async def ensure_network(self, required: NetworkProfile) -> NetworkReady:
        """
        Return once the wallet is on ``required``.

        Raises:
            NetworkError: The switch was declined, the network could not be
                added, or the chain id still differs after the settle delay
            LedgerError: The wallet could not be queried (transient kinds)
        """
        current = await self.current_network()
        if current == required.chain_id:
            return NetworkReady(chain_id=current, switched=False)

        logger.info(
            "Wallet on %s (%s), switching to %s (%s)",
            network_name(current), current, required.name, required.chain_id,
        )
        try:
            await self._switch(required)
        except RpcError as exc:
            if exc.code != UNRECOGNIZED_CHAIN_CODE:
                raise self._switch_error(exc, current) from exc
            logger.info("Wallet does not know chain %s, adding it", required.chain_id)
            try:
                await self._request("wallet_addEthereumChain", [required.to_add_params()])
            except RpcError as add_exc:
                reason = MismatchReason.REJECTED if add_exc.code == USER_REJECTED_CODE else MismatchReason.ADD_FAILED
                raise NetworkError(reason, f"Could not add {required.name}: {add_exc.message}", current=current) from add_exc
            try:
                await self._switch(required)
            except RpcError as retry_exc:
                raise self._switch_error(retry_exc, current) from retry_exc

        await self._sleep(self.settle_delay)

        confirmed = await self.current_network()
        if confirmed != required.chain_id:
            raise NetworkError(
                MismatchReason.MISMATCH_PERSISTS,
                f"Wallet is still on chain {confirmed} after switching to {required.chain_id}",
                current=confirmed,
            )
        return NetworkReady(chain_id=confirmed, switched=True)

    async def _switch(self, required: NetworkProfile) -> None:
        await self._request("wallet_switchEthereumChain", [{"chainId": required.hex_chain_id}])

    @staticmethod
    def _switch_error(exc: RpcError, current: int) -> NetworkError:
        if exc.code == USER_REJECTED_CODE:
            return NetworkError(MismatchReason.REJECTED, "Network switch was rejected in the wallet", current=current)
        return NetworkError(MismatchReason.SWITCH_FAILED, f"Network switch failed: {exc.message}", current=current)

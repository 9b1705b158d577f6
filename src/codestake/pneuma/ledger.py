"""
Ledger Client - typed facade over the deployed CodeStake contract.

Reads go through ``eth_call``; writes go through the wallet
(``eth_sendTransaction``), which may prompt the user.  Every failure leaves
this module as a ``LedgerError`` with a classified ``ErrorKind``.

Usage:
    ledger = LedgerClient.bind(session, contract_address)
    (counter,) = await ledger.call("challengeCounter")
    gas = await ledger.estimate_gas("joinChallenge", [3], value=10**17)
    handle = await ledger.send("joinChallenge", [3], value=10**17, gas_limit=gas)
    receipt = await ledger.await_receipt(handle)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

import httpx

from ..config import PipelineConfig
from ..covenant.models import LedgerSummary
from ..utils import from_wei, same_address, to_checksum_address
from .abi import ContractCapabilities, FunctionSpec
from .errors import ErrorKind, LedgerError, RpcError, as_ledger_error
from .rpc import from_hex, to_hex, wait_for_receipt

if TYPE_CHECKING:
    from ..sigil.session import WalletSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TxHandle:
    tx_hash: str
    method: str


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    status: int
    block_number: int
    gas_used: int
    logs: tuple[Mapping[str, Any], ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, payload: Any) -> "Receipt":
        if not isinstance(payload, dict):
            raise LedgerError(ErrorKind.MALFORMED_RESPONSE, f"Unexpected receipt: {payload!r}")
        try:
            return cls(
                tx_hash=payload["transactionHash"],
                status=from_hex(payload["status"]),
                block_number=from_hex(payload["blockNumber"]),
                gas_used=from_hex(payload.get("gasUsed", "0x0")),
                logs=tuple(payload.get("logs") or ()),
            )
        except KeyError as exc:
            raise LedgerError(ErrorKind.MALFORMED_RESPONSE, f"Receipt is missing {exc}") from exc
        except TypeError as exc:
            raise LedgerError(ErrorKind.MALFORMED_RESPONSE, f"Unexpected receipt: {payload!r}") from exc


class LedgerClient:
    """Calls against one contract address, checked against its capabilities."""

    def __init__(
        self,
        session: "WalletSession",
        address: str,
        capabilities: ContractCapabilities,
        config: Optional[PipelineConfig] = None,
    ) -> None:
        self.session = session
        self.address = to_checksum_address(address)
        self.capabilities = capabilities
        self.config = config or PipelineConfig()

    @classmethod
    def bind(
        cls,
        session: "WalletSession",
        address: str,
        capabilities: Optional[ContractCapabilities] = None,
        config: Optional[PipelineConfig] = None,
    ) -> "LedgerClient":
        """
        Bind to a contract, building its capability descriptor once.

        Required functions absent from the ABI are logged here; calling
        one later fails with MethodUnavailable before any network traffic.
        """
        capabilities = capabilities or ContractCapabilities.default()
        missing = capabilities.missing()
        if missing:
            logger.warning("Contract %s lacks required functions: %s", address, ", ".join(missing))
        return cls(session, address, capabilities, config)

    async def _request(self, method: str, params: list, *, during: str, rpc_method: str) -> Any:
        try:
            return await self.session.provider.request(rpc_method, params)
        except (RpcError, httpx.HTTPError) as exc:
            raise as_ledger_error(exc, during=during, method=method) from exc

    def _transaction(self, spec: FunctionSpec, args: Sequence[Any], value: int) -> dict[str, Any]:
        if value and not spec.payable:
            raise LedgerError(
                ErrorKind.INVALID_ARGUMENT, f"{spec.name} does not accept a value", method=spec.name
            )
        return {
            "from": self.session.require_identity(),
            "to": self.address,
            "data": spec.encode_call(args),
            "value": to_hex(value),
        }

    # ---- Reads ----

    async def call(self, method: str, args: Sequence[Any] = ()) -> tuple[Any, ...]:
        """Run a view function and return its decoded outputs."""
        spec = self.capabilities.require(method)
        tx: dict[str, Any] = {"to": self.address, "data": spec.encode_call(args)}
        identity = self.session.current_identity()
        if identity:
            tx["from"] = identity
        result = await self._request(method, [tx, "latest"], during="call", rpc_method="eth_call")
        return spec.decode_result(result)

    async def gas_price(self) -> int:
        return from_hex(await self._request("eth_gasPrice", [], during="call", rpc_method="eth_gasPrice"))

    async def challenge_counter(self) -> int:
        (counter,) = await self.call("challengeCounter")
        return int(counter)

    async def active_challenge_ids(self) -> list[int]:
        (ids,) = await self.call("getActiveChallenges")
        return [int(i) for i in ids]

    async def has_joined(self, challenge_id: int, address: str) -> bool:
        (joined,) = await self.call("hasJoined", [challenge_id, to_checksum_address(address)])
        return bool(joined)

    async def ledger_summary(self, address: str) -> LedgerSummary:
        balance, earned, staked = await self.call("getWalletSummary", [to_checksum_address(address)])
        return LedgerSummary(
            balance=from_wei(balance),
            total_earned=from_wei(earned),
            total_staked=from_wei(staked),
        )

    # ---- Writes ----

    async def estimate_gas(self, method: str, args: Sequence[Any] = (), value: int = 0) -> int:
        """
        Dry-run a write and return the gas limit to use.

        The node estimate is inflated by ``config.gas_margin``.

        Raises:
            LedgerError: EstimationFailed if the call would revert,
                Timeout after ``config.estimate_timeout`` seconds
        """
        spec = self.capabilities.require(method)
        tx = self._transaction(spec, args, value)
        try:
            raw = await asyncio.wait_for(
                self._request(method, [tx], during="estimate", rpc_method="eth_estimateGas"),
                timeout=self.config.estimate_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise LedgerError(
                ErrorKind.TIMEOUT, f"Gas estimation for {method} timed out", method=method
            ) from exc
        gas = from_hex(raw)
        return int((Decimal(gas) * self.config.gas_margin).to_integral_value(rounding=ROUND_CEILING))

    async def send(
        self,
        method: str,
        args: Sequence[Any] = (),
        value: int = 0,
        gas_limit: Optional[int] = None,
    ) -> TxHandle:
        """
        Submit a write through the wallet.

        Raises:
            LedgerError: UserRejected if the signature was declined,
                Timeout if no signature arrived within ``config.signature_timeout``
        """
        spec = self.capabilities.require(method)
        tx = self._transaction(spec, args, value)
        if gas_limit is not None:
            tx["gas"] = to_hex(gas_limit)
        try:
            tx_hash = await asyncio.wait_for(
                self._request(method, [tx], during="send", rpc_method="eth_sendTransaction"),
                timeout=self.config.signature_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise LedgerError(
                ErrorKind.TIMEOUT, f"No signature for {method} within {self.config.signature_timeout}s", method=method
            ) from exc
        if not isinstance(tx_hash, str) or not tx_hash.startswith("0x"):
            raise LedgerError(ErrorKind.MALFORMED_RESPONSE, f"Wallet returned {tx_hash!r} as tx hash", method=method)
        logger.info("Submitted %s: %s", method, tx_hash)
        return TxHandle(tx_hash=tx_hash, method=method)

    async def await_receipt(
        self,
        handle: TxHandle,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> Receipt:
        """
        Poll until the transaction is mined.

        A Timeout here means the outcome is unknown, not that it failed.
        """
        payload = await wait_for_receipt(
            self.session.provider.request,
            handle.tx_hash,
            timeout=self.config.confirm_timeout if timeout is None else timeout,
            poll_interval=self.config.poll_interval if poll_interval is None else poll_interval,
        )
        return Receipt.from_rpc(payload)

    # ---- Events ----

    def decode_events(self, receipt: Receipt, name: str) -> list[dict[str, Any]]:
        """Decoded ``name`` logs emitted by this contract in a receipt."""
        event = self.capabilities.events.get(name)
        if event is None:
            return []
        decoded = []
        for log in receipt.logs:
            if log.get("address") and not same_address(log["address"], self.address):
                continue
            if event.matches(log):
                decoded.append(event.decode_log(log))
        return decoded

    def challenge_created_id(self, receipt: Receipt) -> Optional[int]:
        events = self.decode_events(receipt, "ChallengeCreated")
        return int(events[0]["challengeId"]) if events else None

    def milestone_winner(self, receipt: Receipt) -> Optional[str]:
        events = self.decode_events(receipt, "MilestoneCompleted")
        return to_checksum_address(events[0]["winner"]) if events else None

"""
Wallet providers.

A wallet provider is anything with an EIP-1193 style ``request(method,
params)`` coroutine plus ``on`` / ``remove_listener`` for the
``accountsChanged`` and ``chainChanged`` events.  ``LocalWallet`` is the
implementation used by the CLI: an eth-account key, a registry of known
networks and one JSON-RPC client per network.  Signature prompts go through
an approval callback so the caller decides how the user is asked.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol, Union

import httpx
from eth_account import Account
from eth_account.signers.local import LocalAccount

from ..pneuma.errors import (
    UNAUTHORIZED_CODE,
    UNRECOGNIZED_CHAIN_CODE,
    USER_REJECTED_CODE,
    RpcError,
)
from ..pneuma.network import NetworkProfile
from ..pneuma.rpc import RpcClient, from_hex, to_hex
from ..utils import same_address, to_checksum_address
from .eth import load_private_key

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]
Approver = Callable[[dict], Union[bool, Awaitable[bool]]]

ACCOUNTS_CHANGED = "accountsChanged"
CHAIN_CHANGED = "chainChanged"


class WalletProvider(Protocol):
    async def request(self, method: str, params: Optional[list] = None) -> Any: ...

    def on(self, event: str, listener: Listener) -> None: ...

    def remove_listener(self, event: str, listener: Listener) -> None: ...


class EventEmitter:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def remove_listener(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            listener(payload)


def _auto_approve(tx: dict) -> bool:
    return True


class LocalWallet(EventEmitter):
    """Software wallet holding one key and talking JSON-RPC to the active network."""

    def __init__(
        self,
        account: Optional[LocalAccount],
        networks: Iterable[NetworkProfile],
        *,
        active_chain_id: Optional[int] = None,
        approve: Approver = _auto_approve,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__()
        self._account = account
        self._networks: dict[int, NetworkProfile] = {n.chain_id: n for n in networks}
        if not self._networks:
            raise ValueError("LocalWallet needs at least one network")
        self._active = active_chain_id if active_chain_id is not None else next(iter(self._networks))
        if self._active not in self._networks:
            raise ValueError(f"Active chain {self._active} is not a known network")
        self._approve = approve
        self._transport = transport
        self._clients: dict[int, RpcClient] = {}
        self._authorized = False

    @classmethod
    def from_env(
        cls,
        networks: Iterable[NetworkProfile],
        *,
        active_chain_id: Optional[int] = None,
        approve: Approver = _auto_approve,
    ) -> "LocalWallet":
        """Wallet for the PRIVATE_KEY found in ~/.codestake/.env or the environment."""
        return cls(
            Account.from_key(load_private_key()),
            networks,
            active_chain_id=active_chain_id,
            approve=approve,
        )

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account else None

    @property
    def active_network(self) -> NetworkProfile:
        return self._networks[self._active]

    def _client(self) -> RpcClient:
        client = self._clients.get(self._active)
        if client is None:
            client = RpcClient(self.active_network.rpc_url, transport=self._transport)
            self._clients[self._active] = client
        return client

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()

    # ---- EIP-1193 ----

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        params = params or []
        if method == "eth_requestAccounts":
            if self._account is None:
                raise RpcError(UNAUTHORIZED_CODE, "No account configured")
            self._authorized = True
            return [self._account.address]
        if method == "eth_accounts":
            return [self._account.address] if (self._authorized and self._account) else []
        if method == "eth_chainId":
            return to_hex(self._active)
        if method == "net_version":
            return str(self._active)
        if method == "wallet_switchEthereumChain":
            return self._switch(from_hex(params[0]["chainId"]))
        if method == "wallet_addEthereumChain":
            profile = NetworkProfile.from_add_params(params[0])
            self._networks[profile.chain_id] = profile
            logger.info("Added network %s (%s)", profile.name, profile.chain_id)
            return None
        if method == "eth_sendTransaction":
            return await self._send_transaction(dict(params[0]))
        return await self._client().request(method, params)

    def _switch(self, chain_id: int) -> None:
        if chain_id not in self._networks:
            raise RpcError(UNRECOGNIZED_CHAIN_CODE, f"Unrecognized chain ID {to_hex(chain_id)}")
        if chain_id != self._active:
            self._active = chain_id
            self.emit(CHAIN_CHANGED, to_hex(chain_id))
        return None

    async def _send_transaction(self, tx: dict[str, Any]) -> str:
        if self._account is None or not self._authorized:
            raise RpcError(UNAUTHORIZED_CODE, "Wallet is not connected")
        sender = tx.get("from")
        if sender and not same_address(sender, self._account.address):
            raise RpcError(UNAUTHORIZED_CODE, f"Unknown sender {sender}")

        client = self._client()
        unsigned: dict[str, Any] = {
            "data": tx.get("data", "0x"),
            "value": from_hex(tx.get("value", "0x0")),
            "nonce": await client.get_nonce(self._account.address),
            "gasPrice": from_hex(tx["gasPrice"]) if "gasPrice" in tx else await client.gas_price(),
            "chainId": self._active,
        }
        if tx.get("to"):
            unsigned["to"] = to_checksum_address(tx["to"])
        if "gas" in tx:
            unsigned["gas"] = from_hex(tx["gas"])
        else:
            estimate_tx = {k: v for k, v in tx.items() if k in ("from", "to", "data", "value")}
            unsigned["gas"] = await client.estimate_gas(estimate_tx)

        if not await self._ask(unsigned):
            raise RpcError(USER_REJECTED_CODE, "User rejected the request.")

        signed = self._account.sign_transaction(unsigned)
        raw_tx = "0x" + bytes(signed.raw_transaction).hex()
        return await client.send_raw_transaction(raw_tx)

    async def _ask(self, tx: dict[str, Any]) -> bool:
        if inspect.iscoroutinefunction(self._approve):
            return bool(await self._approve(tx))
        # Sync approvers (click.confirm) block, keep them off the loop
        return bool(await asyncio.to_thread(self._approve, tx))

    # ---- External wallet events ----

    def lock(self) -> None:
        """Forget the authorization, as if the user disconnected the site."""
        self._authorized = False
        self.emit(ACCOUNTS_CHANGED, [])

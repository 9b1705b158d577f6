"""
Wallet Session - the connected identity and its lifecycle.

``connect`` is the only place that asks the wallet to reveal an account.
Everything else receives the session and reads ``current_identity()``.
Account and chain changes reported by the wallet are followed here and
forwarded to identity listeners (e.g. the Challenge Store, which drops its
per-identity derived views).
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Callable, Optional

import httpx

from ..pneuma.errors import ErrorKind, LedgerError, RpcError, as_ledger_error
from ..pneuma.rpc import from_hex
from ..utils import from_wei, same_address, to_checksum_address
from .wallet import ACCOUNTS_CHANGED, CHAIN_CHANGED, WalletProvider

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[str]], None]


class SessionError(LedgerError):
    """No usable identity: not connected, no accounts, or connection declined."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.USER_REJECTED) -> None:
        super().__init__(kind, message)


class WalletSession:
    def __init__(self, provider: WalletProvider) -> None:
        self.provider = provider
        self._identity: Optional[str] = None
        self._balance: Optional[int] = None
        self._chain_id: Optional[int] = None
        self._listeners: list[IdentityListener] = []
        self._tasks: set[asyncio.Task] = set()
        provider.on(ACCOUNTS_CHANGED, self._on_accounts_changed)
        provider.on(CHAIN_CHANGED, self._on_chain_changed)

    # ---- Lifecycle ----

    async def connect(self) -> str:
        """
        Ask the wallet for an account and make it the session identity.

        Raises:
            SessionError: The wallet failed or gave no usable account
        """
        step = "eth_requestAccounts"
        try:
            accounts = await self.provider.request(step)
            if not accounts:
                raise SessionError("Wallet returned no accounts")
            identity = to_checksum_address(accounts[0])
            step = "eth_chainId"
            chain_id = from_hex(await self.provider.request(step))
        except SessionError:
            raise
        except (RpcError, httpx.HTTPError) as exc:
            err = as_ledger_error(exc, method=step)
            raise SessionError(f"Could not connect wallet: {exc}", kind=err.kind) from exc
        except (LedgerError, ValueError, TypeError) as exc:
            raise SessionError(
                f"Wallet gave an unusable answer to {step}: {exc}", kind=ErrorKind.MALFORMED_RESPONSE
            ) from exc

        self._adopt(identity)
        self._chain_id = chain_id
        await self.refresh_balance()
        logger.info("Connected %s on chain %s", self._identity, self._chain_id)
        return self._identity  # type: ignore[return-value]

    def disconnect(self) -> None:
        had_identity = self._identity is not None
        self._identity = None
        self._balance = None
        if had_identity:
            logger.info("Wallet session disconnected")
            self._notify(None)

    async def close(self) -> None:
        self.provider.remove_listener(ACCOUNTS_CHANGED, self._on_accounts_changed)
        self.provider.remove_listener(CHAIN_CHANGED, self._on_chain_changed)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.disconnect()

    # ---- Identity ----

    def current_identity(self) -> Optional[str]:
        return self._identity

    def require_identity(self) -> str:
        if self._identity is None:
            raise SessionError("Wallet not connected")
        return self._identity

    @property
    def chain_id(self) -> Optional[int]:
        return self._chain_id

    def on_identity_change(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, identity: Optional[str]) -> None:
        for listener in list(self._listeners):
            listener(identity)

    def _adopt(self, address: str) -> None:
        identity = to_checksum_address(address)
        if same_address(identity, self._identity):
            return
        self._identity = identity
        self._balance = None
        self._notify(identity)

    # ---- Balance ----

    async def balance(self) -> Decimal:
        """Native balance of the session identity, in ether units."""
        if self._balance is None:
            await self.refresh_balance()
        return from_wei(self._balance or 0)

    async def refresh_balance(self) -> int:
        identity = self.require_identity()
        try:
            result = await self.provider.request("eth_getBalance", [identity, "latest"])
        except (RpcError, httpx.HTTPError) as exc:
            raise as_ledger_error(exc, method="eth_getBalance") from exc
        # Identity may have changed while waiting
        if same_address(identity, self._identity):
            self._balance = from_hex(result)
        return from_hex(result)

    # ---- Wallet events ----

    def _on_accounts_changed(self, accounts: list[str]) -> None:
        if not accounts:
            self.disconnect()
            return
        if same_address(accounts[0], self._identity):
            return
        logger.info("Wallet switched account to %s", accounts[0])
        self._adopt(accounts[0])
        self._schedule(self._refresh_quietly())

    def _on_chain_changed(self, chain_id: Any) -> None:
        self._chain_id = from_hex(chain_id)
        logger.info("Wallet switched to chain %s", self._chain_id)

    def _schedule(self, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: balance stays unknown until next balance() call
            coro.close()
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh_balance()
        except LedgerError as exc:
            logger.warning("Balance refresh after account change failed: %s", exc)

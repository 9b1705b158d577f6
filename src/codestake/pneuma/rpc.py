"""
JSON-RPC Client for EVM ledgers.

Lightweight alternative to web3.py: uses httpx for HTTP, eth-abi for
encoding (see ``abi``).  One ``RpcClient`` is bound to one endpoint URL;
switching networks means using a different client.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Any, Optional

import httpx

from .errors import LedgerError, ErrorKind, RpcError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

_ids = itertools.count(1)


def to_hex(value: int) -> str:
    return hex(int(value))


def from_hex(value: Any) -> int:
    """Parse a JSON-RPC quantity (0x-prefixed hex string)."""
    if isinstance(value, int):
        return value
    if not isinstance(value, str) or not value.startswith("0x"):
        raise LedgerError(ErrorKind.MALFORMED_RESPONSE, f"Expected hex quantity, got {value!r}")
    try:
        return int(value, 16)
    except ValueError as exc:
        raise LedgerError(ErrorKind.MALFORMED_RESPONSE, f"Expected hex quantity, got {value!r}") from exc


class RpcClient:
    """
    Async JSON-RPC 2.0 client over HTTP.

    Node errors are raised as ``RpcError``; transport failures propagate as
    httpx exceptions so that callers can classify them (see ``errors.classify``).
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RpcClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        """
        Make a JSON-RPC call.

        Args:
            method: RPC method name (e.g., "eth_call")
            params: RPC parameters

        Returns:
            Result field from the RPC response

        Raises:
            RpcError: If the endpoint answers with an error object
            httpx.HTTPError: On transport failure or non-2xx status
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(_ids),
        }
        response = await self._client.post(self.url, json=payload)
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as exc:
            raise LedgerError(ErrorKind.MALFORMED_RESPONSE, f"Non-JSON RPC response from {self.url}") from exc

        if not isinstance(data, dict):
            raise LedgerError(ErrorKind.MALFORMED_RESPONSE, f"Unexpected RPC payload: {data!r}")
        if "error" in data:
            raise RpcError.from_payload(data["error"])

        return data.get("result")

    # ---- Typed helpers ----

    async def get_balance(self, address: str) -> int:
        """ETH balance for an address, in wei."""
        return from_hex(await self.request("eth_getBalance", [address, "latest"]))

    async def get_nonce(self, address: str) -> int:
        return from_hex(await self.request("eth_getTransactionCount", [address, "pending"]))

    async def gas_price(self) -> int:
        return from_hex(await self.request("eth_gasPrice"))

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        return from_hex(await self.request("eth_estimateGas", [tx]))

    async def send_raw_transaction(self, raw_tx: str) -> str:
        """
        Send a signed raw transaction.

        Returns:
            Transaction hash (0x-prefixed hex)
        """
        return await self.request("eth_sendRawTransaction", [raw_tx])


async def wait_for_receipt(
    request: Any,
    tx_hash: str,
    timeout: float = 120,
    poll_interval: float = 2.0,
) -> dict:
    """
    Wait for a transaction receipt.

    Args:
        request: Coroutine function ``(method, params) -> result`` used for polling
        tx_hash: Transaction hash
        timeout: Maximum wait time in seconds
        poll_interval: Polling interval in seconds

    Returns:
        Transaction receipt dict

    Raises:
        LedgerError: kind Timeout if the receipt is not found within timeout
    """
    start = time.monotonic()
    while True:
        try:
            receipt = await request("eth_getTransactionReceipt", [tx_hash])
        except (httpx.TransportError, httpx.HTTPStatusError, RpcError) as exc:
            # Keep polling; the transaction is already in the mempool.
            logger.warning("Receipt poll for %s failed: %s", tx_hash, exc)
            receipt = None
        if receipt is not None:
            return receipt
        if time.monotonic() - start >= timeout:
            break
        await asyncio.sleep(poll_interval)

    raise LedgerError(ErrorKind.TIMEOUT, f"Transaction {tx_hash} not confirmed within {timeout}s")

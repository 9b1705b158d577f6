"""
Error taxonomy for ledger interaction.

Every failure that crosses the ledger boundary is reduced to one
``ErrorKind``.  Classification uses structured data only (JSON-RPC and
EIP-1193 error codes, HTTP status, httpx exception types and the stage
the call was made in).  Human-readable text is produced by ``describe``
for display and is never parsed back.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

import httpx


class ErrorKind(str, Enum):
    METHOD_UNAVAILABLE = "MethodUnavailable"
    NETWORK_MISMATCH = "NetworkMismatch"
    USER_REJECTED = "UserRejected"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    ESTIMATION_FAILED = "EstimationFailed"
    TIMEOUT = "Timeout"
    MALFORMED_RESPONSE = "MalformedResponse"
    INVALID_ARGUMENT = "InvalidArgument"
    RATE_LIMITED = "RateLimited"
    TRANSPORT = "Transport"
    REVERTED = "Reverted"

    @property
    def transient(self) -> bool:
        """Whether an automatic retry may succeed without any change."""
        return self in _TRANSIENT


_TRANSIENT = frozenset({ErrorKind.TIMEOUT, ErrorKind.RATE_LIMITED, ErrorKind.TRANSPORT})

# CLI exit codes, one per kind
_EXIT_CODES: dict[ErrorKind, int] = {
    ErrorKind.INVALID_ARGUMENT: 2,
    ErrorKind.NETWORK_MISMATCH: 3,
    ErrorKind.USER_REJECTED: 4,
    ErrorKind.INSUFFICIENT_FUNDS: 5,
    ErrorKind.ESTIMATION_FAILED: 6,
    ErrorKind.REVERTED: 6,
    ErrorKind.TIMEOUT: 7,
    ErrorKind.METHOD_UNAVAILABLE: 8,
    ErrorKind.MALFORMED_RESPONSE: 9,
    ErrorKind.RATE_LIMITED: 10,
    ErrorKind.TRANSPORT: 10,
}

_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.METHOD_UNAVAILABLE: "The contract does not expose this operation. Check the contract address and ABI.",
    ErrorKind.NETWORK_MISMATCH: "The wallet is connected to the wrong network.",
    ErrorKind.USER_REJECTED: "The transaction was rejected in the wallet.",
    ErrorKind.INSUFFICIENT_FUNDS: "Insufficient funds for this transaction.",
    ErrorKind.ESTIMATION_FAILED: "The contract would reject this transaction with these parameters.",
    ErrorKind.TIMEOUT: "No answer within the time limit. The transaction may still be confirmed later.",
    ErrorKind.MALFORMED_RESPONSE: "The ledger returned data that could not be decoded.",
    ErrorKind.INVALID_ARGUMENT: "Invalid arguments.",
    ErrorKind.RATE_LIMITED: "The RPC endpoint is rate limiting requests.",
    ErrorKind.TRANSPORT: "The RPC endpoint could not be reached.",
    ErrorKind.REVERTED: "The transaction was mined but reverted.",
}

# EIP-1193 provider errors
USER_REJECTED_CODE = 4001
UNAUTHORIZED_CODE = 4100
UNRECOGNIZED_CHAIN_CODE = 4902

# JSON-RPC / EIP-1474 server errors
EXECUTION_REVERTED_CODE = 3
METHOD_NOT_FOUND_CODE = -32601
INVALID_PARAMS_CODE = -32602
LIMIT_EXCEEDED_CODE = -32005
TRANSACTION_REJECTED_CODE = -32003


def describe(kind: ErrorKind) -> str:
    """Display text for an error kind."""
    return _MESSAGES[kind]


class LedgerError(RuntimeError):
    """A classified ledger failure."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        *,
        method: Optional[str] = None,
        code: Optional[int] = None,
    ) -> None:
        super().__init__(message or describe(kind))
        self.kind = kind
        self.method = method
        self.code = code

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES.get(self.kind, 1)

    @property
    def retryable(self) -> bool:
        return self.kind.transient


class RpcError(RuntimeError):
    """Raw error object returned by a JSON-RPC endpoint or wallet."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_payload(cls, payload: Any) -> "RpcError":
        if isinstance(payload, dict):
            code = payload.get("code")
            return cls(
                code if isinstance(code, int) else -32603,
                str(payload.get("message", "")),
                payload.get("data"),
            )
        return cls(-32603, str(payload))


def classify(exc: BaseException, *, during: str = "call") -> ErrorKind:
    """
    Reduce an exception raised by the RPC or wallet layer to an ErrorKind.

    Args:
        exc: The exception to classify.
        during: Which ledger operation raised it: "call", "estimate",
            "send" or "receipt".  A node error during gas estimation means
            the dry run reverted; the same code from a view call means the
            response cannot be used.
    """
    if isinstance(exc, LedgerError):
        return exc.kind
    if isinstance(exc, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code == 429:
            return ErrorKind.RATE_LIMITED
        return ErrorKind.TRANSPORT
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.TRANSPORT
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, RpcError):
        if exc.code in (USER_REJECTED_CODE, UNAUTHORIZED_CODE):
            return ErrorKind.USER_REJECTED
        if exc.code == UNRECOGNIZED_CHAIN_CODE:
            return ErrorKind.NETWORK_MISMATCH
        if exc.code == LIMIT_EXCEEDED_CODE:
            return ErrorKind.RATE_LIMITED
        if exc.code == METHOD_NOT_FOUND_CODE:
            return ErrorKind.METHOD_UNAVAILABLE
        if during == "estimate":
            return ErrorKind.ESTIMATION_FAILED
        if during == "send":
            if exc.code == TRANSACTION_REJECTED_CODE:
                return ErrorKind.USER_REJECTED
            return ErrorKind.ESTIMATION_FAILED
        if during == "receipt":
            return ErrorKind.TRANSPORT
        return ErrorKind.MALFORMED_RESPONSE
    return ErrorKind.MALFORMED_RESPONSE


def as_ledger_error(exc: BaseException, *, during: str = "call", method: Optional[str] = None) -> LedgerError:
    """Wrap any RPC-layer exception in a classified LedgerError."""
    if isinstance(exc, LedgerError):
        return exc
    kind = classify(exc, during=during)
    code = exc.code if isinstance(exc, RpcError) else None
    return LedgerError(kind, f"{describe(kind)} ({exc})", method=method, code=code)

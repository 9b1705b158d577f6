"""Tests for pneuma/errors.py: classification of ledger failures."""

from __future__ import annotations

import httpx
import pytest

from codestake.pneuma.errors import (
    ErrorKind,
    LedgerError,
    RpcError,
    as_ledger_error,
    classify,
    describe,
)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://rpc.example")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("status", request=request, response=response)


@pytest.mark.parametrize(
    ("exc", "during", "kind"),
    [
        (RpcError(4001, "User rejected the request."), "send", ErrorKind.USER_REJECTED),
        (RpcError(4100, "Unauthorized"), "call", ErrorKind.USER_REJECTED),
        (RpcError(4902, "Unrecognized chain"), "call", ErrorKind.NETWORK_MISMATCH),
        (RpcError(-32005, "limit exceeded"), "call", ErrorKind.RATE_LIMITED),
        (RpcError(-32601, "method not found"), "call", ErrorKind.METHOD_UNAVAILABLE),
        (RpcError(3, "execution reverted"), "estimate", ErrorKind.ESTIMATION_FAILED),
        (RpcError(-32000, "insufficient funds"), "estimate", ErrorKind.ESTIMATION_FAILED),
        (RpcError(-32003, "transaction rejected"), "send", ErrorKind.USER_REJECTED),
        (RpcError(3, "execution reverted"), "call", ErrorKind.MALFORMED_RESPONSE),
        (RpcError(-32000, "header not found"), "receipt", ErrorKind.TRANSPORT),
        (httpx.ConnectError("refused"), "call", ErrorKind.TRANSPORT),
        (httpx.ReadTimeout("slow"), "call", ErrorKind.TIMEOUT),
        (TimeoutError(), "send", ErrorKind.TIMEOUT),
        (_status_error(429), "call", ErrorKind.RATE_LIMITED),
        (_status_error(502), "call", ErrorKind.TRANSPORT),
        (ValueError("garbage"), "call", ErrorKind.MALFORMED_RESPONSE),
    ],
)
def test_classify(exc: BaseException, during: str, kind: ErrorKind):
    assert classify(exc, during=during) is kind


def test_classify_does_not_read_messages():
    # Same code, different text: same kind
    a = classify(RpcError(-32000, "insufficient funds for gas"), during="call")
    b = classify(RpcError(-32000, "anything else"), during="call")
    assert a is b


def test_transient_kinds():
    transient = {k for k in ErrorKind if k.transient}
    assert transient == {ErrorKind.TIMEOUT, ErrorKind.RATE_LIMITED, ErrorKind.TRANSPORT}


def test_every_kind_has_a_message_and_exit_code():
    for kind in ErrorKind:
        assert describe(kind)
        assert LedgerError(kind).exit_code > 1


def test_ledger_error_defaults_to_description():
    err = LedgerError(ErrorKind.REVERTED)
    assert str(err) == describe(ErrorKind.REVERTED)
    assert not err.retryable


def test_as_ledger_error_keeps_code_and_method():
    err = as_ledger_error(RpcError(4001, "no"), during="send", method="joinChallenge")
    assert err.kind is ErrorKind.USER_REJECTED
    assert err.code == 4001
    assert err.method == "joinChallenge"


def test_as_ledger_error_passes_through():
    original = LedgerError(ErrorKind.TIMEOUT, "late")
    assert as_ledger_error(original) is original


def test_rpc_error_from_payload():
    err = RpcError.from_payload({"code": -32602, "message": "invalid params", "data": "0x"})
    assert (err.code, err.message, err.data) == (-32602, "invalid params", "0x")

    odd = RpcError.from_payload("boom")
    assert odd.code == -32603

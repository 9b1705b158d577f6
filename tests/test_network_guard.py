"""Tests for pneuma/network.py: network profiles and the switch flow."""

from __future__ import annotations

import asyncio

import httpx
import pytest
from conftest import FakeChain

from codestake.pneuma.errors import ErrorKind, LedgerError, RpcError
from codestake.pneuma.network import (
    EDU_CHAIN_TESTNET,
    MismatchReason,
    NetworkError,
    NetworkGuard,
    NetworkProfile,
    network_name,
)
from codestake.sigil.session import WalletSession


def _guard(chain: FakeChain, sleeps: list | None = None) -> NetworkGuard:
    async def sleep(delay: float) -> None:
        if sleeps is not None:
            sleeps.append(delay)

    return NetworkGuard(WalletSession(chain), settle_delay=1.5, sleep=sleep)


def test_already_on_required_network(chain: FakeChain):
    ready = asyncio.run(_guard(chain).ensure_network(EDU_CHAIN_TESTNET))

    assert ready.chain_id == EDU_CHAIN_TESTNET.chain_id
    assert not ready.switched
    assert chain.calls["wallet_switchEthereumChain"] == 0


def test_switches_and_waits_for_settle():
    chain = FakeChain(chain_id=1)
    sleeps: list[float] = []

    ready = asyncio.run(_guard(chain, sleeps).ensure_network(EDU_CHAIN_TESTNET))

    assert ready.switched
    assert chain.chain_id == EDU_CHAIN_TESTNET.chain_id
    assert sleeps == [1.5]
    # Before and after the switch
    assert chain.calls["eth_chainId"] == 2


def test_unknown_network_is_added_then_switched():
    chain = FakeChain(chain_id=1)
    chain.known_chains = {1}

    ready = asyncio.run(_guard(chain).ensure_network(EDU_CHAIN_TESTNET))

    assert ready.switched
    assert len(chain.added_networks) == 1
    added = chain.added_networks[0]
    assert added["chainId"] == EDU_CHAIN_TESTNET.hex_chain_id
    assert added["nativeCurrency"]["symbol"] == "EDU"
    assert chain.calls["wallet_switchEthereumChain"] == 2


def test_rejected_switch():
    chain = FakeChain(chain_id=1)
    chain.reject_switch = True

    with pytest.raises(NetworkError) as exc_info:
        asyncio.run(_guard(chain).ensure_network(EDU_CHAIN_TESTNET))

    err = exc_info.value
    assert err.kind is ErrorKind.NETWORK_MISMATCH
    assert err.reason is MismatchReason.REJECTED
    assert err.current == 1


def test_add_failure():
    chain = FakeChain(chain_id=1)
    chain.known_chains = {1}
    chain.fail("wallet_addEthereumChain", RpcError(-32602, "bad rpc url"))

    with pytest.raises(NetworkError) as exc_info:
        asyncio.run(_guard(chain).ensure_network(EDU_CHAIN_TESTNET))
    assert exc_info.value.reason is MismatchReason.ADD_FAILED


def test_mismatch_persists_after_switch():
    chain = FakeChain(chain_id=1)
    chain.ignore_switch = True

    with pytest.raises(NetworkError) as exc_info:
        asyncio.run(_guard(chain).ensure_network(EDU_CHAIN_TESTNET))
    assert exc_info.value.reason is MismatchReason.MISMATCH_PERSISTS
    assert exc_info.value.current == 1


def test_unreachable_wallet_is_transient(chain: FakeChain):
    chain.fail("eth_chainId", httpx.ConnectError("refused"))

    with pytest.raises(LedgerError) as exc_info:
        asyncio.run(_guard(chain).ensure_network(EDU_CHAIN_TESTNET))
    assert not isinstance(exc_info.value, NetworkError)
    assert exc_info.value.kind is ErrorKind.TRANSPORT
    assert exc_info.value.retryable


def test_network_names():
    assert network_name(None) == "Not Connected"
    assert network_name(1) == "Ethereum Mainnet"
    assert network_name(EDU_CHAIN_TESTNET.chain_id) == "EDU Chain Testnet"
    assert network_name(424242) == "Unknown Network"


def test_profile_add_params_round_trip():
    params = EDU_CHAIN_TESTNET.to_add_params()
    assert params["chainId"] == "0xa045c"
    assert NetworkProfile.from_add_params(params) == EDU_CHAIN_TESTNET


def test_tx_url():
    assert EDU_CHAIN_TESTNET.tx_url("0xab") == "https://opencampus-codex.blockscout.com/tx/0xab"
    bare = NetworkProfile.from_dict(
        {
            "chain_id": 31337,
            "name": "Anvil",
            "native_currency": {"name": "Ether", "symbol": "ETH", "decimals": 18},
            "rpc_urls": ["http://127.0.0.1:8545"],
        }
    )
    assert bare.tx_url("0xab") is None

"""Tests for config.py and environment-driven network profiles."""

from __future__ import annotations

import json
import os
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

import pytest

from codestake.canon.schemas import SchemaValidationError
from codestake.config import DEFAULT_CONTRACT_ADDRESS, PipelineConfig, get_contract_address, load_env
from codestake.pneuma.network import EDU_CHAIN_TESTNET, NetworkProfile


def test_pipeline_defaults():
    config = PipelineConfig()
    assert config.gas_margin == Decimal("1.3")
    assert config.transient_retries == 1


def test_pipeline_from_env():
    config = PipelineConfig.from_env(
        {
            "CODESTAKE_GAS_MARGIN": "1.5",
            "CODESTAKE_CONFIRM_TIMEOUT": "30",
            "CODESTAKE_TRANSIENT_RETRIES": "3",
        }
    )
    assert config.gas_margin == Decimal("1.5")
    assert config.confirm_timeout == 30.0
    assert config.transient_retries == 3
    assert config.poll_interval == PipelineConfig().poll_interval


@pytest.mark.parametrize(
    "kwargs",
    [{"gas_margin": Decimal("0.9")}, {"transient_retries": -1}, {"confirm_timeout": -1.0}],
)
def test_pipeline_config_validation(kwargs):
    with pytest.raises(ValueError):
        PipelineConfig(**kwargs)


def test_load_env_does_not_override(tmp_path: Path):
    env_path = tmp_path / ".env"
    env_path.write_text("CODESTAKE_CONTRACT_ADDRESS=0xfile\nCODESTAKE_RPC=http://file\n", encoding="utf-8")

    with patch.dict(os.environ, {"CODESTAKE_RPC": "http://shell"}, clear=True):
        load_env(env_path)
        assert os.environ["CODESTAKE_RPC"] == "http://shell"
        assert get_contract_address() == "0xfile"


def test_contract_address_default():
    with patch.dict(os.environ, {}, clear=True):
        assert get_contract_address() == DEFAULT_CONTRACT_ADDRESS


def test_network_from_env_defaults():
    with patch.dict(os.environ, {}, clear=True):
        assert NetworkProfile.from_env() == EDU_CHAIN_TESTNET


def test_network_from_env_overrides():
    with patch.dict(os.environ, {"CODESTAKE_RPC": "http://127.0.0.1:8545", "CHAIN_ID": "11155111"}, clear=True):
        profile = NetworkProfile.from_env()
    assert profile.chain_id == 11155111
    assert profile.name == "Sepolia Testnet"
    assert profile.rpc_url == "http://127.0.0.1:8545"


def test_network_from_file(tmp_path: Path):
    path = tmp_path / "anvil.json"
    path.write_text(
        json.dumps(
            {
                "chain_id": 31337,
                "name": "Anvil",
                "native_currency": {"name": "Ether", "symbol": "ETH", "decimals": 18},
                "rpc_urls": ["http://127.0.0.1:8545"],
            }
        ),
        encoding="utf-8",
    )
    with patch.dict(os.environ, {"CODESTAKE_NETWORK_FILE": str(path)}, clear=True):
        profile = NetworkProfile.from_env()
    assert profile.chain_id == 31337
    assert profile.currency.symbol == "ETH"
    assert profile.to_dict()["explorer_urls"] == []


def test_network_file_is_validated(tmp_path: Path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"chain_id": 0, "name": ""}), encoding="utf-8")
    with pytest.raises(SchemaValidationError):
        NetworkProfile.from_path(path)

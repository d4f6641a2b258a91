import json
import os

import pytest
from web3 import Web3

from event_indexer.config import load_config
from event_indexer.errors import ConfigError

from conftest import MARKETPLACE, PROPERTY_SHARE


def _write(tmp_path, data):
    path = tmp_path / "indexer.json"
    path.write_text(json.dumps(data))
    return str(path)


def test_env_overrides_file_and_per_contract_keys_win(tmp_path):
    path = _write(
        tmp_path,
        {
            "rpc_http": "http://file:8545",
            "batch_size": 50,
            "contracts": {"PropertyShare": {"address": PROPERTY_SHARE, "batch_size": 10}},
        },
    )
    cfg = load_config(
        path,
        env={
            "RPC_URL": "http://env:8545",
            "CONFIRMATIONS_REQUIRED": "5",
            "ENABLE_REORG_PROTECTION": "false",
            "MARKETPLACE_ADDRESS": Web3.to_checksum_address(MARKETPLACE),
        },
    )

    assert cfg.rpc_http == "http://env:8545"
    shares = cfg.contract("PropertyShare")
    market = cfg.contract(MARKETPLACE)
    assert shares.batch_size == 10
    assert market.batch_size == 50
    assert market.name == "Marketplace"
    assert market.address == MARKETPLACE
    assert shares.confirmations_required == 5
    assert market.enable_reorg_protection is False


def test_defaults(tmp_path):
    cfg = load_config(_write(tmp_path, {"rpc_http": "http://x", "contracts": {"Marketplace": MARKETPLACE}}), env={})
    contract = cfg.contracts[0]
    assert contract.batch_size == 1000
    assert contract.confirmations_required == 3
    assert contract.checkpoint_interval == 100
    assert contract.enable_reorg_protection is True
    assert contract.start_block is None
    assert cfg.poll_interval == 5.0
    assert cfg.db_path == "./events.db"
    assert cfg.max_blocks_behind == 1000


def test_start_block_from_env(tmp_path):
    cfg = load_config(None, env={"RPC_URL": "http://x", "START_BLOCK": "1234", "PROPERTY_SHARE_ADDRESS": PROPERTY_SHARE})
    assert cfg.contracts[0].start_block == 1234


def test_missing_rpc_is_fatal(tmp_path):
    with pytest.raises(ConfigError, match="rpc_http"):
        load_config(None, env={"PROPERTY_SHARE_ADDRESS": PROPERTY_SHARE})


def test_no_contracts_is_fatal():
    with pytest.raises(ConfigError, match="No contracts"):
        load_config(None, env={"RPC_URL": "http://x"})


def test_invalid_address(tmp_path):
    with pytest.raises(ConfigError, match="Invalid address"):
        load_config(None, env={"RPC_URL": "http://x", "MARKETPLACE_ADDRESS": "0x1234"})


@pytest.mark.parametrize(
    "key,value",
    [("batch_size", 0), ("confirmations_required", -1), ("checkpoint_interval", 0), ("poll_interval", 0)],
)
def test_out_of_range_settings(tmp_path, key, value):
    path = _write(tmp_path, {"rpc_http": "http://x", key: value, "contracts": {"Marketplace": MARKETPLACE}})
    with pytest.raises(ConfigError):
        load_config(path, env={})


def test_unparseable_env_value():
    with pytest.raises(ConfigError, match="BATCH_SIZE"):
        load_config(None, env={"RPC_URL": "http://x", "BATCH_SIZE": "lots", "MARKETPLACE_ADDRESS": MARKETPLACE})


def test_unknown_contract_needs_abi(tmp_path):
    path = _write(tmp_path, {"rpc_http": "http://x", "contracts": {"Vault": MARKETPLACE}})
    with pytest.raises(ConfigError, match="Vault"):
        load_config(path, env={})


def test_missing_explicit_config_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(tmp_path / "nope.json"), env={})


def test_missing_default_config_file_is_tolerated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = load_config("config.json", env={"RPC_URL": "http://x", "MARKETPLACE_ADDRESS": MARKETPLACE})
    assert [c.name for c in cfg.contracts] == ["Marketplace"]


def test_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError, match="Invalid JSON"):
        load_config(str(path), env={})


def test_dotenv_file_is_loaded(tmp_path, monkeypatch):
    monkeypatch.delenv("RPC_URL", raising=False)
    monkeypatch.delenv("ZK_REGISTRY_ADDRESS", raising=False)
    dotenv = tmp_path / ".env"
    dotenv.write_text(f"RPC_URL=http://dotenv:8545\nZK_REGISTRY_ADDRESS={MARKETPLACE}\n")

    try:
        cfg = load_config(None, dotenv_path=str(dotenv))
    finally:
        os.environ.pop("RPC_URL", None)
        os.environ.pop("ZK_REGISTRY_ADDRESS", None)

    assert cfg.rpc_http == "http://dotenv:8545"
    assert cfg.contract("ZKRegistry").address == MARKETPLACE

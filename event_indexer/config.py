"""Indexer configuration.

Settings come from a JSON file and are overlaid by environment variables
(``.env`` is loaded with python-dotenv). Anything missing or malformed raises
ConfigError so the process refuses to start instead of running half-configured.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from web3 import Web3

from .abis import BUILTIN_ABIS
from .errors import ConfigError
from .utils import db_addr, load_json


# contract name -> env var holding its address
ADDRESS_ENV = {
    "PropertyShare": "PROPERTY_SHARE_ADDRESS",
    "RevenueSplitter": "REVENUE_SPLITTER_ADDRESS",
    "Marketplace": "MARKETPLACE_ADDRESS",
    "UserRegistry": "USER_REGISTRY_ADDRESS",
    "IdentitySBT": "IDENTITY_SBT_ADDRESS",
    "ZKRegistry": "ZK_REGISTRY_ADDRESS",
}

DEFAULTS: Dict[str, Any] = {
    "rpc_http": None,
    "db_path": "./events.db",
    "poll_interval": 5.0,
    "batch_size": 1000,
    "confirmations_required": 3,
    "checkpoint_interval": 100,
    "enable_reorg_protection": True,
    "start_block": 0,
    "start_lookback": 10,
    "rpc_timeout": 30.0,
    "db_timeout": 5.0,
    "status_interval": 60.0,
    "max_blocks_behind": 1000,
    "log_level": "INFO",
}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# key -> (env var, parser)
_ENV_OVERRIDES = {
    "rpc_http": ("RPC_URL", str),
    "db_path": ("DB_PATH", str),
    "poll_interval": ("POLL_INTERVAL", float),
    "batch_size": ("BATCH_SIZE", int),
    "confirmations_required": ("CONFIRMATIONS_REQUIRED", int),
    "checkpoint_interval": ("CHECKPOINT_INTERVAL", int),
    "enable_reorg_protection": ("ENABLE_REORG_PROTECTION", _parse_bool),
    "start_block": ("START_BLOCK", int),
    "start_lookback": ("START_LOOKBACK", int),
    "rpc_timeout": ("RPC_TIMEOUT", float),
    "db_timeout": ("DB_TIMEOUT", float),
    "status_interval": ("STATUS_INTERVAL", float),
    "max_blocks_behind": ("MAX_BLOCKS_BEHIND", int),
    "log_level": ("LOG_LEVEL", str),
}

_PER_CONTRACT_KEYS = (
    "batch_size",
    "confirmations_required",
    "checkpoint_interval",
    "enable_reorg_protection",
)


@dataclass(frozen=True)
class ContractConfig:
    name: str
    address: str
    start_block: Optional[int] = None
    abi: Optional[Any] = None
    batch_size: int = 1000
    confirmations_required: int = 3
    checkpoint_interval: int = 100
    enable_reorg_protection: bool = True


@dataclass(frozen=True)
class IndexerConfig:
    rpc_http: str
    contracts: List[ContractConfig]
    db_path: str = "./events.db"
    poll_interval: float = 5.0
    start_lookback: int = 10
    rpc_timeout: float = 30.0
    db_timeout: float = 5.0
    status_interval: float = 60.0
    max_blocks_behind: int = 1000
    log_level: str = "INFO"

    def contract(self, name_or_address: str) -> Optional[ContractConfig]:
        key = name_or_address.lower()
        for contract in self.contracts:
            if contract.name.lower() == key or contract.address == key:
                return contract
        return None


def load_config(
    path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[str] = ".env",
) -> IndexerConfig:
    if env is None:
        if dotenv_path:
            load_dotenv(dotenv_path)
        env = os.environ

    raw: Dict[str, Any] = {}
    if path:
        if os.path.exists(path):
            try:
                raw = load_json(path)
            except ValueError as exc:
                raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
            if not isinstance(raw, dict):
                raise ConfigError(f"{path} must contain a JSON object")
        elif path != "config.json":
            raise ConfigError(f"Config file not found: {path}")

    settings = dict(DEFAULTS)
    settings.update({k: v for k, v in raw.items() if k != "contracts"})
    for key, (var, parser) in _ENV_OVERRIDES.items():
        if env.get(var) not in (None, ""):
            try:
                settings[key] = parser(env[var])
            except ValueError as exc:
                raise ConfigError(f"Invalid value for {var}: {env[var]!r}") from exc

    contracts_raw = dict(raw.get("contracts") or {})
    for name, var in ADDRESS_ENV.items():
        if env.get(var):
            entry = contracts_raw.get(name)
            if isinstance(entry, dict):
                entry = dict(entry, address=env[var])
            else:
                entry = env[var]
            contracts_raw[name] = entry

    return build_config(settings, contracts_raw)


def build_config(settings: Dict[str, Any], contracts_raw: Dict[str, Any]) -> IndexerConfig:
    if not settings.get("rpc_http"):
        raise ConfigError("rpc_http (RPC_URL) is required")

    try:
        poll_interval = float(settings["poll_interval"])
        rpc_timeout = float(settings["rpc_timeout"])
        db_timeout = float(settings["db_timeout"])
        status_interval = float(settings["status_interval"])
        start_lookback = int(settings["start_lookback"])
        max_blocks_behind = int(settings["max_blocks_behind"])
        global_start = int(settings.get("start_block") or 0)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid numeric setting: {exc}") from exc
    if poll_interval <= 0:
        raise ConfigError("poll_interval must be positive")
    if rpc_timeout <= 0 or db_timeout <= 0:
        raise ConfigError("timeouts must be positive")
    if start_lookback < 0:
        raise ConfigError("start_lookback must be >= 0")

    contracts: List[ContractConfig] = []
    seen = set()
    for name, entry in contracts_raw.items():
        contract = _build_contract(name, entry, settings, global_start)
        if contract is None:
            continue
        if contract.address in seen:
            raise ConfigError(f"Duplicate contract address {contract.address}")
        seen.add(contract.address)
        contracts.append(contract)

    if not contracts:
        raise ConfigError("No contracts configured")

    return IndexerConfig(
        rpc_http=str(settings["rpc_http"]),
        contracts=contracts,
        db_path=str(settings["db_path"]),
        poll_interval=poll_interval,
        start_lookback=start_lookback,
        rpc_timeout=rpc_timeout,
        db_timeout=db_timeout,
        status_interval=status_interval,
        max_blocks_behind=max_blocks_behind,
        log_level=str(settings["log_level"]),
    )


def _build_contract(
    name: str, entry: Any, settings: Dict[str, Any], global_start: int
) -> Optional[ContractConfig]:
    if isinstance(entry, dict):
        options = dict(entry)
    else:
        options = {"address": entry}

    address = options.get("address")
    if not address:
        return None
    if not Web3.is_address(address):
        raise ConfigError(f"Invalid address for contract {name}: {address}")

    abi = options.get("abi")
    if abi is None and name not in BUILTIN_ABIS:
        raise ConfigError(f"No built-in ABI for contract {name}; set contracts.{name}.abi")

    values: Dict[str, Any] = {}
    for key in _PER_CONTRACT_KEYS:
        values[key] = options.get(key, settings[key])
    try:
        batch_size = int(values["batch_size"])
        confirmations = int(values["confirmations_required"])
        checkpoint_interval = int(values["checkpoint_interval"])
        reorg = _parse_bool(values["enable_reorg_protection"])
        start_block = options.get("start_block", global_start)
        start_block = int(start_block) if start_block else None
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid setting for contract {name}: {exc}") from exc

    if batch_size < 1:
        raise ConfigError(f"batch_size must be >= 1 (contract {name})")
    if confirmations < 0:
        raise ConfigError(f"confirmations_required must be >= 0 (contract {name})")
    if checkpoint_interval < 1:
        raise ConfigError(f"checkpoint_interval must be >= 1 (contract {name})")
    if start_block is not None and start_block < 0:
        raise ConfigError(f"start_block must be >= 0 (contract {name})")

    return ContractConfig(
        name=name,
        address=db_addr(address),
        start_block=start_block,
        abi=abi,
        batch_size=batch_size,
        confirmations_required=confirmations,
        checkpoint_interval=checkpoint_interval,
        enable_reorg_protection=reorg,
    )

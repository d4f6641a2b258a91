"""Event catalog: per-contract lookup tables from topic0 to event ABI.

Topic hashes are computed once when the catalog is built, so matching a log is
a dictionary lookup on its first topic. Logs whose signature is not in the
table are noise and decode to ``None``; logs that match but cannot be decoded
raise DecodeError.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from eth_utils import event_abi_to_log_topic
from web3._utils.events import get_event_data

from .abis import BUILTIN_ABIS
from .config import ContractConfig
from .errors import ConfigError, DecodeError
from .utils import db_addr, load_json, log_identity, normalize_log, to_hex


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventDefinition:
    name: str
    topic0: str
    abi: Dict[str, Any]


@dataclass(frozen=True)
class DecodedEvent:
    """A log matched to a catalog entry: ``name`` tags the shape of ``args``."""

    name: str
    args: Dict[str, Any]
    contract_address: str
    topic0: str


@dataclass
class ContractCatalog:
    name: str
    address: str
    events: Dict[str, EventDefinition] = field(default_factory=dict)

    @property
    def event_names(self) -> List[str]:
        return sorted(definition.name for definition in self.events.values())

    def match(self, topic0: Optional[str]) -> Optional[EventDefinition]:
        if topic0 is None:
            return None
        return self.events.get(topic0.lower())


def _event_definitions(abi: Iterable[Dict[str, Any]]) -> Dict[str, EventDefinition]:
    out: Dict[str, EventDefinition] = {}
    for item in abi:
        if not isinstance(item, dict) or item.get("type") != "event":
            continue
        if item.get("anonymous"):
            continue
        event_abi = dict(item, anonymous=False)
        topic = to_hex(event_abi_to_log_topic(event_abi))
        out[topic] = EventDefinition(name=event_abi["name"], topic0=topic, abi=event_abi)
    return out


def extract_abi(abi_json: Any) -> Optional[List[Dict[str, Any]]]:
    if isinstance(abi_json, list):
        return abi_json
    if isinstance(abi_json, dict) and "abi" in abi_json:
        return abi_json.get("abi")
    return None


def find_abi_file(contract_name: str, abi_dir: str) -> Optional[str]:
    if not abi_dir or not os.path.exists(abi_dir):
        return None
    for candidate in (f"{contract_name}.json", f"{contract_name}.abi.json"):
        direct = os.path.join(abi_dir, candidate)
        if os.path.exists(direct):
            return direct

    for root, _dirs, files in os.walk(abi_dir):
        for filename in files:
            if filename == f"{contract_name}.json":
                return os.path.join(root, filename)
    return None


def load_abi(name: str, abi_source: Optional[Any]) -> List[Dict[str, Any]]:
    """Resolve a contract's ABI: inline list, artifact/ABI file, directory, or built-in."""
    if isinstance(abi_source, list):
        return abi_source
    if isinstance(abi_source, str):
        abi_path: Optional[str] = abi_source
        if os.path.isdir(abi_source):
            abi_path = find_abi_file(name, abi_source)
        if abi_path and os.path.exists(abi_path):
            abi = extract_abi(load_json(abi_path))
            if abi is None:
                raise ConfigError(f"No ABI found in {abi_path}")
            return abi
        raise ConfigError(f"ABI path not found for {name}: {abi_source}")
    if name in BUILTIN_ABIS:
        return BUILTIN_ABIS[name]
    raise ConfigError(f"No ABI available for contract {name}")


class EventCatalog:
    def __init__(self, codec: Any):
        self.codec = codec
        self.contracts: Dict[str, ContractCatalog] = {}

    @classmethod
    def build(cls, contracts: Iterable[ContractConfig], codec: Any) -> "EventCatalog":
        catalog = cls(codec)
        for contract in contracts:
            catalog.add(contract.name, contract.address, load_abi(contract.name, contract.abi))
        return catalog

    def add(self, name: str, address: str, abi: Iterable[Dict[str, Any]]) -> ContractCatalog:
        entry = ContractCatalog(name=name, address=db_addr(address), events=_event_definitions(abi))
        self.contracts[entry.address] = entry
        logger.debug("Catalogued %d events for %s (%s)", len(entry.events), name, entry.address)
        return entry

    def for_contract(self, address: str) -> Optional[ContractCatalog]:
        return self.contracts.get(db_addr(address))

    def decode(self, log: Dict[str, Any]) -> Optional[DecodedEvent]:
        normalized = normalize_log(log)
        address = db_addr(str(normalized.get("address")))
        contract = self.contracts.get(address)
        if contract is None:
            return None
        topics = normalized.get("topics") or []
        topic0 = to_hex(topics[0]) if topics else None
        definition = contract.match(topic0)
        if definition is None:
            return None

        try:
            event_data = get_event_data(self.codec, definition.abi, normalized)
        except Exception as exc:
            identity = log_identity(normalized)
            raise DecodeError(f"Failed decoding {definition.name} ({identity}): {exc}", identity) from exc

        return DecodedEvent(
            name=definition.name,
            args=dict(event_data["args"]),
            contract_address=address,
            topic0=definition.topic0,
        )

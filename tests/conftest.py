import pytest
from eth_abi import encode
from eth_utils import event_abi_to_log_topic
from hexbytes import HexBytes
from web3 import Web3

from event_indexer.config import build_config, DEFAULTS
from event_indexer.errors import ChainError
from event_indexer.handlers import PROJECTION_SCHEMAS
from event_indexer.store import Database
from event_indexer.utils import db_addr


PROPERTY_SHARE = "0x1000000000000000000000000000000000000001"
MARKETPLACE = "0x2000000000000000000000000000000000000002"
REVENUE_SPLITTER = "0x3000000000000000000000000000000000000003"
USER_REGISTRY = "0x4000000000000000000000000000000000000004"
IDENTITY_SBT = "0x5000000000000000000000000000000000000005"
ZK_REGISTRY = "0x6000000000000000000000000000000000000006"

ALICE = "0xa11ce00000000000000000000000000000000001"
BOB = "0xb0b0000000000000000000000000000000000002"
CAROL = "0xca401e0000000000000000000000000000000003"


def block_hash(number, fork=""):
    return Web3.to_hex(Web3.keccak(text=f"block-{number}{fork}"))


class FakeChain:
    """In-memory stand-in for ChainReader."""

    def __init__(self, head=0):
        self.head = head
        self.codec = Web3().codec
        self.logs = []
        self.forks = {}
        self.fail_get_block = False
        self.fail_get_logs = set()
        self.get_logs_calls = []
        self.get_block_calls = []

    def hash_of(self, number):
        return block_hash(number, self.forks.get(number, ""))

    def reorg(self, number, fork="-b"):
        self.forks[number] = fork

    def add(self, *logs):
        self.logs.extend(logs)

    async def get_block_number(self):
        return self.head

    async def get_block(self, number):
        self.get_block_calls.append(number)
        if self.fail_get_block:
            raise ChainError(f"eth_getBlockByNumber({number}) failed: connection refused")
        return {"number": number, "hash": self.hash_of(number), "parentHash": self.hash_of(number - 1)}

    async def get_logs(self, address, from_block, to_block):
        self.get_logs_calls.append((db_addr(address), from_block, to_block))
        if db_addr(address) in self.fail_get_logs:
            raise ChainError(f"eth_getLogs({from_block}-{to_block}) failed: upstream error")
        matching = [
            log
            for log in self.logs
            if db_addr(log["address"]) == db_addr(address) and from_block <= log["blockNumber"] <= to_block
        ]
        return sorted(matching, key=lambda x: (x["blockNumber"], x["logIndex"]))


def make_log(abi, event_name, address, block_number, log_index=0, tx_hash=None, **values):
    """Build a raw log carrying a genuinely ABI-encoded event."""
    event = next(item for item in abi if item.get("type") == "event" and item["name"] == event_name)
    topics = [event_abi_to_log_topic(event)]
    data_types = []
    data_values = []
    for arg in event["inputs"]:
        value = values[arg["name"]]
        if arg["indexed"]:
            topics.append(encode([arg["type"]], [value]))
        else:
            data_types.append(arg["type"])
            data_values.append(value)
    if tx_hash is None:
        tx_hash = "0x" + f"{block_number:032x}{log_index:032x}"
    return {
        "address": address,
        "topics": [HexBytes(t) for t in topics],
        "data": HexBytes(encode(data_types, data_values)),
        "blockNumber": block_number,
        "blockHash": HexBytes(block_hash(block_number)),
        "transactionHash": HexBytes(tx_hash),
        "logIndex": log_index,
        "transactionIndex": 0,
    }


def make_config(contracts=None, **settings):
    values = dict(DEFAULTS)
    values["rpc_http"] = "http://localhost:8545"
    values["start_block"] = 1
    values.update(settings)
    if contracts is None:
        contracts = {"PropertyShare": PROPERTY_SHARE, "Marketplace": MARKETPLACE}
    return build_config(values, contracts)


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "events.db")).open(PROJECTION_SCHEMAS)
    yield database
    database.close()


@pytest.fixture
def chain():
    return FakeChain(head=0)

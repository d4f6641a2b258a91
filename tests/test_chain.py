import asyncio

import pytest
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from event_indexer.chain import ChainReader
from event_indexer.errors import ChainError

from conftest import MARKETPLACE, block_hash


async def _value(value):
    return value


class FakeEth:
    def __init__(self, max_range=None, logs=()):
        self.max_range = max_range
        self.logs = list(logs)
        self.get_logs_calls = []
        self.hang = False

    @property
    def block_number(self):
        return _value(321)

    async def get_block(self, number):
        if self.hang:
            await asyncio.sleep(10)
        return {
            "number": number,
            "hash": HexBytes(block_hash(number)),
            "parentHash": HexBytes(block_hash(number - 1)),
        }

    async def get_logs(self, params):
        start, end = params["fromBlock"], params["toBlock"]
        self.get_logs_calls.append((start, end))
        if self.max_range is not None and end - start + 1 > self.max_range:
            raise ValueError({"code": -32005, "message": "query returned more than 10000 results"})
        return [log for log in self.logs if start <= int(log["blockNumber"], 16) <= end]


class FakeWeb3:
    def __init__(self, eth):
        self.eth = eth
        self.codec = Web3().codec


def _rpc_log(block, log_index):
    return {
        "address": MARKETPLACE,
        "topics": ["0x" + "11" * 32],
        "data": "0x",
        "blockNumber": hex(block),
        "blockHash": block_hash(block),
        "transactionHash": "0x" + f"{block:064x}",
        "transactionIndex": "0x0",
        "logIndex": hex(log_index),
    }


def _reader(eth, timeout=1.0):
    return ChainReader("http://localhost:8545", timeout=timeout, w3=FakeWeb3(eth))


def test_head_and_block_header():
    reader = _reader(FakeEth())
    assert asyncio.run(reader.get_block_number()) == 321
    block = asyncio.run(reader.get_block(10))
    assert block == {"number": 10, "hash": block_hash(10), "parentHash": block_hash(9)}


def test_logs_are_normalized_and_in_chain_order():
    eth = FakeEth(logs=[_rpc_log(12, 1), _rpc_log(11, 4), _rpc_log(12, 0)])
    logs = asyncio.run(_reader(eth).get_logs(MARKETPLACE, 10, 20))

    assert [(log["blockNumber"], log["logIndex"]) for log in logs] == [(11, 4), (12, 0), (12, 1)]
    assert logs[0]["address"] == Web3.to_checksum_address(MARKETPLACE)
    assert isinstance(logs[0]["topics"][0], HexBytes)


def test_oversized_range_is_split():
    eth = FakeEth(max_range=10, logs=[_rpc_log(1, 0), _rpc_log(15, 0), _rpc_log(40, 0)])
    logs = asyncio.run(_reader(eth).get_logs(MARKETPLACE, 1, 40))

    assert [log["blockNumber"] for log in logs] == [1, 15, 40]
    assert eth.get_logs_calls[0] == (1, 40)
    fetched = [call for call in eth.get_logs_calls if call[1] - call[0] + 1 <= 10]
    assert sum(end - start + 1 for start, end in fetched) == 40


def test_inverted_range_is_empty():
    eth = FakeEth()
    assert asyncio.run(_reader(eth).get_logs(MARKETPLACE, 20, 10)) == []
    assert eth.get_logs_calls == []


def test_other_rpc_errors_are_not_split():
    class BrokenEth(FakeEth):
        async def get_logs(self, params):
            self.get_logs_calls.append((params["fromBlock"], params["toBlock"]))
            raise ConnectionError("connection reset")

    eth = BrokenEth()
    with pytest.raises(ChainError, match="connection reset"):
        asyncio.run(_reader(eth).get_logs(MARKETPLACE, 1, 40))
    assert len(eth.get_logs_calls) == 1


def test_timeout_becomes_chain_error():
    eth = FakeEth()
    eth.hang = True
    with pytest.raises(ChainError, match="timed out"):
        asyncio.run(_reader(eth, timeout=0.01).get_block(5))


def test_default_client_is_async_http():
    reader = ChainReader("http://localhost:8545", timeout=3)
    assert isinstance(reader.w3, AsyncWeb3)
    assert isinstance(reader.w3.provider, AsyncHTTPProvider)
    assert reader.w3.provider.endpoint_uri == "http://localhost:8545"

import json

import pytest
from hexbytes import HexBytes
from web3 import Web3

from event_indexer.abis import MARKETPLACE_ABI, PROPERTY_SHARE_ABI, ZK_REGISTRY_ABI
from event_indexer.catalog import EventCatalog, load_abi
from event_indexer.errors import ConfigError, DecodeError

from conftest import ALICE, MARKETPLACE, PROPERTY_SHARE, ZK_REGISTRY, make_config, make_log


def _catalog():
    return EventCatalog.build(make_config().contracts, Web3().codec)


def test_catalog_precomputes_topics_per_contract():
    catalog = _catalog()
    shares = catalog.for_contract(Web3.to_checksum_address(PROPERTY_SHARE))
    assert shares.event_names == ["PropertyCreated", "SharesPurchased", "TransferBatch", "TransferSingle"]
    topic = Web3.to_hex(Web3.keccak(text="PropertyCreated(uint256,string,string,uint256,uint256)"))
    assert shares.match(topic).name == "PropertyCreated"
    assert shares.match(topic.upper().replace("0X", "0x")).name == "PropertyCreated"


def test_decode_property_created():
    log = make_log(
        PROPERTY_SHARE_ABI,
        "PropertyCreated",
        PROPERTY_SHARE,
        block_number=10,
        tokenId=7,
        name="Villa",
        location="Lisbon",
        totalShares=1000,
        pricePerShare=2_500_000,
    )
    event = _catalog().decode(log)

    assert event.name == "PropertyCreated"
    assert event.contract_address == PROPERTY_SHARE
    assert event.args == {
        "tokenId": 7,
        "name": "Villa",
        "location": "Lisbon",
        "totalShares": 1000,
        "pricePerShare": 2_500_000,
    }


def test_decode_accepts_rpc_shaped_log():
    log = make_log(
        MARKETPLACE_ABI, "ListingCancelled", MARKETPLACE, block_number=0x20, log_index=3, listingId=4, seller=ALICE
    )
    raw = {
        "address": MARKETPLACE,
        "topics": [Web3.to_hex(t) for t in log["topics"]],
        "data": Web3.to_hex(log["data"]),
        "blockNumber": "0x20",
        "blockHash": Web3.to_hex(log["blockHash"]),
        "transactionHash": Web3.to_hex(log["transactionHash"]),
        "logIndex": "0x3",
    }
    event = _catalog().decode(raw)
    assert event.name == "ListingCancelled"
    assert event.args["listingId"] == 4
    assert event.args["seller"].lower() == ALICE


def test_unknown_signature_is_skipped():
    # a ZKRegistry event emitted by an address the catalog knows as Marketplace
    log = make_log(
        ZK_REGISTRY_ABI,
        "ProofSubmitted",
        MARKETPLACE,
        block_number=5,
        user=ALICE,
        proofHash=b"\x01" * 32,
        provider="zkpass",
        timestamp=1,
        submittedBy=ALICE,
    )
    assert _catalog().decode(log) is None


def test_unknown_contract_is_skipped():
    log = make_log(MARKETPLACE_ABI, "ListingCancelled", ZK_REGISTRY, block_number=5, listingId=1, seller=ALICE)
    assert _catalog().decode(log) is None


def test_log_without_topics_is_skipped():
    log = make_log(MARKETPLACE_ABI, "ListingCancelled", MARKETPLACE, block_number=5, listingId=1, seller=ALICE)
    log["topics"] = []
    assert _catalog().decode(log) is None


def test_matching_signature_with_bad_payload_raises_decode_error():
    log = make_log(
        PROPERTY_SHARE_ABI,
        "SharesPurchased",
        PROPERTY_SHARE,
        block_number=12,
        log_index=2,
        tokenId=1,
        buyer=ALICE,
        amount=5,
        totalPrice=10,
    )
    log["data"] = HexBytes(b"\x00" * 8)

    with pytest.raises(DecodeError) as excinfo:
        _catalog().decode(log)
    assert "SharesPurchased" in str(excinfo.value)
    assert "block=12" in excinfo.value.log_identity
    assert "log_index=2" in excinfo.value.log_identity


def test_anonymous_events_are_not_catalogued():
    catalog = EventCatalog(Web3().codec)
    abi = [dict(MARKETPLACE_ABI[0], anonymous=True), MARKETPLACE_ABI[1]]
    entry = catalog.add("Marketplace", MARKETPLACE, abi)
    assert entry.event_names == ["PurchaseExecuted"]


def test_load_abi_from_artifact_and_directory(tmp_path):
    artifacts = tmp_path / "artifacts" / "contracts"
    artifacts.mkdir(parents=True)
    (artifacts / "Vault.json").write_text(json.dumps({"contractName": "Vault", "abi": MARKETPLACE_ABI}))
    raw = tmp_path / "raw.json"
    raw.write_text(json.dumps(PROPERTY_SHARE_ABI))

    assert load_abi("Vault", str(tmp_path / "artifacts")) == MARKETPLACE_ABI
    assert load_abi("Vault", str(raw)) == PROPERTY_SHARE_ABI
    assert load_abi("Marketplace", None) == MARKETPLACE_ABI


def test_load_abi_errors(tmp_path):
    with pytest.raises(ConfigError):
        load_abi("Vault", str(tmp_path / "missing.json"))
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"bytecode": "0x"}))
    with pytest.raises(ConfigError, match="No ABI"):
        load_abi("Vault", str(bad))
    with pytest.raises(ConfigError):
        load_abi("Vault", None)

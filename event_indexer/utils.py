import json
from decimal import Context, Decimal
from typing import Any, Dict

from hexbytes import HexBytes
from web3 import Web3


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# stablecoin amounts emitted by the property contracts use 6 decimals
TOKEN_DECIMALS = 6

# uint256 values need more than the default 28 digits
_WIDE = Context(prec=100)


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (bytes, bytearray)):
        return Web3.to_hex(obj)
    if isinstance(obj, (set, tuple)):
        return list(obj)
    return str(obj)


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, default=_json_default, ensure_ascii=True, sort_keys=True)


def load_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def to_checksum(addr: str) -> str:
    return Web3.to_checksum_address(addr)


def db_addr(addr: str) -> str:
    return addr.lower()


def to_hex(value: Any) -> str:
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    return Web3.to_hex(value)


def parse_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if value.startswith("0x"):
            return int(value, 16)
        return int(value)
    return int(value)


def normalize_log(log: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce a raw RPC log into the shape web3's event decoder expects."""
    out = dict(log)
    for key in ("transactionHash", "blockHash", "data"):
        if isinstance(out.get(key), str):
            out[key] = HexBytes(out[key])
    if out.get("topics") is not None:
        out["topics"] = [HexBytes(t) for t in out["topics"]]
    for key in ("blockNumber", "transactionIndex", "logIndex"):
        if out.get(key) is not None:
            out[key] = parse_int(out[key])
    out.setdefault("transactionIndex", 0)
    if isinstance(out.get("address"), str):
        out["address"] = to_checksum(out["address"])
    return out


def log_identity(log: Dict[str, Any]) -> str:
    tx_hash = log.get("transactionHash")
    return (
        f"contract={db_addr(str(log.get('address')))} "
        f"block={log.get('blockNumber')} "
        f"tx={to_hex(tx_hash) if tx_hash is not None else None} "
        f"log_index={log.get('logIndex')}"
    )


def format_units(value: int, decimals: int = TOKEN_DECIMALS) -> str:
    amount = Decimal(int(value)).scaleb(-decimals, context=_WIDE)
    text = format(amount, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"

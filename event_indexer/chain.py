import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3

from .errors import ChainError
from .utils import normalize_log, to_checksum, to_hex


logger = logging.getLogger(__name__)


def _range_too_large(exc: Exception) -> bool:
    msg = str(exc).lower()
    return "query returned more than" in msg or "too many" in msg or "block range" in msg


class ChainReader:
    """Read-only view of the chain: head number, block hashes and contract logs.

    Every call carries a caller-side timeout; timeouts and RPC failures surface
    as ChainError so the scheduler can skip the contract for this tick.
    """

    def __init__(self, rpc_url: str, timeout: float = 30.0, w3: Optional[AsyncWeb3] = None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.w3 = w3 if w3 is not None else AsyncWeb3(AsyncHTTPProvider(rpc_url))

    @property
    def codec(self) -> Any:
        return self.w3.codec

    async def _call(self, what: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ChainError(f"{what} timed out after {self.timeout}s") from exc
        except ChainError:
            raise
        except Exception as exc:
            raise ChainError(f"{what} failed: {exc}") from exc

    async def get_block_number(self) -> int:
        return int(await self._call("eth_blockNumber", self.w3.eth.block_number))

    async def get_block(self, number: int) -> Dict[str, Any]:
        block = await self._call(f"eth_getBlockByNumber({number})", self.w3.eth.get_block(number))
        return {
            "number": int(block["number"]),
            "hash": to_hex(block["hash"]),
            "parentHash": to_hex(block["parentHash"]),
        }

    async def get_logs(self, address: str, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        """Logs emitted by ``address`` in ``[from_block, to_block]``, in chain order.

        An inverted range is a no-op. When the node refuses the range as too
        large, it is split in halves and fetched piecewise.
        """
        if from_block > to_block:
            return []
        params = {
            "address": to_checksum(address),
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        try:
            raw = await self._call(f"eth_getLogs({from_block}-{to_block})", self.w3.eth.get_logs(params))
        except ChainError as exc:
            if from_block == to_block or not _range_too_large(exc):
                raise
            mid = (from_block + to_block) // 2
            logger.warning(
                "get_logs too large for %s (%d-%d), splitting at %d", address, from_block, to_block, mid
            )
            head = await self.get_logs(address, from_block, mid)
            tail = await self.get_logs(address, mid + 1, to_block)
            return head + tail

        logs = [normalize_log(dict(entry)) for entry in raw]
        logs.sort(key=lambda x: (x.get("blockNumber", 0), x.get("logIndex", 0)))
        return logs

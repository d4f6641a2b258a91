import logging
from typing import Any

from .utils import to_hex


logger = logging.getLogger(__name__)


class ReorgDetector:
    """Compares a stored checkpoint hash with the chain's current hash at that height.

    Headers are hash-chained, so an unchanged checkpoint block implies every
    block processed before it is unchanged too. A failed header fetch reports
    "no reorg": an RPC outage must not stall indexing, at the cost of possibly
    missing a reorg that coincides with it.
    """

    def __init__(self, chain: Any):
        self.chain = chain

    async def detect(self, checkpoint_block: int, expected_hash: str) -> bool:
        try:
            block = await self.chain.get_block(checkpoint_block)
        except Exception as exc:
            logger.error("Error checking for reorg at block %d: %s", checkpoint_block, exc)
            return False

        actual_hash = to_hex(block["hash"])
        if actual_hash != to_hex(expected_hash):
            logger.warning(
                "Block hash mismatch at %d - reorg detected (expected %s, got %s)",
                checkpoint_block,
                expected_hash,
                actual_hash,
            )
            return True
        return False

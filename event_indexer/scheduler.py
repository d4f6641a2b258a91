"""Batch scheduler: the indexer's poll loop.

Each tick reads the chain head once, then walks every tracked contract:

    reorg check -> window [next, min(next + batch - 1, head - confirmations)]
    -> get_logs -> decode/dispatch -> cursor (+ checkpoint) upsert

The dispatch and the cursor write share one database transaction, so the
cursor never moves without the rows it accounts for. A failure in one
contract is logged and retried next tick; the others still run.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .config import ContractConfig, IndexerConfig
from .dispatcher import BatchStats, EventDispatcher
from .reorg import ReorgDetector
from .store import AuditLog, Database, IndexerState, StateStore


logger = logging.getLogger(__name__)


class ContractPhase(enum.Enum):
    UNINITIALIZED = "uninitialized"
    CATCHING_UP = "catching_up"
    WAITING_FOR_CONFIRMATIONS = "waiting_for_confirmations"


@dataclass
class BatchResult:
    contract: str
    from_block: int
    to_block: int
    stats: BatchStats = field(default_factory=BatchStats)
    checkpoint: Optional[Tuple[int, str]] = None
    rolled_back_to: Optional[int] = None


def confirmed_head(head: int, confirmations: int) -> int:
    return max(head - confirmations, 0)


def compute_window(
    next_block: int, head: int, batch_size: int, confirmations: int
) -> Optional[Tuple[int, int]]:
    """The inclusive block range to fetch, or None when nothing is confirmed yet."""
    confirmed = confirmed_head(head, confirmations)
    if next_block > confirmed:
        return None
    return next_block, min(next_block + batch_size - 1, confirmed)


def checkpoint_in_range(from_block: int, to_block: int, interval: int) -> Optional[int]:
    """Highest multiple of ``interval`` inside ``[from_block, to_block]``, if any."""
    candidate = to_block - (to_block % interval)
    if candidate >= from_block:
        return candidate
    return None


class BatchScheduler:
    def __init__(
        self,
        config: IndexerConfig,
        chain: Any,
        dispatcher: EventDispatcher,
        db: Database,
        state_store: StateStore,
        audit: AuditLog,
        reorg_detector: Optional[ReorgDetector] = None,
    ):
        self.config = config
        self.contracts: List[ContractConfig] = list(config.contracts)
        self.chain = chain
        self.dispatcher = dispatcher
        self.db = db
        self.state_store = state_store
        self.audit = audit
        self.reorg_detector = reorg_detector or ReorgDetector(chain)

        self.phases: Dict[str, ContractPhase] = {c.address: ContractPhase.UNINITIALIZED for c in self.contracts}
        self._start_blocks: Dict[str, int] = {}
        self._running = False
        self._stop_event = asyncio.Event()
        self._last_status = 0.0

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Tick until ``stop()``; a batch in flight always completes first.

        A stop requested before the loop starts is honoured: no tick runs.
        """
        if self._stop_event.is_set():
            logger.info("Stop already requested, not starting poll loop")
            return
        self._running = True
        logger.info("Starting poll loop for %d contracts", len(self.contracts))
        try:
            while not self._stop_event.is_set():
                await self.tick()
                await self._maybe_log_status()
                if self._stop_event.is_set():
                    break
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("Indexer stopped")

    def stop(self) -> None:
        logger.info("Stopping blockchain indexer...")
        self._stop_event.set()

    async def tick(self) -> Dict[str, Optional[BatchResult]]:
        results: Dict[str, Optional[BatchResult]] = {}
        try:
            head = await self.chain.get_block_number()
        except Exception as exc:
            logger.error("Cannot read chain head, skipping tick: %s", exc)
            return results
        logger.debug("Latest block on chain: %d", head)

        for contract in self.contracts:
            try:
                results[contract.address] = await self.process_contract(contract, head)
            except Exception:
                logger.exception(
                    "Error processing contract %s (%s) - continuing with next contract",
                    contract.name,
                    contract.address,
                )
                results[contract.address] = None
        return results

    async def process_contract(self, contract: ContractConfig, head: int) -> Optional[BatchResult]:
        address = contract.address
        state = self.state_store.get(address)
        rolled_back_to = None

        if state is None:
            next_block = self._start_block(contract, head)
        else:
            next_block = state.next_block
            if contract.enable_reorg_protection and state.has_checkpoint:
                if await self.reorg_detector.detect(state.last_checkpoint_block, state.last_checkpoint_hash):
                    next_block = await self.rollback(contract, state)
                    rolled_back_to = next_block

        window = compute_window(next_block, head, contract.batch_size, contract.confirmations_required)
        if window is None:
            self.phases[address] = ContractPhase.WAITING_FOR_CONFIRMATIONS
            logger.debug(
                "%s caught up, waiting for confirmations (next=%d, confirmed=%d)",
                contract.name,
                next_block,
                confirmed_head(head, contract.confirmations_required),
            )
            return None

        self.phases[address] = ContractPhase.CATCHING_UP
        from_block, to_block = window
        logger.info("Processing %s blocks %d-%d", contract.name, from_block, to_block)

        logs = await self.chain.get_logs(address, from_block, to_block)
        logger.info("Fetched %d logs for %s", len(logs), contract.name)

        to_hash = (await self.chain.get_block(to_block))["hash"]
        checkpoint = None
        cp_block = checkpoint_in_range(from_block, to_block, contract.checkpoint_interval)
        if cp_block is not None:
            cp_hash = to_hash if cp_block == to_block else (await self.chain.get_block(cp_block))["hash"]
            checkpoint = (cp_block, cp_hash)

        async with self.db.transaction():
            stats = await self.dispatcher.dispatch(logs)
            self.state_store.upsert(address, to_block, to_hash, checkpoint)

        if stats.errors:
            logger.warning(
                "Some logs failed to process for %s: %d ok, %d failed, %d total",
                contract.name,
                stats.processed,
                stats.errors,
                stats.total,
            )
        logger.info(
            "Processed %s through block %d (%s)%s",
            contract.name,
            to_block,
            ", ".join(f"{k}={v}" for k, v in stats.as_dict().items()),
            f", checkpoint {checkpoint[0]}" if checkpoint else "",
        )
        return BatchResult(
            contract=address,
            from_block=from_block,
            to_block=to_block,
            stats=stats,
            checkpoint=checkpoint,
            rolled_back_to=rolled_back_to,
        )

    async def rollback(self, contract: ContractConfig, state: IndexerState) -> int:
        """Undo everything from the diverged checkpoint block on; returns the resume block.

        Resumes *at* the checkpoint block so it is re-fetched from the new
        canonical chain. The stale checkpoint is cleared with the cursor.
        """
        cp_block = int(state.last_checkpoint_block)
        logger.warning("Reorg detected for %s at checkpoint %d, rolling back", contract.name, cp_block)
        async with self.db.transaction():
            self.audit.delete_from_block(contract.address, cp_block)
            self.state_store.reset(contract.address, cp_block - 1)
        logger.info("Rolled back %s, resuming from block %d", contract.name, cp_block)
        return cp_block

    def _start_block(self, contract: ContractConfig, head: int) -> int:
        cached = self._start_blocks.get(contract.address)
        if cached is not None:
            return cached
        if contract.start_block:
            start = contract.start_block
            logger.info("Using configured start block %d for %s", start, contract.name)
        else:
            start = max(head - self.config.start_lookback, 0)
            logger.info(
                "No start block configured for %s, starting near head at %d (head=%d)",
                contract.name,
                start,
                head,
            )
        self._start_blocks[contract.address] = start
        return start

    async def sync_status(self) -> Dict[str, Any]:
        latest = await self.chain.get_block_number()
        contracts = []
        for contract in self.contracts:
            state = self.state_store.get(contract.address)
            last = state.last_processed_block if state else None
            contracts.append(
                {
                    "name": contract.name,
                    "address": contract.address,
                    "last_processed_block": last,
                    "behind_by": latest - last if last is not None else None,
                    "phase": self.phases[contract.address].value,
                    "checkpoint_block": state.last_checkpoint_block if state else None,
                }
            )
        return {"latest_block": latest, "contracts": contracts}

    async def _maybe_log_status(self) -> None:
        now = time.monotonic()
        if now - self._last_status < self.config.status_interval:
            return
        self._last_status = now
        try:
            status = await self.sync_status()
        except Exception as exc:
            logger.error("Sync status unavailable: %s", exc)
            return
        for entry in status["contracts"]:
            logger.info(
                "Sync status %s: last=%s behind_by=%s phase=%s",
                entry["name"],
                entry["last_processed_block"],
                entry["behind_by"],
                entry["phase"],
            )

    async def backfill(self, from_block: int, to_block: Optional[int] = None) -> None:
        """Re-ingest ``[from_block, to_block]`` for every contract without moving cursors back.

        Deep backfill is not supported by this indexer; rewind a contract's
        cursor instead and let the poll loop re-ingest idempotently.
        """
        raise NotImplementedError("deep backfill is not implemented")

import inspect
import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .catalog import DecodedEvent, EventCatalog
from .errors import DecodeError, StorageError
from .store import AuditLog, BlockMeta, Database
from .utils import db_addr, log_identity, to_hex


logger = logging.getLogger(__name__)

# handler(conn, args, meta); may be a plain function or a coroutine function
Handler = Callable[..., Any]
HandlerRegistry = Dict[Tuple[str, str], Handler]


@dataclass
class BatchStats:
    total: int = 0
    processed: int = 0
    skipped: int = 0
    unhandled: int = 0
    decode_errors: int = 0
    failed: int = 0

    @property
    def errors(self) -> int:
        return self.decode_errors + self.failed

    def as_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "processed": self.processed,
            "skipped": self.skipped,
            "unhandled": self.unhandled,
            "decode_errors": self.decode_errors,
            "failed": self.failed,
        }


def build_registry(
    contracts: Iterable[Any], handlers_by_name: Mapping[str, Mapping[str, Handler]]
) -> HandlerRegistry:
    """Resolve ``{contract name: {event: handler}}`` into ``{(address, event): handler}``."""
    registry: HandlerRegistry = {}
    for contract in contracts:
        for event_name, handler in handlers_by_name.get(contract.name, {}).items():
            registry[(db_addr(contract.address), event_name)] = handler
    return registry


class EventDispatcher:
    """Decodes a batch of logs and applies each to its projection handler.

    Each log runs in its own savepoint holding the audit insert and the
    handler's writes, so a failing handler leaves no partial rows behind and
    the rest of the batch still runs.
    """

    def __init__(
        self,
        catalog: EventCatalog,
        registry: HandlerRegistry,
        db: Database,
        audit: AuditLog,
    ):
        self.catalog = catalog
        self.registry = registry
        self.db = db
        self.audit = audit

    def handler_for(self, contract_address: str, event_name: str) -> Optional[Handler]:
        return self.registry.get((db_addr(contract_address), event_name))

    def missing_handlers(self) -> List[Tuple[str, str]]:
        missing = []
        for address, contract in self.catalog.contracts.items():
            for event_name in contract.event_names:
                if (address, event_name) not in self.registry:
                    missing.append((contract.name, event_name))
        return missing

    async def dispatch(self, logs: Iterable[Dict[str, Any]]) -> BatchStats:
        """Apply logs in order. Must run inside an open ``Database.transaction()``."""
        stats = BatchStats()
        for log in logs:
            stats.total += 1
            await self._dispatch_one(log, stats)
        return stats

    async def _dispatch_one(self, log: Dict[str, Any], stats: BatchStats) -> None:
        try:
            event = self.catalog.decode(log)
        except DecodeError as exc:
            stats.decode_errors += 1
            logger.warning("Skipping undecodable log: %s", exc)
            return

        if event is None:
            stats.skipped += 1
            topics = log.get("topics") or []
            logger.debug("Unknown event signature %s (%s)", to_hex(topics[0]) if topics else None, log_identity(log))
            return

        try:
            meta = BlockMeta.from_log(log)
        except (KeyError, TypeError, ValueError) as exc:
            stats.decode_errors += 1
            logger.warning("Skipping %s log with incomplete metadata (%s): %r", event.name, log_identity(log), exc)
            return

        handler = self.handler_for(event.contract_address, event.name)
        try:
            with self.db.savepoint("log_apply") as conn:
                self.audit.record(event.name, event.args, meta)
                if handler is not None:
                    await self._invoke(handler, conn, event, meta)
        except (sqlite3.OperationalError, StorageError):
            # the database itself is failing; abort the batch so the cursor stays put
            raise
        except Exception:
            stats.failed += 1
            logger.exception(
                "Handler failed for %s: contract=%s block=%s tx=%s log_index=%s args=%r",
                event.name,
                meta.contract_address,
                meta.block_number,
                meta.transaction_hash,
                meta.log_index,
                event.args,
            )
            return

        if handler is None:
            # recorded for replay once a handler exists
            stats.unhandled += 1
            logger.warning("No handler for %s (%s)", event.name, log_identity(log))
            return
        stats.processed += 1

    @staticmethod
    async def _invoke(handler: Handler, conn: Any, event: DecodedEvent, meta: BlockMeta) -> None:
        result = handler(conn, event.args, meta)
        if inspect.isawaitable(result):
            await result

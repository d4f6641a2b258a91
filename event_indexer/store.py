"""SQLite persistence: the per-contract cursor table and the audit log.

One connection in autocommit mode; multi-statement writes go through
``Database.transaction()`` (BEGIN/COMMIT) and ``Database.savepoint()`` for
nested, individually revertible units such as a single log's projection.
"""

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import StorageError
from .utils import db_addr, json_dumps, to_hex


logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS indexer_state (
    contract_address TEXT PRIMARY KEY,
    last_processed_block INTEGER NOT NULL,
    last_block_hash TEXT,
    last_checkpoint_block INTEGER,
    last_checkpoint_hash TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    CHECK (last_checkpoint_block IS NULL OR last_checkpoint_block <= last_processed_block)
);

CREATE TABLE IF NOT EXISTS blockchain_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    contract_address TEXT NOT NULL,
    event_name TEXT NOT NULL,
    block_number INTEGER NOT NULL,
    block_hash TEXT,
    transaction_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL,
    args TEXT,
    processed_at TEXT NOT NULL,
    UNIQUE(contract_address, transaction_hash, log_index)
);
CREATE INDEX IF NOT EXISTS idx_events_contract_block ON blockchain_events(contract_address, block_number);
CREATE INDEX IF NOT EXISTS idx_events_name ON blockchain_events(event_name);
"""


@dataclass(frozen=True)
class IndexerState:
    contract_address: str
    last_processed_block: int
    last_block_hash: Optional[str]
    last_checkpoint_block: Optional[int] = None
    last_checkpoint_hash: Optional[str] = None

    @property
    def next_block(self) -> int:
        return self.last_processed_block + 1

    @property
    def has_checkpoint(self) -> bool:
        return self.last_checkpoint_block is not None and bool(self.last_checkpoint_hash)


@dataclass(frozen=True)
class BlockMeta:
    block_number: int
    block_hash: str
    transaction_hash: str
    log_index: int
    contract_address: str

    @classmethod
    def from_log(cls, log: Dict[str, Any]) -> "BlockMeta":
        return cls(
            block_number=int(log["blockNumber"]),
            block_hash=to_hex(log["blockHash"]),
            transaction_hash=to_hex(log["transactionHash"]),
            log_index=int(log["logIndex"]),
            contract_address=db_addr(str(log["address"])),
        )


class Database:
    def __init__(self, path: str, timeout: float = 5.0):
        self.path = path
        self.timeout = timeout
        self.lock = asyncio.Lock()
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Database is not open")
        return self._conn

    def open(self, schemas: Iterable[str] = ()) -> "Database":
        try:
            conn = sqlite3.connect(
                self.path, timeout=self.timeout, isolation_level=None, check_same_thread=False
            )
            conn.row_factory = sqlite3.Row
            if self.path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
            conn.executescript(SCHEMA)
            for script in schemas:
                conn.executescript(script)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open database {self.path}: {exc}") from exc
        self._conn = conn
        return self

    def check_connection(self) -> bool:
        try:
            self.conn.execute("SELECT COUNT(*) FROM indexer_state").fetchone()
        except (sqlite3.Error, StorageError) as exc:
            logger.error("Database connection check failed: %s", exc)
            return False
        return True

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[sqlite3.Connection]:
        async with self.lock:
            conn = self.conn
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    @contextmanager
    def savepoint(self, name: str = "unit") -> Iterator[sqlite3.Connection]:
        conn = self.conn
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield conn
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        else:
            conn.execute(f"RELEASE SAVEPOINT {name}")


class StateStore:
    """The cursor table. Single writer: the scheduler's poll loop."""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _row_to_state(row: sqlite3.Row) -> IndexerState:
        return IndexerState(
            contract_address=row["contract_address"],
            last_processed_block=int(row["last_processed_block"]),
            last_block_hash=row["last_block_hash"],
            last_checkpoint_block=row["last_checkpoint_block"],
            last_checkpoint_hash=row["last_checkpoint_hash"],
        )

    def get(self, contract_address: str) -> Optional[IndexerState]:
        row = self.db.conn.execute(
            "SELECT * FROM indexer_state WHERE contract_address = ?",
            (db_addr(contract_address),),
        ).fetchone()
        return self._row_to_state(row) if row else None

    def upsert(
        self,
        contract_address: str,
        last_block: int,
        last_hash: Optional[str],
        checkpoint: Optional[Tuple[int, str]] = None,
    ) -> None:
        """Insert-or-update the cursor; the stored checkpoint is kept unless one is given."""
        cp_block, cp_hash = checkpoint if checkpoint else (None, None)
        if cp_block is not None and cp_block > last_block:
            raise ValueError(f"checkpoint {cp_block} is ahead of cursor {last_block}")
        self.db.conn.execute(
            """
            INSERT INTO indexer_state (
                contract_address, last_processed_block, last_block_hash,
                last_checkpoint_block, last_checkpoint_hash
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(contract_address) DO UPDATE SET
                last_processed_block = excluded.last_processed_block,
                last_block_hash = excluded.last_block_hash,
                last_checkpoint_block = COALESCE(excluded.last_checkpoint_block, indexer_state.last_checkpoint_block),
                last_checkpoint_hash = COALESCE(excluded.last_checkpoint_hash, indexer_state.last_checkpoint_hash),
                updated_at = CURRENT_TIMESTAMP
            """,
            (db_addr(contract_address), last_block, last_hash, cp_block, cp_hash),
        )

    def reset(self, contract_address: str, last_block: int, last_hash: Optional[str] = None) -> None:
        """Move the cursor to ``last_block`` and drop the checkpoint."""
        self.db.conn.execute(
            """
            INSERT INTO indexer_state (contract_address, last_processed_block, last_block_hash)
            VALUES (?, ?, ?)
            ON CONFLICT(contract_address) DO UPDATE SET
                last_processed_block = excluded.last_processed_block,
                last_block_hash = excluded.last_block_hash,
                last_checkpoint_block = NULL,
                last_checkpoint_hash = NULL,
                updated_at = CURRENT_TIMESTAMP
            """,
            (db_addr(contract_address), last_block, last_hash),
        )


class AuditLog:
    def __init__(self, db: Database, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.db = db
        self.clock = clock

    def record(self, event_name: str, args: Dict[str, Any], meta: BlockMeta) -> bool:
        """Insert the raw event; a replay of the same log is ignored. Returns True if inserted."""
        cur = self.db.conn.execute(
            """
            INSERT INTO blockchain_events (
                contract_address, event_name, block_number, block_hash,
                transaction_hash, log_index, args, processed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(contract_address, transaction_hash, log_index) DO NOTHING
            """,
            (
                meta.contract_address,
                event_name,
                meta.block_number,
                meta.block_hash,
                meta.transaction_hash,
                meta.log_index,
                json_dumps(args),
                self.clock().isoformat(),
            ),
        )
        return cur.rowcount > 0

    def delete_from_block(self, contract_address: str, block_number: int) -> int:
        cur = self.db.conn.execute(
            "DELETE FROM blockchain_events WHERE contract_address = ? AND block_number >= ?",
            (db_addr(contract_address), block_number),
        )
        logger.warning(
            "Deleted %d audit rows for %s at block >= %d", cur.rowcount, contract_address, block_number
        )
        return cur.rowcount

    def count(self, contract_address: Optional[str] = None) -> int:
        if contract_address is None:
            row = self.db.conn.execute("SELECT COUNT(*) FROM blockchain_events").fetchone()
        else:
            row = self.db.conn.execute(
                "SELECT COUNT(*) FROM blockchain_events WHERE contract_address = ?",
                (db_addr(contract_address),),
            ).fetchone()
        return int(row[0])

    def query(
        self,
        contract: Optional[str] = None,
        name: Optional[str] = None,
        limit: int = 200,
    ) -> List[Dict[str, Any]]:
        params: List[Any] = []
        clauses = []
        if contract:
            clauses.append("contract_address = ?")
            params.append(db_addr(contract))
        if name:
            clauses.append("event_name = ?")
            params.append(name)

        where = " AND ".join(clauses)
        if where:
            where = "WHERE " + where
        sql = (
            "SELECT contract_address, event_name, block_number, block_hash, transaction_hash, "
            "log_index, args, processed_at "
            f"FROM blockchain_events {where} ORDER BY block_number DESC, log_index DESC LIMIT ?"
        )
        params.append(limit)
        result = []
        for row in self.db.conn.execute(sql, params).fetchall():
            record = dict(row)
            if record["args"]:
                try:
                    record["args"] = json.loads(record["args"])
                except json.JSONDecodeError:
                    pass
            result.append(record)
        return result

"""Command-line entry point.

Usage:
  event-indexer --config config.json run
  event-indexer --config config.json status
  event-indexer --config config.json events --contract Marketplace --name ListingCreated
  event-indexer --config config.json backfill --from-block 0

Exit status: 2 on configuration errors, 1 when storage is unreachable or the
``status`` check finds a contract too far behind the chain head.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from .catalog import EventCatalog
from .chain import ChainReader
from .config import IndexerConfig, load_config
from .dispatcher import EventDispatcher, build_registry
from .errors import ChainError, ConfigError, StorageError
from .handlers import HANDLERS, PROJECTION_SCHEMAS
from .log import setup_logging
from .reorg import ReorgDetector
from .scheduler import BatchScheduler
from .store import AuditLog, Database, StateStore
from .utils import json_dumps


logger = logging.getLogger(__name__)


def build_scheduler(config: IndexerConfig, db: Database, chain: ChainReader) -> BatchScheduler:
    catalog = EventCatalog.build(config.contracts, chain.codec)
    registry = build_registry(config.contracts, HANDLERS)
    audit = AuditLog(db)
    dispatcher = EventDispatcher(catalog, registry, db, audit)
    for contract_name, event_name in dispatcher.missing_handlers():
        logger.warning("No handler registered for %s.%s; its logs will be skipped", contract_name, event_name)
    return BatchScheduler(
        config,
        chain,
        dispatcher,
        db,
        StateStore(db),
        audit,
        ReorgDetector(chain),
    )


def _open_db(config: IndexerConfig) -> Database:
    db = Database(config.db_path, timeout=config.db_timeout).open(PROJECTION_SCHEMAS)
    if not db.check_connection():
        raise StorageError(f"Database {config.db_path} is not usable")
    return db


async def _run(config: IndexerConfig) -> None:
    db = _open_db(config)
    chain = ChainReader(config.rpc_http, timeout=config.rpc_timeout)
    try:
        scheduler = build_scheduler(config, db, chain)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, scheduler.stop)

        for contract in config.contracts:
            logger.info(
                "Tracking %s at %s (batch=%d confirmations=%d checkpoint_interval=%d reorg_protection=%s)",
                contract.name,
                contract.address,
                contract.batch_size,
                contract.confirmations_required,
                contract.checkpoint_interval,
                contract.enable_reorg_protection,
            )
        await scheduler.run()
    finally:
        db.close()


async def _status(config: IndexerConfig) -> int:
    try:
        db = _open_db(config)
    except StorageError as exc:
        print(json_dumps({"healthy": False, "database": False, "error": str(exc)}))
        return 1

    chain = ChainReader(config.rpc_http, timeout=config.rpc_timeout)
    try:
        scheduler = build_scheduler(config, db, chain)
        try:
            status = await scheduler.sync_status()
        except ChainError as exc:
            print(json_dumps({"healthy": False, "database": True, "error": str(exc)}))
            return 1
    finally:
        db.close()

    lagging = [
        entry["name"]
        for entry in status["contracts"]
        if entry["behind_by"] is not None and entry["behind_by"] > config.max_blocks_behind
    ]
    status["database"] = True
    status["healthy"] = not lagging
    status["lagging"] = lagging
    print(json_dumps(status))
    return 0 if not lagging else 1


def _events(config: IndexerConfig, contract: Optional[str], name: Optional[str], limit: int) -> None:
    contract_addr = None
    if contract:
        resolved = config.contract(contract)
        contract_addr = resolved.address if resolved else contract
    db = _open_db(config)
    try:
        events = AuditLog(db).query(contract_addr, name, limit)
    finally:
        db.close()
    print(json_dumps(events))


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Property protocol blockchain event indexer")
    parser.add_argument("--config", default="config.json", help="Path to config JSON")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Start indexing")

    sub.add_parser("status", help="Print sync status as JSON; exit 1 when unhealthy")

    backfill_parser = sub.add_parser("backfill", help="Deep backfill (not implemented)")
    backfill_parser.add_argument("--from-block", type=int, required=True)
    backfill_parser.add_argument("--to-block", type=int, default=None)

    events_parser = sub.add_parser("events", help="Query the audit log")
    events_parser.add_argument("--contract", type=str, default=None, help="Contract name or address")
    events_parser.add_argument("--name", type=str, default=None)
    events_parser.add_argument("--limit", type=int, default=200)

    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        setup_logging()
        logger.error("Configuration error: %s", exc)
        sys.exit(2)
    setup_logging(cfg.log_level)

    try:
        if args.command == "run":
            asyncio.run(_run(cfg))
            return

        if args.command == "status":
            code = asyncio.run(_status(cfg))
            if code:
                sys.exit(code)
            return

        if args.command == "backfill":
            db = _open_db(cfg)
            chain = ChainReader(cfg.rpc_http, timeout=cfg.rpc_timeout)
            try:
                asyncio.run(build_scheduler(cfg, db, chain).backfill(args.from_block, args.to_block))
            except NotImplementedError as exc:
                logger.error("Backfill unavailable: %s", exc)
                sys.exit(2)
            finally:
                db.close()
            return

        if args.command == "events":
            _events(cfg, args.contract, args.name, args.limit)
            return
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(2)
    except StorageError as exc:
        logger.error("Storage error: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()

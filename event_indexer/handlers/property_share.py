"""PropertyShare (ERC-1155) projections: properties, primary sales, transfers."""

import logging
import sqlite3
from typing import Any, Dict

from ..store import BlockMeta
from ..utils import ZERO_ADDRESS, db_addr, format_units


logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS properties (
    token_id INTEGER PRIMARY KEY,
    contract_address TEXT NOT NULL,
    name TEXT,
    location TEXT,
    total_shares INTEGER NOT NULL,
    available_shares INTEGER NOT NULL,
    price_per_share TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    creation_tx_hash TEXT,
    created_block INTEGER,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS share_purchases (
    transaction_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL,
    token_id INTEGER NOT NULL,
    buyer_wallet TEXT NOT NULL,
    amount INTEGER NOT NULL,
    total_price TEXT,
    block_number INTEGER NOT NULL,
    PRIMARY KEY (transaction_hash, log_index)
);
CREATE INDEX IF NOT EXISTS idx_share_purchases_token ON share_purchases(token_id);

CREATE TABLE IF NOT EXISTS share_transfers (
    transaction_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL,
    token_id INTEGER NOT NULL,
    operator TEXT,
    from_wallet TEXT NOT NULL,
    to_wallet TEXT NOT NULL,
    amount INTEGER NOT NULL,
    block_number INTEGER NOT NULL,
    PRIMARY KEY (transaction_hash, log_index)
);
"""


def refresh_available_shares(conn: sqlite3.Connection, token_id: int) -> None:
    conn.execute(
        """
        UPDATE properties
        SET available_shares = total_shares - COALESCE(
                (SELECT SUM(amount) FROM share_purchases WHERE token_id = ?), 0),
            updated_at = CURRENT_TIMESTAMP
        WHERE token_id = ?
        """,
        (token_id, token_id),
    )


def handle_property_created(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    token_id = int(args["tokenId"])
    logger.info("PropertyCreated token=%d name=%s location=%s", token_id, args["name"], args["location"])
    conn.execute(
        """
        INSERT INTO properties (
            token_id, contract_address, name, location, total_shares, available_shares,
            price_per_share, status, creation_tx_hash, created_block
        ) VALUES (?, ?, ?, ?, ?, ?, ?, 'active', ?, ?)
        ON CONFLICT(token_id) DO UPDATE SET
            contract_address = excluded.contract_address,
            name = excluded.name,
            location = excluded.location,
            total_shares = excluded.total_shares,
            price_per_share = excluded.price_per_share,
            creation_tx_hash = excluded.creation_tx_hash,
            created_block = excluded.created_block,
            updated_at = CURRENT_TIMESTAMP
        """,
        (
            token_id,
            meta.contract_address,
            args["name"],
            args["location"],
            int(args["totalShares"]),
            int(args["totalShares"]),
            format_units(args["pricePerShare"]),
            meta.transaction_hash,
            meta.block_number,
        ),
    )
    refresh_available_shares(conn, token_id)


def handle_shares_purchased(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    token_id = int(args["tokenId"])
    buyer = db_addr(args["buyer"])
    logger.info("SharesPurchased token=%d buyer=%s amount=%d", token_id, buyer, args["amount"])
    conn.execute(
        """
        INSERT OR IGNORE INTO share_purchases (
            transaction_hash, log_index, token_id, buyer_wallet, amount, total_price, block_number
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            meta.transaction_hash,
            meta.log_index,
            token_id,
            buyer,
            int(args["amount"]),
            format_units(args["totalPrice"]),
            meta.block_number,
        ),
    )
    refresh_available_shares(conn, token_id)


def handle_transfer_single(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    from_addr = db_addr(args["from"])
    to_addr = db_addr(args["to"])
    # mints are covered by SharesPurchased; burns carry nothing to project
    if ZERO_ADDRESS in (from_addr, to_addr):
        return
    logger.info("TransferSingle token=%d %s -> %s value=%d", args["id"], from_addr, to_addr, args["value"])
    conn.execute(
        """
        INSERT OR IGNORE INTO share_transfers (
            transaction_hash, log_index, token_id, operator, from_wallet, to_wallet, amount, block_number
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            meta.transaction_hash,
            meta.log_index,
            int(args["id"]),
            db_addr(args["operator"]),
            from_addr,
            to_addr,
            int(args["value"]),
            meta.block_number,
        ),
    )


HANDLERS = {
    "PropertyCreated": handle_property_created,
    "SharesPurchased": handle_shares_purchased,
    "TransferSingle": handle_transfer_single,
}

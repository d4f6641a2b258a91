"""Secondary-market projections: listings and the purchases made against them."""

import logging
import sqlite3
from typing import Any, Dict

from ..store import BlockMeta
from ..utils import db_addr, format_units


logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS marketplace_listings (
    listing_id INTEGER PRIMARY KEY,
    token_id INTEGER NOT NULL,
    property_name TEXT,
    seller_wallet TEXT NOT NULL,
    listed_amount INTEGER NOT NULL,
    shares_amount INTEGER NOT NULL,
    price_per_share TEXT,
    total_price TEXT,
    status TEXT NOT NULL DEFAULT 'ACTIVE',
    buyer_wallet TEXT,
    transaction_hash TEXT,
    block_number INTEGER,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS marketplace_transactions (
    transaction_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL,
    listing_id INTEGER NOT NULL,
    buyer_wallet TEXT NOT NULL,
    seller_wallet TEXT NOT NULL,
    token_id INTEGER NOT NULL,
    shares_amount INTEGER NOT NULL,
    price_per_share TEXT,
    total_price TEXT,
    block_number INTEGER NOT NULL,
    PRIMARY KEY (transaction_hash, log_index)
);
CREATE INDEX IF NOT EXISTS idx_marketplace_tx_listing ON marketplace_transactions(listing_id);
"""


def _property_name(conn: sqlite3.Connection, token_id: int) -> str:
    try:
        row = conn.execute("SELECT name FROM properties WHERE token_id = ?", (token_id,)).fetchone()
    except sqlite3.OperationalError:
        row = None
    if row and row["name"]:
        return row["name"]
    return f"Property #{token_id}"


def refresh_listing(conn: sqlite3.Connection, listing_id: int) -> None:
    """Recompute remaining shares, status and buyer from the recorded purchases."""
    listing = conn.execute(
        "SELECT listed_amount, status FROM marketplace_listings WHERE listing_id = ?", (listing_id,)
    ).fetchone()
    if listing is None:
        return
    purchases = conn.execute(
        """
        SELECT buyer_wallet, shares_amount FROM marketplace_transactions
        WHERE listing_id = ? ORDER BY block_number, log_index
        """,
        (listing_id,),
    ).fetchall()
    sold = sum(int(row["shares_amount"]) for row in purchases)
    remaining = max(int(listing["listed_amount"]) - sold, 0)

    status = listing["status"]
    if status != "CANCELLED":
        status = "SOLD" if purchases and remaining == 0 else "ACTIVE"
    buyer = purchases[-1]["buyer_wallet"] if status == "SOLD" else None

    conn.execute(
        """
        UPDATE marketplace_listings
        SET shares_amount = ?, status = ?, buyer_wallet = ?, updated_at = CURRENT_TIMESTAMP
        WHERE listing_id = ?
        """,
        (remaining, status, buyer, listing_id),
    )


def handle_listing_created(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    listing_id = int(args["listingId"])
    token_id = int(args["tokenId"])
    amount = int(args["amount"])
    price = int(args["pricePerShare"])
    seller = db_addr(args["seller"])
    logger.info("ListingCreated listing=%d token=%d seller=%s amount=%d", listing_id, token_id, seller, amount)
    conn.execute(
        """
        INSERT INTO marketplace_listings (
            listing_id, token_id, property_name, seller_wallet, listed_amount, shares_amount,
            price_per_share, total_price, status, transaction_hash, block_number
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'ACTIVE', ?, ?)
        ON CONFLICT(listing_id) DO UPDATE SET
            token_id = excluded.token_id,
            property_name = excluded.property_name,
            seller_wallet = excluded.seller_wallet,
            listed_amount = excluded.listed_amount,
            price_per_share = excluded.price_per_share,
            total_price = excluded.total_price,
            transaction_hash = excluded.transaction_hash,
            block_number = excluded.block_number
        """,
        (
            listing_id,
            token_id,
            _property_name(conn, token_id),
            seller,
            amount,
            amount,
            format_units(price),
            format_units(price * amount),
            meta.transaction_hash,
            meta.block_number,
        ),
    )
    refresh_listing(conn, listing_id)


def handle_purchase_executed(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    listing_id = int(args["listingId"])
    buyer = db_addr(args["buyer"])
    listing = conn.execute(
        "SELECT seller_wallet, price_per_share FROM marketplace_listings WHERE listing_id = ?",
        (listing_id,),
    ).fetchone()
    if listing is None:
        raise LookupError(f"Listing {listing_id} not found")

    logger.info("PurchaseExecuted listing=%d buyer=%s amount=%d", listing_id, buyer, args["amount"])
    conn.execute(
        """
        INSERT OR IGNORE INTO marketplace_transactions (
            transaction_hash, log_index, listing_id, buyer_wallet, seller_wallet, token_id,
            shares_amount, price_per_share, total_price, block_number
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            meta.transaction_hash,
            meta.log_index,
            listing_id,
            buyer,
            listing["seller_wallet"],
            int(args["tokenId"]),
            int(args["amount"]),
            listing["price_per_share"],
            format_units(args["totalPrice"]),
            meta.block_number,
        ),
    )
    refresh_listing(conn, listing_id)


def handle_listing_cancelled(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    listing_id = int(args["listingId"])
    logger.info("ListingCancelled listing=%d seller=%s", listing_id, db_addr(args["seller"]))
    conn.execute(
        """
        UPDATE marketplace_listings
        SET status = 'CANCELLED', updated_at = CURRENT_TIMESTAMP
        WHERE listing_id = ?
        """,
        (listing_id,),
    )


HANDLERS = {
    "ListingCreated": handle_listing_created,
    "PurchaseExecuted": handle_purchase_executed,
    "ListingCancelled": handle_listing_cancelled,
}

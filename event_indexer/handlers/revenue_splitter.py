"""RevenueSplitter projections: rent deposits, payouts, reward claims, managers."""

import logging
import sqlite3
from typing import Any, Dict

from ..store import BlockMeta
from ..utils import db_addr, format_units


logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS rent_deposits (
    transaction_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL,
    token_id INTEGER NOT NULL,
    depositor_wallet TEXT NOT NULL,
    gross_rent TEXT,
    miscellaneous_fee TEXT,
    net_amount TEXT,
    deposit_type TEXT NOT NULL DEFAULT 'WARD_BOY',
    status TEXT NOT NULL DEFAULT 'PENDING',
    platform_fee TEXT,
    distributable_amount TEXT,
    payout_tx_hash TEXT,
    payout_log_index INTEGER,
    block_number INTEGER NOT NULL,
    PRIMARY KEY (transaction_hash, log_index)
);
CREATE INDEX IF NOT EXISTS idx_rent_deposits_token_status ON rent_deposits(token_id, status);

CREATE TABLE IF NOT EXISTS reward_claims (
    transaction_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL,
    token_id INTEGER NOT NULL,
    claimer_wallet TEXT NOT NULL,
    amount_raw TEXT NOT NULL,
    amount_claimed TEXT NOT NULL,
    block_number INTEGER NOT NULL,
    PRIMARY KEY (transaction_hash, log_index)
);

CREATE TABLE IF NOT EXISTS reward_totals (
    wallet_address TEXT NOT NULL,
    token_id INTEGER NOT NULL,
    total_claimed TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (wallet_address, token_id)
);

CREATE TABLE IF NOT EXISTS property_managers (
    token_id INTEGER NOT NULL,
    manager_wallet TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    assigned_tx_hash TEXT,
    assigned_block INTEGER,
    PRIMARY KEY (token_id, manager_wallet)
);
"""


def handle_funds_deposited(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    token_id = int(args["tokenId"])
    logger.info("FundsDepositedByManager token=%d net=%s", token_id, format_units(args["netAmount"]))
    conn.execute(
        """
        INSERT OR IGNORE INTO rent_deposits (
            transaction_hash, log_index, token_id, depositor_wallet,
            gross_rent, miscellaneous_fee, net_amount, block_number
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            meta.transaction_hash,
            meta.log_index,
            token_id,
            db_addr(args["manager"]),
            format_units(args["grossRent"]),
            format_units(args["miscellaneousFee"]),
            format_units(args["netAmount"]),
            meta.block_number,
        ),
    )


def handle_payout_triggered(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    token_id = int(args["tokenId"])
    applied = conn.execute(
        "SELECT 1 FROM rent_deposits WHERE payout_tx_hash = ? AND payout_log_index = ?",
        (meta.transaction_hash, meta.log_index),
    ).fetchone()
    if applied:
        return

    # the payout settles the most recent deposit still pending for the property
    pending = conn.execute(
        """
        SELECT transaction_hash, log_index FROM rent_deposits
        WHERE token_id = ? AND status = 'PENDING' AND block_number <= ?
        ORDER BY block_number DESC, log_index DESC
        LIMIT 1
        """,
        (token_id, meta.block_number),
    ).fetchone()
    if pending is None:
        logger.warning("PayoutTriggered for token %d with no pending deposit (tx=%s)", token_id, meta.transaction_hash)
        return

    logger.info("PayoutTriggered token=%d distributable=%s", token_id, format_units(args["netForDistribution"]))
    conn.execute(
        """
        UPDATE rent_deposits
        SET status = 'DISTRIBUTED', platform_fee = ?, distributable_amount = ?,
            payout_tx_hash = ?, payout_log_index = ?
        WHERE transaction_hash = ? AND log_index = ?
        """,
        (
            format_units(args["platformFee"]),
            format_units(args["netForDistribution"]),
            meta.transaction_hash,
            meta.log_index,
            pending["transaction_hash"],
            pending["log_index"],
        ),
    )


def handle_reward_claimed(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    token_id = int(args["tokenId"])
    holder = db_addr(args["holder"])
    logger.info("RewardClaimed token=%d holder=%s amount=%s", token_id, holder, format_units(args["amount"]))
    conn.execute(
        """
        INSERT OR IGNORE INTO reward_claims (
            transaction_hash, log_index, token_id, claimer_wallet, amount_raw, amount_claimed, block_number
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            meta.transaction_hash,
            meta.log_index,
            token_id,
            holder,
            str(int(args["amount"])),
            format_units(args["amount"]),
            meta.block_number,
        ),
    )
    rows = conn.execute(
        "SELECT amount_raw FROM reward_claims WHERE claimer_wallet = ? AND token_id = ?",
        (holder, token_id),
    ).fetchall()
    total = sum(int(row["amount_raw"]) for row in rows)
    conn.execute(
        """
        INSERT INTO reward_totals (wallet_address, token_id, total_claimed) VALUES (?, ?, ?)
        ON CONFLICT(wallet_address, token_id) DO UPDATE SET
            total_claimed = excluded.total_claimed,
            updated_at = CURRENT_TIMESTAMP
        """,
        (holder, token_id, format_units(total)),
    )


def handle_manager_assigned(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    token_id = int(args["tokenId"])
    manager = db_addr(args["manager"])
    logger.info("PropertyManagerAssigned token=%d manager=%s", token_id, manager)
    conn.execute("UPDATE property_managers SET active = 0 WHERE token_id = ?", (token_id,))
    conn.execute(
        """
        INSERT INTO property_managers (token_id, manager_wallet, active, assigned_tx_hash, assigned_block)
        VALUES (?, ?, 1, ?, ?)
        ON CONFLICT(token_id, manager_wallet) DO UPDATE SET
            active = 1,
            assigned_tx_hash = excluded.assigned_tx_hash,
            assigned_block = excluded.assigned_block
        """,
        (token_id, manager, meta.transaction_hash, meta.block_number),
    )


HANDLERS = {
    "FundsDepositedByManager": handle_funds_deposited,
    "PayoutTriggered": handle_payout_triggered,
    "RewardClaimed": handle_reward_claimed,
    "PropertyManagerAssigned": handle_manager_assigned,
}

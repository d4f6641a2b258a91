"""User projections fed by UserRegistry, IdentitySBT and ZKRegistry."""

import logging
import sqlite3
from typing import Any, Dict

from ..store import BlockMeta
from ..utils import db_addr, to_hex


logger = logging.getLogger(__name__)

ROLE_MAP = ["NONE", "CLIENT", "SELLER", "ADMIN"]


SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    wallet_address TEXT PRIMARY KEY,
    role TEXT,
    name TEXT,
    kyc_status TEXT NOT NULL DEFAULT 'PENDING',
    kyc_document_hash TEXT,
    kyc_rejection_reason TEXT,
    verified_block INTEGER,
    sbt_token_id INTEGER,
    sbt_metadata_uri TEXT,
    sbt_mint_tx_hash TEXT,
    proof_hash TEXT,
    proof_tx_hash TEXT,
    proof_provider TEXT,
    registered_block INTEGER,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


def _update_user(conn: sqlite3.Connection, wallet: str, event_name: str, assignments: str, params: tuple) -> None:
    cur = conn.execute(
        f"UPDATE users SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE wallet_address = ?",
        params + (wallet,),
    )
    if cur.rowcount == 0:
        logger.warning("%s for unregistered user %s", event_name, wallet)


def handle_user_registered(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    user = db_addr(args["user"])
    role_index = int(args["role"])
    role = ROLE_MAP[role_index] if 0 <= role_index < len(ROLE_MAP) else "BUYER"
    logger.info("UserRegistered user=%s role=%s", user, role)
    conn.execute(
        """
        INSERT INTO users (wallet_address, role, name, registered_block) VALUES (?, ?, ?, ?)
        ON CONFLICT(wallet_address) DO UPDATE SET
            role = excluded.role,
            name = excluded.name,
            registered_block = excluded.registered_block,
            updated_at = CURRENT_TIMESTAMP
        """,
        (user, role, args["name"], meta.block_number),
    )


def handle_kyc_submitted(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    user = db_addr(args["user"])
    logger.info("KYCSubmitted user=%s", user)
    _update_user(
        conn,
        user,
        "KYCSubmitted",
        "kyc_status = 'SUBMITTED', kyc_document_hash = ?",
        (args["documentHash"],),
    )


def handle_kyc_approved(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    user = db_addr(args["user"])
    logger.info("KYCApproved user=%s", user)
    _update_user(
        conn,
        user,
        "KYCApproved",
        "kyc_status = 'APPROVED', kyc_rejection_reason = NULL, verified_block = ?",
        (meta.block_number,),
    )


def handle_kyc_rejected(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    user = db_addr(args["user"])
    logger.info("KYCRejected user=%s reason=%s", user, args["reason"])
    _update_user(
        conn,
        user,
        "KYCRejected",
        "kyc_status = 'REJECTED', kyc_rejection_reason = ?",
        (args["reason"],),
    )


def handle_sbt_minted(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    user = db_addr(args["user"])
    logger.info("SbtMinted user=%s token=%d", user, args["tokenId"])
    _update_user(
        conn,
        user,
        "SbtMinted",
        "sbt_token_id = ?, sbt_metadata_uri = ?, sbt_mint_tx_hash = ?",
        (int(args["tokenId"]), args["metadataURI"], meta.transaction_hash),
    )


def handle_proof_submitted(conn: sqlite3.Connection, args: Dict[str, Any], meta: BlockMeta) -> None:
    user = db_addr(args["user"])
    logger.info("ProofSubmitted user=%s provider=%s", user, args["provider"])
    _update_user(
        conn,
        user,
        "ProofSubmitted",
        "proof_hash = ?, proof_tx_hash = ?, proof_provider = ?",
        (to_hex(args["proofHash"]), meta.transaction_hash, args["provider"]),
    )


USER_REGISTRY_HANDLERS = {
    "UserRegistered": handle_user_registered,
    "KYCSubmitted": handle_kyc_submitted,
    "KYCApproved": handle_kyc_approved,
    "KYCRejected": handle_kyc_rejected,
}

IDENTITY_SBT_HANDLERS = {
    "SbtMinted": handle_sbt_minted,
}

ZK_REGISTRY_HANDLERS = {
    "ProofSubmitted": handle_proof_submitted,
}

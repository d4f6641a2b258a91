"""Projection handlers, keyed by contract name then event name.

A handler is called as ``handler(conn, args, meta)`` inside the savepoint that
also holds the event's audit row. It must be an idempotent upsert: applying
the same log twice leaves the projection as applying it once.
"""

from typing import Dict, List

from . import marketplace, property_share, revenue_splitter, user_registry


PROJECTION_SCHEMAS: List[str] = [
    property_share.SCHEMA,
    revenue_splitter.SCHEMA,
    marketplace.SCHEMA,
    user_registry.SCHEMA,
]

HANDLERS: Dict[str, Dict[str, object]] = {
    "PropertyShare": property_share.HANDLERS,
    "RevenueSplitter": revenue_splitter.HANDLERS,
    "Marketplace": marketplace.HANDLERS,
    "UserRegistry": user_registry.USER_REGISTRY_HANDLERS,
    "IdentitySBT": user_registry.IDENTITY_SBT_HANDLERS,
    "ZKRegistry": user_registry.ZK_REGISTRY_HANDLERS,
}

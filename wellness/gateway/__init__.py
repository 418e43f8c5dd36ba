"""
Persistence Gateway Package

Durable storage behind an async interface. The engine owns in-memory state
for the current session; the gateway owns the durable copies.

Usage:
    from wellness.gateway import get_gateway

    gateway = get_gateway("sqlite", {"database_path": "data/wellness.db"})
    profile = await gateway.ensure_user_profile("user-1")
"""

from .base import (
    CONTENT_ACTIONS,
    PEER_ACTIONS,
    PEER_QUALITIES,
    PROFILE_LIST_FIELDS,
    PROFILE_TEXT_FIELDS,
    GatewayError,
    PersistenceGateway,
    SchemaUnavailableError,
    TransientPersistenceError,
)
from .sqlite_gateway import SQLiteGateway


__all__ = [
    "CONTENT_ACTIONS",
    "GatewayError",
    "PEER_ACTIONS",
    "PEER_QUALITIES",
    "PROFILE_LIST_FIELDS",
    "PROFILE_TEXT_FIELDS",
    "PersistenceGateway",
    "SQLiteGateway",
    "SchemaUnavailableError",
    "TransientPersistenceError",
    "get_gateway",
]


def get_gateway(name: str, config: dict | None = None) -> PersistenceGateway | None:
    """
    Get a gateway instance by name.

    Args:
        name: Gateway name (sqlite, none)
        config: Gateway configuration

    Returns:
        PersistenceGateway instance, or None for local-only operation

    Raises:
        ValueError: If gateway not found
    """
    config = config or {}

    if name == "sqlite":
        return SQLiteGateway(config)

    elif name in ("none", "local"):
        return None

    else:
        raise ValueError(f"Unknown gateway: {name}. Available gateways: sqlite, none")

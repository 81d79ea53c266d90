"""Database layer - engine, column types, and immutability enforcement."""

from inventory_kernel.db.base import (
    PRICE_TYPE,
    QUANTITY_TYPE,
    Base,
    FixedDecimal,
    TrackedBase,
    UUIDString,
)
from inventory_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_config,
    init_engine_from_url,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_engine_from_config",
    "init_engine_from_url",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "FixedDecimal",
    "QUANTITY_TYPE",
    "PRICE_TYPE",
]

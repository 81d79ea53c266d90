"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from inventory_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from inventory_kernel.domain.dtos import (
    DriftKind,
    InventorySnapshot,
    MovementDraft,
    MovementRecord,
    OrderKind,
    OrderLineView,
    OrderView,
    ProductInfo,
    ReconciliationResult,
    UnitInfo,
    WarehouseInfo,
)
from inventory_kernel.domain.movements import (
    MovementType,
    ReferenceType,
    signed_delta,
    to_quantity,
    validate_endpoints,
)
from inventory_kernel.domain.workflow import (
    PURCHASE_ORDER_WORKFLOW,
    SALES_ORDER_WORKFLOW,
    OrderAction,
    PurchaseOrderStatus,
    SalesOrderStatus,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "DriftKind",
    "InventorySnapshot",
    "MovementDraft",
    "MovementRecord",
    "OrderKind",
    "OrderLineView",
    "OrderView",
    "ReconciliationResult",
    "ProductInfo",
    "UnitInfo",
    "WarehouseInfo",
    "MovementType",
    "ReferenceType",
    "signed_delta",
    "to_quantity",
    "validate_endpoints",
    "PURCHASE_ORDER_WORKFLOW",
    "SALES_ORDER_WORKFLOW",
    "OrderAction",
    "PurchaseOrderStatus",
    "SalesOrderStatus",
]

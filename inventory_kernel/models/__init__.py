"""Domain models for the inventory kernel."""

from inventory_kernel.models.drift_report import DriftReport
from inventory_kernel.models.inventory import AppliedMovement, InventoryRecord
from inventory_kernel.models.movement import StockMovement
from inventory_kernel.models.order import (
    PurchaseOrder,
    PurchaseOrderLine,
    SalesOrder,
    SalesOrderLine,
)
from inventory_kernel.models.product import Product, Unit
from inventory_kernel.models.warehouse import Warehouse

__all__ = [
    "AppliedMovement",
    "DriftReport",
    "InventoryRecord",
    "Product",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "SalesOrder",
    "SalesOrderLine",
    "StockMovement",
    "Unit",
    "Warehouse",
]

"""Selectors for the inventory kernel (read side)."""

from inventory_kernel.selectors.inventory_selector import InventorySelector
from inventory_kernel.selectors.order_selector import OrderSelector

__all__ = [
    "InventorySelector",
    "OrderSelector",
]

"""
Inventory Kernel

An append-only inventory ledger with:
- Immutable stock movements as the source of truth
- Idempotent per-(product, warehouse) projection
- Fail-fast reservations that prevent overselling
- Atomic order fulfillment transactions
- On-demand reconciliation against ledger replay
"""

__version__ = "0.1.0"

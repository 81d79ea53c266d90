"""
Module: inventory_kernel.selectors.inventory_selector
Responsibility: Read-only queries over the inventory projection and the
    movement ledger: per-key snapshots, per-product and per-warehouse
    listings, movements by originating document, and the set of keys that
    have any state at all.
Architecture position: Kernel > Selectors.

Failure modes:
    - Never raises for an unknown key; an absent record reads as zeros.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.dtos import InventorySnapshot, MovementRecord
from inventory_kernel.models.inventory import InventoryRecord
from inventory_kernel.models.movement import StockMovement
from inventory_kernel.selectors.base import BaseSelector


def _snapshot(record: InventoryRecord) -> InventorySnapshot:
    return InventorySnapshot(
        product_id=record.product_id,
        warehouse_id=record.warehouse_id,
        quantity=Decimal(record.quantity),
        reserved=Decimal(record.reserved),
        reorder_level=Decimal(record.reorder_level),
    )


class InventorySelector(BaseSelector):
    """Selector for inventory records and stock movements."""

    def __init__(self, session: Session):
        super().__init__(session)

    def snapshot(self, product_id: UUID, warehouse_id: UUID) -> InventorySnapshot:
        """Quantity state of one key; zeros when no record exists."""
        record = self.session.execute(
            self.for_key(select(InventoryRecord), InventoryRecord, product_id, warehouse_id)
        ).scalar_one_or_none()
        if record is None:
            return InventorySnapshot(product_id=product_id, warehouse_id=warehouse_id)
        return _snapshot(record)

    def movements_for_reference(
        self,
        reference_type: str,
        reference_id: UUID,
    ) -> tuple[MovementRecord, ...]:
        """Movements originated by one document (order, transfer, ...), by seq."""
        rows = self.session.execute(
            select(StockMovement)
            .where(StockMovement.reference_type == reference_type)
            .where(StockMovement.reference_id == reference_id)
            .order_by(StockMovement.seq)
        ).scalars().all()
        return tuple(MovementRecord.from_model(row) for row in rows)

    def known_keys(self) -> list[tuple[UUID, UUID]]:
        """
        Every (product, warehouse) with a record or at least one movement,
        sorted.
        """
        keys: set[tuple[UUID, UUID]] = set()
        for product_id, warehouse_id in self.session.execute(
            select(InventoryRecord.product_id, InventoryRecord.warehouse_id)
        ):
            keys.add((product_id, warehouse_id))
        for product_id, warehouse_id in self.session.execute(
            select(StockMovement.product_id, StockMovement.to_warehouse_id)
            .where(StockMovement.to_warehouse_id.is_not(None))
            .distinct()
        ):
            keys.add((product_id, warehouse_id))
        for product_id, warehouse_id in self.session.execute(
            select(StockMovement.product_id, StockMovement.from_warehouse_id)
            .where(StockMovement.from_warehouse_id.is_not(None))
            .distinct()
        ):
            keys.add((product_id, warehouse_id))
        return sorted(keys, key=lambda k: (str(k[0]), str(k[1])))

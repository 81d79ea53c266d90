"""
Module: inventory_kernel.models.inventory
Responsibility: ORM persistence for the inventory projection -- one row per
    (product, warehouse) holding on-hand and reserved quantity -- and the
    applied-movement markers that make projection updates idempotent.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One record per (product, warehouse) (UNIQUE constraint).
    - quantity >= 0, reserved >= 0, reserved <= quantity (CHECK constraints,
      also verified in InventoryProjection/ReservationManager before flush so
      that violations surface as InvariantViolation/InsufficientStockError).
    - At-most-once application: one AppliedMovement row per movement id
      (UNIQUE constraint).  AppliedMovement rows are immutable.

Non-goals:
    - reorder_level is informational.  Nothing reacts to it.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import QUANTITY_TYPE, Base, UTCDateTime, UUIDString


class InventoryRecord(Base):
    """
    Materialized quantity state for one product in one warehouse.

    Contract:
        Mutated only by InventoryProjection.apply() (quantity) and
        ReservationManager (reserved).  Never written directly.
    """

    __tablename__ = "inventory_records"

    __table_args__ = (
        UniqueConstraint("product_id", "warehouse_id", name="uq_inventory_product_warehouse"),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        CheckConstraint("reserved >= 0", name="ck_inventory_reserved_non_negative"),
        CheckConstraint("reserved <= quantity", name="ck_inventory_reserved_within_quantity"),
        Index("idx_inventory_qty", "quantity"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(
        QUANTITY_TYPE, nullable=False, default=Decimal("0")
    )

    reserved: Mapped[Decimal] = mapped_column(
        QUANTITY_TYPE, nullable=False, default=Decimal("0")
    )

    reorder_level: Mapped[Decimal] = mapped_column(
        QUANTITY_TYPE, nullable=False, default=Decimal("0")
    )

    last_updated: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False
    )

    @property
    def available(self) -> Decimal:
        return self.quantity - self.reserved

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord product={self.product_id} warehouse={self.warehouse_id} "
            f"quantity={self.quantity} reserved={self.reserved}>"
        )


class AppliedMovement(Base):
    """
    Marker that a movement has been applied to the projection.

    Contract:
        Inserted in the same transaction as the quantity change it guards.
        A movement id with a marker is never applied again.
    """

    __tablename__ = "applied_movements"

    __table_args__ = (
        UniqueConstraint("movement_id", name="uq_applied_movement"),
        Index("idx_applied_product_warehouse", "product_id", "warehouse_id"),
    )

    movement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_movements.id", ondelete="RESTRICT"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    warehouse_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Signed change applied to the record
    delta: Mapped[Decimal] = mapped_column(QUANTITY_TYPE, nullable=False)

    applied_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

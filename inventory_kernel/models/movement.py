"""
Module: inventory_kernel.models.movement
Responsibility: ORM persistence for stock movements -- the single source of
    truth for quantity history.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value enums only.

Invariants enforced:
    - Append-only: ORM listeners in db/immutability.py reject every UPDATE
      and DELETE of a StockMovement.  Corrections are new compensating
      movements.
    - Positive quantity (CHECK constraint); direction comes from which
      warehouse endpoint is set.
    - Exactly one warehouse endpoint (CHECK constraint).
    - Sequence safety: seq is monotonic and UNIQUE, assigned by
      SequenceService at append time.

Audit relevance:
    performed_by_id attributes every movement to the employee (or system
    actor) that caused it; reference_type/reference_id/order_line_id tie it
    to the originating document.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import QUANTITY_TYPE, Base, UTCDateTime, UUIDString
from inventory_kernel.domain.movements import MovementType


class StockMovement(Base):
    """
    One immutable change to one (product, warehouse) inventory record.

    Contract:
        Rows are inserted by LedgerService.append() only.  They are never
        updated or deleted.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_stock_movement_seq"),
        CheckConstraint("quantity > 0", name="ck_stock_movement_quantity_positive"),
        CheckConstraint(
            "(from_warehouse_id IS NULL) <> (to_warehouse_id IS NULL)",
            name="ck_stock_movement_single_endpoint",
        ),
        Index("idx_sm_product_date", "product_id", "created_at"),
        Index("idx_sm_product_to_wh", "product_id", "to_warehouse_id", "seq"),
        Index("idx_sm_product_from_wh", "product_id", "from_warehouse_id", "seq"),
        Index("idx_sm_reference", "reference_type", "reference_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    movement_type: Mapped[MovementType] = mapped_column(String(20), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Set for outbound movements
    from_warehouse_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=True,
    )

    # Set for inbound movements
    to_warehouse_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=True,
    )

    # Always positive
    quantity: Mapped[Decimal] = mapped_column(QUANTITY_TYPE, nullable=False)

    # Copied from the product at append time
    unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("units.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # e.g. "PO", "SO", "ADJ", "TRANSFER", "RETURN"
    reference_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    order_line_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    performed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<StockMovement #{self.seq} {self.movement_type} {self.quantity}>"

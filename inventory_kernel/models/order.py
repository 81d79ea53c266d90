"""
Module: inventory_kernel.models.order
Responsibility: ORM persistence for purchase orders (incoming stock) and sales
    orders (outgoing stock), each a header with many lines.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value enums only.

Invariants enforced:
    - Order number uniqueness (po_number / so_number UNIQUE).
    - Per line: 0 <= fulfilled <= ordered, ordered > 0 (CHECK constraints).
    - Sales lines: 0 <= quantity_reserved and
      quantity_shipped + quantity_reserved <= quantity_ordered.
    - Terminal headers (RECEIVED, FULFILLED, CANCELLED) and their lines are
      immutable (ORM listener in db/immutability.py).

Failure modes:
    - IntegrityError on duplicate order number or line constraint breach.
    - ImmutabilityViolationError when touching a terminal order.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import PRICE_TYPE, QUANTITY_TYPE, Base, TrackedBase, UUIDString
from inventory_kernel.domain.workflow import PurchaseOrderStatus, SalesOrderStatus


class PurchaseOrder(TrackedBase):
    """Purchase order header: one supplier, created by an employee."""

    __tablename__ = "purchase_orders"

    __table_args__ = (
        Index("idx_po_supplier_date", "supplier_id", "order_date"),
        Index("idx_po_status", "status"),
    )

    po_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    # Owned by the supplier collaborator; no FK inside the kernel
    supplier_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    status: Mapped[PurchaseOrderStatus] = mapped_column(
        String(12), nullable=False, default=PurchaseOrderStatus.DRAFT.value
    )

    order_date: Mapped[date] = mapped_column(Date, nullable=False)

    expected_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Set when the last line is fully received
    received_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="order",
        order_by="PurchaseOrderLine.line_no",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.po_number} {self.status}>"


class PurchaseOrderLine(Base):
    """One product to be received into one warehouse."""

    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("po_id", "line_no", name="uq_po_line_no"),
        CheckConstraint("quantity_ordered > 0", name="ck_poi_ordered_positive"),
        CheckConstraint("quantity_received >= 0", name="ck_poi_received_non_negative"),
        CheckConstraint(
            "quantity_received <= quantity_ordered", name="ck_poi_received_within_ordered"
        ),
    )

    po_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Where the incoming stock will be stored
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False,
    )

    quantity_ordered: Mapped[Decimal] = mapped_column(QUANTITY_TYPE, nullable=False)

    quantity_received: Mapped[Decimal] = mapped_column(
        QUANTITY_TYPE, nullable=False, default=Decimal("0")
    )

    unit_price: Mapped[Decimal | None] = mapped_column(PRICE_TYPE, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    order: Mapped[PurchaseOrder] = relationship(back_populates="lines")

    @property
    def remaining(self) -> Decimal:
        return self.quantity_ordered - self.quantity_received


class SalesOrder(TrackedBase):
    """Sales order header: one customer, created by an employee."""

    __tablename__ = "sales_orders"

    __table_args__ = (
        Index("idx_so_customer_date", "customer_id", "order_date"),
        Index("idx_so_status", "status"),
    )

    so_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    # Owned by the customer collaborator; no FK inside the kernel
    customer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    status: Mapped[SalesOrderStatus] = mapped_column(
        String(12), nullable=False, default=SalesOrderStatus.DRAFT.value
    )

    order_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Set when the last line is fully shipped
    shipment_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["SalesOrderLine"]] = relationship(
        back_populates="order",
        order_by="SalesOrderLine.line_no",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<SalesOrder {self.so_number} {self.status}>"


class SalesOrderLine(Base):
    """One product to be shipped from one warehouse."""

    __tablename__ = "sales_order_lines"

    __table_args__ = (
        UniqueConstraint("so_id", "line_no", name="uq_so_line_no"),
        Index("idx_soi_product_warehouse", "product_id", "warehouse_id"),
        CheckConstraint("quantity_ordered > 0", name="ck_soi_ordered_positive"),
        CheckConstraint("quantity_shipped >= 0", name="ck_soi_shipped_non_negative"),
        CheckConstraint("quantity_reserved >= 0", name="ck_soi_reserved_non_negative"),
        CheckConstraint(
            "quantity_shipped + quantity_reserved <= quantity_ordered",
            name="ck_soi_shipped_reserved_within_ordered",
        ),
    )

    so_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Where the items will be shipped from
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False,
    )

    quantity_ordered: Mapped[Decimal] = mapped_column(QUANTITY_TYPE, nullable=False)

    quantity_shipped: Mapped[Decimal] = mapped_column(
        QUANTITY_TYPE, nullable=False, default=Decimal("0")
    )

    # Outstanding hold this line owns in the warehouse's reserved quantity
    quantity_reserved: Mapped[Decimal] = mapped_column(
        QUANTITY_TYPE, nullable=False, default=Decimal("0")
    )

    unit_price: Mapped[Decimal | None] = mapped_column(PRICE_TYPE, nullable=True)

    order: Mapped[SalesOrder] = relationship(back_populates="lines")

    @property
    def remaining(self) -> Decimal:
        return self.quantity_ordered - self.quantity_shipped

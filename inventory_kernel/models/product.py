"""
Module: inventory_kernel.models.product
Responsibility: ORM persistence for units of measure and products -- the
    reference data every stock movement points at.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - SKU uniqueness (UNIQUE constraint on sku).
    - Unit code uniqueness (UNIQUE constraint on code).
    - Identity immutability: sku and unit_id cannot change once any stock
      movement references the product (ORM listener in db/immutability.py).
      Descriptive fields (name, description, prices, is_active) stay editable.

Failure modes:
    - IntegrityError on duplicate sku or unit code.
    - ImmutabilityViolationError on identity change of a referenced product.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import PRICE_TYPE, Base, TrackedBase, UUIDString


class Unit(Base):
    """Unit of measure (e.g. ``pcs``, ``kg``, ``ltr``)."""

    __tablename__ = "units"

    code: Mapped[str] = mapped_column(String(10), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(60), nullable=False)

    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Unit {self.code}>"


class Product(TrackedBase):
    """
    Stock keeping unit.

    Contract:
        Identity is (sku, unit_id).  Prices are informational and take no
        part in any quantity invariant.  An inactive product keeps its history
        but rejects new movements and order lines.
    """

    __tablename__ = "products"

    __table_args__ = (
        Index("idx_product_sku_name", "sku", "name"),
    )

    sku: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("units.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Last purchase cost / typical cost
    purchase_price: Mapped[Decimal] = mapped_column(
        PRICE_TYPE, nullable=False, default=Decimal("0")
    )

    # Selling price
    retail_price: Mapped[Decimal] = mapped_column(
        PRICE_TYPE, nullable=False, default=Decimal("0")
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    unit: Mapped[Unit] = relationship(Unit, lazy="joined")

    def __repr__(self) -> str:
        return f"<Product {self.sku}>"

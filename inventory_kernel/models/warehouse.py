"""
Module: inventory_kernel.models.warehouse
Responsibility: ORM persistence for warehouses.  Each product's stock is
    tracked per warehouse.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Warehouse code uniqueness (UNIQUE constraint on code).
    - Inactive warehouses reject new movements (checked by LedgerService)
      but retain their full history.
"""

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase


class Warehouse(TrackedBase):
    """A stock location."""

    __tablename__ = "warehouses"

    code: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(150), nullable=False)

    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Informational only; not enforced against on-hand quantity
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Warehouse {self.code}>"

"""
Module: inventory_kernel.models.drift_report
Responsibility: ORM persistence for reconciliation failures -- every time the
    projection disagrees with ledger replay, one row is written.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only audit artifact: ORM listeners reject UPDATE and DELETE.
    - Both sides of the comparison are stored; nothing is corrected.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import QUANTITY_TYPE, Base, UTCDateTime, UUIDString


class DriftReport(Base):
    """One detected mismatch between ledger replay and the projection."""

    __tablename__ = "drift_reports"

    __table_args__ = (
        Index("idx_drift_product_warehouse", "product_id", "warehouse_id"),
        Index("idx_drift_detected_at", "detected_at"),
    )

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    warehouse_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    ledger_quantity: Mapped[Decimal] = mapped_column(QUANTITY_TYPE, nullable=False)

    projected_quantity: Mapped[Decimal] = mapped_column(QUANTITY_TYPE, nullable=False)

    expected_reserved: Mapped[Decimal] = mapped_column(QUANTITY_TYPE, nullable=False)

    projected_reserved: Mapped[Decimal] = mapped_column(QUANTITY_TYPE, nullable=False)

    movement_count: Mapped[int] = mapped_column(Integer, nullable=False)

    # List of DriftKind values
    drift_kinds: Mapped[list] = mapped_column(JSON, nullable=False)

    detected_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

"""
Module: inventory_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, type annotation map for consistent column
    types, and the TrackedBase mixin for audit timestamps.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys: Every model inherits a uuid4-generated primary key.
    - Quantity precision: every quantity column is FixedDecimal(14, 4), the
      precision of the stock tables.  Floats and excess decimal places are
      rejected at bind time; reads always come back as 4-place Decimals,
      on SQLite as well as PostgreSQL.
    - Audit timestamps: TrackedBase provides created_at, updated_at,
      created_by_id, and updated_by_id.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class FixedDecimal(TypeDecorator):
    """
    Exact fixed-scale decimal column.

    Guarantees:
        - process_bind_param: rejects floats and values with more integer
          digits or decimal places than the column holds; never rounds.
        - process_result_value: always returns a Decimal at the column
          scale, whichever way the driver hands the value back (SQLite
          returns floats).
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int, scale: int):
        super().__init__(precision=precision, scale=scale, asdecimal=True)
        self.scale = scale
        self.integer_digits = precision - scale
        self._quantum = Decimal(1).scaleb(-scale)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError(f"float {value!r} bound to a fixed decimal column")
        exact = Decimal(value)
        if exact and exact.adjusted() >= self.integer_digits:
            raise ValueError(f"{value} has more than {self.integer_digits} integer digits")
        if exact.quantize(self._quantum) != exact:
            raise ValueError(f"{value} has more than {self.scale} decimal places")
        return exact.quantize(self._quantum)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return Decimal(str(value)).quantize(self._quantum)
        except InvalidOperation:
            raise ValueError(f"Stored value {value!r} is not a decimal")


# Quantities: 14 digits, 4 decimal places
QUANTITY_TYPE = FixedDecimal(14, 4)

# Informational prices: 12 digits, 4 decimal places
PRICE_TYPE = FixedDecimal(12, 4)


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp column, normalised to UTC.

    Guarantees:
        - process_bind_param: rejects naive datetimes; aware values are
          converted to UTC before storage.
        - process_result_value: always returns an aware UTC datetime.
          SQLite keeps no offset, so its naive values are read as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime {value!r} bound to a UTC column")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Decimal maps to FixedDecimal(14, 4).
        - datetime maps to UTCDateTime (aware UTC on every backend).
        - int maps to BigInteger -- safe for monotonic sequences.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: QUANTITY_TYPE,
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamp and actor tracking.

    Contract:
        Every model that inherits TrackedBase records who created and last
        modified the row, and when.  These fields are audit metadata, so they
        may change even on otherwise-immutable records.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


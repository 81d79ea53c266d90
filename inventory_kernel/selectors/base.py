"""
Module: inventory_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.  Selectors
    form the "Q" side of the kernel, providing structured read access to
    inventory and order state without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/base.py,
    models/ and domain DTOs.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: Selectors MUST NOT call session.add(),
      session.delete(), session.commit(), or session.flush().
    - DTO return convention: Selectors return frozen dataclasses or Decimal
      totals, NOT raw ORM model instances.
    - Exact totals: quantity sums are folded in Python as Decimal.  SQLite's
      SUM() works in floating point.
"""

from abc import ABC
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import Select
from sqlalchemy.orm import Session

from inventory_kernel.domain.dtos import ZERO


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs or computed results.  The caller owns the session and
        its transaction scope.
    """

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def for_key(stmt: Select, model: Any, product_id: UUID, warehouse_id: UUID) -> Select:
        """Restrict ``stmt`` to one (product, warehouse) key of ``model``."""
        return (
            stmt.where(model.product_id == product_id)
            .where(model.warehouse_id == warehouse_id)
        )

    def sum_quantities(self, stmt: Select) -> Decimal:
        """Exact sum of a single-column quantity query; zero when empty."""
        total = ZERO
        for amount in self.session.execute(stmt).scalars():
            total += Decimal(amount)
        return total

"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  Concrete services receive a
    SQLAlchemy ``Session`` and use ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The
      FulfillmentCoordinator (or the test harness) owns commit/rollback,
      which is what makes a multi-line confirm all-or-nothing.

Failure modes:
    - If a subclass calls ``session.commit()``, a failure in a later step
      of the same operation can no longer roll back the earlier steps.
"""

from abc import ABC
from decimal import Decimal

from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` and an optional ``Clock`` from the
        caller and persists changes with ``session.flush()`` only.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only read models -- those belong in
          ``inventory_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    @staticmethod
    def key_context(product_id, warehouse_id, **fields: object) -> dict[str, object]:
        """
        Logging ``extra`` for one inventory key.

        Decimal quantities are rendered as strings so log lines show the
        stored scale; other values pass through unchanged.
        """
        context: dict[str, object] = {
            "product_id": str(product_id),
            "warehouse_id": str(warehouse_id),
        }
        for name, value in fields.items():
            context[name] = str(value) if isinstance(value, Decimal) else value
        return context

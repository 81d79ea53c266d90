"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock movement ledger is the source of truth for every quantity in the
system.  If a movement could be edited in place, replay would no longer
explain the projection and reconciliation would be meaningless.  Corrections
must be new compensating movements.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_flush]  --> _check_order_and_reference_changes()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
    [before_delete] --> _check_*_delete()       -->        ^
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                          | Why
------------------|-----------------------------------------|----------------------------
StockMovement     | ALWAYS                                  | Ledger is append-only
AppliedMovement   | ALWAYS                                  | Idempotency marker
DriftReport       | ALWAYS                                  | Audit artifact
Product           | sku/unit_id once referenced by movement | Movements carry its identity
Product/Warehouse | Delete once referenced by movement      | History must stay resolvable
Purchase/Sales    | Header and lines once status terminal   | Terminal states are final
Order (+ lines)   | Delete unless DRAFT                     | Movements reference lines

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY CHECK ORDERS IN before_flush?
   Closing an order updates its last line and its header in the same flush.
   Mapper-level events fire after the header UPDATE has already reached the
   connection, so the line check would see the new terminal status.  In
   before_flush the attribute history still holds the status the order had
   when the transaction loaded it.

2. WHY INLINE IMPORTS?
   Avoids circular imports. Models import from db, db imports from models.

===============================================================================
USAGE
===============================================================================

    from inventory_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY - never in production):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, func, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

PRODUCT_IDENTITY_FIELDS = frozenset({"sku", "unit_id"})

_TERMINAL_ORDER_STATES = frozenset({"RECEIVED", "FULFILLED", "CANCELLED"})


def _blocked(entity_type: str, entity_id: object, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


# =============================================================================
# Append-only tables
# =============================================================================


def _check_stock_movement_immutability(mapper, connection, target):
    raise _blocked(
        "StockMovement", target.id, "UPDATE",
        "Stock movements are immutable; record a compensating movement instead",
    )


def _check_stock_movement_delete(mapper, connection, target):
    raise _blocked(
        "StockMovement", target.id, "DELETE",
        "Stock movements cannot be deleted",
    )


def _check_applied_movement_immutability(mapper, connection, target):
    raise _blocked(
        "AppliedMovement", target.id, "UPDATE",
        "Applied movement markers are immutable",
    )


def _check_applied_movement_delete(mapper, connection, target):
    raise _blocked(
        "AppliedMovement", target.id, "DELETE",
        "Applied movement markers cannot be deleted",
    )


def _check_drift_report_immutability(mapper, connection, target):
    raise _blocked(
        "DriftReport", target.id, "UPDATE",
        "Drift reports are immutable audit artifacts",
    )


def _check_drift_report_delete(mapper, connection, target):
    raise _blocked(
        "DriftReport", target.id, "DELETE",
        "Drift reports cannot be deleted",
    )


# =============================================================================
# Reference data
# =============================================================================


def _product_has_movements(connection, product_id) -> bool:
    from inventory_kernel.models.movement import StockMovement

    count = connection.execute(
        select(func.count())
        .select_from(StockMovement)
        .where(StockMovement.product_id == product_id)
    ).scalar_one()
    return count > 0


def _warehouse_has_movements(connection, warehouse_id) -> bool:
    from inventory_kernel.models.movement import StockMovement

    count = connection.execute(
        select(func.count())
        .select_from(StockMovement)
        .where(
            or_(
                StockMovement.from_warehouse_id == warehouse_id,
                StockMovement.to_warehouse_id == warehouse_id,
            )
        )
    ).scalar_one()
    return count > 0


def _check_product_identity_immutability(mapper, connection, target):
    """
    Block sku/unit_id changes on a product any movement references.

    Descriptive fields (name, description, prices, is_active) stay editable.
    """
    changed = [
        name for name in PRODUCT_IDENTITY_FIELDS
        if get_history(target, name).has_changes()
    ]
    if not changed:
        return
    if _product_has_movements(connection, target.id):
        raise _blocked(
            "Product", target.id, "UPDATE",
            f"Identity fields {sorted(changed)} cannot change once the product "
            "is referenced by stock movements",
        )


def _check_product_delete(mapper, connection, target):
    if _product_has_movements(connection, target.id):
        raise _blocked(
            "Product", target.id, "DELETE",
            "Products referenced by stock movements cannot be deleted",
        )


def _check_warehouse_delete(mapper, connection, target):
    if _warehouse_has_movements(connection, target.id):
        raise _blocked(
            "Warehouse", target.id, "DELETE",
            "Warehouses with movement history cannot be deleted; deactivate instead",
        )


# =============================================================================
# Orders
# =============================================================================


def _status_at_load(order) -> str | None:
    """Status the order had before any change pending in this flush."""
    history = get_history(order, "status")
    if history.deleted:
        return str(history.deleted[0])
    if history.unchanged:
        return str(history.unchanged[0])
    return None


def _check_order_changes_before_flush(session, flush_context, instances):
    """
    Reject changes to terminal orders and their lines, and deletion of
    orders that have left DRAFT.
    """
    from inventory_kernel.models.order import (
        PurchaseOrder,
        PurchaseOrderLine,
        SalesOrder,
        SalesOrderLine,
    )

    headers = (PurchaseOrder, SalesOrder)
    lines = (PurchaseOrderLine, SalesOrderLine)

    with session.no_autoflush:
        for obj in list(session.dirty):
            if isinstance(obj, headers):
                if not session.is_modified(obj, include_collections=False):
                    continue
                order = obj
            elif isinstance(obj, lines):
                if not session.is_modified(obj, include_collections=False):
                    continue
                order = obj.order
            else:
                continue
            if order is None:
                continue
            previous = _status_at_load(order)
            if previous in _TERMINAL_ORDER_STATES:
                raise _blocked(
                    type(obj).__name__, obj.id, "UPDATE",
                    f"Order is in terminal status {previous}",
                )

        for obj in list(session.deleted):
            if isinstance(obj, headers):
                order = obj
            elif isinstance(obj, lines):
                order = obj.order
            else:
                continue
            if order is None:
                continue
            previous = _status_at_load(order)
            if previous is not None and previous != "DRAFT":
                raise _blocked(
                    type(obj).__name__, obj.id, "DELETE",
                    f"Only DRAFT orders can be deleted (status {previous})",
                )


# =============================================================================
# Registration
# =============================================================================


def _listeners():
    from inventory_kernel.models.drift_report import DriftReport
    from inventory_kernel.models.inventory import AppliedMovement
    from inventory_kernel.models.movement import StockMovement
    from inventory_kernel.models.product import Product
    from inventory_kernel.models.warehouse import Warehouse

    return [
        (Session, "before_flush", _check_order_changes_before_flush),
        (StockMovement, "before_update", _check_stock_movement_immutability),
        (StockMovement, "before_delete", _check_stock_movement_delete),
        (AppliedMovement, "before_update", _check_applied_movement_immutability),
        (AppliedMovement, "before_delete", _check_applied_movement_delete),
        (DriftReport, "before_update", _check_drift_report_immutability),
        (DriftReport, "before_delete", _check_drift_report_delete),
        (Product, "before_update", _check_product_identity_immutability),
        (Product, "before_delete", _check_product_delete),
        (Warehouse, "before_delete", _check_warehouse_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Safe to call more than once.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)

"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (order management, UI collaborators) must decide what to
do with a failure: retry with corrected input, offer a backorder, or page an
engineer.  They must never parse message strings to make that decision.

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        coordinator.confirm_sales_order(so_id)
    except InsufficientStockError as e:
        offer_backorder(e.product_id, e.requested, e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- InvalidMovementError
    |   +-- UnitNotFoundError
    |   +-- ProductNotFoundError
    |   +-- ProductInactiveError
    |   +-- WarehouseNotFoundError
    |   +-- WarehouseInactiveError
    |   +-- OrderNotFoundError
    |   +-- OrderLineNotFoundError
    |   +-- DuplicateOrderNumberError
    |   +-- DuplicateReferenceError
    |   +-- EmptyOrderError
    |   +-- InvalidOrderTransitionError
    |   +-- OverFulfillmentError
    |
    +-- InsufficientStockError
    |
    +-- InvariantViolation
    |
    +-- DriftError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConcurrencyError
        +-- LockTimeoutError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                       | When Raised
--------------|----------------------------|-------------------------------------
Validation    | INVALID_QUANTITY           | Quantity is zero, negative or NaN
              | INVALID_MOVEMENT           | Warehouse endpoints don't fit type
              | UNIT_NOT_FOUND             | Unit id doesn't exist
              | PRODUCT_NOT_FOUND          | Product id doesn't exist
              | PRODUCT_INACTIVE           | Product is deactivated
              | WAREHOUSE_NOT_FOUND        | Warehouse id doesn't exist
              | WAREHOUSE_INACTIVE         | Warehouse is deactivated
              | ORDER_NOT_FOUND            | Order id doesn't exist
              | ORDER_LINE_NOT_FOUND       | Order line id doesn't exist
              | DUPLICATE_ORDER_NUMBER     | PO/SO number already used
              | DUPLICATE_REFERENCE        | SKU, unit or warehouse code taken
              | EMPTY_ORDER                | Place/confirm an order with no lines
              | INVALID_ORDER_TRANSITION   | Operation illegal in order status
              | OVER_FULFILLMENT           | Receive/ship exceeds remaining
--------------|----------------------------|-------------------------------------
Stock         | INSUFFICIENT_STOCK         | Reserve/ship/issue exceeds available
--------------|----------------------------|-------------------------------------
Bookkeeping   | INVARIANT_VIOLATION        | Internal inconsistency (bug signal)
              | DRIFT_DETECTED             | Projection disagrees with ledger
--------------|----------------------------|-------------------------------------
Immutability  | IMMUTABILITY_VIOLATION     | Modifying an immutable record
--------------|----------------------------|-------------------------------------
Concurrency   | LOCK_TIMEOUT               | Per-key lock not acquired in time

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ValidationError is rejected before any mutation; fix input and retry.
2. InsufficientStockError is a business outcome; the kernel never splits a
   line or waits for stock -- the caller decides.
3. InvariantViolation and DriftError are bug signals.  They are logged with
   full context and never patched over.
"""

from decimal import Decimal


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"


# Validation exceptions


class ValidationError(InventoryKernelError):
    """Malformed or inactive reference, or non-positive quantity.

    Raised before any mutation; the caller may retry with corrected input.
    """

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Quantity must be a finite, strictly positive decimal."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: object, reason: str = "must be positive"):
        self.quantity = str(quantity)
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity}: {reason}")


class InvalidMovementError(ValidationError):
    """Movement shape does not match its movement type."""

    code: str = "INVALID_MOVEMENT"

    def __init__(self, movement_type: str, reason: str):
        self.movement_type = movement_type
        self.reason = reason
        super().__init__(f"Invalid {movement_type} movement: {reason}")


class UnitNotFoundError(ValidationError):
    """Unit of measure with given ID was not found."""

    code: str = "UNIT_NOT_FOUND"

    def __init__(self, unit_id: str):
        self.unit_id = unit_id
        super().__init__(f"Unit not found: {unit_id}")


class ProductNotFoundError(ValidationError):
    """Product with given ID was not found."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class ProductInactiveError(ValidationError):
    """Product is deactivated and cannot take new movements or lines."""

    code: str = "PRODUCT_INACTIVE"

    def __init__(self, product_id: str, sku: str | None = None):
        self.product_id = product_id
        self.sku = sku
        super().__init__(f"Product {sku or product_id} is inactive")


class WarehouseNotFoundError(ValidationError):
    """Warehouse with given ID was not found."""

    code: str = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_id: str):
        self.warehouse_id = warehouse_id
        super().__init__(f"Warehouse not found: {warehouse_id}")


class WarehouseInactiveError(ValidationError):
    """Warehouse is deactivated; history is retained but movements rejected."""

    code: str = "WAREHOUSE_INACTIVE"

    def __init__(self, warehouse_id: str, warehouse_code: str | None = None):
        self.warehouse_id = warehouse_id
        self.warehouse_code = warehouse_code
        super().__init__(
            f"Warehouse {warehouse_code or warehouse_id} is inactive"
        )


class OrderNotFoundError(ValidationError):
    """Purchase or sales order with given ID was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_kind: str, order_id: str):
        self.order_kind = order_kind
        self.order_id = order_id
        super().__init__(f"{order_kind} order not found: {order_id}")


class OrderLineNotFoundError(ValidationError):
    """Order line with given ID was not found."""

    code: str = "ORDER_LINE_NOT_FOUND"

    def __init__(self, order_kind: str, line_id: str):
        self.order_kind = order_kind
        self.line_id = line_id
        super().__init__(f"{order_kind} order line not found: {line_id}")


class DuplicateOrderNumberError(ValidationError):
    """PO/SO number is already in use."""

    code: str = "DUPLICATE_ORDER_NUMBER"

    def __init__(self, order_kind: str, order_number: str):
        self.order_kind = order_kind
        self.order_number = order_number
        super().__init__(
            f"{order_kind} order number already exists: {order_number}"
        )


class DuplicateReferenceError(ValidationError):
    """Reference data natural key (unit code, SKU, warehouse code) is taken."""

    code: str = "DUPLICATE_REFERENCE"

    def __init__(self, entity_type: str, key: str):
        self.entity_type = entity_type
        self.key = key
        super().__init__(f"{entity_type} already exists: {key}")


class EmptyOrderError(ValidationError):
    """Order cannot be placed or confirmed without lines."""

    code: str = "EMPTY_ORDER"

    def __init__(self, order_kind: str, order_id: str):
        self.order_kind = order_kind
        self.order_id = order_id
        super().__init__(f"{order_kind} order {order_id} has no lines")


class InvalidOrderTransitionError(ValidationError):
    """Operation is not legal in the order's current status.

    Terminal states (RECEIVED, FULFILLED, CANCELLED) reject every operation.
    """

    code: str = "INVALID_ORDER_TRANSITION"

    def __init__(
        self,
        order_kind: str,
        order_id: str,
        current_status: str,
        action: str,
    ):
        self.order_kind = order_kind
        self.order_id = order_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} {order_kind} order {order_id} "
            f"in status {current_status}"
        )


class OverFulfillmentError(ValidationError):
    """Receive/ship quantity exceeds the line's remaining ordered quantity."""

    code: str = "OVER_FULFILLMENT"

    def __init__(
        self,
        line_id: str,
        requested: Decimal,
        remaining: Decimal,
    ):
        self.line_id = line_id
        self.requested = str(requested)
        self.remaining = str(remaining)
        super().__init__(
            f"Line {line_id}: requested {requested} exceeds "
            f"remaining {remaining}"
        )


# Stock exceptions


class InsufficientStockError(InventoryKernelError):
    """
    Reservation, shipment or issue exceeds what is available.

    The kernel never auto-splits or queues; the caller decides whether to
    backorder, ship partially, or abort.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        warehouse_id: str,
        requested: Decimal,
        available: Decimal,
    ):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.requested = str(requested)
        self.available = str(available)
        super().__init__(
            f"Insufficient stock for product {product_id} in warehouse "
            f"{warehouse_id}: requested {requested}, available {available}"
        )


# Bookkeeping exceptions


class InvariantViolation(InventoryKernelError):
    """
    Internal bookkeeping inconsistency.

    Treated as a fatal bug signal: logged with full context, the operation is
    aborted, and nothing is silently corrected.
    """

    code: str = "INVARIANT_VIOLATION"

    def __init__(self, invariant: str, message: str, **context: object):
        self.invariant = invariant
        self.context = {k: str(v) for k, v in context.items()}
        super().__init__(f"Invariant {invariant} violated: {message}")


class DriftError(InventoryKernelError):
    """
    Projection disagrees with ledger replay.

    Reported, never auto-healed: silent correction could mask a deeper bug.
    """

    code: str = "DRIFT_DETECTED"

    def __init__(
        self,
        product_id: str,
        warehouse_id: str,
        expected_quantity: Decimal,
        actual_quantity: Decimal,
        expected_reserved: Decimal | None = None,
        actual_reserved: Decimal | None = None,
    ):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.expected_quantity = str(expected_quantity)
        self.actual_quantity = str(actual_quantity)
        self.expected_reserved = (
            str(expected_reserved) if expected_reserved is not None else None
        )
        self.actual_reserved = (
            str(actual_reserved) if actual_reserved is not None else None
        )
        super().__init__(
            f"Drift for product {product_id} in warehouse {warehouse_id}: "
            f"ledger={expected_quantity} projection={actual_quantity}, "
            f"expected_reserved={expected_reserved} "
            f"reserved={actual_reserved}"
        )


# Immutability exceptions


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    StockMovement, AppliedMovement and DriftReport rows are always immutable;
    orders in a terminal status are immutable.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Concurrency exceptions


class ConcurrencyError(InventoryKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class LockTimeoutError(ConcurrencyError):
    """A per-(product, warehouse) lock was not acquired within the timeout."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, key: str, timeout_seconds: float):
        self.key = key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for lock on {key}"
        )

"""
Movements -- pure rules for stock movement types and their signed effect.

Responsibility:
    Defines the movement type vocabulary and the single rule that turns an
    unsigned movement quantity into a signed delta against one
    (product, warehouse) inventory record.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Movement quantity is always strictly positive; direction comes from
      which warehouse endpoint is set, never from the sign of the quantity.
    - Every movement touches exactly one inventory record: exactly one of
      from_warehouse_id / to_warehouse_id is set.
    - Inbound types (receipt, return, transfer-in) set only the destination;
      outbound types (shipment, transfer-out) set only the source; an
      adjustment sets either one.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal, InvalidOperation
from enum import Enum
from uuid import UUID

from inventory_kernel.exceptions import InvalidMovementError, InvalidQuantityError


class MovementType(str, Enum):
    """Kinds of stock movement recorded in the ledger."""

    PURCHASE_RECEIPT = "PURCHASE_RECEIPT"
    SALES_SHIPMENT = "SALES_SHIPMENT"
    ADJUSTMENT = "ADJUSTMENT"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    RETURN = "RETURN"


class ReferenceType(str, Enum):
    """What originated a movement."""

    PURCHASE_ORDER = "PO"
    SALES_ORDER = "SO"
    ADJUSTMENT = "ADJ"
    TRANSFER = "TRANSFER"
    RETURN = "RETURN"


# Scale of the quantity columns
QUANTITY_PLACES = 4

# Digits left of the point in a NUMERIC(14, 4) quantity column
QUANTITY_INTEGER_DIGITS = 14 - QUANTITY_PLACES

INBOUND_TYPES = frozenset({
    MovementType.PURCHASE_RECEIPT,
    MovementType.RETURN,
    MovementType.TRANSFER_IN,
})

OUTBOUND_TYPES = frozenset({
    MovementType.SALES_SHIPMENT,
    MovementType.TRANSFER_OUT,
})


def _parse_quantity(value: object) -> Decimal:
    """Decimal for ``value`` that fits a quantity column; sign unchecked."""
    if isinstance(value, (bool, float)):
        raise InvalidQuantityError(value, "must be an int, str or Decimal")
    try:
        quantity = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidQuantityError(value, "not a number")
    if not quantity.is_finite():
        raise InvalidQuantityError(value, "must be finite")
    if quantity.as_tuple().exponent < -QUANTITY_PLACES:
        raise InvalidQuantityError(
            value, f"at most {QUANTITY_PLACES} decimal places"
        )
    if quantity and quantity.adjusted() >= QUANTITY_INTEGER_DIGITS:
        raise InvalidQuantityError(
            value, f"at most {QUANTITY_INTEGER_DIGITS} integer digits"
        )
    return quantity


def to_quantity(value: object) -> Decimal:
    """Coerce a caller-supplied quantity to Decimal and require it be positive.

    Floats are rejected: they cannot represent stock quantities exactly.

    Raises:
        InvalidQuantityError: value is not a finite number > 0 that fits
            the quantity columns.
    """
    quantity = _parse_quantity(value)
    if quantity <= 0:
        raise InvalidQuantityError(value)
    return quantity


def to_non_negative_quantity(value: object) -> Decimal:
    """Like ``to_quantity`` but zero is allowed (reorder levels)."""
    quantity = _parse_quantity(value)
    if quantity < 0:
        raise InvalidQuantityError(value, "must not be negative")
    return quantity


def to_signed_quantity(value: object) -> Decimal:
    """Non-zero signed quantity; the sign carries the direction (adjustments)."""
    quantity = _parse_quantity(value)
    if quantity == 0:
        raise InvalidQuantityError(value, "must be non-zero")
    return quantity


def validate_endpoints(
    movement_type: MovementType,
    from_warehouse_id: UUID | None,
    to_warehouse_id: UUID | None,
) -> None:
    """Check that the warehouse endpoints fit the movement type.

    Raises:
        InvalidMovementError: endpoints are missing, doubled, or on the
            wrong side for the type.
    """
    movement_type = MovementType(movement_type)
    if from_warehouse_id is not None and to_warehouse_id is not None:
        raise InvalidMovementError(
            movement_type.value,
            "exactly one warehouse endpoint may be set; "
            "transfers are recorded as a TRANSFER_OUT/TRANSFER_IN pair",
        )
    if from_warehouse_id is None and to_warehouse_id is None:
        raise InvalidMovementError(movement_type.value, "no warehouse endpoint set")
    if movement_type in INBOUND_TYPES and to_warehouse_id is None:
        raise InvalidMovementError(
            movement_type.value, "inbound movement requires to_warehouse_id"
        )
    if movement_type in OUTBOUND_TYPES and from_warehouse_id is None:
        raise InvalidMovementError(
            movement_type.value, "outbound movement requires from_warehouse_id"
        )


def affected_warehouse(
    from_warehouse_id: UUID | None,
    to_warehouse_id: UUID | None,
) -> UUID:
    """Return the single warehouse whose record a movement changes."""
    return to_warehouse_id if to_warehouse_id is not None else from_warehouse_id


def signed_delta(
    quantity: Decimal,
    from_warehouse_id: UUID | None,
    to_warehouse_id: UUID | None,
) -> Decimal:
    """Signed change a movement applies to its inventory record.

    Destination set: +quantity.  Source set: -quantity.
    """
    if to_warehouse_id is not None:
        return quantity
    return -quantity


def replay_quantity(deltas: Iterable[Decimal]) -> Decimal:
    """Fold signed deltas into an on-hand quantity, starting from zero."""
    total = Decimal("0")
    for delta in deltas:
        total += delta
    return total

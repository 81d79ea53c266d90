"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the kernel boundary:
    MovementDraft (ledger input), MovementRecord (ledger output),
    InventorySnapshot (read path), OrderView/OrderLineView (order read path)
    and ReconciliationResult (diagnostic path).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters invoked only from the
    service and selector layers.

Invariants enforced:
    - Services accept and return DTOs, never ORM entities.
    - InventorySnapshot.available is always quantity - reserved.

Data flow:
    MovementDraft -> (LedgerService) -> MovementRecord -> (InventoryProjection)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from inventory_kernel.domain.movements import (
    MovementType,
    ReferenceType,
    affected_warehouse,
    signed_delta,
)

if TYPE_CHECKING:
    from inventory_kernel.models.movement import StockMovement
    from inventory_kernel.models.order import (
        PurchaseOrder,
        PurchaseOrderLine,
        SalesOrder,
        SalesOrderLine,
    )

ZERO = Decimal("0")


@dataclass(frozen=True)
class MovementDraft:
    """A stock movement not yet appended to the ledger."""

    movement_type: MovementType
    product_id: UUID
    quantity: Decimal
    from_warehouse_id: UUID | None = None
    to_warehouse_id: UUID | None = None
    reference_type: ReferenceType | None = None
    reference_id: UUID | None = None
    order_line_id: UUID | None = None
    performed_by_id: UUID | None = None
    notes: str | None = None

    @property
    def warehouse_id(self) -> UUID:
        return affected_warehouse(self.from_warehouse_id, self.to_warehouse_id)


@dataclass(frozen=True)
class MovementRecord:
    """An appended, immutable stock movement."""

    id: UUID
    seq: int
    movement_type: MovementType
    product_id: UUID
    quantity: Decimal
    from_warehouse_id: UUID | None
    to_warehouse_id: UUID | None
    unit_id: UUID
    reference_type: str | None
    reference_id: UUID | None
    order_line_id: UUID | None
    performed_by_id: UUID | None
    notes: str | None
    created_at: datetime

    @property
    def warehouse_id(self) -> UUID:
        return affected_warehouse(self.from_warehouse_id, self.to_warehouse_id)

    @property
    def delta(self) -> Decimal:
        """Signed effect on the record at ``warehouse_id``."""
        return signed_delta(self.quantity, self.from_warehouse_id, self.to_warehouse_id)

    @classmethod
    def from_model(cls, model: StockMovement) -> MovementRecord:
        return cls(
            id=model.id,
            seq=model.seq,
            movement_type=MovementType(model.movement_type),
            product_id=model.product_id,
            quantity=Decimal(model.quantity),
            from_warehouse_id=model.from_warehouse_id,
            to_warehouse_id=model.to_warehouse_id,
            unit_id=model.unit_id,
            reference_type=model.reference_type,
            reference_id=model.reference_id,
            order_line_id=model.order_line_id,
            performed_by_id=model.performed_by_id,
            notes=model.notes,
            created_at=model.created_at,
        )


@dataclass(frozen=True)
class InventorySnapshot:
    """Quantity state of one (product, warehouse) record."""

    product_id: UUID
    warehouse_id: UUID
    quantity: Decimal = ZERO
    reserved: Decimal = ZERO
    reorder_level: Decimal = ZERO

    @property
    def available(self) -> Decimal:
        return self.quantity - self.reserved

    def as_dict(self) -> dict[str, Decimal]:
        return {
            "quantity": self.quantity,
            "reserved": self.reserved,
            "available": self.available,
        }


@dataclass(frozen=True)
class OrderLineView:
    """Read-side view of a purchase or sales order line.

    ``fulfilled`` is quantity received (purchase) or shipped (sales).
    ``reserved`` is always zero for purchase lines.
    """

    id: UUID
    line_no: int
    product_id: UUID
    warehouse_id: UUID
    ordered: Decimal
    fulfilled: Decimal
    reserved: Decimal = ZERO
    unit_price: Decimal | None = None

    @property
    def remaining(self) -> Decimal:
        return self.ordered - self.fulfilled

    @classmethod
    def from_purchase_line(cls, line: PurchaseOrderLine) -> OrderLineView:
        return cls(
            id=line.id,
            line_no=line.line_no,
            product_id=line.product_id,
            warehouse_id=line.warehouse_id,
            ordered=Decimal(line.quantity_ordered),
            fulfilled=Decimal(line.quantity_received),
            unit_price=line.unit_price,
        )

    @classmethod
    def from_sales_line(cls, line: SalesOrderLine) -> OrderLineView:
        return cls(
            id=line.id,
            line_no=line.line_no,
            product_id=line.product_id,
            warehouse_id=line.warehouse_id,
            ordered=Decimal(line.quantity_ordered),
            fulfilled=Decimal(line.quantity_shipped),
            reserved=Decimal(line.quantity_reserved),
            unit_price=line.unit_price,
        )


class OrderKind(str, Enum):
    PURCHASE = "purchase"
    SALES = "sales"


@dataclass(frozen=True)
class OrderView:
    """Read-side view of an order header and its lines."""

    id: UUID
    kind: OrderKind
    number: str
    status: str
    counterparty_id: UUID | None
    order_date: date
    lines: tuple[OrderLineView, ...] = ()
    completed_on: date | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.lines) and all(line.remaining == 0 for line in self.lines)

    @classmethod
    def from_purchase_order(cls, order: PurchaseOrder) -> OrderView:
        return cls(
            id=order.id,
            kind=OrderKind.PURCHASE,
            number=order.po_number,
            status=order.status,
            counterparty_id=order.supplier_id,
            order_date=order.order_date,
            lines=tuple(OrderLineView.from_purchase_line(l) for l in order.lines),
            completed_on=order.received_date,
        )

    @classmethod
    def from_sales_order(cls, order: SalesOrder) -> OrderView:
        return cls(
            id=order.id,
            kind=OrderKind.SALES,
            number=order.so_number,
            status=order.status,
            counterparty_id=order.customer_id,
            order_date=order.order_date,
            lines=tuple(OrderLineView.from_sales_line(l) for l in order.lines),
            completed_on=order.shipment_date,
        )


class DriftKind(str, Enum):
    """What a reconciliation found wrong."""

    QUANTITY_MISMATCH = "quantity_mismatch"
    RESERVED_MISMATCH = "reserved_mismatch"
    RESERVED_EXCEEDS_QUANTITY = "reserved_exceeds_quantity"
    NEGATIVE_BALANCE = "negative_balance"


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of comparing one record against ledger replay."""

    product_id: UUID
    warehouse_id: UUID
    ledger_quantity: Decimal
    projected_quantity: Decimal
    expected_reserved: Decimal
    projected_reserved: Decimal
    movement_count: int
    drift: tuple[DriftKind, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.drift


@dataclass(frozen=True)
class UnitInfo:
    """Immutable DTO for a unit of measure."""

    id: UUID
    code: str
    name: str
    description: str | None = None


@dataclass(frozen=True)
class ProductInfo:
    """Immutable DTO for product reference data."""

    id: UUID
    sku: str
    name: str
    unit_id: UUID
    unit_code: str
    purchase_price: Decimal
    retail_price: Decimal
    is_active: bool
    description: str | None = None


@dataclass(frozen=True)
class WarehouseInfo:
    """Immutable DTO for warehouse reference data."""

    id: UUID
    code: str
    name: str
    is_active: bool
    address: str | None = None
    capacity: int | None = None

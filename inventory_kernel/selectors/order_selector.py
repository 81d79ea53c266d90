"""
Module: inventory_kernel.selectors.order_selector
Responsibility: Read-only queries over purchase and sales orders, returning
    OrderView/OrderLineView DTOs, and the outstanding-reservation total that
    the consistency checker compares against the projection.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Only CONFIRMED sales orders own outstanding reservations; DRAFT orders
      have not reserved yet and terminal orders have released everything.

Failure modes:
    - OrderNotFoundError / OrderLineNotFoundError for unknown ids.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.dtos import OrderKind, OrderLineView, OrderView
from inventory_kernel.domain.workflow import SalesOrderStatus
from inventory_kernel.exceptions import OrderLineNotFoundError, OrderNotFoundError
from inventory_kernel.models.order import (
    PurchaseOrder,
    PurchaseOrderLine,
    SalesOrder,
    SalesOrderLine,
)
from inventory_kernel.selectors.base import BaseSelector


class OrderSelector(BaseSelector):
    """Selector for order headers and lines."""

    def __init__(self, session: Session):
        super().__init__(session)

    def purchase_order(self, po_id: UUID) -> OrderView:
        order = self.session.get(PurchaseOrder, po_id)
        if order is None:
            raise OrderNotFoundError(OrderKind.PURCHASE.value, str(po_id))
        return OrderView.from_purchase_order(order)

    def sales_order(self, so_id: UUID) -> OrderView:
        order = self.session.get(SalesOrder, so_id)
        if order is None:
            raise OrderNotFoundError(OrderKind.SALES.value, str(so_id))
        return OrderView.from_sales_order(order)

    def purchase_line(self, line_id: UUID) -> OrderLineView:
        line = self.session.get(PurchaseOrderLine, line_id)
        if line is None:
            raise OrderLineNotFoundError(OrderKind.PURCHASE.value, str(line_id))
        return OrderLineView.from_purchase_line(line)

    def sales_line(self, line_id: UUID) -> OrderLineView:
        line = self.session.get(SalesOrderLine, line_id)
        if line is None:
            raise OrderLineNotFoundError(OrderKind.SALES.value, str(line_id))
        return OrderLineView.from_sales_line(line)

    def outstanding_reserved(self, product_id: UUID, warehouse_id: UUID) -> Decimal:
        """Sum of line reservations held by CONFIRMED sales orders on one key."""
        stmt = (
            select(SalesOrderLine.quantity_reserved)
            .join(SalesOrder, SalesOrderLine.so_id == SalesOrder.id)
            .where(SalesOrder.status == SalesOrderStatus.CONFIRMED.value)
        )
        return self.sum_quantities(
            self.for_key(stmt, SalesOrderLine, product_id, warehouse_id)
        )

    def stray_reservations(self, product_id: UUID, warehouse_id: UUID) -> Decimal:
        """Line reservations left on sales orders that are not CONFIRMED."""
        stmt = (
            select(SalesOrderLine.quantity_reserved)
            .join(SalesOrder, SalesOrderLine.so_id == SalesOrder.id)
            .where(SalesOrder.status != SalesOrderStatus.CONFIRMED.value)
            .where(SalesOrderLine.quantity_reserved > 0)
        )
        return self.sum_quantities(
            self.for_key(stmt, SalesOrderLine, product_id, warehouse_id)
        )

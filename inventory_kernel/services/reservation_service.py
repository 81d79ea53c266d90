"""
ReservationManager -- holds and releases reserved quantity.

Responsibility:
    Moves the ``reserved`` field of an inventory record: up when a sales
    order line is confirmed, down when the hold is released (cancel) or
    consumed (shipment).  Reservations never produce ledger movements.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by FulfillmentCoordinator inside its transaction.

Invariants enforced:
    - No overselling: reserve succeeds only when quantity - reserved covers
      the request in full.  There are no partial reservations.
    - reserved never goes negative.  Releasing more than is held is a
      bookkeeping bug; it raises InvariantViolation and is never clamped.

Failure modes:
    - InvalidQuantityError: quantity is not a finite decimal > 0.
    - InsufficientStockError: available stock does not cover a reserve.
    - InvariantViolation: release/consume exceeds the held reservation.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import InventorySnapshot
from inventory_kernel.domain.movements import to_quantity
from inventory_kernel.exceptions import InsufficientStockError, InvariantViolation
from inventory_kernel.logging_config import get_logger
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.projection_service import InventoryProjection

logger = get_logger("services.reservation")


class ReservationManager(BaseService):
    """Service that reserves, releases and consumes stock holds."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        projection: InventoryProjection | None = None,
    ):
        super().__init__(session, clock)
        self._projection = projection or InventoryProjection(session, self.clock)

    def reserve(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: Decimal | int | str,
    ) -> InventorySnapshot:
        """
        Hold ``quantity`` of available stock.

        Postconditions:
            - On success reserved grows by exactly ``quantity``.
            - On failure the record is unchanged.

        Raises:
            InvalidQuantityError: quantity <= 0.
            InsufficientStockError: quantity - reserved < requested.
        """
        requested = to_quantity(quantity)
        record = self._projection.lock_record(product_id, warehouse_id)
        available = record.quantity - record.reserved

        if requested > available:
            logger.warning(
                "reservation_rejected",
                extra=self.key_context(
                    product_id, warehouse_id, requested=requested, available=available
                ),
            )
            raise InsufficientStockError(
                product_id=str(product_id),
                warehouse_id=str(warehouse_id),
                requested=requested,
                available=available,
            )

        record.reserved = record.reserved + requested
        record.last_updated = self.clock.now()
        self.session.flush()

        logger.info(
            "stock_reserved",
            extra=self.key_context(
                product_id, warehouse_id, quantity=requested, reserved=record.reserved
            ),
        )
        return self._projection.get(product_id, warehouse_id)

    def release(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: Decimal | int | str,
    ) -> InventorySnapshot:
        """
        Drop a hold without moving stock (order cancelled or line reduced).

        Raises:
            InvalidQuantityError: quantity <= 0.
            InvariantViolation: more than is reserved would be released.
        """
        return self._decrease(product_id, warehouse_id, quantity, "stock_released")

    def consume(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: Decimal | int | str,
    ) -> InventorySnapshot:
        """
        Drop the hold for stock that is leaving in a shipment.

        Same rules as ``release``.  The caller appends and applies the
        SALES_SHIPMENT movement in the same transaction.
        """
        return self._decrease(product_id, warehouse_id, quantity, "reservation_consumed")

    def _decrease(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: Decimal | int | str,
        event_name: str,
    ) -> InventorySnapshot:
        amount = to_quantity(quantity)
        record = self._projection.lock_record(product_id, warehouse_id)

        if amount > record.reserved:
            context = self.key_context(
                product_id,
                warehouse_id,
                requested=amount,
                reserved=record.reserved,
                quantity=record.quantity,
            )
            logger.error("reservation_underflow", extra=context)
            raise InvariantViolation(
                "reserved_non_negative",
                f"cannot release {amount}, only {record.reserved} reserved",
                **context,
            )

        record.reserved = record.reserved - amount
        record.last_updated = self.clock.now()
        self.session.flush()

        logger.info(
            event_name,
            extra=self.key_context(
                product_id, warehouse_id, quantity=amount, reserved=record.reserved
            ),
        )
        return self._projection.get(product_id, warehouse_id)

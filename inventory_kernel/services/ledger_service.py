"""
Ledger service - append-only persistence for stock movements.

The Ledger is responsible for:
- Validating a movement draft at the boundary (quantity, endpoints,
  product and warehouse existence and active flag)
- Copying the product's unit onto the movement
- Assigning the monotonic ``seq`` transactionally
- Replaying the movements that affect one (product, warehouse)

The Ledger does NOT:
- Update inventory records (that's the InventoryProjection)
- Hold or release reservations (that's the ReservationManager)
- Update or delete movements (there is no API for it; the ORM listeners
  reject it)
"""

from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import MovementDraft, MovementRecord
from inventory_kernel.domain.movements import (
    MovementType,
    to_quantity,
    validate_endpoints,
)
from inventory_kernel.domain.workflow import state_value
from inventory_kernel.exceptions import InvalidMovementError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.movement import StockMovement
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.reference_data_service import ReferenceDataService
from inventory_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger")


class LedgerService(BaseService):
    """
    Persistence layer for stock movements.

    All operations happen within the caller's transaction boundary.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._sequence_service = SequenceService(session)
        self._reference_data = ReferenceDataService(session, self.clock)

    def append(self, draft: MovementDraft) -> UUID:
        """
        Append a movement to the ledger.

        Preconditions:
            - Caller holds the (product, warehouse) lock for the affected key.

        Postconditions:
            - Exactly one StockMovement row is flushed with the next ``seq``.
            - The projection is NOT updated; the caller applies the movement.

        Returns:
            The new movement id.

        Raises:
            InvalidQuantityError: quantity is not a finite decimal > 0.
            InvalidMovementError: endpoints do not fit the movement type.
            ProductNotFoundError / ProductInactiveError
            WarehouseNotFoundError / WarehouseInactiveError
        """
        try:
            movement_type = MovementType(draft.movement_type)
        except ValueError:
            raise InvalidMovementError(str(draft.movement_type), "unknown movement type")

        quantity = to_quantity(draft.quantity)
        validate_endpoints(movement_type, draft.from_warehouse_id, draft.to_warehouse_id)

        product = self._reference_data.require_active_product(draft.product_id)
        self._reference_data.require_active_warehouse(draft.warehouse_id)

        seq = self._sequence_service.next_movement_seq()

        movement = StockMovement(
            seq=seq,
            movement_type=movement_type.value,
            product_id=draft.product_id,
            from_warehouse_id=draft.from_warehouse_id,
            to_warehouse_id=draft.to_warehouse_id,
            quantity=quantity,
            unit_id=product.unit_id,
            reference_type=(
                state_value(draft.reference_type)
                if draft.reference_type is not None else None
            ),
            reference_id=draft.reference_id,
            order_line_id=draft.order_line_id,
            performed_by_id=draft.performed_by_id,
            notes=draft.notes,
            created_at=self.clock.now(),
        )
        self.session.add(movement)
        self.session.flush()

        logger.info(
            "movement_appended",
            extra=self.key_context(
                draft.product_id,
                draft.warehouse_id,
                movement_id=str(movement.id),
                seq=seq,
                movement_type=movement_type.value,
                quantity=quantity,
            ),
        )
        return movement.id

    def get(self, movement_id: UUID) -> MovementRecord | None:
        movement = self.session.get(StockMovement, movement_id)
        return MovementRecord.from_model(movement) if movement else None

    def replay(self, product_id: UUID, warehouse_id: UUID) -> tuple[MovementRecord, ...]:
        """
        Every movement affecting (product, warehouse), in ``seq`` order.

        A movement affects the key when its destination or its source is the
        warehouse.
        """
        rows = self.session.execute(
            select(StockMovement)
            .where(StockMovement.product_id == product_id)
            .where(
                or_(
                    StockMovement.to_warehouse_id == warehouse_id,
                    StockMovement.from_warehouse_id == warehouse_id,
                )
            )
            .order_by(StockMovement.seq)
        ).scalars().all()
        return tuple(MovementRecord.from_model(row) for row in rows)

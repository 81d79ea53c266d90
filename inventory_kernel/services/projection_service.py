"""
InventoryProjection -- materialized per-(product, warehouse) quantity state.

Responsibility:
    Applies ledger movements to inventory records, exactly once per movement,
    and serves the current quantity/reserved/available read.  Also owns the
    record-level lock that every mutation of a key goes through, and the
    recovery path that applies movements a crash left unapplied.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by FulfillmentCoordinator and ReservationManager.

Invariants enforced:
    - Idempotent application: an AppliedMovement marker is written in the
      same flush as the quantity change; a movement with a marker is skipped.
    - quantity >= 0 and reserved <= quantity after every apply.  A movement
      that would break either raises InvariantViolation and nothing is
      written.  Nothing is clamped.

Failure modes:
    - InvariantViolation: applying the movement would break a record invariant.
    - IntegrityError: concurrent zero-baseline creation race (handled via
      savepoint rollback and re-lock).
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import ZERO, InventorySnapshot, MovementRecord
from inventory_kernel.domain.movements import (
    QUANTITY_INTEGER_DIGITS,
    to_non_negative_quantity,
)
from inventory_kernel.exceptions import InvalidQuantityError, InvariantViolation
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.inventory import AppliedMovement, InventoryRecord
from inventory_kernel.models.movement import StockMovement
from inventory_kernel.selectors.inventory_selector import InventorySelector
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.lock_manager import InventoryKey, sort_keys

logger = get_logger("services.projection")


class InventoryProjection(BaseService):
    """
    Service that keeps inventory records in step with the ledger.

    Contract:
        ``apply`` is the only writer of ``InventoryRecord.quantity``.
        Callers hold the key lock (KeyedLockManager and/or ``lock_record``)
        for the affected key.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._selector = InventorySelector(session)

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _select_for_update(self, product_id: UUID, warehouse_id: UUID) -> InventoryRecord | None:
        return self.session.execute(
            select(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .where(InventoryRecord.warehouse_id == warehouse_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock_record(self, product_id: UUID, warehouse_id: UUID) -> InventoryRecord:
        """
        Lock the record for (product, warehouse), creating a zero baseline
        if absent.

        Postconditions:
            - The returned record is row-locked until the transaction ends.
        """
        record = self._select_for_update(product_id, warehouse_id)
        if record is not None:
            return record

        savepoint = self.session.begin_nested()
        try:
            record = InventoryRecord(
                product_id=product_id,
                warehouse_id=warehouse_id,
                quantity=ZERO,
                reserved=ZERO,
                reorder_level=ZERO,
                last_updated=self.clock.now(),
            )
            self.session.add(record)
            self.session.flush()
            savepoint.commit()
            logger.debug(
                "inventory_record_created",
                extra=self.key_context(product_id, warehouse_id),
            )
            return record
        except IntegrityError:
            logger.debug(
                "inventory_record_race_retry",
                extra=self.key_context(product_id, warehouse_id),
            )
            savepoint.rollback()
            record = self._select_for_update(product_id, warehouse_id)
            if record is None:
                raise
            return record

    def lock_records(
        self, keys: Iterable[InventoryKey]
    ) -> dict[InventoryKey, InventoryRecord]:
        """Lock every key's record in the global sort order."""
        return {key: self.lock_record(*key) for key in sort_keys(keys)}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, product_id: UUID, warehouse_id: UUID) -> InventorySnapshot:
        """Current (quantity, reserved, available); zeros when absent."""
        return self._selector.snapshot(product_id, warehouse_id)

    def is_applied(self, movement_id: UUID) -> bool:
        return self.session.execute(
            select(AppliedMovement.id).where(AppliedMovement.movement_id == movement_id)
        ).first() is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply(self, movement: MovementRecord) -> bool:
        """
        Apply one movement's signed delta to its record.

        Returns:
            True if the record changed, False if the movement was already
            applied.

        Raises:
            InvariantViolation: the result would have quantity < 0 or
                reserved > quantity.
            InvalidQuantityError: the on-hand total would no longer fit the
                quantity column.
        """
        if self.is_applied(movement.id):
            logger.debug("movement_already_applied", extra={"movement_id": str(movement.id)})
            return False

        product_id = movement.product_id
        warehouse_id = movement.warehouse_id
        delta = movement.delta
        record = self.lock_record(product_id, warehouse_id)

        new_quantity = record.quantity + delta
        context = self.key_context(
            product_id,
            warehouse_id,
            movement_id=str(movement.id),
            seq=movement.seq,
            quantity=record.quantity,
            reserved=record.reserved,
            delta=delta,
        )
        if new_quantity < 0:
            logger.error("projection_negative_quantity", extra=context)
            raise InvariantViolation(
                "non_negative_quantity",
                f"movement {movement.id} would leave quantity {new_quantity}",
                **context,
            )
        if record.reserved > new_quantity:
            logger.error("projection_reserved_exceeds_quantity", extra=context)
            raise InvariantViolation(
                "reserved_within_quantity",
                f"movement {movement.id} would leave quantity {new_quantity} "
                f"below reserved {record.reserved}",
                **context,
            )
        if new_quantity.adjusted() >= QUANTITY_INTEGER_DIGITS:
            logger.warning("projection_quantity_overflow", extra=context)
            raise InvalidQuantityError(
                new_quantity, f"on-hand total exceeds {QUANTITY_INTEGER_DIGITS} integer digits"
            )

        now = self.clock.now()
        record.quantity = new_quantity
        record.last_updated = now
        self.session.add(
            AppliedMovement(
                movement_id=movement.id,
                product_id=product_id,
                warehouse_id=warehouse_id,
                delta=delta,
                applied_at=now,
            )
        )
        self.session.flush()

        logger.info(
            "movement_applied",
            extra=self.key_context(
                product_id,
                warehouse_id,
                movement_id=str(movement.id),
                seq=movement.seq,
                delta=delta,
                quantity=new_quantity,
            ),
        )
        return True

    def catch_up(self) -> int:
        """
        Apply every ledger movement that has no AppliedMovement marker, in
        ``seq`` order.

        Recovery path for movements appended by a process that died before
        applying them.  Running it when nothing is pending is a no-op.

        Returns:
            Number of movements applied.
        """
        pending = self.session.execute(
            select(StockMovement)
            .outerjoin(AppliedMovement, AppliedMovement.movement_id == StockMovement.id)
            .where(AppliedMovement.id.is_(None))
            .order_by(StockMovement.seq)
        ).scalars().all()

        applied = 0
        for movement in pending:
            if self.apply(MovementRecord.from_model(movement)):
                applied += 1

        logger.info("projection_caught_up", extra={"applied_count": applied})
        return applied

    def set_reorder_level(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        reorder_level: Decimal | int | str,
    ) -> InventorySnapshot:
        """
        Store the informational reorder level for a key.

        Nothing reacts to the level.

        Raises:
            InvalidQuantityError: level is negative or not a number.
        """
        level = to_non_negative_quantity(reorder_level)

        record = self.lock_record(product_id, warehouse_id)
        record.reorder_level = level
        record.last_updated = self.clock.now()
        self.session.flush()

        logger.info(
            "reorder_level_set",
            extra=self.key_context(product_id, warehouse_id, reorder_level=level),
        )
        return self.get(product_id, warehouse_id)

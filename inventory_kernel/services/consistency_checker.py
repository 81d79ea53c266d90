"""
ConsistencyChecker -- compares the inventory projection against ledger replay.

Responsibility:
    On demand, replays the ledger for a (product, warehouse) key and
    compares the result with the stored inventory record.  Also checks the
    reservation side: reserved must stay within quantity and equal what the
    CONFIRMED sales order lines on that key say they hold.

Architecture position:
    Kernel > Services -- imperative shell, diagnostic path.
    Called by FulfillmentCoordinator.reconcile()/reconcile_all() and by tests.

Invariants enforced:
    - Drift is reported, never corrected.  The projection is left exactly
      as found; a DriftReport row and an ERROR log record are the output.

Failure modes:
    - DriftError from ``reconcile`` when any mismatch is found.
      ``reconcile_all`` records every mismatch and raises nothing.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import ZERO, DriftKind, ReconciliationResult
from inventory_kernel.domain.movements import replay_quantity
from inventory_kernel.exceptions import DriftError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.drift_report import DriftReport
from inventory_kernel.models.inventory import InventoryRecord
from inventory_kernel.selectors.inventory_selector import InventorySelector
from inventory_kernel.selectors.order_selector import OrderSelector
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.ledger_service import LedgerService

logger = get_logger("services.consistency")


class ConsistencyChecker(BaseService):
    """
    Reconciliation between the ledger and the projection.

    Args:
        persist_reports: Write a DriftReport row for each mismatch.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        persist_reports: bool = True,
    ):
        super().__init__(session, clock)
        self._ledger = LedgerService(session, self.clock)
        self._inventory = InventorySelector(session)
        self._orders = OrderSelector(session)
        self._persist_reports = persist_reports

    def check(self, product_id: UUID, warehouse_id: UUID) -> ReconciliationResult:
        """Compare one key without side effects."""
        movements = self._ledger.replay(product_id, warehouse_id)
        ledger_quantity = replay_quantity(m.delta for m in movements)

        record = self.session.execute(
            select(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .where(InventoryRecord.warehouse_id == warehouse_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        projected_quantity = record.quantity if record is not None else ZERO
        projected_reserved = record.reserved if record is not None else ZERO

        expected_reserved = self._orders.outstanding_reserved(product_id, warehouse_id)
        stray = self._orders.stray_reservations(product_id, warehouse_id)

        drift: list[DriftKind] = []
        if ledger_quantity != projected_quantity:
            drift.append(DriftKind.QUANTITY_MISMATCH)
        if projected_reserved != expected_reserved or stray > 0:
            drift.append(DriftKind.RESERVED_MISMATCH)
        if projected_reserved > projected_quantity:
            drift.append(DriftKind.RESERVED_EXCEEDS_QUANTITY)
        if ledger_quantity < 0 or projected_quantity < 0 or projected_reserved < 0:
            drift.append(DriftKind.NEGATIVE_BALANCE)

        result = ReconciliationResult(
            product_id=product_id,
            warehouse_id=warehouse_id,
            ledger_quantity=ledger_quantity,
            projected_quantity=projected_quantity,
            expected_reserved=expected_reserved,
            projected_reserved=projected_reserved,
            movement_count=len(movements),
            drift=tuple(drift),
        )
        logger.debug(
            "reconciliation_checked",
            extra=self.key_context(
                product_id,
                warehouse_id,
                movement_count=result.movement_count,
                ok=result.ok,
            ),
        )
        return result

    def _record_drift(self, result: ReconciliationResult) -> None:
        if self._persist_reports:
            self.session.add(
                DriftReport(
                    product_id=result.product_id,
                    warehouse_id=result.warehouse_id,
                    ledger_quantity=result.ledger_quantity,
                    projected_quantity=result.projected_quantity,
                    expected_reserved=result.expected_reserved,
                    projected_reserved=result.projected_reserved,
                    movement_count=result.movement_count,
                    drift_kinds=[kind.value for kind in result.drift],
                    detected_at=self.clock.now(),
                )
            )
            self.session.flush()

        logger.error(
            "inventory_drift_detected",
            extra={
                "product_id": str(result.product_id),
                "warehouse_id": str(result.warehouse_id),
                "ledger_quantity": str(result.ledger_quantity),
                "projected_quantity": str(result.projected_quantity),
                "expected_reserved": str(result.expected_reserved),
                "projected_reserved": str(result.projected_reserved),
                "drift_kinds": [kind.value for kind in result.drift],
            },
        )

    def reconcile(self, product_id: UUID, warehouse_id: UUID) -> ReconciliationResult:
        """
        Check one key and report drift.

        Returns:
            The clean ReconciliationResult.

        Raises:
            DriftError: the key has drifted.  A DriftReport has been flushed
                in the caller's transaction before the raise.
        """
        result = self.check(product_id, warehouse_id)
        if result.ok:
            logger.info(
                "reconciliation_passed",
                extra=self.key_context(
                    product_id,
                    warehouse_id,
                    quantity=result.projected_quantity,
                    movement_count=result.movement_count,
                ),
            )
            return result

        self._record_drift(result)
        raise DriftError(
            product_id=str(product_id),
            warehouse_id=str(warehouse_id),
            expected_quantity=result.ledger_quantity,
            actual_quantity=result.projected_quantity,
            expected_reserved=result.expected_reserved,
            actual_reserved=result.projected_reserved,
        )

    def reconcile_all(self) -> list[ReconciliationResult]:
        """
        Sweep every known key.

        Returns:
            One result per key, clean or not, in key order.
        """
        results = []
        for product_id, warehouse_id in self._inventory.known_keys():
            result = self.check(product_id, warehouse_id)
            if not result.ok:
                self._record_drift(result)
            results.append(result)

        logger.info(
            "reconciliation_sweep_completed",
            extra={
                "key_count": len(results),
                "drift_count": sum(1 for r in results if not r.ok),
            },
        )
        return results

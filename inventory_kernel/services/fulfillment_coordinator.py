"""
Fulfillment Coordinator - drives order workflows against the ledger.

The Coordinator ties together:
- LedgerService: movement persistence
- InventoryProjection: quantity state
- ReservationManager: reserved quantity
- ConsistencyChecker: diagnostics

Every public operation is one atomic transaction.  The Coordinator owns the
transaction boundary: it opens a session from the session factory, commits on
success and rolls back every partial effect on failure.  Callers never
manage commit.

Concurrency:
    Mutations are serialized per (product, warehouse).  The Coordinator
    takes the in-process key locks (KeyedLockManager) BEFORE opening the
    transaction and releases them after it ends; inside the transaction the
    inventory rows are locked with SELECT ... FOR UPDATE in the same order.
    Operations that start from an order id discover the order's keys in a
    short read first, then re-check them under the locks.

Failure modes:
    - ValidationError subclasses and InsufficientStockError are business
      rejections (logged at WARNING).  Nothing is written.
    - InvariantViolation and anything unexpected are logged at ERROR.
      Nothing is written.
    - DriftError from reconcile() is raised after the DriftReport commits.
    - LockTimeoutError when a key lock is not acquired in time.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import (
    ZERO,
    InventorySnapshot,
    MovementDraft,
    MovementRecord,
    OrderKind,
    OrderLineView,
    OrderView,
    ReconciliationResult,
)
from inventory_kernel.domain.movements import (
    MovementType,
    ReferenceType,
    to_quantity,
    to_signed_quantity,
)
from inventory_kernel.domain.workflow import (
    PURCHASE_ORDER_WORKFLOW,
    SALES_ORDER_WORKFLOW,
    OrderAction,
    require_transition,
)
from inventory_kernel.exceptions import (
    ConcurrencyError,
    DriftError,
    DuplicateOrderNumberError,
    EmptyOrderError,
    InsufficientStockError,
    InvalidMovementError,
    OrderLineNotFoundError,
    OrderNotFoundError,
    OverFulfillmentError,
    ValidationError,
)
from inventory_kernel.logging_config import LogContext, elapsed_ms, get_logger
from inventory_kernel.models.order import (
    PurchaseOrder,
    PurchaseOrderLine,
    SalesOrder,
    SalesOrderLine,
)
from inventory_kernel.selectors.inventory_selector import InventorySelector
from inventory_kernel.selectors.order_selector import OrderSelector
from inventory_kernel.services.consistency_checker import ConsistencyChecker
from inventory_kernel.services.ledger_service import LedgerService
from inventory_kernel.services.lock_manager import InventoryKey, KeyedLockManager
from inventory_kernel.services.projection_service import InventoryProjection
from inventory_kernel.services.reference_data_service import (
    ReferenceDataService,
    to_price,
)
from inventory_kernel.services.reservation_service import ReservationManager

if TYPE_CHECKING:
    from inventory_config.schema import InventoryConfig

logger = get_logger("services.fulfillment")

T = TypeVar("T")

# Attempts to lock an order's keys while its lines change underneath
_MAX_KEY_ATTEMPTS = 3

_REJECTIONS = (ValidationError, InsufficientStockError)


@dataclass(frozen=True)
class _Services:
    """Kernel services bound to one transaction's session."""

    ledger: LedgerService
    projection: InventoryProjection
    reservations: ReservationManager
    reference_data: ReferenceDataService
    orders: OrderSelector


class FulfillmentCoordinator:
    """
    Orchestrates purchase receipt, sales shipment and stock movements.

    Args:
        session_factory: Creates one session per operation.
        clock: Clock for timestamps. Defaults to SystemClock.
        lock_manager: Per-key locks.  Share one instance between every
            coordinator in the process.
        lock_timeout_seconds: Wait for each key lock.
        statement_timeout_ms: PostgreSQL ``statement_timeout`` applied to
            each transaction.  Ignored on other dialects.
        persist_drift_reports: Write DriftReport rows on reconciliation
            mismatches.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        lock_manager: KeyedLockManager | None = None,
        lock_timeout_seconds: float = 10.0,
        statement_timeout_ms: int | None = None,
        persist_drift_reports: bool = True,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._locks = lock_manager or KeyedLockManager(lock_timeout_seconds)
        self._lock_timeout = lock_timeout_seconds
        self._statement_timeout_ms = statement_timeout_ms
        self._persist_drift_reports = persist_drift_reports

    @classmethod
    def from_config(
        cls,
        config: InventoryConfig,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        lock_manager: KeyedLockManager | None = None,
    ) -> FulfillmentCoordinator:
        """Build a coordinator from the active runtime configuration."""
        return cls(
            session_factory,
            clock=clock,
            lock_manager=lock_manager,
            lock_timeout_seconds=config.concurrency.lock_timeout_seconds,
            statement_timeout_ms=config.concurrency.statement_timeout_ms,
            persist_drift_reports=config.reconciliation.persist_drift_reports,
        )

    # =========================================================================
    # Transaction and lock plumbing
    # =========================================================================

    def _services(self, session: Session) -> _Services:
        projection = InventoryProjection(session, self._clock)
        return _Services(
            ledger=LedgerService(session, self._clock),
            projection=projection,
            reservations=ReservationManager(session, self._clock, projection),
            reference_data=ReferenceDataService(session, self._clock),
            orders=OrderSelector(session),
        )

    def _apply_statement_timeout(self, session: Session) -> None:
        if not self._statement_timeout_ms:
            return
        if session.get_bind().dialect.name == "postgresql":
            session.execute(
                text(f"SET LOCAL statement_timeout = {int(self._statement_timeout_ms)}")
            )

    @contextmanager
    def _transaction(
        self,
        operation: str,
        keep_on: tuple[type[Exception], ...] = (),
        **context: object,
    ) -> Iterator[Session]:
        """
        One session, one transaction.

        Commits when the block exits normally.  Exceptions in ``keep_on``
        commit what was flushed before propagating; every other exception
        rolls back.
        """
        session = self._session_factory()
        t0 = time.monotonic()
        with LogContext.bind(correlation_id=uuid4(), operation=operation, **context):
            logger.info("operation_started", extra={"operation": operation})
            try:
                self._apply_statement_timeout(session)
                yield session
                session.commit()
            except keep_on:
                session.commit()
                logger.warning(
                    "operation_committed_with_error",
                    extra={"operation": operation},
                    exc_info=True,
                )
                raise
            except _REJECTIONS:
                session.rollback()
                logger.warning(
                    "operation_rejected",
                    extra={
                        "operation": operation,
                        "duration_ms": elapsed_ms(t0),
                    },
                    exc_info=True,
                )
                raise
            except Exception:
                session.rollback()
                logger.error(
                    "operation_failed",
                    extra={
                        "operation": operation,
                        "duration_ms": elapsed_ms(t0),
                    },
                    exc_info=True,
                )
                raise
            else:
                logger.info(
                    "operation_completed",
                    extra={
                        "operation": operation,
                        "duration_ms": elapsed_ms(t0),
                    },
                )
            finally:
                session.close()

    def _read(self, fn: Callable[[Session], T]) -> T:
        """Run a read in its own short session; nothing is committed."""
        session = self._session_factory()
        try:
            return fn(session)
        finally:
            session.close()

    def _run_locked(
        self,
        operation: str,
        keys: Iterable[InventoryKey],
        work: Callable[[Session], T],
        keep_on: tuple[type[Exception], ...] = (),
        **context: object,
    ) -> T:
        with self._locks.acquire(keys, timeout=self._lock_timeout):
            with self._transaction(operation, keep_on=keep_on, **context) as session:
                return work(session)

    def _run_keyed(
        self,
        operation: str,
        discover: Callable[[Session], frozenset[InventoryKey]],
        work: Callable[[Session], T],
        **context: object,
    ) -> T:
        """
        Run ``work`` under the key locks ``discover`` reports.

        Keys are discovered without locks, then re-discovered inside the
        transaction.  If the key set grew in between (a line was added), the
        transaction is abandoned and the wider set is locked.
        """
        keys = self._read(discover)
        for _ in range(_MAX_KEY_ATTEMPTS):
            with self._locks.acquire(keys, timeout=self._lock_timeout):
                with self._transaction(operation, **context) as session:
                    current = discover(session)
                    if current <= keys:
                        return work(session)
            logger.info(
                "operation_keys_changed",
                extra={"operation": operation, "key_count": len(current)},
            )
            keys = keys | current
        raise ConcurrencyError(
            f"{operation}: order lines kept changing while acquiring locks"
        )

    def _record_movement(self, svc: _Services, draft: MovementDraft) -> MovementRecord:
        """Append a movement and apply it to the projection."""
        movement_id = svc.ledger.append(draft)
        movement = svc.ledger.get(movement_id)
        svc.projection.apply(movement)
        return movement

    # =========================================================================
    # Order loading
    # =========================================================================

    @staticmethod
    def _lock_purchase_order(session: Session, po_id: UUID) -> PurchaseOrder:
        order = session.get(
            PurchaseOrder, po_id, with_for_update=True, populate_existing=True
        )
        if order is None:
            raise OrderNotFoundError(OrderKind.PURCHASE.value, str(po_id))
        return order

    @staticmethod
    def _lock_sales_order(session: Session, so_id: UUID) -> SalesOrder:
        order = session.get(
            SalesOrder, so_id, with_for_update=True, populate_existing=True
        )
        if order is None:
            raise OrderNotFoundError(OrderKind.SALES.value, str(so_id))
        return order

    @staticmethod
    def _lock_purchase_line(session: Session, line_id: UUID) -> tuple[PurchaseOrder, PurchaseOrderLine]:
        """Lock a purchase line's header, then the line itself."""
        line = session.get(PurchaseOrderLine, line_id)
        if line is None:
            raise OrderLineNotFoundError(OrderKind.PURCHASE.value, str(line_id))
        order = FulfillmentCoordinator._lock_purchase_order(session, line.po_id)
        line = session.get(
            PurchaseOrderLine, line_id, with_for_update=True, populate_existing=True
        )
        return order, line

    @staticmethod
    def _lock_sales_line(session: Session, line_id: UUID) -> tuple[SalesOrder, SalesOrderLine]:
        """Lock a sales line's header, then the line itself."""
        line = session.get(SalesOrderLine, line_id)
        if line is None:
            raise OrderLineNotFoundError(OrderKind.SALES.value, str(line_id))
        order = FulfillmentCoordinator._lock_sales_order(session, line.so_id)
        line = session.get(
            SalesOrderLine, line_id, with_for_update=True, populate_existing=True
        )
        return order, line

    @staticmethod
    def _sales_order_keys(session: Session, so_id: UUID) -> frozenset[InventoryKey]:
        view = OrderSelector(session).sales_order(so_id)
        return frozenset((line.product_id, line.warehouse_id) for line in view.lines)

    # =========================================================================
    # Order creation
    # =========================================================================

    def create_purchase_order(
        self,
        po_number: str,
        created_by_id: UUID,
        supplier_id: UUID | None = None,
        order_date: date | None = None,
        expected_date: date | None = None,
        notes: str | None = None,
    ) -> OrderView:
        """
        Open a DRAFT purchase order.

        Raises:
            DuplicateOrderNumberError: ``po_number`` is taken.
        """
        with self._transaction("create_purchase_order", actor_id=created_by_id) as session:
            taken = session.execute(
                select(PurchaseOrder.id).where(PurchaseOrder.po_number == po_number)
            ).first()
            if taken is not None:
                raise DuplicateOrderNumberError(OrderKind.PURCHASE.value, po_number)

            order = PurchaseOrder(
                po_number=po_number,
                supplier_id=supplier_id,
                status=PURCHASE_ORDER_WORKFLOW.initial_state,
                order_date=order_date or self._clock.today(),
                expected_date=expected_date,
                notes=notes,
                created_by_id=created_by_id,
            )
            session.add(order)
            try:
                session.flush()
            except IntegrityError as exc:
                raise DuplicateOrderNumberError(OrderKind.PURCHASE.value, po_number) from exc

            logger.info(
                "purchase_order_created",
                extra={"po_id": str(order.id), "po_number": po_number},
            )
            return OrderView.from_purchase_order(order)

    def create_sales_order(
        self,
        so_number: str,
        created_by_id: UUID,
        customer_id: UUID | None = None,
        order_date: date | None = None,
        notes: str | None = None,
    ) -> OrderView:
        """
        Open a DRAFT sales order.

        Raises:
            DuplicateOrderNumberError: ``so_number`` is taken.
        """
        with self._transaction("create_sales_order", actor_id=created_by_id) as session:
            taken = session.execute(
                select(SalesOrder.id).where(SalesOrder.so_number == so_number)
            ).first()
            if taken is not None:
                raise DuplicateOrderNumberError(OrderKind.SALES.value, so_number)

            order = SalesOrder(
                so_number=so_number,
                customer_id=customer_id,
                status=SALES_ORDER_WORKFLOW.initial_state,
                order_date=order_date or self._clock.today(),
                notes=notes,
                created_by_id=created_by_id,
            )
            session.add(order)
            try:
                session.flush()
            except IntegrityError as exc:
                raise DuplicateOrderNumberError(OrderKind.SALES.value, so_number) from exc

            logger.info(
                "sales_order_created",
                extra={"so_id": str(order.id), "so_number": so_number},
            )
            return OrderView.from_sales_order(order)

    def add_purchase_line(
        self,
        po_id: UUID,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: Decimal | int | str,
        unit_price: Decimal | int | str | None = None,
        notes: str | None = None,
        performed_by_id: UUID | None = None,
    ) -> OrderLineView:
        """
        Add a line to a DRAFT purchase order.

        Raises:
            InvalidOrderTransitionError: order is not DRAFT.
            InvalidQuantityError, ProductNotFoundError, ProductInactiveError,
            WarehouseNotFoundError, WarehouseInactiveError
        """
        with self._transaction(
            "add_purchase_line", order_id=po_id, actor_id=performed_by_id
        ) as session:
            svc = self._services(session)
            order = self._lock_purchase_order(session, po_id)
            require_transition(PURCHASE_ORDER_WORKFLOW, po_id, order.status, OrderAction.ADD_LINE)
            ordered = to_quantity(quantity)
            svc.reference_data.require_active_product(product_id)
            svc.reference_data.require_active_warehouse(warehouse_id)

            line = PurchaseOrderLine(
                line_no=len(order.lines) + 1,
                product_id=product_id,
                warehouse_id=warehouse_id,
                quantity_ordered=ordered,
                quantity_received=ZERO,
                unit_price=to_price(unit_price) if unit_price is not None else None,
                notes=notes,
            )
            order.lines.append(line)
            if performed_by_id is not None:
                order.updated_by_id = performed_by_id
            session.flush()

            logger.info(
                "purchase_line_added",
                extra={
                    "po_id": str(po_id),
                    "line_id": str(line.id),
                    "product_id": str(product_id),
                    "warehouse_id": str(warehouse_id),
                    "quantity": str(ordered),
                },
            )
            return OrderLineView.from_purchase_line(line)

    def add_sales_line(
        self,
        so_id: UUID,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: Decimal | int | str,
        unit_price: Decimal | int | str | None = None,
        performed_by_id: UUID | None = None,
    ) -> OrderLineView:
        """
        Add a line to a DRAFT sales order.  Nothing is reserved until confirm.

        Raises:
            InvalidOrderTransitionError: order is not DRAFT.
            InvalidQuantityError, ProductNotFoundError, ProductInactiveError,
            WarehouseNotFoundError, WarehouseInactiveError
        """
        with self._transaction(
            "add_sales_line", order_id=so_id, actor_id=performed_by_id
        ) as session:
            svc = self._services(session)
            order = self._lock_sales_order(session, so_id)
            require_transition(SALES_ORDER_WORKFLOW, so_id, order.status, OrderAction.ADD_LINE)
            ordered = to_quantity(quantity)
            svc.reference_data.require_active_product(product_id)
            svc.reference_data.require_active_warehouse(warehouse_id)

            line = SalesOrderLine(
                line_no=len(order.lines) + 1,
                product_id=product_id,
                warehouse_id=warehouse_id,
                quantity_ordered=ordered,
                quantity_shipped=ZERO,
                quantity_reserved=ZERO,
                unit_price=to_price(unit_price) if unit_price is not None else None,
            )
            order.lines.append(line)
            if performed_by_id is not None:
                order.updated_by_id = performed_by_id
            session.flush()

            logger.info(
                "sales_line_added",
                extra={
                    "so_id": str(so_id),
                    "line_id": str(line.id),
                    "product_id": str(product_id),
                    "warehouse_id": str(warehouse_id),
                    "quantity": str(ordered),
                },
            )
            return OrderLineView.from_sales_line(line)

    # =========================================================================
    # Purchase workflow
    # =========================================================================

    def place_purchase_order(
        self,
        po_id: UUID,
        performed_by_id: UUID | None = None,
    ) -> OrderView:
        """
        DRAFT -> ORDERED.

        Raises:
            InvalidOrderTransitionError: order is not DRAFT.
            EmptyOrderError: order has no lines.
        """
        with self._transaction(
            "place_purchase_order", order_id=po_id, actor_id=performed_by_id
        ) as session:
            order = self._lock_purchase_order(session, po_id)
            target = require_transition(
                PURCHASE_ORDER_WORKFLOW, po_id, order.status, OrderAction.PLACE
            )
            if not order.lines:
                raise EmptyOrderError(OrderKind.PURCHASE.value, str(po_id))

            order.status = target
            if performed_by_id is not None:
                order.updated_by_id = performed_by_id
            session.flush()

            logger.info(
                "purchase_order_placed",
                extra={"po_id": str(po_id), "line_count": len(order.lines)},
            )
            return OrderView.from_purchase_order(order)

    def receive(
        self,
        po_line_id: UUID,
        quantity: Decimal | int | str,
        performed_by_id: UUID | None = None,
    ) -> MovementRecord:
        """
        Receive stock against an ORDERED purchase line.

        Appends a PURCHASE_RECEIPT, applies it, and moves the order to
        RECEIVED once every line is fully received.

        Raises:
            InvalidOrderTransitionError: order is not ORDERED.
            OverFulfillmentError: quantity exceeds the line's remaining.
        """
        def discover(session: Session) -> frozenset[InventoryKey]:
            line = OrderSelector(session).purchase_line(po_line_id)
            return frozenset({(line.product_id, line.warehouse_id)})

        def work(session: Session) -> MovementRecord:
            svc = self._services(session)
            order, line = self._lock_purchase_line(session, po_line_id)
            require_transition(PURCHASE_ORDER_WORKFLOW, order.id, order.status, OrderAction.RECEIVE)
            received = to_quantity(quantity)
            if received > line.remaining:
                raise OverFulfillmentError(str(line.id), received, line.remaining)

            svc.projection.lock_record(line.product_id, line.warehouse_id)
            movement = self._record_movement(
                svc,
                MovementDraft(
                    movement_type=MovementType.PURCHASE_RECEIPT,
                    product_id=line.product_id,
                    quantity=received,
                    to_warehouse_id=line.warehouse_id,
                    reference_type=ReferenceType.PURCHASE_ORDER,
                    reference_id=order.id,
                    order_line_id=line.id,
                    performed_by_id=performed_by_id,
                ),
            )
            line.quantity_received = line.quantity_received + received

            if all(item.remaining == 0 for item in order.lines):
                order.status = require_transition(
                    PURCHASE_ORDER_WORKFLOW, order.id, order.status, OrderAction.COMPLETE
                )
                order.received_date = self._clock.today()
            if performed_by_id is not None:
                order.updated_by_id = performed_by_id
            session.flush()

            logger.info(
                "purchase_line_received",
                extra={
                    "po_id": str(order.id),
                    "line_id": str(line.id),
                    "movement_id": str(movement.id),
                    "quantity": str(received),
                    "remaining": str(line.remaining),
                    "status": order.status,
                },
            )
            return movement

        return self._run_keyed("receive", discover, work, actor_id=performed_by_id)

    def cancel_purchase_order(
        self,
        po_id: UUID,
        performed_by_id: UUID | None = None,
    ) -> OrderView:
        """
        DRAFT/ORDERED -> CANCELLED.  Stock already received stays received.

        Raises:
            InvalidOrderTransitionError: order is RECEIVED or CANCELLED.
        """
        with self._transaction(
            "cancel_purchase_order", order_id=po_id, actor_id=performed_by_id
        ) as session:
            order = self._lock_purchase_order(session, po_id)
            order.status = require_transition(
                PURCHASE_ORDER_WORKFLOW, po_id, order.status, OrderAction.CANCEL
            )
            if performed_by_id is not None:
                order.updated_by_id = performed_by_id
            session.flush()

            logger.info("purchase_order_cancelled", extra={"po_id": str(po_id)})
            return OrderView.from_purchase_order(order)

    # =========================================================================
    # Sales workflow
    # =========================================================================

    def confirm_sales_order(
        self,
        so_id: UUID,
        performed_by_id: UUID | None = None,
    ) -> OrderView:
        """
        DRAFT -> CONFIRMED, reserving every line's full quantity.

        All-or-nothing: if any line cannot be reserved, no line is.

        Raises:
            InvalidOrderTransitionError: order is not DRAFT.
            EmptyOrderError: order has no lines.
            InsufficientStockError: some line's quantity is not available.
        """
        def work(session: Session) -> OrderView:
            svc = self._services(session)
            order = self._lock_sales_order(session, so_id)
            target = require_transition(
                SALES_ORDER_WORKFLOW, so_id, order.status, OrderAction.CONFIRM
            )
            if not order.lines:
                raise EmptyOrderError(OrderKind.SALES.value, str(so_id))

            svc.projection.lock_records(
                (line.product_id, line.warehouse_id) for line in order.lines
            )
            for line in order.lines:
                svc.reservations.reserve(
                    line.product_id, line.warehouse_id, line.quantity_ordered
                )
                line.quantity_reserved = line.quantity_ordered

            order.status = target
            if performed_by_id is not None:
                order.updated_by_id = performed_by_id
            session.flush()

            logger.info(
                "sales_order_confirmed",
                extra={"so_id": str(so_id), "line_count": len(order.lines)},
            )
            return OrderView.from_sales_order(order)

        return self._run_keyed(
            "confirm_sales_order",
            lambda session: self._sales_order_keys(session, so_id),
            work,
            order_id=so_id,
            actor_id=performed_by_id,
        )

    def ship(
        self,
        so_line_id: UUID,
        quantity: Decimal | int | str,
        performed_by_id: UUID | None = None,
    ) -> MovementRecord:
        """
        Ship stock for a CONFIRMED sales line.

        Consumes the line's reservation, appends a SALES_SHIPMENT and applies
        it, and moves the order to FULFILLED once every line is fully shipped.

        Raises:
            InvalidOrderTransitionError: order is not CONFIRMED.
            OverFulfillmentError: quantity exceeds the line's remaining.
            InsufficientStockError: quantity exceeds the line's reservation.
        """
        def discover(session: Session) -> frozenset[InventoryKey]:
            line = OrderSelector(session).sales_line(so_line_id)
            return frozenset({(line.product_id, line.warehouse_id)})

        def work(session: Session) -> MovementRecord:
            svc = self._services(session)
            order, line = self._lock_sales_line(session, so_line_id)
            require_transition(SALES_ORDER_WORKFLOW, order.id, order.status, OrderAction.SHIP)
            shipped = to_quantity(quantity)
            if shipped > line.remaining:
                raise OverFulfillmentError(str(line.id), shipped, line.remaining)
            if shipped > line.quantity_reserved:
                raise InsufficientStockError(
                    product_id=str(line.product_id),
                    warehouse_id=str(line.warehouse_id),
                    requested=shipped,
                    available=line.quantity_reserved,
                )

            svc.projection.lock_record(line.product_id, line.warehouse_id)
            # Release the hold first so reserved <= quantity holds after the apply
            svc.reservations.consume(line.product_id, line.warehouse_id, shipped)
            line.quantity_reserved = line.quantity_reserved - shipped
            movement = self._record_movement(
                svc,
                MovementDraft(
                    movement_type=MovementType.SALES_SHIPMENT,
                    product_id=line.product_id,
                    quantity=shipped,
                    from_warehouse_id=line.warehouse_id,
                    reference_type=ReferenceType.SALES_ORDER,
                    reference_id=order.id,
                    order_line_id=line.id,
                    performed_by_id=performed_by_id,
                ),
            )
            line.quantity_shipped = line.quantity_shipped + shipped

            if all(item.remaining == 0 for item in order.lines):
                order.status = require_transition(
                    SALES_ORDER_WORKFLOW, order.id, order.status, OrderAction.COMPLETE
                )
                order.shipment_date = self._clock.today()
            if performed_by_id is not None:
                order.updated_by_id = performed_by_id
            session.flush()

            logger.info(
                "sales_line_shipped",
                extra={
                    "so_id": str(order.id),
                    "line_id": str(line.id),
                    "movement_id": str(movement.id),
                    "quantity": str(shipped),
                    "remaining": str(line.remaining),
                    "status": order.status,
                },
            )
            return movement

        return self._run_keyed("ship", discover, work, actor_id=performed_by_id)

    def cancel_sales_order(
        self,
        so_id: UUID,
        performed_by_id: UUID | None = None,
    ) -> OrderView:
        """
        DRAFT/CONFIRMED -> CANCELLED, releasing every outstanding reservation.

        Stock already shipped stays shipped.

        Raises:
            InvalidOrderTransitionError: order is FULFILLED or CANCELLED.
        """
        def work(session: Session) -> OrderView:
            svc = self._services(session)
            order = self._lock_sales_order(session, so_id)
            target = require_transition(
                SALES_ORDER_WORKFLOW, so_id, order.status, OrderAction.CANCEL
            )
            held = [line for line in order.lines if line.quantity_reserved > 0]
            svc.projection.lock_records(
                (line.product_id, line.warehouse_id) for line in held
            )
            released = ZERO
            for line in held:
                svc.reservations.release(
                    line.product_id, line.warehouse_id, line.quantity_reserved
                )
                released += line.quantity_reserved
                line.quantity_reserved = ZERO

            order.status = target
            if performed_by_id is not None:
                order.updated_by_id = performed_by_id
            session.flush()

            logger.info(
                "sales_order_cancelled",
                extra={"so_id": str(so_id), "released": str(released)},
            )
            return OrderView.from_sales_order(order)

        return self._run_keyed(
            "cancel_sales_order",
            lambda session: self._sales_order_keys(session, so_id),
            work,
            order_id=so_id,
            actor_id=performed_by_id,
        )

    # =========================================================================
    # Stock movements outside orders
    # =========================================================================

    def transfer(
        self,
        product_id: UUID,
        from_warehouse_id: UUID,
        to_warehouse_id: UUID,
        quantity: Decimal | int | str,
        performed_by_id: UUID | None = None,
        notes: str | None = None,
    ) -> tuple[MovementRecord, MovementRecord]:
        """
        Move stock between warehouses as a TRANSFER_OUT/TRANSFER_IN pair
        sharing one transfer reference id.

        Raises:
            InvalidMovementError: source and destination are the same.
            InsufficientStockError: source available does not cover quantity.
        """
        if from_warehouse_id == to_warehouse_id:
            raise InvalidMovementError(
                MovementType.TRANSFER_OUT.value,
                "source and destination warehouse must differ",
            )
        keys = [(product_id, from_warehouse_id), (product_id, to_warehouse_id)]

        def work(session: Session) -> tuple[MovementRecord, MovementRecord]:
            svc = self._services(session)
            moved = to_quantity(quantity)
            records = svc.projection.lock_records(keys)
            source = records[(product_id, from_warehouse_id)]
            available = source.quantity - source.reserved
            if moved > available:
                raise InsufficientStockError(
                    product_id=str(product_id),
                    warehouse_id=str(from_warehouse_id),
                    requested=moved,
                    available=available,
                )

            transfer_id = uuid4()
            outbound = self._record_movement(
                svc,
                MovementDraft(
                    movement_type=MovementType.TRANSFER_OUT,
                    product_id=product_id,
                    quantity=moved,
                    from_warehouse_id=from_warehouse_id,
                    reference_type=ReferenceType.TRANSFER,
                    reference_id=transfer_id,
                    performed_by_id=performed_by_id,
                    notes=notes,
                ),
            )
            inbound = self._record_movement(
                svc,
                MovementDraft(
                    movement_type=MovementType.TRANSFER_IN,
                    product_id=product_id,
                    quantity=moved,
                    to_warehouse_id=to_warehouse_id,
                    reference_type=ReferenceType.TRANSFER,
                    reference_id=transfer_id,
                    performed_by_id=performed_by_id,
                    notes=notes,
                ),
            )

            logger.info(
                "stock_transferred",
                extra={
                    "transfer_id": str(transfer_id),
                    "product_id": str(product_id),
                    "from_warehouse_id": str(from_warehouse_id),
                    "to_warehouse_id": str(to_warehouse_id),
                    "quantity": str(moved),
                },
            )
            return outbound, inbound

        return self._run_locked(
            "transfer", keys, work, actor_id=performed_by_id, product_id=product_id
        )

    def adjust(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        delta: Decimal | int | str,
        performed_by_id: UUID | None = None,
        notes: str | None = None,
    ) -> MovementRecord:
        """
        Record a signed stock correction (count, damage, write-off).

        A positive delta is an ADJUSTMENT into the warehouse, a negative one
        an ADJUSTMENT out of it.  Reserved stock cannot be adjusted away.

        Raises:
            InvalidQuantityError: delta is zero or not a number.
            InsufficientStockError: a negative delta exceeds available.
        """
        signed = to_signed_quantity(delta)
        magnitude = to_quantity(abs(signed))

        def work(session: Session) -> MovementRecord:
            svc = self._services(session)
            record = svc.projection.lock_record(product_id, warehouse_id)
            if signed < 0:
                available = record.quantity - record.reserved
                if magnitude > available:
                    raise InsufficientStockError(
                        product_id=str(product_id),
                        warehouse_id=str(warehouse_id),
                        requested=magnitude,
                        available=available,
                    )
                endpoints = {"from_warehouse_id": warehouse_id}
            else:
                endpoints = {"to_warehouse_id": warehouse_id}

            movement = self._record_movement(
                svc,
                MovementDraft(
                    movement_type=MovementType.ADJUSTMENT,
                    product_id=product_id,
                    quantity=magnitude,
                    reference_type=ReferenceType.ADJUSTMENT,
                    reference_id=uuid4(),
                    performed_by_id=performed_by_id,
                    notes=notes,
                    **endpoints,
                ),
            )
            logger.info(
                "stock_adjusted",
                extra={
                    "product_id": str(product_id),
                    "warehouse_id": str(warehouse_id),
                    "delta": str(signed),
                    "movement_id": str(movement.id),
                },
            )
            return movement

        return self._run_locked(
            "adjust",
            [(product_id, warehouse_id)],
            work,
            actor_id=performed_by_id,
            product_id=product_id,
            warehouse_id=warehouse_id,
        )

    def record_return(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: Decimal | int | str,
        performed_by_id: UUID | None = None,
        so_line_id: UUID | None = None,
        notes: str | None = None,
    ) -> MovementRecord:
        """
        Record returned stock coming back into a warehouse.

        When ``so_line_id`` is given the movement references that sales line
        and its order; the order itself is not changed.

        Raises:
            OrderLineNotFoundError: ``so_line_id`` does not exist.
            InvalidMovementError: the sales line is for another product.
        """
        def work(session: Session) -> MovementRecord:
            svc = self._services(session)
            returned = to_quantity(quantity)
            reference_id = None
            if so_line_id is not None:
                line = session.get(SalesOrderLine, so_line_id)
                if line is None:
                    raise OrderLineNotFoundError(OrderKind.SALES.value, str(so_line_id))
                if line.product_id != product_id:
                    raise InvalidMovementError(
                        MovementType.RETURN.value,
                        f"sales line {so_line_id} is for another product",
                    )
                reference_id = line.so_id

            svc.projection.lock_record(product_id, warehouse_id)
            movement = self._record_movement(
                svc,
                MovementDraft(
                    movement_type=MovementType.RETURN,
                    product_id=product_id,
                    quantity=returned,
                    to_warehouse_id=warehouse_id,
                    reference_type=ReferenceType.RETURN,
                    reference_id=reference_id,
                    order_line_id=so_line_id,
                    performed_by_id=performed_by_id,
                    notes=notes,
                ),
            )
            logger.info(
                "stock_returned",
                extra={
                    "product_id": str(product_id),
                    "warehouse_id": str(warehouse_id),
                    "quantity": str(returned),
                    "movement_id": str(movement.id),
                },
            )
            return movement

        return self._run_locked(
            "record_return",
            [(product_id, warehouse_id)],
            work,
            actor_id=performed_by_id,
            product_id=product_id,
            warehouse_id=warehouse_id,
        )

    def set_reorder_level(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        reorder_level: Decimal | int | str,
    ) -> InventorySnapshot:
        """Store the informational reorder level for a key."""
        return self._run_locked(
            "set_reorder_level",
            [(product_id, warehouse_id)],
            lambda session: self._services(session).projection.set_reorder_level(
                product_id, warehouse_id, reorder_level
            ),
        )

    # =========================================================================
    # Read path
    # =========================================================================

    def get_inventory(self, product_id: UUID, warehouse_id: UUID) -> dict[str, Decimal]:
        """``{"quantity", "reserved", "available"}`` for one key."""
        return self._read(
            lambda session: InventorySelector(session)
            .snapshot(product_id, warehouse_id)
            .as_dict()
        )

    def get_snapshot(self, product_id: UUID, warehouse_id: UUID) -> InventorySnapshot:
        return self._read(
            lambda session: InventorySelector(session).snapshot(product_id, warehouse_id)
        )

    def get_purchase_order(self, po_id: UUID) -> OrderView:
        return self._read(lambda session: OrderSelector(session).purchase_order(po_id))

    def get_sales_order(self, so_id: UUID) -> OrderView:
        return self._read(lambda session: OrderSelector(session).sales_order(so_id))

    # =========================================================================
    # Diagnostics and recovery
    # =========================================================================

    def _checker(self, session: Session) -> ConsistencyChecker:
        return ConsistencyChecker(
            session, self._clock, persist_reports=self._persist_drift_reports
        )

    def reconcile(self, product_id: UUID, warehouse_id: UUID) -> ReconciliationResult:
        """
        Compare one key's projection with ledger replay.

        Raises:
            DriftError: the key has drifted.  The DriftReport is committed
                before the error propagates; the projection is untouched.
        """
        return self._run_locked(
            "reconcile",
            [(product_id, warehouse_id)],
            lambda session: self._checker(session).reconcile(product_id, warehouse_id),
            keep_on=(DriftError,),
            product_id=product_id,
            warehouse_id=warehouse_id,
        )

    def reconcile_all(self) -> list[ReconciliationResult]:
        """Sweep every known key; drift is recorded, not raised."""
        keys = self._read(lambda session: InventorySelector(session).known_keys())
        return self._run_locked(
            "reconcile_all",
            keys,
            lambda session: self._checker(session).reconcile_all(),
        )

    def catch_up(self) -> int:
        """Apply movements that were appended but never applied."""
        keys = self._read(lambda session: InventorySelector(session).known_keys())
        return self._run_locked(
            "catch_up",
            keys,
            lambda session: self._services(session).projection.catch_up(),
        )

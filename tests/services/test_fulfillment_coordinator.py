"""
Tests for FulfillmentCoordinator (order workflows end to end).

Every call here is one committed (or rolled back) transaction; state is
read back through fresh sessions.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.movements import MovementType, ReferenceType
from inventory_kernel.exceptions import (
    DuplicateOrderNumberError,
    EmptyOrderError,
    InsufficientStockError,
    InvalidMovementError,
    InvalidOrderTransitionError,
    InvalidQuantityError,
    OrderLineNotFoundError,
    OrderNotFoundError,
    OverFulfillmentError,
    ProductInactiveError,
    ValidationError,
    WarehouseNotFoundError,
)
from inventory_kernel.selectors.inventory_selector import InventorySelector
from inventory_kernel.services.ledger_service import LedgerService


def _inventory(coordinator, product_id, warehouse_id):
    inv = coordinator.get_inventory(product_id, warehouse_id)
    return inv["quantity"], inv["reserved"], inv["available"]


def _movements(session_factory, reference_type, reference_id):
    sess = session_factory()
    try:
        return InventorySelector(sess).movements_for_reference(reference_type, reference_id)
    finally:
        sess.close()


def _replay(session_factory, product_id, warehouse_id):
    sess = session_factory()
    try:
        return LedgerService(sess).replay(product_id, warehouse_id)
    finally:
        sess.close()


# =============================================================================
# Worked examples
# =============================================================================


class TestConfirmAndShipExample:
    """WH1/P1 with quantity 100; a sales order line for 30."""

    def test_confirm_ship_and_cancel_fulfilled(
        self, coordinator, reference_data, stocked, sales_order, session_factory
    ):
        p1, wh1 = reference_data["p1"], reference_data["wh1"]
        stocked(p1, wh1, 100)
        so = sales_order([(p1, wh1, 30)])

        confirmed = coordinator.confirm_sales_order(so.id)
        assert confirmed.status == "CONFIRMED"
        assert _inventory(coordinator, p1, wh1) == (100, 30, 70)

        movement = coordinator.ship(so.lines[0].id, 30)
        assert movement.movement_type == MovementType.SALES_SHIPMENT
        assert movement.quantity == Decimal("30")
        assert movement.delta == Decimal("-30")
        assert _inventory(coordinator, p1, wh1) == (70, 0, 70)

        shipments = _movements(session_factory, ReferenceType.SALES_ORDER.value, so.id)
        assert len(shipments) == 1
        assert shipments[0].order_line_id == so.lines[0].id

        view = coordinator.get_sales_order(so.id)
        assert view.status == "FULFILLED"
        assert view.completed_on is not None
        assert view.lines[0].fulfilled == Decimal("30")
        assert view.lines[0].reserved == Decimal("0")

        with pytest.raises(InvalidOrderTransitionError):
            coordinator.cancel_sales_order(so.id)
        assert coordinator.get_sales_order(so.id).status == "FULFILLED"


class TestOversellExample:

    def test_second_order_exceeding_available_rejected(
        self, coordinator, reference_data, stocked, sales_order
    ):
        p1, wh1 = reference_data["p1"], reference_data["wh1"]
        stocked(p1, wh1, 100)
        first = sales_order([(p1, wh1, 80)])
        second = sales_order([(p1, wh1, 30)])

        coordinator.confirm_sales_order(first.id)
        with pytest.raises(InsufficientStockError):
            coordinator.confirm_sales_order(second.id)

        assert _inventory(coordinator, p1, wh1) == (100, 80, 20)
        assert coordinator.get_sales_order(second.id).status == "DRAFT"


# =============================================================================
# Order creation and lines
# =============================================================================


class TestOrderCreation:

    def test_create_orders(self, coordinator, reference_data, test_actor_id, deterministic_clock):
        supplier = uuid4()
        po = coordinator.create_purchase_order("PO-1", test_actor_id, supplier_id=supplier)
        assert po.status == "DRAFT"
        assert po.number == "PO-1"
        assert po.counterparty_id == supplier
        assert po.order_date == deterministic_clock.today()
        assert po.lines == ()

        so = coordinator.create_sales_order("SO-1", test_actor_id, customer_id=uuid4())
        assert so.status == "DRAFT"

    def test_duplicate_number_rejected(self, coordinator, reference_data, test_actor_id):
        coordinator.create_purchase_order("PO-1", test_actor_id)
        with pytest.raises(DuplicateOrderNumberError):
            coordinator.create_purchase_order("PO-1", test_actor_id)

        coordinator.create_sales_order("SO-1", test_actor_id)
        with pytest.raises(DuplicateOrderNumberError):
            coordinator.create_sales_order("SO-1", test_actor_id)

    def test_add_lines_numbers_sequentially(self, coordinator, reference_data, test_actor_id):
        ref = reference_data
        po = coordinator.create_purchase_order("PO-1", test_actor_id)
        first = coordinator.add_purchase_line(po.id, ref["p1"], ref["wh1"], 10, unit_price="2.50")
        second = coordinator.add_purchase_line(po.id, ref["p2"], ref["wh2"], "4.5")

        assert (first.line_no, second.line_no) == (1, 2)
        assert first.unit_price == Decimal("2.50")
        assert second.ordered == Decimal("4.5")
        assert len(coordinator.get_purchase_order(po.id).lines) == 2

    @pytest.mark.parametrize("quantity", [0, -3, "abc"])
    def test_line_quantity_must_be_positive(self, coordinator, reference_data, test_actor_id, quantity):
        so = coordinator.create_sales_order("SO-1", test_actor_id)
        with pytest.raises(InvalidQuantityError):
            coordinator.add_sales_line(so.id, reference_data["p1"], reference_data["wh1"], quantity)

    def test_line_requires_active_references(
        self, coordinator, reference_data, test_actor_id, session_factory
    ):
        from inventory_kernel.services.reference_data_service import ReferenceDataService

        sess = session_factory()
        ReferenceDataService(sess).deactivate_product(reference_data["p2"], test_actor_id)
        sess.commit()
        sess.close()

        so = coordinator.create_sales_order("SO-1", test_actor_id)
        with pytest.raises(ProductInactiveError):
            coordinator.add_sales_line(so.id, reference_data["p2"], reference_data["wh1"], 1)
        with pytest.raises(WarehouseNotFoundError):
            coordinator.add_sales_line(so.id, reference_data["p1"], uuid4(), 1)
        assert coordinator.get_sales_order(so.id).lines == ()

    def test_lines_only_while_draft(self, coordinator, reference_data, test_actor_id):
        ref = reference_data
        po = coordinator.create_purchase_order("PO-1", test_actor_id)
        coordinator.add_purchase_line(po.id, ref["p1"], ref["wh1"], 10)
        coordinator.place_purchase_order(po.id)

        with pytest.raises(InvalidOrderTransitionError):
            coordinator.add_purchase_line(po.id, ref["p1"], ref["wh1"], 5)

    def test_unknown_order(self, coordinator, reference_data):
        with pytest.raises(OrderNotFoundError):
            coordinator.get_sales_order(uuid4())
        with pytest.raises(OrderNotFoundError):
            coordinator.place_purchase_order(uuid4())
        with pytest.raises(OrderLineNotFoundError):
            coordinator.ship(uuid4(), 1)


# =============================================================================
# Purchase workflow
# =============================================================================


class TestPurchaseWorkflow:

    def test_place_requires_a_line(self, coordinator, reference_data, test_actor_id):
        po = coordinator.create_purchase_order("PO-1", test_actor_id)
        with pytest.raises(EmptyOrderError):
            coordinator.place_purchase_order(po.id)
        assert coordinator.get_purchase_order(po.id).status == "DRAFT"

    def test_partial_then_full_receipt(self, coordinator, reference_data, test_actor_id, session_factory):
        ref = reference_data
        po = coordinator.create_purchase_order("PO-1", test_actor_id)
        line_a = coordinator.add_purchase_line(po.id, ref["p1"], ref["wh1"], 100)
        line_b = coordinator.add_purchase_line(po.id, ref["p2"], ref["wh1"], 10)
        assert coordinator.place_purchase_order(po.id).status == "ORDERED"

        coordinator.receive(line_a.id, 60)
        assert coordinator.get_purchase_order(po.id).status == "ORDERED"
        coordinator.receive(line_a.id, 40)
        coordinator.receive(line_b.id, 10, performed_by_id=test_actor_id)

        view = coordinator.get_purchase_order(po.id)
        assert view.status == "RECEIVED"
        assert view.completed_on is not None
        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (100, 0, 100)
        assert _inventory(coordinator, ref["p2"], ref["wh1"]) == (10, 0, 10)

        receipts = _movements(session_factory, ReferenceType.PURCHASE_ORDER.value, po.id)
        assert [m.movement_type for m in receipts] == [MovementType.PURCHASE_RECEIPT] * 3
        assert receipts[2].performed_by_id == test_actor_id

    def test_receive_requires_ordered(self, coordinator, reference_data, test_actor_id):
        po = coordinator.create_purchase_order("PO-1", test_actor_id)
        line = coordinator.add_purchase_line(po.id, reference_data["p1"], reference_data["wh1"], 5)
        with pytest.raises(InvalidOrderTransitionError):
            coordinator.receive(line.id, 5)

    def test_over_receipt_rejected(self, coordinator, reference_data, test_actor_id):
        ref = reference_data
        po = coordinator.create_purchase_order("PO-1", test_actor_id)
        line = coordinator.add_purchase_line(po.id, ref["p1"], ref["wh1"], 10)
        coordinator.place_purchase_order(po.id)
        coordinator.receive(line.id, 6)

        with pytest.raises(OverFulfillmentError) as exc_info:
            coordinator.receive(line.id, 5)

        assert isinstance(exc_info.value, ValidationError)
        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (6, 0, 6)
        assert coordinator.get_purchase_order(po.id).lines[0].fulfilled == Decimal("6")

    def test_cancel_purchase_order(self, coordinator, reference_data, test_actor_id):
        ref = reference_data
        po = coordinator.create_purchase_order("PO-1", test_actor_id)
        line = coordinator.add_purchase_line(po.id, ref["p1"], ref["wh1"], 10)
        coordinator.place_purchase_order(po.id)
        coordinator.receive(line.id, 4)

        assert coordinator.cancel_purchase_order(po.id).status == "CANCELLED"
        # received stock stays
        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (4, 0, 4)
        with pytest.raises(InvalidOrderTransitionError):
            coordinator.receive(line.id, 1)
        with pytest.raises(InvalidOrderTransitionError):
            coordinator.cancel_purchase_order(po.id)


# =============================================================================
# Sales workflow
# =============================================================================


class TestSalesWorkflow:

    def test_confirm_is_atomic_across_lines(
        self, coordinator, reference_data, stocked, sales_order
    ):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 50)
        stocked(ref["p2"], ref["wh1"], 5)
        so = sales_order([(ref["p1"], ref["wh1"], 20), (ref["p2"], ref["wh1"], 6)])

        with pytest.raises(InsufficientStockError):
            coordinator.confirm_sales_order(so.id)

        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (50, 0, 50)
        assert _inventory(coordinator, ref["p2"], ref["wh1"]) == (5, 0, 5)
        view = coordinator.get_sales_order(so.id)
        assert view.status == "DRAFT"
        assert all(line.reserved == 0 for line in view.lines)

    def test_confirm_requires_a_line(self, coordinator, reference_data, test_actor_id):
        so = coordinator.create_sales_order("SO-1", test_actor_id)
        with pytest.raises(EmptyOrderError):
            coordinator.confirm_sales_order(so.id)

    def test_two_lines_same_key(self, coordinator, reference_data, stocked, sales_order):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 10)
        so = sales_order([(ref["p1"], ref["wh1"], 4), (ref["p1"], ref["wh1"], 6)])

        coordinator.confirm_sales_order(so.id)
        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (10, 10, 0)

    def test_partial_shipments(self, coordinator, reference_data, stocked, sales_order):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 100)
        so = sales_order([(ref["p1"], ref["wh1"], 30)])
        coordinator.confirm_sales_order(so.id)
        line_id = so.lines[0].id

        coordinator.ship(line_id, 10)
        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (90, 20, 70)
        assert coordinator.get_sales_order(so.id).status == "CONFIRMED"

        coordinator.ship(line_id, 20)
        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (70, 0, 70)
        assert coordinator.get_sales_order(so.id).status == "FULFILLED"

    def test_ship_requires_confirmed(self, coordinator, reference_data, stocked, sales_order):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 10)
        so = sales_order([(ref["p1"], ref["wh1"], 5)])
        with pytest.raises(InvalidOrderTransitionError):
            coordinator.ship(so.lines[0].id, 5)
        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (10, 0, 10)

    def test_over_shipment_rejected(self, coordinator, reference_data, stocked, sales_order):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 100)
        so = sales_order([(ref["p1"], ref["wh1"], 30)])
        coordinator.confirm_sales_order(so.id)

        with pytest.raises(OverFulfillmentError):
            coordinator.ship(so.lines[0].id, 31)

        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (100, 30, 70)
        assert coordinator.get_sales_order(so.id).lines[0].fulfilled == 0

    def test_cancel_confirmed_releases_reservations(
        self, coordinator, reference_data, stocked, sales_order
    ):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 100)
        stocked(ref["p2"], ref["wh2"], 10)
        so = sales_order([(ref["p1"], ref["wh1"], 30), (ref["p2"], ref["wh2"], 10)])
        coordinator.confirm_sales_order(so.id)
        coordinator.ship(so.lines[0].id, 10)

        cancelled = coordinator.cancel_sales_order(so.id)

        assert cancelled.status == "CANCELLED"
        assert all(line.reserved == 0 for line in cancelled.lines)
        # shipped stock stays shipped
        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (90, 0, 90)
        assert _inventory(coordinator, ref["p2"], ref["wh2"]) == (10, 0, 10)

    def test_cancel_draft(self, coordinator, reference_data, sales_order):
        so = sales_order([(reference_data["p1"], reference_data["wh1"], 3)])
        assert coordinator.cancel_sales_order(so.id).status == "CANCELLED"
        with pytest.raises(InvalidOrderTransitionError):
            coordinator.confirm_sales_order(so.id)


# =============================================================================
# Movements outside orders
# =============================================================================


class TestTransfer:

    def test_transfer_pairs_movements(self, coordinator, reference_data, stocked, session_factory):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 50)

        outbound, inbound = coordinator.transfer(ref["p1"], ref["wh1"], ref["wh2"], 20)

        assert outbound.movement_type == MovementType.TRANSFER_OUT
        assert inbound.movement_type == MovementType.TRANSFER_IN
        assert outbound.reference_id == inbound.reference_id
        assert outbound.reference_type == ReferenceType.TRANSFER.value
        assert inbound.seq == outbound.seq + 1
        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (30, 0, 30)
        assert _inventory(coordinator, ref["p1"], ref["wh2"]) == (20, 0, 20)
        assert len(_movements(session_factory, "TRANSFER", outbound.reference_id)) == 2

    def test_transfer_cannot_take_reserved_stock(
        self, coordinator, reference_data, stocked, sales_order
    ):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 50)
        so = sales_order([(ref["p1"], ref["wh1"], 40)])
        coordinator.confirm_sales_order(so.id)

        with pytest.raises(InsufficientStockError):
            coordinator.transfer(ref["p1"], ref["wh1"], ref["wh2"], 11)
        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (50, 40, 10)
        assert _inventory(coordinator, ref["p1"], ref["wh2"]) == (0, 0, 0)

    def test_same_warehouse_rejected(self, coordinator, reference_data):
        with pytest.raises(InvalidMovementError):
            coordinator.transfer(reference_data["p1"], reference_data["wh1"], reference_data["wh1"], 1)


class TestAdjust:

    def test_positive_and_negative_adjustments(self, coordinator, reference_data, stocked):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 10)

        up = coordinator.adjust(ref["p1"], ref["wh1"], 5, notes="cycle count")
        assert up.to_warehouse_id == ref["wh1"] and up.from_warehouse_id is None
        assert up.reference_type == ReferenceType.ADJUSTMENT.value

        down = coordinator.adjust(ref["p1"], ref["wh1"], "-3")
        assert down.from_warehouse_id == ref["wh1"] and down.to_warehouse_id is None
        assert down.delta == Decimal("-3")
        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (12, 0, 12)

    def test_adjust_into_empty_key(self, coordinator, reference_data):
        coordinator.adjust(reference_data["p2"], reference_data["wh3"], 7)
        assert _inventory(coordinator, reference_data["p2"], reference_data["wh3"]) == (7, 0, 7)

    @pytest.mark.parametrize("delta", [0, "0", 1.5, "abc", "sNaN", "NaN", "-Infinity", "1E+30"])
    def test_invalid_delta(self, coordinator, reference_data, delta):
        with pytest.raises(InvalidQuantityError):
            coordinator.adjust(reference_data["p1"], reference_data["wh1"], delta)

    def test_negative_adjustment_beyond_available(
        self, coordinator, reference_data, stocked, sales_order
    ):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 10)
        so = sales_order([(ref["p1"], ref["wh1"], 8)])
        coordinator.confirm_sales_order(so.id)

        with pytest.raises(InsufficientStockError):
            coordinator.adjust(ref["p1"], ref["wh1"], -3)
        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (10, 8, 2)


class TestReturns:

    def test_return_against_sales_line(
        self, coordinator, reference_data, stocked, sales_order
    ):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 10)
        so = sales_order([(ref["p1"], ref["wh1"], 5)])
        coordinator.confirm_sales_order(so.id)
        coordinator.ship(so.lines[0].id, 5)

        returned = coordinator.record_return(
            ref["p1"], ref["wh3"], 2, so_line_id=so.lines[0].id, notes="damaged box"
        )

        assert returned.movement_type == MovementType.RETURN
        assert returned.reference_id == so.id
        assert returned.order_line_id == so.lines[0].id
        assert _inventory(coordinator, ref["p1"], ref["wh3"]) == (2, 0, 2)
        assert coordinator.get_sales_order(so.id).status == "FULFILLED"

    def test_return_without_order(self, coordinator, reference_data):
        returned = coordinator.record_return(reference_data["p2"], reference_data["wh1"], 1)
        assert returned.reference_type == ReferenceType.RETURN.value
        assert returned.reference_id is None

    def test_return_for_other_product_rejected(
        self, coordinator, reference_data, sales_order
    ):
        so = sales_order([(reference_data["p1"], reference_data["wh1"], 5)])
        with pytest.raises(InvalidMovementError):
            coordinator.record_return(
                reference_data["p2"], reference_data["wh1"], 1, so_line_id=so.lines[0].id
            )


# =============================================================================
# Transaction boundary and logging
# =============================================================================


class TestTransactionBoundary:

    def test_failed_operation_leaves_no_trace(
        self, coordinator, reference_data, stocked, sales_order, session_factory
    ):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 100)
        so = sales_order([(ref["p1"], ref["wh1"], 30)])
        coordinator.confirm_sales_order(so.id)
        before = len(_replay(session_factory, ref["p1"], ref["wh1"]))

        with pytest.raises(OverFulfillmentError):
            coordinator.ship(so.lines[0].id, 50)

        assert len(_replay(session_factory, ref["p1"], ref["wh1"])) == before

    def test_oversized_quantities_rejected_as_validation(
        self, coordinator, reference_data, stocked, captured_logs, test_actor_id
    ):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], "9000000000")
        with pytest.raises(InvalidQuantityError):
            stocked(ref["p1"], ref["wh1"], "9000000000")
        so = coordinator.create_sales_order("SO-HUGE", test_actor_id)
        with pytest.raises(InvalidQuantityError):
            coordinator.add_sales_line(so.id, ref["p1"], ref["wh1"], "1E+30")

        assert _inventory(coordinator, ref["p1"], ref["wh1"]) == (9000000000, 0, 9000000000)
        assert coordinator.get_sales_order(so.id).lines == ()
        assert coordinator.reconcile(ref["p1"], ref["wh1"]).ok
        messages = [r["message"] for r in captured_logs()]
        assert "operation_rejected" in messages
        assert "operation_failed" not in messages

    def test_lifecycle_logs(self, coordinator, reference_data, stocked, captured_logs, test_actor_id):
        ref = reference_data
        stocked(ref["p1"], ref["wh1"], 10)
        coordinator.adjust(ref["p1"], ref["wh1"], 1, performed_by_id=test_actor_id)
        with pytest.raises(InsufficientStockError):
            coordinator.adjust(ref["p1"], ref["wh1"], -100)

        logs = [r for r in captured_logs() if r.get("operation") == "adjust"]
        messages = [r["message"] for r in logs]
        assert messages.count("operation_started") == 2
        assert "operation_completed" in messages
        assert "operation_rejected" in messages

        completed = next(r for r in logs if r["message"] == "operation_completed")
        assert completed["actor_id"] == str(test_actor_id)
        assert "correlation_id" in completed
        assert completed["duration_ms"] >= 0
        rejected = next(r for r in logs if r["message"] == "operation_rejected")
        assert rejected["level"] == "WARNING"
        assert rejected["exc_code"] == "INSUFFICIENT_STOCK"

    def test_from_config(self, session_factory, deterministic_clock):
        from inventory_config.schema import (
            ConcurrencyConfig,
            InventoryConfig,
            ReconciliationConfig,
        )
        from inventory_kernel.services.fulfillment_coordinator import FulfillmentCoordinator

        config = InventoryConfig(
            config_id="test",
            version=1,
            concurrency=ConcurrencyConfig(lock_timeout_seconds=2.5, statement_timeout_ms=500),
            reconciliation=ReconciliationConfig(persist_drift_reports=False),
        )
        coordinator = FulfillmentCoordinator.from_config(
            config, session_factory, clock=deterministic_clock
        )
        assert coordinator._lock_timeout == 2.5
        assert coordinator._statement_timeout_ms == 500
        assert coordinator._persist_drift_reports is False

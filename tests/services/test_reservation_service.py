"""
Tests for ReservationManager.

Covers:
- reserve succeeds only when available covers the request (no partial)
- release/consume never drive reserved negative
- reservations never appear in the ledger
"""

from decimal import Decimal

import pytest

from inventory_kernel.domain.dtos import MovementDraft
from inventory_kernel.domain.movements import MovementType
from inventory_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    InvariantViolation,
)
from inventory_kernel.models.movement import StockMovement
from inventory_kernel.services.ledger_service import LedgerService
from inventory_kernel.services.projection_service import InventoryProjection
from inventory_kernel.services.reservation_service import ReservationManager


@pytest.fixture
def projection(session, deterministic_clock):
    return InventoryProjection(session, deterministic_clock)


@pytest.fixture
def reservations(session, deterministic_clock, projection):
    return ReservationManager(session, deterministic_clock, projection)


@pytest.fixture
def on_hand_100(session, deterministic_clock, projection, reference_data):
    """P1 at WH1 with quantity 100."""
    ledger = LedgerService(session, deterministic_clock)
    movement_id = ledger.append(
        MovementDraft(
            movement_type=MovementType.PURCHASE_RECEIPT,
            product_id=reference_data["p1"],
            quantity=Decimal("100"),
            to_warehouse_id=reference_data["wh1"],
        )
    )
    projection.apply(ledger.get(movement_id))
    return reference_data["p1"], reference_data["wh1"]


class TestReserve:

    def test_reserve_reduces_available(self, reservations, on_hand_100):
        snap = reservations.reserve(*on_hand_100, 30)
        assert snap.quantity == Decimal("100")
        assert snap.reserved == Decimal("30")
        assert snap.available == Decimal("70")

    def test_second_reservation_exceeding_available_rejected(
        self, reservations, on_hand_100, captured_logs
    ):
        reservations.reserve(*on_hand_100, 80)

        with pytest.raises(InsufficientStockError) as exc_info:
            reservations.reserve(*on_hand_100, 30)

        err = exc_info.value
        assert err.requested == "30"
        assert Decimal(err.available) == Decimal("20")
        snap = reservations._projection.get(*on_hand_100)
        assert snap.reserved == Decimal("80")
        rejected = [r for r in captured_logs() if r["message"] == "reservation_rejected"]
        assert rejected and rejected[0]["level"] == "WARNING"

    def test_reserve_exactly_available(self, reservations, on_hand_100):
        assert reservations.reserve(*on_hand_100, 100).available == Decimal("0")

    def test_reserve_on_empty_key_rejected(self, reservations, reference_data):
        with pytest.raises(InsufficientStockError):
            reservations.reserve(reference_data["p2"], reference_data["wh1"], 1)

    @pytest.mark.parametrize("quantity", [0, -5])
    def test_non_positive_rejected(self, reservations, on_hand_100, quantity):
        with pytest.raises(InvalidQuantityError):
            reservations.reserve(*on_hand_100, quantity)

    def test_reservation_writes_no_movement(self, reservations, session, on_hand_100):
        reservations.reserve(*on_hand_100, 10)
        assert session.query(StockMovement).count() == 1


class TestReleaseAndConsume:

    def test_release(self, reservations, on_hand_100):
        reservations.reserve(*on_hand_100, 30)
        snap = reservations.release(*on_hand_100, 10)
        assert snap.reserved == Decimal("20")
        assert snap.quantity == Decimal("100")

    def test_consume(self, reservations, on_hand_100, captured_logs):
        reservations.reserve(*on_hand_100, 30)
        assert reservations.consume(*on_hand_100, 30).reserved == Decimal("0")
        assert any(r["message"] == "reservation_consumed" for r in captured_logs())

    def test_release_more_than_reserved_raises(self, reservations, on_hand_100, captured_logs):
        reservations.reserve(*on_hand_100, 5)

        with pytest.raises(InvariantViolation) as exc_info:
            reservations.release(*on_hand_100, 6)

        assert exc_info.value.invariant == "reserved_non_negative"
        assert reservations._projection.get(*on_hand_100).reserved == Decimal("5")
        underflow = [r for r in captured_logs() if r["message"] == "reservation_underflow"]
        assert underflow and underflow[0]["level"] == "ERROR"

    def test_consume_with_nothing_reserved_raises(self, reservations, on_hand_100):
        with pytest.raises(InvariantViolation):
            reservations.consume(*on_hand_100, 1)

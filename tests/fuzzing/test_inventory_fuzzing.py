"""
Hypothesis-based fuzzing of quantities and coordinator operation sequences.

Boundaries fuzzed here:
- Quantities: decimal places, integer digits, sign, floats, non-numeric strings
- Replay: any interleaving of inbound/outbound deltas folds to their sum
- Operation sequences: random adjust/reserve/ship/cancel runs against a
  simple in-memory model; quantity >= 0 and reserved <= quantity hold after
  every step and the ledger agrees with the projection at the end

Boundaries not fuzzed here (covered by explicit tests):
- Concurrency (tests/concurrency)
- Immutability listeners (tests/models)
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from inventory_kernel.domain.movements import (
    replay_quantity,
    signed_delta,
    to_quantity,
)
from inventory_kernel.exceptions import InsufficientStockError, InvalidQuantityError
from inventory_kernel.services.reference_data_service import ReferenceDataService

quantities = st.decimals(
    min_value=Decimal("0.0001"),
    max_value=Decimal("1000000"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
)


class TestQuantityFuzzing:

    @given(value=quantities)
    def test_valid_quantities_round_trip(self, value):
        assert to_quantity(value) == value
        assert to_quantity(str(value)) == value

    @given(value=st.decimals(max_value=Decimal("0"), allow_nan=False, allow_infinity=False))
    def test_non_positive_rejected(self, value):
        with pytest.raises(InvalidQuantityError):
            to_quantity(value)

    @given(value=st.floats(allow_nan=True, allow_infinity=True))
    def test_floats_always_rejected(self, value):
        with pytest.raises(InvalidQuantityError):
            to_quantity(value)

    @given(value=st.decimals(min_value=Decimal("0.00001"), max_value=Decimal("1"), places=5))
    def test_excess_precision_rejected(self, value):
        with pytest.raises(InvalidQuantityError):
            to_quantity(value)

    @given(value=st.decimals(min_value=Decimal("1E+10"), max_value=Decimal("1E+40"), places=0))
    def test_more_than_ten_integer_digits_rejected(self, value):
        with pytest.raises(InvalidQuantityError):
            to_quantity(value)

    @given(text=st.text(alphabet="abcxyz!@# ", min_size=1, max_size=10))
    def test_garbage_rejected(self, text):
        with pytest.raises(InvalidQuantityError):
            to_quantity(text)


class TestReplayFuzzing:

    @given(
        moves=st.lists(
            st.tuples(st.booleans(), st.integers(min_value=1, max_value=500)),
            max_size=40,
        )
    )
    def test_replay_is_sum_of_signed_deltas(self, moves):
        warehouse = uuid4()
        deltas = [
            signed_delta(
                Decimal(q),
                None if inbound else warehouse,
                warehouse if inbound else None,
            )
            for inbound, q in moves
        ]
        expected = sum((q if inbound else -q) for inbound, q in moves)
        assert replay_quantity(deltas) == Decimal(expected)
        assert replay_quantity(reversed(deltas)) == replay_quantity(deltas)


operations = st.lists(
    st.one_of(
        st.tuples(st.just("in"), st.integers(min_value=1, max_value=50)),
        st.tuples(st.just("out"), st.integers(min_value=1, max_value=50)),
        st.tuples(st.just("reserve"), st.integers(min_value=1, max_value=50)),
        st.tuples(st.just("ship"), st.integers(min_value=0, max_value=5)),
        st.tuples(st.just("cancel"), st.integers(min_value=0, max_value=5)),
    ),
    min_size=1,
    max_size=15,
)


class TestOperationSequenceFuzzing:

    @settings(
        max_examples=20,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(ops=operations)
    def test_sequence_matches_model(
        self, ops, coordinator, reference_data, session_factory, test_actor_id
    ):
        # fresh warehouse per example; the database outlives examples
        sess = session_factory()
        try:
            warehouse_id = ReferenceDataService(sess).register_warehouse(
                f"FZ-{uuid4().hex[:8]}", "Fuzz", test_actor_id
            ).id
            sess.commit()
        finally:
            sess.close()
        product_id = reference_data["p1"]

        quantity = 0
        reserved = 0
        open_orders: list[tuple] = []  # (so_id, line_id, qty)

        for op, n in ops:
            if op == "in":
                coordinator.adjust(product_id, warehouse_id, n)
                quantity += n
            elif op == "out":
                if n > quantity - reserved:
                    with pytest.raises(InsufficientStockError):
                        coordinator.adjust(product_id, warehouse_id, -n)
                else:
                    coordinator.adjust(product_id, warehouse_id, -n)
                    quantity -= n
            elif op == "reserve":
                so = coordinator.create_sales_order(f"FZ-{uuid4().hex}", test_actor_id)
                line = coordinator.add_sales_line(so.id, product_id, warehouse_id, n)
                if n > quantity - reserved:
                    with pytest.raises(InsufficientStockError):
                        coordinator.confirm_sales_order(so.id)
                else:
                    coordinator.confirm_sales_order(so.id)
                    reserved += n
                    open_orders.append((so.id, line.id, n))
            elif open_orders:
                so_id, line_id, qty = open_orders.pop(n % len(open_orders))
                if op == "ship":
                    coordinator.ship(line_id, qty)
                    quantity -= qty
                else:
                    coordinator.cancel_sales_order(so_id)
                reserved -= qty

            snap = coordinator.get_snapshot(product_id, warehouse_id)
            assert snap.quantity == Decimal(quantity)
            assert snap.reserved == Decimal(reserved)
            assert Decimal(0) <= snap.reserved <= snap.quantity

        result = coordinator.reconcile(product_id, warehouse_id)
        assert result.ok
        assert result.ledger_quantity == Decimal(quantity)

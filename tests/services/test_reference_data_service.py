"""Tests for ReferenceDataService (units, products, warehouses)."""

from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.exceptions import (
    DuplicateReferenceError,
    ProductInactiveError,
    UnitNotFoundError,
    ValidationError,
    WarehouseInactiveError,
)
from inventory_kernel.services.reference_data_service import ReferenceDataService, to_price


@pytest.fixture
def svc(session, deterministic_clock):
    return ReferenceDataService(session, deterministic_clock)


class TestRegistration:

    def test_register_product(self, svc, test_actor_id):
        unit = svc.register_unit("KG", "Kilogram")
        product = svc.register_product(
            "SKU-X", "Flour", unit.id, test_actor_id, purchase_price="1.25"
        )
        assert product.unit_code == "KG"
        assert product.purchase_price == Decimal("1.25")
        assert product.retail_price == Decimal("0")
        assert product.is_active
        assert svc.find_product_by_sku("SKU-X").id == product.id
        assert svc.find_product_by_sku("missing") is None

    def test_duplicate_sku_rejected(self, svc, reference_data, test_actor_id):
        with pytest.raises(DuplicateReferenceError) as exc_info:
            svc.register_product("SKU-001", "Again", reference_data["unit"], test_actor_id)
        assert exc_info.value.code == "DUPLICATE_REFERENCE"

    def test_duplicate_unit_and_warehouse_rejected(self, svc, reference_data, test_actor_id):
        with pytest.raises(DuplicateReferenceError):
            svc.register_unit("EA", "Each again")
        with pytest.raises(DuplicateReferenceError):
            svc.register_warehouse("WH1", "Main again", test_actor_id)

    def test_unknown_unit_rejected(self, svc, test_actor_id):
        with pytest.raises(UnitNotFoundError):
            svc.register_product("SKU-Y", "Thing", uuid4(), test_actor_id)

    def test_negative_capacity_rejected(self, svc, test_actor_id):
        with pytest.raises(ValidationError):
            svc.register_warehouse("WH9", "Tiny", test_actor_id, capacity=-1)

    @pytest.mark.parametrize("value", [-1, "abc", 1.5, "NaN", "0.00001"])
    def test_invalid_price(self, value):
        with pytest.raises(ValidationError):
            to_price(value)


class TestUpdates:

    def test_update_descriptive_fields(self, svc, reference_data, test_actor_id):
        updated = svc.update_product(
            reference_data["p1"], test_actor_id, name="Widget v2", retail_price="5"
        )
        assert updated.name == "Widget v2"
        assert updated.retail_price == Decimal("5")

    def test_update_unknown_field_rejected(self, svc, reference_data, test_actor_id):
        with pytest.raises(ValidationError, match="is_active"):
            svc.update_product(reference_data["p1"], test_actor_id, is_active=False)

    def test_update_sku_to_taken_value_rejected(self, svc, reference_data, test_actor_id):
        with pytest.raises(DuplicateReferenceError):
            svc.update_product(reference_data["p1"], test_actor_id, sku="SKU-002")

    def test_change_unit_before_any_movement(self, svc, reference_data, test_actor_id):
        box = svc.register_unit("BOX", "Box")
        updated = svc.update_product(reference_data["p2"], test_actor_id, unit_id=box.id)
        assert updated.unit_code == "BOX"

    def test_deactivation_blocks_active_lookup(self, svc, reference_data, test_actor_id):
        info = svc.deactivate_product(reference_data["p1"], test_actor_id)
        assert info.is_active is False
        with pytest.raises(ProductInactiveError):
            svc.require_active_product(reference_data["p1"])

        svc.deactivate_warehouse(reference_data["wh2"], test_actor_id)
        with pytest.raises(WarehouseInactiveError):
            svc.require_active_warehouse(reference_data["wh2"])
        assert svc.get_warehouse(reference_data["wh2"]).is_active is False

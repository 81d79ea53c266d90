"""
Service layer for reference data: units, products, warehouses.

Registration and deactivation for the collaborators that own catalog
maintenance, plus the ``require_*`` lookups the ledger and coordinator use to
reject movements against missing or inactive references.

Returns UnitInfo/ProductInfo/WarehouseInfo DTOs instead of ORM entities.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import ProductInfo, UnitInfo, WarehouseInfo
from inventory_kernel.exceptions import (
    DuplicateReferenceError,
    ProductInactiveError,
    ProductNotFoundError,
    UnitNotFoundError,
    ValidationError,
    WarehouseInactiveError,
    WarehouseNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.product import Product, Unit
from inventory_kernel.models.warehouse import Warehouse
from inventory_kernel.services.base import BaseService

logger = get_logger("services.reference_data")

_EDITABLE_PRODUCT_FIELDS = frozenset({
    "name",
    "description",
    "purchase_price",
    "retail_price",
    "sku",
    "unit_id",
})


def to_price(value: object) -> Decimal:
    if isinstance(value, (bool, float)):
        raise ValidationError(f"Invalid price {value!r}: must be an int, str or Decimal")
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid price {value!r}: not a number")
    if not price.is_finite() or price < 0:
        raise ValidationError(f"Invalid price {value!r}: must be finite and >= 0")
    if price.as_tuple().exponent < -4:
        raise ValidationError(f"Invalid price {value!r}: at most 4 decimal places")
    return price


class ReferenceDataService(BaseService):
    """
    Service for managing units, products and warehouses.

    Products and warehouses are never deleted once stock has moved through
    them; they are deactivated, which keeps history readable and blocks new
    movements and order lines.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # ------------------------------------------------------------------
    # DTO conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _unit_dto(unit: Unit) -> UnitInfo:
        return UnitInfo(
            id=unit.id,
            code=unit.code,
            name=unit.name,
            description=unit.description,
        )

    @staticmethod
    def _product_dto(product: Product) -> ProductInfo:
        return ProductInfo(
            id=product.id,
            sku=product.sku,
            name=product.name,
            unit_id=product.unit_id,
            unit_code=product.unit.code,
            purchase_price=Decimal(product.purchase_price),
            retail_price=Decimal(product.retail_price),
            is_active=product.is_active,
            description=product.description,
        )

    @staticmethod
    def _warehouse_dto(warehouse: Warehouse) -> WarehouseInfo:
        return WarehouseInfo(
            id=warehouse.id,
            code=warehouse.code,
            name=warehouse.name,
            is_active=warehouse.is_active,
            address=warehouse.address,
            capacity=warehouse.capacity,
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def require_unit(self, unit_id: UUID) -> Unit:
        unit = self.session.get(Unit, unit_id)
        if unit is None:
            raise UnitNotFoundError(str(unit_id))
        return unit

    def require_product(self, product_id: UUID) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def require_warehouse(self, warehouse_id: UUID) -> Warehouse:
        warehouse = self.session.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise WarehouseNotFoundError(str(warehouse_id))
        return warehouse

    def require_active_product(self, product_id: UUID) -> Product:
        """
        Raises:
            ProductNotFoundError: No product with this id.
            ProductInactiveError: Product exists but is deactivated.
        """
        product = self.require_product(product_id)
        if not product.is_active:
            raise ProductInactiveError(str(product_id), sku=product.sku)
        return product

    def require_active_warehouse(self, warehouse_id: UUID) -> Warehouse:
        """
        Raises:
            WarehouseNotFoundError: No warehouse with this id.
            WarehouseInactiveError: Warehouse exists but is deactivated.
        """
        warehouse = self.require_warehouse(warehouse_id)
        if not warehouse.is_active:
            raise WarehouseInactiveError(str(warehouse_id), warehouse_code=warehouse.code)
        return warehouse

    def get_product(self, product_id: UUID) -> ProductInfo:
        return self._product_dto(self.require_product(product_id))

    def get_warehouse(self, warehouse_id: UUID) -> WarehouseInfo:
        return self._warehouse_dto(self.require_warehouse(warehouse_id))

    def find_product_by_sku(self, sku: str) -> ProductInfo | None:
        product = self.session.execute(
            select(Product).where(Product.sku == sku)
        ).scalar_one_or_none()
        return self._product_dto(product) if product else None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_unit(
        self,
        code: str,
        name: str,
        description: str | None = None,
    ) -> UnitInfo:
        """
        Register a unit of measure.

        Raises:
            DuplicateReferenceError: ``code`` is already registered.
        """
        existing = self.session.execute(
            select(Unit).where(Unit.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateReferenceError("Unit", code)

        unit = Unit(code=code, name=name, description=description)
        self.session.add(unit)
        self.session.flush()

        logger.info("unit_registered", extra={"unit_id": str(unit.id), "code": code})
        return self._unit_dto(unit)

    def register_product(
        self,
        sku: str,
        name: str,
        unit_id: UUID,
        created_by_id: UUID,
        description: str | None = None,
        purchase_price: Decimal | int | str = 0,
        retail_price: Decimal | int | str = 0,
    ) -> ProductInfo:
        """
        Register a product.

        Args:
            sku: Unique stock keeping unit code.
            name: Display name.
            unit_id: Unit of measure; copied onto every movement.
            created_by_id: Employee registering the product.
            description: Free text.
            purchase_price: Informational cost (>= 0).
            retail_price: Informational selling price (>= 0).

        Raises:
            DuplicateReferenceError: ``sku`` is already registered.
            UnitNotFoundError: ``unit_id`` does not exist.
            ValidationError: A price is negative or not a number.
        """
        self.require_unit(unit_id)
        existing = self.session.execute(
            select(Product).where(Product.sku == sku)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateReferenceError("Product", sku)

        product = Product(
            sku=sku,
            name=name,
            description=description,
            unit_id=unit_id,
            purchase_price=to_price(purchase_price),
            retail_price=to_price(retail_price),
            is_active=True,
            created_by_id=created_by_id,
        )
        self.session.add(product)
        self.session.flush()

        logger.info(
            "product_registered",
            extra={"product_id": str(product.id), "sku": sku, "unit_id": str(unit_id)},
        )
        return self._product_dto(product)

    def register_warehouse(
        self,
        code: str,
        name: str,
        created_by_id: UUID,
        address: str | None = None,
        capacity: int | None = None,
    ) -> WarehouseInfo:
        """
        Register a warehouse.

        Raises:
            DuplicateReferenceError: ``code`` is already registered.
        """
        existing = self.session.execute(
            select(Warehouse).where(Warehouse.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateReferenceError("Warehouse", code)
        if capacity is not None and capacity < 0:
            raise ValidationError(f"Warehouse capacity must be >= 0, got {capacity}")

        warehouse = Warehouse(
            code=code,
            name=name,
            address=address,
            capacity=capacity,
            is_active=True,
            created_by_id=created_by_id,
        )
        self.session.add(warehouse)
        self.session.flush()

        logger.info(
            "warehouse_registered",
            extra={"warehouse_id": str(warehouse.id), "code": code},
        )
        return self._warehouse_dto(warehouse)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update_product(
        self,
        product_id: UUID,
        updated_by_id: UUID,
        **changes: object,
    ) -> ProductInfo:
        """
        Change editable product fields.

        ``sku`` and ``unit_id`` are accepted here but the immutability
        listener rejects them at flush once any movement references the
        product.

        Raises:
            ValidationError: An unknown field was passed.
            ImmutabilityViolationError: Identity change on a referenced product.
        """
        unknown = set(changes) - _EDITABLE_PRODUCT_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update product fields: {sorted(unknown)}")

        product = self.require_product(product_id)
        for field_name in ("purchase_price", "retail_price"):
            if field_name in changes:
                changes[field_name] = to_price(changes[field_name])
        if "unit_id" in changes:
            self.require_unit(changes["unit_id"])
        if "sku" in changes and changes["sku"] != product.sku:
            taken = self.session.execute(
                select(Product.id).where(Product.sku == changes["sku"])
            ).scalar_one_or_none()
            if taken is not None:
                raise DuplicateReferenceError("Product", str(changes["sku"]))

        for field_name, value in changes.items():
            setattr(product, field_name, value)
        product.updated_by_id = updated_by_id
        self.session.flush()
        # unit relationship is joined-loaded; refresh after a unit change
        self.session.refresh(product)

        logger.info(
            "product_updated",
            extra={"product_id": str(product_id), "fields": sorted(changes)},
        )
        return self._product_dto(product)

    def deactivate_product(self, product_id: UUID, updated_by_id: UUID) -> ProductInfo:
        product = self.require_product(product_id)
        product.is_active = False
        product.updated_by_id = updated_by_id
        self.session.flush()
        logger.info("product_deactivated", extra={"product_id": str(product_id)})
        return self._product_dto(product)

    def deactivate_warehouse(self, warehouse_id: UUID, updated_by_id: UUID) -> WarehouseInfo:
        warehouse = self.require_warehouse(warehouse_id)
        warehouse.is_active = False
        warehouse.updated_by_id = updated_by_id
        self.session.flush()
        logger.info("warehouse_deactivated", extra={"warehouse_id": str(warehouse_id)})
        return self._warehouse_dto(warehouse)

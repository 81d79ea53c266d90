"""Services for the inventory kernel (write side)."""

from inventory_kernel.services.consistency_checker import ConsistencyChecker
from inventory_kernel.services.fulfillment_coordinator import FulfillmentCoordinator
from inventory_kernel.services.ledger_service import LedgerService
from inventory_kernel.services.lock_manager import KeyedLockManager
from inventory_kernel.services.projection_service import InventoryProjection
from inventory_kernel.services.reference_data_service import ReferenceDataService
from inventory_kernel.services.reservation_service import ReservationManager
from inventory_kernel.services.sequence_service import SequenceService

__all__ = [
    "ConsistencyChecker",
    "FulfillmentCoordinator",
    "InventoryProjection",
    "KeyedLockManager",
    "LedgerService",
    "ReferenceDataService",
    "ReservationManager",
    "SequenceService",
]

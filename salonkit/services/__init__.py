"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .availability import AvailabilityResolver, AvailabilitySourceProtocol
from .booking import BookingSelection, BookingService
from .catalog_refresh import CatalogRefresher, CatalogSnapshot
from .checkout import CheckoutError, CheckoutOrchestrator, CheckoutSuccess, lookup_inventory

__all__ = [
    "AvailabilityResolver",
    "AvailabilitySourceProtocol",
    "BookingSelection",
    "BookingService",
    "CatalogRefresher",
    "CatalogSnapshot",
    "CheckoutError",
    "CheckoutOrchestrator",
    "CheckoutSuccess",
    "lookup_inventory",
]

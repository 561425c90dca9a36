"""
Domain layer - Pure business logic without external dependencies.
"""

from .cart import Cart
from .models import (
    Availability,
    Booking,
    BookingSettings,
    BookingStatus,
    CalendarBehavior,
    CampaignPrice,
    CartItem,
    CheckoutSession,
    CustomerInfo,
    OpeningHours,
    Product,
    Provider,
    Service,
    SessionStatus,
    TimeRange,
    TimeSlot,
    Unavailable,
    UnavailableReason,
    Variant,
)
from .results import Err, ErrorKind, Ok
from .slot_calculator import SlotCalculator

__all__ = [
    "Availability",
    "Booking",
    "BookingSettings",
    "BookingStatus",
    "CalendarBehavior",
    "CampaignPrice",
    "Cart",
    "CartItem",
    "CheckoutSession",
    "CustomerInfo",
    "Err",
    "ErrorKind",
    "Ok",
    "OpeningHours",
    "Product",
    "Provider",
    "Service",
    "SessionStatus",
    "SlotCalculator",
    "TimeRange",
    "TimeSlot",
    "Unavailable",
    "UnavailableReason",
    "Variant",
]

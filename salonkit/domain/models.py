"""
Domain models for booking availability and checkout.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import time
from enum import Enum
from typing import Dict, List, Optional

import pendulum
from pendulum import Date, DateTime

from .exceptions import InvalidTransitionError

WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def weekday_name(day: Date) -> str:
    """Return the lowercase English weekday name used as settings key."""
    return WEEKDAY_NAMES[day.isoweekday() - 1]


def parse_clock(value: str) -> time:
    """
    Parse an ``HH:MM`` wall-clock string.

    Raises:
        ValueError: If the value is not a valid clock time
    """
    try:
        hours, minutes = value.strip().split(":")[:2]
        return time(hour=int(hours), minute=int(minutes))
    except (AttributeError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid clock time: {value!r}") from exc


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable half-open time range ``[start, end)``.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another. Touching ranges do not overlap."""
        return self.start < other.end and self.end > other.start

    def __str__(self) -> str:
        return f"{self.start.format('YYYY-MM-DD HH:mm')} - {self.end.format('HH:mm')}"


@dataclass(frozen=True)
class Service:
    """A bookable salon service."""
    id: str
    name: str
    duration_minutes: int

    def __post_init__(self):
        if self.duration_minutes <= 0:
            raise ValueError(f"Service {self.id} must have a positive duration")


@dataclass(frozen=True)
class OpeningHours:
    """Opening hours for a single weekday."""
    is_open: bool
    start: Optional[time] = None
    end: Optional[time] = None

    @property
    def resolvable(self) -> bool:
        """Open with a usable window."""
        return (
            self.is_open
            and self.start is not None
            and self.end is not None
            and self.start < self.end
        )


@dataclass(frozen=True)
class CalendarBehavior:
    """Default booking window used when a weekday has no hours of its own."""
    start_time: time
    end_time: time
    slot_interval_minutes: int = 30


@dataclass(frozen=True)
class Provider:
    """A staff member, optionally carrying their own weekly schedule."""
    id: str
    name: str
    opening_hours: Dict[str, OpeningHours] = field(default_factory=dict)


@dataclass(frozen=True)
class BookingSettings:
    """General business hours plus calendar defaults."""
    opening_hours: Dict[str, OpeningHours] = field(default_factory=dict)
    calendar_behavior: Optional[CalendarBehavior] = None

    def hours_for(self, day: Date) -> Optional[OpeningHours]:
        return self.opening_hours.get(weekday_name(day))


@dataclass(frozen=True)
class TimeSlot:
    """A bookable interval. Derived, never persisted."""
    start: DateTime
    end: DateTime

    @property
    def display(self) -> str:
        return self.start.format("HH:mm")

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELED = "canceled"


@dataclass(frozen=True)
class Booking:
    """An existing reservation, read-only from the resolver's perspective."""
    id: str
    service_id: str
    provider_id: str
    start: DateTime
    end: DateTime
    status: BookingStatus = BookingStatus.CONFIRMED

    @property
    def is_active(self) -> bool:
        return self.status != BookingStatus.CANCELED

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)


@dataclass(frozen=True)
class Variant:
    """A catalog stock-keeping unit."""
    article_number: str
    stripe_price_id: Optional[str] = None
    name: str = ""


@dataclass(frozen=True)
class Product:
    id: str
    name: str = ""
    variants: List[Variant] = field(default_factory=list)
    stripe_product_id: Optional[str] = None


@dataclass(frozen=True)
class CampaignPrice:
    """Result of a campaign price lookup; falls back to the original price id."""
    price_id: str
    has_campaign: bool = False
    campaign_name: Optional[str] = None


@dataclass
class CartItem:
    """A cart line. ``variant_id`` is the catalog article number."""
    product_id: Optional[str]
    stripe_price_id: str
    quantity: int = 1
    unit_price_minor_units: int = 0
    variant_id: Optional[str] = None
    name: str = ""
    campaign_price_id: Optional[str] = None
    has_campaign: bool = False
    campaign_name: Optional[str] = None
    campaign_checked: bool = False

    @property
    def checkout_price_id(self) -> str:
        """Campaign price id if one was found, otherwise the regular one."""
        return self.campaign_price_id or self.stripe_price_id

    def with_campaign(self, campaign: CampaignPrice) -> "CartItem":
        if campaign.has_campaign:
            return replace(
                self,
                campaign_price_id=campaign.price_id,
                has_campaign=True,
                campaign_name=campaign.campaign_name,
                campaign_checked=True,
            )
        return replace(self, campaign_checked=True)


@dataclass(frozen=True)
class CustomerInfo:
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None


class SessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass
class CheckoutSession:
    """
    A payment session created by the storefront checkout service.

    Only ``pending`` sessions may transition; ``completed`` and
    ``abandoned`` are terminal.
    """
    session_id: str
    checkout_url: str
    order_id: Optional[str] = None
    amount_total: int = 0
    currency: str = "SEK"
    expires_at: Optional[str] = None
    status: SessionStatus = SessionStatus.PENDING
    created_at: DateTime = field(default_factory=lambda: pendulum.now("UTC"))

    def mark_completed(self) -> None:
        self._transition(SessionStatus.COMPLETED)

    def mark_abandoned(self) -> None:
        self._transition(SessionStatus.ABANDONED)

    def _transition(self, target: SessionStatus) -> None:
        if self.status != SessionStatus.PENDING:
            raise InvalidTransitionError(
                f"Session {self.session_id} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target


@dataclass(frozen=True)
class InventoryStatus:
    product_id: str
    name: str = ""
    stock: Optional[int] = None
    out_of_stock: bool = False
    low_stock: bool = False


LOW_STOCK_THRESHOLD = 5


def format_stock_display(inventory: Optional[InventoryStatus]) -> str:
    """
    Format the stock label shown next to a product.

    An unknown inventory is shown as in stock; counts are only shown when
    stock runs low.
    """
    if inventory is None:
        return "I lager"

    if inventory.out_of_stock:
        return "Slutsåld"

    if inventory.stock is not None and (
        inventory.low_stock or inventory.stock < LOW_STOCK_THRESHOLD
    ):
        return f"I lager ({inventory.stock} st)"

    return "I lager"


@dataclass(frozen=True)
class GiftCard:
    code: str
    valid: bool
    balance_minor_units: int = 0
    expires_at: Optional[str] = None
    message: Optional[str] = None


class UnavailableReason(str, Enum):
    CLOSED = "closed"
    NOT_CONFIGURED = "not_configured"


@dataclass(frozen=True)
class Availability:
    """
    Bookable slots for one provider and day.

    An empty slot list means the day is open but fully booked, which is a
    different outcome from ``Unavailable(CLOSED)``.
    """
    slots: List[TimeSlot]
    using_fallback_hours: bool = False

    @property
    def fully_booked(self) -> bool:
        return not self.slots


@dataclass(frozen=True)
class Unavailable:
    reason: UnavailableReason
    message: str = ""

    @property
    def slots(self) -> List[TimeSlot]:
        return []

    @property
    def fully_booked(self) -> bool:
        return False


@dataclass(frozen=True)
class ProviderAvailability:
    """Answer of the provider-specific availability service."""
    is_open: bool
    slots: List[TimeSlot] = field(default_factory=list)
    using_general_hours: bool = False

"""
Availability resolution for a provider, service and day.

The resolver prefers the backend's provider-specific availability endpoint
and falls back to generating slots locally from the general opening hours
and the day's bookings. Neither path raises for remote failures: the
provider lookup degrades to local generation, and a failed bookings fetch
counts as zero bookings.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Union

import pendulum
from pendulum import Date

from ..domain.models import (
    Availability,
    Booking,
    BookingSettings,
    Provider,
    ProviderAvailability,
    Service,
    Unavailable,
    UnavailableReason,
)
from ..domain.results import Err, Result
from ..domain.slot_calculator import SlotCalculator

logger = logging.getLogger(__name__)

AvailabilityOutcome = Union[Availability, Unavailable]


class AvailabilitySourceProtocol(Protocol):
    """Protocol describing the backend calls needed by the resolver."""

    async def get_provider_availability(
        self,
        provider_id: str,
        day: Date,
        duration_minutes: int,
    ) -> Result[ProviderAvailability]:
        """Return the provider's own slot list for the day."""

    async def get_booking_settings(self) -> Result[BookingSettings]:
        """Return general opening hours and calendar behavior."""

    async def list_bookings(self, start, end, provider_id=None) -> Result[List[Booking]]:
        """Return bookings overlapping the range."""


class AvailabilityResolver:
    """
    Resolves bookable start times for a provider on a given day.

    Settings can be injected from a catalog snapshot; otherwise they are
    fetched on demand for each local generation.
    """

    def __init__(
        self,
        source: AvailabilitySourceProtocol,
        timezone: str = "Europe/Stockholm",
        default_interval_minutes: int = 30,
        settings: Optional[BookingSettings] = None,
    ) -> None:
        self._source = source
        self.timezone = timezone
        self.default_interval_minutes = default_interval_minutes
        self.settings = settings

    async def resolve_availability(
        self,
        provider_id: str,
        day: Date,
        service: Service,
        provider: Optional[Provider] = None,
    ) -> AvailabilityOutcome:
        """
        Resolve availability for one provider, day and service.

        Returns:
            ``Availability`` (an empty slot list means fully booked) or
            ``Unavailable`` with reason ``CLOSED`` or ``NOT_CONFIGURED``
        """
        remote = await self._provider_lookup(provider_id, day, service)
        if remote is not None:
            return remote

        return await self._generate_locally(provider_id, day, service, provider)

    async def _provider_lookup(
        self,
        provider_id: str,
        day: Date,
        service: Service,
    ) -> Optional[AvailabilityOutcome]:
        result = await self._source.get_provider_availability(
            provider_id,
            day,
            service.duration_minutes,
        )

        if isinstance(result, Err):
            logger.warning(
                "Provider availability lookup failed for %s on %s (%s: %s); generating slots locally",
                provider_id,
                day.to_date_string(),
                result.kind.value,
                result.message,
            )
            return None

        answer: ProviderAvailability = result.value
        if not answer.is_open:
            return Unavailable(
                reason=UnavailableReason.CLOSED,
                message=f"Provider {provider_id} is not working on {day.to_date_string()}",
            )

        return Availability(
            slots=sorted(answer.slots, key=lambda slot: slot.start),
            using_fallback_hours=answer.using_general_hours,
        )

    async def _generate_locally(
        self,
        provider_id: str,
        day: Date,
        service: Service,
        provider: Optional[Provider],
    ) -> AvailabilityOutcome:
        settings = await self._load_settings()
        calculator = SlotCalculator(
            settings=settings,
            timezone=self.timezone,
            default_interval_minutes=self.default_interval_minutes,
        )

        window = calculator.resolve_window(day, provider)
        if isinstance(window, Unavailable):
            return window

        bookings = await self._fetch_day_bookings(provider_id, day)

        return calculator.find_available_slots(
            day=day,
            duration_minutes=service.duration_minutes,
            bookings=bookings,
            provider=provider,
        )

    async def _load_settings(self) -> BookingSettings:
        if self.settings is not None:
            return self.settings

        result = await self._source.get_booking_settings()
        if isinstance(result, Err):
            logger.warning(
                "Booking settings could not be loaded (%s: %s); only provider hours apply",
                result.kind.value,
                result.message,
            )
            return BookingSettings()

        return result.value

    async def _fetch_day_bookings(self, provider_id: str, day: Date) -> List[Booking]:
        """
        Fetch the provider's bookings for the whole day.

        A failed fetch yields no bookings: the conflict check fails open and
        may over-offer slots until the backend rejects the booking.
        """
        day_start = pendulum.datetime(day.year, day.month, day.day, tz=self.timezone)
        day_end = day_start.end_of("day")

        result = await self._source.list_bookings(day_start, day_end, provider_id=provider_id)
        if isinstance(result, Err):
            logger.warning(
                "Bookings fetch failed for provider %s on %s (%s: %s); "
                "conflict check is disabled and slots may be over-offered",
                provider_id,
                day.to_date_string(),
                result.kind.value,
                result.message,
            )
            return []

        return [booking for booking in result.value if booking.is_active]

"""
Booking creation and the visitor's booking selection state.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Hashable, List, Optional, Protocol, Tuple

import pendulum
from pendulum import Date

from ..adapters.http import RequestCredentials
from ..domain.models import (
    Booking,
    CustomerInfo,
    Provider,
    Service,
    TimeSlot,
    parse_clock,
)
from ..domain.results import Err, ErrorKind, Result
from .availability import AvailabilityOutcome

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "This time slot is already booked. Please choose another time."
MISSING_FIELDS_MESSAGE = "Service, provider, date, start time and customer name are required."


class BookingBackendProtocol(Protocol):
    """Protocol describing the backend call needed to create bookings."""

    async def create_booking(
        self,
        payload: Dict[str, Any],
        credentials: Optional[RequestCredentials] = None,
    ) -> Result[Booking]:
        """Create a booking or fail with ``CONFLICT`` when the slot is taken."""


class AvailabilityResolverProtocol(Protocol):
    async def resolve_availability(
        self,
        provider_id: str,
        day: Date,
        service: Service,
        provider: Optional[Provider] = None,
    ) -> AvailabilityOutcome:
        """Resolve availability for one provider, day and service."""


class BookingService:
    """
    Submits bookings to the backend.

    The backend is the authority on conflicts: locally generated slots can
    be stale, so a rejected slot comes back as ``Err(CONFLICT)`` carrying
    any alternative times the backend suggested.
    """

    def __init__(self, backend: BookingBackendProtocol, timezone: str = "Europe/Stockholm"):
        self._backend = backend
        self.timezone = timezone

    async def create_booking(
        self,
        service: Optional[Service],
        provider_id: Optional[str],
        day: Optional[Date],
        start_time: Optional[str],
        customer: CustomerInfo,
        credentials: Optional[RequestCredentials] = None,
    ) -> Result[Booking]:
        """
        Book ``service`` with ``provider_id`` at ``start_time`` on ``day``.

        Args:
            service: Service being booked; its duration sets the end time
            provider_id: Provider performing the service
            day: Calendar date in the salon's timezone
            start_time: Wall-clock start as ``HH:MM``
            customer: Contact details; a name is required
            credentials: Visitor credentials forwarded with this request only

        Returns:
            ``Ok(Booking)`` or ``Err`` (``VALIDATION_ERROR``, ``CONFLICT`` or a
            transport failure)
        """
        if not service or not provider_id or day is None or not start_time or not customer.name:
            return Err(ErrorKind.VALIDATION_ERROR, MISSING_FIELDS_MESSAGE)

        try:
            clock = parse_clock(start_time)
        except ValueError as exc:
            return Err(ErrorKind.VALIDATION_ERROR, str(exc))

        start = pendulum.datetime(day.year, day.month, day.day, clock.hour, clock.minute, tz=self.timezone)
        end = start.add(minutes=service.duration_minutes)

        payload = {
            "serviceId": service.id,
            "providerId": provider_id,
            "start": start.to_iso8601_string(),
            "end": end.to_iso8601_string(),
            "customerName": customer.name,
            "email": customer.email,
            "phone": customer.phone,
            "status": "confirmed",
        }

        result = await self._backend.create_booking(payload, credentials=credentials)

        if isinstance(result, Err):
            if result.kind == ErrorKind.CONFLICT:
                alternatives = _alternatives(result.data)
                logger.info(
                    "Slot %s with %s was taken; %d alternatives offered",
                    start.format("YYYY-MM-DD HH:mm"),
                    provider_id,
                    len(alternatives),
                )
                return Err(
                    ErrorKind.CONFLICT,
                    CONFLICT_MESSAGE,
                    result.status,
                    {"alternatives": alternatives},
                )
            return result

        logger.info(
            "Booked %s with %s at %s (booking %s)",
            service.name or service.id,
            provider_id,
            start.format("YYYY-MM-DD HH:mm"),
            result.value.id,
        )
        return result


def _alternatives(data: Any) -> List[Any]:
    if not isinstance(data, dict):
        return []
    for key in ("alternatives", "suggestedTimes"):
        value = data.get(key)
        if isinstance(value, list):
            return value
    conflict = data.get("conflict")
    if isinstance(conflict, dict) and isinstance(conflict.get("alternatives"), list):
        return conflict["alternatives"]
    return []


SelectionKey = Tuple[Optional[str], Optional[str], Optional[str]]


class LatestRequestGuard:
    """
    Tracks which request is the most recent one for a key.

    Responses from superseded requests are discarded by the caller, so
    only the latest request's response is ever applied.
    """

    def __init__(self):
        self._sequence = 0
        self._latest: Optional[Tuple[Hashable, int]] = None

    def begin(self, key: Hashable) -> Tuple[Hashable, int]:
        self._sequence += 1
        self._latest = (key, self._sequence)
        return self._latest

    def is_current(self, token: Tuple[Hashable, int]) -> bool:
        return token == self._latest


class BookingSelection:
    """
    The visitor's in-progress choice of service, provider, date and time.

    Changing the service, provider or date clears the chosen time and the
    loaded availability, since both belong to the previous selection.
    """

    def __init__(self, resolver: AvailabilityResolverProtocol):
        self._resolver = resolver
        self._guard = LatestRequestGuard()
        self.service: Optional[Service] = None
        self.provider: Optional[Provider] = None
        self.day: Optional[Date] = None
        self.time: Optional[str] = None
        self.availability: Optional[AvailabilityOutcome] = None

    @property
    def key(self) -> SelectionKey:
        return (
            self.service.id if self.service else None,
            self.provider.id if self.provider else None,
            self.day.to_date_string() if self.day else None,
        )

    @property
    def complete(self) -> bool:
        return all(part is not None for part in self.key)

    def select_service(self, service: Optional[Service]) -> None:
        self.service = service
        self._reset()

    def select_provider(self, provider: Optional[Provider]) -> None:
        self.provider = provider
        self._reset()

    def select_date(self, day: Optional[Date]) -> None:
        self.day = day
        self._reset()

    def select_time(self, display: str) -> TimeSlot:
        """
        Pick one of the currently offered slots by its ``HH:mm`` label.

        Raises:
            ValueError: If the time is not among the offered slots
        """
        slots = self.availability.slots if self.availability is not None else []
        for slot in slots:
            if slot.display == display:
                self.time = display
                return slot
        raise ValueError(f"{display} is not an available time")

    def _reset(self) -> None:
        self.time = None
        self.availability = None

    async def refresh_availability(self) -> Optional[AvailabilityOutcome]:
        """
        Resolve availability for the current selection.

        Returns:
            The applied availability, or None when the selection is
            incomplete or changed while the request was in flight
        """
        if not self.complete:
            return None

        key = self.key
        token = self._guard.begin(key)
        outcome = await self._resolver.resolve_availability(
            self.provider.id,
            self.day,
            self.service,
            provider=self.provider,
        )

        if not self._guard.is_current(token) or self.key != key:
            logger.debug("Discarding stale availability for %s", key)
            return None

        self.availability = outcome
        return outcome

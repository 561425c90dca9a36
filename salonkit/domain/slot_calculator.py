"""
Core business logic for generating bookable time slots locally.

Pure domain logic without any external dependencies (no API calls, no I/O).
Used when the provider-specific availability service cannot answer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time
from typing import Iterable, List, Optional, Union

import pendulum
from pendulum import Date

from .models import (
    Availability,
    Booking,
    BookingSettings,
    OpeningHours,
    Provider,
    TimeSlot,
    Unavailable,
    UnavailableReason,
    minutes_of_day,
    weekday_name,
)


@dataclass(frozen=True)
class DayWindow:
    """The resolved opening window and slot step for one day."""
    opening: time
    closing: time
    interval_minutes: int


class SlotCalculator:
    """
    Generates bookable slots from layered opening hours and existing bookings.

    Algorithm:
    1. Resolve the day's window: provider hours, then general hours for the
       weekday, then the calendar behavior defaults
    2. Enumerate start times from opening to closing by the slot interval
    3. Drop candidates that do not end strictly before closing
    4. Drop candidates overlapping an active booking (half-open intervals)
    """

    def __init__(
        self,
        settings: BookingSettings,
        timezone: str = "Europe/Stockholm",
        default_interval_minutes: int = 30,
    ):
        if default_interval_minutes <= 0:
            raise ValueError("default_interval_minutes must be greater than zero")
        self.settings = settings
        self.timezone = timezone
        self.default_interval_minutes = default_interval_minutes

    def resolve_window(
        self,
        day: Date,
        provider: Optional[Provider] = None,
    ) -> Union[DayWindow, Unavailable]:
        """
        Resolve the opening window for a day.

        A weekday explicitly marked closed wins over any calendar behavior.
        When nothing is configured the day is reported as not configured
        rather than guessing a default window.
        """
        behavior = self.settings.calendar_behavior
        interval = (
            behavior.slot_interval_minutes
            if behavior is not None and behavior.slot_interval_minutes > 0
            else self.default_interval_minutes
        )

        day_hours = self._day_hours(day, provider)

        if day_hours is not None and not day_hours.is_open:
            return Unavailable(
                reason=UnavailableReason.CLOSED,
                message=f"Closed on {weekday_name(day)}",
            )

        if day_hours is not None and day_hours.resolvable:
            return DayWindow(
                opening=day_hours.start,
                closing=day_hours.end,
                interval_minutes=interval,
            )

        if behavior is not None and behavior.start_time < behavior.end_time:
            return DayWindow(
                opening=behavior.start_time,
                closing=behavior.end_time,
                interval_minutes=interval,
            )

        return Unavailable(
            reason=UnavailableReason.NOT_CONFIGURED,
            message="No opening hours are configured",
        )

    def find_available_slots(
        self,
        day: Date,
        duration_minutes: int,
        bookings: Iterable[Booking] = (),
        provider: Optional[Provider] = None,
    ) -> Union[Availability, Unavailable]:
        """
        Find all bookable slots for a day.

        Args:
            day: The calendar day to search
            duration_minutes: Length of the requested service
            bookings: Existing bookings for the provider on that day
            provider: Provider whose own schedule takes precedence

        Returns:
            Availability (possibly empty, meaning fully booked) or Unavailable
        """
        window = self.resolve_window(day, provider)
        if isinstance(window, Unavailable):
            return window

        candidates = self._generate_candidates(day, window, duration_minutes)
        active = self._active_bookings(bookings, provider)

        slots = [
            slot for slot in candidates
            if not any(slot.time_range.overlaps(booking.time_range) for booking in active)
        ]

        return Availability(slots=slots, using_fallback_hours=True)

    def _day_hours(self, day: Date, provider: Optional[Provider]) -> Optional[OpeningHours]:
        if provider is not None:
            own = provider.opening_hours.get(weekday_name(day))
            if own is not None:
                return own
        return self.settings.hours_for(day)

    def _generate_candidates(
        self,
        day: Date,
        window: DayWindow,
        duration_minutes: int,
    ) -> List[TimeSlot]:
        """
        Enumerate candidate slots inside the window.

        A slot ending exactly at closing time is not offered.
        """
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be greater than zero")

        opening = minutes_of_day(window.opening)
        closing = minutes_of_day(window.closing)
        candidates: List[TimeSlot] = []

        for start_minute in range(opening, closing, window.interval_minutes):
            end_minute = start_minute + duration_minutes
            if end_minute >= closing:
                continue

            start = pendulum.datetime(
                day.year,
                day.month,
                day.day,
                start_minute // 60,
                start_minute % 60,
                tz=self.timezone,
            )
            candidates.append(TimeSlot(start=start, end=start.add(minutes=duration_minutes)))

        return candidates

    @staticmethod
    def _active_bookings(
        bookings: Iterable[Booking],
        provider: Optional[Provider],
    ) -> List[Booking]:
        # Canceled bookings free their slot.
        return [
            booking for booking in bookings
            if booking.is_active
            and (provider is None or not booking.provider_id or booking.provider_id == provider.id)
        ]

"""
Tests for the AvailabilityResolver orchestration layer.
"""

import asyncio
import logging
from datetime import time
from typing import List

import pendulum

from salonkit.adapters.mock_portal_client import build_mock_portal_client
from salonkit.domain.models import (
    Availability,
    Booking,
    BookingSettings,
    OpeningHours,
    Provider,
    ProviderAvailability,
    Service,
    TimeSlot,
    Unavailable,
    UnavailableReason,
)
from salonkit.domain.results import Err, ErrorKind, Ok
from salonkit.services.availability import AvailabilityResolver

TZ = "Europe/Stockholm"
MONDAY = pendulum.date(2026, 10, 19)
THURSDAY = pendulum.date(2026, 10, 22)
SUNDAY = pendulum.date(2026, 10, 25)
CUT = Service(id="svc_cut", name="Klippning", duration_minutes=45)


class StubAvailabilitySource:
    """Minimal stub matching AvailabilitySourceProtocol."""

    def __init__(self, provider_answer, settings=None, bookings=None):
        self.provider_answer = provider_answer
        self.settings = settings if settings is not None else Ok(
            BookingSettings(
                opening_hours={
                    "monday": OpeningHours(is_open=True, start=time(9, 0), end=time(12, 0)),
                    "sunday": OpeningHours(is_open=False),
                }
            )
        )
        self.bookings = bookings if bookings is not None else Ok([])
        self.booking_calls: List[dict] = []
        self.settings_calls = 0

    async def get_provider_availability(self, provider_id, day, duration_minutes):
        return self.provider_answer

    async def get_booking_settings(self):
        self.settings_calls += 1
        return self.settings

    async def list_bookings(self, start, end, provider_id=None):
        self.booking_calls.append({"start": start, "end": end, "provider_id": provider_id})
        return self.bookings


def _resolve(source, day=MONDAY, provider=None, settings=None):
    resolver = AvailabilityResolver(source=source, timezone=TZ, settings=settings)
    return asyncio.run(resolver.resolve_availability("prov_anna", day, CUT, provider=provider))


def _slot(clock: str) -> TimeSlot:
    start = pendulum.parse(f"2026-10-19 {clock}", tz=TZ)
    return TimeSlot(start=start, end=start.add(minutes=45))


class TestProviderLookup:
    """The provider-specific answer is used as-is when it arrives."""

    def test_provider_slots_are_returned(self):
        source = StubAvailabilitySource(
            Ok(ProviderAvailability(is_open=True, slots=[_slot("11:00"), _slot("09:00")], using_general_hours=True))
        )

        result = _resolve(source)

        assert isinstance(result, Availability)
        assert [slot.display for slot in result.slots] == ["09:00", "11:00"]
        assert result.using_fallback_hours
        assert source.booking_calls == []

    def test_provider_not_working_is_closed_without_fallback(self):
        """A provider marked as not working must not fall back to general hours."""
        source = StubAvailabilitySource(Ok(ProviderAvailability(is_open=False)))

        result = _resolve(source)

        assert isinstance(result, Unavailable)
        assert result.reason == UnavailableReason.CLOSED
        assert source.settings_calls == 0
        assert source.booking_calls == []

    def test_provider_lookup_failure_falls_back(self, caplog):
        source = StubAvailabilitySource(Err(ErrorKind.NOT_FOUND, "Not found", 404))

        with caplog.at_level(logging.WARNING, logger="salonkit.services.availability"):
            result = _resolve(source)

        assert isinstance(result, Availability)
        assert result.using_fallback_hours
        assert [slot.display for slot in result.slots] == ["09:00", "09:30", "10:00", "10:30", "11:00"]
        assert "generating slots locally" in caplog.text


class TestLocalGeneration:
    """Slots generated from opening hours and the day's bookings."""

    def test_day_bookings_are_fetched_for_the_provider(self):
        source = StubAvailabilitySource(Err(ErrorKind.NETWORK_ERROR, "down"))

        _resolve(source)

        call = source.booking_calls[0]
        assert call["provider_id"] == "prov_anna"
        assert call["start"] == pendulum.datetime(2026, 10, 19, tz=TZ)
        assert call["end"].to_date_string() == "2026-10-19"
        assert call["end"].hour == 23

    def test_bookings_block_slots(self):
        booking = Booking(
            id="bk_1",
            service_id="svc_cut",
            provider_id="prov_anna",
            start=pendulum.parse("2026-10-19 10:00", tz=TZ),
            end=pendulum.parse("2026-10-19 10:45", tz=TZ),
        )
        source = StubAvailabilitySource(Err(ErrorKind.NETWORK_ERROR, "down"), bookings=Ok([booking]))

        result = _resolve(source)

        assert [slot.display for slot in result.slots] == ["09:00", "11:00"]

    def test_bookings_fetch_failure_fails_open(self, caplog):
        """Without bookings every slot is offered and a warning is logged."""
        source = StubAvailabilitySource(
            Err(ErrorKind.NETWORK_ERROR, "down"),
            bookings=Err(ErrorKind.UPSTREAM_UNAVAILABLE, "502"),
        )

        with caplog.at_level(logging.WARNING, logger="salonkit.services.availability"):
            result = _resolve(source)

        assert isinstance(result, Availability)
        assert len(result.slots) == 5
        assert "over-offered" in caplog.text

    def test_closed_day_skips_bookings_fetch(self):
        source = StubAvailabilitySource(Err(ErrorKind.NETWORK_ERROR, "down"))

        result = _resolve(source, day=SUNDAY)

        assert result.reason == UnavailableReason.CLOSED
        assert source.booking_calls == []

    def test_injected_settings_skip_the_fetch(self):
        settings = BookingSettings(
            opening_hours={"monday": OpeningHours(is_open=True, start=time(14, 0), end=time(15, 0))}
        )
        source = StubAvailabilitySource(Err(ErrorKind.NETWORK_ERROR, "down"))

        result = _resolve(source, settings=settings)

        assert [slot.display for slot in result.slots] == ["14:00"]
        assert source.settings_calls == 0

    def test_settings_failure_reports_not_configured(self):
        source = StubAvailabilitySource(
            Err(ErrorKind.NETWORK_ERROR, "down"),
            settings=Err(ErrorKind.NETWORK_ERROR, "down"),
        )

        result = _resolve(source)

        assert result.reason == UnavailableReason.NOT_CONFIGURED

    def test_provider_hours_apply(self):
        provider = Provider(
            id="prov_anna",
            name="Anna",
            opening_hours={"monday": OpeningHours(is_open=True, start=time(11, 0), end=time(12, 0))},
        )
        source = StubAvailabilitySource(Err(ErrorKind.NETWORK_ERROR, "down"))

        result = _resolve(source, provider=provider)

        assert [slot.display for slot in result.slots] == ["11:00"]


def test_mock_portal_end_to_end():
    """The mock portal has no provider endpoint, so local generation runs."""

    async def run():
        client = build_mock_portal_client(timezone=TZ)
        try:
            providers = await client.list_providers()
            anna = next(p for p in providers.value if p.id == "prov_anna")
            resolver = AvailabilityResolver(source=client, timezone=TZ)
            monday = await resolver.resolve_availability("prov_anna", MONDAY, CUT, provider=anna)
            thursday = await resolver.resolve_availability("prov_anna", THURSDAY, CUT, provider=anna)
            return monday, thursday
        finally:
            await client.aclose()

    monday, thursday = asyncio.run(run())

    monday_slots = [slot.display for slot in monday.slots]
    assert "10:00" not in monday_slots
    assert "13:00" in monday_slots
    assert monday_slots[-1] == "16:00"
    assert [slot.display for slot in thursday.slots][0] == "12:00"

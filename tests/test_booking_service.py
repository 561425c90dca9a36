"""
Tests for booking creation and the booking selection state.
"""

import asyncio
import json

import httpx
import pendulum
import pytest

from salonkit.adapters.http import PortalHttpClient, RequestCredentials
from salonkit.adapters.mock_portal_client import MockPortalBackend
from salonkit.adapters.portal_client import CustomerPortalClient
from salonkit.domain.models import (
    Availability,
    CustomerInfo,
    Provider,
    Service,
    TimeSlot,
)
from salonkit.domain.results import Err, ErrorKind, Ok
from salonkit.services.booking import CONFLICT_MESSAGE, BookingSelection, BookingService

TZ = "Europe/Stockholm"
MONDAY = pendulum.date(2026, 10, 19)
TUESDAY = pendulum.date(2026, 10, 20)
CUT = Service(id="svc_cut", name="Klippning", duration_minutes=45)
ANNA = Provider(id="prov_anna", name="Anna")
LINA = CustomerInfo(name="Lina Berg", email="lina@example.se", phone="0701234567")


def _book(handler, *args, **kwargs):
    async def run():
        http = PortalHttpClient(base_url="http://portal.test", tenant="glow", transport=httpx.MockTransport(handler))
        client = CustomerPortalClient(http=http, timezone=TZ)
        try:
            return await BookingService(client, timezone=TZ).create_booking(*args, **kwargs)
        finally:
            await client.aclose()

    return asyncio.run(run())


class TestBookingService:
    """Tests for BookingService.create_booking."""

    def test_creates_booking(self):
        backend = MockPortalBackend()

        result = _book(backend.handle, CUT, "prov_anna", MONDAY, "11:00", LINA)

        assert isinstance(result, Ok)
        booking = result.value
        assert booking.start == pendulum.datetime(2026, 10, 19, 11, 0, tz=TZ)
        assert booking.end == pendulum.datetime(2026, 10, 19, 11, 45, tz=TZ)

        payload = json.loads(backend.requests[0].content)
        assert payload["serviceId"] == "svc_cut"
        assert payload["providerId"] == "prov_anna"
        assert payload["customerName"] == "Lina Berg"
        assert payload["email"] == "lina@example.se"
        assert payload["status"] == "confirmed"

    def test_conflict_carries_alternatives(self):
        def handler(request):
            return httpx.Response(
                409,
                json={"success": False, "message": "taken", "alternatives": ["11:00", "11:30"]},
            )

        result = _book(handler, CUT, "prov_anna", MONDAY, "10:00", LINA)

        assert isinstance(result, Err)
        assert result.kind == ErrorKind.CONFLICT
        assert result.message == CONFLICT_MESSAGE
        assert result.data == {"alternatives": ["11:00", "11:30"]}

    def test_conflict_against_existing_booking(self):
        result = _book(MockPortalBackend().handle, CUT, "prov_anna", MONDAY, "10:15", LINA)

        assert result.kind == ErrorKind.CONFLICT
        assert result.data == {"alternatives": []}

    @pytest.mark.parametrize(
        "args",
        [
            (None, "prov_anna", MONDAY, "10:00", LINA),
            (CUT, "", MONDAY, "10:00", LINA),
            (CUT, "prov_anna", None, "10:00", LINA),
            (CUT, "prov_anna", MONDAY, None, LINA),
            (CUT, "prov_anna", MONDAY, "10:00", CustomerInfo(email="x@example.se")),
        ],
    )
    def test_required_fields(self, args):
        backend = MockPortalBackend()

        result = _book(backend.handle, *args)

        assert result.kind == ErrorKind.VALIDATION_ERROR
        assert backend.requests == []

    def test_invalid_start_time(self):
        result = _book(MockPortalBackend().handle, CUT, "prov_anna", MONDAY, "ten", LINA)

        assert result.kind == ErrorKind.VALIDATION_ERROR

    def test_credentials_forwarded(self):
        backend = MockPortalBackend()

        _book(
            backend.handle,
            CUT,
            "prov_anna",
            MONDAY,
            "11:00",
            LINA,
            credentials=RequestCredentials(cookie="sid=visitor", csrf_token="csrf"),
        )

        assert backend.requests[0].headers["Cookie"] == "sid=visitor"
        assert backend.requests[0].headers["X-CSRF-Token"] == "csrf"


class ControlledResolver:
    """Resolver whose answers are released by the test, per date."""

    def __init__(self):
        self.gates = {}
        self.calls = []

    def gate(self, day):
        return self.gates.setdefault(day.to_date_string(), asyncio.Event())

    async def resolve_availability(self, provider_id, day, service, provider=None):
        self.calls.append(day.to_date_string())
        await self.gate(day).wait()
        start = pendulum.datetime(day.year, day.month, day.day, 9, tz=TZ)
        return Availability(slots=[TimeSlot(start=start, end=start.add(minutes=service.duration_minutes))])


class TestBookingSelection:
    """Tests for BookingSelection."""

    def _selection(self, resolver=None):
        selection = BookingSelection(resolver or ControlledResolver())
        selection.select_service(CUT)
        selection.select_provider(ANNA)
        selection.select_date(MONDAY)
        return selection

    def test_changing_date_clears_time(self):
        resolver = ControlledResolver()
        selection = self._selection(resolver)

        async def run():
            resolver.gate(MONDAY).set()
            await selection.refresh_availability()
            selection.select_time("09:00")
            selection.select_date(TUESDAY)

        asyncio.run(run())

        assert selection.time is None
        assert selection.availability is None
        assert selection.key == ("svc_cut", "prov_anna", "2026-10-20")

    def test_unknown_time_is_rejected(self):
        selection = self._selection()

        with pytest.raises(ValueError):
            selection.select_time("09:00")

    def test_incomplete_selection_does_not_resolve(self):
        resolver = ControlledResolver()
        selection = BookingSelection(resolver)
        selection.select_service(CUT)

        assert asyncio.run(selection.refresh_availability()) is None
        assert resolver.calls == []

    def test_stale_results_are_discarded(self):
        """The answer for an older date arriving last must not win."""
        resolver = ControlledResolver()
        selection = self._selection(resolver)

        async def run():
            first = asyncio.create_task(selection.refresh_availability())
            await asyncio.sleep(0)
            selection.select_date(TUESDAY)
            second = asyncio.create_task(selection.refresh_availability())
            await asyncio.sleep(0)

            resolver.gate(TUESDAY).set()
            newest = await second
            resolver.gate(MONDAY).set()
            stale = await first
            return newest, stale

        newest, stale = asyncio.run(run())

        assert stale is None
        assert newest is selection.availability
        assert selection.availability.slots[0].start.to_date_string() == "2026-10-20"
        assert resolver.calls == ["2026-10-19", "2026-10-20"]

"""
Tests for the customer portal client against the in-process mock portal.
"""

import asyncio

import httpx
import pendulum

from salonkit.adapters.http import PortalHttpClient
from salonkit.adapters.mock_portal_client import MockPortalBackend, build_mock_portal_client
from salonkit.adapters.portal_client import CustomerPortalClient
from salonkit.domain.models import BookingStatus
from salonkit.domain.results import Err, ErrorKind, Ok

TZ = "Europe/Stockholm"
MONDAY = pendulum.date(2026, 10, 19)


def _call(method_name, *args, backend=None, **kwargs):
    backend = backend or MockPortalBackend()

    async def run():
        client = build_mock_portal_client(tenant="glow", timezone=TZ, backend=backend)
        try:
            return await getattr(client, method_name)(*args, **kwargs)
        finally:
            await client.aclose()

    return asyncio.run(run())


def _call_with_handler(handler, method_name, *args, **kwargs):
    async def run():
        http = PortalHttpClient(base_url="http://portal.test", tenant="glow", transport=httpx.MockTransport(handler))
        client = CustomerPortalClient(http=http, timezone=TZ)
        try:
            return await getattr(client, method_name)(*args, **kwargs)
        finally:
            await client.aclose()

    return asyncio.run(run())


class TestBookingEndpoints:
    """Tests for the public booking endpoints."""

    def test_list_services(self):
        backend = MockPortalBackend()

        result = _call("list_services", backend=backend)

        assert isinstance(result, Ok)
        assert [s.id for s in result.value] == ["svc_cut", "svc_color", "svc_beard"]
        assert result.value[0].duration_minutes == 45
        request = backend.requests[0]
        assert request.headers["X-Tenant"] == "glow"
        assert request.url.params["isActive"] == "true"

    def test_providers_carry_their_own_hours(self):
        result = _call("list_providers")

        anna = next(p for p in result.value if p.id == "prov_anna")
        assert anna.opening_hours["thursday"].resolvable
        assert "monday" not in anna.opening_hours

    def test_booking_settings(self):
        result = _call("get_booking_settings")

        settings = result.value
        assert not settings.opening_hours["sunday"].is_open
        assert settings.calendar_behavior.slot_interval_minutes == 30

    def test_list_bookings_includes_canceled(self):
        day_start = pendulum.datetime(2026, 10, 19, tz=TZ)

        result = _call("list_bookings", day_start, day_start.end_of("day"), provider_id="prov_anna")

        statuses = {b.id: b.status for b in result.value}
        assert statuses == {"bk_001": BookingStatus.CONFIRMED, "bk_002": BookingStatus.CANCELED}
        assert result.value[0].start.timezone_name == TZ

    def test_mock_has_no_provider_availability(self):
        result = _call("get_provider_availability", "prov_anna", MONDAY, 45)

        assert isinstance(result, Err)
        assert result.kind == ErrorKind.NOT_FOUND

    def test_provider_availability_slots(self):
        def handler(request):
            assert request.url.path == "/api/system/booking/public/providers/prov_anna/availability"
            assert request.url.params["date"] == "2026-10-19"
            assert request.url.params["duration"] == "45"
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "slots": ["09:00", {"start": "2026-10-19T11:00:00+02:00", "end": "2026-10-19T11:45:00+02:00"}],
                    "usingGeneralHours": True,
                },
            )

        result = _call_with_handler(handler, "get_provider_availability", "prov_anna", MONDAY, 45)

        answer = result.value
        assert answer.is_open
        assert answer.using_general_hours
        assert [slot.display for slot in answer.slots] == ["09:00", "11:00"]
        assert answer.slots[0].end == answer.slots[0].start.add(minutes=45)

    def test_provider_not_working(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "isOpen": False})

        result = _call_with_handler(handler, "get_provider_availability", "prov_anna", MONDAY, 45)

        assert result.value.is_open is False

    def test_malformed_availability_is_upstream_unavailable(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "slots": "soon"})

        result = _call_with_handler(handler, "get_provider_availability", "prov_anna", MONDAY, 45)

        assert result.kind == ErrorKind.UPSTREAM_UNAVAILABLE

    def test_create_booking_conflict(self):
        payload = {
            "serviceId": "svc_cut",
            "providerId": "prov_anna",
            "start": "2026-10-19T10:15:00+02:00",
            "end": "2026-10-19T11:00:00+02:00",
            "customerName": "Lina",
        }

        result = _call("create_booking", payload)

        assert result.kind == ErrorKind.CONFLICT
        assert result.status == 409

    def test_create_booking_over_canceled_slot(self):
        backend = MockPortalBackend()
        payload = {
            "serviceId": "svc_cut",
            "providerId": "prov_anna",
            "start": "2026-10-19T13:00:00+02:00",
            "end": "2026-10-19T13:45:00+02:00",
            "customerName": "Lina",
        }

        result = _call("create_booking", payload, backend=backend)

        assert isinstance(result, Ok)
        assert result.value.provider_id == "prov_anna"
        assert len(backend.bookings) == 4


class TestStorefrontEndpoints:
    """Tests for catalog, campaign, inventory and gift card endpoints."""

    def test_products_and_variants(self):
        result = _call("list_products")

        shampoo = result.value[0]
        assert shampoo.stripe_product_id == "stripe_prod_shampoo"
        assert [v.article_number for v in shampoo.variants] == ["SH-250", "SH-500"]

    def test_unknown_product(self):
        result = _call("get_product", "prod_missing")

        assert result.kind == ErrorKind.NOT_FOUND

    def test_campaign_price(self):
        result = _call("get_campaign_price", "stripe_prod_oil", "price_oil_50")

        assert result.value.has_campaign
        assert result.value.price_id == "price_oil_50_autumn"
        assert result.value.campaign_name == "Höstkampanj"

    def test_no_campaign_keeps_original_price(self):
        result = _call("get_campaign_price", "stripe_prod_shampoo", "price_shampoo_250")

        assert not result.value.has_campaign
        assert result.value.price_id == "price_shampoo_250"

    def test_inventory_status(self):
        result = _call("get_inventory_status", "prod_oil")

        assert result.value.stock == 3
        assert result.value.low_stock

    def test_missing_inventory_is_not_found(self):
        result = _call("get_inventory_status", "prod_unknown")

        assert result.kind == ErrorKind.NOT_FOUND

    def test_gift_card_code_is_normalized(self):
        backend = MockPortalBackend()

        result = _call("verify_gift_card", "  glow-2026-abcd ", backend=backend)

        assert result.value.valid
        assert result.value.code == "GLOW-2026-ABCD"
        assert result.value.balance_minor_units == 50000

    def test_invalid_gift_card(self):
        result = _call("verify_gift_card", "NOPE")

        assert not result.value.valid
        assert result.value.message == "Invalid gift card code"

    def test_rejected_cart_tracking_is_an_error(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "message": "unknown tenant"})

        result = _call_with_handler(handler, "track_cart", {"sessionId": "cs_1"})

        assert result.kind == ErrorKind.VALIDATION_ERROR
        assert result.message == "unknown tenant"

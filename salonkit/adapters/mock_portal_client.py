"""
Mock customer portal for running without a backend.
"""

import json
import re
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote

import httpx
import pendulum

from .http import PortalHttpClient
from .portal_client import CustomerPortalClient

Route = Tuple[str, "re.Pattern[str]", Callable[..., httpx.Response]]


class MockPortalBackend:
    """
    In-process stand-in for the customer portal.

    Serves the fixture data from mock_portal_data.json through an
    ``httpx.MockTransport``, so the real client code (headers, status
    handling, parsing) runs unchanged. The provider availability endpoint
    answers 404, which exercises local slot generation.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        """
        Initialize the mock backend.

        Args:
            data: Fixture data; loaded from mock_portal_data.json when omitted
        """
        self.data = data if data is not None else self._load_fixture()
        self.bookings: List[Dict[str, Any]] = list(self.data.get("bookings", []))
        self.tracked_carts: List[Dict[str, Any]] = []
        self.events: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self._routes: List[Route] = [
            ("GET", re.compile(r"^/api/system/booking/public/services$"), self._services),
            ("GET", re.compile(r"^/api/system/booking/public/providers$"), self._providers),
            ("GET", re.compile(r"^/api/system/booking/public/settings$"), self._settings),
            ("GET", re.compile(r"^/api/system/booking/public/bookings$"), self._list_bookings),
            ("POST", re.compile(r"^/api/system/booking/public/bookings$"), self._create_booking),
            ("GET", re.compile(r"^/storefront/[^/]+/products$"), self._products),
            ("GET", re.compile(r"^/storefront/[^/]+/product/(?P<product_id>[^/]+)$"), self._product),
            ("POST", re.compile(r"^/storefront/[^/]+/checkout$"), self._checkout),
            ("GET", re.compile(r"^/api/campaigns/price/(?P<product_id>[^/]+)$"), self._campaign),
            ("GET", re.compile(r"^/api/inventory/public/[^/]+/(?P<product_id>[^/]+)$"), self._inventory),
            ("POST", re.compile(r"^/api/carts/track$"), self._track_cart),
            ("POST", re.compile(r"^/api/analytics/track$"), self._track_event),
            ("POST", re.compile(r"^/api/storefront/[^/]+/giftcards/verify$"), self._gift_card),
        ]

    @staticmethod
    def _load_fixture() -> Dict[str, Any]:
        data_file = Path(__file__).parent / "mock_portal_data.json"

        if data_file.exists():
            with open(data_file, "r", encoding="utf-8") as f:
                return json.load(f)

        return {}

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = unquote(request.url.path)

        for method, pattern, handler in self._routes:
            match = pattern.match(path)
            if match and request.method == method:
                return handler(request, **match.groupdict())

        return httpx.Response(404, text="Not Found", headers={"content-type": "text/html"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def _services(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "services": self.data.get("services", [])})

    def _providers(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "providers": self.data.get("providers", [])})

    def _settings(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "settings": self.data.get("settings", {})})

    def _list_bookings(self, request: httpx.Request) -> httpx.Response:
        provider_id = request.url.params.get("providerId")
        window_start = pendulum.parse(request.url.params["from"])
        window_end = pendulum.parse(request.url.params["to"])

        bookings = [
            booking for booking in self.bookings
            if (not provider_id or booking.get("providerId") == provider_id)
            and pendulum.parse(booking["start"]) < window_end
            and pendulum.parse(booking["end"]) > window_start
        ]
        return httpx.Response(200, json={"success": True, "bookings": bookings})

    def _create_booking(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        start = pendulum.parse(payload["start"])
        end = pendulum.parse(payload["end"])

        for booking in self.bookings:
            if booking.get("providerId") != payload.get("providerId"):
                continue
            if booking.get("status") in ("canceled", "cancelled"):
                continue
            if pendulum.parse(booking["start"]) < end and pendulum.parse(booking["end"]) > start:
                return httpx.Response(
                    409,
                    json={
                        "success": False,
                        "message": "This time slot is already booked.",
                        "conflict": {"bookingId": booking.get("id")},
                    },
                )

        record = {"id": f"bk_{uuid.uuid4().hex[:8]}", **payload}
        self.bookings.append(record)
        return httpx.Response(201, json={"success": True, "booking": record})

    def _products(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "products": self.data.get("products", [])})

    def _product(self, request: httpx.Request, product_id: str) -> httpx.Response:
        for product in self.data.get("products", []):
            if str(product.get("id")) == product_id:
                return httpx.Response(200, json={"success": True, "product": product})
        return httpx.Response(404, json={"success": False, "message": "Product not found"})

    def _checkout(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        stock_levels = self.data.get("stock", {})

        amount_total = 0
        for item in payload.get("items", []):
            stock = stock_levels.get(item.get("variantId"))
            if stock is not None and stock < item.get("quantity", 1):
                return httpx.Response(
                    400,
                    json={
                        "success": False,
                        "code": "OUT_OF_STOCK",
                        "error": f"Insufficient stock for {item['variantId']}. "
                                 f"Available: {stock}, Requested: {item.get('quantity', 1)}",
                    },
                )
            amount_total += item.get("unitPriceMinorUnits", 0) * item.get("quantity", 1)

        session_id = f"cs_test_{uuid.uuid4().hex[:16]}"
        return httpx.Response(
            200,
            json={
                "success": True,
                "checkoutUrl": f"https://checkout.stripe.com/c/pay/{session_id}",
                "sessionId": session_id,
                "orderId": f"ord_{uuid.uuid4().hex[:8]}",
                "amountTotal": amount_total,
                "currency": "sek",
                "expiresAt": pendulum.now("UTC").add(minutes=30).to_iso8601_string(),
            },
        )

    def _campaign(self, request: httpx.Request, product_id: str) -> httpx.Response:
        campaign = self.data.get("campaigns", {}).get(product_id)
        if not campaign:
            return httpx.Response(200, json={"success": True, "hasCampaignPrice": False})
        return httpx.Response(200, json={"success": True, "hasCampaignPrice": True, **campaign})

    def _inventory(self, request: httpx.Request, product_id: str) -> httpx.Response:
        inventory = self.data.get("inventory", {}).get(product_id)
        if inventory is None:
            return httpx.Response(200, json={"success": True, "found": False})
        return httpx.Response(200, json={"success": True, "found": True, "inventory": inventory})

    def _track_cart(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.tracked_carts.append(payload)
        return httpx.Response(
            200,
            json={"success": True, "recordId": f"cart_{len(self.tracked_carts)}", "status": "pending"},
        )

    def _track_event(self, request: httpx.Request) -> httpx.Response:
        self.events.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True})

    def _gift_card(self, request: httpx.Request) -> httpx.Response:
        code = json.loads(request.content).get("code")
        card = self.data.get("gift_cards", {}).get(code)
        if card is None:
            return httpx.Response(200, json={"success": True, "valid": False, "error": "Invalid gift card code"})
        return httpx.Response(200, json={"success": True, "valid": True, **card})


def build_mock_portal_client(
    tenant: str = "mock-salon",
    timezone: str = "Europe/Stockholm",
    backend: Optional[MockPortalBackend] = None,
) -> CustomerPortalClient:
    """Create a portal client wired to a ``MockPortalBackend``."""
    backend = backend or MockPortalBackend()
    http = PortalHttpClient(
        base_url="http://mock-portal.local",
        tenant=tenant,
        transport=backend.transport(),
    )
    return CustomerPortalClient(http=http, timezone=timezone)

"""
Customer portal client for booking, catalog, checkout and tracking endpoints.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import pendulum
from pendulum import Date, DateTime

from ..domain.models import (
    Booking,
    BookingSettings,
    BookingStatus,
    CalendarBehavior,
    CampaignPrice,
    GiftCard,
    InventoryStatus,
    OpeningHours,
    Product,
    Provider,
    ProviderAvailability,
    Service,
    TimeSlot,
    Variant,
    parse_clock,
)
from ..domain.results import Err, ErrorKind, Ok, Result
from .http import PortalHttpClient, RequestCredentials

logger = logging.getLogger(__name__)

BOOKING_PUBLIC = "/api/system/booking/public"


class PayloadError(ValueError):
    """Raised internally when a response body does not have the expected shape."""


class RecordNotFound(Exception):
    """Raised internally when the backend answers but has no such record."""


class CustomerPortalClient:
    """
    Client for the customer portal backend.

    Every method resolves to ``Ok`` with domain objects or ``Err``; parsing
    problems surface as ``UPSTREAM_UNAVAILABLE`` because the backend sent
    something we cannot use.
    """

    def __init__(self, http: PortalHttpClient, timezone: str = "Europe/Stockholm"):
        self.http = http
        self.timezone = timezone

    @property
    def tenant(self) -> str:
        return self.http.tenant

    @property
    def _tenant_path(self) -> str:
        return quote(self.tenant, safe="")

    async def aclose(self) -> None:
        await self.http.aclose()

    # ------------------------------------------------------------------ #
    # Booking
    # ------------------------------------------------------------------ #

    async def list_services(self) -> Result[List[Service]]:
        """Fetch active booking services (public endpoint)."""
        result = await self.http.get(f"{BOOKING_PUBLIC}/services", params={"isActive": "true"})
        return self._parse(result, lambda data: self._parse_list(
            _require_success(data).get("services", []), _parse_service, "service"
        ))

    async def list_providers(self) -> Result[List[Provider]]:
        """Fetch active providers (public endpoint)."""
        result = await self.http.get(f"{BOOKING_PUBLIC}/providers", params={"isActive": "true"})
        return self._parse(result, lambda data: self._parse_list(
            _require_success(data).get("providers", []), _parse_provider, "provider"
        ))

    async def get_booking_settings(self) -> Result[BookingSettings]:
        """Fetch general opening hours and calendar behavior."""
        result = await self.http.get(f"{BOOKING_PUBLIC}/settings")
        return self._parse(result, _parse_settings)

    async def get_provider_availability(
        self,
        provider_id: str,
        day: Date,
        duration_minutes: int,
    ) -> Result[ProviderAvailability]:
        """Ask the backend for a provider's free slots on a day."""
        result = await self.http.get(
            f"{BOOKING_PUBLIC}/providers/{quote(str(provider_id), safe='')}/availability",
            params={"date": day.to_date_string(), "duration": duration_minutes},
        )
        return self._parse(
            result,
            lambda data: self._parse_provider_availability(data, day, duration_minutes),
        )

    async def list_bookings(
        self,
        start: DateTime,
        end: DateTime,
        provider_id: Optional[str] = None,
    ) -> Result[List[Booking]]:
        """
        Fetch bookings in a date range.

        Canceled bookings are returned too; callers decide what they block.
        """
        params: Dict[str, Any] = {
            "from": start.in_timezone("UTC").to_iso8601_string(),
            "to": end.in_timezone("UTC").to_iso8601_string(),
        }
        if provider_id:
            params["providerId"] = provider_id

        result = await self.http.get(f"{BOOKING_PUBLIC}/bookings", params=params)
        return self._parse(result, lambda data: self._parse_list(
            data.get("bookings", []) if isinstance(data, dict) else [],
            self._parse_booking,
            "booking",
        ))

    async def create_booking(
        self,
        payload: Dict[str, Any],
        credentials: Optional[RequestCredentials] = None,
    ) -> Result[Booking]:
        """Create a booking; a lost race comes back as ``Err(CONFLICT)``."""
        result = await self.http.post(
            f"{BOOKING_PUBLIC}/bookings",
            json=payload,
            credentials=credentials,
        )
        return self._parse(
            result,
            lambda data: self._parse_booking(_require_success(data)["booking"]),
        )

    # ------------------------------------------------------------------ #
    # Catalog
    # ------------------------------------------------------------------ #

    async def list_products(self) -> Result[List[Product]]:
        result = await self.http.get(f"/storefront/{self._tenant_path}/products")
        return self._parse(result, lambda data: self._parse_list(
            _require_success(data).get("products", []), _parse_product, "product"
        ))

    async def get_product(self, product_id: str) -> Result[Product]:
        result = await self.http.get(
            f"/storefront/{self._tenant_path}/product/{quote(str(product_id), safe='')}"
        )
        return self._parse(result, lambda data: _parse_product(_require_success(data)["product"]))

    async def get_campaign_price(
        self,
        product_id: str,
        original_price_id: str,
    ) -> Result[CampaignPrice]:
        """
        Look up a campaign override price.

        ``Ok`` with ``has_campaign=False`` carries the original price id.
        """
        result = await self.http.get(
            f"/api/campaigns/price/{quote(str(product_id), safe='')}",
            params={"originalPriceId": original_price_id, "tenant": self.tenant},
        )

        def parse(data: Any) -> CampaignPrice:
            if not isinstance(data, dict):
                raise PayloadError("campaign response is not an object")
            if data.get("hasCampaignPrice") and data.get("priceId"):
                return CampaignPrice(
                    price_id=str(data["priceId"]),
                    has_campaign=True,
                    campaign_name=data.get("campaignName"),
                )
            return CampaignPrice(price_id=original_price_id)

        return self._parse(result, parse)

    async def get_inventory_status(self, product_id: str) -> Result[InventoryStatus]:
        result = await self.http.get(
            f"/api/inventory/public/{self._tenant_path}/{quote(str(product_id), safe='')}"
        )

        def parse(data: Any) -> InventoryStatus:
            data = _require_success(data)
            if not data.get("found") or not isinstance(data.get("inventory"), dict):
                raise RecordNotFound(product_id)
            inventory = data["inventory"]
            stock = inventory.get("stock")
            return InventoryStatus(
                product_id=str(product_id),
                name=inventory.get("name") or "",
                stock=int(stock) if stock is not None else None,
                out_of_stock=bool(inventory.get("outOfStock")) or inventory.get("status") == "out_of_stock",
                low_stock=bool(inventory.get("lowStock")),
            )

        return self._parse(result, parse)

    # ------------------------------------------------------------------ #
    # Checkout and tracking
    # ------------------------------------------------------------------ #

    async def create_checkout_session(self, body: Dict[str, Any]) -> Result[Dict[str, Any]]:
        """Forward a checkout request; the raw body is returned for the orchestrator to judge."""
        return await self.http.post(f"/storefront/{self._tenant_path}/checkout", json=body)

    async def track_cart(self, payload: Dict[str, Any]) -> Result[Dict[str, Any]]:
        """Register a checkout session for abandoned-cart tracking."""
        result = await self.http.post("/api/carts/track", json=payload)
        if isinstance(result, Ok) and isinstance(result.value, dict) and result.value.get("success") is False:
            return Err(
                ErrorKind.VALIDATION_ERROR,
                result.value.get("message") or "Cart tracking was rejected",
                result.status,
                result.value,
            )
        return result

    async def track_event(self, event: str, data: Dict[str, Any]) -> Result[Any]:
        return await self.http.post(
            "/api/analytics/track",
            json={"event": event, "tenant": self.tenant, "data": data},
        )

    async def verify_gift_card(self, code: str) -> Result[GiftCard]:
        """Verify a gift card code; the code is normalized to upper case."""
        formatted = code.upper().strip()
        result = await self.http.post(
            f"/api/storefront/{self._tenant_path}/giftcards/verify",
            json={"code": formatted},
        )

        def parse(data: Any) -> GiftCard:
            if not isinstance(data, dict):
                raise PayloadError("gift card response is not an object")
            if not data.get("valid"):
                return GiftCard(
                    code=formatted,
                    valid=False,
                    message=data.get("error") or "Invalid gift card code",
                )
            return GiftCard(
                code=formatted,
                valid=True,
                balance_minor_units=int(data.get("balance") or 0),
                expires_at=data.get("expiresAt"),
            )

        return self._parse(result, parse)

    # ------------------------------------------------------------------ #
    # Parsing
    # ------------------------------------------------------------------ #

    @staticmethod
    def _parse(result: Result[Any], parser) -> Result[Any]:
        if isinstance(result, Err):
            return result
        try:
            return Ok(parser(result.value), result.status)
        except RecordNotFound:
            return Err(ErrorKind.NOT_FOUND, "Not found", result.status, result.value)
        except (PayloadError, KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Unexpected response shape: %s", exc)
            return Err(
                ErrorKind.UPSTREAM_UNAVAILABLE,
                "Unexpected response from the backend",
                result.status,
                result.value,
            )

    @staticmethod
    def _parse_list(items: Any, parser, label: str) -> list:
        if not isinstance(items, list):
            raise PayloadError(f"{label} list is not a list")
        parsed = []
        for item in items:
            try:
                parsed.append(parser(item))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping invalid %s entry: %s", label, exc)
        return parsed

    def _parse_datetime(self, value: str) -> DateTime:
        parsed = pendulum.parse(value, tz=self.timezone)
        if not isinstance(parsed, DateTime):
            raise ValueError(f"Could not parse datetime: {value}")
        return parsed.in_timezone(self.timezone)

    def _parse_booking(self, item: Dict[str, Any]) -> Booking:
        raw_status = str(item.get("status") or "confirmed").lower()
        status = (
            BookingStatus.CANCELED
            if raw_status in ("canceled", "cancelled")
            else BookingStatus.CONFIRMED
        )
        start = self._parse_datetime(item["start"])
        end = self._parse_datetime(item["end"])
        if start >= end:
            raise ValueError(f"booking {item.get('id')} ends before it starts")
        return Booking(
            id=str(item.get("id") or item.get("_id") or ""),
            service_id=str(item.get("serviceId") or ""),
            provider_id=str(item.get("providerId") or ""),
            start=start,
            end=end,
            status=status,
        )

    def _parse_provider_availability(
        self,
        data: Any,
        day: Date,
        duration_minutes: int,
    ) -> ProviderAvailability:
        data = _require_success(data)
        if data.get("isOpen") is False:
            return ProviderAvailability(is_open=False)

        raw_slots = data.get("slots")
        if not isinstance(raw_slots, list):
            raise PayloadError("availability response has no slot list")

        slots = [
            self._parse_slot(entry, day, duration_minutes)
            for entry in raw_slots
        ]
        return ProviderAvailability(
            is_open=True,
            slots=slots,
            using_general_hours=bool(data.get("usingGeneralHours")),
        )

    def _parse_slot(self, entry: Any, day: Date, duration_minutes: int) -> TimeSlot:
        raw_start = entry.get("start") if isinstance(entry, dict) else entry
        raw_end = entry.get("end") if isinstance(entry, dict) else None

        start = self._slot_datetime(str(raw_start), day)
        end = (
            self._slot_datetime(str(raw_end), day)
            if raw_end
            else start.add(minutes=duration_minutes)
        )
        return TimeSlot(start=start, end=end)

    def _slot_datetime(self, value: str, day: Date) -> DateTime:
        if "T" in value:
            return self._parse_datetime(value)
        clock = parse_clock(value)
        return pendulum.datetime(day.year, day.month, day.day, clock.hour, clock.minute, tz=self.timezone)


def _require_success(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise PayloadError("response is not an object")
    if data.get("success") is False:
        raise PayloadError(data.get("message") or data.get("error") or "backend reported failure")
    return data


def _parse_service(item: Dict[str, Any]) -> Service:
    duration = item.get("durationMinutes", item.get("duration"))
    return Service(
        id=str(item["id"]),
        name=item.get("name") or "",
        duration_minutes=int(duration),
    )


def _parse_opening_hours(raw: Any) -> Dict[str, OpeningHours]:
    if not isinstance(raw, dict):
        return {}

    hours: Dict[str, OpeningHours] = {}
    for day_name, entry in raw.items():
        if not isinstance(entry, dict):
            continue
        is_open = bool(entry.get("isOpen"))
        start = entry.get("start")
        end = entry.get("end")
        hours[str(day_name).lower()] = OpeningHours(
            is_open=is_open,
            start=parse_clock(start) if is_open and start else None,
            end=parse_clock(end) if is_open and end else None,
        )
    return hours


def _parse_provider(item: Dict[str, Any]) -> Provider:
    return Provider(
        id=str(item["id"]),
        name=item.get("name") or "",
        opening_hours=_parse_opening_hours(item.get("openingHours")),
    )


def _parse_settings(data: Any) -> BookingSettings:
    data = _require_success(data)
    settings = data.get("settings", data)
    if not isinstance(settings, dict):
        raise PayloadError("settings is not an object")

    behavior = None
    raw_behavior = settings.get("calendarBehavior")
    if isinstance(raw_behavior, dict) and raw_behavior.get("startTime") and raw_behavior.get("endTime"):
        interval = raw_behavior.get("slotIntervalMinutes", raw_behavior.get("slotInterval", 30))
        behavior = CalendarBehavior(
            start_time=parse_clock(raw_behavior["startTime"]),
            end_time=parse_clock(raw_behavior["endTime"]),
            slot_interval_minutes=int(interval),
        )

    return BookingSettings(
        opening_hours=_parse_opening_hours(settings.get("openingHours")),
        calendar_behavior=behavior,
    )


def _parse_product(item: Dict[str, Any]) -> Product:
    variants = []
    for raw in item.get("variants") or []:
        if isinstance(raw, dict) and raw.get("articleNumber"):
            variants.append(Variant(
                article_number=str(raw["articleNumber"]),
                stripe_price_id=raw.get("stripePriceId"),
                name=raw.get("name") or "",
            ))
    return Product(
        id=str(item["id"]),
        name=item.get("name") or "",
        variants=variants,
        stripe_product_id=item.get("stripeProductId"),
    )

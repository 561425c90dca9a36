"""
Checkout orchestration for the storefront.

Turns cart lines into a payment session: resolve variants, apply campaign
prices, create the session, then register it for abandoned-cart tracking.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Union

import pendulum

from ..domain.models import (
    CampaignPrice,
    CartItem,
    CheckoutSession,
    CustomerInfo,
    InventoryStatus,
    Product,
    SessionStatus,
)
from ..domain.results import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)

RETRY_MESSAGE = "Checkout could not be completed right now. Please try again."
INVALID_RESPONSE_MESSAGE = "Invalid response from checkout service"

STOCK_ERROR_CODES = {"OUT_OF_STOCK", "INSUFFICIENT_STOCK"}
STOCK_ERROR_PHRASES = ("out of stock", "insufficient stock", "not enough stock", "slutsåld")
TRANSIENT_KINDS = frozenset({ErrorKind.NETWORK_ERROR, ErrorKind.UPSTREAM_UNAVAILABLE})


class CheckoutBackendProtocol(Protocol):
    """Protocol describing the storefront calls used during checkout."""

    tenant: str

    async def list_products(self) -> Result[List[Product]]:
        """Return the tenant's product catalog."""

    async def get_product(self, product_id: str) -> Result[Product]:
        """Return a single product."""

    async def get_campaign_price(self, product_id: str, original_price_id: str) -> Result[CampaignPrice]:
        """Return the campaign override price, if any."""

    async def create_checkout_session(self, body: Dict[str, Any]) -> Result[Dict[str, Any]]:
        """Create a payment session."""

    async def track_cart(self, payload: Dict[str, Any]) -> Result[Dict[str, Any]]:
        """Register a session for abandoned-cart tracking."""

    async def track_event(self, event: str, data: Dict[str, Any]) -> Result[Any]:
        """Record an analytics event."""


@dataclass(frozen=True)
class CheckoutError:
    """A failed checkout; ``items`` lists the offending lines where relevant."""
    kind: ErrorKind
    message: str
    items: List[CartItem] = field(default_factory=list)
    status: Optional[int] = None

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class CheckoutSuccess:
    session: CheckoutSession
    tracking_registered: bool = False

    @property
    def ok(self) -> bool:
        return True

    @property
    def checkout_url(self) -> str:
        return self.session.checkout_url

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def order_id(self) -> Optional[str]:
        return self.session.order_id


CheckoutOutcome = Union[CheckoutSuccess, CheckoutError]


def mask_code(code: str) -> str:
    """Keep the first four characters of a gift card code for log lines."""
    return f"{code[:4]}****" if code else ""


class CheckoutOrchestrator:
    """
    Runs the checkout pipeline against the storefront backend.

    Variant resolution is all-or-nothing: if any line cannot be mapped to a
    catalog article, no session is created. Campaign lookups and cart
    tracking are best-effort and never fail the checkout.
    """

    def __init__(
        self,
        backend: CheckoutBackendProtocol,
        currency: str = "SEK",
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        website: Optional[str] = None,
    ):
        self._backend = backend
        self.currency = currency.upper()
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.website = website
        self.sessions: Dict[str, CheckoutSession] = {}

    @classmethod
    def from_config(cls, backend: CheckoutBackendProtocol, config) -> "CheckoutOrchestrator":
        return cls(
            backend=backend,
            currency=config.currency,
            success_url=config.success_url,
            cancel_url=config.cancel_url,
            website=config.site_url,
        )

    @property
    def tenant(self) -> str:
        return self._backend.tenant

    async def submit_checkout(
        self,
        items: Sequence[CartItem],
        customer: Optional[CustomerInfo] = None,
        *,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        gift_card_code: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CheckoutOutcome:
        """
        Create a payment session for the given cart lines.

        Args:
            items: Cart lines to pay for
            customer: Optional customer details (email is forwarded)
            success_url: Redirect after payment; defaults to the configured one
            cancel_url: Redirect on cancel; defaults to the configured one
            gift_card_code: Optional gift card code to redeem
            metadata: Extra metadata merged into the session metadata

        Returns:
            ``CheckoutSuccess`` or ``CheckoutError``
        """
        customer = customer or CustomerInfo()

        if not items:
            return CheckoutError(ErrorKind.VALIDATION_ERROR, "The cart is empty")

        if gift_card_code is not None and not isinstance(gift_card_code, str):
            return CheckoutError(ErrorKind.VALIDATION_ERROR, "Invalid gift card code format")

        success_url = success_url or self.success_url
        cancel_url = cancel_url or self.cancel_url
        if not success_url or not cancel_url:
            return CheckoutError(ErrorKind.VALIDATION_ERROR, "Success and cancel URLs are required")

        resolved = await self.resolve_variants(items)
        if isinstance(resolved, CheckoutError):
            logger.warning("Checkout blocked: %s", resolved.message)
            return resolved

        campaigns = await asyncio.gather(
            *(self.resolve_campaign_price(item.product_id, item.stripe_price_id) for item in resolved)
        )
        priced = [item.with_campaign(campaign) for item, campaign in zip(resolved, campaigns)]

        body = self._build_session_request(
            priced,
            customer,
            success_url=success_url,
            cancel_url=cancel_url,
            gift_card_code=gift_card_code.strip() if gift_card_code else None,
            metadata=metadata,
        )

        logger.info(
            "Creating checkout session for %d line(s)%s",
            len(priced),
            f" with gift card {mask_code(body['giftCardCode'])}" if body.get("giftCardCode") else "",
        )
        result = await self._backend.create_checkout_session(body)

        outcome = self._interpret_session_response(result)
        if isinstance(outcome, CheckoutError):
            logger.warning("Checkout failed (%s): %s", outcome.kind.value, outcome.message)
            return outcome

        if outcome.session_id:
            self.sessions[outcome.session_id] = outcome
        registered = await self.register_session(outcome, customer)
        return CheckoutSuccess(session=outcome, tracking_registered=registered)

    async def resolve_variants(self, items: Iterable[CartItem]) -> Union[List[CartItem], CheckoutError]:
        """
        Give every line a catalog article number.

        Lines that already carry one are kept; the rest are matched against
        the product catalog, first by price id and then by product.
        """
        items = list(items)
        if all(item.variant_id for item in items):
            return items

        catalog = await self._backend.list_products()
        if isinstance(catalog, Err) and catalog.kind in TRANSIENT_KINDS:
            logger.warning("Product catalog unavailable for variant lookup: %s", catalog.message)
            return CheckoutError(catalog.kind, RETRY_MESSAGE, status=catalog.status)
        if isinstance(catalog, Err):
            logger.warning("Product catalog rejected variant lookup: %s", catalog.message)
            products: List[Product] = []
        else:
            products = catalog.value

        resolved: List[CartItem] = []
        unresolved: List[CartItem] = []
        for item in items:
            if item.variant_id:
                resolved.append(item)
                continue

            variant_id = (
                _match_by_price(products, item.stripe_price_id)
                or _match_by_product(products, item.product_id)
            )
            if variant_id is None:
                unresolved.append(item)
            else:
                resolved.append(replace(item, variant_id=variant_id))

        if unresolved:
            names = ", ".join(item.name or item.product_id or item.stripe_price_id for item in unresolved)
            return CheckoutError(
                ErrorKind.MISSING_VARIANT,
                f"Some products are missing an article number and cannot be checked out: {names}",
                items=unresolved,
            )

        return resolved

    async def resolve_campaign_price(self, product_id: Optional[str], price_id: str) -> CampaignPrice:
        """
        Look up the campaign price for a line.

        Any failure falls back to the original price; this step never fails
        the checkout.
        """
        fallback = CampaignPrice(price_id=price_id)
        if not product_id:
            return fallback

        try:
            lookup_id = await self._stripe_product_id(product_id)
            result = await self._backend.get_campaign_price(lookup_id, price_id)
        except Exception:
            logger.exception("Campaign lookup for %s raised; using the original price", product_id)
            return fallback

        if isinstance(result, Err):
            logger.debug(
                "Campaign lookup for %s failed (%s); using the original price",
                product_id,
                result.kind.value,
            )
            return fallback

        if result.value.has_campaign:
            logger.debug("Campaign %s applies to %s", result.value.campaign_name, product_id)
        return result.value

    async def _stripe_product_id(self, product_id: str) -> str:
        product = await self._backend.get_product(product_id)
        if isinstance(product, Ok) and product.value.stripe_product_id:
            return product.value.stripe_product_id
        return product_id

    def _build_session_request(
        self,
        items: List[CartItem],
        customer: CustomerInfo,
        *,
        success_url: str,
        cancel_url: str,
        gift_card_code: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        session_metadata: Dict[str, Any] = {
            "tenant": self.tenant,
            "source": "tenant_website",
            "website": self.website or "",
        }
        session_metadata.update(metadata or {})

        body: Dict[str, Any] = {
            "items": [
                {
                    "variantId": item.variant_id,
                    "quantity": item.quantity,
                    "stripePriceId": item.checkout_price_id,
                    "unitPriceMinorUnits": item.unit_price_minor_units,
                }
                for item in items
            ],
            "successUrl": success_url,
            "cancelUrl": cancel_url,
            "metadata": session_metadata,
        }

        if customer.email:
            body["customerEmail"] = customer.email

        if gift_card_code:
            body["giftCardCode"] = gift_card_code
            session_metadata["giftCardCode"] = gift_card_code

        return body

    def _interpret_session_response(self, result: Result[Dict[str, Any]]) -> Union[CheckoutSession, CheckoutError]:
        if isinstance(result, Err):
            return _classify_failure(result)

        data = result.value
        if not isinstance(data, dict) or not data.get("success") or not data.get("checkoutUrl"):
            return CheckoutError(ErrorKind.UPSTREAM_UNAVAILABLE, INVALID_RESPONSE_MESSAGE, status=result.status)

        return CheckoutSession(
            session_id=str(data.get("sessionId") or ""),
            checkout_url=str(data["checkoutUrl"]),
            order_id=data.get("orderId"),
            amount_total=_amount_minor_units(data.get("amountTotal")),
            currency=str(data.get("currency") or self.currency).upper(),
            expires_at=data.get("expiresAt"),
        )

    async def register_session(self, session: CheckoutSession, customer: CustomerInfo) -> bool:
        """
        Register a created session for abandoned-cart tracking.

        Returns:
            True when the tracking service accepted the session. A failure is
            logged and otherwise ignored; the customer is already on their
            way to payment.
        """
        if not session.session_id:
            logger.error("cart tracking skipped: checkout response carried no session id")
            return False

        payload = {
            "sessionId": session.session_id,
            "tenant": self.tenant,
            "amountTotal": session.amount_total,
            "currency": session.currency.lower(),
            "customerEmail": customer.email,
            "createdAt": session.created_at.to_iso8601_string(),
        }

        try:
            result = await self._backend.track_cart(payload)
        except Exception:
            logger.exception(
                "cart tracking registration raised for session %s; abandoned-cart follow-up is off for it",
                session.session_id,
            )
            return False

        if isinstance(result, Err):
            logger.error(
                "cart tracking registration failed for session %s (%s: %s); "
                "abandoned-cart follow-up is off for it",
                session.session_id,
                result.kind.value,
                result.message,
            )
            return False

        logger.debug("Registered session %s for cart tracking", session.session_id)
        return True

    async def record_checkout_completion(self, session_id: str) -> bool:
        """
        Record that a session was paid.

        Posts a ``customer_payment`` analytics event and completes the
        session if this orchestrator created it, then stops holding it. The
        event is best-effort.
        """
        session = self.sessions.pop(session_id, None)
        if session is not None and session.status == SessionStatus.PENDING:
            session.mark_completed()

        data = {
            "sessionId": session_id,
            "status": "completed",
            "timestamp": pendulum.now("UTC").to_iso8601_string(),
        }
        try:
            result = await self._backend.track_event("customer_payment", data)
        except Exception:
            logger.exception("Payment event for session %s raised", session_id)
            return False

        if isinstance(result, Err):
            logger.warning("Payment event for session %s was not recorded: %s", session_id, result.message)
            return False
        return True


def _amount_minor_units(value: Any) -> int:
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Checkout response has a non-integer amountTotal %r; tracking it as 0", value)
        return 0


def _classify_failure(result: Err) -> CheckoutError:
    if result.kind in TRANSIENT_KINDS:
        return CheckoutError(result.kind, RETRY_MESSAGE, status=result.status)

    if _is_stock_rejection(result):
        return CheckoutError(ErrorKind.OUT_OF_STOCK, result.message, status=result.status)

    return CheckoutError(ErrorKind.VALIDATION_ERROR, result.message, status=result.status)


def _is_stock_rejection(result: Err) -> bool:
    data = result.data if isinstance(result.data, dict) else {}
    if str(data.get("code") or "").upper() in STOCK_ERROR_CODES:
        return True
    message = result.message.lower()
    return any(phrase in message for phrase in STOCK_ERROR_PHRASES)


def _match_by_price(products: List[Product], price_id: Optional[str]) -> Optional[str]:
    if not price_id:
        return None
    for product in products:
        for variant in product.variants:
            if variant.stripe_price_id == price_id:
                return variant.article_number
    return None


def _match_by_product(products: List[Product], product_id: Optional[str]) -> Optional[str]:
    """Match a line whose product id is an article number, or whose product has a single variant."""
    if not product_id:
        return None
    for product in products:
        for variant in product.variants:
            if variant.article_number == product_id:
                return variant.article_number
        if product.id == product_id and len(product.variants) == 1:
            return product.variants[0].article_number
    return None


async def lookup_inventory(backend, product_id: str) -> Optional[InventoryStatus]:
    """
    Fetch the stock status for a product.

    Returns None when the backend has no record or cannot be reached; the
    storefront then shows the product as in stock and lets checkout decide.
    """
    result = await backend.get_inventory_status(product_id)
    if isinstance(result, Err):
        logger.debug("No inventory for %s (%s)", product_id, result.kind.value)
        return None
    return result.value

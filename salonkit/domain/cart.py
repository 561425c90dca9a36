"""
In-memory shopping cart.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Awaitable, Callable, List, Optional

from .models import CampaignPrice, CartItem

CampaignLookup = Callable[[str, str], Awaitable[CampaignPrice]]


class Cart:
    """
    Holds cart lines for the current visitor.

    Lines are keyed by product and variant, so re-adding the same article
    increments its quantity instead of creating a second line.
    """

    def __init__(self, items: Optional[List[CartItem]] = None):
        self._items: List[CartItem] = [replace(item) for item in items or []]

    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item: CartItem) -> CartItem:
        """Add a copy of ``item``, or grow the matching line's quantity."""
        existing = self._find(item.product_id, item.variant_id)
        if existing is not None:
            existing.quantity += item.quantity
            return existing

        line = replace(item)
        self._items.append(line)
        return line

    def remove(self, product_id: Optional[str], variant_id: Optional[str] = None) -> None:
        self._items = [
            item for item in self._items
            if not (item.product_id == product_id and item.variant_id == variant_id)
        ]

    def update_quantity(
        self,
        product_id: Optional[str],
        quantity: int,
        variant_id: Optional[str] = None,
    ) -> None:
        """Set a line's quantity; zero or less removes the line."""
        if quantity <= 0:
            self.remove(product_id, variant_id)
            return

        existing = self._find(product_id, variant_id)
        if existing is not None:
            existing.quantity = quantity

    def clear(self) -> None:
        self._items = []

    def total_minor_units(self) -> int:
        """Display total, using each line's regular unit price."""
        return sum(item.unit_price_minor_units * item.quantity for item in self._items)

    def total_items(self) -> int:
        return sum(item.quantity for item in self._items)

    async def apply_campaigns(self, lookup: CampaignLookup) -> None:
        """Run the campaign lookup once for every line that has not been checked yet."""
        updated: List[CartItem] = []
        for item in self._items:
            if item.product_id and not item.campaign_checked:
                campaign = await lookup(item.product_id, item.stripe_price_id)
                item = item.with_campaign(campaign)
            updated.append(item)
        self._items = updated

    def _find(self, product_id: Optional[str], variant_id: Optional[str]) -> Optional[CartItem]:
        for item in self._items:
            if item.product_id == product_id and item.variant_id == variant_id:
                return item
        return None

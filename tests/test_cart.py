"""
Tests for the shopping cart.
"""

import asyncio

from salonkit.domain.cart import Cart
from salonkit.domain.models import CampaignPrice, CartItem


def _item(product_id="prod_oil", variant_id="OIL-50", quantity=1, price=24900):
    return CartItem(
        product_id=product_id,
        stripe_price_id=f"price_{product_id}",
        quantity=quantity,
        unit_price_minor_units=price,
        variant_id=variant_id,
    )


class TestCart:
    """Tests for Cart."""

    def test_readding_increments_quantity(self):
        cart = Cart()

        cart.add(_item())
        cart.add(_item(quantity=2))

        assert len(cart) == 1
        assert cart.items[0].quantity == 3

    def test_different_variants_are_separate_lines(self):
        cart = Cart()

        cart.add(_item(product_id="prod_shampoo", variant_id="SH-250"))
        cart.add(_item(product_id="prod_shampoo", variant_id="SH-500"))

        assert len(cart) == 2

    def test_totals(self):
        cart = Cart([_item(quantity=2), _item(product_id="prod_shampoo", variant_id="SH-250", price=19900)])

        assert cart.total_minor_units() == 2 * 24900 + 19900
        assert cart.total_items() == 3

    def test_update_quantity_to_zero_removes(self):
        cart = Cart([_item()])

        cart.update_quantity("prod_oil", 0, variant_id="OIL-50")

        assert len(cart) == 0

    def test_update_quantity(self):
        cart = Cart([_item()])

        cart.update_quantity("prod_oil", 4, variant_id="OIL-50")

        assert cart.total_items() == 4

    def test_remove_and_clear(self):
        cart = Cart([_item(), _item(product_id="prod_shampoo", variant_id="SH-250")])

        cart.remove("prod_oil", "OIL-50")
        assert [item.product_id for item in cart.items] == ["prod_shampoo"]

        cart.clear()
        assert len(cart) == 0

    def test_campaigns_are_looked_up_once(self):
        lookups = []

        async def lookup(product_id, price_id):
            lookups.append(product_id)
            if product_id == "prod_oil":
                return CampaignPrice(price_id="price_oil_autumn", has_campaign=True, campaign_name="Höstkampanj")
            return CampaignPrice(price_id=price_id)

        cart = Cart([_item(), _item(product_id="prod_shampoo", variant_id="SH-250")])

        asyncio.run(cart.apply_campaigns(lookup))
        asyncio.run(cart.apply_campaigns(lookup))

        assert lookups == ["prod_oil", "prod_shampoo"]
        assert cart.items[0].checkout_price_id == "price_oil_autumn"
        assert cart.items[1].checkout_price_id == "price_prod_shampoo"

    def test_lines_are_copies_of_added_items(self):
        """Changing an item after adding it does not change the cart line."""
        item = _item()
        seeded = _item(product_id="prod_shampoo", variant_id="SH-250")
        cart = Cart([seeded])

        cart.add(item)
        item.quantity = 9
        seeded.quantity = 7

        assert [line.quantity for line in cart.items] == [1, 1]
        assert cart.total_items() == 2

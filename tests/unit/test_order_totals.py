"""
Unit Tests for order pricing and numbering
"""

import re
from decimal import Decimal

from sastabazar.database.order_db import OrderItem
from sastabazar.services.order_intent_service import calculate_order_totals, generate_order_number


def _item(price: str, quantity: int = 1) -> OrderItem:
    return OrderItem(product_id="p1", name="Item", quantity=quantity, unit_price=Decimal(price))


class TestCalculateOrderTotals:

    def test_below_free_shipping_threshold(self, settings):
        totals = calculate_order_totals([_item("999")], settings)

        assert totals.subtotal == Decimal("999")
        assert totals.shipping_fee == Decimal("50")
        assert totals.tax == Decimal("180")
        assert totals.total == Decimal("1229")
        assert totals.amount_minor == 122900

    def test_free_shipping_at_threshold(self, settings):
        totals = calculate_order_totals([_item("500", 2)], settings)

        assert totals.subtotal == Decimal("1000")
        assert totals.shipping_fee == Decimal("0")
        assert totals.tax == Decimal("180")
        assert totals.total == Decimal("1180")

    def test_tax_rounds_half_up(self, settings):
        # 25 * 0.18 = 4.5
        totals = calculate_order_totals([_item("25")], settings)
        assert totals.tax == Decimal("5")

    def test_multiple_lines(self, settings):
        totals = calculate_order_totals([_item("250", 2), _item("120", 1)], settings)

        assert totals.subtotal == Decimal("620")
        assert totals.tax == Decimal("112")
        assert totals.total == Decimal("782")

    def test_totals_follow_settings(self, settings):
        settings.TAX_RATE = Decimal("0.05")
        settings.SHIPPING_FEE = Decimal("99")
        totals = calculate_order_totals([_item("100")], settings)

        assert totals.tax == Decimal("5")
        assert totals.shipping_fee == Decimal("99")


class TestGenerateOrderNumber:

    def test_format(self):
        assert re.fullmatch(r"ORD-\d{13}-[0-9a-z]{9}", generate_order_number())

    def test_unique(self):
        numbers = {generate_order_number() for _ in range(200)}
        assert len(numbers) == 200

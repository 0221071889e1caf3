"""
Pricing rule tests.

Verifies:
- Line totals: (unit + size upcharge + toppings) x quantity
- Sale price wins over list price
- Quantity and amount validation
- Cart subtotal folds stored line totals
- Percent/fixed discounts and clamping of the final total
"""

from types import SimpleNamespace

import pytest

from app.services import pricing_service
from app.services.pricing_service import (
    apply_discount,
    calculate_discount,
    calculate_voucher_discount,
    cart_subtotal,
    price_line_item,
    reprice_quantity,
    resolve_size_index,
    size_upcharge,
    unit_price,
    validate_quantity,
)
from app.validation import ValidationError


STEP = 5000


# =============================================================================
# LINE ITEMS
# =============================================================================


class TestLineItemPricing:

    def test_reference_line_total(self):
        """Base 30000, second size tier, toppings 5000 + 7000, quantity 2 -> 94000."""
        line = price_line_item(30000, 1, [5000, 7000], 2, step=STEP)

        assert line.unit_price == 35000
        assert line.topping_total == 12000
        assert line.quantity == 2
        assert line.line_total == 94000

    def test_first_size_tier_has_no_upcharge(self):
        line = price_line_item(30000, 0, [], 1, step=STEP)
        assert line.line_total == 30000

    def test_unsized_product_uses_base_price(self):
        line = price_line_item(30000, None, [], 3, step=STEP)
        assert line.line_total == 90000

    def test_toppings_do_not_scale_with_size(self):
        small = price_line_item(30000, 0, [5000], 1, step=STEP)
        large = price_line_item(30000, 2, [5000], 1, step=STEP)
        assert large.topping_total == small.topping_total == 5000
        assert large.line_total - small.line_total == 2 * STEP

    def test_deterministic(self):
        first = price_line_item(30000, 1, [5000, 7000], 2, step=STEP)
        second = price_line_item(30000, 1, [5000, 7000], 2, step=STEP)
        assert first == second

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "2", True, None])
    def test_rejects_bad_quantity(self, quantity):
        with pytest.raises(ValidationError):
            price_line_item(30000, 0, [], quantity, step=STEP)

    def test_rejects_negative_prices(self):
        with pytest.raises(ValidationError):
            price_line_item(-1, 0, [], 1, step=STEP)
        with pytest.raises(ValidationError):
            price_line_item(30000, 0, [5000, -1], 1, step=STEP)

    def test_reprice_quantity_uses_snapshots(self):
        assert reprice_quantity(35000, 12000, 3) == 141000

    def test_reprice_quantity_rejects_zero(self):
        with pytest.raises(ValidationError):
            reprice_quantity(35000, 12000, 0)

    def test_validate_quantity_returns_value(self):
        assert validate_quantity(4) == 4


class TestUnitPriceAndSizes:

    def test_sale_price_wins(self):
        assert unit_price(30000, 25000) == 25000

    def test_list_price_without_sale(self):
        assert unit_price(30000, None) == 30000

    def test_zero_sale_price_is_still_a_sale(self):
        assert unit_price(30000, 0) == 0

    def test_size_upcharge(self):
        assert size_upcharge(0, STEP) == 0
        assert size_upcharge(None, STEP) == 0
        assert size_upcharge(2, STEP) == 10000

    def test_resolve_size_index(self):
        sizes = ["M", "L", "XL"]
        assert resolve_size_index(sizes, "L") == ("L", 1)
        assert resolve_size_index(sizes, None) == ("M", 0)
        assert resolve_size_index(sizes, "") == ("M", 0)

    def test_resolve_size_for_unsized_product(self):
        assert resolve_size_index(None, "L") == (None, 0)
        assert resolve_size_index([], None) == (None, 0)

    def test_resolve_unknown_size(self):
        with pytest.raises(ValidationError):
            resolve_size_index(["M", "L"], "XXL")


# =============================================================================
# CART
# =============================================================================


class TestCartSubtotal:

    def test_sums_stored_totals(self):
        items = [{"total_price": 94000}, {"total_price": 15000}]
        assert cart_subtotal(items) == 109000

    def test_accepts_rows(self):
        items = [SimpleNamespace(total_price=30000), SimpleNamespace(total_price=5000)]
        assert cart_subtotal(items) == 35000

    def test_empty_cart(self):
        assert cart_subtotal([]) == 0


# =============================================================================
# DISCOUNTS
# =============================================================================


class TestDiscounts:

    def test_percent_reference_scenario(self):
        """10% of 94000 is 9400; the order total is 84600."""
        discount = calculate_discount("percent", 10, 94000)
        totals = apply_discount(94000, discount)

        assert discount == 9400
        assert totals.subtotal == 94000
        assert totals.discount_amount == 9400
        assert totals.total_price == 84600

    def test_percent_floors(self):
        assert calculate_discount("percent", 15, 33333) == 4999

    def test_fixed_is_not_capped_by_calculator(self):
        assert calculate_discount("fixed", 50000, 30000) == 50000

    def test_fixed_above_subtotal_makes_order_free(self):
        totals = apply_discount(30000, 50000)
        assert totals.discount_amount == 30000
        assert totals.total_price == 0

    def test_hundred_percent(self):
        totals = apply_discount(42000, calculate_discount("percent", 100, 42000))
        assert totals.total_price == 0

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            calculate_discount("bogo", 1, 10000)

    def test_voucher_discount(self):
        voucher = SimpleNamespace(discount_type=pricing_service.DISCOUNT_FIXED, discount_value=20000)
        assert calculate_voucher_discount(voucher, 150000) == 20000

    def test_no_discount(self):
        totals = apply_discount(50000, 0)
        assert totals.total_price == 50000
        assert totals.discount_amount == 0

from decimal import Decimal

from storefront.pricing import FREE_SHIPPING_THRESHOLD, SHIPPING_FEE, calculate_totals
from storefront.schemas import LineItem


def _items(make_product, *pairs):
    return [LineItem(product=make_product(f"p{i}", price, 100), quantity=qty)
            for i, (price, qty) in enumerate(pairs)]


def test_empty_cart_is_all_zero():
    totals = calculate_totals([])
    assert (totals.total_item_count, totals.subtotal, totals.shipping, totals.grand_total) == (
        0, Decimal("0"), Decimal("0"), Decimal("0"))


def test_scenario_two_books_reach_free_shipping(make_product):
    totals = calculate_totals(_items(make_product, ("10.00", 2), ("20.00", 1)))
    assert totals.total_item_count == 3
    assert totals.subtotal == Decimal("40.00")
    assert totals.shipping == Decimal("0.00")
    assert totals.grand_total == Decimal("40.00")


def test_exactly_at_threshold_ships_free(make_product):
    totals = calculate_totals(_items(make_product, (str(FREE_SHIPPING_THRESHOLD), 1)))
    assert totals.shipping == Decimal("0")
    assert totals.grand_total == FREE_SHIPPING_THRESHOLD


def test_one_cent_below_threshold_pays_flat_fee(make_product):
    below = FREE_SHIPPING_THRESHOLD - Decimal("0.01")
    totals = calculate_totals(_items(make_product, (str(below), 1)))
    assert totals.shipping == SHIPPING_FEE
    assert totals.grand_total == below + SHIPPING_FEE


def test_decimal_arithmetic_has_no_float_drift(make_product):
    totals = calculate_totals(_items(make_product, ("0.10", 3), ("0.20", 1)))
    assert totals.subtotal == Decimal("0.50")
    assert totals.grand_total == Decimal("0.50") + SHIPPING_FEE


def test_custom_threshold_and_fee(make_product):
    totals = calculate_totals(_items(make_product, ("12.00", 1)), threshold=Decimal("10"), fee=Decimal("3"))
    assert totals.shipping == 0
    totals = calculate_totals(_items(make_product, ("8.00", 1)), threshold=Decimal("10"), fee=Decimal("3"))
    assert totals.shipping == Decimal("3.00")


def test_is_idempotent(make_product):
    items = _items(make_product, ("9.99", 2))
    assert calculate_totals(items) == calculate_totals(items)

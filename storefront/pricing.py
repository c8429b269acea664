"""Cart totals.

Everything here is pure: totals are derived from line items on demand and never
stored next to them.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from pydantic import BaseModel

from storefront.core.config import settings

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

FREE_SHIPPING_THRESHOLD: Decimal = settings.FREE_SHIPPING_THRESHOLD
SHIPPING_FEE: Decimal = settings.SHIPPING_FEE


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class CartTotals(BaseModel):
    total_item_count: int = 0
    subtotal: Decimal = ZERO
    shipping: Decimal = ZERO
    grand_total: Decimal = ZERO

    class Config:
        frozen = True


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    return to_money(unit_price * quantity)


def shipping_for(subtotal: Decimal, item_count: int,
                 threshold: Decimal = FREE_SHIPPING_THRESHOLD,
                 fee: Decimal = SHIPPING_FEE) -> Decimal:
    # nothing to ship
    if item_count == 0:
        return ZERO
    return ZERO if subtotal >= threshold else to_money(fee)


def calculate_totals(items: Iterable, threshold: Decimal = FREE_SHIPPING_THRESHOLD,
                     fee: Decimal = SHIPPING_FEE) -> CartTotals:
    """Derive ``CartTotals`` from line items.

    Each item must expose ``quantity`` and ``product.price``; the price used is the
    one the item currently carries.
    """
    count = 0
    subtotal = ZERO
    for item in items:
        count += item.quantity
        subtotal += line_total(item.product.price, item.quantity)
    shipping = shipping_for(subtotal, count, threshold, fee)
    return CartTotals(
        total_item_count=count,
        subtotal=to_money(subtotal),
        shipping=shipping,
        grand_total=to_money(subtotal + shipping),
    )

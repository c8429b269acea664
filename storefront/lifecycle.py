"""Order status rules.

Orders start ``pending``. Fulfillment moves them forward; a customer may only
cancel their own order while it is still pending. ``delivered`` and
``cancelled`` are final.
"""

from typing import Dict, FrozenSet, Optional

import structlog

from storefront.errors import OrderNotFoundError, OrderStatusError
from storefront.schemas import OrderStatus, OrderWithItems
from storefront.services.orders import OrderService

logger = structlog.get_logger(__name__)

TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL = frozenset(s for s, nxt in TRANSITIONS.items() if not nxt)


def ensure_transition(current: OrderStatus, new: OrderStatus) -> None:
    if current in TERMINAL:
        raise OrderStatusError(f"Order is {current.value} and can no longer change")
    if new not in TRANSITIONS[current]:
        raise OrderStatusError(f"Cannot move order from {current.value} to {new.value}")


def _load(orders: OrderService, order_number: str) -> OrderWithItems:
    order = orders.get_order_by_number(order_number)
    if order is None:
        raise OrderNotFoundError(order_number)
    return order


def cancel_order(orders: OrderService, order_number: str, user_id: Optional[str]) -> OrderWithItems:
    """Customer cancellation: owner only, pending only."""
    order = _load(orders, order_number)
    if not user_id or order.user_id != user_id:
        # do not reveal other people's orders
        raise OrderNotFoundError(order_number)
    if order.status != OrderStatus.PENDING:
        raise OrderStatusError("Only pending orders can be cancelled")

    orders.update_status(order.id, OrderStatus.CANCELLED, expected=OrderStatus.PENDING)
    logger.info("Order cancelled by customer", order_number=order_number, user_id=user_id)
    return order.model_copy(update={"status": OrderStatus.CANCELLED})


def advance_order(orders: OrderService, order_number: str, status: OrderStatus) -> OrderWithItems:
    """Fulfillment-driven transition (confirm, ship, deliver, cancel)."""
    order = _load(orders, order_number)
    ensure_transition(order.status, status)
    orders.update_status(order.id, status, expected=order.status)
    logger.info("Order status changed", order_number=order_number,
                previous=order.status.value, status=status.value)
    return order.model_copy(update={"status": status})

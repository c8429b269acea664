"""Order placement: turn a frozen cart into a persisted order.

One attempt walks ``idle -> validating -> stock_checking -> persisting ->
succeeded``; each step can exit to its own rejected state by raising. The
header and its line items are two separate writes. If the items fail after
the header landed, the header is discarded again (or left for the
reconciliation job when even that fails) and the attempt is reported as a
persistence failure. Success is only reported after both writes, and only
then is the cart cleared.

``OrderPlacement`` holds no lock; callers must not run two attempts for the
same cart at once.
"""

import re
from enum import Enum
from typing import Callable, Dict, Optional

import structlog

from storefront.core.config import settings
from storefront.errors import CatalogError, PersistenceError, StockShortfallError, ValidationError
from storefront.pricing import calculate_totals
from storefront.schemas import (
    CheckoutContact,
    OrderHeaderFields,
    OrderItemCreate,
    OrderRequest,
    OrderWithItems,
    StockRequest,
)
from storefront.services.orders import OrderService
from storefront.stock import StockVerifier
from storefront.store.cart_store import CartStore

logger = structlog.get_logger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[\d\s\-+()]{10,}$")

REQUIRED_FIELDS = {
    "customer_name": "Full name is required",
    "customer_email": "Email is required",
    "customer_phone": "Phone number is required",
    "shipping_address": "Shipping address is required",
    "city": "City is required",
    "postal_code": "Postal code is required",
}


class CheckoutState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    STOCK_CHECKING = "stock_checking"
    PERSISTING = "persisting"
    SUCCEEDED = "succeeded"
    REJECTED_INPUT = "rejected_input"
    REJECTED_STOCK = "rejected_stock"
    REJECTED_PERSISTENCE = "rejected_persistence"


def validate_order_request(request: OrderRequest) -> Dict[str, str]:
    """Return field -> message for every problem found; empty means valid."""
    errors: Dict[str, str] = {}
    for field, message in REQUIRED_FIELDS.items():
        if not (getattr(request, field) or "").strip():
            errors[field] = message

    if "customer_email" not in errors and not EMAIL_RE.match(request.customer_email.strip()):
        errors["customer_email"] = "Please enter a valid email address"
    if "customer_phone" not in errors and not PHONE_RE.match(request.customer_phone.strip()):
        errors["customer_phone"] = "Please enter a valid phone number"
    if not request.items:
        errors["items"] = "Your cart is empty"
    return errors


def prefill_contact(identity: Optional[dict]) -> CheckoutContact:
    """Contact fields known from the signed-in identity; blank for guests."""
    if not identity:
        return CheckoutContact()
    return CheckoutContact(
        customer_name=identity.get("name") or "",
        customer_email=identity.get("email") or identity.get("sub") or "",
        customer_phone=identity.get("phone") or "",
    )


class OrderPlacement:
    def __init__(self, cart: CartStore, verifier: StockVerifier, orders: OrderService,
                 publish: Optional[Callable[[dict], None]] = None):
        self.cart = cart
        self.verifier = verifier
        self.orders = orders
        self.publish = publish
        self.state = CheckoutState.IDLE

    def place_order(self, request: OrderRequest) -> OrderWithItems:
        log = logger.bind(cart=self.cart.key, user_id=request.user_id)

        # 1. validate
        self.state = CheckoutState.VALIDATING
        errors = validate_order_request(request)
        if errors:
            self.state = CheckoutState.REJECTED_INPUT
            log.info("Checkout rejected: invalid input", fields=sorted(errors))
            raise ValidationError(errors)

        # 2. stock
        self.state = CheckoutState.STOCK_CHECKING
        try:
            result = self.verifier.verify(
                StockRequest(product_id=it.product_id, quantity=it.quantity) for it in request.items
            )
        except CatalogError as e:
            self.state = CheckoutState.REJECTED_STOCK
            log.warning("Checkout rejected: stock could not be verified", error=str(e))
            raise StockShortfallError([], reason="Unable to verify stock, please try again") from e
        if not result.available:
            self.state = CheckoutState.REJECTED_STOCK
            log.info("Checkout rejected: stock shortfall", shortfalls=result.shortfalls)
            raise StockShortfallError(result.shortfalls)

        # 3. persist header, then items
        self.state = CheckoutState.PERSISTING
        totals = calculate_totals(request.items)
        try:
            header = self.orders.create_order_header(OrderHeaderFields(
                user_id=request.user_id,
                customer_name=request.customer_name.strip(),
                customer_email=request.customer_email.strip(),
                customer_phone=request.customer_phone.strip(),
                shipping_address=request.shipping_address.strip(),
                city=request.city.strip(),
                postal_code=request.postal_code.strip(),
                notes=(request.notes or "").strip() or None,
                total_amount=totals.grand_total,
                shipping_amount=totals.shipping,
                currency=settings.CURRENCY,
            ))
        except PersistenceError:
            self.state = CheckoutState.REJECTED_PERSISTENCE
            log.error("Checkout failed: order header not written")
            raise

        try:
            items = self.orders.create_order_line_items(header.id, [
                OrderItemCreate(
                    product_id=it.product_id,
                    product_title=it.product.title,
                    quantity=it.quantity,
                    price_at_purchase=it.product.price,
                )
                for it in request.items
            ])
        except PersistenceError:
            self.state = CheckoutState.REJECTED_PERSISTENCE
            self._discard_header(header.id, header.order_number)
            raise

        # 4. done
        self.state = CheckoutState.SUCCEEDED
        order = OrderWithItems(**header.model_dump(), items=items)
        log.info("Order placed", order_number=order.order_number, total=str(order.total_amount))
        self.cart.clear()
        self._publish(order)
        return order

    def _publish(self, order: OrderWithItems) -> None:
        publish_event(self.publish, order_created_event(order))

    def _discard_header(self, order_id: int, order_number: str) -> None:
        try:
            discarded = self.orders.discard_order_header(order_id)
        except PersistenceError as e:
            logger.critical("Order header left without items, needs reconciliation",
                            order_id=order_id, order_number=order_number, error=str(e))
            return
        logger.error("Order items not written, header discarded",
                     order_id=order_id, order_number=order_number, discarded=discarded)


def order_created_event(order: OrderWithItems) -> dict:
    return {
        "type": "order.created",
        "order_id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "customer_email": order.customer_email,
        "total_amount": str(order.total_amount),
        "currency": order.currency,
        "items": [
            {"product_id": it.product_id, "quantity": it.quantity, "price_at_purchase": str(it.price_at_purchase)}
            for it in order.items
        ],
    }


def publish_event(publish: Optional[Callable[[dict], None]], event: dict) -> None:
    """Best effort: the state the event describes is already stored."""
    if publish is None:
        return
    try:
        publish(event)
    except Exception:
        logger.exception("Failed to publish event", type=event.get("type"),
                         order_number=event.get("order_number"))

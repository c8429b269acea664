from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, computed_field, field_validator

from storefront.pricing import CartTotals, calculate_totals, line_total, to_money


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


PAYMENT_METHOD = "cash_on_delivery"


# --- catalog ---

class Product(BaseModel):
    id: str
    title: str
    price: Decimal = Field(ge=0)
    stock_quantity: int = Field(ge=0)
    author: Optional[str] = None
    category: Optional[str] = None
    cover_image_url: Optional[str] = None

    class Config:
        frozen = True
        from_attributes = True

    @field_validator("price")
    @classmethod
    def _cents(cls, v: Decimal) -> Decimal:
        return to_money(v)


# --- cart ---

class LineItem(BaseModel):
    product: Product
    quantity: int = Field(ge=1)

    class Config:
        frozen = True

    @property
    def product_id(self) -> str:
        return self.product.id

    @property
    def line_total(self) -> Decimal:
        return line_total(self.product.price, self.quantity)


class CartSnapshot(BaseModel):
    """Immutable view of the cart. Totals are recomputed on every read."""

    items: Tuple[LineItem, ...] = ()

    class Config:
        frozen = True

    @property
    def totals(self) -> CartTotals:
        return calculate_totals(self.items)

    @computed_field
    @property
    def total_item_count(self) -> int:
        return self.totals.total_item_count

    @computed_field
    @property
    def subtotal(self) -> Decimal:
        return self.totals.subtotal

    @computed_field
    @property
    def shipping(self) -> Decimal:
        return self.totals.shipping

    @computed_field
    @property
    def grand_total(self) -> Decimal:
        return self.totals.grand_total


# --- checkout ---

class CheckoutContact(BaseModel):
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    shipping_address: str = ""
    city: str = ""
    postal_code: str = ""
    notes: Optional[str] = None


class OrderRequest(CheckoutContact):
    """Checkout submission. ``items`` is a frozen copy of the cart at submit time."""

    user_id: Optional[str] = None
    items: Tuple[LineItem, ...] = ()

    class Config:
        frozen = True

    @classmethod
    def from_cart(cls, snapshot: CartSnapshot, contact: CheckoutContact,
                  user_id: Optional[str] = None) -> "OrderRequest":
        return cls(**contact.model_dump(), user_id=user_id, items=tuple(snapshot.items))


class StockRequest(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)


class StockCheckResult(BaseModel):
    available: bool
    shortfalls: List[str] = []


# --- orders ---

class OrderHeaderFields(BaseModel):
    user_id: Optional[str] = None
    customer_name: str
    customer_email: str
    customer_phone: str
    shipping_address: str
    city: str
    postal_code: str
    notes: Optional[str] = None
    total_amount: Decimal
    shipping_amount: Decimal
    currency: str = "USD"


class OrderItemCreate(BaseModel):
    product_id: str
    product_title: str
    quantity: int = Field(ge=1)
    price_at_purchase: Decimal = Field(ge=0)


class OrderItemRead(OrderItemCreate):
    id: int
    order_id: int

    class Config:
        from_attributes = True

    @property
    def subtotal(self) -> Decimal:
        return line_total(self.price_at_purchase, self.quantity)


class OrderRead(BaseModel):
    id: int
    order_number: str
    user_id: Optional[str] = None
    customer_name: str
    customer_email: str
    customer_phone: str
    shipping_address: str
    city: str
    postal_code: str
    notes: Optional[str] = None
    total_amount: Decimal
    shipping_amount: Decimal
    currency: str
    payment_method: str
    status: OrderStatus
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderWithItems(OrderRead):
    items: List[OrderItemRead] = []

    @property
    def items_subtotal(self) -> Decimal:
        return to_money(sum((it.subtotal for it in self.items), Decimal("0")))

from fastapi import APIRouter, Depends, HTTPException, Header, Request
from pydantic import BaseModel, Field
from typing import Callable, List, Optional

from storefront.checkout import OrderPlacement, prefill_contact, publish_event
from storefront.core.auth import get_current_identity, get_optional_identity, require_admin
from storefront.errors import (
    CatalogError,
    OrderNotFoundError,
    OrderStatusError,
    PersistenceError,
    StockShortfallError,
    ValidationError,
)
from storefront.lifecycle import advance_order, cancel_order
from storefront.schemas import CartSnapshot, CheckoutContact, OrderRead, OrderRequest, OrderStatus, OrderWithItems
from storefront.services.catalog import ProductCatalog
from storefront.services.orders import OrderService
from storefront.stock import StockVerifier
from storefront.store.cart_store import CartRegistry, CartStore

cart_router = APIRouter()
order_router = APIRouter()

# --- dependencies (wired onto app.state in storefront.main) ---

def get_registry(request: Request) -> CartRegistry:
    return request.app.state.carts

def get_catalog(request: Request) -> ProductCatalog:
    return request.app.state.catalog

def get_orders(request: Request) -> OrderService:
    return request.app.state.orders

def get_publisher(request: Request) -> Optional[Callable[[dict], None]]:
    return getattr(request.app.state, "publish", None)

def get_session_id(x_session_id: Optional[str] = Header(default=None, alias="X-Session-Id"),
                   identity: Optional[dict] = Depends(get_optional_identity)) -> str:
    if x_session_id:
        return x_session_id
    if identity and identity.get("sub"):
        return identity["sub"]
    raise HTTPException(status_code=400, detail="Missing cart session")

def get_cart(session_id: str = Depends(get_session_id),
             registry: CartRegistry = Depends(get_registry)) -> CartStore:
    return registry.get(session_id)

# --- cart ---

class CartItemAdd(BaseModel):
    product_id: str
    qty: int = Field(default=1, ge=1)

class CartItemUpdate(BaseModel):
    qty: int

@cart_router.get("/v1/cart", response_model=CartSnapshot)
def get_my_cart(cart: CartStore = Depends(get_cart)):
    return cart.snapshot

@cart_router.post("/v1/cart/items", response_model=CartSnapshot, status_code=201)
def add_item(payload: CartItemAdd, cart: CartStore = Depends(get_cart),
             catalog: ProductCatalog = Depends(get_catalog)):
    # fetch the current product record so price and stock are fresh
    try:
        product = catalog.get_by_id(payload.product_id)
    except CatalogError:
        raise HTTPException(status_code=503, detail="Catalog unavailable")
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    # a sold-out product also drops any stale line for it
    snapshot = cart.add_item(product, payload.qty)
    if product.stock_quantity <= 0:
        raise HTTPException(status_code=409, detail={"message": "Product is out of stock",
                                                     "cart": snapshot.model_dump(mode="json")})
    return snapshot

@cart_router.patch("/v1/cart/items/{product_id}", response_model=CartSnapshot)
def update_item(product_id: str, payload: CartItemUpdate, cart: CartStore = Depends(get_cart)):
    if payload.qty > 0 and not cart.is_in_cart(product_id):
        raise HTTPException(status_code=404, detail="Item not in cart")
    return cart.update_quantity(product_id, payload.qty)

@cart_router.delete("/v1/cart/items/{product_id}", response_model=CartSnapshot)
def remove_item(product_id: str, cart: CartStore = Depends(get_cart)):
    return cart.remove_item(product_id)

@cart_router.post("/v1/cart/clear", response_model=CartSnapshot)
def clear(cart: CartStore = Depends(get_cart)):
    return cart.clear()

# --- checkout & orders ---

class StatusUpdate(BaseModel):
    status: OrderStatus

@order_router.get("/v1/checkout/prefill", response_model=CheckoutContact)
def checkout_prefill(identity: Optional[dict] = Depends(get_optional_identity)):
    return prefill_contact(identity)

@order_router.post("/v1/orders/checkout", response_model=OrderWithItems, status_code=201)
def checkout(payload: CheckoutContact,
             session_id: str = Depends(get_session_id),
             identity: Optional[dict] = Depends(get_optional_identity),
             registry: CartRegistry = Depends(get_registry),
             catalog: ProductCatalog = Depends(get_catalog),
             orders: OrderService = Depends(get_orders),
             publish: Optional[Callable[[dict], None]] = Depends(get_publisher)):
    if not registry.begin_checkout(session_id):
        raise HTTPException(status_code=409, detail="Checkout already in progress")
    try:
        cart = registry.get(session_id)
        request = OrderRequest.from_cart(cart.snapshot, payload,
                                         user_id=identity.get("sub") if identity else None)
        placement = OrderPlacement(cart, StockVerifier(catalog), orders, publish=publish)
        return placement.place_order(request)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail={"errors": e.errors})
    except StockShortfallError as e:
        raise HTTPException(status_code=409, detail={"message": e.reason, "shortfalls": e.shortfalls})
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Order could not be placed, please try again")
    finally:
        registry.end_checkout(session_id)

@order_router.get("/v1/orders", response_model=List[OrderRead])
def my_orders(identity: dict = Depends(get_current_identity), orders: OrderService = Depends(get_orders)):
    try:
        return orders.list_orders(user_id=identity.get("sub"))
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Orders unavailable")

@order_router.get("/v1/orders/{order_number}", response_model=OrderWithItems)
def track_order(order_number: str, orders: OrderService = Depends(get_orders)):
    try:
        obj = orders.get_order_by_number(order_number)
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Orders unavailable")
    if not obj:
        raise HTTPException(status_code=404, detail="Order not found")
    return obj

@order_router.post("/v1/orders/{order_number}/cancel", response_model=OrderWithItems)
def cancel(order_number: str, identity: dict = Depends(get_current_identity),
           orders: OrderService = Depends(get_orders),
           publish: Optional[Callable[[dict], None]] = Depends(get_publisher)):
    try:
        order = cancel_order(orders, order_number, identity.get("sub"))
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderStatusError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Order could not be cancelled, please try again")
    publish_event(publish, {"type": "order.cancelled", "order_id": order.id,
                            "order_number": order.order_number, "user_id": order.user_id})
    return order

@order_router.patch("/v1/orders/{order_number}/status", response_model=OrderWithItems)
def set_status(order_number: str, payload: StatusUpdate, _=Depends(require_admin),
               orders: OrderService = Depends(get_orders)):
    try:
        return advance_order(orders, order_number, payload.status)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderStatusError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Order status could not be updated")

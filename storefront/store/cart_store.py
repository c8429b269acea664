import threading
from collections import OrderedDict
from typing import Callable, List, Optional, Sequence, Set

import structlog
from pydantic import TypeAdapter, ValidationError as SchemaError

from storefront.core.config import settings
from storefront.errors import StorageError
from storefront.schemas import CartSnapshot, LineItem, Product
from storefront.store.storage import CartStorage, cart_key

logger = structlog.get_logger(__name__)

Observer = Callable[[CartSnapshot], None]

_items_adapter = TypeAdapter(List[LineItem])


def dump_items(items: Sequence[LineItem]) -> str:
    return _items_adapter.dump_json(list(items)).decode("utf-8")


def load_items(raw: str) -> List[LineItem]:
    return _items_adapter.validate_json(raw)


class CartStore:
    """Cart state for one shopper session.

    Each mutation builds a new line-item tuple, writes it to durable storage,
    and then publishes the recomputed snapshot to observers. Quantities are
    clamped to the stock of the product record held by the line item.
    Storage failures are logged; the in-memory cart stays authoritative.

    Mutations hold the store's lock from reading the current items until
    observers have been notified, so concurrent requests for one session
    apply one after the other.
    """

    def __init__(self, storage: CartStorage, key: str):
        self.storage = storage
        self.key = key
        self._lock = threading.RLock()
        self._observers: List[Observer] = []
        self._snapshot = CartSnapshot(items=tuple(self._restore()))

    # ---------- queries ----------
    @property
    def snapshot(self) -> CartSnapshot:
        return self._snapshot

    @property
    def items(self):
        return self._snapshot.items

    def is_in_cart(self, product_id: str) -> bool:
        return any(it.product_id == product_id for it in self._snapshot.items)

    def quantity_of(self, product_id: str) -> int:
        for it in self._snapshot.items:
            if it.product_id == product_id:
                return it.quantity
        return 0

    # ---------- mutations ----------
    def add_item(self, product: Product, quantity: int = 1) -> CartSnapshot:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")

        with self._lock:
            items = list(self._snapshot.items)
            for idx, it in enumerate(items):
                if it.product_id == product.id:
                    requested = it.quantity + quantity
                    qty = min(requested, product.stock_quantity)
                    if qty != requested:
                        logger.info("Cart quantity clamped to stock", product_id=product.id,
                                    requested=requested, stock=product.stock_quantity)
                    if qty < 1:
                        return self.remove_item(product.id)
                    # the fresher product record replaces the stored one
                    items[idx] = LineItem(product=product, quantity=qty)
                    return self._commit(items)

            qty = min(quantity, product.stock_quantity)
            if qty < 1:
                logger.info("Product out of stock, not added", product_id=product.id)
                return self._snapshot
            if qty != quantity:
                logger.info("Cart quantity clamped to stock", product_id=product.id,
                            requested=quantity, stock=product.stock_quantity)
            items.append(LineItem(product=product, quantity=qty))
            return self._commit(items)

    def update_quantity(self, product_id: str, quantity: int) -> CartSnapshot:
        if quantity <= 0:
            return self.remove_item(product_id)

        with self._lock:
            items = list(self._snapshot.items)
            for idx, it in enumerate(items):
                if it.product_id == product_id:
                    qty = min(quantity, it.product.stock_quantity)
                    if qty < 1:
                        return self.remove_item(product_id)
                    items[idx] = LineItem(product=it.product, quantity=qty)
                    return self._commit(items)
            return self._snapshot

    def remove_item(self, product_id: str) -> CartSnapshot:
        with self._lock:
            items = [it for it in self._snapshot.items if it.product_id != product_id]
            if len(items) == len(self._snapshot.items):
                return self._snapshot
            return self._commit(items)

    def clear(self) -> CartSnapshot:
        with self._lock:
            return self._commit([])

    # ---------- observers ----------
    def subscribe(self, observer: Observer) -> Callable[[], None]:
        with self._lock:
            self._observers.append(observer)

        def unsubscribe():
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)
        return unsubscribe

    # ---------- internals ----------
    def _commit(self, items: List[LineItem]) -> CartSnapshot:
        # caller holds self._lock
        snapshot = CartSnapshot(items=tuple(items))
        self._persist(snapshot)
        self._snapshot = snapshot
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Cart observer failed", key=self.key)
        return snapshot

    def _persist(self, snapshot: CartSnapshot) -> None:
        try:
            self.storage.write(self.key, dump_items(snapshot.items))
        except StorageError as e:
            logger.warning("Failed to save cart to storage", key=self.key, error=str(e))

    def _restore(self) -> List[LineItem]:
        try:
            raw = self.storage.read(self.key)
        except StorageError as e:
            logger.warning("Failed to load cart from storage", key=self.key, error=str(e))
            return []
        if not raw:
            return []
        try:
            return load_items(raw)
        except (SchemaError, ValueError) as e:
            logger.warning("Discarding unreadable stored cart", key=self.key, error=str(e))
            return []


class CartRegistry:
    """Keeps the most recently used ``CartStore`` per session in memory.

    At most ``max_carts`` stores are held; the least recently used one is
    dropped and rebuilt from durable storage on its next use. Sessions with a
    checkout in flight are never dropped. The checkout set is also what makes
    order placement non-reentrant per session: callers must claim it first.
    """

    def __init__(self, storage: CartStorage, max_carts: Optional[int] = None):
        self.storage = storage
        self.max_carts = settings.CART_CACHE_SIZE if max_carts is None else max_carts
        self._carts: "OrderedDict[str, CartStore]" = OrderedDict()
        self._checkouts: Set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._carts)

    def get(self, session_id: str) -> CartStore:
        with self._lock:
            store = self._carts.get(session_id)
            if store is None:
                store = CartStore(self.storage, cart_key(session_id))
                self._carts[session_id] = store
            self._carts.move_to_end(session_id)
            self._evict(keep=session_id)
            return store

    def _evict(self, keep: str) -> None:
        for session_id in list(self._carts):
            if len(self._carts) <= self.max_carts:
                break
            if session_id == keep or session_id in self._checkouts:
                continue
            del self._carts[session_id]

    def begin_checkout(self, session_id: str) -> bool:
        with self._lock:
            if session_id in self._checkouts:
                return False
            self._checkouts.add(session_id)
            return True

    def end_checkout(self, session_id: str) -> None:
        with self._lock:
            self._checkouts.discard(session_id)

"""Error taxonomy for cart and checkout.

The core raises these; the HTTP layer is the only place that turns them into
responses.
"""

from typing import Dict, List, Optional


class StorefrontError(Exception):
    """Base class for every error raised by the storefront core."""


class ValidationError(StorefrontError):
    """Checkout input is malformed. ``errors`` maps field name to a message."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))


class StockShortfallError(StorefrontError):
    """One or more products cannot be supplied in the requested quantity."""

    def __init__(self, shortfalls: List[str], reason: Optional[str] = None):
        self.shortfalls = list(shortfalls)
        self.reason = reason or (
            "Some items are out of stock or have insufficient quantity: "
            + ", ".join(self.shortfalls)
        )
        super().__init__(self.reason)


class PersistenceError(StorefrontError):
    """A write to (or read from) the order store failed."""


class StorageError(StorefrontError):
    """Durable cart storage could not be read or written."""


class CatalogError(StorefrontError):
    """The product catalog could not be reached or answered with an error."""


class OrderNotFoundError(StorefrontError):
    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order {order_number} not found")


class OrderStatusError(StorefrontError):
    """A status change was requested that the order's lifecycle does not allow."""

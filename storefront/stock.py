"""Checkout-time stock verification.

This is the last look at stock before an order is written. Nothing is
reserved: another session can still buy the last unit between ``verify`` and
order creation, and that window is accepted.
"""

from typing import Dict, Iterable

import structlog

from storefront.schemas import StockCheckResult, StockRequest
from storefront.services.catalog import ProductCatalog

logger = structlog.get_logger(__name__)


class StockVerifier:
    def __init__(self, catalog: ProductCatalog):
        self.catalog = catalog

    def verify(self, items: Iterable[StockRequest]) -> StockCheckResult:
        """Compare requested quantities with current stock in one batched lookup.

        Raises ``CatalogError`` when the catalog cannot answer.
        """
        wanted: Dict[str, int] = {}
        for it in items:
            wanted[it.product_id] = wanted.get(it.product_id, 0) + it.quantity

        products = {p.id: p for p in self.catalog.get_by_ids(list(wanted))}

        shortfalls = []
        for product_id, qty in wanted.items():
            product = products.get(product_id)
            if product is None or product.stock_quantity < qty:
                shortfalls.append(product_id)

        if shortfalls:
            logger.info("Stock shortfall", shortfalls=shortfalls)
        return StockCheckResult(available=not shortfalls, shortfalls=shortfalls)

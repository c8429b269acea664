from typing import Iterable, List, Optional, Protocol

import httpx
import structlog
from pydantic import ValidationError as SchemaError

from storefront.core.config import settings
from storefront.errors import CatalogError
from storefront.schemas import Product

logger = structlog.get_logger(__name__)


class ProductCatalog(Protocol):
    def get_by_id(self, product_id: str) -> Optional[Product]: ...

    def get_by_ids(self, product_ids: Iterable[str]) -> List[Product]: ...


class HttpProductCatalog:
    """Client for the remote catalog service's product endpoints."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self.client = httpx.Client(
            base_url=base_url or settings.CATALOG_BASE,
            timeout=timeout or settings.CATALOG_TIMEOUT,
            transport=transport,
        )

    def close(self):
        self.client.close()

    def _get(self, path: str, params: Optional[dict] = None) -> httpx.Response:
        try:
            resp = self.client.get(path, params=params)
        except httpx.RequestError as e:
            logger.error("Catalog unavailable", path=path, error=str(e))
            raise CatalogError("Catalog unavailable") from e
        if resp.status_code >= 500:
            logger.error("Catalog error", path=path, status=resp.status_code)
            raise CatalogError(f"Catalog responded {resp.status_code}")
        return resp

    def get_by_id(self, product_id: str) -> Optional[Product]:
        resp = self._get(f"/catalog/v1/products/{product_id}")
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise CatalogError(f"Catalog responded {resp.status_code}")
        try:
            return Product.model_validate(resp.json())
        except (SchemaError, ValueError) as e:
            raise CatalogError(f"Malformed product {product_id}") from e

    def get_by_ids(self, product_ids: Iterable[str]) -> List[Product]:
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return []
        resp = self._get("/catalog/v1/products", params={"ids": ",".join(ids), "limit": len(ids)})
        if resp.status_code != 200:
            raise CatalogError(f"Catalog responded {resp.status_code}")
        try:
            return [Product.model_validate(p) for p in resp.json()]
        except (SchemaError, ValueError, TypeError) as e:
            raise CatalogError("Malformed product list") from e

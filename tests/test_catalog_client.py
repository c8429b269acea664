from decimal import Decimal

import httpx
import pytest

from storefront.errors import CatalogError
from storefront.services.catalog import HttpProductCatalog

PRODUCTS = {
    "b1": {"id": "b1", "title": "Dune", "price": "9.99", "stock_quantity": 4, "author": "Frank Herbert"},
    "b2": {"id": "b2", "title": "Emma", "price": 12.5, "stock_quantity": 0},
}


def make_client(handler):
    return HttpProductCatalog(base_url="http://catalog.test", transport=httpx.MockTransport(handler))


def catalog_handler(request: httpx.Request):
    path = request.url.path
    if path == "/catalog/v1/products":
        ids = request.url.params["ids"].split(",")
        return httpx.Response(200, json=[PRODUCTS[i] for i in ids if i in PRODUCTS])
    pid = path.rsplit("/", 1)[-1]
    if pid in PRODUCTS:
        return httpx.Response(200, json=PRODUCTS[pid])
    return httpx.Response(404, json={"detail": "Not found"})


def test_get_by_id():
    product = make_client(catalog_handler).get_by_id("b1")
    assert product.title == "Dune"
    assert product.price == Decimal("9.99")
    assert product.stock_quantity == 4


def test_get_by_id_missing_returns_none():
    assert make_client(catalog_handler).get_by_id("nope") is None


def test_get_by_ids_single_request_with_deduped_ids():
    seen = []

    def handler(request):
        seen.append(request)
        return catalog_handler(request)

    products = make_client(handler).get_by_ids(["b1", "b2", "b1", "zz"])
    assert {p.id for p in products} == {"b1", "b2"}
    assert len(seen) == 1
    assert seen[0].url.params["ids"] == "b1,b2,zz"
    assert seen[0].url.params["limit"] == "3"


def test_get_by_ids_empty_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert make_client(handler).get_by_ids([]) == []


def test_price_is_quantized_to_cents():
    assert make_client(catalog_handler).get_by_id("b2").price == Decimal("12.50")


def test_server_error_raises_catalog_error():
    client = make_client(lambda request: httpx.Response(503))
    with pytest.raises(CatalogError):
        client.get_by_id("b1")
    with pytest.raises(CatalogError):
        client.get_by_ids(["b1"])


def test_connection_error_raises_catalog_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(CatalogError):
        make_client(handler).get_by_ids(["b1"])


def test_malformed_payload_raises_catalog_error():
    client = make_client(lambda request: httpx.Response(200, json={"id": "b1"}))
    with pytest.raises(CatalogError):
        client.get_by_id("b1")

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import storefront.db.models  # noqa
from storefront.db.session import Base
from storefront.schemas import Product
from storefront.services.orders import SqlOrderService
from storefront.store.cart_store import CartStore
from storefront.store.storage import MemoryCartStorage


class FakeCatalog:
    """In-memory product catalog that records batched lookups."""

    def __init__(self, products=()):
        self.products = {p.id: p for p in products}
        self.batch_calls = []
        self.fail = False

    def get_by_id(self, product_id):
        return self.products.get(product_id)

    def get_by_ids(self, product_ids):
        from storefront.errors import CatalogError

        ids = list(product_ids)
        self.batch_calls.append(ids)
        if self.fail:
            raise CatalogError("Catalog unavailable")
        return [self.products[i] for i in ids if i in self.products]

    def set_stock(self, product_id, stock):
        self.products[product_id] = self.products[product_id].model_copy(update={"stock_quantity": stock})


@pytest.fixture
def make_product():
    def _make(product_id, price="10.00", stock=10, title=None):
        return Product(id=product_id, title=title or product_id.replace("-", " ").title(),
                       price=Decimal(price), stock_quantity=stock)
    return _make


@pytest.fixture
def book_a(make_product):
    return make_product("book-a", "10.00", 5, "Book A")


@pytest.fixture
def book_b(make_product):
    return make_product("book-b", "20.00", 5, "Book B")


@pytest.fixture
def catalog(book_a, book_b):
    return FakeCatalog([book_a, book_b])


@pytest.fixture
def storage():
    return MemoryCartStorage()


@pytest.fixture
def cart(storage):
    return CartStore(storage, "cart:test-session")


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def orders(session_factory):
    return SqlOrderService(session_factory)

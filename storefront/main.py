import structlog
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from storefront.version import VERSION
from storefront.api import routes
from storefront.core.config import settings
from storefront.core.logging import configure_logging
from storefront.db.session import SessionLocal
from storefront.kafka import consumer as fulfillment_consumer
from storefront.kafka.producer import publish_order_event
from storefront.services.catalog import HttpProductCatalog
from storefront.services.orders import SqlOrderService
from storefront.store.cart_store import CartRegistry
from storefront.store.storage import build_storage

configure_logging()
logger = structlog.get_logger(__name__)

# Create instrumentator first
instrumentator = Instrumentator()

app = FastAPI(title="Storefront Service", version=VERSION)

# Instrument the app BEFORE adding routes or middleware
instrumentator.instrument(app).expose(
    app,
    include_in_schema=False,
    endpoint="/metrics",
    should_gzip=True,
)

# Collaborators, created once per process and handed to the routes via app.state
app.state.carts = CartRegistry(build_storage())
app.state.catalog = HttpProductCatalog()
app.state.orders = SqlOrderService(SessionLocal)
app.state.publish = publish_order_event if settings.KAFKA_ENABLED else None

@app.get("/health")
def health():
    return {"status": "ok"}

@app.get("/v1/_info")
def info():
    return {"service": "storefront", "version": VERSION}

@app.on_event("startup")
async def startup_event():
    for route in app.routes:
        if hasattr(route, "methods") and hasattr(route, "path"):
            logger.debug("Route registered", methods=sorted(route.methods), path=route.path)
    if settings.KAFKA_ENABLED:
        fulfillment_consumer.start()

@app.on_event("shutdown")
async def shutdown_event():
    fulfillment_consumer.stop()
    app.state.catalog.close()

app.include_router(routes.cart_router, prefix="/cart", tags=["cart"])
app.include_router(routes.order_router, prefix="/order", tags=["orders"])

import threading, json
import structlog
from kafka import KafkaConsumer
from storefront.core.config import settings
from storefront.core.logging import add_context, clear_context
from storefront.db.session import SessionLocal
from storefront.errors import OrderNotFoundError, OrderStatusError
from storefront.lifecycle import advance_order
from storefront.schemas import OrderStatus
from storefront.services.orders import OrderService, SqlOrderService

logger = structlog.get_logger(__name__)

_stop_event = threading.Event()
_thread = None

def deserialize(raw: bytes):
    """JSON-decode a message value; undecodable payloads become None."""
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, AttributeError) as e:
        logger.warning("Dropping undecodable fulfillment message", error=str(e))
        return None

def process_event(ev, orders: OrderService):
    """Apply a fulfillment status update. Invalid updates are logged and skipped."""
    if not isinstance(ev, dict) or ev.get("type") != "order.status_changed":
        return
    order_number = ev.get("order_number")
    if not order_number:
        return
    add_context(order_number=order_number)
    try:
        try:
            status = OrderStatus(ev.get("status"))
        except ValueError:
            logger.warning("Unknown order status in event", status=ev.get("status"))
            return
        try:
            advance_order(orders, order_number, status)
        except (OrderNotFoundError, OrderStatusError) as e:
            logger.warning("Rejected fulfillment status update", status=status.value, reason=str(e))
    finally:
        clear_context()

def handle_message(value, orders: OrderService) -> None:
    """Process one consumed message; never lets an error escape the poll loop."""
    try:
        process_event(value, orders)
    except Exception:
        logger.exception("Failed to apply fulfillment event", event=value)

def run_loop():
    consumer = KafkaConsumer(
        settings.TOPIC_FULFILLMENT_EVENTS,
        bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
        group_id="storefront-orders",
        value_deserializer=deserialize,
        enable_auto_commit=True,
        auto_offset_reset="earliest",
    )
    orders = SqlOrderService(SessionLocal)
    try:
        for msg in consumer:
            if _stop_event.is_set(): break
            handle_message(msg.value, orders)
    finally:
        consumer.close()

def start():
    global _thread
    if _thread and _thread.is_alive(): return
    _stop_event.clear()
    _thread = threading.Thread(target=run_loop, daemon=True)
    _thread.start()

def stop():
    _stop_event.set()

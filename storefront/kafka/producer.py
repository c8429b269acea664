from kafka import KafkaProducer
from kafka.errors import KafkaError
import json
import structlog
from storefront.core.config import settings

logger = structlog.get_logger(__name__)

_producer = None

def get_producer():
    global _producer
    if _producer is None:
        _producer = KafkaProducer(
            bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
            value_serializer=lambda v: json.dumps(v).encode("utf-8"),
            key_serializer=lambda v: (v.encode("utf-8") if isinstance(v, str) else v),
            linger_ms=5,
            retries=3,
        )
    return _producer

def send(topic: str, key: str, value: dict):
    p = get_producer()
    p.send(topic, key=key, value=value)
    p.flush(5)

def publish_order_event(event: dict):
    """Best effort: the order is already stored when this runs."""
    try:
        send(settings.TOPIC_ORDER_EVENTS, key=event["order_number"], value=event)
    except KafkaError as e:
        logger.error("Failed to publish order event", type=event.get("type"),
                     order_number=event.get("order_number"), error=str(e))

from kafka import KafkaProducer
from kafka.errors import KafkaError
import json
import structlog
from app.core.config import settings

logger = structlog.get_logger(__name__)

_producer = None

def get_producer():
    global _producer
    if _producer is None:
        _producer = KafkaProducer(
            bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            key_serializer=lambda v: (v.encode("utf-8") if isinstance(v, str) else v),
            linger_ms=5,
            retries=3,
        )
    return _producer

def send(topic: str, key: str, value: dict):
    p = get_producer()
    p.send(topic, key=key, value=value)
    p.flush(5)

def order_payload(event_type: str, order, **extra) -> dict:
    payload = {
        "type": event_type,
        "order_id": order.id,
        "order_number": order.order_number,
        "reference": order.reference,
        "status": order.status.value if hasattr(order.status, "value") else order.status,
        "customer_email": order.customer_email,
        "total_cents": order.total_cents,
        "currency": order.currency,
    }
    payload.update(extra)
    return payload

def publish(event_type: str, order, **extra) -> bool:
    """Best-effort publication after commit; the order is already durable."""
    if not settings.KAFKA_ENABLED:
        return False
    try:
        send(settings.TOPIC_ORDER_EVENTS, key=order.reference, value=order_payload(event_type, order, **extra))
    except KafkaError as e:
        logger.error("Order event publication failed", event_type=event_type, order_id=order.id, error=str(e))
        return False
    return True

def close():
    global _producer
    if _producer is not None:
        _producer.close(5)
        _producer = None

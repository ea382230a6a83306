from dataclasses import dataclass

from app.db.models import OrderStatus

# Provider signal class -> canonical order status. Signals not listed here
# (pending, in_process, unknown) are ignored and never touch an order.
CANONICAL_STATUS = {
    "approved": OrderStatus.PAID,
    "paid": OrderStatus.PAID,
    "charge.paid": OrderStatus.PAID,
    "rejected": OrderStatus.CANCELLED,
    "cancelled": OrderStatus.CANCELLED,
    "expired": OrderStatus.CANCELLED,
    "refunded": OrderStatus.REFUNDED,
    "charged_back": OrderStatus.REFUNDED,
}


def canonical_status(signal: str | None) -> OrderStatus | None:
    if not signal:
        return None
    return CANONICAL_STATUS.get(signal.strip().lower())


@dataclass(frozen=True)
class PaymentEvent:
    """A provider notification reduced to what reconciliation needs."""

    provider: str
    provider_event_id: str
    correlation_id: str
    target_status: OrderStatus
    event_type: str | None = None
    # Further provider ids for the same order, registered when the event is applied.
    related_ids: tuple[str, ...] = ()

"""Payment gateway port (abstract interface).

Every provider adapter creates a hosted payment for an order and can fetch a
payment resource back by id. Adapters raise ``ProviderCommunicationError``
for timeouts, transport errors and non-2xx answers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.db.models import Order


@dataclass(frozen=True)
class PaymentSession:
    """What the provider handed back when the payment was created."""

    provider: str
    external_id: str
    redirect_url: str | None = None
    raw_status: str | None = None


class PaymentGateway(ABC):
    name: str

    @abstractmethod
    def create_payment(self, order: Order, success_url: str, cancel_url: str) -> PaymentSession:
        """Create a hosted payment for ``order``, tagged with ``order.reference``."""
        ...

    @abstractmethod
    def fetch_payment(self, external_id: str) -> dict:
        """Return the provider's current view of a payment resource."""
        ...

"""In-process fake gateway for development and tests.

Records every call, returns predictable ids and can be told to fail the way
a real provider would time out.
"""

from uuid import uuid4

from app.core.errors import ProviderCommunicationError
from app.db.models import Order
from app.payments.gateways.port import PaymentGateway, PaymentSession


class FakeGateway(PaymentGateway):
    def __init__(self, name: str = "fake") -> None:
        self.name = name
        self.should_fail: bool = False
        self.calls: list[dict] = []
        self.payments: dict[str, dict] = {}

    def create_payment(self, order: Order, success_url: str, cancel_url: str) -> PaymentSession:
        self.calls.append({"method": "create_payment", "reference": order.reference, "amount": order.total_cents})
        if self.should_fail:
            raise ProviderCommunicationError(self.name, "fake provider unavailable")
        external_id = f"{self.name}_{uuid4().hex[:12]}"
        self.payments[external_id] = {"id": external_id, "status": "pending", "external_reference": order.reference}
        return PaymentSession(
            provider=self.name,
            external_id=external_id,
            redirect_url=f"https://pay.example.test/{external_id}",
            raw_status="pending",
        )

    def fetch_payment(self, external_id: str) -> dict:
        self.calls.append({"method": "fetch_payment", "external_id": external_id})
        if self.should_fail:
            raise ProviderCommunicationError(self.name, "fake provider unavailable")
        try:
            return dict(self.payments[external_id])
        except KeyError:
            raise ProviderCommunicationError(self.name, f"payment {external_id} not found", status=404) from None

    def set_payment(self, external_id: str, **fields) -> None:
        self.payments.setdefault(external_id, {"id": external_id}).update(fields)

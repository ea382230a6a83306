import base64

import httpx

from app.core.config import settings
from app.db.models import Order
from app.payments.gateways.http import cents_to_decimal, request_json
from app.payments.gateways.port import PaymentGateway, PaymentSession
from app.payments.normalizers import CLIP


class ClipGateway(PaymentGateway):
    """Clip hosted checkout (payment requests)."""

    name = CLIP

    def __init__(self, api_url: str | None = None, api_key: str | None = None, secret_key: str | None = None,
                 transport: httpx.BaseTransport | None = None):
        self.api_url = (api_url or settings.CLIP_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.CLIP_API_KEY
        self.secret_key = secret_key if secret_key is not None else settings.CLIP_SECRET_KEY
        self.transport = transport

    def _headers(self) -> dict:
        token = base64.b64encode(f"{self.api_key}:{self.secret_key}".encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {token}", "Content-Type": "application/json"}

    def create_payment(self, order: Order, success_url: str, cancel_url: str) -> PaymentSession:
        description = ", ".join(f"{it.quantity}x {it.product_name}" for it in order.items)
        data = request_json(
            self.name, "POST", f"{self.api_url}/v2/checkout",
            transport=self.transport,
            headers=self._headers(),
            json={
                "amount": cents_to_decimal(order.total_cents),
                "currency": order.currency,
                "purchase_description": description[:250],  # Clip limit
                "redirection_url": {"success": success_url, "error": cancel_url, "default": cancel_url},
                "metadata": {"external_reference": order.reference, "order_number": order.order_number},
            },
        )
        return PaymentSession(
            provider=self.name,
            external_id=str(data["payment_request_id"]),
            redirect_url=data.get("payment_request_url"),
            raw_status=data.get("status"),
        )

    def fetch_payment(self, external_id: str) -> dict:
        return request_json(
            self.name, "GET", f"{self.api_url}/v2/checkout/{external_id}",
            transport=self.transport,
            headers=self._headers(),
        )

import httpx

from app.core.config import settings
from app.db.models import Order
from app.payments.gateways.http import request_json
from app.payments.gateways.port import PaymentGateway, PaymentSession
from app.payments.normalizers import CONEKTA

ACCEPT = "application/vnd.conekta-v2.1.0+json"


class ConektaGateway(PaymentGateway):
    """Conekta orders with a hosted checkout (card, OXXO cash, SPEI)."""

    name = CONEKTA

    def __init__(self, api_url: str | None = None, private_key: str | None = None,
                 transport: httpx.BaseTransport | None = None):
        self.api_url = (api_url or settings.CONEKTA_API_URL).rstrip("/")
        self.private_key = private_key if private_key is not None else settings.CONEKTA_PRIVATE_KEY
        self.transport = transport

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.private_key}",
            "Accept": ACCEPT,
            "Content-Type": "application/json",
        }

    def create_payment(self, order: Order, success_url: str, cancel_url: str) -> PaymentSession:
        body = {
            "currency": order.currency,
            "customer_info": {
                "name": order.customer_name or order.customer_email,
                "email": order.customer_email,
                "phone": order.ship_phone or "",
            },
            # Conekta takes amounts in cents, like we store them
            "line_items": [
                {"name": it.product_name, "unit_price": it.unit_price_cents, "quantity": it.quantity, "sku": it.product_sku}
                for it in order.items
            ],
            "metadata": {"order_reference": order.reference, "order_number": order.order_number},
            "checkout": {
                "type": "HostedPayment",
                "allowed_payment_methods": ["card", "cash", "bank_transfer"],
                "success_url": success_url,
                "failure_url": cancel_url,
            },
        }
        if order.shipping_cents:
            body["shipping_lines"] = [{"amount": order.shipping_cents, "carrier": "standard"}]
        if order.tax_cents:
            body["tax_lines"] = [{"description": "IVA", "amount": order.tax_cents}]
        data = request_json(self.name, "POST", f"{self.api_url}/orders", transport=self.transport,
                            headers=self._headers(), json=body)
        checkout = data.get("checkout") or {}
        return PaymentSession(
            provider=self.name,
            external_id=str(data["id"]),
            redirect_url=checkout.get("url"),
            raw_status=data.get("payment_status"),
        )

    def fetch_payment(self, external_id: str) -> dict:
        return request_json(self.name, "GET", f"{self.api_url}/orders/{external_id}", transport=self.transport,
                            headers=self._headers())

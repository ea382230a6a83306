import httpx

from app.core.config import settings
from app.db.models import Order
from app.payments.gateways.http import cents_to_decimal, request_json
from app.payments.gateways.port import PaymentGateway, PaymentSession
from app.payments.normalizers import MERCADO_PAGO


class MercadoPagoGateway(PaymentGateway):
    """Mercado Pago Checkout Pro preferences; payments are looked up by id."""

    name = MERCADO_PAGO

    def __init__(self, api_url: str | None = None, access_token: str | None = None,
                 transport: httpx.BaseTransport | None = None):
        self.api_url = (api_url or settings.MERCADO_PAGO_API_URL).rstrip("/")
        self.access_token = access_token if access_token is not None else settings.MERCADO_PAGO_ACCESS_TOKEN
        self.transport = transport

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}

    def create_payment(self, order: Order, success_url: str, cancel_url: str) -> PaymentSession:
        items = [
            {
                "id": str(it.product_id),
                "title": it.product_name,
                "quantity": it.quantity,
                "unit_price": cents_to_decimal(it.unit_price_cents),
                "currency_id": order.currency,
            }
            for it in order.items
        ]
        if order.tax_cents:
            items.append({"id": "tax", "title": "IVA", "quantity": 1,
                          "unit_price": cents_to_decimal(order.tax_cents), "currency_id": order.currency})
        body = {
            "items": items,
            "payer": {"email": order.customer_email, "name": order.customer_name or ""},
            "external_reference": order.reference,
            "metadata": {"order_reference": order.reference, "order_number": order.order_number},
            "back_urls": {"success": success_url, "failure": cancel_url, "pending": success_url},
            "notification_url": f"{settings.APP_URL.rstrip('/')}/order/v1/webhooks/mercadopago",
        }
        if order.shipping_cents:
            body["shipments"] = {"mode": "not_specified", "cost": cents_to_decimal(order.shipping_cents)}
        data = request_json(self.name, "POST", f"{self.api_url}/checkout/preferences", transport=self.transport,
                            headers=self._headers(), json=body)
        return PaymentSession(provider=self.name, external_id=str(data["id"]), redirect_url=data.get("init_point"))

    def fetch_payment(self, external_id: str) -> dict:
        return request_json(self.name, "GET", f"{self.api_url}/v1/payments/{external_id}", transport=self.transport,
                            headers=self._headers())

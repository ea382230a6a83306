"""Stripe adapter on top of the stripe-python SDK (Checkout Sessions)."""

import stripe

from app.core.config import settings
from app.core.errors import ProviderCommunicationError
from app.db.models import Order
from app.payments.gateways.port import PaymentGateway, PaymentSession
from app.payments.normalizers import STRIPE

_client_configured = False


def _configure_client() -> None:
    global _client_configured
    if _client_configured:
        return
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS)
    stripe.max_network_retries = 0
    _client_configured = True


class StripeGateway(PaymentGateway):
    name = STRIPE

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY

    def create_payment(self, order: Order, success_url: str, cancel_url: str) -> PaymentSession:
        _configure_client()
        currency = order.currency.lower()
        line_items = []
        for it in order.items:
            variant = ", ".join(p for p in (
                f"Size: {it.variant_size}" if it.variant_size else "",
                f"Color: {it.variant_color}" if it.variant_color else "",
            ) if p)
            product_data = {"name": it.product_name}
            if variant:
                product_data["description"] = variant
            line_items.append({
                "price_data": {"currency": currency, "product_data": product_data, "unit_amount": it.unit_price_cents},
                "quantity": it.quantity,
            })
        for label, amount in (("Shipping", order.shipping_cents), ("Tax", order.tax_cents)):
            if amount:
                line_items.append({
                    "price_data": {"currency": currency, "product_data": {"name": label}, "unit_amount": amount},
                    "quantity": 1,
                })
        metadata = {"order_reference": order.reference, "order_number": order.order_number}
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="payment",
                line_items=line_items,
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=order.customer_email,
                client_reference_id=order.reference,
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            raise ProviderCommunicationError(self.name, f"checkout session creation failed: {e}",
                                             status=getattr(e, "http_status", None)) from e
        return PaymentSession(provider=self.name, external_id=session.id, redirect_url=session.url,
                              raw_status=session.payment_status)

    def fetch_payment(self, external_id: str) -> dict:
        _configure_client()
        try:
            session = stripe.checkout.Session.retrieve(external_id, api_key=self.api_key)
        except stripe.StripeError as e:
            raise ProviderCommunicationError(self.name, f"checkout session lookup failed: {e}",
                                             status=getattr(e, "http_status", None)) from e
        return session.to_dict()

"""Payment gateway registry.

get_gateway() / set_gateway() pick the adapter per provider:
- FakeGateway when PAYMENT_GATEWAY_MODE=fake (development and tests)
- the provider's real adapter otherwise
"""

from app.core.config import settings
from app.payments.gateways.fake import FakeGateway
from app.payments.gateways.port import PaymentGateway, PaymentSession
from app.payments.normalizers import CLIP, CONEKTA, MERCADO_PAGO, PROVIDERS, STRIPE

_gateways: dict[str, PaymentGateway] = {}


def _build(provider: str) -> PaymentGateway:
    if settings.PAYMENT_GATEWAY_MODE == "fake":
        return FakeGateway(provider)
    if provider == STRIPE:
        from app.payments.gateways.stripe_adapter import StripeGateway
        return StripeGateway()
    if provider == CLIP:
        from app.payments.gateways.clip import ClipGateway
        return ClipGateway()
    if provider == CONEKTA:
        from app.payments.gateways.conekta import ConektaGateway
        return ConektaGateway()
    if provider == MERCADO_PAGO:
        from app.payments.gateways.mercadopago import MercadoPagoGateway
        return MercadoPagoGateway()
    raise ValueError(f"Unknown payment provider: {provider}")


def get_gateway(provider: str) -> PaymentGateway:
    """Return the active gateway for ``provider``, building it on first use."""
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown payment provider: {provider}")
    gateway = _gateways.get(provider)
    if gateway is None:
        gateway = _gateways[provider] = _build(provider)
    return gateway


def set_gateway(provider: str, gateway: PaymentGateway) -> None:
    """Override the gateway for one provider (useful for tests)."""
    _gateways[provider] = gateway


def reset_gateways() -> None:
    _gateways.clear()


__all__ = ["FakeGateway", "PaymentGateway", "PaymentSession", "get_gateway", "set_gateway", "reset_gateways"]

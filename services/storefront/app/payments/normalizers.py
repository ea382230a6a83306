"""Per-provider translation of webhook payloads into ``PaymentEvent``.

Each provider speaks its own event vocabulary; a normalizer maps it onto a
signal class (``approved``, ``expired``, ``refunded``, ...) and the shared
``CANONICAL_STATUS`` table turns that into an order status. Normalizers never
raise: anything they cannot read is ignored with a logged reason.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import structlog

from app.payments.events import PaymentEvent, canonical_status

logger = structlog.get_logger(__name__)

STRIPE = "stripe"
CLIP = "clip"
CONEKTA = "conekta"
MERCADO_PAGO = "mercadopago"

PROVIDERS = (STRIPE, CLIP, CONEKTA, MERCADO_PAGO)


class Ignore(Exception):
    """Raised inside a normalizer to drop a payload with a reason."""


@dataclass(frozen=True)
class NormalizationResult:
    event: PaymentEvent | None
    provider_event_id: str | None
    reason: str | None = None


def _obj(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    value = str(value).strip()
    return value or None


class ProviderNormalizer(ABC):
    provider: str

    def normalize(self, raw: Any) -> PaymentEvent | None:
        return self.inspect(raw).event

    def inspect(self, raw: Any) -> NormalizationResult:
        """Normalize ``raw`` and keep the event id and reason for ignored payloads."""
        event_id = None
        try:
            if not isinstance(raw, dict):
                raise Ignore("payload is not a JSON object")
            event_id = self.event_id(raw)
            if not event_id:
                raise Ignore("missing event id")
            signal = self.signal(raw)
            status = canonical_status(signal)
            if status is None:
                raise Ignore(f"unhandled signal {signal!r}")
            correlation_id = self.correlation_id(raw)
            if not correlation_id:
                raise Ignore("missing correlation id")
            event = PaymentEvent(
                provider=self.provider,
                provider_event_id=event_id,
                correlation_id=correlation_id,
                target_status=status,
                event_type=self.event_type(raw),
                related_ids=tuple(i for i in self.related_ids(raw) if i and i != correlation_id),
            )
        except Ignore as e:
            return self._ignored(event_id, str(e))
        except Exception as e:
            # Malformed payloads must never reach the transport boundary.
            return self._ignored(event_id, f"unparseable payload: {e.__class__.__name__}: {e}")
        return NormalizationResult(event=event, provider_event_id=event_id)

    def _ignored(self, event_id: str | None, reason: str) -> NormalizationResult:
        logger.info("Ignoring payment notification", provider=self.provider, provider_event_id=event_id, reason=reason)
        return NormalizationResult(event=None, provider_event_id=event_id, reason=reason)

    @abstractmethod
    def event_id(self, raw: dict) -> str | None: ...

    @abstractmethod
    def signal(self, raw: dict) -> str | None: ...

    @abstractmethod
    def correlation_id(self, raw: dict) -> str | None: ...

    def event_type(self, raw: dict) -> str | None:
        return _text(raw.get("type"))

    def related_ids(self, raw: dict) -> tuple[str, ...]:
        return ()


class StripeNormalizer(ProviderNormalizer):
    """Stripe events: ``{id, type, data: {object}}``."""

    provider = STRIPE

    SIGNALS = {
        "checkout.session.completed": "paid",
        "checkout.session.async_payment_succeeded": "paid",
        "payment_intent.succeeded": "paid",
        "checkout.session.async_payment_failed": "rejected",
        "payment_intent.payment_failed": "rejected",
        "checkout.session.expired": "expired",
        "payment_intent.canceled": "cancelled",
        "charge.refunded": "refunded",
        "charge.dispute.funds_withdrawn": "charged_back",
    }

    def _object(self, raw: dict) -> dict:
        return _obj(_obj(raw.get("data")).get("object"))

    def event_id(self, raw):
        return _text(raw.get("id"))

    def signal(self, raw):
        event_type = _text(raw.get("type"))
        signal = self.SIGNALS.get(event_type or "")
        obj = self._object(raw)
        if event_type == "checkout.session.completed" and obj.get("payment_status") not in ("paid", "no_payment_required"):
            # Delayed payment methods settle later via async_payment_succeeded.
            raise Ignore(f"checkout completed with payment_status={obj.get('payment_status')!r}")
        if event_type == "charge.refunded" and obj.get("refunded") is not True:
            raise Ignore("partial refund")
        return signal or event_type

    def correlation_id(self, raw):
        obj = self._object(raw)
        return (
            _text(obj.get("client_reference_id"))
            or _text(_obj(obj.get("metadata")).get("order_reference"))
            # Charges and disputes only point at their PaymentIntent.
            or _text(obj.get("payment_intent"))
        )

    def related_ids(self, raw):
        obj = self._object(raw)
        if obj.get("object") == "payment_intent":
            return (_text(obj.get("id")),)
        return (_text(obj.get("payment_intent")),)


class ClipNormalizer(ProviderNormalizer):
    """Clip notifications: ``{id, payment_request_id, resource_status, resource_type}``.

    Clip reuses resource ids across status notifications, so the status is
    part of the event id.
    """

    provider = CLIP

    def event_id(self, raw):
        base = _text(raw.get("id")) or _text(raw.get("transaction_id")) or _text(raw.get("payment_request_id"))
        status = _text(raw.get("resource_status"))
        if not base:
            return None
        return f"{base}:{status}" if status else base

    def signal(self, raw):
        resource_type = _text(raw.get("resource_type"))
        if resource_type not in ("payment", "checkout"):
            raise Ignore(f"resource_type {resource_type!r} is not a payment")
        return _text(raw.get("resource_status"))

    def correlation_id(self, raw):
        return _text(raw.get("payment_request_id"))

    def event_type(self, raw):
        return _text(raw.get("resource_type"))


class ConektaNormalizer(ProviderNormalizer):
    """Conekta events: ``{id, type, data: {object}}``."""

    provider = CONEKTA

    SIGNALS = {
        "order.paid": "paid",
        "charge.paid": "charge.paid",
        "order.expired": "expired",
        "order.canceled": "cancelled",
        "order.cancelled": "cancelled",
        "charge.declined": "rejected",
        "order.refunded": "refunded",
        "charge.refunded": "refunded",
    }

    def _object(self, raw: dict) -> dict:
        return _obj(_obj(raw.get("data")).get("object"))

    def event_id(self, raw):
        return _text(raw.get("id"))

    def signal(self, raw):
        event_type = _text(raw.get("type")) or ""
        return self.SIGNALS.get(event_type, event_type)

    def correlation_id(self, raw):
        obj = self._object(raw)
        event_type = _text(raw.get("type")) or ""
        # Charge objects point at their parent order; order objects are the order.
        if event_type.startswith("charge."):
            return _text(obj.get("order_id"))
        return _text(obj.get("id")) or _text(obj.get("order_id"))


class MercadoPagoNormalizer(ProviderNormalizer):
    """Mercado Pago payment resources as returned by ``GET /v1/payments/{id}``.

    The webhook itself only names a payment id; the handler fetches the
    payment and hands the resource to this normalizer.
    """

    provider = MERCADO_PAGO

    def event_id(self, raw):
        payment_id = _text(raw.get("id"))
        status = _text(raw.get("status"))
        if not payment_id:
            return None
        return f"{payment_id}:{status}" if status else payment_id

    def signal(self, raw):
        return _text(raw.get("status"))

    def correlation_id(self, raw):
        return _text(raw.get("external_reference")) or _text(_obj(raw.get("metadata")).get("order_reference"))

    def event_type(self, raw):
        return "payment"


def extract_mercadopago_payment_id(query_params, body: Any) -> str | None:
    """Payment id from ``?data.id=``/``?id=`` or the notification body."""
    from_query = query_params.get("data.id") or query_params.get("id")
    if from_query:
        return str(from_query)
    body = _obj(body)
    return _text(_obj(body.get("data")).get("id")) or _text(body.get("id"))


NORMALIZERS: dict[str, ProviderNormalizer] = {
    STRIPE: StripeNormalizer(),
    CLIP: ClipNormalizer(),
    CONEKTA: ConektaNormalizer(),
    MERCADO_PAGO: MercadoPagoNormalizer(),
}


def get_normalizer(provider: str) -> ProviderNormalizer:
    try:
        return NORMALIZERS[provider]
    except KeyError:
        raise ValueError(f"Unknown payment provider: {provider}") from None

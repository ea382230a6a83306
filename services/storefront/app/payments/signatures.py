"""Webhook authenticity checks, one per provider.

Every verifier either returns the parsed payload or raises
``WebhookSignatureError``. A provider whose secret is not configured is
accepted with a warning so local setups keep working.
"""

import hashlib
import hmac
import json
from typing import Any, Mapping

import stripe
import structlog

from app.core.config import settings
from app.core.errors import WebhookSignatureError

logger = structlog.get_logger(__name__)


def _parse(body: bytes) -> Any:
    # Unreadable bodies are passed on as None and ignored by the normalizers.
    try:
        return json.loads(body or b"{}")
    except ValueError:
        logger.warning("Webhook body is not valid JSON", size=len(body or b""))
        return None


def _skip(provider: str) -> None:
    logger.warning("Webhook signature check skipped, secret not configured", provider=provider)


def verify_stripe(body: bytes, signature_header: str | None, secret: str | None = None) -> Any:
    secret = settings.STRIPE_WEBHOOK_SECRET if secret is None else secret
    if not secret:
        _skip("stripe")
        return _parse(body)
    if not signature_header:
        raise WebhookSignatureError("Missing Stripe-Signature header")
    try:
        stripe.Webhook.construct_event(body, signature_header, secret)
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError("Invalid Stripe signature") from e
    except ValueError:
        pass  # signed but not JSON
    return _parse(body)


def verify_token(provider: str, body: bytes, headers: Mapping[str, str], query: Mapping[str, str],
                 expected: str | None) -> Any:
    """Shared-token scheme used for Clip and Conekta (header or ``?token=``)."""
    if not expected:
        _skip(provider)
        return _parse(body)
    supplied = headers.get("x-webhook-token") or query.get("token") or ""
    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise WebhookSignatureError(f"Invalid {provider} webhook token")
    return _parse(body)


def verify_clip(body: bytes, headers: Mapping[str, str], query: Mapping[str, str]) -> Any:
    return verify_token("clip", body, headers, query, settings.CLIP_WEBHOOK_TOKEN)


def verify_conekta(body: bytes, headers: Mapping[str, str], query: Mapping[str, str]) -> Any:
    return verify_token("conekta", body, headers, query, settings.CONEKTA_WEBHOOK_TOKEN)


def _signature_parts(header: str) -> dict[str, str]:
    parts = {}
    for chunk in header.split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def mercadopago_manifest(data_id: str, request_id: str | None, ts: str) -> str:
    # Mercado Pago lower-cases alphanumeric ids before signing.
    manifest = f"id:{data_id.lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    return manifest + f"ts:{ts};"


def verify_mercadopago(body: bytes, headers: Mapping[str, str], data_id: str | None,
                       secret: str | None = None) -> Any:
    """Check ``x-signature: ts=...,v1=...`` (HMAC-SHA256 of the manifest)."""
    secret = settings.MERCADO_PAGO_WEBHOOK_SECRET if secret is None else secret
    if not secret:
        _skip("mercadopago")
        return _parse(body)
    header = headers.get("x-signature")
    if not header or not data_id:
        raise WebhookSignatureError("Missing Mercado Pago signature")
    parts = _signature_parts(header)
    ts, v1 = parts.get("ts"), parts.get("v1")
    if not ts or not v1:
        raise WebhookSignatureError("Malformed x-signature header")
    manifest = mercadopago_manifest(data_id, headers.get("x-request-id"), ts)
    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, v1):
        raise WebhookSignatureError("Invalid Mercado Pago signature")
    return _parse(body)

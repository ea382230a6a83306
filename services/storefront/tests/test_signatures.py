"""Tests for webhook signature and token verification."""

import hashlib
import hmac
import json
import time

import pytest

from app.core.config import settings
from app.core.errors import WebhookSignatureError
from app.payments import signatures

BODY = json.dumps({"id": "evt_1", "type": "checkout.session.completed"}).encode()


def stripe_header(body: bytes, secret: str, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{body.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def mercadopago_header(secret: str, data_id: str, request_id: str, ts: str = "1704908010") -> str:
    manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
    return f"ts={ts},v1={hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()}"


class TestStripe:
    def test_valid_signature(self):
        payload = signatures.verify_stripe(BODY, stripe_header(BODY, "whsec_test"), secret="whsec_test")
        assert payload["id"] == "evt_1"

    def test_wrong_secret(self):
        with pytest.raises(WebhookSignatureError):
            signatures.verify_stripe(BODY, stripe_header(BODY, "whsec_other"), secret="whsec_test")

    def test_tampered_body(self):
        header = stripe_header(BODY, "whsec_test")
        with pytest.raises(WebhookSignatureError):
            signatures.verify_stripe(BODY.replace(b"evt_1", b"evt_2"), header, secret="whsec_test")

    def test_missing_header(self):
        with pytest.raises(WebhookSignatureError):
            signatures.verify_stripe(BODY, None, secret="whsec_test")

    def test_stale_timestamp(self):
        header = stripe_header(BODY, "whsec_test", timestamp=int(time.time()) - 3600)
        with pytest.raises(WebhookSignatureError):
            signatures.verify_stripe(BODY, header, secret="whsec_test")

    def test_skipped_without_secret(self):
        assert signatures.verify_stripe(BODY, None, secret="")["id"] == "evt_1"


class TestSharedToken:
    def test_header_token(self, monkeypatch):
        monkeypatch.setattr(settings, "CLIP_WEBHOOK_TOKEN", "s3cret")
        assert signatures.verify_clip(BODY, {"x-webhook-token": "s3cret"}, {})["id"] == "evt_1"

    def test_query_token(self, monkeypatch):
        monkeypatch.setattr(settings, "CONEKTA_WEBHOOK_TOKEN", "s3cret")
        assert signatures.verify_conekta(BODY, {}, {"token": "s3cret"})["id"] == "evt_1"

    @pytest.mark.parametrize("headers", [{}, {"x-webhook-token": "wrong"}])
    def test_bad_token(self, monkeypatch, headers):
        monkeypatch.setattr(settings, "CLIP_WEBHOOK_TOKEN", "s3cret")
        with pytest.raises(WebhookSignatureError):
            signatures.verify_clip(BODY, headers, {})

    def test_skipped_without_token(self, monkeypatch):
        monkeypatch.setattr(settings, "CONEKTA_WEBHOOK_TOKEN", "")
        assert signatures.verify_conekta(BODY, {}, {})["id"] == "evt_1"

    def test_invalid_json_passed_on_as_none(self, monkeypatch):
        monkeypatch.setattr(settings, "CLIP_WEBHOOK_TOKEN", "")
        assert signatures.verify_clip(b"not json", {}, {}) is None


class TestMercadoPago:
    def test_valid_signature(self):
        headers = {"x-signature": mercadopago_header("mp_secret", "123456", "req-1"), "x-request-id": "req-1"}
        assert signatures.verify_mercadopago(BODY, headers, "123456", secret="mp_secret")["id"] == "evt_1"

    def test_alphanumeric_id_lowercased_in_manifest(self):
        headers = {"x-signature": mercadopago_header("mp_secret", "abc123", "req-1"), "x-request-id": "req-1"}
        assert signatures.verify_mercadopago(BODY, headers, "ABC123", secret="mp_secret") is not None

    def test_request_id_optional(self):
        manifest = signatures.mercadopago_manifest("123", None, "1700")
        assert manifest == "id:123;ts:1700;"

    def test_wrong_signature(self):
        headers = {"x-signature": mercadopago_header("other", "123456", "req-1"), "x-request-id": "req-1"}
        with pytest.raises(WebhookSignatureError):
            signatures.verify_mercadopago(BODY, headers, "123456", secret="mp_secret")

    def test_signature_bound_to_payment_id(self):
        headers = {"x-signature": mercadopago_header("mp_secret", "123456", "req-1"), "x-request-id": "req-1"}
        with pytest.raises(WebhookSignatureError):
            signatures.verify_mercadopago(BODY, headers, "999999", secret="mp_secret")

    @pytest.mark.parametrize("header", [None, "garbage", "ts=1704908010"])
    def test_missing_or_malformed_header(self, header):
        headers = {"x-signature": header} if header else {}
        with pytest.raises(WebhookSignatureError):
            signatures.verify_mercadopago(BODY, headers, "123456", secret="mp_secret")

    def test_skipped_without_secret(self):
        assert signatures.verify_mercadopago(BODY, {}, None, secret="")["id"] == "evt_1"

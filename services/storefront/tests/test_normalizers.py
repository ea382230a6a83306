"""Tests for per-provider webhook normalization."""

import pytest

from app.db.models import OrderStatus
from app.payments.events import canonical_status
from app.payments.normalizers import (
    ClipNormalizer,
    ConektaNormalizer,
    MercadoPagoNormalizer,
    StripeNormalizer,
    extract_mercadopago_payment_id,
    get_normalizer,
)


def stripe_event(event_type, obj, event_id="evt_1"):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def conekta_event(event_type, obj, event_id="evt_c1"):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


class TestCanonicalStatus:
    @pytest.mark.parametrize("signal,expected", [
        ("approved", OrderStatus.PAID),
        ("PAID", OrderStatus.PAID),
        ("charge.paid", OrderStatus.PAID),
        ("rejected", OrderStatus.CANCELLED),
        ("expired", OrderStatus.CANCELLED),
        ("cancelled", OrderStatus.CANCELLED),
        ("refunded", OrderStatus.REFUNDED),
        ("charged_back", OrderStatus.REFUNDED),
    ])
    def test_known_signals(self, signal, expected):
        assert canonical_status(signal) is expected

    @pytest.mark.parametrize("signal", [None, "", "pending", "in_process", "authorized"])
    def test_unknown_signals(self, signal):
        assert canonical_status(signal) is None


class TestStripeNormalizer:
    def test_completed_paid_session(self):
        event = StripeNormalizer().normalize(stripe_event(
            "checkout.session.completed",
            {"id": "cs_1", "payment_status": "paid", "client_reference_id": "ref_1"},
        ))
        assert event.provider == "stripe"
        assert event.provider_event_id == "evt_1"
        assert event.correlation_id == "ref_1"
        assert event.target_status is OrderStatus.PAID
        assert event.event_type == "checkout.session.completed"

    def test_completed_but_unpaid_session_ignored(self):
        result = StripeNormalizer().inspect(stripe_event(
            "checkout.session.completed",
            {"payment_status": "unpaid", "client_reference_id": "ref_1"},
        ))
        assert result.event is None
        assert result.provider_event_id == "evt_1"
        assert "payment_status" in result.reason

    def test_expired_session(self):
        event = StripeNormalizer().normalize(stripe_event("checkout.session.expired", {"client_reference_id": "ref_1"}))
        assert event.target_status is OrderStatus.CANCELLED

    def test_payment_intent_uses_metadata(self):
        event = StripeNormalizer().normalize(stripe_event(
            "payment_intent.succeeded", {"id": "pi_1", "metadata": {"order_reference": "ref_2"}},
        ))
        assert event.correlation_id == "ref_2"
        assert event.target_status is OrderStatus.PAID

    def test_full_refund(self):
        event = StripeNormalizer().normalize(stripe_event(
            "charge.refunded", {"refunded": True, "metadata": {"order_reference": "ref_1"}},
        ))
        assert event.target_status is OrderStatus.REFUNDED

    def test_partial_refund_ignored(self):
        assert StripeNormalizer().normalize(stripe_event(
            "charge.refunded", {"refunded": False, "metadata": {"order_reference": "ref_1"}},
        )) is None

    def test_unhandled_type_ignored(self):
        assert StripeNormalizer().normalize(stripe_event("customer.created", {"id": "cus_1"})) is None

    def test_completed_session_carries_payment_intent(self):
        event = StripeNormalizer().normalize(stripe_event(
            "checkout.session.completed",
            {"object": "checkout.session", "payment_status": "paid", "client_reference_id": "ref_1", "payment_intent": "pi_1"},
        ))
        assert event.correlation_id == "ref_1"
        assert event.related_ids == ("pi_1",)

    def test_dispute_correlates_on_payment_intent(self):
        event = StripeNormalizer().normalize(stripe_event(
            "charge.dispute.funds_withdrawn",
            {"id": "dp_1", "object": "dispute", "charge": "ch_1", "payment_intent": "pi_1", "metadata": {}},
            event_id="evt_dispute_1",
        ))
        assert event.provider_event_id == "evt_dispute_1"
        assert event.correlation_id == "pi_1"
        assert event.related_ids == ()
        assert event.target_status is OrderStatus.REFUNDED


class TestClipNormalizer:
    def test_approved_payment(self):
        event = ClipNormalizer().normalize({
            "id": "clip_1", "payment_request_id": "pr_1", "resource_status": "approved", "resource_type": "payment",
        })
        assert event.provider_event_id == "clip_1:approved"
        assert event.correlation_id == "pr_1"
        assert event.target_status is OrderStatus.PAID

    def test_status_is_part_of_event_id(self):
        n = ClipNormalizer()
        paid = n.normalize({"id": "clip_1", "payment_request_id": "pr_1", "resource_status": "paid", "resource_type": "checkout"})
        refunded = n.normalize({"id": "clip_1", "payment_request_id": "pr_1", "resource_status": "refunded", "resource_type": "checkout"})
        assert paid.provider_event_id != refunded.provider_event_id

    def test_falls_back_to_payment_request_id(self):
        event = ClipNormalizer().normalize({"payment_request_id": "pr_1", "resource_status": "expired", "resource_type": "checkout"})
        assert event.provider_event_id == "pr_1:expired"
        assert event.target_status is OrderStatus.CANCELLED

    def test_non_payment_resource_ignored(self):
        assert ClipNormalizer().normalize({
            "id": "clip_1", "payment_request_id": "pr_1", "resource_status": "approved", "resource_type": "refund_request",
        }) is None

    def test_missing_correlation_ignored(self):
        result = ClipNormalizer().inspect({"id": "clip_1", "resource_status": "approved", "resource_type": "payment"})
        assert result.event is None
        assert result.reason == "missing correlation id"


class TestConektaNormalizer:
    def test_order_paid_correlates_on_order_id(self):
        event = ConektaNormalizer().normalize(conekta_event("order.paid", {"id": "ord_2x", "payment_status": "paid"}))
        assert event.correlation_id == "ord_2x"
        assert event.target_status is OrderStatus.PAID

    def test_charge_event_correlates_on_parent_order(self):
        event = ConektaNormalizer().normalize(conekta_event("charge.paid", {"id": "chr_1", "order_id": "ord_2x"}))
        assert event.correlation_id == "ord_2x"
        assert event.target_status is OrderStatus.PAID

    @pytest.mark.parametrize("event_type", ["order.expired", "order.canceled", "charge.declined"])
    def test_cancellations(self, event_type):
        obj = {"id": "chr_1", "order_id": "ord_2x"} if event_type.startswith("charge.") else {"id": "ord_2x"}
        assert ConektaNormalizer().normalize(conekta_event(event_type, obj)).target_status is OrderStatus.CANCELLED

    def test_refund(self):
        event = ConektaNormalizer().normalize(conekta_event("order.refunded", {"id": "ord_2x"}))
        assert event.target_status is OrderStatus.REFUNDED

    def test_unhandled_type_ignored(self):
        assert ConektaNormalizer().normalize(conekta_event("order.created", {"id": "ord_2x"})) is None


class TestMercadoPagoNormalizer:
    def test_approved_payment(self):
        event = MercadoPagoNormalizer().normalize({"id": 123456, "status": "approved", "external_reference": "ref_1"})
        assert event.provider == "mercadopago"
        assert event.provider_event_id == "123456:approved"
        assert event.correlation_id == "ref_1"
        assert event.target_status is OrderStatus.PAID

    def test_metadata_fallback(self):
        event = MercadoPagoNormalizer().normalize({"id": 1, "status": "rejected", "metadata": {"order_reference": "ref_9"}})
        assert event.correlation_id == "ref_9"
        assert event.target_status is OrderStatus.CANCELLED

    @pytest.mark.parametrize("status", ["pending", "in_process", "authorized"])
    def test_non_final_statuses_ignored(self, status):
        assert MercadoPagoNormalizer().normalize({"id": 1, "status": status, "external_reference": "ref_1"}) is None


class TestMercadoPagoPaymentId:
    def test_from_query(self):
        assert extract_mercadopago_payment_id({"data.id": "123"}, {}) == "123"
        assert extract_mercadopago_payment_id({"id": "456", "topic": "payment"}, None) == "456"

    def test_from_body(self):
        assert extract_mercadopago_payment_id({}, {"type": "payment", "data": {"id": 789}}) == "789"

    def test_missing(self):
        assert extract_mercadopago_payment_id({}, {"type": "payment"}) is None


class TestMalformedPayloads:
    @pytest.mark.parametrize("provider", ["stripe", "clip", "conekta", "mercadopago"])
    @pytest.mark.parametrize("raw", [None, [], "text", 42, {}, {"id": None}, {"data": "oops", "id": "x", "type": "order.paid"}])
    def test_never_raise(self, provider, raw):
        assert get_normalizer(provider).normalize(raw) is None

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            get_normalizer("paypal")

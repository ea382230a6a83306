"""Tests for the order status state machine and payment event reconciliation."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.errors import PersistenceError, ReconciliationConflict
from app.db.models import TERMINAL_STATUSES, Order, OrderCorrelation, OrderStatus, ProcessedPaymentEvent, ReconciliationIssue
from app.payments.events import PaymentEvent
from app.payments.normalizers import MercadoPagoNormalizer, StripeNormalizer
from app.payments.reconciliation import (
    Applied,
    Conflict,
    Ignored,
    NotFound,
    ReconciliationEngine,
    can_transition,
    reconcile,
)
from app.services.orders import CartItem, OrderFactory, ShippingInfo

P, PAID, C, R = OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.REFUNDED


@pytest.fixture()
def order(db, products):
    return OrderFactory(db).create_order(
        "ana@correo.mx", [CartItem(product_id=products["TEE-001"].id, quantity=1)], ShippingInfo(),
        provider="mercadopago",
    )


@pytest.fixture()
def engine(db):
    return ReconciliationEngine(db)


def event_for(order, status, event_id="evt_1", provider="mercadopago"):
    return PaymentEvent(
        provider=provider,
        provider_event_id=event_id,
        correlation_id=order.reference,
        target_status=status,
        event_type="payment",
    )


def ledger_rows(db):
    return db.execute(select(func.count(ProcessedPaymentEvent.id))).scalar_one()


def set_status(db, order, status):
    order.status = status.value
    db.commit()


class TestStateMachine:
    @pytest.mark.parametrize("current,target,allowed", [
        (P, PAID, True), (P, C, True), (P, R, False),
        (PAID, R, True), (PAID, C, False), (PAID, P, False),
        (C, PAID, False), (C, R, False), (C, P, False),
        (R, PAID, False), (R, C, False), (R, P, False),
    ])
    def test_automatic(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_admin_may_cancel_paid(self):
        assert can_transition(PAID, C, admin=True)
        assert not can_transition(C, PAID, admin=True)
        assert not can_transition(R, PAID, admin=True)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES))
    def test_terminal_statuses_have_no_way_out(self, terminal):
        for target in OrderStatus:
            assert not can_transition(terminal, target)
            assert not can_transition(terminal, target, admin=True)


class TestApply:
    def test_pending_to_paid_then_replay(self, db, engine, order):
        first = engine.apply(event_for(order, PAID))
        assert first == Applied(P, PAID, order_id=order.id)
        assert first.changed

        again = engine.apply(event_for(order, PAID))
        assert again == Applied(PAID, PAID, order_id=order.id, duplicate=True)
        assert not again.changed
        assert ledger_rows(db) == 1
        assert db.get(Order, order.id).status == "paid"

    def test_refund_before_payment_is_conflict(self, db, engine, order):
        outcome = engine.apply(event_for(order, R, event_id="evt_refund"))

        assert outcome == Conflict(P, R, order_id=order.id)
        assert db.get(Order, order.id).status == "pending"
        issue = db.execute(select(ReconciliationIssue)).scalar_one()
        assert (issue.current_status, issue.attempted_status) == ("pending", "refunded")
        assert issue.provider_event_id == "evt_refund"
        assert not issue.resolved
        assert ledger_rows(db) == 0

    def test_conflict_flagged_once_per_event(self, db, engine, order):
        engine.apply(event_for(order, R, event_id="evt_refund"))
        engine.apply(event_for(order, R, event_id="evt_refund"))
        assert db.execute(select(func.count(ReconciliationIssue.id))).scalar_one() == 1

    def test_same_status_is_noop_but_recorded(self, db, engine, order):
        set_status(db, order, PAID)
        outcome = engine.apply(event_for(order, PAID, event_id="evt_late"))

        assert outcome == Applied(PAID, PAID, order_id=order.id)
        assert ledger_rows(db) == 1

    def test_paid_then_refunded(self, db, engine, order):
        engine.apply(event_for(order, PAID, event_id="evt_paid"))
        outcome = engine.apply(event_for(order, R, event_id="evt_refund"))

        assert outcome == Applied(PAID, R, order_id=order.id)
        assert db.get(Order, order.id).status == "refunded"

    @pytest.mark.parametrize("terminal", [C, R])
    def test_terminal_states_stay_terminal(self, db, engine, order, terminal):
        set_status(db, order, terminal)
        for i, target in enumerate([P, PAID, C, R]):
            if target == terminal:
                continue
            outcome = engine.apply(event_for(order, target, event_id=f"evt_{i}"))
            assert isinstance(outcome, Conflict)
        assert db.get(Order, order.id).status == terminal.value

    def test_paid_cannot_be_cancelled_automatically(self, db, engine, order):
        set_status(db, order, PAID)
        outcome = engine.apply(event_for(order, C, event_id="evt_expired"))
        assert outcome == Conflict(PAID, C, order_id=order.id)

    def test_unknown_correlation(self, db, engine, order):
        event = PaymentEvent("mercadopago", "evt_x", "no-such-reference", PAID)
        assert engine.apply(event) == NotFound("no-such-reference")
        assert db.get(Order, order.id).status == "pending"

    def test_correlation_is_per_provider(self, db, engine, order):
        # The order was created for Mercado Pago; a Stripe event with the same id must not match.
        assert isinstance(engine.apply(event_for(order, PAID, provider="stripe")), NotFound)

    def test_related_ids_registered_for_later_events(self, db, engine, order):
        paid = PaymentEvent("mercadopago", "evt_1", order.reference, PAID, related_ids=("pay_77",))
        assert engine.apply(paid).changed

        refund = PaymentEvent("mercadopago", "evt_2", "pay_77", R)
        assert engine.apply(refund) == Applied(PAID, R, order_id=order.id)
        owners = db.execute(
            select(OrderCorrelation.order_id).where(OrderCorrelation.external_id == "pay_77")
        ).scalars().all()
        assert owners == [order.id]

    def test_related_id_of_another_order_left_alone(self, db, engine, order, products):
        other = OrderFactory(db).create_order(
            "beto@correo.mx", [CartItem(product_id=products["TEE-001"].id, quantity=1)], ShippingInfo(),
            provider="mercadopago",
        )
        event = PaymentEvent("mercadopago", "evt_1", order.reference, PAID, related_ids=(other.reference,))

        assert engine.apply(event).changed
        owner = db.execute(
            select(OrderCorrelation.order_id).where(OrderCorrelation.external_id == other.reference)
        ).scalar_one()
        assert owner == other.id

    def test_updated_at_not_before_created_at(self, db, engine, order):
        engine.apply(event_for(order, PAID))
        stored = db.get(Order, order.id)
        assert stored.updated_at >= stored.created_at

    def test_ledger_race_reported_as_duplicate(self, db, engine, order, monkeypatch):
        # Another worker commits the ledger row between our check and our insert.
        engine.apply(event_for(order, PAID, event_id="evt_race"))

        def racing(self, event):
            raise IntegrityError("INSERT INTO processed_payment_events", {}, Exception("duplicate key"))

        monkeypatch.setattr(ReconciliationEngine, "_apply", racing)
        outcome = engine.apply(event_for(order, PAID, event_id="evt_race"))

        assert outcome == Applied(PAID, PAID, order_id=order.id, duplicate=True)
        assert ledger_rows(db) == 1

    def test_storage_failure(self, db, engine, order, monkeypatch):
        def broken(self, event):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(ReconciliationEngine, "_resolve", broken)
        with pytest.raises(PersistenceError):
            engine.apply(event_for(order, PAID))


class TestReconcile:
    def test_normalize_then_apply(self, db, engine, order):
        outcome = reconcile(
            MercadoPagoNormalizer(),
            {"id": 42, "status": "approved", "external_reference": order.reference},
            engine,
        )
        assert outcome == Applied(P, PAID, order_id=order.id)
        entry = db.execute(select(ProcessedPaymentEvent)).scalar_one()
        assert entry.provider_event_id == "42:approved"

    def test_unreadable_payload_ignored(self, db, engine, order):
        outcome = reconcile(StripeNormalizer(), {"garbage": True}, engine)
        assert isinstance(outcome, Ignored)
        assert db.get(Order, order.id).status == "pending"
        assert ledger_rows(db) == 0


class TestOverrideStatus:
    def test_admin_cancels_paid_order(self, db, engine, order):
        set_status(db, order, PAID)
        result = engine.override_status(order.id, "cancelled", actor="admin@atlas.mx")

        assert result == Applied(PAID, C, order_id=order.id)
        assert db.get(Order, order.id).status == "cancelled"

    def test_terminal_rejected(self, db, engine, order):
        set_status(db, order, R)
        with pytest.raises(ReconciliationConflict):
            engine.override_status(order.id, OrderStatus.PAID, actor="admin@atlas.mx")

    def test_same_status_noop(self, db, engine, order):
        result = engine.override_status(order.id, "pending", actor="admin@atlas.mx")
        assert not result.changed

    def test_missing_order(self, engine):
        with pytest.raises(LookupError):
            engine.override_status(12345, "paid", actor="admin@atlas.mx")


class TestIssues:
    def test_list_count_and_resolve(self, db, engine, order):
        engine.apply(event_for(order, R, event_id="evt_refund"))
        issues = engine.list_issues()
        assert len(issues) == 1
        assert engine.count_issues() == 1

        resolved = engine.resolve_issue(issues[0].id, actor="admin@atlas.mx")
        assert resolved.resolved
        assert resolved.resolved_at is not None
        assert engine.list_issues() == []
        assert engine.count_issues(resolved=True) == 1
        assert len(engine.list_issues(resolved=None)) == 1

    def test_resolve_missing(self, engine):
        assert engine.resolve_issue(999, actor="admin@atlas.mx") is None

"""Reconciliation of normalized payment events against stored orders.

State machine (automatic path)::

    pending -> paid -> refunded
    pending -> cancelled

``paid -> cancelled`` is reserved for ``override_status`` (administrative).
``cancelled`` and ``refunded`` are terminal. Re-applying the current status
is a successful no-op.

Every evaluation happens inside one transaction that holds a row lock on the
order and writes the processed-events ledger together with the new status,
so duplicate or concurrent deliveries of one provider event take effect at
most once.
"""

from dataclasses import dataclass
from typing import Any, Union

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import PersistenceError, ReconciliationConflict
from app.db.models import (
    TERMINAL_STATUSES,
    Order,
    OrderCorrelation,
    OrderStatus,
    ProcessedPaymentEvent,
    ReconciliationIssue,
)
from app.db.session import now_utc
from app.payments.events import PaymentEvent
from app.payments.normalizers import ProviderNormalizer

logger = structlog.get_logger(__name__)

AUTOMATIC_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.REFUNDED},
    **{status: set() for status in TERMINAL_STATUSES},
}

ADMIN_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.REFUNDED, OrderStatus.CANCELLED},
    **{status: set() for status in TERMINAL_STATUSES},
}


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Applied:
    old_status: OrderStatus
    new_status: OrderStatus
    order_id: int | None = None
    duplicate: bool = False

    @property
    def changed(self) -> bool:
        return self.old_status != self.new_status

    def as_dict(self) -> dict:
        return {
            "result": "applied",
            "old_status": self.old_status.value,
            "new_status": self.new_status.value,
            "duplicate": self.duplicate,
        }


@dataclass(frozen=True)
class Ignored:
    reason: str

    def as_dict(self) -> dict:
        return {"result": "ignored", "reason": self.reason}


@dataclass(frozen=True)
class NotFound:
    correlation_id: str | None = None

    def as_dict(self) -> dict:
        return {"result": "not_found"}


@dataclass(frozen=True)
class Conflict:
    current_status: OrderStatus
    attempted_status: OrderStatus
    order_id: int | None = None

    def as_dict(self) -> dict:
        return {
            "result": "conflict",
            "current_status": self.current_status.value,
            "attempted_status": self.attempted_status.value,
        }


ReconciliationOutcome = Union[Applied, Ignored, NotFound, Conflict]


def can_transition(current: OrderStatus, target: OrderStatus, admin: bool = False) -> bool:
    table = ADMIN_TRANSITIONS if admin else AUTOMATIC_TRANSITIONS
    return target in table.get(current, set())


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
class ReconciliationEngine:
    def __init__(self, db: Session):
        self.db = db

    def apply(self, event: PaymentEvent) -> ReconciliationOutcome:
        """Apply ``event`` to the order it correlates with, at most once.

        Raises ``PersistenceError`` when the database fails; every other
        result is reported as an outcome.
        """
        log = logger.bind(
            provider=event.provider,
            provider_event_id=event.provider_event_id,
            correlation_id=event.correlation_id,
            attempted_status=event.target_status.value,
        )
        try:
            outcome = self._apply(event)
            self.db.commit()
        except IntegrityError:
            # A concurrent delivery of the same event committed its ledger row first.
            self.db.rollback()
            outcome = self._replayed(event)
            if outcome is None:
                log.error("Ledger conflict without a ledger row", exc_info=True)
                raise PersistenceError("Could not record payment event")
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error("Reconciliation failed", exc_info=True)
            raise PersistenceError("Could not apply payment event") from e

        if isinstance(outcome, Applied):
            log.info(
                "Applied payment event",
                order_id=outcome.order_id,
                old_status=outcome.old_status.value,
                new_status=outcome.new_status.value,
                duplicate=outcome.duplicate,
            )
        elif isinstance(outcome, Conflict):
            log.warning(
                "Rejected payment event transition, flagged for review",
                order_id=outcome.order_id,
                current_status=outcome.current_status.value,
            )
        elif isinstance(outcome, NotFound):
            log.warning("No order for payment event")
        return outcome

    def _lock_order(self, order_id: int) -> Order:
        return self.db.execute(
            select(Order).where(Order.id == order_id).with_for_update().execution_options(populate_existing=True)
        ).scalar_one()

    def _resolve(self, event: PaymentEvent) -> int | None:
        return self.db.execute(
            select(OrderCorrelation.order_id).where(
                OrderCorrelation.provider == event.provider,
                OrderCorrelation.external_id == event.correlation_id,
            )
        ).scalar_one_or_none()

    def _ledger_entry(self, event: PaymentEvent) -> ProcessedPaymentEvent | None:
        return self.db.execute(
            select(ProcessedPaymentEvent).where(
                ProcessedPaymentEvent.provider == event.provider,
                ProcessedPaymentEvent.provider_event_id == event.provider_event_id,
            )
        ).scalar_one_or_none()

    def _apply(self, event: PaymentEvent) -> ReconciliationOutcome:
        order_id = self._resolve(event)
        if order_id is None:
            return NotFound(event.correlation_id)

        # Status is read under the row lock that guards the write below.
        order = self._lock_order(order_id)
        current = OrderStatus(order.status)
        target = event.target_status
        self._link(event, order)

        if self._ledger_entry(event) is not None:
            return Applied(current, current, order_id=order.id, duplicate=True)

        if current == target:
            self._record(event, order, current, target)
            return Applied(current, target, order_id=order.id)

        if not can_transition(current, target):
            self._flag(event, order, current, target)
            return Conflict(current, target, order_id=order.id)

        order.status = target.value
        order.updated_at = max(now_utc(), order.created_at)
        self._record(event, order, current, target)
        return Applied(current, target, order_id=order.id)

    def _link(self, event: PaymentEvent, order: Order) -> None:
        for external_id in event.related_ids:
            owner = self.db.execute(
                select(OrderCorrelation.order_id).where(
                    OrderCorrelation.provider == event.provider,
                    OrderCorrelation.external_id == external_id,
                )
            ).scalar_one_or_none()
            if owner is None:
                self.db.add(OrderCorrelation(order_id=order.id, provider=event.provider, external_id=external_id))
                self.db.flush()
            elif owner != order.id:
                logger.warning(
                    "Provider id already linked to another order",
                    provider=event.provider,
                    external_id=external_id,
                    order_id=order.id,
                    linked_order_id=owner,
                )

    def _record(self, event: PaymentEvent, order: Order, current: OrderStatus, target: OrderStatus) -> None:
        self.db.add(
            ProcessedPaymentEvent(
                provider=event.provider,
                provider_event_id=event.provider_event_id,
                order_id=order.id,
                event_type=event.event_type,
                from_status=current.value,
                to_status=target.value,
            )
        )
        self.db.flush()

    def _flag(self, event: PaymentEvent, order: Order, current: OrderStatus, target: OrderStatus) -> None:
        existing = self.db.execute(
            select(ReconciliationIssue.id).where(
                ReconciliationIssue.provider == event.provider,
                ReconciliationIssue.provider_event_id == event.provider_event_id,
            )
        ).first()
        if existing:
            return
        self.db.add(
            ReconciliationIssue(
                order_id=order.id,
                provider=event.provider,
                provider_event_id=event.provider_event_id,
                current_status=current.value,
                attempted_status=target.value,
                detail=f"{event.event_type or 'event'} asked for {target.value} while order is {current.value}",
            )
        )
        self.db.flush()

    def _replayed(self, event: PaymentEvent) -> ReconciliationOutcome | None:
        try:
            entry = self._ledger_entry(event)
            if entry is None:
                return None
            order = self.db.get(Order, entry.order_id)
            current = OrderStatus(order.status)
            return Applied(current, current, order_id=order.id, duplicate=True)
        except SQLAlchemyError as e:
            raise PersistenceError("Could not read payment event ledger") from e

    # -----------------------------------------------------------------------
    # Administrative path
    # -----------------------------------------------------------------------
    def override_status(self, order_id: int, new_status: OrderStatus | str, actor: str) -> Applied:
        """Set an order's status by hand; allows paid -> cancelled, nothing out of terminal states."""
        target = OrderStatus(new_status)
        try:
            order = self.db.execute(
                select(Order).where(Order.id == order_id).with_for_update().execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if order is None:
                self.db.rollback()
                raise LookupError(order_id)
            current = OrderStatus(order.status)
            if current == target:
                self.db.rollback()
                return Applied(current, target, order_id=order.id)
            if not can_transition(current, target, admin=True):
                self.db.rollback()
                raise ReconciliationConflict(current.value, target.value)
            order.status = target.value
            order.updated_at = max(now_utc(), order.created_at)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("Could not update order status") from e
        logger.info(
            "Order status overridden",
            order_id=order_id,
            old_status=current.value,
            new_status=target.value,
            actor=actor,
        )
        return Applied(current, target, order_id=order_id)

    def list_issues(self, resolved: bool | None = False, limit: int = 50, offset: int = 0) -> list[ReconciliationIssue]:
        stmt = select(ReconciliationIssue).order_by(ReconciliationIssue.created_at.desc(), ReconciliationIssue.id.desc())
        if resolved is not None:
            stmt = stmt.where(ReconciliationIssue.resolved == resolved)
        try:
            return list(self.db.execute(stmt.offset(offset).limit(limit)).scalars())
        except SQLAlchemyError as e:
            raise PersistenceError("Could not list reconciliation issues") from e

    def count_issues(self, resolved: bool | None = False) -> int:
        stmt = select(func.count(ReconciliationIssue.id))
        if resolved is not None:
            stmt = stmt.where(ReconciliationIssue.resolved == resolved)
        try:
            return self.db.execute(stmt).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError("Could not count reconciliation issues") from e

    def resolve_issue(self, issue_id: int, actor: str) -> ReconciliationIssue | None:
        try:
            issue = self.db.get(ReconciliationIssue, issue_id)
            if issue is None:
                return None
            if not issue.resolved:
                issue.resolved = True
                issue.resolved_at = now_utc()
                self.db.commit()
                logger.info("Reconciliation issue resolved", issue_id=issue_id, order_id=issue.order_id, actor=actor)
            return issue
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("Could not resolve reconciliation issue") from e


def reconcile(normalizer: ProviderNormalizer, raw: Any, engine: ReconciliationEngine) -> ReconciliationOutcome:
    """Normalize a raw provider payload and apply it; unreadable payloads become ``Ignored``."""
    result = normalizer.inspect(raw)
    if result.event is None:
        return Ignored(result.reason or "ignored")
    return engine.apply(result.event)

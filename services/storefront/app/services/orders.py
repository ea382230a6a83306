"""Order creation and order queries.

``OrderFactory`` is the only code that inserts orders; status changes go
through ``app.payments.reconciliation.ReconciliationEngine``.
"""

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, time, timedelta

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.errors import (
    CustomerResolutionError,
    PersistenceError,
    ProductUnavailable,
    StoreError,
    ValidationError,
)
from app.db.models import Order, OrderCorrelation, OrderItem, OrderStatus
from app.db.session import now_utc
from app.services.catalog import ProductCatalog, SqlProductCatalog
from app.services.customers import CustomerResolver

logger = structlog.get_logger(__name__)

MAX_CREATE_ATTEMPTS = 5

# Correlation rows keyed by our own reference use this provider tag when the
# customer has not picked a payment provider yet.
INTERNAL_PROVIDER = "storefront"


@dataclass
class CartItem:
    product_id: int
    quantity: int
    price: int | None = None  # client-submitted, never trusted
    size: str | None = None
    color: str | None = None


@dataclass
class ShippingInfo:
    name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    postal_code: str | None = None
    phone: str | None = None
    shipping_cents: int = 0
    tax_cents: int = 0


def generate_order_number() -> str:
    return f"{settings.ORDER_NUMBER_PREFIX}-{secrets.token_hex(4).upper()}"


def generate_reference() -> str:
    return uuid.uuid4().hex


class OrderFactory:
    def __init__(self, db: Session, catalog: ProductCatalog | None = None):
        self.db = db
        self.catalog = catalog or SqlProductCatalog(db)

    def create_order(
        self,
        customer_email: str,
        items: list[CartItem],
        shipping_info: ShippingInfo,
        provider: str | None = None,
        customer: dict | None = None,
        notes: str | None = None,
    ) -> Order:
        """Validate the cart against catalog prices and persist the order atomically.

        Client prices and totals are ignored: every line is priced from the
        catalog and the total is recomputed here. The order row, its items and
        its first correlation row are committed together or not at all.
        """
        self._validate_input(items, shipping_info)

        for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
            try:
                order = self._create_once(customer_email, items, shipping_info, provider, customer or {}, notes)
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                # Order numbers and customer emails are unique; a concurrent
                # writer won the race, so run the whole creation again.
                logger.warning("Order creation collided, retrying", attempt=attempt, error=str(e.orig))
                continue
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("Order creation failed", customer_email=customer_email, exc_info=True)
                raise PersistenceError("Could not store order") from e
            except Exception:
                self.db.rollback()
                raise
            logger.info(
                "Created order",
                order_number=order.order_number,
                reference=order.reference,
                total_cents=order.total_cents,
                provider=provider,
            )
            return order
        raise PersistenceError("Could not allocate a unique order number")

    def _validate_input(self, items: list[CartItem], shipping_info: ShippingInfo) -> None:
        if not items:
            raise ValidationError("Cart is empty", field="items")
        for it in items:
            if not isinstance(it.quantity, int) or it.quantity <= 0:
                raise ValidationError(f"Invalid quantity for product {it.product_id}", field="quantity")
        for field in ("shipping_cents", "tax_cents"):
            value = getattr(shipping_info, field)
            if not isinstance(value, int) or value < 0:
                raise ValidationError(f"{field} must be a non-negative integer", field=field)

    def _create_once(self, customer_email, items, shipping_info, provider, customer_fields, notes) -> Order:
        lines = []
        subtotal = 0
        for it in items:
            product = self.catalog.get_product_by_id(it.product_id)
            if product is None:
                raise ProductUnavailable(it.product_id, "not found")
            if not product.orderable:
                raise ProductUnavailable(it.product_id, "not available")
            line_total = product.price_cents * it.quantity
            subtotal += line_total
            lines.append((it, product, line_total))

        try:
            cust = CustomerResolver(self.db).resolve_or_create(
                customer_email,
                name=customer_fields.get("name") or shipping_info.name,
                phone=customer_fields.get("phone") or shipping_info.phone,
                address=shipping_info.address,
                city=shipping_info.city,
                state=shipping_info.state,
                country=shipping_info.country,
                postal_code=shipping_info.postal_code,
            )
        except (ValidationError, StoreError) as e:
            if isinstance(e.__cause__, IntegrityError):
                raise e.__cause__
            raise CustomerResolutionError(str(e), email=customer_email) from e

        order_number = self._unused_order_number()
        now = now_utc()
        order = Order(
            reference=generate_reference(),
            order_number=order_number,
            customer_id=cust.id,
            customer_email=cust.email,
            customer_name=customer_fields.get("name") or shipping_info.name or cust.name,
            status=OrderStatus.PENDING.value,
            payment_provider=provider,
            subtotal_cents=subtotal,
            shipping_cents=shipping_info.shipping_cents,
            tax_cents=shipping_info.tax_cents,
            total_cents=subtotal + shipping_info.shipping_cents + shipping_info.tax_cents,
            currency=settings.CURRENCY,
            ship_name=shipping_info.name,
            ship_address=shipping_info.address,
            ship_city=shipping_info.city,
            ship_state=shipping_info.state,
            ship_country=shipping_info.country,
            ship_postal_code=shipping_info.postal_code,
            ship_phone=shipping_info.phone,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.db.add(order)
        self.db.flush()

        self._add_items(order, lines)
        self.db.add(OrderCorrelation(order_id=order.id, provider=provider or INTERNAL_PROVIDER, external_id=order.reference))
        self.db.flush()
        return order

    def _add_items(self, order: Order, lines) -> None:
        for it, product, line_total in lines:
            order.items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    product_sku=product.sku,
                    unit_price_cents=product.price_cents,
                    quantity=it.quantity,
                    total_price_cents=line_total,
                    variant_size=it.size,
                    variant_color=it.color,
                )
            )

    def _unused_order_number(self) -> str:
        for _ in range(MAX_CREATE_ATTEMPTS):
            candidate = generate_order_number()
            taken = self.db.execute(select(Order.id).where(Order.order_number == candidate)).first()
            if not taken:
                return candidate
        # The unique constraint is the final arbiter; let the insert decide.
        return generate_order_number()


class OrderStore:
    """Read side of orders plus correlation bookkeeping."""

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return select(Order).options(selectinload(Order.items), selectinload(Order.correlations))

    def _one(self, stmt) -> Order | None:
        try:
            return self.db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError("Order lookup failed") from e

    def get(self, order_id: int) -> Order | None:
        return self._one(self._query().where(Order.id == order_id))

    def get_by_number(self, order_number: str) -> Order | None:
        return self._one(self._query().where(Order.order_number == order_number))

    def get_by_reference(self, reference: str) -> Order | None:
        return self._one(self._query().where(Order.reference == reference))

    def list_orders(
        self,
        status: OrderStatus | str | None = None,
        customer_email: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        stmt = self._query().order_by(Order.created_at.desc(), Order.id.desc())
        if status is not None:
            stmt = stmt.where(Order.status == OrderStatus(status).value)
        if customer_email:
            stmt = stmt.where(Order.customer_email == customer_email.lower())
        try:
            return list(self.db.execute(stmt.offset(offset).limit(limit)).scalars())
        except SQLAlchemyError as e:
            raise PersistenceError("Order listing failed") from e

    def count(self, status: OrderStatus | str | None = None) -> int:
        stmt = select(func.count(Order.id))
        if status is not None:
            stmt = stmt.where(Order.status == OrderStatus(status).value)
        try:
            return self.db.execute(stmt).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError("Order count failed") from e

    def revenue(self, start: datetime | None = None, end: datetime | None = None) -> int:
        stmt = select(func.coalesce(func.sum(Order.total_cents), 0)).where(
            Order.status.not_in([OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value])
        )
        if start is not None:
            stmt = stmt.where(Order.created_at >= start)
        if end is not None:
            stmt = stmt.where(Order.created_at <= end)
        try:
            return int(self.db.execute(stmt).scalar_one())
        except SQLAlchemyError as e:
            raise PersistenceError("Revenue query failed") from e

    def revenue_series(self, period: str, now: datetime | None = None) -> list[tuple[str, int]]:
        """Revenue per bucket, oldest first, with empty buckets reported as 0.

        ``7days`` buckets by day (``YYYY-MM-DD``), ``months`` by month over the
        last 12 (``YYYY-MM``) and ``years`` by year over the last 5 (``YYYY``).
        Cancelled and refunded orders do not count.
        """
        start, labels, label_of = _revenue_buckets(period, now or now_utc())
        stmt = select(Order.total_cents, Order.created_at).where(
            Order.created_at >= start,
            Order.status.not_in([OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value]),
        )
        try:
            rows = self.db.execute(stmt).all()
        except SQLAlchemyError as e:
            raise PersistenceError("Revenue query failed") from e
        totals = dict.fromkeys(labels, 0)
        for total_cents, created_at in rows:
            label = label_of(created_at)
            if label in totals:
                totals[label] += total_cents
        return list(totals.items())

    def attach_correlation(self, order: Order, provider: str, external_id: str) -> OrderCorrelation:
        """Register a provider-assigned id for ``order``; a repeat of the same pair is a no-op."""
        if not external_id:
            raise ValidationError("external_id is required")
        try:
            existing = self.db.execute(
                select(OrderCorrelation).where(
                    OrderCorrelation.provider == provider,
                    OrderCorrelation.external_id == external_id,
                )
            ).scalar_one_or_none()
            if existing is not None:
                if existing.order_id != order.id:
                    raise ValidationError(
                        f"{provider} reference {external_id} already belongs to another order"
                    )
                return existing
            corr = OrderCorrelation(order_id=order.id, provider=provider, external_id=external_id)
            self.db.add(corr)
            self.db.commit()
            return corr
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("Could not store correlation") from e


def _day(moment: datetime) -> str:
    return moment.date().isoformat()


def _month(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def _year(moment: datetime) -> str:
    return f"{moment.year:04d}"


def _revenue_buckets(period: str, now: datetime):
    if period == "7days":
        first = now.date() - timedelta(days=6)
        labels = [(first + timedelta(days=n)).isoformat() for n in range(7)]
        return datetime.combine(first, time.min), labels, _day
    if period == "months":
        index = now.year * 12 + now.month - 1
        months = [divmod(i, 12) for i in range(index - 11, index + 1)]
        labels = [f"{year:04d}-{month + 1:02d}" for year, month in months]
        year, month = months[0]
        return datetime(year, month + 1, 1), labels, _month
    if period == "years":
        labels = [f"{year:04d}" for year in range(now.year - 4, now.year + 1)]
        return datetime(now.year - 4, 1, 1), labels, _year
    raise ValidationError(f"Unknown revenue period: {period}", field="period")

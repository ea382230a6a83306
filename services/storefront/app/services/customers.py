"""Customer resolution: find-or-create keyed by case-insensitive email."""

import structlog
from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import StoreError, ValidationError
from app.db.models import Customer
from app.db.session import now_utc

logger = structlog.get_logger(__name__)

PROFILE_FIELDS = (
    "name",
    "phone",
    "address",
    "city",
    "state",
    "neighborhood",
    "country",
    "postal_code",
    "auth_user_id",
)


def normalize_email(email: str | None) -> str:
    """Validate ``email`` and return its lower-cased form."""
    if not email or not email.strip():
        raise ValidationError("Email is required", field="email")
    try:
        validated = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", field="email") from e
    return validated.normalized.lower()


class CustomerResolver:
    """Looks customers up by email, creating them on first contact.

    The resolver flushes but never commits; the caller owns the transaction
    so that a customer created during checkout disappears with a failed order.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_email(self, email: str) -> Customer | None:
        key = normalize_email(email)
        try:
            return self.db.execute(select(Customer).where(Customer.email == key)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError("Customer lookup failed") from e

    def resolve_or_create(self, email: str, **profile) -> Customer:
        key = normalize_email(email)
        unknown = set(profile) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        try:
            customer = self.db.execute(select(Customer).where(Customer.email == key)).scalar_one_or_none()
            if customer is None:
                customer = Customer(email=key, **{k: v for k, v in profile.items() if v is not None})
                self.db.add(customer)
                self.db.flush()
                logger.info("Created customer", customer_id=customer.id, email=key)
                return customer
            self._merge(customer, profile)
            self.db.flush()
            return customer
        except SQLAlchemyError as e:
            raise StoreError("Customer resolution failed") from e

    def update_profile(self, customer: Customer, **profile) -> Customer:
        """Last-write-wins update; ``None`` clears nothing."""
        unknown = set(profile) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        try:
            self._merge(customer, profile)
            self.db.flush()
        except SQLAlchemyError as e:
            raise StoreError("Customer update failed") from e
        return customer

    def _merge(self, customer: Customer, profile: dict) -> None:
        changed = False
        for field, value in profile.items():
            if value is None:
                continue
            if getattr(customer, field) != value:
                setattr(customer, field, value)
                changed = True
        if changed:
            customer.updated_at = now_utc()

    def list_customers(self, search: str | None = None, limit: int = 50, offset: int = 0) -> list[Customer]:
        stmt = select(Customer).order_by(Customer.created_at.desc(), Customer.id.desc())
        if search:
            like = f"%{search.lower()}%"
            stmt = stmt.where(or_(Customer.email.like(like), func.lower(Customer.name).like(like)))
        try:
            return list(self.db.execute(stmt.offset(offset).limit(limit)).scalars())
        except SQLAlchemyError as e:
            raise StoreError("Customer listing failed") from e

    def count(self) -> int:
        try:
            return self.db.execute(select(func.count(Customer.id))).scalar_one()
        except SQLAlchemyError as e:
            raise StoreError("Customer count failed") from e

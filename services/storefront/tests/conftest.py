import os

# Must be set before app modules read their settings.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["KAFKA_ENABLED"] = "false"
os.environ["PAYMENT_GATEWAY_MODE"] = "fake"
os.environ.setdefault("JWT_SECRET", "storefront-test-signing-secret-0123456789")

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.db.models import Product, ProductStatus
from app.db.session import Database
from app.payments.gateways import FakeGateway, reset_gateways, set_gateway
from app.payments.normalizers import PROVIDERS


@pytest.fixture()
def database():
    database = Database("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}).open()
    database.create_all()
    yield database
    database.close()


@pytest.fixture()
def db(database):
    with database.session() as session:
        yield session


@pytest.fixture()
def products(db):
    """Three catalog products: two active, one archived."""
    rows = [
        Product(sku="TEE-001", name="Atlas Tee", slug="atlas-tee", price_cents=900, status=ProductStatus.ACTIVE.value),
        Product(sku="HOOD-001", name="Atlas Hoodie", slug="atlas-hoodie", price_cents=2500, status=ProductStatus.ACTIVE.value),
        Product(sku="OLD-001", name="Retired Cap", slug="retired-cap", price_cents=700, status=ProductStatus.ARCHIVED.value),
    ]
    db.add_all(rows)
    db.commit()
    return {p.sku: p for p in rows}


@pytest.fixture()
def gateways():
    reset_gateways()
    fakes = {name: FakeGateway(name) for name in PROVIDERS}
    for name, gw in fakes.items():
        set_gateway(name, gw)
    yield fakes
    reset_gateways()


@pytest.fixture()
def client(database, gateways):
    from app.main import app

    app.state.db = database
    yield TestClient(app)
    app.state.db = None


def _make_token(sub: str, role: str = "customer", token_type: str = "access", secret: str | None = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": sub, "role": role, "type": token_type, "iat": now, "exp": now + timedelta(minutes=15)}
    return jwt.encode(payload, secret or settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture()
def admin_headers():
    return {"Authorization": f"Bearer {_make_token('admin@atlas.mx', role='admin')}"}


@pytest.fixture()
def customer_headers():
    return {"Authorization": f"Bearer {_make_token('ana@correo.mx')}"}


@pytest.fixture()
def make_token():
    return _make_token


@pytest.fixture(autouse=True)
def unsigned_webhooks(monkeypatch):
    """Webhook secrets off unless a test sets one."""
    for key in ("STRIPE_WEBHOOK_SECRET", "CLIP_WEBHOOK_TOKEN", "CONEKTA_WEBHOOK_TOKEN", "MERCADO_PAGO_WEBHOOK_SECRET"):
        monkeypatch.setattr(settings, key, "")

from datetime import datetime
from typing import Literal
from pydantic import BaseModel, ConfigDict, Field
from app.db.models import OrderStatus

Provider = Literal["stripe", "clip", "conekta", "mercadopago"]

# --- Checkout ---
class CheckoutItemIn(BaseModel):
    product_id: int
    quantity: int
    price: int | None = None  # ignored, catalog prices win
    size: str | None = None
    color: str | None = None

class ShippingIn(BaseModel):
    name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    postal_code: str | None = None
    phone: str | None = None
    shipping_cents: int = 0
    tax_cents: int = 0

class CustomerIn(BaseModel):
    name: str | None = None
    phone: str | None = None

class CheckoutRequest(BaseModel):
    email: str
    provider: Provider
    items: list[CheckoutItemIn]
    shipping: ShippingIn = Field(default_factory=ShippingIn)
    customer: CustomerIn | None = None
    notes: str | None = None

class CheckoutResponse(BaseModel):
    order_id: int
    order_number: str
    reference: str
    status: str
    provider: str
    subtotal_cents: int
    shipping_cents: int
    tax_cents: int
    total_cents: int
    currency: str
    redirect_url: str | None = None

# --- Orders ---
class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    product_id: int
    product_name: str
    product_sku: str
    unit_price_cents: int
    quantity: int
    total_price_cents: int
    variant_size: str | None = None
    variant_color: str | None = None

class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    order_number: str
    reference: str
    status: str
    payment_provider: str | None = None
    subtotal_cents: int
    shipping_cents: int
    tax_cents: int
    total_cents: int
    currency: str
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemOut] = []

class CorrelationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    provider: str
    external_id: str
    created_at: datetime

class AdminOrderOut(OrderOut):
    customer_id: int | None = None
    customer_email: str
    customer_name: str | None = None
    ship_name: str | None = None
    ship_address: str | None = None
    ship_city: str | None = None
    ship_state: str | None = None
    ship_country: str | None = None
    ship_postal_code: str | None = None
    ship_phone: str | None = None
    notes: str | None = None
    correlations: list[CorrelationOut] = []

class OrderPage(BaseModel):
    items: list[AdminOrderOut]
    total: int
    limit: int
    offset: int

# --- Admin ---
class StatusUpdateIn(BaseModel):
    status: OrderStatus

class StatusUpdateOut(BaseModel):
    order_id: int
    old_status: str
    new_status: str
    changed: bool

class CustomerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    email: str
    name: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    neighborhood: str | None = None
    country: str | None = None
    postal_code: str | None = None
    created_at: datetime
    updated_at: datetime

class CustomerPage(BaseModel):
    items: list[CustomerOut]
    total: int
    limit: int
    offset: int

class StatsOut(BaseModel):
    orders_total: int
    orders_by_status: dict[str, int]
    revenue_cents: int
    revenue_today_cents: int
    customers_total: int
    open_issues: int

class IssueOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    order_id: int
    provider: str
    provider_event_id: str
    current_status: str
    attempted_status: str
    detail: str
    resolved: bool
    created_at: datetime
    resolved_at: datetime | None = None

class ProfileUpdateIn(BaseModel):
    name: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    neighborhood: str | None = None
    country: str | None = None
    postal_code: str | None = None

class RevenuePoint(BaseModel):
    label: str
    revenue_cents: int

class RevenueSeriesOut(BaseModel):
    period: str
    points: list[RevenuePoint]

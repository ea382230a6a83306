from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import structlog
from app.api.deps import get_db, http_error
from app.api.schemas import CheckoutRequest, CheckoutResponse
from app.core.config import settings
from app.core.errors import ProviderCommunicationError, StorefrontError
from app.kafka import producer
from app.payments.gateways import get_gateway
from app.services.orders import CartItem, OrderFactory, OrderStore, ShippingInfo

router = APIRouter()
logger = structlog.get_logger(__name__)

@router.post("/v1/checkout", response_model=CheckoutResponse, status_code=201)
def checkout(payload: CheckoutRequest, db: Session = Depends(get_db)):
    items = [CartItem(product_id=i.product_id, quantity=i.quantity, price=i.price, size=i.size, color=i.color)
             for i in payload.items]
    shipping = ShippingInfo(**payload.shipping.model_dump())
    customer = payload.customer.model_dump(exclude_none=True) if payload.customer else None

    try:
        order = OrderFactory(db).create_order(
            payload.email, items, shipping,
            provider=payload.provider, customer=customer, notes=payload.notes,
        )
    except StorefrontError as e:
        raise http_error(e)
    producer.publish("order.created", order)

    # Order is durable from here on; a provider failure leaves it pending.
    base = settings.APP_URL.rstrip("/")
    success_url = f"{base}/checkout/success?ref={order.reference}"
    cancel_url = f"{base}/checkout/cancel?ref={order.reference}"
    try:
        session = get_gateway(payload.provider).create_payment(order, success_url, cancel_url)
    except ProviderCommunicationError as e:
        logger.error("Payment creation failed", provider=payload.provider, order_number=order.order_number,
                     status=e.status, error=e.message)
        raise HTTPException(status_code=502, detail={
            "message": "Payment provider unavailable",
            "order_number": order.order_number,
            "reference": order.reference,
        })

    if session.external_id != order.reference:
        try:
            OrderStore(db).attach_correlation(order, payload.provider, session.external_id)
        except StorefrontError as e:
            logger.error("Could not register provider reference", provider=payload.provider,
                         order_number=order.order_number, external_id=session.external_id)
            raise http_error(e)

    return CheckoutResponse(
        order_id=order.id,
        order_number=order.order_number,
        reference=order.reference,
        status=order.status,
        provider=payload.provider,
        subtotal_cents=order.subtotal_cents,
        shipping_cents=order.shipping_cents,
        tax_cents=order.tax_cents,
        total_cents=order.total_cents,
        currency=order.currency,
        redirect_url=session.redirect_url,
    )

"""Payment provider webhooks.

Every delivery is acknowledged with 200 once it has been looked at, whatever
the outcome, so providers stop redelivering. The exceptions are a failed
signature (401) and an unavailable database or Mercado Pago API (503), where
a redelivery is wanted.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
import structlog

from app.api.deps import get_db
from app.core.errors import PersistenceError, ProviderCommunicationError, WebhookSignatureError
from app.core.logging import bind_request_context
from app.kafka import producer
from app.payments import signatures
from app.payments.gateways import get_gateway
from app.payments.normalizers import (
    CLIP, CONEKTA, MERCADO_PAGO, STRIPE, extract_mercadopago_payment_id, get_normalizer,
)
from app.payments.reconciliation import Applied, Ignored, ReconciliationEngine, reconcile
from app.services.orders import OrderStore

router = APIRouter()
logger = structlog.get_logger(__name__)


def _process(provider: str, raw: Any, db: Session) -> dict:
    bind_request_context(provider=provider)
    try:
        outcome = reconcile(get_normalizer(provider), raw, ReconciliationEngine(db))
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Temporarily unavailable")
    except Exception:
        logger.exception("Webhook processing failed", provider=provider)
        return {"received": True, "outcome": {"result": "error"}}

    if isinstance(outcome, Applied) and outcome.changed and not outcome.duplicate:
        try:
            order = OrderStore(db).get(outcome.order_id)
        except PersistenceError:
            order = None
        if order is not None:
            producer.publish(
                "order.status_changed", order,
                old_status=outcome.old_status.value, new_status=outcome.new_status.value, provider=provider,
            )
    return {"received": True, "outcome": outcome.as_dict()}


def _verify(verify, *args) -> Any:
    try:
        return verify(*args)
    except WebhookSignatureError as e:
        logger.warning("Webhook rejected", reason=e.message)
        raise HTTPException(status_code=401, detail="Invalid signature")


@router.post("/v1/webhooks/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    raw = _verify(signatures.verify_stripe, body, request.headers.get("stripe-signature"))
    return await run_in_threadpool(_process, STRIPE, raw, db)


@router.post("/v1/webhooks/clip")
async def clip_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    raw = _verify(signatures.verify_clip, body, request.headers, request.query_params)
    return await run_in_threadpool(_process, CLIP, raw, db)


@router.post("/v1/webhooks/conekta")
async def conekta_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    raw = _verify(signatures.verify_conekta, body, request.headers, request.query_params)
    return await run_in_threadpool(_process, CONEKTA, raw, db)


def _mercadopago_topic(query, body: Any) -> str | None:
    topic = query.get("type") or query.get("topic")
    if not topic and isinstance(body, dict):
        topic = body.get("type") or body.get("topic")
    return topic


def _fetch_and_process(payment_id: str, db: Session) -> dict:
    try:
        payment = get_gateway(MERCADO_PAGO).fetch_payment(payment_id)
    except ProviderCommunicationError as e:
        # Without the payment resource nothing can be decided; let Mercado Pago retry.
        logger.error("Mercado Pago payment lookup failed", payment_id=payment_id, status=e.status, error=e.message)
        raise HTTPException(status_code=503, detail="Payment lookup failed")
    return _process(MERCADO_PAGO, payment, db)


@router.post("/v1/webhooks/mercadopago")
async def mercadopago_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    query = request.query_params
    signed_id = query.get("data.id") or query.get("id")
    raw = _verify(signatures.verify_mercadopago, body, request.headers, signed_id)

    topic = _mercadopago_topic(query, raw)
    if topic and topic != "payment":
        return {"received": True, "outcome": Ignored(f"topic {topic!r}").as_dict()}
    payment_id = extract_mercadopago_payment_id(query, raw)
    if not payment_id:
        return {"received": True, "outcome": Ignored("missing payment id").as_dict()}
    return await run_in_threadpool(_fetch_and_process, payment_id, db)


@router.get("/v1/webhooks/{provider}")
def webhook_check(provider: str):
    """Providers check the endpoint with GET when the webhook is registered."""
    if provider not in (STRIPE, CLIP, CONEKTA, MERCADO_PAGO):
        raise HTTPException(status_code=404, detail="Unknown provider")
    return {"status": "ok"}

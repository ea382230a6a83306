from datetime import datetime, time
from typing import Literal
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from app.api.deps import get_db, http_error
from app.api.schemas import (
    AdminOrderOut, CustomerPage, IssueOut, OrderPage, RevenueSeriesOut, StatsOut, StatusUpdateIn, StatusUpdateOut,
)
from app.core.auth import require_admin
from app.core.errors import ReconciliationConflict, StorefrontError
from app.db.models import OrderStatus
from app.db.session import now_utc
from app.kafka import producer
from app.payments.reconciliation import ReconciliationEngine
from app.services.customers import CustomerResolver
from app.services.orders import OrderStore

router = APIRouter(dependencies=[Depends(require_admin)])

@router.get("/v1/admin/orders", response_model=OrderPage)
def list_orders(
    status: OrderStatus | None = None,
    email: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    store = OrderStore(db)
    try:
        items = store.list_orders(status=status, customer_email=email, limit=limit, offset=offset)
        total = store.count(status=status)
    except StorefrontError as e:
        raise http_error(e)
    return {"items": items, "total": total, "limit": limit, "offset": offset}

@router.get("/v1/admin/orders/{order_id}", response_model=AdminOrderOut)
def get_order(order_id: int, db: Session = Depends(get_db)):
    try:
        order = OrderStore(db).get(order_id)
    except StorefrontError as e:
        raise http_error(e)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order

@router.post("/v1/admin/orders/{order_id}/status", response_model=StatusUpdateOut)
def update_status(order_id: int, payload: StatusUpdateIn, identity: dict = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        result = ReconciliationEngine(db).override_status(order_id, payload.status, actor=identity["sub"])
    except LookupError:
        raise HTTPException(status_code=404, detail="Order not found")
    except ReconciliationConflict as e:
        raise HTTPException(status_code=409, detail=e.message)
    except StorefrontError as e:
        raise http_error(e)
    if result.changed:
        order = OrderStore(db).get(order_id)
        producer.publish(
            "order.status_changed", order,
            old_status=result.old_status.value, new_status=result.new_status.value, actor=identity["sub"],
        )
    return StatusUpdateOut(
        order_id=order_id,
        old_status=result.old_status.value,
        new_status=result.new_status.value,
        changed=result.changed,
    )

@router.get("/v1/admin/customers", response_model=CustomerPage)
def list_customers(
    search: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    resolver = CustomerResolver(db)
    try:
        items = resolver.list_customers(search=search, limit=limit, offset=offset)
        total = resolver.count()
    except StorefrontError as e:
        raise http_error(e)
    return {"items": items, "total": total, "limit": limit, "offset": offset}

@router.get("/v1/admin/stats", response_model=StatsOut)
def stats(db: Session = Depends(get_db)):
    store = OrderStore(db)
    today = datetime.combine(now_utc().date(), time.min)
    try:
        by_status = {s.value: store.count(status=s) for s in OrderStatus}
        return StatsOut(
            orders_total=sum(by_status.values()),
            orders_by_status=by_status,
            revenue_cents=store.revenue(),
            revenue_today_cents=store.revenue(start=today),
            customers_total=CustomerResolver(db).count(),
            open_issues=ReconciliationEngine(db).count_issues(resolved=False),
        )
    except StorefrontError as e:
        raise http_error(e)

@router.get("/v1/admin/stats/revenue", response_model=RevenueSeriesOut)
def revenue_chart(period: Literal["7days", "months", "years"] = "7days", db: Session = Depends(get_db)):
    try:
        series = OrderStore(db).revenue_series(period)
    except StorefrontError as e:
        raise http_error(e)
    return RevenueSeriesOut(
        period=period,
        points=[{"label": label, "revenue_cents": cents} for label, cents in series],
    )

@router.get("/v1/admin/reconciliation/issues", response_model=list[IssueOut])
def list_issues(
    resolved: bool | None = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    try:
        return ReconciliationEngine(db).list_issues(resolved=resolved, limit=limit, offset=offset)
    except StorefrontError as e:
        raise http_error(e)

@router.post("/v1/admin/reconciliation/issues/{issue_id}/resolve", response_model=IssueOut)
def resolve_issue(issue_id: int, identity: dict = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        issue = ReconciliationEngine(db).resolve_issue(issue_id, actor=identity["sub"])
    except StorefrontError as e:
        raise http_error(e)
    if issue is None:
        raise HTTPException(status_code=404, detail="Issue not found")
    return issue

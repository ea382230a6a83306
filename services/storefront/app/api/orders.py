from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.api.deps import get_db, http_error
from app.api.schemas import CustomerOut, OrderOut, ProfileUpdateIn
from app.core.auth import get_current_identity
from app.core.errors import PersistenceError, StorefrontError
from app.services.customers import CustomerResolver
from app.services.orders import OrderStore

router = APIRouter()

@router.get("/v1/orders/{reference}", response_model=OrderOut)
def get_order(reference: str, db: Session = Depends(get_db)):
    """Status polling for the payment return page; the reference is unguessable."""
    try:
        order = OrderStore(db).get_by_reference(reference)
    except StorefrontError as e:
        raise http_error(e)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order

@router.get("/v1/account/orders", response_model=list[OrderOut])
def my_orders(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    identity: dict = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    try:
        return OrderStore(db).list_orders(customer_email=identity["sub"], limit=limit, offset=offset)
    except StorefrontError as e:
        raise http_error(e)

def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("Could not save customer profile") from e

@router.get("/v1/account/profile", response_model=CustomerOut)
def my_profile(identity: dict = Depends(get_current_identity), db: Session = Depends(get_db)):
    """The signed-in customer's profile; the first visit after signup creates it."""
    resolver = CustomerResolver(db)
    try:
        customer = resolver.get_by_email(identity["sub"])
        if customer is None:
            customer = resolver.resolve_or_create(identity["sub"])
            _commit(db)
    except StorefrontError as e:
        db.rollback()
        raise http_error(e)
    return customer

@router.patch("/v1/account/profile", response_model=CustomerOut)
def update_my_profile(
    payload: ProfileUpdateIn,
    identity: dict = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    resolver = CustomerResolver(db)
    try:
        customer = resolver.resolve_or_create(identity["sub"])
        resolver.update_profile(customer, **payload.model_dump(exclude_unset=True))
        _commit(db)
    except StorefrontError as e:
        db.rollback()
        raise http_error(e)
    return customer

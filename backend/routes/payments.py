# backend/routes/payments.py
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from database import get_db
from utils.tokenJWT import get_current_user
from utils.audit import write_log
from models.users import User
from models.payment import PaymentMethod
from schemas.payment import PaymentMethodCreate, PaymentMethodOut

router = APIRouter(prefix="/payment-methods", tags=["Payments"])


def _make_default(db: Session, user_id: int, method: PaymentMethod):
    # Exactly one default per user
    db.query(PaymentMethod).filter(
        PaymentMethod.user_id == user_id, PaymentMethod.id != method.id
    ).update({PaymentMethod.is_default: False}, synchronize_session=False)
    method.is_default = True


@router.get("", response_model=List[PaymentMethodOut])
def list_payment_methods(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return (
        db.query(PaymentMethod)
        .filter(PaymentMethod.user_id == current_user.id)
        .order_by(PaymentMethod.is_default.desc(), PaymentMethod.id.asc())
        .all()
    )


@router.post("", response_model=PaymentMethodOut, status_code=201)
def add_payment_method(
    payload: PaymentMethodCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    has_any = db.query(PaymentMethod.id).filter(PaymentMethod.user_id == current_user.id).first()
    method = PaymentMethod(
        user_id=current_user.id,
        provider_ref=payload.provider_ref,
        brand=payload.brand,
        last4=payload.last4,
        is_default=False,
    )
    db.add(method)
    db.flush()
    if payload.is_default or not has_any:
        _make_default(db, current_user.id, method)
    db.commit()
    db.refresh(method)

    write_log(db, user_id=current_user.id, action="PAYMENT_METHOD_ADD", resource="payment_methods",
              status="SUCCESS", ip=request.client.host, meta={"payment_method_id": method.id})
    return method


@router.put("/{method_id}/default", response_model=PaymentMethodOut)
def set_default_payment_method(
    method_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    method = db.query(PaymentMethod).filter(
        PaymentMethod.id == method_id, PaymentMethod.user_id == current_user.id
    ).first()
    if not method:
        raise HTTPException(status_code=404, detail="Payment method not found")
    _make_default(db, current_user.id, method)
    db.commit()
    db.refresh(method)
    return method

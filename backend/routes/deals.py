# backend/routes/deals.py
from datetime import date
from typing import List
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from utils.tokenJWT import get_current_user
from utils.deal_resolver import describe_deal, load_deal_products, resolve_active_deals
from utils.discount_engine import ResolvedDeal
from models.users import User
from models.store import Store
from models.deal import Deal
from models.cart import Cart
from schemas.product import DealOut, DealDetailOut, DealProductOut

router = APIRouter(prefix="/stores", tags=["Deals"])


def _ensure_store(db: Session, store_id: int):
    if not db.query(Store.id).filter(Store.id == store_id).first():
        raise HTTPException(status_code=404, detail="Store not found")


def _deal_out(deal: ResolvedDeal, row: Deal) -> dict:
    return {
        "code": deal.code,
        "description": deal.description,
        "deal_type": deal.deal_type.value,
        "discount": describe_deal(deal),
        "quantity_required": deal.quantity_required,
        "discount_amount": float(deal.per_application_discount) if deal.per_application_discount else None,
        "priority": deal.priority,
        "transaction_limit": deal.transaction_limit,
        "end_date": row.end_date,
        "expires": f"Ends {row.end_date.strftime('%b %d, %Y')}",
        "age_restricted": bool(row.age_restricted),
    }


def _deal_rows(db: Session, codes) -> dict:
    return {d.code: d for d in db.query(Deal).filter(Deal.code.in_(list(codes))).all()}


# Deals running at a store today
@router.get("/{store_id}/deals", response_model=List[DealOut])
def list_store_deals(
    store_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _ensure_store(db, store_id)
    deals = [d for d in resolve_active_deals(db, store_id, date.today()) if d.product_ids]
    rows = _deal_rows(db, [d.code for d in deals])
    deals.sort(key=lambda d: (-d.priority, d.code))
    return [DealOut(**_deal_out(d, rows[d.code])) for d in deals]


# One deal with its products and how close the user's cart is to triggering it
@router.get("/{store_id}/deals/{code}", response_model=DealDetailOut)
def get_store_deal(
    store_id: int,
    code: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _ensure_store(db, store_id)
    deal = next((d for d in resolve_active_deals(db, store_id, date.today()) if d.code == code), None)
    if deal is None:
        raise HTTPException(status_code=404, detail="Deal not found")
    row = _deal_rows(db, [deal.code])[deal.code]

    products = [DealProductOut(**{**p, "price": float(p["price"])}) for p in load_deal_products(db, store_id, deal)]

    cart = db.query(Cart).filter(
        Cart.user_id == current_user.id, Cart.status == "open", Cart.store_id == store_id
    ).first()
    cart_quantity = 0
    if cart:
        cart_quantity = sum(it.qty for it in cart.items if it.product_id in deal.product_ids)

    return DealDetailOut(
        **_deal_out(deal, row),
        products=products,
        cart_quantity=cart_quantity,
        progress=min(cart_quantity, deal.quantity_required),
        complete=cart_quantity >= deal.quantity_required,
    )

# backend/routes/orders.py
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Query
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from database import get_db
import logging
from utils.tokenJWT import get_current_user, can_manage_store, ensure_store_access
from utils.audit import write_log
from utils.payment_client import PaymentClient, get_payment_client
from utils.deal_resolver import resolve_active_deals
from utils.refunds import quote_refund
from utils.realtime import broadcaster
from utils.money import to_decimal
from utils.errors import (
    CartClosedError,
    InvalidTransitionError,
    OrderNotFoundError,
    OrderNotRecordedError,
    OrderPersistenceError,
    PaymentCaptureError,
    TransitionConflictError,
    errmsg,
)
from utils import order_lifecycle
from utils.order_lifecycle import ACTIVE_STATUSES, order_timeliness
from routes.cart import cart_lock, reload_open_cart
from models.users import User
from models.cart import Cart
from models.order import Order, OrderStatus
from models.payment import PaymentMethod
from schemas.order import (
    CheckoutPayload, OrderResponse, OrdersPage, OrderStatusPatch, OrderItemOut,
    RefundQuoteOut, TimelinessOut
)

router = APIRouter(prefix="/orders", tags=["Orders"])
logger = logging.getLogger(__name__)


# Retrieve the user's active open cart
def _cart_open(db: Session, user_id: int) -> Optional[Cart]:
    return db.query(Cart).filter(Cart.user_id == user_id, Cart.status == "open").first()


def _item_out(item: dict) -> OrderItemOut:
    unit_price = to_decimal(item["unit_price"])
    deal = item.get("applied_deal") or {}
    return OrderItemOut(
        product_id=item["product_id"],
        name=item.get("name", ""),
        quantity=item["quantity"],
        unit_price=float(unit_price),
        discount_amount=float(to_decimal(item.get("discount_amount"))),
        line_total=float(unit_price * item["quantity"]),
        deal_code=deal.get("code"),
    )


# Map Order model to OrderResponse schema
def _order_to_out(order: Order, with_timeliness: bool = False) -> OrderResponse:
    timeliness = None
    if with_timeliness:
        t = order_timeliness(order)
        timeliness = TimelinessOut(level=t.level, label=t.label, minutes=t.minutes)
    return OrderResponse(
        id=order.id,
        user_id=order.user_id,
        store_id=order.store_id,
        status=OrderStatus(order.status).value,
        version=order.version,
        subtotal=float(order.subtotal),
        discount=float(order.discount),
        tax=float(order.tax),
        total=float(order.total),
        pickup_time=order.pickup_time,
        special_instructions=order.special_instructions,
        payment_ref=order.payment_ref,
        created_at=order.created_at,
        items=[_item_out(it) for it in order.items or []],
        timeliness=timeliness,
    )


def order_to_record(order: Order) -> dict:
    """Full order state as pushed to realtime subscribers."""
    return _order_to_out(order).model_dump(mode="json")


def _page(query, page: int, page_size: int, with_timeliness: bool = False) -> dict:
    total = query.count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()
    items = [_order_to_out(o, with_timeliness) for o in rows]
    return {"items": items, "total": total, "page": page, "page_size": page_size}


def _payment_method(db: Session, user_id: int, payment_method_id: Optional[int]) -> PaymentMethod:
    q = db.query(PaymentMethod).filter(PaymentMethod.user_id == user_id)
    if payment_method_id is not None:
        method = q.filter(PaymentMethod.id == payment_method_id).first()
    else:
        method = q.filter(PaymentMethod.is_default.is_(True)).first()
    if not method:
        raise HTTPException(status_code=400, detail="No payment method on file")
    return method


def _checkout_cart(db: Session, user_id: int, payment_method_id: Optional[int]):
    cart = _cart_open(db, user_id)
    if not cart or not cart.items:
        raise HTTPException(status_code=400, detail=errmsg.CART_EMPTY)
    if cart.store_id is None:
        raise HTTPException(status_code=400, detail=errmsg.CART_NO_STORE)
    method = _payment_method(db, user_id, payment_method_id)
    return cart, method.id, method.provider_ref


def _reload_for_checkout(db: Session, cart: Cart):
    try:
        aggregate = reload_open_cart(db, cart)
    except CartClosedError:
        raise HTTPException(status_code=400, detail=errmsg.CART_EMPTY)
    if not aggregate.lines:
        raise HTTPException(status_code=400, detail=errmsg.CART_EMPTY)
    return aggregate, cart.store_id


# Charge the cart and record it as a placed order
@router.post("/checkout", response_model=OrderResponse, status_code=201)
async def checkout(
    payload: CheckoutPayload,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    payments: PaymentClient = Depends(get_payment_client),
):
    cart, method_id, method_ref = await run_in_threadpool(
        _checkout_cart, db, current_user.id, payload.payment_method_id
    )
    cart_id = cart.id

    async with cart_lock(cart_id):
        aggregate, store_id = await run_in_threadpool(_reload_for_checkout, db, cart)

        # Charge what the deals say today, not what was cached on the lines
        await aggregate.reprice()
        totals = aggregate.totals()

        try:
            payment = await payments.capture(
                totals.total,
                method_ref,
                customer_id=current_user.id,
                description=f"Pickup order at store {store_id}",
                metadata={"cart_id": cart_id, "items": totals.item_count},
            )
        except PaymentCaptureError as e:
            await run_in_threadpool(
                write_log, db, user_id=current_user.id, action="CHECKOUT", resource="orders", status="FAIL",
                ip=request.client.host, meta={"cart_id": cart_id, "reason": str(e)}
            )
            raise HTTPException(status_code=402, detail=str(e))

        try:
            order = await run_in_threadpool(
                order_lifecycle.place_order,
                db,
                user_id=current_user.id,
                store_id=store_id,
                lines=aggregate.lines,
                totals=totals,
                payment_ref=payment.payment_id,
                payment_method_id=method_id,
                pickup_time=payload.pickup_time,
                special_instructions=payload.special_instructions,
                cart=cart,
            )
        except OrderNotRecordedError as e:
            await run_in_threadpool(
                write_log, db, user_id=current_user.id, action="CHECKOUT", resource="orders", status="FAIL",
                ip=request.client.host,
                meta={"cart_id": cart_id, "payment_ref": e.payment_ref, "reason": errmsg.ORDER_NOT_RECORDED}
            )
            raise HTTPException(
                status_code=500,
                detail={"message": errmsg.ORDER_NOT_RECORDED, "payment_ref": e.payment_ref},
            )
        out = await run_in_threadpool(_order_to_out, order)

    broadcaster.publish(out.model_dump(mode="json"))
    await run_in_threadpool(
        write_log, db, user_id=current_user.id, action="CHECKOUT", resource="orders", status="SUCCESS",
        ip=request.client.host,
        meta={"order_id": out.id, "payment_ref": out.payment_ref, "total": str(totals.total)}
    )
    return out


# List user orders, newest first
@router.get("", response_model=OrdersPage)
def list_my_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    q = db.query(Order).filter(Order.user_id == current_user.id).order_by(Order.created_at.desc(), Order.id.desc())
    return _page(q, page, page_size)


# Orders the user is still waiting on
@router.get("/active", response_model=List[OrderResponse])
def list_my_active_orders(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    rows = (
        db.query(Order)
        .filter(Order.user_id == current_user.id, Order.status.in_(ACTIVE_STATUSES))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    return [_order_to_out(o) for o in rows]


# Staff queue: oldest first, with urgency markers
@router.get("/store/{store_id}/active", response_model=List[OrderResponse])
def list_store_active_orders(
    store_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    ensure_store_access(current_user, store_id)
    rows = (
        db.query(Order)
        .filter(Order.store_id == store_id, Order.status.in_(ACTIVE_STATUSES))
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )
    return [_order_to_out(o, with_timeliness=True) for o in rows]


@router.get("/store/{store_id}/completed", response_model=OrdersPage)
def list_store_completed_orders(
    store_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    ensure_store_access(current_user, store_id)
    q = (
        db.query(Order)
        .filter(Order.store_id == store_id, Order.status == OrderStatus.COMPLETED)
        .order_by(Order.updated_at.desc(), Order.id.desc())
    )
    return _page(q, page, page_size)


# Get details of a specific order
@router.get("/{order_id}", response_model=OrderResponse)
def get_order_detail(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    o = db.query(Order).filter(Order.id == order_id).first()
    if not o or (o.user_id != current_user.id and not can_manage_store(current_user, o.store_id)):
        raise HTTPException(status_code=404, detail="Order not found or forbidden")
    return _order_to_out(o)


# Move an order one step forward (store staff only)
@router.patch("/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    order_id: int,
    payload: OrderStatusPatch,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail=errmsg.ORDER_NOT_FOUND)
    ensure_store_access(current_user, order.store_id)

    old_status = OrderStatus(order.status).value
    try:
        order = order_lifecycle.transition_order(db, order_id, payload.status)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail=errmsg.ORDER_NOT_FOUND)
    except (InvalidTransitionError, TransitionConflictError) as e:
        write_log(db, user_id=current_user.id, action="ORDER_STATUS_CHANGE", resource="orders", status="FAIL",
                  ip=request.client.host,
                  meta={"order_id": order_id, "old": old_status, "new": payload.status, "reason": str(e)})
        detail = str(e) if isinstance(e, InvalidTransitionError) else errmsg.STATUS_CHANGED
        raise HTTPException(status_code=409, detail=detail)
    except OrderPersistenceError:
        raise HTTPException(status_code=503, detail=errmsg.ORDER_UPDATE_FAILED)

    broadcaster.publish(order_to_record(order))
    write_log(db, user_id=current_user.id, action="ORDER_STATUS_CHANGE", resource="orders", status="SUCCESS",
        ip=request.client.host, meta={"order_id": order.id, "old": old_status, "new": payload.status})
    return _order_to_out(order, with_timeliness=True)


# Preview the refund for removing products from a paid order
@router.get("/{order_id}/refund-quote", response_model=RefundQuoteOut)
def refund_quote(
    order_id: int,
    product_id: List[int] = Query(..., description="Products to remove from the order"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail=errmsg.ORDER_NOT_FOUND)
    ensure_store_access(current_user, order.store_id)

    # Deals as they stood when the order was placed
    placed_on = order.created_at.date() if order.created_at else None
    deals = resolve_active_deals(db, order.store_id, placed_on)
    tax_rate = to_decimal(order.store.tax_rate) if order.store else None
    quote = quote_refund(order.items or [], order.total, product_id, deals, tax_rate)

    remaining = []
    for line in quote.remaining_lines:
        remaining.append(OrderItemOut(
            product_id=line.product_id,
            name=line.name,
            quantity=line.quantity,
            unit_price=float(line.unit_price),
            discount_amount=float(line.discount_amount),
            line_total=float(line.line_subtotal),
            deal_code=line.applied_deal.code if line.applied_deal else None,
        ))
    return RefundQuoteOut(
        order_id=order.id,
        full=quote.full,
        refund_amount=float(quote.refund_amount),
        new_subtotal=float(quote.new_subtotal),
        new_discount=float(quote.new_discount),
        new_tax=float(quote.new_tax),
        new_total=float(quote.new_total),
        remaining_items=remaining,
    )

# backend/utils/order_lifecycle.py
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.cart import Cart
from models.order import ASAP, Order, OrderStatus
from utils.cart_aggregate import CartTotals
from utils.discount_engine import CartLine
from utils.errors import (
    InvalidTransitionError,
    OrderNotFoundError,
    OrderNotRecordedError,
    OrderPersistenceError,
    TransitionConflictError,
)

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (OrderStatus.PLACED, OrderStatus.PREPARING, OrderStatus.READY)

# Operator-driven forward steps; placed is only ever created by checkout
NEXT_STATUS = {
    OrderStatus.PLACED: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.COMPLETED,
}


def is_active(status) -> bool:
    return OrderStatus(status) in ACTIVE_STATUSES


def can_transition(current, target) -> bool:
    try:
        return NEXT_STATUS.get(OrderStatus(current)) == OrderStatus(target)
    except ValueError:
        return False


def snapshot_lines(lines: Sequence[CartLine]) -> list:
    """Freeze priced cart lines into the JSON stored on the order."""
    items = []
    for line in lines:
        items.append({
            "product_id": line.product_id,
            "name": line.name,
            "quantity": line.quantity,
            "unit_price": str(line.unit_price),
            "discount_amount": str(line.discount_amount),
            "applied_deal": line.applied_deal.to_dict() if line.applied_deal else None,
        })
    return items


def place_order(
    db: Session,
    *,
    user_id: int,
    store_id: int,
    lines: Sequence[CartLine],
    totals: CartTotals,
    payment_ref: str,
    payment_method_id: Optional[int] = None,
    pickup_time: str = ASAP,
    special_instructions: Optional[str] = None,
    cart: Optional[Cart] = None,
) -> Order:
    """Record a paid order. Only called after the payment was captured.

    The cart it came from is closed in the same transaction, so either both
    the order exists and the cart is ordered, or neither changed.
    """
    order = Order(
        user_id=user_id,
        store_id=store_id,
        status=OrderStatus.PLACED,
        version=1,
        payment_method_id=payment_method_id,
        payment_ref=payment_ref,
        items=snapshot_lines(lines),
        subtotal=totals.subtotal,
        discount=totals.discount_total,
        tax=totals.tax,
        total=totals.total,
        pickup_time=pickup_time or ASAP,
        special_instructions=special_instructions,
    )
    try:
        db.add(order)
        if cart is not None:
            cart.status = "ordered"
            cart.version = (cart.version or 0) + 1
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.critical("Order insert failed after payment %s was captured: %s", payment_ref, e)
        raise OrderNotRecordedError(payment_ref, cause=e) from e
    db.refresh(order)
    return order


def transition_order(db: Session, order_id: int, target) -> Order:
    """Move an order one step forward.

    The update is a single compare-and-set on (id, status, version), so a
    concurrent writer makes this call fail instead of silently skipping a
    step. On any failure the stored row is left as it was.
    """
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise OrderNotFoundError(order_id)

    current = OrderStatus(order.status)
    try:
        target = OrderStatus(target)
    except ValueError:
        raise InvalidTransitionError(current.value, target)
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)

    expected_version = order.version
    try:
        result = db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == current,
                Order.version == expected_version,
            )
            .values(status=target, version=expected_version + 1, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise TransitionConflictError(order_id)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to persist status %s for order %s: %s", target.value, order_id, e)
        raise OrderPersistenceError(order_id) from e

    db.refresh(order)
    logger.info("Order %s moved %s -> %s", order_id, current.value, target.value)
    return order


@dataclass(frozen=True)
class Timeliness:
    level: str  # "ok", "warning", "late" or "done"
    label: str
    minutes: int


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive timestamps that are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def order_timeliness(order: Order, now: Optional[datetime] = None) -> Timeliness:
    """Classify an order for the staff dashboard.

    ASAP orders are judged by time since placement and current status,
    scheduled orders by time left until pickup.
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    status = OrderStatus(order.status)
    created_at = _as_utc(order.created_at or now)
    seconds = int((now - created_at).total_seconds())
    minutes = seconds // 60

    if status == OrderStatus.COMPLETED:
        return Timeliness("done", "Done", minutes)

    if (order.pickup_time or ASAP) == ASAP:
        if status == OrderStatus.PLACED:
            if seconds < 30:
                return Timeliness("ok", "New Order", minutes)
            if seconds < 60:
                return Timeliness("warning", "Needs Attention", minutes)
            return Timeliness("late", "URGENT - Acknowledge!", minutes)
        if status == OrderStatus.PREPARING:
            if minutes < 12:
                return Timeliness("ok", "On Track", minutes)
            if minutes < 15:
                return Timeliness("warning", "Almost Time", minutes)
            return Timeliness("late", "ORDER LATE!", minutes)
        if minutes < 20:
            return Timeliness("ok", "Ready", minutes)
        if minutes < 30:
            return Timeliness("warning", "Customer Late", minutes)
        return Timeliness("late", "Call Customer", minutes)

    try:
        pickup_at = _as_utc(datetime.fromisoformat(order.pickup_time))
    except ValueError:
        logger.warning("Order %s has unparseable pickup time %r", order.id, order.pickup_time)
        return Timeliness("warning", "Pickup Time Unknown", minutes)

    until_pickup = int((pickup_at - now).total_seconds() // 60)
    if until_pickup > 15:
        return Timeliness("ok", "On Time", -until_pickup)
    if until_pickup > 5:
        return Timeliness("warning", "Soon", -until_pickup)
    if until_pickup > 0:
        return Timeliness("late", "Due Now", -until_pickup)
    return Timeliness("late", "LATE", -until_pickup)

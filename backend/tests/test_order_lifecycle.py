"""Tests for order placement, status transitions and dashboard timeliness."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from models.cart import Cart
from models.order import Order, OrderStatus
from utils.cart_aggregate import compute_totals
from utils.discount_engine import AppliedDeal, CartLine
from utils.errors import (
    InvalidTransitionError,
    OrderNotFoundError,
    OrderNotRecordedError,
    TransitionConflictError,
)
from utils.order_lifecycle import (
    can_transition,
    is_active,
    order_timeliness,
    place_order,
    transition_order,
)

from conftest import make_store, make_user

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)

LINES = [
    CartLine(1, "Coffee", Decimal("2.00"), 4, discount_amount=Decimal("2.00"),
             applied_deal=AppliedDeal("COFFEE2", "2 coffees", "flat", 0, 2, 4)),
]


def _place(db, **kwargs):
    store = make_store(db)
    user = make_user(db)
    return place_order(
        db,
        user_id=user.id,
        store_id=store.id,
        lines=LINES,
        totals=compute_totals(LINES, Decimal("0.07")),
        payment_ref="pay_123",
        **kwargs,
    )


def _open_cart(db, user, store):
    cart = Cart(user_id=user.id, store_id=store.id, status="open", version=3)
    db.add(cart)
    db.commit()
    return cart


def _status(db, order_id):
    db.expire_all()
    return db.query(Order).filter(Order.id == order_id).one().status


class TestPlaceOrder:
    def test_new_order_starts_placed_with_snapshot(self, db):
        order = _place(db)

        assert order.status == OrderStatus.PLACED
        assert order.version == 1
        assert order.total == Decimal("6.42")
        assert order.payment_ref == "pay_123"
        assert order.items[0]["applied_deal"]["code"] == "COFFEE2"
        assert order.items[0]["unit_price"] == "2.00"

    def test_insert_failure_after_payment_is_reported_distinctly(self, db, monkeypatch):
        def fail_commit():
            raise OperationalError("INSERT INTO orders", {}, Exception("disk full"))

        store = make_store(db)
        user = make_user(db)
        monkeypatch.setattr(db, "commit", fail_commit)

        with pytest.raises(OrderNotRecordedError) as exc:
            place_order(db, user_id=user.id, store_id=store.id, lines=LINES,
                        totals=compute_totals(LINES, Decimal("0.07")), payment_ref="pay_999")

        assert exc.value.payment_ref == "pay_999"
        assert "not recorded" in str(exc.value)
        monkeypatch.undo()
        assert db.query(Order).count() == 0

    def test_cart_is_closed_in_the_same_commit(self, db):
        store = make_store(db)
        user = make_user(db)
        cart = _open_cart(db, user, store)

        place_order(db, user_id=user.id, store_id=store.id, lines=LINES,
                    totals=compute_totals(LINES, Decimal("0.07")), payment_ref="pay_1", cart=cart)

        db.expire_all()
        stored = db.query(Cart).one()
        assert stored.status == "ordered"
        assert stored.version == 4

    def test_failed_insert_leaves_cart_open(self, db, monkeypatch):
        def fail_commit():
            raise OperationalError("INSERT INTO orders", {}, Exception("disk full"))

        store = make_store(db)
        user = make_user(db)
        cart = _open_cart(db, user, store)
        monkeypatch.setattr(db, "commit", fail_commit)

        with pytest.raises(OrderNotRecordedError):
            place_order(db, user_id=user.id, store_id=store.id, lines=LINES,
                        totals=compute_totals(LINES, Decimal("0.07")), payment_ref="pay_2", cart=cart)

        monkeypatch.undo()
        db.expire_all()
        stored = db.query(Cart).one()
        assert stored.status == "open"
        assert stored.version == 3
        assert db.query(Order).count() == 0


class TestTransitions:
    def test_forward_steps_are_accepted(self, db):
        order = _place(db)

        for target in ("preparing", "ready", "completed"):
            order = transition_order(db, order.id, target)
            assert order.status == OrderStatus(target)

        assert order.version == 4

    @pytest.mark.parametrize("target", ["placed", "ready", "completed", "cancelled"])
    def test_illegal_targets_are_rejected_without_mutation(self, db, target):
        order = _place(db)

        with pytest.raises(InvalidTransitionError):
            transition_order(db, order.id, target)

        assert _status(db, order.id) == OrderStatus.PLACED

    def test_completed_is_terminal(self, db):
        order = _place(db)
        for target in ("preparing", "ready", "completed"):
            transition_order(db, order.id, target)

        with pytest.raises(InvalidTransitionError):
            transition_order(db, order.id, "preparing")

    def test_missing_order(self, db):
        with pytest.raises(OrderNotFoundError):
            transition_order(db, 404, "preparing")

    def test_concurrent_writer_causes_conflict(self, db):
        order = _place(db)
        order_id = order.id
        real_query = db.query

        class StaleQuery:
            """Hands back the order as read, then lets another writer move it on."""

            def __init__(self, *args):
                self._q = real_query(*args)

            def filter(self, *args):
                self._q = self._q.filter(*args)
                return self

            def first(self):
                row = self._q.first()
                db.execute(
                    update(Order).where(Order.id == order_id).values(version=Order.version + 1)
                    .execution_options(synchronize_session=False)
                )
                return row

        db.query = StaleQuery
        try:
            with pytest.raises(TransitionConflictError):
                transition_order(db, order_id, "preparing")
        finally:
            del db.query

        assert _status(db, order_id) == OrderStatus.PLACED

    def test_helpers(self):
        assert can_transition("placed", "preparing")
        assert not can_transition("preparing", "placed")
        assert not can_transition("ready", "bogus")
        assert is_active("ready")
        assert not is_active("completed")


class TestTimeliness:
    def _order(self, status, age, pickup_time="asap"):
        return Order(id=1, status=status, pickup_time=pickup_time, created_at=NOW - age)

    @pytest.mark.parametrize("status,age,label", [
        ("placed", timedelta(seconds=10), "New Order"),
        ("placed", timedelta(seconds=45), "Needs Attention"),
        ("placed", timedelta(minutes=2), "URGENT - Acknowledge!"),
        ("preparing", timedelta(minutes=5), "On Track"),
        ("preparing", timedelta(minutes=13), "Almost Time"),
        ("preparing", timedelta(minutes=16), "ORDER LATE!"),
        ("ready", timedelta(minutes=10), "Ready"),
        ("ready", timedelta(minutes=25), "Customer Late"),
        ("ready", timedelta(minutes=40), "Call Customer"),
        ("completed", timedelta(minutes=90), "Done"),
    ])
    def test_asap_orders(self, status, age, label):
        assert order_timeliness(self._order(status, age), now=NOW).label == label

    @pytest.mark.parametrize("until,label", [(30, "On Time"), (10, "Soon"), (3, "Due Now"), (-5, "LATE")])
    def test_scheduled_orders(self, until, label):
        pickup = (NOW + timedelta(minutes=until)).isoformat()
        result = order_timeliness(self._order("preparing", timedelta(minutes=1), pickup), now=NOW)

        assert result.label == label

    def test_naive_timestamps_are_treated_as_utc(self):
        order = Order(id=1, status="placed", pickup_time="asap", created_at=(NOW - timedelta(seconds=5)).replace(tzinfo=None))

        assert order_timeliness(order, now=NOW).label == "New Order"

    def test_unparseable_pickup_time(self):
        result = order_timeliness(self._order("placed", timedelta(minutes=1), "tomorrow-ish"), now=NOW)

        assert result.label == "Pickup Time Unknown"

# backend/routes/realtime.py
import asyncio
import logging
from typing import List, Optional
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from database import SessionLocal
from utils.tokenJWT import user_from_token, can_manage_store
from utils.order_lifecycle import ACTIVE_STATUSES
from utils.realtime import Subscription, broadcaster
from utils.errors import ResyncRequired
from routes.orders import order_to_record
from models.order import Order

router = APIRouter(tags=["Realtime"])
logger = logging.getLogger(__name__)

# Server wants the client to drop its state and fetch a fresh snapshot
RESYNC_CLOSE_CODE = 1013


def _snapshot(db: Session, user, order_id: Optional[int], store_id: Optional[int]) -> Optional[List[dict]]:
    """Current state for the requested scope, None when the user may not watch it."""
    if order_id is not None:
        order = db.query(Order).filter(Order.id == order_id).first()
        if not order or (order.user_id != user.id and not can_manage_store(user, order.store_id)):
            return None
        return [order_to_record(order)]

    q = db.query(Order).filter(Order.status.in_(ACTIVE_STATUSES))
    if store_id is not None:
        if not can_manage_store(user, store_id):
            return None
        q = q.filter(Order.store_id == store_id)
    else:
        q = q.filter(Order.user_id == user.id)
    return [order_to_record(o) for o in q.order_by(Order.created_at.asc(), Order.id.asc()).all()]


# Sockets live for hours, so each database read gets its own short session
def _authenticate(token: Optional[str]):
    if not token:
        return None
    with SessionLocal() as db:
        return user_from_token(db, token)


def _load_snapshot(user, order_id: Optional[int], store_id: Optional[int]) -> Optional[List[dict]]:
    with SessionLocal() as db:
        return _snapshot(db, user, order_id, store_id)


async def _drain(websocket: WebSocket):
    # Clients only listen; inbound frames are read to notice disconnects
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Realtime client disconnected")


async def _pump(websocket: WebSocket, sub: Subscription):
    try:
        while True:
            record = await sub.get()
            await websocket.send_json({"type": "order", "order": record})
    except ResyncRequired:
        await websocket.close(code=RESYNC_CLOSE_CODE)


# Live order updates: one order, one store (staff) or the caller's own orders
@router.websocket("/ws/orders")
async def orders_stream(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    order_id: Optional[int] = Query(None),
    store_id: Optional[int] = Query(None),
):
    user = await run_in_threadpool(_authenticate, token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    # Subscribe before reading the snapshot so no write falls in between
    await websocket.accept()
    if order_id is not None:
        sub = broadcaster.subscribe(order_id=order_id)
    elif store_id is not None:
        sub = broadcaster.subscribe(store_id=store_id)
    else:
        sub = broadcaster.subscribe(user_id=user.id)

    try:
        orders = await run_in_threadpool(_load_snapshot, user, order_id, store_id)
        if orders is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        await websocket.send_json({"type": "snapshot", "orders": orders})

        tasks = {asyncio.create_task(_drain(websocket)), asyncio.create_task(_pump(websocket, sub))}
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            task.result()
    finally:
        broadcaster.unsubscribe(sub)

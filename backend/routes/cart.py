# backend/routes/cart.py
import asyncio
import logging
import weakref
from typing import Awaitable, Callable, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import update
from sqlalchemy.orm import Session

from database import get_db
from utils.tokenJWT import get_current_user
from utils.audit import write_log
from utils.cart_aggregate import CartAggregate, ProductSnapshot, StoreContext
from utils.deal_resolver import resolve_active_deals
from utils.discount_engine import AppliedDeal, CartLine
from utils.errors import CartClosedError, CartConflictError, InvalidCartItemError, errmsg
from utils.money import to_decimal
from models.users import User
from models.store import Store
from models.product import Product, StoreProduct
from models.cart import Cart, CartItem
from schemas.cart import AppliedDealOut, CartAddItem, CartQuantityChange, CartSelectStore, CartOut, CartItemOut

router = APIRouter(prefix="/cart", tags=["Cart"])
logger = logging.getLogger(__name__)

# One in-flight mutation per cart; concurrent requests queue up here.
# Entries go away once no request holds or waits on the lock.
_cart_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


def cart_lock(cart_id: int) -> asyncio.Lock:
    lock = _cart_locks.get(cart_id)
    if lock is None:
        lock = asyncio.Lock()
        _cart_locks[cart_id] = lock
    return lock


def _get_open_cart(db: Session, user_id: int) -> Cart:
    # Retrieve active cart or create a new one
    cart = db.query(Cart).filter(Cart.user_id == user_id, Cart.status == "open").first()
    if not cart:
        cart = Cart(user_id=user_id, status="open", version=0)
        db.add(cart)
        db.commit()
        db.refresh(cart)
    return cart


def store_context(store: Optional[Store]) -> Optional[StoreContext]:
    if store is None:
        return None
    return StoreContext(id=store.id, tax_rate=to_decimal(store.tax_rate))


def deal_loader(db: Session) -> Callable[..., Awaitable]:
    async def _load(store_id, as_of):
        return await run_in_threadpool(resolve_active_deals, db, store_id, as_of)
    return _load


def load_aggregate(db: Session, cart: Cart) -> CartAggregate:
    lines = [
        CartLine(
            product_id=it.product_id,
            name=it.name,
            unit_price=to_decimal(it.unit_price),
            quantity=it.qty,
            discount_amount=to_decimal(it.discount_amount),
            applied_deal=AppliedDeal.from_dict(it.applied_deal),
        )
        for it in cart.items
    ]
    return CartAggregate(
        lines=lines,
        store=store_context(cart.store),
        deal_loader=deal_loader(db),
        version=cart.version or 0,
    )


def save_aggregate(db: Session, cart: Cart, aggregate: CartAggregate, expected_version: int):
    """Persist lines and discounts together, only if nobody saved a newer version first."""
    result = db.execute(
        update(Cart)
        .where(Cart.id == cart.id, Cart.status == "open", Cart.version == expected_version)
        .values(
            version=aggregate.version,
            store_id=aggregate.store.id if aggregate.store else None,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise CartConflictError(cart.id)

    # Old lines must be gone before re-inserting under the (cart, product) key
    cart.items.clear()
    db.flush()
    cart.items.extend([
        CartItem(
            product_id=line.product_id,
            position=idx,
            name=line.name,
            qty=line.quantity,
            unit_price=line.unit_price,
            discount_amount=line.discount_amount,
            applied_deal=line.applied_deal.to_dict() if line.applied_deal else None,
        )
        for idx, line in enumerate(aggregate.lines)
    ])
    db.commit()


def cart_to_out(aggregate: CartAggregate) -> CartOut:
    totals = aggregate.totals()
    items_out = []
    for line in aggregate.lines:
        deal = line.applied_deal
        items_out.append(CartItemOut(
            product_id=line.product_id,
            name=line.name,
            qty=line.quantity,
            unit_price=float(line.unit_price),
            line_total=float(line.line_subtotal),
            discount_amount=float(line.discount_amount),
            applied_deal=AppliedDealOut(
                code=deal.code,
                description=deal.description,
                deal_type=deal.deal_type,
                times_applied=deal.times_applied,
                units_in_deal=deal.units_in_deal,
            ) if deal else None,
        ))
    return CartOut(
        store_id=aggregate.store.id if aggregate.store else None,
        version=aggregate.version,
        items=items_out,
        item_count=totals.item_count,
        subtotal=float(totals.subtotal),
        discount_total=float(totals.discount_total),
        tax=float(totals.tax),
        total=float(totals.total),
    )


def reload_open_cart(db: Session, cart: Cart) -> CartAggregate:
    """Fresh aggregate for a cart the caller holds the lock for."""
    db.refresh(cart)
    # A checkout may have closed the cart while this request waited
    if cart.status != "open":
        raise CartClosedError(cart.id)
    return load_aggregate(db, cart)


async def _audit(db: Session, **kwargs):
    await run_in_threadpool(write_log, db, **kwargs)


async def _mutate(
    db: Session,
    user: User,
    request: Request,
    action: str,
    mutation: Callable[[CartAggregate], Awaitable[None]],
    meta: dict,
) -> CartOut:
    cart = await run_in_threadpool(_get_open_cart, db, user.id)
    async with cart_lock(cart.id):
        try:
            aggregate = await run_in_threadpool(reload_open_cart, db, cart)
        except CartClosedError:
            logger.warning("Cart %s was checked out before %s ran, rejecting", cart.id, action)
            await _audit(db, user_id=user.id, action=action, resource="cart", status="FAIL",
                         ip=request.client.host, meta={**meta, "reason": errmsg.CART_CLOSED})
            raise HTTPException(status_code=409, detail=errmsg.CART_CLOSED)
        expected_version = aggregate.version
        try:
            await mutation(aggregate)
        except InvalidCartItemError as e:
            await _audit(db, user_id=user.id, action=action, resource="cart", status="FAIL",
                         ip=request.client.host, meta={**meta, "reason": str(e)})
            raise HTTPException(status_code=400, detail=str(e))
        try:
            await run_in_threadpool(save_aggregate, db, cart, aggregate, expected_version)
        except CartConflictError:
            logger.warning("Cart %s changed underneath %s, rejecting", cart.id, action)
            raise HTTPException(status_code=409, detail=errmsg.CART_CHANGED)

    out = cart_to_out(aggregate)
    await _audit(
        db,
        user_id=user.id,
        action=action,
        resource="cart",
        status="SUCCESS",
        ip=request.client.host,
        meta={**meta, "cart_items": len(out.items), "discount": out.discount_total, "total": out.total},
    )
    return out


def _current_cart(db: Session, user_id: int) -> Tuple[CartAggregate, int]:
    cart = _get_open_cart(db, user_id)
    return load_aggregate(db, cart), cart.version or 0


@router.get("", response_model=CartOut)
async def get_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    aggregate, stored_version = await run_in_threadpool(_current_cart, db, current_user.id)
    # Deals may have started or ended since the last mutation
    await aggregate.reprice()
    out = cart_to_out(aggregate)
    # Nothing was saved, report the stored version
    out.version = stored_version
    return out


def _store_prices(db: Session, store_id: int):
    store = db.query(Store).filter(Store.id == store_id).first()
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")

    prices = {
        sp.product_id: to_decimal(sp.price)
        for sp in db.query(StoreProduct).filter(
            StoreProduct.store_id == store.id, StoreProduct.available.is_(True)
        )
    }
    return store_context(store), prices


@router.put("/store", response_model=CartOut)
async def select_store(
    payload: CartSelectStore,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    context, prices = await run_in_threadpool(_store_prices, db, payload.store_id)

    async def _select(aggregate: CartAggregate):
        await aggregate.select_store(context, prices)

    return await _mutate(db, current_user, request, "CART_STORE", _select, {"store_id": context.id})


def _product_snapshot(db: Session, user_id: int, payload: CartAddItem) -> ProductSnapshot:
    cart = _get_open_cart(db, user_id)
    store_id = cart.store_id or payload.store_id
    if store_id is None:
        raise HTTPException(status_code=400, detail="Select a store first")

    row = (
        db.query(Product, StoreProduct)
        .join(StoreProduct, StoreProduct.product_id == Product.id)
        .filter(Product.id == payload.product_id, StoreProduct.store_id == store_id)
        .first()
    )
    if not row:
        raise HTTPException(status_code=404, detail="Product not found")
    product, store_product = row
    if not store_product.available:
        raise HTTPException(status_code=400, detail="Product unavailable at this store")

    return ProductSnapshot(id=product.id, name=product.name, price=to_decimal(store_product.price))


@router.post("/add", response_model=CartOut)
async def add_to_cart(
    payload: CartAddItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    snapshot = await run_in_threadpool(_product_snapshot, db, current_user.id, payload)

    async def _add(aggregate: CartAggregate):
        await aggregate.add_item(snapshot)

    return await _mutate(db, current_user, request, "CART_ADD", _add, {"product_id": snapshot.id})


@router.patch("/items/{product_id}", response_model=CartOut)
async def change_cart_quantity(
    product_id: int,
    payload: CartQuantityChange,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    async def _change(aggregate: CartAggregate):
        if aggregate.find(product_id) is None:
            raise HTTPException(status_code=404, detail="Cart item not found")
        await aggregate.change_quantity(product_id, payload.delta)

    return await _mutate(db, current_user, request, "CART_UPDATE", _change,
                         {"product_id": product_id, "delta": payload.delta})


@router.delete("/items/{product_id}", response_model=CartOut)
async def delete_cart_item(
    product_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    async def _remove(aggregate: CartAggregate):
        await aggregate.remove_item(product_id)

    return await _mutate(db, current_user, request, "CART_DELETE", _remove, {"product_id": product_id})

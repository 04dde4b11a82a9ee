# backend/utils/cart_aggregate.py
"""In-memory cart with promotional pricing kept in lock-step.

Every mutation builds the new line set, prices it through the discount
engine and only then swaps it in, so quantities and discounts are always
committed together. Mutations on one aggregate are serialized with an
asyncio lock and each commit bumps ``version``.
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from utils.discount_engine import CartLine, ResolvedDeal, allocate_discounts
from utils.errors import InvalidCartItemError, errmsg
from utils.money import ZERO, money, to_decimal

logger = logging.getLogger(__name__)

DealLoader = Callable[[int, date], Awaitable[Sequence[ResolvedDeal]]]


@dataclass(frozen=True)
class StoreContext:
    id: int
    tax_rate: Decimal = ZERO


@dataclass(frozen=True)
class ProductSnapshot:
    """What the cart needs to know about a product when it is added."""
    id: Optional[int]
    name: Optional[str]
    price: Optional[Decimal]


@dataclass(frozen=True)
class CartTotals:
    subtotal: Decimal
    discount_total: Decimal
    tax: Decimal
    total: Decimal
    item_count: int


def compute_totals(lines: Sequence[CartLine], tax_rate: Optional[Decimal]) -> CartTotals:
    """total = subtotal - discount + tax, tax = (subtotal - discount) * rate."""
    subtotal = money(sum((l.unit_price * l.quantity for l in lines), ZERO))
    discount_total = money(sum((l.discount_amount for l in lines), ZERO))
    taxable = subtotal - discount_total
    tax = money(taxable * tax_rate) if tax_rate is not None else ZERO
    return CartTotals(
        subtotal=subtotal,
        discount_total=discount_total,
        tax=tax,
        total=taxable + tax,
        item_count=sum(l.quantity for l in lines),
    )


async def _no_deals(store_id: int, as_of: date) -> Sequence[ResolvedDeal]:
    return []


class CartAggregate:
    def __init__(
        self,
        lines: Sequence[CartLine] = (),
        store: Optional[StoreContext] = None,
        deal_loader: Optional[DealLoader] = None,
        today: Callable[[], date] = date.today,
        version: int = 0,
    ):
        self._lines: Tuple[CartLine, ...] = tuple(lines)
        self._store = store
        self._deal_loader = deal_loader or _no_deals
        self._today = today
        self._lock = asyncio.Lock()
        self.version = version

    @property
    def lines(self) -> Tuple[CartLine, ...]:
        return self._lines

    @property
    def store(self) -> Optional[StoreContext]:
        return self._store

    def find(self, product_id: int) -> Optional[CartLine]:
        for line in self._lines:
            if line.product_id == product_id:
                return line
        return None

    def totals(self) -> CartTotals:
        return compute_totals(self._lines, self._store.tax_rate if self._store else None)

    async def _price(self, lines: List[CartLine], store: Optional[StoreContext]) -> List[CartLine]:
        # Without a store there is nothing to resolve deals against
        if store is None:
            return allocate_discounts(lines, [])
        try:
            deals = await self._deal_loader(store.id, self._today())
        except Exception:
            logger.exception("Deal loader failed for store %s, pricing without deals", store.id)
            deals = []
        return allocate_discounts(lines, deals)

    async def _commit(self, lines: List[CartLine], store: Optional[StoreContext]) -> None:
        priced = await self._price(lines, store)
        self._lines = tuple(priced)
        self._store = store
        self.version += 1

    async def add_item(self, product: ProductSnapshot) -> None:
        if product is None or not product.name:
            logger.warning("Rejected cart item without a name: %r", product)
            raise InvalidCartItemError(errmsg.PRODUCT_NAME_REQUIRED)
        if product.price is None or to_decimal(product.price) <= 0:
            logger.warning("Rejected cart item without a price: %r", product)
            raise InvalidCartItemError(errmsg.PRODUCT_PRICE_REQUIRED)

        async with self._lock:
            lines = list(self._lines)
            for idx, line in enumerate(lines):
                if line.product_id == product.id:
                    lines[idx] = replace(line, quantity=line.quantity + 1)
                    break
            else:
                lines.append(CartLine(
                    product_id=product.id,
                    name=product.name,
                    unit_price=money(product.price),
                    quantity=1,
                ))
            await self._commit(lines, self._store)

    async def change_quantity(self, product_id: int, delta: int) -> None:
        async with self._lock:
            lines = []
            for line in self._lines:
                if line.product_id == product_id:
                    quantity = line.quantity + delta
                    if quantity <= 0:
                        continue
                    line = replace(line, quantity=quantity)
                lines.append(line)
            await self._commit(lines, self._store)

    async def remove_item(self, product_id: int) -> None:
        async with self._lock:
            lines = [l for l in self._lines if l.product_id != product_id]
            await self._commit(lines, self._store)

    async def select_store(self, store: Optional[StoreContext], prices: Optional[Dict[int, Decimal]] = None) -> None:
        """Attach the cart to a store and reprice.

        ``prices`` maps product id to the new store's price; lines for
        products the store does not sell are dropped.
        """
        async with self._lock:
            lines = list(self._lines)
            if prices is not None:
                lines = [
                    replace(l, unit_price=money(prices[l.product_id]))
                    for l in lines if l.product_id in prices
                ]
            await self._commit(lines, store)

    async def reprice(self) -> None:
        """Recompute discounts for the current lines, e.g. after deals changed."""
        async with self._lock:
            await self._commit(list(self._lines), self._store)

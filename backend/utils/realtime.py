# backend/utils/realtime.py
"""Fan-out of order changes to live observers.

``OrderBroadcaster`` is the server side: subscriptions scoped to one order,
one store or one user each get a bounded queue, and every committed order
write is pushed as a full record to all matching queues. ``OrderFeed`` is
the observer side: it folds pushed records into local state.
"""
import asyncio
import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional, Set

from config import settings
from models.order import OrderStatus
from utils.errors import ResyncRequired

logger = logging.getLogger(__name__)

_ACTIVE = {OrderStatus.PLACED.value, OrderStatus.PREPARING.value, OrderStatus.READY.value}
_RESYNC = object()


class Subscription:
    def __init__(
        self,
        *,
        order_id: Optional[int] = None,
        store_id: Optional[int] = None,
        user_id: Optional[int] = None,
        maxsize: int = 100,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        if order_id is None and store_id is None and user_id is None:
            raise ValueError("Subscription needs an order, store or user scope")
        self.order_id = order_id
        self.store_id = store_id
        self.user_id = user_id
        self.loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def matches(self, record: dict) -> bool:
        if self.order_id is not None:
            return record.get("id") == self.order_id
        if self.store_id is not None:
            return record.get("store_id") == self.store_id
        return record.get("user_id") == self.user_id

    def _offer(self, record: dict) -> None:
        # Runs on the subscriber's loop
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            logger.warning("Realtime subscriber %r fell behind, forcing resync", self)
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(_RESYNC)

    async def get(self) -> dict:
        record = await self._queue.get()
        if record is _RESYNC:
            raise ResyncRequired()
        return record

    def pending(self) -> int:
        return self._queue.qsize()

    def __repr__(self) -> str:
        return f"Subscription(order_id={self.order_id}, store_id={self.store_id}, user_id={self.user_id})"


class OrderBroadcaster:
    """Delivers every published order record to all matching subscriptions.

    ``publish`` may be called from the event loop or from a worker thread
    (sync route handlers run in a threadpool); delivery is always scheduled
    on the loop that owns the subscriber's queue.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscriptions: Set[Subscription] = set()
        self._guard = threading.Lock()

    def subscribe(self, *, order_id=None, store_id=None, user_id=None) -> Subscription:
        sub = Subscription(order_id=order_id, store_id=store_id, user_id=user_id, maxsize=self.queue_size)
        with self._guard:
            self._subscriptions.add(sub)
        logger.debug("Subscribed %r", sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._guard:
            self._subscriptions.discard(sub)
        logger.debug("Unsubscribed %r", sub)

    def subscriber_count(self) -> int:
        with self._guard:
            return len(self._subscriptions)

    def publish(self, record: dict) -> int:
        with self._guard:
            targets = [s for s in self._subscriptions if s.matches(record)]

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        delivered = 0
        for sub in targets:
            if sub.loop is running:
                sub._offer(record)
            elif sub.loop.is_closed():
                self.unsubscribe(sub)
                continue
            else:
                sub.loop.call_soon_threadsafe(sub._offer, record)
            delivered += 1
        logger.debug("Published order %s (%s) to %s subscriber(s)", record.get("id"), record.get("status"), delivered)
        return delivered


class OrderFeed:
    """Observer-side view of a set of orders.

    Each pushed record is treated as the full current state of its order.
    Records older than the version already held are dropped, completed
    orders are dropped when only active orders are tracked, and pushes for
    an order with a local mutation in flight are held back until that
    mutation finishes.
    """

    def __init__(self, active_only: bool = False, accepts: Optional[Callable[[dict], bool]] = None):
        self.active_only = active_only
        self._accepts = accepts
        self._orders: Dict[int, dict] = {}
        self._in_flight: Set[int] = set()
        self._deferred: Dict[int, dict] = {}

    @property
    def orders(self) -> List[dict]:
        return sorted(self._orders.values(), key=lambda o: o.get("created_at") or "")

    def get(self, order_id: int) -> Optional[dict]:
        return self._orders.get(order_id)

    def _newer(self, record: dict) -> bool:
        held = self._orders.get(record["id"])
        if held is None:
            return True
        return record.get("version", 0) >= held.get("version", 0)

    def apply(self, record: dict) -> bool:
        """Fold one pushed record in. Returns True if local state changed."""
        order_id = record.get("id")
        if order_id is None:
            return False
        if self._accepts is not None and not self._accepts(record):
            return False
        if order_id in self._in_flight:
            # Keep only the newest of the held-back pushes
            held = self._deferred.get(order_id)
            if held is None or record.get("version", 0) >= held.get("version", 0):
                self._deferred[order_id] = record
            return False
        return self._store(record)

    def _store(self, record: dict) -> bool:
        order_id = record["id"]
        if not self._newer(record):
            return False
        if self.active_only and record.get("status") not in _ACTIVE:
            return self._orders.pop(order_id, None) is not None
        self._orders[order_id] = record
        return True

    def begin_mutation(self, order_id: int) -> None:
        self._in_flight.add(order_id)

    def end_mutation(self, order_id: int, result: Optional[dict] = None) -> None:
        """Finish a local write; ``result`` is the record the write returned, if it succeeded."""
        self._in_flight.discard(order_id)
        if result is not None:
            self._store(result)
        deferred = self._deferred.pop(order_id, None)
        if deferred is not None:
            self._store(deferred)

    def resync(self, records: Iterable[dict]) -> None:
        """Replace all state with a fresh fetch, e.g. after reconnecting."""
        self._orders.clear()
        self._deferred.clear()
        for record in records:
            if self._accepts is None or self._accepts(record):
                self._store(record)


broadcaster = OrderBroadcaster(settings.REALTIME_QUEUE_SIZE)

"""Tests for order fan-out and the observer-side feed."""

import asyncio
import threading

import pytest

from utils.errors import ResyncRequired
from utils.realtime import OrderBroadcaster, OrderFeed


def _record(order_id=1, status="placed", version=1, store_id=10, user_id=100, created_at="2026-05-01T12:00:00"):
    return {"id": order_id, "status": status, "version": version, "store_id": store_id,
            "user_id": user_id, "created_at": created_at}


class TestBroadcaster:
    def test_scopes_receive_only_matching_orders(self):
        async def scenario():
            hub = OrderBroadcaster()
            by_order = hub.subscribe(order_id=1)
            by_store = hub.subscribe(store_id=10)
            by_user = hub.subscribe(user_id=200)

            delivered = hub.publish(_record(order_id=1, store_id=10, user_id=100))
            hub.publish(_record(order_id=2, store_id=20, user_id=200))

            return delivered, by_order.pending(), by_store.pending(), by_user.pending()

        assert asyncio.run(scenario()) == (2, 1, 1, 1)

    def test_records_arrive_in_publish_order(self):
        async def scenario():
            hub = OrderBroadcaster()
            sub = hub.subscribe(order_id=1)
            for version, status in enumerate(("placed", "preparing", "ready"), start=1):
                hub.publish(_record(status=status, version=version))
            return [(await sub.get())["status"] for _ in range(3)]

        assert asyncio.run(scenario()) == ["placed", "preparing", "ready"]

    def test_overflow_forces_resync(self):
        async def scenario():
            hub = OrderBroadcaster(queue_size=2)
            sub = hub.subscribe(store_id=10)
            for version in range(1, 4):
                hub.publish(_record(version=version))
            with pytest.raises(ResyncRequired):
                await sub.get()

        asyncio.run(scenario())

    def test_unsubscribed_observers_get_nothing(self):
        async def scenario():
            hub = OrderBroadcaster()
            sub = hub.subscribe(order_id=1)
            hub.unsubscribe(sub)
            return hub.publish(_record()), hub.subscriber_count()

        assert asyncio.run(scenario()) == (0, 0)

    def test_publish_from_worker_thread(self):
        async def scenario():
            hub = OrderBroadcaster()
            sub = hub.subscribe(user_id=100)
            worker = threading.Thread(target=hub.publish, args=(_record(status="ready"),))
            worker.start()
            worker.join()
            return await asyncio.wait_for(sub.get(), timeout=1)

        assert asyncio.run(scenario())["status"] == "ready"

    def test_subscription_needs_a_scope(self):
        async def scenario():
            OrderBroadcaster().subscribe()

        with pytest.raises(ValueError):
            asyncio.run(scenario())


class TestOrderFeed:
    def test_push_is_full_state_and_overwrites(self):
        feed = OrderFeed()
        feed.apply(_record(version=1))
        feed.apply(_record(status="preparing", version=2))

        assert feed.get(1)["status"] == "preparing"

    def test_stale_versions_are_dropped(self):
        feed = OrderFeed()
        feed.apply(_record(status="ready", version=3))

        assert not feed.apply(_record(status="preparing", version=2))
        assert feed.get(1)["status"] == "ready"

    def test_active_only_feed_drops_completed_orders(self):
        feed = OrderFeed(active_only=True)
        feed.apply(_record(status="ready", version=3))
        feed.apply(_record(status="completed", version=4))

        assert feed.get(1) is None
        assert feed.orders == []

    def test_pushes_wait_for_own_mutation(self):
        feed = OrderFeed()
        feed.apply(_record(version=1))
        feed.begin_mutation(1)

        # An echo of an older write arrives while our own write is in flight
        assert not feed.apply(_record(status="placed", version=1))
        assert not feed.apply(_record(status="preparing", version=2))
        assert feed.get(1)["status"] == "placed"

        feed.end_mutation(1, result=_record(status="preparing", version=2))

        assert feed.get(1)["status"] == "preparing"
        assert feed.get(1)["version"] == 2

    def test_deferred_newer_push_wins_after_mutation(self):
        feed = OrderFeed()
        feed.begin_mutation(1)
        feed.apply(_record(status="ready", version=3))
        feed.end_mutation(1, result=_record(status="preparing", version=2))

        assert feed.get(1)["status"] == "ready"

    def test_failed_mutation_still_releases_pushes(self):
        feed = OrderFeed()
        feed.apply(_record(version=1))
        feed.begin_mutation(1)
        feed.apply(_record(status="preparing", version=2))
        feed.end_mutation(1)

        assert feed.get(1)["status"] == "preparing"

    def test_accepts_filter_ignores_other_orders(self):
        feed = OrderFeed(accepts=lambda r: r["store_id"] == 10)

        assert not feed.apply(_record(order_id=2, store_id=20))
        assert feed.apply(_record(order_id=1, store_id=10))
        assert [o["id"] for o in feed.orders] == [1]

    def test_resync_replaces_state(self):
        feed = OrderFeed(active_only=True)
        feed.apply(_record(order_id=1))
        feed.resync([
            _record(order_id=2, created_at="2026-05-01T12:05:00"),
            _record(order_id=3, created_at="2026-05-01T12:01:00"),
            _record(order_id=4, status="completed"),
        ])

        assert [o["id"] for o in feed.orders] == [3, 2]

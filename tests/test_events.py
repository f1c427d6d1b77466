"""
Tests for the outbound event bus.

Tests cover:
- publish() fan-out to subscribers
- Unknown event types rejected
- Bounded subscriber queues drop the oldest event
- recent() history with type filter
- Subscription.get() timeout and close()
"""
import asyncio

import pytest

from tts_relay.services import events as ev
from tts_relay.services.events import EventBus


class TestEventBus:

    def test_fan_out(self):
        async def scenario():
            bus = EventBus()
            a, b = bus.subscribe(), bus.subscribe()
            bus.publish(ev.ENQUEUED, {"id": "x1"})
            return await a.get(1), await b.get(1)

        first, second = asyncio.run(scenario())
        assert first.type == second.type == "enqueued"
        assert first.to_dict()["id"] == "x1"
        assert "ts" in first.to_dict()

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            EventBus().publish("exploded", {})

    def test_slow_subscriber_drops_oldest(self):
        async def scenario():
            bus = EventBus(subscriber_queue_size=2)
            sub = bus.subscribe()
            for i in range(3):
                bus.publish(ev.ENQUEUED, {"n": i})
            got = [await sub.get(1), await sub.get(1)]
            return sub, got

        sub, got = asyncio.run(scenario())
        assert [e.payload["n"] for e in got] == [1, 2]
        assert sub.dropped == 1

    def test_get_timeout_returns_none(self):
        async def scenario():
            sub = EventBus().subscribe()
            return await sub.get(timeout=0.01)

        assert asyncio.run(scenario()) is None

    def test_recent_and_filter(self):
        bus = EventBus(history=3)
        bus.publish(ev.ENQUEUED, {"n": 1})
        bus.publish(ev.QUEUE_CLEARED, {"count": 0})
        bus.publish(ev.ENQUEUED, {"n": 2})
        bus.publish(ev.ENQUEUED, {"n": 3})
        assert len(bus.recent()) == 3
        assert [e.payload["n"] for e in bus.recent(ev.ENQUEUED)] == [2, 3]

    def test_close_unsubscribes(self):
        async def scenario():
            bus = EventBus()
            sub = bus.subscribe()
            assert bus.subscriber_count == 1
            sub.close()
            return bus.subscriber_count

        assert asyncio.run(scenario()) == 0

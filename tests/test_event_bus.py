"""Tests for the event bus."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest

from simterm.bus.event_bus import EventBus
from simterm.bus.events import TOPIC_PAYLOADS, BotStateEvent, LogEvent, Topic
from simterm.constants import EventLevel
from simterm.data.market_data import Tick
from simterm.errors import BusClosedError


def make_tick(instrument: str = "BTCUSD", price: str = "100") -> Tick:
    p = Decimal(price)
    return Tick(instrument, p, p - Decimal("0.01"), p + Decimal("0.01"), Decimal("1"), datetime.now())


@pytest.fixture
def bus():
    return EventBus()


def test_every_topic_has_a_payload_type():
    assert set(TOPIC_PAYLOADS) == set(Topic)


class TestPublish:
    @pytest.mark.asyncio
    async def test_delivery_is_deferred(self, bus):
        received = []
        bus.subscribe(Topic.TICK, received.append)

        bus.publish(Topic.TICK, make_tick())
        assert received == []

        await bus.drain()
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_order_preserved_within_topic(self, bus):
        received = []
        bus.subscribe(Topic.TICK, lambda t: received.append(t.price))

        for i in range(50):
            bus.publish(Topic.TICK, make_tick(price=str(100 + i)))
        await bus.drain()

        assert received == [Decimal(100 + i) for i in range(50)]

    @pytest.mark.asyncio
    async def test_wrong_payload_type_rejected(self, bus):
        with pytest.raises(TypeError, match="market.tick"):
            bus.publish(Topic.TICK, BotStateEvent(running=True, timestamp=datetime.now()))

    @pytest.mark.asyncio
    async def test_publish_without_subscribers_is_noop(self, bus):
        bus.publish(Topic.TICK, make_tick())
        await bus.drain()

    @pytest.mark.asyncio
    async def test_late_subscriber_does_not_receive_earlier_event(self, bus):
        early, late = [], []
        bus.subscribe(Topic.TICK, early.append)
        bus.publish(Topic.TICK, make_tick())
        bus.subscribe(Topic.TICK, late.append)

        await bus.drain()
        assert len(early) == 1
        assert late == []

    @pytest.mark.asyncio
    async def test_duplicate_subscriptions_each_receive(self, bus):
        received = []
        bus.subscribe(Topic.TICK, received.append)
        bus.subscribe(Topic.TICK, received.append)
        assert bus.handler_count(Topic.TICK) == 2

        bus.publish(Topic.TICK, make_tick())
        await bus.drain()
        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_coroutine_handler_runs(self, bus):
        received = []

        async def handler(event):
            received.append(event)

        bus.subscribe(Topic.LOG, handler)
        bus.log(EventLevel.INFO, "hello")
        await bus.drain()

        assert len(received) == 1
        assert isinstance(received[0], LogEvent)
        assert received[0].message == "hello"


class TestIsolation:
    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self, bus):
        received = []

        def broken(_event):
            raise RuntimeError("boom")

        bus.subscribe(Topic.TICK, broken)
        bus.subscribe(Topic.TICK, received.append)

        bus.publish(Topic.TICK, make_tick())
        await bus.drain()

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_failing_async_handler_is_contained(self, bus):
        received = []

        async def broken(_event):
            raise RuntimeError("boom")

        bus.subscribe(Topic.TICK, broken)
        bus.subscribe(Topic.TICK, received.append)

        bus.publish(Topic.TICK, make_tick())
        await bus.drain()

        assert len(received) == 1


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, bus):
        received = []
        sub = bus.subscribe(Topic.TICK, received.append)

        sub.cancel()
        sub.cancel()
        bus.unsubscribe(sub)

        bus.publish(Topic.TICK, make_tick())
        await bus.drain()
        assert received == []
        assert bus.handler_count(Topic.TICK) == 0

    @pytest.mark.asyncio
    async def test_cancel_after_publish_skips_scheduled_delivery(self, bus):
        received = []
        sub = bus.subscribe(Topic.TICK, received.append)

        bus.publish(Topic.TICK, make_tick())
        sub.cancel()
        await bus.drain()

        assert received == []


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_drops_pending_and_rejects_subscribe(self, bus):
        received = []
        bus.subscribe(Topic.TICK, received.append)
        bus.publish(Topic.TICK, make_tick())

        await bus.shutdown()
        assert bus.closed

        await bus.drain()
        assert received == []

        with pytest.raises(BusClosedError):
            bus.subscribe(Topic.TICK, received.append)

    @pytest.mark.asyncio
    async def test_publish_after_shutdown_is_noop(self, bus):
        await bus.shutdown()
        bus.publish(Topic.TICK, make_tick())
        await bus.shutdown()

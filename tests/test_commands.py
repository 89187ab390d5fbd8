"""Tests for the operator command layer."""

from __future__ import annotations

import asyncio
import random
from decimal import Decimal

import pytest

from simterm.broker.models import OrderReceipt, OrderRequest
from simterm.broker.sim import SimBroker
from simterm.bus.event_bus import EventBus
from simterm.bus.events import Topic
from simterm.config_loader import EngineConfig, RiskConfig
from simterm.constants import EventLevel, OrderSide, OrderSource, OrderType
from simterm.errors import SimTermError
from simterm.execution.engine import ExecutionEngine
from simterm.risk.risk_governor import RiskGovernor
from simterm.ui.commands import CommandDispatcher, ReviewQueue


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def engine(bus):
    config = EngineConfig(fill_latency_min_ms=1, fill_latency_max_ms=3)
    return ExecutionEngine(
        bus,
        SimBroker(config, rng=random.Random(1)),
        RiskGovernor(RiskConfig()),
        config,
        rng=random.Random(2),
    )


@pytest.fixture
def reviews(bus, engine):
    return ReviewQueue(bus, engine)


@pytest.fixture
def dispatcher(bus, engine, reviews):
    return CommandDispatcher(bus, engine, reviews)


@pytest.fixture
def logs(bus):
    lines = []
    bus.subscribe(Topic.LOG, lines.append)
    return lines


@pytest.fixture
def latencies(bus):
    samples = []
    bus.subscribe(Topic.COMMAND_LATENCY, samples.append)
    return samples


async def settle(bus: EventBus) -> None:
    await asyncio.sleep(0.02)
    await bus.drain()


class TestCommandDispatcher:
    @pytest.mark.asyncio
    async def test_open_with_defaults(self, dispatcher, bus):
        receipt = await dispatcher.execute("/open")
        assert isinstance(receipt, OrderReceipt)
        assert receipt.instrument == "BTCUSD"
        assert receipt.quantity == Decimal("0.01")
        assert receipt.side == OrderSide.BUY
        assert receipt.type == OrderType.MARKET
        await settle(bus)

    @pytest.mark.asyncio
    async def test_open_with_arguments(self, dispatcher, bus):
        receipt = await dispatcher.execute("/open ETHUSD 0.5 market SELL")
        assert receipt.instrument == "ETHUSD"
        assert receipt.quantity == Decimal("0.5")
        assert receipt.side == OrderSide.SELL
        await settle(bus)

    @pytest.mark.asyncio
    async def test_every_command_emits_latency(self, dispatcher, bus, latencies):
        await dispatcher.execute("/portfolio")
        await dispatcher.execute("/bogus")
        await dispatcher.execute("/open BTCUSD 0")
        await dispatcher.execute("   ")
        await bus.drain()

        assert [s.command for s in latencies] == ["/portfolio", "/bogus", "/open BTCUSD 0"]
        assert all(s.ms >= 0 for s in latencies)

    @pytest.mark.asyncio
    async def test_unknown_command_warns(self, dispatcher, bus, logs):
        assert await dispatcher.execute("/launch-rocket") is None
        await bus.drain()
        assert logs[-1].level == EventLevel.WARN
        assert "Unknown command" in logs[-1].message

    @pytest.mark.asyncio
    async def test_risk_reject_becomes_error_log(self, dispatcher, bus, logs):
        assert await dispatcher.execute("/open BTCUSD 5") is None
        await bus.drain()
        assert logs[-1].level == EventLevel.ERROR
        assert logs[-1].message.startswith("Risk reject:")

    @pytest.mark.asyncio
    async def test_bad_arguments_become_error_log(self, dispatcher, bus, logs):
        assert await dispatcher.execute("/open BTCUSD 1 market sideways") is None
        assert await dispatcher.execute("/open BTCUSD lots") is None
        await bus.drain()
        assert [line.level for line in logs] == [EventLevel.ERROR, EventLevel.ERROR]

    @pytest.mark.asyncio
    async def test_close_defaults_to_first_open_position(self, dispatcher, engine, bus):
        opened = await dispatcher.execute("/open BTCUSD 0.1")
        await settle(bus)

        closing = await dispatcher.execute("/close")
        assert closing.side == OrderSide.SELL
        await settle(bus)

        snap = engine.get_portfolio_snapshot()
        assert snap.open_positions == []
        assert snap.positions[0].source_order_id == opened.order_id

    @pytest.mark.asyncio
    async def test_close_without_positions(self, dispatcher, bus, logs):
        assert await dispatcher.execute("/close") is None
        assert await dispatcher.execute("/close ord_unknown") is None
        await bus.drain()
        assert logs[0].message == "No open order id available to close"
        assert logs[1].message == "No open position for ord_unknown"

    @pytest.mark.asyncio
    async def test_bot_and_strategy_commands(self, dispatcher, engine, bus):
        await dispatcher.execute("/start-bot")
        assert engine.bot_running
        await dispatcher.execute("/stop-bot")
        assert not engine.bot_running

        assert await dispatcher.execute("/switch-strategy breakout") == "breakout"
        assert engine.strategy == "breakout"
        assert await dispatcher.execute("/switch-strategy") == "mean-reversion"

    @pytest.mark.asyncio
    async def test_portfolio_logs_summary(self, dispatcher, bus, logs):
        await dispatcher.execute("/portfolio")
        await bus.drain()
        assert logs[-1].message == "Portfolio cash=100000.00 eq=100000.00 uPnL=0.00"

    def test_command_list(self, dispatcher):
        assert "open" in dispatcher.commands
        assert "approve" in dispatcher.commands


class TestReviewQueue:
    @pytest.mark.asyncio
    async def test_review_command_enqueues(self, dispatcher, reviews, bus):
        await reviews.start()
        review = await dispatcher.execute("/review ETHUSD 0.02 sell")
        await bus.drain()

        assert len(reviews) == 1
        assert reviews.active == review
        assert review.order.source == OrderSource.AUTO
        assert review.reason == "Manual review command"
        await reviews.stop()

    @pytest.mark.asyncio
    async def test_fifo_and_reject(self, reviews, engine, bus, logs):
        await reviews.start()
        first = engine.request_review(OrderRequest("BTCUSD", Decimal("0.01"), OrderSide.BUY), "a")
        second = engine.request_review(OrderRequest("ETHUSD", Decimal("0.01"), OrderSide.SELL), "b")
        await bus.drain()

        assert reviews.active == first
        assert reviews.reject() == first
        assert reviews.active == second
        await bus.drain()
        assert logs[-1].level == EventLevel.WARN
        assert first.id in logs[-1].message

    @pytest.mark.asyncio
    async def test_approve_submits_review_approved_order(self, reviews, engine, bus, monkeypatch):
        submitted = []

        async def fake_open_trade(request):
            submitted.append(request)
            return "receipt"

        monkeypatch.setattr(engine, "open_trade", fake_open_trade)
        await reviews.start()
        review = engine.request_review(OrderRequest("BTCUSD", Decimal("0.05"), OrderSide.SELL, source=OrderSource.AUTO), "x")
        await bus.drain()

        assert await reviews.approve() == "receipt"
        assert len(reviews) == 0
        request = submitted[0]
        assert request.source == OrderSource.REVIEW_APPROVED
        assert request.instrument == review.order.instrument
        assert request.quantity == review.order.quantity
        assert request.side == review.order.side

    @pytest.mark.asyncio
    async def test_empty_queue(self, reviews, dispatcher, bus, logs):
        assert reviews.active is None
        with pytest.raises(SimTermError):
            reviews.reject()

        assert await dispatcher.execute("/approve") is None
        await bus.drain()
        assert logs[-1].message == "No review pending"

    @pytest.mark.asyncio
    async def test_approve_via_dispatcher(self, reviews, dispatcher, engine, bus):
        await reviews.start()
        await dispatcher.execute("/review BTCUSD 0.01 buy")
        await bus.drain()

        receipt = await dispatcher.execute("/approve")
        assert isinstance(receipt, OrderReceipt)
        await asyncio.sleep(0.02)
        await bus.drain()
        assert len(engine.get_portfolio_snapshot().open_positions) == 1

"""Tests for SimBroker."""

from __future__ import annotations

import asyncio
import random
from datetime import datetime
from decimal import Decimal

import pytest

from simterm.broker.models import OrderFill, OrderRequest
from simterm.broker.sim import SimBroker
from simterm.config_loader import EngineConfig
from simterm.constants import OrderSide, OrderStatus, OrderType, PositionStatus
from simterm.data.market_data import Tick


def make_tick(instrument: str, price: str) -> Tick:
    p = Decimal(price)
    return Tick(instrument, p, p - Decimal("0.01"), p + Decimal("0.01"), Decimal("1"), datetime.now())


@pytest.fixture
def engine_config():
    return EngineConfig(
        initial_cash=Decimal("100000"),
        fill_latency_min_ms=1,
        fill_latency_max_ms=2,
    )


@pytest.fixture
def broker(engine_config):
    return SimBroker(engine_config, rng=random.Random(5))


def make_fill(order_id: str, side: OrderSide, qty: str, price: str, fee: str = "0.1") -> OrderFill:
    return OrderFill(
        order_id=order_id,
        instrument="BTCUSD",
        quantity=Decimal(qty),
        side=side,
        fill_price=Decimal(price),
        fee=Decimal(fee),
        latency_ms=1,
        filled_at=datetime.now(),
    )


class TestFillPricing:
    def test_limit_order_fills_at_limit(self, broker):
        req = OrderRequest("BTCUSD", Decimal("1"), OrderSide.BUY, OrderType.LIMIT, limit_price=Decimal("123.45"))
        assert broker.compute_fill_price(req) == Decimal("123.45")

    def test_market_order_slippage_bounds(self, broker):
        broker.process_tick(make_tick("BTCUSD", "100"))
        req = OrderRequest("BTCUSD", Decimal("1"), OrderSide.BUY)
        for _ in range(200):
            price = broker.compute_fill_price(req)
            assert Decimal("99.97") <= price <= Decimal("100.03")

    def test_synthetic_mark_without_price(self, broker):
        req = OrderRequest("NEWCOIN", Decimal("1"), OrderSide.BUY)
        for _ in range(50):
            price = broker.compute_fill_price(req)
            assert Decimal("99") < price < Decimal("1101")

    def test_fee_minimum(self):
        assert SimBroker.compute_fee(Decimal("1"), Decimal("100")) == Decimal("0.1")
        assert SimBroker.compute_fee(Decimal("2"), Decimal("1000")) == Decimal("1.0000")


class TestOrderLifecycle:
    @pytest.mark.asyncio
    async def test_order_accepted_then_filled(self, broker):
        broker.process_tick(make_tick("BTCUSD", "100"))
        receipt = await broker.place_order(OrderRequest("BTCUSD", Decimal("1"), OrderSide.BUY), "test")

        assert receipt.status == OrderStatus.ACCEPTED
        assert receipt.strategy == "test"
        assert broker.get_fill(receipt.order_id) is None

        await asyncio.sleep(0.02)

        fill = broker.get_fill(receipt.order_id)
        assert fill is not None
        assert broker.get_order(receipt.order_id).status == OrderStatus.FILLED
        # returned receipt is a copy
        assert receipt.status == OrderStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_fill_callback_invoked(self, broker):
        fills = []
        broker.add_fill_callback(fills.append)

        receipt = await broker.place_order(OrderRequest("BTCUSD", Decimal("1"), OrderSide.BUY), "test")
        await asyncio.sleep(0.02)

        assert [f.order_id for f in fills] == [receipt.order_id]

    @pytest.mark.asyncio
    async def test_close_cancels_inflight_fills(self):
        broker = SimBroker(EngineConfig(fill_latency_min_ms=500, fill_latency_max_ms=500))
        receipt = await broker.place_order(OrderRequest("BTCUSD", Decimal("1"), OrderSide.BUY), "test")
        assert broker.inflight_fills == 1

        await broker.close()
        assert broker.inflight_fills == 0
        assert broker.get_fill(receipt.order_id) is None
        assert broker.cash_balance == Decimal("100000")


class TestLedger:
    @pytest.mark.asyncio
    async def test_buy_and_sell_cash(self, broker):
        buy = await broker.place_order(OrderRequest("BTCUSD", Decimal("2"), OrderSide.BUY), "s")
        await broker.close()  # drop the simulated fill, book fills by hand

        assert broker.apply_fill(make_fill(buy.order_id, OrderSide.BUY, "2", "100", "0.5"))
        assert broker.cash_balance == Decimal("100000") - Decimal("200.5")

        sell = await broker.place_order(OrderRequest("BTCUSD", Decimal("1"), OrderSide.SELL), "s")
        await broker.close()
        assert broker.apply_fill(make_fill(sell.order_id, OrderSide.SELL, "1", "110", "0.5"))
        assert broker.cash_balance == Decimal("100000") - Decimal("200.5") + Decimal("109.5")

        # two independent positions, no netting
        positions = broker.open_positions()
        assert sorted(p.quantity for p in positions) == [Decimal("-1"), Decimal("2")]

    @pytest.mark.asyncio
    async def test_duplicate_and_unknown_fills_ignored(self, broker):
        receipt = await broker.place_order(OrderRequest("BTCUSD", Decimal("1"), OrderSide.BUY), "s")
        await broker.close()

        fill = make_fill(receipt.order_id, OrderSide.BUY, "1", "100")
        assert broker.apply_fill(fill) is True
        cash = broker.cash_balance

        assert broker.apply_fill(fill) is False
        assert broker.apply_fill(make_fill("ord_unknown", OrderSide.BUY, "1", "100")) is False
        assert broker.cash_balance == cash
        assert len(broker.positions) == 1

    @pytest.mark.asyncio
    async def test_closing_fill_realizes_pnl(self, broker):
        opening = await broker.place_order(OrderRequest("BTCUSD", Decimal("1"), OrderSide.BUY), "s")
        await broker.close()
        broker.apply_fill(make_fill(opening.order_id, OrderSide.BUY, "1", "100", "0.1"))
        pos = broker.find_open_position(opening.order_id)

        closing = await broker.place_order(
            OrderRequest("BTCUSD", Decimal("1"), OrderSide.SELL), "s", close_position_id=pos.position_id
        )
        await broker.close()
        assert broker.pending_close_for(pos.position_id).order_id == closing.order_id

        broker.apply_fill(make_fill(closing.order_id, OrderSide.SELL, "1", "105", "0.1"))

        closed = broker.positions[pos.position_id]
        assert closed.status == PositionStatus.CLOSED
        assert closed.realized_pnl == Decimal("4.9")
        assert closed.unrealized_pnl == 0
        assert closed.mark_price == Decimal("105")
        assert broker.realized_pnl == Decimal("4.9")
        assert broker.pending_closes == {}
        assert broker.find_open_position(opening.order_id) is None

    @pytest.mark.asyncio
    async def test_short_close_pnl_uses_signed_quantity(self, broker):
        opening = await broker.place_order(OrderRequest("BTCUSD", Decimal("2"), OrderSide.SELL), "s")
        await broker.close()
        broker.apply_fill(make_fill(opening.order_id, OrderSide.SELL, "2", "100", "0.1"))
        pos = broker.find_open_position(opening.order_id)
        assert pos.quantity == Decimal("-2")

        closing = await broker.place_order(
            OrderRequest("BTCUSD", Decimal("2"), OrderSide.BUY), "s", close_position_id=pos.position_id
        )
        await broker.close()
        broker.apply_fill(make_fill(closing.order_id, OrderSide.BUY, "2", "90", "0.1"))

        # (90 - 100) * -2 - 0.1
        assert broker.positions[pos.position_id].realized_pnl == Decimal("19.9")


class TestMarking:
    @pytest.mark.asyncio
    async def test_tick_marks_open_positions(self, broker):
        receipt = await broker.place_order(OrderRequest("BTCUSD", Decimal("1"), OrderSide.BUY), "s")
        await broker.close()
        broker.apply_fill(make_fill(receipt.order_id, OrderSide.BUY, "1", "100"))

        assert broker.process_tick(make_tick("ETHUSD", "2000")) is False
        assert broker.process_tick(make_tick("BTCUSD", "103")) is True

        pos = broker.find_open_position(receipt.order_id)
        assert pos.mark_price == Decimal("103")
        assert pos.unrealized_pnl == Decimal("3")

        snap = broker.snapshot()
        assert snap.unrealized_pnl == Decimal("3")
        assert snap.equity == snap.cash_balance + Decimal("3")
        assert snap.margin_used == Decimal("10.3")
        assert broker.last_price("BTCUSD") == Decimal("103")
        assert set(broker.known_instruments()) == {"BTCUSD", "ETHUSD"}

    @pytest.mark.asyncio
    async def test_snapshot_positions_are_copies(self, broker):
        receipt = await broker.place_order(OrderRequest("BTCUSD", Decimal("1"), OrderSide.BUY), "s")
        await broker.close()
        broker.apply_fill(make_fill(receipt.order_id, OrderSide.BUY, "1", "100"))

        snap = broker.snapshot()
        snap.positions[0].mark_price = Decimal("0")
        assert broker.find_open_position(receipt.order_id).mark_price == Decimal("100")

"""Simulation broker implementation."""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from simterm.broker.base import ExecutionVenue
from simterm.broker.models import (
    OrderFill,
    OrderReceipt,
    OrderRequest,
    PortfolioSnapshot,
    Position,
    generate_id,
)
from simterm.config_loader import EngineConfig
from simterm.constants import (
    FEE_RATE,
    MARGIN_RATE,
    MIN_FEE,
    PRICE_QUANTUM,
    SLIPPAGE_FACTOR,
    SYNTHETIC_MARK_MIN,
    SYNTHETIC_MARK_RANGE,
    OrderSide,
    OrderStatus,
    OrderType,
    PositionStatus,
)
from simterm.data.market_data import Tick

logger = logging.getLogger(__name__)


class SimBroker(ExecutionVenue):
    """
    Simulation broker for dry runs.

    Every accepted order fills in full exactly once after a random latency.
    The broker owns the ledger: cash, positions and cumulative realized PnL.
    """

    def __init__(self, config: EngineConfig | None = None, rng: random.Random | None = None):
        super().__init__()
        self.config = config or EngineConfig()
        self.rng = rng or random.Random()

        self.cash_balance: Decimal = self.config.initial_cash
        self.realized_pnl = Decimal("0")
        self.positions: dict[str, Position] = {}
        self.last_prices: dict[str, Decimal] = {}
        self.pending_closes: dict[str, str] = {}  # closing order_id -> position_id

        self._orders: dict[str, OrderReceipt] = {}
        self._fills: dict[str, OrderFill] = {}
        self._fill_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def last_price(self, instrument: str) -> Decimal | None:
        return self.last_prices.get(instrument)

    def open_positions(self) -> list[Position]:
        return [p for p in self.positions.values() if p.is_open]

    def known_instruments(self) -> list[str]:
        return list(self.last_prices)

    def find_open_position(self, order_id: str) -> Position | None:
        for p in self.positions.values():
            if p.is_open and p.source_order_id == order_id:
                return p
        return None

    def pending_close_for(self, position_id: str) -> OrderReceipt | None:
        for order_id, pos_id in self.pending_closes.items():
            if pos_id == position_id:
                return self._orders.get(order_id)
        return None

    def get_order(self, order_id: str) -> OrderReceipt | None:
        return self._orders.get(order_id)

    def get_fill(self, order_id: str) -> OrderFill | None:
        return self._fills.get(order_id)

    @property
    def inflight_fills(self) -> int:
        return len(self._fill_tasks)

    def snapshot(self) -> PortfolioSnapshot:
        positions = [replace(p) for p in self.positions.values()]
        open_positions = [p for p in positions if p.is_open]
        unrealized = sum((p.unrealized_pnl for p in open_positions), Decimal("0"))
        margin = sum((abs(p.quantity * p.mark_price) * MARGIN_RATE for p in open_positions), Decimal("0"))
        return PortfolioSnapshot(
            cash_balance=self.cash_balance,
            equity=self.cash_balance + unrealized,
            margin_used=margin,
            realized_pnl=self.realized_pnl,
            unrealized_pnl=unrealized,
            positions=positions,
            updated_at=datetime.now(),
        )

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def place_order(
        self, request: OrderRequest, strategy: str, close_position_id: str | None = None
    ) -> OrderReceipt:
        receipt = OrderReceipt(
            order_id=generate_id("ord"),
            instrument=request.instrument,
            quantity=request.quantity,
            side=request.side,
            type=request.type,
            status=OrderStatus.ACCEPTED,
            created_at=datetime.now(),
            strategy=strategy,
        )
        self._orders[receipt.order_id] = receipt
        if close_position_id is not None:
            self.pending_closes[receipt.order_id] = close_position_id

        latency_ms = self.rng.randint(self.config.fill_latency_min_ms, self.config.fill_latency_max_ms)
        task = asyncio.get_running_loop().create_task(
            self._fill_after(request, receipt, latency_ms), name=f"fill-{receipt.order_id}"
        )
        self._fill_tasks.add(task)
        task.add_done_callback(self._fill_tasks.discard)

        logger.info(
            f"Order accepted: {receipt.order_id} {request.instrument} {request.side.value} "
            f"{request.quantity} {request.type.value} (fill in {latency_ms}ms)"
        )
        return replace(receipt)

    async def _fill_after(self, request: OrderRequest, receipt: OrderReceipt, latency_ms: int) -> None:
        await asyncio.sleep(latency_ms / 1000)

        fill_price = self.compute_fill_price(request)
        fill = OrderFill(
            order_id=receipt.order_id,
            instrument=request.instrument,
            quantity=request.quantity,
            side=request.side,
            fill_price=fill_price,
            fee=self.compute_fee(request.quantity, fill_price),
            latency_ms=latency_ms,
            filled_at=datetime.now(),
        )
        if not self.apply_fill(fill):
            return

        for cb in self._fill_callbacks:
            try:
                result = cb(fill)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Fill callback failed for {fill.order_id}: {e}", exc_info=True)

    def compute_fill_price(self, request: OrderRequest) -> Decimal:
        """Limit orders fill at their limit; everything else at the mark plus slippage."""
        if request.type == OrderType.LIMIT and request.limit_price:
            return request.limit_price

        mark = self.last_prices.get(request.instrument)
        if mark is None:
            mark = Decimal(str(SYNTHETIC_MARK_MIN + self.rng.random() * SYNTHETIC_MARK_RANGE))
        slippage = Decimal(str(self.rng.random() - 0.5)) * SLIPPAGE_FACTOR
        return (mark * (1 + slippage)).quantize(PRICE_QUANTUM)

    @staticmethod
    def compute_fee(quantity: Decimal, fill_price: Decimal) -> Decimal:
        return max(MIN_FEE, (quantity * fill_price * FEE_RATE).quantize(PRICE_QUANTUM))

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def apply_fill(self, fill: OrderFill) -> bool:
        """
        Book a fill: cash first, then the position.

        Returns False (and changes nothing) if the order is unknown or was
        already filled.
        """
        receipt = self._orders.get(fill.order_id)
        if receipt is None:
            logger.error(f"Fill for unknown order {fill.order_id} ignored")
            return False
        if fill.order_id in self._fills:
            logger.error(f"Duplicate fill for {fill.order_id} ignored")
            return False

        self._fills[fill.order_id] = fill
        receipt.status = OrderStatus.FILLED

        self._apply_cash(fill)
        self._apply_position(fill)

        logger.info(
            f"Order filled: {fill.order_id} {fill.instrument} {fill.side.value} {fill.quantity} "
            f"@ {fill.fill_price} fee={fill.fee} cash={self.cash_balance:.2f}"
        )
        return True

    def _apply_cash(self, fill: OrderFill) -> None:
        if fill.side == OrderSide.BUY:
            self.cash_balance -= fill.gross + fill.fee
        else:
            self.cash_balance += fill.gross - fill.fee

    def _apply_position(self, fill: OrderFill) -> None:
        position_id = self.pending_closes.pop(fill.order_id, None)
        if position_id is not None:
            pos = self.positions.get(position_id)
            if pos is not None and pos.is_open:
                pnl = (fill.fill_price - pos.avg_entry_price) * pos.quantity - fill.fee
                pos.realized_pnl += pnl
                pos.unrealized_pnl = Decimal("0")
                pos.mark_price = fill.fill_price
                pos.status = PositionStatus.CLOSED
                pos.updated_at = fill.filled_at
                self.realized_pnl += pnl
                logger.info(f"Position closed: {pos.position_id} realized={pnl:.2f}")
            else:
                logger.warning(f"Closing fill {fill.order_id} found no open position {position_id}")
            return

        signed_qty = fill.quantity if fill.side == OrderSide.BUY else -fill.quantity
        pos = Position(
            position_id=generate_id("pos"),
            source_order_id=fill.order_id,
            instrument=fill.instrument,
            quantity=signed_qty,
            avg_entry_price=fill.fill_price,
            mark_price=fill.fill_price,
            opened_at=fill.filled_at,
            updated_at=fill.filled_at,
        )
        self.positions[pos.position_id] = pos
        logger.info(f"Position opened: {pos.position_id} {pos.instrument} {signed_qty} @ {fill.fill_price}")

    def process_tick(self, tick: Tick) -> bool:
        """External driver feeds tick here."""
        self.last_prices[tick.instrument] = tick.price

        dirty = False
        for pos in self.positions.values():
            if not pos.is_open or pos.instrument != tick.instrument:
                continue
            pos.mark_price = tick.price
            pos.unrealized_pnl = (tick.price - pos.avg_entry_price) * pos.quantity
            pos.updated_at = tick.timestamp
            dirty = True
        return dirty

    async def close(self) -> None:
        tasks = list(self._fill_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"SimBroker cancelled {len(tasks)} in-flight fills")

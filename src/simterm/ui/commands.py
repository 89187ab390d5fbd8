"""Operator command parsing and the review queue.

Commands are slash-prefixed words followed by positional arguments::

    /open BTCUSD 0.01 market buy
    /close ord_4f1c2a9be310
    /review ETHUSD 0.02 sell
"""

from __future__ import annotations

import logging
import time
from collections import deque
from datetime import datetime
from decimal import Decimal
from typing import Any

from simterm.broker.models import OrderReceipt, OrderRequest, ReviewRequest
from simterm.bus.event_bus import EventBus, Subscription
from simterm.bus.events import CommandLatencySample, Topic
from simterm.constants import DEFAULT_STRATEGY, EventLevel, OrderSide, OrderSource, OrderType
from simterm.errors import SimTermError
from simterm.execution.engine import ExecutionEngine

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_INSTRUMENT = "BTCUSD"
DEFAULT_COMMAND_QTY = "0.01"


class ReviewQueue:
    """FIFO of pending review requests. Only the head is actionable."""

    def __init__(self, bus: EventBus, engine: ExecutionEngine):
        self.bus = bus
        self.engine = engine
        self._queue: deque[ReviewRequest] = deque()
        self._sub: Subscription | None = None

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def active(self) -> ReviewRequest | None:
        return self._queue[0] if self._queue else None

    async def start(self) -> None:
        if self._sub is None:
            self._sub = self.bus.subscribe(Topic.REVIEW_REQUESTED, self.enqueue)

    async def stop(self) -> None:
        if self._sub is not None:
            self._sub.cancel()
            self._sub = None

    def enqueue(self, review: ReviewRequest) -> None:
        self._queue.append(review)

    def _pop(self) -> ReviewRequest:
        if not self._queue:
            raise SimTermError("No review pending")
        return self._queue.popleft()

    async def approve(self) -> OrderReceipt:
        """Submit the active review's order with source ``review-approved``."""
        review = self._pop()
        order = OrderRequest(
            instrument=review.order.instrument,
            quantity=review.order.quantity,
            side=review.order.side,
            type=review.order.type,
            limit_price=review.order.limit_price,
            strategy=review.order.strategy,
            source=OrderSource.REVIEW_APPROVED,
        )
        receipt = await self.engine.open_trade(order)
        self.bus.log(EventLevel.INFO, f"Review approved {review.id}")
        return receipt

    def reject(self) -> ReviewRequest:
        review = self._pop()
        self.bus.log(EventLevel.WARN, f"Review rejected {review.id}")
        return review


class CommandDispatcher:
    """
    Executes operator commands against the engine.

    Failures are reported as ERROR log events instead of being raised, and
    every non-empty command publishes a ``command.latency`` sample.
    """

    def __init__(self, bus: EventBus, engine: ExecutionEngine, reviews: ReviewQueue):
        self.bus = bus
        self.engine = engine
        self.reviews = reviews
        self._handlers = {
            "open": self._open,
            "close": self._close,
            "portfolio": self._portfolio,
            "start-bot": self._start_bot,
            "stop-bot": self._stop_bot,
            "switch-strategy": self._switch_strategy,
            "review": self._review,
            "approve": self._approve,
            "reject": self._reject,
        }

    @property
    def commands(self) -> list[str]:
        return sorted(self._handlers)

    async def execute(self, raw: str) -> Any:
        """Run one command line. Returns the command's result, or None on failure."""
        command = raw.strip()
        if not command:
            return None

        started = time.perf_counter()
        parts = command.lstrip("/").split()
        action = parts[0].lower() if parts else ""
        args = parts[1:]

        try:
            handler = self._handlers.get(action)
            if handler is None:
                self.bus.log(EventLevel.WARN, f"Unknown command: {command}")
                return None
            return await handler(args)
        except Exception as e:
            logger.warning(f"Command '{command}' failed: {e}")
            self.bus.log(EventLevel.ERROR, str(e) or type(e).__name__)
            return None
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self.bus.publish(
                Topic.COMMAND_LATENCY,
                CommandLatencySample(command=command, ms=elapsed_ms, timestamp=datetime.now()),
            )

    async def _open(self, args: list[str]) -> OrderReceipt:
        request = OrderRequest(
            instrument=_arg(args, 0, DEFAULT_COMMAND_INSTRUMENT),
            quantity=Decimal(_arg(args, 1, DEFAULT_COMMAND_QTY)),
            type=OrderType(_arg(args, 2, OrderType.MARKET.value).lower()),
            side=OrderSide(_arg(args, 3, OrderSide.BUY.value).lower()),
            strategy=self.engine.strategy,
            source=OrderSource.MANUAL,
        )
        return await self.engine.open_trade(request)

    async def _close(self, args: list[str]) -> OrderReceipt:
        order_id = _arg(args, 0, None)
        if order_id is None:
            open_positions = self.engine.get_portfolio_snapshot().open_positions
            if not open_positions:
                raise SimTermError("No open order id available to close")
            order_id = open_positions[0].source_order_id
        return await self.engine.close_trade(order_id)

    async def _portfolio(self, args: list[str]) -> Any:
        snap = self.engine.get_portfolio_snapshot()
        self.bus.log(
            EventLevel.INFO,
            f"Portfolio cash={snap.cash_balance:.2f} eq={snap.equity:.2f} "
            f"uPnL={snap.unrealized_pnl:.2f}",
        )
        return snap

    async def _start_bot(self, args: list[str]) -> bool:
        self.engine.set_bot_running(True)
        return True

    async def _stop_bot(self, args: list[str]) -> bool:
        self.engine.set_bot_running(False)
        return False

    async def _switch_strategy(self, args: list[str]) -> str:
        strategy = _arg(args, 0, DEFAULT_STRATEGY)
        self.engine.switch_strategy(strategy)
        return strategy

    async def _review(self, args: list[str]) -> ReviewRequest:
        order = OrderRequest(
            instrument=_arg(args, 0, DEFAULT_COMMAND_INSTRUMENT),
            quantity=Decimal(_arg(args, 1, DEFAULT_COMMAND_QTY)),
            side=OrderSide(_arg(args, 2, OrderSide.BUY.value).lower()),
            type=OrderType.MARKET,
            strategy=self.engine.strategy,
            source=OrderSource.AUTO,
        )
        return self.engine.request_review(order, "Manual review command")

    async def _approve(self, args: list[str]) -> OrderReceipt:
        return await self.reviews.approve()

    async def _reject(self, args: list[str]) -> ReviewRequest:
        return self.reviews.reject()


def _arg(args: list[str], index: int, default: Any) -> Any:
    return args[index] if len(args) > index else default

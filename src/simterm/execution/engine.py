"""Execution Engine."""

from __future__ import annotations

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
    ReviewRequest,
    generate_id,
)
from simterm.bus.event_bus import EventBus, Subscription
from simterm.bus.events import BotStateEvent, StrategyChangedEvent, Topic
from simterm.config_loader import EngineConfig
from simterm.constants import (
    BOT_QTY_MIN,
    BOT_QTY_RANGE,
    QTY_QUANTUM,
    REVIEW_CONFIDENCE_MIN,
    REVIEW_CONFIDENCE_RANGE,
    EventLevel,
    OrderSide,
    OrderSource,
    OrderType,
)
from simterm.data.market_data import Tick
from simterm.errors import PositionNotFoundError
from simterm.risk.risk_governor import RiskGovernor
from simterm.scheduler.coalescer import Coalescer
from simterm.scheduler.periodic import PeriodicTask

logger = logging.getLogger(__name__)


class ExecutionEngine:
    """
    Command surface of the simulated trading terminal.

    Gates order requests through the risk governor, hands accepted orders to
    the execution venue and publishes order, fill, portfolio, review, bot and
    strategy events. Portfolio updates caused by ticks are coalesced.
    """

    def __init__(
        self,
        bus: EventBus,
        broker: ExecutionVenue,
        risk_governor: RiskGovernor,
        config: EngineConfig | None = None,
        rng: random.Random | None = None,
    ):
        self.bus = bus
        self.broker = broker
        self.risk = risk_governor
        self.config = config or EngineConfig()
        self.rng = rng or random.Random()

        self.strategy = self.config.default_strategy
        self._tick_sub: Subscription | None = None
        self._portfolio_publisher = Coalescer(
            self._publish_portfolio,
            self.config.portfolio_debounce_ms / 1000,
            name="portfolio-publisher",
        )
        self._review_bot = PeriodicTask(
            "review-bot", self.config.bot_interval_ms / 1000, self._generate_review
        )

        self.broker.add_fill_callback(self.on_fill)

    @property
    def bot_running(self) -> bool:
        return self._review_bot.running

    @property
    def portfolio_publish_pending(self) -> bool:
        return self._portfolio_publisher.pending

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._tick_sub is not None:
            return
        self._tick_sub = self.bus.subscribe(Topic.TICK, self.on_tick)

        self.bus.publish(
            Topic.STRATEGY_CHANGED, StrategyChangedEvent(strategy=self.strategy, timestamp=datetime.now())
        )
        self._publish_portfolio()
        logger.info(f"Execution engine started ({self.strategy})")
        self.bus.log(EventLevel.INFO, f"Trade engine started ({self.strategy})")

    async def stop(self) -> None:
        if self._tick_sub is not None:
            self._tick_sub.cancel()
            self._tick_sub = None
        self._portfolio_publisher.cancel()
        self.set_bot_running(False)
        await self.broker.close()
        logger.info("Execution engine stopped")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def open_trade(self, request: OrderRequest) -> OrderReceipt:
        """
        Risk-check and submit an order.

        Raises:
            RiskRejectError: if any pre-trade limit is violated. Nothing is
                published in that case.
        """
        self.risk.enforce(
            request,
            open_positions=len(self.broker.open_positions()),
            last_price=self.broker.last_price(request.instrument),
        )
        return await self._submit(request)

    async def close_trade(self, order_id: str) -> OrderReceipt:
        """
        Flatten the open position created by ``order_id`` with an opposite market order.

        Raises:
            PositionNotFoundError: if no open position originates from ``order_id``.
        """
        position = self.broker.find_open_position(order_id)
        if position is None:
            raise PositionNotFoundError(order_id)

        working = self.broker.pending_close_for(position.position_id)
        if working is not None:
            logger.info(f"Close already working for {position.position_id}: {working.order_id}")
            return replace(working)

        request = OrderRequest(
            instrument=position.instrument,
            quantity=abs(position.quantity),
            side=position.side.opposite,
            type=OrderType.MARKET,
            strategy=self.strategy,
            source=OrderSource.MANUAL,
        )
        return await self._submit(request, close_position_id=position.position_id)

    async def _submit(
        self, request: OrderRequest, close_position_id: str | None = None
    ) -> OrderReceipt:
        strategy = request.strategy or self.strategy
        receipt = await self.broker.place_order(request, strategy, close_position_id)
        self.bus.publish(Topic.ORDER_CREATED, receipt)
        return receipt

    def set_bot_running(self, running: bool) -> None:
        """Start or stop the periodic auto-review generator."""
        if running == self._review_bot.running:
            return

        if running:
            self._review_bot.start()
        else:
            self._review_bot.stop()

        self.bus.publish(Topic.BOT_STATE, BotStateEvent(running=running, timestamp=datetime.now()))
        logger.info(f"Review bot {'started' if running else 'stopped'}")

    def switch_strategy(self, strategy: str) -> None:
        """Label subsequently opened orders with ``strategy``."""
        self.strategy = strategy
        self.bus.publish(
            Topic.STRATEGY_CHANGED, StrategyChangedEvent(strategy=strategy, timestamp=datetime.now())
        )
        logger.info(f"Strategy switched to {strategy}")
        self.bus.log(EventLevel.INFO, f"Strategy switched to {strategy}")

    def request_review(self, order: OrderRequest, reason: str) -> ReviewRequest:
        """Publish an order proposal for operator approval. Places nothing."""
        review = ReviewRequest(
            id=generate_id("rev"),
            order=order,
            reason=reason,
            confidence=round(REVIEW_CONFIDENCE_MIN + self.rng.random() * REVIEW_CONFIDENCE_RANGE, 4),
            created_at=datetime.now(),
        )
        self.bus.publish(Topic.REVIEW_REQUESTED, review)
        return review

    def get_portfolio_snapshot(self) -> PortfolioSnapshot:
        return self.broker.snapshot()

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def on_tick(self, tick: Tick) -> None:
        if self.broker.process_tick(tick):
            self._portfolio_publisher.trigger()

    def on_fill(self, fill: OrderFill) -> None:
        self.bus.publish(Topic.ORDER_FILLED, fill)
        self._publish_portfolio()

    def _publish_portfolio(self) -> None:
        self.bus.publish(Topic.PORTFOLIO_UPDATED, self.broker.snapshot())

    def _generate_review(self) -> None:
        instruments = self.broker.known_instruments()
        if not instruments:
            return

        quantity = Decimal(str(BOT_QTY_MIN + self.rng.random() * BOT_QTY_RANGE)).quantize(QTY_QUANTUM)
        order = OrderRequest(
            instrument=self.rng.choice(instruments),
            quantity=quantity,
            side=self.rng.choice([OrderSide.BUY, OrderSide.SELL]),
            type=OrderType.MARKET,
            strategy=self.strategy,
            source=OrderSource.AUTO,
        )
        self.request_review(order, "Auto signal requires review")

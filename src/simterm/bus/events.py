"""Event topics and their payload types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from simterm.broker.models import OrderFill, OrderReceipt, PortfolioSnapshot, ReviewRequest
from simterm.constants import EventLevel
from simterm.data.market_data import ConnectionEvent, Tick


class Topic(str, Enum):
    """Closed set of bus topics."""

    TICK = "market.tick"
    CONNECTION = "market.connection"
    ORDER_CREATED = "order.created"
    ORDER_FILLED = "order.filled"
    PORTFOLIO_UPDATED = "portfolio.updated"
    REVIEW_REQUESTED = "review.requested"
    BOT_STATE = "bot.state"
    STRATEGY_CHANGED = "strategy.changed"
    METRICS_UPDATED = "metrics.updated"
    COMMAND_LATENCY = "command.latency"
    LOG = "log"


@dataclass(frozen=True)
class LogEvent:
    """Operator-facing log line."""

    level: EventLevel
    message: str
    timestamp: datetime


@dataclass(frozen=True)
class BotStateEvent:
    running: bool
    timestamp: datetime


@dataclass(frozen=True)
class StrategyChangedEvent:
    strategy: str
    timestamp: datetime


@dataclass(frozen=True)
class CommandLatencySample:
    """Wall time spent executing one operator command."""

    command: str
    ms: float
    timestamp: datetime


@dataclass(frozen=True)
class MetricsSnapshot:
    """Rolling throughput and latency statistics."""

    ticks_per_sec: float
    orders_created: int
    orders_filled: int
    command_p50_ms: float
    command_p99_ms: float
    updated_at: datetime


TOPIC_PAYLOADS: dict[Topic, type] = {
    Topic.TICK: Tick,
    Topic.CONNECTION: ConnectionEvent,
    Topic.ORDER_CREATED: OrderReceipt,
    Topic.ORDER_FILLED: OrderFill,
    Topic.PORTFOLIO_UPDATED: PortfolioSnapshot,
    Topic.REVIEW_REQUESTED: ReviewRequest,
    Topic.BOT_STATE: BotStateEvent,
    Topic.STRATEGY_CHANGED: StrategyChangedEvent,
    Topic.METRICS_UPDATED: MetricsSnapshot,
    Topic.COMMAND_LATENCY: CommandLatencySample,
    Topic.LOG: LogEvent,
}

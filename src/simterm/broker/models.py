"""Order, position and portfolio models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from simterm.constants import (
    OrderSide,
    OrderSource,
    OrderStatus,
    OrderType,
    PositionStatus,
)


def generate_id(prefix: str) -> str:
    """Generate unique ID with a readable prefix."""
    return f"{prefix}_{uuid4().hex[:12]}"


@dataclass(frozen=True)
class OrderRequest:
    """Request to place an order."""

    instrument: str
    quantity: Decimal
    side: OrderSide
    type: OrderType = OrderType.MARKET
    limit_price: Decimal | None = None
    strategy: str | None = None
    source: OrderSource = OrderSource.MANUAL


@dataclass
class OrderReceipt:
    """Acknowledgement of an accepted order."""

    order_id: str
    instrument: str
    quantity: Decimal
    side: OrderSide
    type: OrderType
    status: OrderStatus
    created_at: datetime
    strategy: str


@dataclass(frozen=True)
class OrderFill:
    """Simulated execution of an accepted order."""

    order_id: str
    instrument: str
    quantity: Decimal
    side: OrderSide
    fill_price: Decimal
    fee: Decimal
    latency_ms: int
    filled_at: datetime

    @property
    def gross(self) -> Decimal:
        return self.quantity * self.fill_price


@dataclass
class Position:
    """Holding created by one opening fill."""

    position_id: str
    source_order_id: str
    instrument: str
    quantity: Decimal  # + Long, - Short
    avg_entry_price: Decimal
    mark_price: Decimal
    realized_pnl: Decimal = Decimal("0")
    unrealized_pnl: Decimal = Decimal("0")
    status: PositionStatus = PositionStatus.OPEN
    opened_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def side(self) -> OrderSide:
        return OrderSide.BUY if self.quantity > 0 else OrderSide.SELL


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Point-in-time readout of the portfolio."""

    cash_balance: Decimal
    equity: Decimal
    margin_used: Decimal
    realized_pnl: Decimal
    unrealized_pnl: Decimal
    positions: list[Position]
    updated_at: datetime

    @property
    def open_positions(self) -> list[Position]:
        return [p for p in self.positions if p.is_open]


@dataclass(frozen=True)
class ReviewRequest:
    """Order proposed by automation, awaiting operator approval."""

    id: str
    order: OrderRequest
    reason: str
    confidence: float
    created_at: datetime

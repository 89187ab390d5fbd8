"""Base execution venue interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from decimal import Decimal

from simterm.broker.models import OrderFill, OrderReceipt, OrderRequest, PortfolioSnapshot, Position
from simterm.data.market_data import Tick

FillCallback = Callable[[OrderFill], Awaitable[None] | None]


class ExecutionVenue(ABC):
    """Accepts orders and reports fills. The simulator and a real backend both fit here."""

    def __init__(self):
        self._fill_callbacks: list[FillCallback] = []

    def add_fill_callback(self, callback: FillCallback) -> None:
        """Register callback for fill events."""
        self._fill_callbacks.append(callback)

    @abstractmethod
    async def place_order(
        self, request: OrderRequest, strategy: str, close_position_id: str | None = None
    ) -> OrderReceipt:
        """Accept an order and schedule its execution."""
        pass

    @abstractmethod
    def process_tick(self, tick: Tick) -> bool:
        """Mark positions to a new price. Returns True if any open position changed."""
        pass

    @abstractmethod
    def last_price(self, instrument: str) -> Decimal | None:
        """Last observed price for an instrument, if any."""
        pass

    @abstractmethod
    def open_positions(self) -> list[Position]:
        """Currently open positions."""
        pass

    @abstractmethod
    def known_instruments(self) -> list[str]:
        """Instruments with at least one observed price."""
        pass

    @abstractmethod
    def find_open_position(self, order_id: str) -> Position | None:
        """Open position created by the fill of ``order_id``."""
        pass

    @abstractmethod
    def pending_close_for(self, position_id: str) -> OrderReceipt | None:
        """Closing order already working against ``position_id``, if any."""
        pass

    @abstractmethod
    def snapshot(self) -> PortfolioSnapshot:
        """Recompute the portfolio readout."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Abandon any executions still in flight."""
        pass

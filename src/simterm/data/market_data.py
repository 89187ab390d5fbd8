"""Market data structures and types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from simterm.constants import ConnectionState, FeedSource


@dataclass(frozen=True)
class Tick:
    """Individual price observation for one instrument."""

    instrument: str
    price: Decimal
    bid: Decimal
    ask: Decimal
    volume: Decimal
    timestamp: datetime

    @property
    def spread(self) -> Decimal:
        return self.ask - self.bid


@dataclass(frozen=True)
class ConnectionEvent:
    """Feed connection state transition."""

    source: FeedSource
    state: ConnectionState
    timestamp: datetime
    message: str | None = None

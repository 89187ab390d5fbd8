"""Simulation Data Feed."""

from __future__ import annotations

import logging
import random
from datetime import datetime
from decimal import Decimal

from simterm.bus.event_bus import EventBus
from simterm.bus.events import Topic
from simterm.config_loader import FeedConfig
from simterm.constants import (
    BURST_MAX_TICKS,
    BURST_MIN_TICKS,
    BURST_PROBABILITY,
    DRIFT_FACTOR,
    MIN_SPREAD,
    PRICE_FLOOR,
    PRICE_QUANTUM,
    QTY_QUANTUM,
    SEED_PRICE_MIN,
    SEED_PRICE_RANGE,
    SPIKE_FACTOR,
    SPIKE_PROBABILITY,
    SPREAD_FACTOR,
    VOLUME_MIN,
    VOLUME_RANGE,
    ConnectionState,
    EventLevel,
    FeedSource,
)
from simterm.data.base import MarketFeed
from simterm.data.market_data import ConnectionEvent, Tick
from simterm.scheduler.periodic import PeriodicTask

logger = logging.getLogger(__name__)


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


class SimMarketFeed(MarketFeed):
    """
    Generates synthetic market data for simulation.

    Prices follow a mean-zero random walk with rare spikes. Each frame emits
    a randomly sized batch of ticks, occasionally inflated by a burst, spread
    across uniformly chosen instruments.
    """

    def __init__(
        self,
        bus: EventBus,
        instruments: list[str],
        config: FeedConfig | None = None,
        rng: random.Random | None = None,
    ):
        self.bus = bus
        self.instruments = list(instruments)
        self.config = config or FeedConfig()
        self.rng = rng or random.Random()
        self.current_prices: dict[str, Decimal] = {
            symbol: _dec(SEED_PRICE_MIN + self.rng.random() * SEED_PRICE_RANGE).quantize(PRICE_QUANTUM)
            for symbol in self.instruments
        }
        self.ticks_emitted = 0
        self._running = False
        self._frames = PeriodicTask(
            "sim-feed-frames", self.config.frame_ms / 1000, self._on_frame
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start generating ticks."""
        if self._running:
            return
        self._running = True

        self._publish_state(ConnectionState.CONNECTING)
        self._publish_state(ConnectionState.CONNECTED, "Sim feed connected")
        self._frames.start()

        logger.info(
            f"SimMarketFeed started for {self.instruments} "
            f"({self.config.min_ticks_per_second}-{self.config.max_ticks_per_second} ticks/s)"
        )
        self.bus.log(EventLevel.INFO, "Sim market feed started")

    async def stop(self) -> None:
        """Stop generation."""
        if not self._running:
            return
        self._running = False
        self._frames.stop()

        self._publish_state(ConnectionState.DISCONNECTED, "Sim feed disconnected")
        logger.info(f"SimMarketFeed stopped after {self.ticks_emitted} ticks")

    def frame_tick_count(self) -> int:
        """Number of ticks to emit in the next frame."""
        target = self.rng.randint(self.config.min_ticks_per_second, self.config.max_ticks_per_second)
        per_frame = max(1, (target * self.config.frame_ms) // 1000)
        burst = 0
        if self.rng.random() < BURST_PROBABILITY:
            burst = self.rng.randint(BURST_MIN_TICKS, BURST_MAX_TICKS)
        return per_frame + burst

    def next_tick(self) -> Tick:
        """Advance a random instrument one step and return its tick."""
        instrument = self.rng.choice(self.instruments)
        prev = self.current_prices[instrument]

        drift = prev * _dec(self.rng.random() - 0.5) * DRIFT_FACTOR
        spike = Decimal("0")
        if self.rng.random() < SPIKE_PROBABILITY:
            spike = prev * _dec(self.rng.random() - 0.5) * SPIKE_FACTOR

        price = max(PRICE_FLOOR, (prev + drift + spike).quantize(PRICE_QUANTUM))
        self.current_prices[instrument] = price

        half_spread = max(MIN_SPREAD, price * SPREAD_FACTOR) / 2
        volume = _dec(VOLUME_MIN + self.rng.random() * VOLUME_RANGE).quantize(QTY_QUANTUM)

        return Tick(
            instrument=instrument,
            price=price,
            bid=price - half_spread,
            ask=price + half_spread,
            volume=volume,
            timestamp=datetime.now(),
        )

    def _on_frame(self) -> None:
        if not self._running:
            return
        for _ in range(self.frame_tick_count()):
            self.bus.publish(Topic.TICK, self.next_tick())
            self.ticks_emitted += 1

    def _publish_state(self, state: ConnectionState, message: str | None = None) -> None:
        self.bus.publish(
            Topic.CONNECTION,
            ConnectionEvent(
                source=FeedSource.SIM, state=state, timestamp=datetime.now(), message=message
            ),
        )

"""Metrics Aggregator.

Observes ticks, order events and command latencies on the bus and
periodically publishes a rolling ``MetricsSnapshot``.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from collections.abc import Sequence
from datetime import datetime, timedelta

from simterm.bus.event_bus import EventBus, Subscription
from simterm.bus.events import CommandLatencySample, MetricsSnapshot, Topic
from simterm.config_loader import MetricsConfig
from simterm.data.market_data import Tick
from simterm.scheduler.periodic import PeriodicTask

logger = logging.getLogger(__name__)


def percentile(values: Sequence[float], p: float) -> float:
    """
    Nearest-rank percentile of ``values``.

    Uses ``idx = min(len - 1, floor(p / 100 * len))`` on the ascending sort.
    An empty input yields 0.
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    idx = min(len(ordered) - 1, math.floor(p / 100 * len(ordered)))
    return float(ordered[idx])


class MetricsAggregator:
    """Sliding-window tick rate, order counters and command latency percentiles."""

    def __init__(self, bus: EventBus, config: MetricsConfig | None = None):
        self.bus = bus
        self.config = config or MetricsConfig()

        self.window = timedelta(seconds=self.config.window_sec)
        self.tick_times: deque[datetime] = deque()
        self.orders_created = 0
        self.orders_filled = 0
        self.latencies: deque[float] = deque(maxlen=self.config.latency_buffer_size)

        self._subs: list[Subscription] = []
        self._publisher = PeriodicTask(
            "metrics-publisher", self.config.publish_ms / 1000, self.publish_snapshot
        )

    @property
    def is_running(self) -> bool:
        return self._publisher.running

    async def start(self) -> None:
        if self._subs:
            return
        self._subs = [
            self.bus.subscribe(Topic.TICK, self.on_tick),
            self.bus.subscribe(Topic.ORDER_CREATED, self.on_order_created),
            self.bus.subscribe(Topic.ORDER_FILLED, self.on_order_filled),
            self.bus.subscribe(Topic.COMMAND_LATENCY, self.on_command_latency),
        ]
        self._publisher.start()
        logger.info(
            f"Metrics aggregator started (window={self.config.window_sec}s, "
            f"publish every {self.config.publish_ms}ms)"
        )

    async def stop(self) -> None:
        for sub in self._subs:
            sub.cancel()
        self._subs = []
        self._publisher.stop()
        logger.info("Metrics aggregator stopped")

    # Handlers

    def on_tick(self, tick: Tick) -> None:
        now = datetime.now()
        self.tick_times.append(now)
        self._prune(now)

    def on_order_created(self, _receipt: object) -> None:
        self.orders_created += 1

    def on_order_filled(self, _fill: object) -> None:
        self.orders_filled += 1

    def on_command_latency(self, sample: CommandLatencySample) -> None:
        self.latencies.append(sample.ms)

    # Snapshot

    def _prune(self, now: datetime) -> None:
        cutoff = now - self.window
        while self.tick_times and self.tick_times[0] < cutoff:
            self.tick_times.popleft()

    def ticks_per_second(self) -> float:
        self._prune(datetime.now())
        return round(len(self.tick_times) / self.config.window_sec, 2)

    def snapshot(self) -> MetricsSnapshot:
        latencies = list(self.latencies)
        return MetricsSnapshot(
            ticks_per_sec=self.ticks_per_second(),
            orders_created=self.orders_created,
            orders_filled=self.orders_filled,
            command_p50_ms=percentile(latencies, 50),
            command_p99_ms=percentile(latencies, 99),
            updated_at=datetime.now(),
        )

    def publish_snapshot(self) -> MetricsSnapshot:
        snapshot = self.snapshot()
        self.bus.publish(Topic.METRICS_UPDATED, snapshot)
        return snapshot

"""SimTerm Main Application."""

from __future__ import annotations

import asyncio
import logging
import random
import signal
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from simterm.broker.sim import SimBroker
from simterm.bus.event_bus import EventBus
from simterm.config_loader import AppConfig, load_config
from simterm.constants import LOG_FORMAT, EventLevel
from simterm.data.sim_feed import SimMarketFeed
from simterm.errors import RegistrationError
from simterm.execution.engine import ExecutionEngine
from simterm.journal.journaler import Journaler
from simterm.metrics.aggregator import MetricsAggregator
from simterm.risk.risk_governor import RiskGovernor
from simterm.ui.commands import CommandDispatcher, ReviewQueue
from simterm.ui.dashboard import TerminalDashboard

logger = logging.getLogger(__name__)

COMMAND_PAUSE_SEC = 0.1


class Component(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class ComponentRegistry:
    """Named components, started in registration order and stopped in reverse."""

    def __init__(self) -> None:
        self._components: dict[str, Component] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._components

    @property
    def names(self) -> list[str]:
        return list(self._components)

    def register(self, name: str, component: Component) -> None:
        if name in self._components:
            raise RegistrationError(f"Component '{name}' is already registered")
        self._components[name] = component
        logger.debug(f"Registered component: {name}")

    def get(self, name: str) -> Component | None:
        return self._components.get(name)

    async def unregister(self, name: str) -> None:
        component = self._components.pop(name, None)
        if component is not None:
            await component.stop()

    async def start_all(self) -> None:
        for name, component in self._components.items():
            await component.start()
            logger.debug(f"Started {name}")

    async def stop_all(self) -> None:
        for name, component in reversed(list(self._components.items())):
            try:
                await component.stop()
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}", exc_info=True)
        self._components.clear()


class SimTermApp:
    """Main application orchestrator."""

    def __init__(
        self,
        config_path: str | Path | None = "config/config.yaml",
        config: AppConfig | None = None,
    ):
        self.config_path = Path(config_path) if config_path is not None else None
        self.config: AppConfig | None = config

        # Components
        self.bus: EventBus | None = None
        self.registry = ComponentRegistry()
        self.broker: SimBroker | None = None
        self.risk: RiskGovernor | None = None
        self.engine: ExecutionEngine | None = None
        self.feed: SimMarketFeed | None = None
        self.metrics: MetricsAggregator | None = None
        self.journal: Journaler | None = None
        self.dashboard: TerminalDashboard | None = None
        self.reviews: ReviewQueue | None = None
        self.dispatcher: CommandDispatcher | None = None

        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    def _setup_logging(self) -> None:
        level = self.config.environment.log_level.value if self.config else "INFO"
        logging.basicConfig(level=level, format=LOG_FORMAT)

    async def initialize(self) -> None:
        """Load config and build components around one bus."""
        if self.config is None:
            if self.config_path is None:
                self.config = AppConfig()
            else:
                self.config = load_config(self.config_path.absolute())

        self._setup_logging()
        logger.info("Initializing SimTerm...")

        seed = self.config.environment.seed
        master = random.Random(seed)
        if seed is not None:
            logger.info(f"Deterministic run with seed {seed}")

        self.bus = EventBus()

        self.risk = RiskGovernor(self.config.risk)
        self.broker = SimBroker(self.config.engine, rng=random.Random(master.getrandbits(64)))
        self.engine = ExecutionEngine(
            self.bus,
            self.broker,
            self.risk,
            self.config.engine,
            rng=random.Random(master.getrandbits(64)),
        )
        self.feed = SimMarketFeed(
            self.bus,
            self.config.instruments,
            self.config.feed,
            rng=random.Random(master.getrandbits(64)),
        )
        self.metrics = MetricsAggregator(self.bus, self.config.metrics)
        self.reviews = ReviewQueue(self.bus, self.engine)
        self.dispatcher = CommandDispatcher(self.bus, self.engine, self.reviews)

        if self.config.journal.enabled:
            self.journal = Journaler(self.bus, self.config.journal)
            self.registry.register("journal", self.journal)

        if self.config.ui.dashboard:
            self.dashboard = TerminalDashboard(
                self.bus, self.config.ui, reviews=self.reviews, risk=self.risk
            )
            self.registry.register("dashboard", self.dashboard)

        self.registry.register("metrics", self.metrics)
        self.registry.register("engine", self.engine)
        self.registry.register("reviews", self.reviews)
        self.registry.register("feed", self.feed)

        logger.info(f"Components: {', '.join(self.registry.names)}")

    async def start(self) -> None:
        if self.bus is None:
            await self.initialize()
        if self._running:
            return

        await self.registry.start_all()
        self._running = True
        logger.info("SimTerm started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        logger.info("Shutting down...")
        self.bus.log(EventLevel.INFO, "Shutting down...")
        await self.bus.drain()

        await self.registry.stop_all()
        await self.bus.shutdown()
        logger.info(f"Risk checks: {self.risk.state.summary()}")
        logger.info("Shutdown complete.")

    async def run_commands(self, commands: Iterable[str]) -> None:
        """Execute a command script, pausing between lines so fills can land."""
        for line in commands:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if self._shutdown_event.is_set():
                break
            logger.info(f"> {line}")
            await self.dispatcher.execute(line)
            await asyncio.sleep(COMMAND_PAUSE_SEC)

        # let the last fills settle
        await asyncio.sleep(self.config.engine.fill_latency_max_ms / 1000)

    async def run(
        self, duration: float | None = None, commands: Iterable[str] | None = None
    ) -> None:
        """Run until a signal, ``duration`` seconds, or the end of ``commands``."""
        await self.start()

        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self._handle_signal)
        except NotImplementedError:
            logger.warning("Signal handlers not supported in this environment. Use Ctrl+C to stop.")

        waiters = [asyncio.ensure_future(self._shutdown_event.wait())]
        if commands is not None:
            waiters.append(asyncio.ensure_future(self.run_commands(commands)))
        if duration is not None:
            waiters.append(asyncio.ensure_future(asyncio.sleep(duration)))

        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            pass
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
            await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def _handle_signal(self) -> None:
        logger.info("Signal received, initiating shutdown...")
        self.request_shutdown()

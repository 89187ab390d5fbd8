"""Terminal Dashboard.

Console status panel showing market rows, portfolio, metrics, the active review
request and recent log lines.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal

from simterm.broker.models import OrderRequest, PortfolioSnapshot
from simterm.bus.event_bus import EventBus, Subscription
from simterm.bus.events import BotStateEvent, LogEvent, MetricsSnapshot, StrategyChangedEvent, Topic
from simterm.config_loader import UIConfig
from simterm.constants import DEFAULT_STRATEGY, ConnectionState, EventLevel
from simterm.data.market_data import ConnectionEvent, Tick
from simterm.risk.risk_governor import RiskGovernor
from simterm.scheduler.periodic import PeriodicTask
from simterm.ui.commands import ReviewQueue

logger = logging.getLogger(__name__)

PRICE_HISTORY_LEN = 80
VISIBLE_LOG_LINES = 8
SPARK_CHARS = " .:-=+*#%@"


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"
    DIM = "\033[2m"


def sparkline(values: Sequence[Decimal | float], width: int = 24) -> str:
    """Render the last ``width`` values as a fixed-width text sparkline."""
    if not values:
        return "." * max(1, width)

    window = [float(v) for v in list(values)[-width:]]
    low, high = min(window), max(window)
    span = (high - low) or 1.0

    out = []
    for value in window:
        idx = min(len(SPARK_CHARS) - 1, int((value - low) / span * len(SPARK_CHARS)))
        out.append(SPARK_CHARS[idx])

    return "." * (width - len(out)) + "".join(out)


class TerminalDashboard:
    """
    Pure consumer of bus events that periodically prints a status panel.
    """

    def __init__(
        self,
        bus: EventBus,
        config: UIConfig | None = None,
        reviews: ReviewQueue | None = None,
        risk: RiskGovernor | None = None,
    ):
        self.bus = bus
        self.config = config or UIConfig()
        self.reviews = reviews
        self.risk = risk

        self.last_ticks: dict[str, Tick] = {}
        self.history: dict[str, deque[Decimal]] = {}
        self.portfolio: PortfolioSnapshot | None = None
        self.metrics: MetricsSnapshot | None = None
        self.connection_state = ConnectionState.CONNECTING
        self.bot_running = False
        self.strategy = DEFAULT_STRATEGY
        self.logs: deque[LogEvent] = deque(maxlen=self.config.log_buffer)

        self._subs: list[Subscription] = []
        self._refresher = PeriodicTask("dashboard-refresh", self.config.refresh_ms / 1000, self.render)

    async def start(self) -> None:
        if self._subs:
            return
        self._subs = [
            self.bus.subscribe(Topic.TICK, self.on_tick),
            self.bus.subscribe(Topic.CONNECTION, self.on_connection),
            self.bus.subscribe(Topic.PORTFOLIO_UPDATED, self.on_portfolio),
            self.bus.subscribe(Topic.METRICS_UPDATED, self.on_metrics),
            self.bus.subscribe(Topic.BOT_STATE, self.on_bot_state),
            self.bus.subscribe(Topic.STRATEGY_CHANGED, self.on_strategy),
            self.bus.subscribe(Topic.LOG, self.on_log),
        ]
        self._refresher.start()

    async def stop(self) -> None:
        for sub in self._subs:
            sub.cancel()
        self._subs = []
        self._refresher.stop()

    # Event handlers

    def on_tick(self, tick: Tick) -> None:
        self.last_ticks[tick.instrument] = tick
        history = self.history.setdefault(tick.instrument, deque(maxlen=PRICE_HISTORY_LEN))
        history.append(tick.price)

    def on_connection(self, event: ConnectionEvent) -> None:
        self.connection_state = event.state

    def on_portfolio(self, snapshot: PortfolioSnapshot) -> None:
        self.portfolio = snapshot

    def on_metrics(self, snapshot: MetricsSnapshot) -> None:
        self.metrics = snapshot

    def on_bot_state(self, event: BotStateEvent) -> None:
        self.bot_running = event.running

    def on_strategy(self, event: StrategyChangedEvent) -> None:
        self.strategy = event.strategy

    def on_log(self, event: LogEvent) -> None:
        self.logs.append(event)

    # Rendering

    def _connection_color(self) -> str:
        if self.connection_state == ConnectionState.CONNECTED:
            return f"{Colors.GREEN}{self.connection_state.value}{Colors.RESET}"
        if self.connection_state == ConnectionState.DISCONNECTED:
            return f"{Colors.RED}{self.connection_state.value}{Colors.RESET}"
        return f"{Colors.YELLOW}{self.connection_state.value}{Colors.RESET}"

    @staticmethod
    def _pnl_color(value: Decimal) -> str:
        color = Colors.GREEN if value >= 0 else Colors.RED
        return f"{color}{value:+.2f}{Colors.RESET}"

    @staticmethod
    def _level_color(level: EventLevel) -> str:
        if level == EventLevel.ERROR:
            return Colors.RED
        if level == EventLevel.WARN:
            return Colors.YELLOW
        return Colors.DIM

    def build_lines(self) -> list[str]:
        now = datetime.now()
        bot = f"{Colors.GREEN}ON{Colors.RESET}" if self.bot_running else f"{Colors.DIM}OFF{Colors.RESET}"

        lines = [""]
        lines.append(f"{Colors.CYAN}{'=' * 78}{Colors.RESET}")
        lines.append(
            f"  {Colors.BOLD}SIMTERM{Colors.RESET}  |  Strategy: {self.strategy}  |  Bot: {bot}  |  "
            f"Feed: {self._connection_color()}  |  {now.strftime('%H:%M:%S')}"
        )
        lines.append(f"{Colors.CYAN}{'-' * 78}{Colors.RESET}")

        lines.append(f"  {'INSTRUMENT':<10} {'PRICE':>14} {'BID':>14} {'ASK':>14}  TREND")
        for instrument in sorted(self.last_ticks):
            tick = self.last_ticks[instrument]
            spark = sparkline(self.history.get(instrument, ()), self.config.sparkline_width)
            lines.append(
                f"  {instrument:<10} {tick.price:>14.4f} {tick.bid:>14.4f} {tick.ask:>14.4f}  {spark}"
            )

        lines.append(f"{Colors.CYAN}{'-' * 78}{Colors.RESET}")
        if self.portfolio is not None:
            p = self.portfolio
            lines.append(
                f"  Cash: {p.cash_balance:>12.2f}  Equity: {p.equity:>12.2f}  "
                f"Margin: {p.margin_used:>10.2f}"
            )
            lines.append(
                f"  Realized: {self._pnl_color(p.realized_pnl)}  "
                f"Unrealized: {self._pnl_color(p.unrealized_pnl)}  "
                f"Open: {len(p.open_positions)}"
            )
            for pos in p.open_positions:
                lines.append(
                    f"    {pos.source_order_id:<18} {pos.instrument:<8} {pos.quantity:>+10.4f} "
                    f"@ {pos.avg_entry_price:.4f}  uPnL {self._pnl_color(pos.unrealized_pnl)}"
                )
        else:
            lines.append(f"  {Colors.DIM}Waiting for portfolio...{Colors.RESET}")

        if self.metrics is not None:
            m = self.metrics
            lines.append(f"{Colors.CYAN}{'-' * 78}{Colors.RESET}")
            lines.append(
                f"  Ticks/s: {m.ticks_per_sec:>8.2f}  Orders: {m.orders_created}/{m.orders_filled}  "
                f"Cmd p50: {m.command_p50_ms:.2f}ms  p99: {m.command_p99_ms:.2f}ms"
            )

        if self.risk is not None:
            state = self.risk.state
            risk_line = f"  Risk: {state.summary()}"
            if state.last_reject_reason:
                risk_line += f"  last: {Colors.RED}{state.last_reject_reason}{Colors.RESET}"
            lines.append(risk_line)

        lines.extend(self._review_lines())

        if self.logs:
            lines.append(f"{Colors.CYAN}{'-' * 78}{Colors.RESET}")
            for event in list(self.logs)[-VISIBLE_LOG_LINES:]:
                color = self._level_color(event.level)
                lines.append(
                    f"  {color}{event.timestamp.strftime('%H:%M:%S')} "
                    f"{event.level.value:<5} {event.message}{Colors.RESET}"
                )

        lines.append(f"{Colors.CYAN}{'=' * 78}{Colors.RESET}")
        return lines

    def _review_lines(self) -> list[str]:
        review = self.reviews.active if self.reviews is not None else None
        if review is None:
            return []

        order = review.order
        lines = [
            f"{Colors.CYAN}{'-' * 78}{Colors.RESET}",
            f"  {Colors.BOLD}{Colors.YELLOW}Review Request{Colors.RESET}  {review.id}  "
            f"({len(self.reviews)} pending)",
            f"    {order.side.value.upper()} {order.quantity} {order.instrument} "
            f"{order.type.value.upper()}  confidence {review.confidence * 100:.0f}%",
            f"    {review.reason}",
        ]
        if self.risk is not None:
            lines.append(f"    Risk check: {self._review_risk(order)}")
        lines.append(f"    {Colors.DIM}/approve or /reject{Colors.RESET}")
        return lines

    def _review_risk(self, order: OrderRequest) -> str:
        open_positions = len(self.portfolio.open_positions) if self.portfolio is not None else 0
        tick = self.last_ticks.get(order.instrument)
        allowed, reason = self.risk.check_trade_risk(
            order, open_positions, tick.price if tick is not None else None
        )
        if allowed:
            return f"{Colors.GREEN}OK{Colors.RESET}"
        return f"{Colors.RED}{reason}{Colors.RESET}"

    def render(self) -> None:
        """Render full dashboard to console."""
        print("\n".join(self.build_lines()))

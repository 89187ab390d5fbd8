"""Core constants for SimTerm."""

from decimal import Decimal
from enum import Enum


class OrderType(str, Enum):
    """Order type for entries."""

    MARKET = "market"
    LIMIT = "limit"


class OrderSide(str, Enum):
    """Order side (buy/sell)."""

    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderStatus(str, Enum):
    """Order lifecycle status."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FILLED = "filled"
    CANCELLED = "cancelled"


class OrderSource(str, Enum):
    """Who issued an order."""

    MANUAL = "manual"
    AUTO = "auto"
    REVIEW_APPROVED = "review-approved"


class PositionStatus(str, Enum):
    """Position lifecycle status."""

    OPEN = "open"
    CLOSED = "closed"


class ConnectionState(str, Enum):
    """Market feed connection state."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


class FeedSource(str, Enum):
    """Origin of market data."""

    SIM = "sim"
    EXCHANGE = "exchange"


class RiskLimit(str, Enum):
    """Names of the pre-trade limits enforced by the risk governor."""

    QUANTITY = "quantity"
    OPEN_POSITIONS = "open_positions"
    NOTIONAL = "notional"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class EventLevel(str, Enum):
    """Severity of operator-facing log events."""

    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


# ============================================
# Simulation Parameters
# ============================================

SEED_PRICE_MIN = 100
SEED_PRICE_RANGE = 40_000
PRICE_FLOOR = Decimal("0.0001")
DRIFT_FACTOR = Decimal("0.0013")
SPIKE_FACTOR = Decimal("0.01")
SPIKE_PROBABILITY = 0.015
BURST_PROBABILITY = 0.10
BURST_MIN_TICKS = 5
BURST_MAX_TICKS = 14
MIN_SPREAD = Decimal("0.01")
SPREAD_FACTOR = Decimal("0.0002")
VOLUME_MIN = 0.1
VOLUME_RANGE = 5.0

SLIPPAGE_FACTOR = Decimal("0.0006")
FEE_RATE = Decimal("0.0005")
MIN_FEE = Decimal("0.1")
MARGIN_RATE = Decimal("0.1")
SYNTHETIC_MARK_MIN = 100
SYNTHETIC_MARK_RANGE = 1000

REVIEW_CONFIDENCE_MIN = 0.4
REVIEW_CONFIDENCE_RANGE = 0.59
BOT_QTY_MIN = 0.01
BOT_QTY_RANGE = 0.09

PRICE_QUANTUM = Decimal("0.00000001")
QTY_QUANTUM = Decimal("0.0001")

# ============================================
# Default Values
# ============================================

DEFAULT_INSTRUMENTS = ["BTCUSD", "ETHUSD", "SOLUSD", "AAPL"]
DEFAULT_INITIAL_CASH = Decimal("100000")
DEFAULT_STRATEGY = "mean-reversion"

DEFAULT_MIN_TICKS_PER_SECOND = 50
DEFAULT_MAX_TICKS_PER_SECOND = 200
DEFAULT_FRAME_MS = 50

DEFAULT_MAX_ORDER_QTY = Decimal("2")
DEFAULT_MAX_ORDER_NOTIONAL = Decimal("50000")
DEFAULT_MAX_OPEN_POSITIONS = 20

DEFAULT_FILL_LATENCY_MIN_MS = 10
DEFAULT_FILL_LATENCY_MAX_MS = 50
DEFAULT_PORTFOLIO_DEBOUNCE_MS = 75
DEFAULT_BOT_INTERVAL_MS = 2500

DEFAULT_METRICS_WINDOW_SEC = 30
DEFAULT_METRICS_PUBLISH_MS = 1000
DEFAULT_LATENCY_BUFFER_SIZE = 1024

DEFAULT_JOURNAL_PATH = "data/events.ndjson"
DEFAULT_JOURNAL_FLUSH_MS = 1000

# ============================================
# Application Constants
# ============================================

APP_NAME = "simterm"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

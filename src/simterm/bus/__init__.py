"""Event Bus Module - typed in-process publish/subscribe."""

from simterm.bus.event_bus import EventBus, Subscription
from simterm.bus.events import (
    BotStateEvent,
    CommandLatencySample,
    LogEvent,
    MetricsSnapshot,
    StrategyChangedEvent,
    Topic,
)

__all__ = [
    "EventBus",
    "Subscription",
    "Topic",
    "LogEvent",
    "BotStateEvent",
    "StrategyChangedEvent",
    "CommandLatencySample",
    "MetricsSnapshot",
]

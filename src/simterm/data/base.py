"""Base market feed interface."""

from __future__ import annotations

from abc import ABC, abstractmethod


class MarketFeed(ABC):
    """Anything that produces ticks and publishes them on the event bus."""

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Whether the feed is currently producing ticks."""
        pass

    @abstractmethod
    async def start(self) -> None:
        """Connect and begin publishing ticks."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop publishing and disconnect."""
        pass

"""Deadline-based coalescing of repeated triggers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Coalescer:
    """
    Collapses a burst of triggers into one callback invocation.

    Every ``trigger()`` pushes the deadline ``delay_sec`` into the future. A
    single task waits for the deadline to pass untouched and then fires the
    callback once. ``cancel()`` drops the pending call without firing it.
    """

    def __init__(self, callback: Callable[[], None], delay_sec: float, name: str = "coalescer"):
        self.callback = callback
        self.delay_sec = delay_sec
        self.name = name
        self.fire_count = 0
        self._deadline: float | None = None
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + self.delay_sec
        if not self.pending:
            self._task = loop.create_task(self._wait_and_fire(), name=f"{self.name}-coalesce")

    def cancel(self) -> None:
        task = self._task
        self._task = None
        self._deadline = None
        if task is not None and not task.done():
            task.cancel()
            logger.debug(f"{self.name}: pending call dropped")

    async def _wait_and_fire(self) -> None:
        loop = asyncio.get_running_loop()
        while self._deadline is not None:
            remaining = self._deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)

        self._deadline = None
        self._task = None
        self.fire_count += 1
        try:
            self.callback()
        except Exception as e:
            logger.error(f"{self.name}: coalesced callback failed: {e}", exc_info=True)

"""Fixed-interval background loop."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs ``callback`` every ``interval_sec`` on the running event loop.

    ``start()`` and ``stop()`` are idempotent. Once ``stop()`` returns the
    callback does not fire again. A failing callback is logged and the loop
    keeps going.
    """

    def __init__(
        self,
        name: str,
        interval_sec: float,
        callback: Callable[[], Awaitable[None] | None],
    ):
        self.name = name
        self.interval_sec = interval_sec
        self.callback = callback
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        logger.debug(f"{self.name} started (every {self.interval_sec:.3f}s)")

    def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            logger.debug(f"{self.name} stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_sec)
            try:
                result = self.callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"{self.name} iteration failed: {e}", exc_info=True)

"""Journaler Service."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any

from simterm.bus.event_bus import EventBus, Subscription
from simterm.bus.events import Topic
from simterm.config_loader import JournalConfig
from simterm.journal.models import JournalRow
from simterm.scheduler.periodic import PeriodicTask

logger = logging.getLogger(__name__)


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


def _payload_dict(payload: Any) -> Any:
    if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
        return dataclasses.asdict(payload)
    return payload


def encode_row(row: JournalRow) -> str:
    """Serialize a row as a single JSON line (without the trailing newline)."""
    return json.dumps(row.to_dict(), default=_json_default)


class Journaler:
    """
    Appends every bus event to a newline-delimited JSON file.

    Rows are buffered in memory and written on a fixed cadence. Blocking file
    I/O is offloaded to a single-thread executor; a final flush happens on stop.
    """

    def __init__(self, bus: EventBus, config: JournalConfig | None = None):
        self.bus = bus
        self.config = config or JournalConfig()
        self.path = Path(self.config.path)

        self._buffer: list[JournalRow] = []
        self._subs: list[Subscription] = []
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="journaler")
        self._flusher = PeriodicTask("journal-flush", self.config.flush_ms / 1000, self.flush)
        self.rows_written = 0

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    async def start(self) -> None:
        if self._subs:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._executor, self._ensure_dir_sync)

        self._subs = [self.bus.subscribe(topic, partial(self.record, topic)) for topic in Topic]
        self._flusher.start()
        logger.info(f"Journal writing to {self.path}")

    async def stop(self) -> None:
        # components stopped before us may still have events in flight
        await self.bus.drain()
        for sub in self._subs:
            sub.cancel()
        self._subs = []
        self._flusher.stop()
        await self.flush()
        self._executor.shutdown(wait=True)
        logger.info(f"Journal closed ({self.rows_written} rows written)")

    def record(self, topic: Topic, payload: Any) -> None:
        self._buffer.append(
            JournalRow(event=topic.value, ts=datetime.now(), payload=_payload_dict(payload))
        )

    async def flush(self) -> None:
        """Write buffered rows to disk."""
        if not self._buffer:
            return

        rows, self._buffer = self._buffer, []
        lines = [encode_row(row) for row in rows]

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._executor, self._append_sync, lines)
        except OSError as e:
            logger.error(f"Failed to write {len(lines)} journal rows: {e}", exc_info=True)
            return
        self.rows_written += len(lines)

    def _ensure_dir_sync(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _append_sync(self, lines: list[str]) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")

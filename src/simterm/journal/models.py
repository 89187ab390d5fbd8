"""Journal Models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass
class JournalRow:
    """One appended line of the event journal."""

    event: str
    ts: datetime
    payload: Any

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "ts": self.ts, "payload": self.payload}

"""Risk state tracking."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from simterm.constants import RiskLimit


@dataclass
class RiskState:
    """Running tally of pre-trade checks for the session."""

    checks: int = 0
    accepted: int = 0
    rejections: Counter[RiskLimit] = field(default_factory=Counter)
    last_reject_reason: str = ""

    @property
    def rejected(self) -> int:
        return sum(self.rejections.values())

    def record_accept(self) -> None:
        self.checks += 1
        self.accepted += 1

    def record_reject(self, limit: RiskLimit, reason: str) -> None:
        self.checks += 1
        self.rejections[limit] += 1
        self.last_reject_reason = reason

    def summary(self) -> str:
        """One-line tally, e.g. ``accepted=3 rejected=1 (quantity=1)``."""
        text = f"accepted={self.accepted} rejected={self.rejected}"
        if self.rejections:
            detail = ", ".join(f"{limit.value}={n}" for limit, n in sorted(self.rejections.items()))
            text += f" ({detail})"
        return text

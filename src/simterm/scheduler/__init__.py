"""Scheduler Module - periodic loops and coalesced callbacks."""

from simterm.scheduler.coalescer import Coalescer
from simterm.scheduler.periodic import PeriodicTask

__all__ = [
    "Coalescer",
    "PeriodicTask",
]

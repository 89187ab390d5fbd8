"""UI Module - operator commands and console dashboard."""

from simterm.ui.commands import CommandDispatcher, ReviewQueue
from simterm.ui.dashboard import TerminalDashboard

__all__ = ["CommandDispatcher", "ReviewQueue", "TerminalDashboard"]

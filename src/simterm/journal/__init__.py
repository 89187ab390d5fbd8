"""Journal Module - append-only event log."""

from simterm.journal.journaler import Journaler
from simterm.journal.models import JournalRow

__all__ = ["Journaler", "JournalRow"]

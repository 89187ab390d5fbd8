"""SimTerm - event-driven simulated trading terminal."""

__version__ = "0.1.0"

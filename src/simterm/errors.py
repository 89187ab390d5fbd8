"""Exception types raised by SimTerm components."""

from __future__ import annotations

from simterm.constants import RiskLimit


class SimTermError(Exception):
    """Base class for all SimTerm errors."""


class RiskRejectError(SimTermError):
    """An order request violated a pre-trade risk limit."""

    def __init__(self, limit: RiskLimit, message: str):
        super().__init__(f"Risk reject: {message}")
        self.limit = limit


class PositionNotFoundError(SimTermError, LookupError):
    """No open position exists for the given originating order id."""

    def __init__(self, order_id: str):
        super().__init__(f"No open position for {order_id}")
        self.order_id = order_id


class RegistrationError(SimTermError):
    """A component name was registered twice."""


class BusClosedError(SimTermError):
    """The event bus has been shut down."""

"""Risk governor for enforcing pre-trade limits."""

from __future__ import annotations

import logging
from decimal import Decimal

from simterm.broker.models import OrderRequest
from simterm.config_loader import RiskConfig
from simterm.constants import RiskLimit
from simterm.errors import RiskRejectError
from simterm.risk.limits import RiskState

logger = logging.getLogger(__name__)


class RiskGovernor:
    """
    Authoritative pre-trade risk manager.

    Checks, in order (first violation wins):
    - Order quantity within (0, max_order_qty]
    - Open position count below max_open_positions
    - Order notional at the last known price within max_order_notional
    """

    def __init__(self, risk_config: RiskConfig) -> None:
        self.config = risk_config
        self.state = RiskState()

    def find_violation(
        self,
        request: OrderRequest,
        open_positions: int,
        last_price: Decimal | None = None,
    ) -> tuple[RiskLimit, str] | None:
        """Return the first violated limit and a reason, or None if the order is acceptable."""
        # 1. Quantity
        if request.quantity <= 0 or request.quantity > self.config.max_order_qty:
            return (
                RiskLimit.QUANTITY,
                f"quantity {request.quantity} outside (0, {self.config.max_order_qty}]",
            )

        # 2. Open positions
        if open_positions >= self.config.max_open_positions:
            return (
                RiskLimit.OPEN_POSITIONS,
                f"max open positions {self.config.max_open_positions} reached",
            )

        # 3. Notional (only once a price has been observed)
        if last_price is not None and last_price > 0:
            notional = last_price * request.quantity
            if notional > self.config.max_order_notional:
                return (
                    RiskLimit.NOTIONAL,
                    f"notional {notional:.2f} exceeds limit {self.config.max_order_notional}",
                )

        return None

    def check_trade_risk(
        self,
        request: OrderRequest,
        open_positions: int,
        last_price: Decimal | None = None,
    ) -> tuple[bool, str]:
        """
        Check risk for a proposed order without raising.

        Returns:
            (Allowed, Reason)
        """
        violation = self.find_violation(request, open_positions, last_price)
        if violation is None:
            return True, "OK"
        return False, violation[1]

    def enforce(
        self,
        request: OrderRequest,
        open_positions: int,
        last_price: Decimal | None = None,
    ) -> None:
        """
        Gate an order request.

        Raises:
            RiskRejectError: naming the first limit the request violates.
        """
        violation = self.find_violation(request, open_positions, last_price)
        if violation is None:
            self.state.record_accept()
            return

        limit, reason = violation
        self.state.record_reject(limit, reason)
        logger.warning(f"Risk check failed for {request.instrument}: {reason}")
        raise RiskRejectError(limit, reason)

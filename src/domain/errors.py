from __future__ import annotations

from decimal import Decimal


class InsufficientCreditsError(ValueError):
    """Raised before submission when the balance does not cover the tier cost."""

    def __init__(self, balance: Decimal, cost: Decimal) -> None:
        super().__init__(f"Insufficient credits: balance {balance}, cost {cost}")
        self.balance = balance
        self.cost = cost


class SessionInProgressError(RuntimeError):
    """Raised when a pointer session starts while another one is still active."""

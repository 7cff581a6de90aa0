from __future__ import annotations

import logging
from decimal import Decimal

from src.domain.entities.profile import UNLIMITED_ROLES

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")


def _money(value: Decimal | float | int | str) -> Decimal:
    return Decimal(str(value)).quantize(_CENTS)


class CreditLedger:
    """Optimistic local view of a user's balance.

    Debits are recorded per job id so a refund returns exactly what was taken,
    at most once. Authoritative balances from persistence always overwrite the
    local value (last writer wins).
    """

    def __init__(self, balance: Decimal | float | int | str = 0, role: str = "user") -> None:
        self.balance = _money(balance)
        self.role = role
        self._debits: dict[str, Decimal] = {}

    @property
    def is_unlimited(self) -> bool:
        return self.role in UNLIMITED_ROLES

    def can_afford(self, cost: Decimal) -> bool:
        return self.is_unlimited or self.balance >= cost

    def debit(self, job_id: str, cost: Decimal) -> bool:
        """Take `cost` for `job_id`. Returns False when the role is unlimited and nothing was taken."""
        if self.is_unlimited:
            return False
        if job_id in self._debits:
            raise ValueError(f"Job {job_id} already debited")
        amount = _money(cost)
        self.balance -= amount
        self._debits[job_id] = amount
        return True

    def refund(self, job_id: str) -> Decimal:
        """Give back what `job_id` was charged. Repeated calls refund nothing."""
        amount = self._debits.pop(job_id, None)
        if amount is None:
            return Decimal("0.00")
        self.balance += amount
        return amount

    def settle(self, job_id: str) -> None:
        self._debits.pop(job_id, None)

    def debited(self, job_id: str) -> Decimal | None:
        return self._debits.get(job_id)

    def apply_authoritative(self, balance: Decimal | float | int | str, role: str | None = None) -> None:
        value = _money(balance)
        if value != self.balance:
            logger.debug("Ledger corrected from %s to %s", self.balance, value)
        self.balance = value
        if role is not None:
            self.role = role

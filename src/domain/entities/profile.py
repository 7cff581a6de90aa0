from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

UNLIMITED_ROLES = frozenset({"pro"})


@dataclass(frozen=True)
class ProfileEntity:
    id: str  # user id from Supabase auth
    email: str | None
    credits: Decimal = Decimal("0.00")
    role: str = "user"  # user | pro | admin
    created_at: datetime | None = None

    @property
    def is_unlimited(self) -> bool:
        return self.role in UNLIMITED_ROLES

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from src.domain.services.credit_ledger import CreditLedger
from src.domain.services.quality_service import (
    estimate_duration_ms,
    get_tier,
    progress_fraction,
)


class TestCreditLedger:
    def test_debit_and_refund_return_exact_amount(self):
        ledger = CreditLedger("1.00")
        assert ledger.debit("job-1", Decimal("0.50")) is True
        assert ledger.balance == Decimal("0.50")
        assert ledger.refund("job-1") == Decimal("0.50")
        assert ledger.balance == Decimal("1.00")

    def test_refund_is_idempotent(self):
        ledger = CreditLedger("1.00")
        ledger.debit("job-1", Decimal("0.50"))
        ledger.refund("job-1")
        assert ledger.refund("job-1") == Decimal("0.00")
        assert ledger.balance == Decimal("1.00")

    def test_settled_job_cannot_be_refunded(self):
        ledger = CreditLedger("2.00")
        ledger.debit("job-1", Decimal("1.00"))
        ledger.settle("job-1")
        assert ledger.refund("job-1") == Decimal("0.00")
        assert ledger.balance == Decimal("1.00")

    def test_double_debit_rejected(self):
        ledger = CreditLedger("2.00")
        ledger.debit("job-1", Decimal("0.50"))
        with pytest.raises(ValueError):
            ledger.debit("job-1", Decimal("0.50"))

    def test_unlimited_role_is_never_charged(self):
        ledger = CreditLedger("0.00", role="pro")
        assert ledger.can_afford(Decimal("2.00"))
        assert ledger.debit("job-1", Decimal("2.00")) is False
        assert ledger.balance == Decimal("0.00")
        assert ledger.refund("job-1") == Decimal("0.00")

    def test_can_afford_compares_balance(self):
        ledger = CreditLedger("0.49")
        assert not ledger.can_afford(Decimal("0.50"))
        assert ledger.can_afford(Decimal("0.00"))

    def test_authoritative_balance_wins(self):
        ledger = CreditLedger("1.00")
        ledger.debit("job-1", Decimal("0.50"))
        ledger.apply_authoritative(3, role="pro")
        assert ledger.balance == Decimal("3.00")
        assert ledger.is_unlimited


class TestQualityTiers:
    @pytest.mark.parametrize(
        "quality,cost,duration",
        [
            ("fast", "0.00", 12_000),
            ("pro-1k", "0.50", 23_000),
            ("pro-2k", "1.00", 36_000),
            ("pro-4k", "2.00", 60_000),
        ],
    )
    def test_tier_table(self, quality, cost, duration):
        tier = get_tier(quality)
        assert tier.cost == Decimal(cost)
        assert tier.base_duration_ms == duration

    def test_unknown_tier(self):
        with pytest.raises(ValueError):
            get_tier("ultra")

    def test_estimate_scales_with_concurrency(self):
        assert estimate_duration_ms("pro-1k", 1) == 23_000
        assert estimate_duration_ms("pro-1k", 3) == 36_800
        assert estimate_duration_ms("pro-1k", 0) == 23_000

    def test_progress_fraction(self):
        start = datetime(2025, 1, 1, tzinfo=UTC)
        assert progress_fraction(None, 1000, start) == 0.0
        assert progress_fraction(start, 10_000, start + timedelta(seconds=5)) == pytest.approx(0.5)
        assert progress_fraction(start, 10_000, start + timedelta(seconds=60)) == 0.99
        assert progress_fraction(start, 10_000, start - timedelta(seconds=1)) == 0.0

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

CONCURRENCY_PENALTY = 0.3  # each extra in-flight job stretches the estimate by 30%
MAX_PROGRESS = 0.99


@dataclass(frozen=True)
class QualityTier:
    name: str
    cost: Decimal
    base_duration_ms: int


QUALITY_TIERS: dict[str, QualityTier] = {
    "fast": QualityTier("fast", Decimal("0.00"), 12_000),
    "pro-1k": QualityTier("pro-1k", Decimal("0.50"), 23_000),
    "pro-2k": QualityTier("pro-2k", Decimal("1.00"), 36_000),
    "pro-4k": QualityTier("pro-4k", Decimal("2.00"), 60_000),
}
DEFAULT_QUALITY = "pro-1k"


def get_tier(quality: str) -> QualityTier:
    tier = QUALITY_TIERS.get(quality)
    if tier is None:
        raise ValueError("Unsupported quality")
    return tier


def estimate_duration_ms(quality: str, concurrent_jobs: int) -> int:
    """Progress estimate for a job given how many jobs (including itself) are in flight.

    Only drives the UI progress bar; nothing waits on it.
    """
    base = get_tier(quality).base_duration_ms
    concurrent = max(concurrent_jobs, 1)
    return round(base * (1 + CONCURRENCY_PENALTY * (concurrent - 1)))


def progress_fraction(started_at: datetime | None, estimated_ms: int | None, now: datetime) -> float:
    if started_at is None or not estimated_ms:
        return 0.0
    elapsed_ms = (now - started_at).total_seconds() * 1000
    return max(0.0, min(elapsed_ms / estimated_ms, MAX_PROGRESS))

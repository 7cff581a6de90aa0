from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class GenerationJobEntity:
    id: str  # same id as the image it produces
    user_id: str
    parent_id: str | None
    status: JobStatus
    quality: str
    cost: Decimal  # amount actually charged, 0 when no debit happened
    created_at: datetime
    prompt: str = ""
    kind: str = "style"  # "inpaint" when a mask was sent
    concurrent_jobs: int = 1
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not JobStatus.PROCESSING

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from src.domain.entities.image import ImageEntity


@dataclass(frozen=True)
class ImageRow:
    id: str  # lineage root key
    title: str
    items: tuple[ImageEntity, ...]  # oldest first
    created_at: datetime  # oldest ancestor's creation time

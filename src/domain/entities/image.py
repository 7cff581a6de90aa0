from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from src.domain.entities.annotation import Annotation

DISPLAY_HEIGHT = 512  # canvas rows are laid out at a fixed logical height


@dataclass(frozen=True)
class ImageEntity:
    id: str
    user_id: str
    width: float  # display size, stable across resolution changes
    height: float
    created_at: datetime
    title: str
    path: str | None = None  # storage path {user_id}/{uuid}.{ext}; None while generating
    thumb_path: str | None = None
    parent_id: str | None = None  # immediate parent version
    base_name: str | None = None
    version: int = 1
    real_width: int | None = None  # pixel dimensions of the stored blob
    real_height: int | None = None
    mime_type: str = "image/png"
    generation_prompt: str | None = None
    draft_prompt: str = ""
    annotations: tuple[Annotation, ...] = ()
    quality: str | None = None
    model_version: str | None = None
    # Generation tracking
    is_generating: bool = False
    generation_started_at: datetime | None = None
    estimated_duration_ms: int | None = None
    updated_at: datetime | None = None

    @property
    def family_name(self) -> str:
        return self.base_name or self.title or "untitled"


def display_size(real_width: int, real_height: int) -> tuple[float, float]:
    """Normalize pixel dimensions to the canvas row height, keeping the aspect ratio."""
    if real_width <= 0 or real_height <= 0:
        raise ValueError("Image dimensions must be positive")
    return real_width / real_height * DISPLAY_HEIGHT, float(DISPLAY_HEIGHT)

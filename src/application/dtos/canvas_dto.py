from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from src.application.dtos.image_dto import ImageMetadata
from src.domain.entities.row import ImageRow


class RowModel(BaseModel):
    """A version family: the root image and every descendant, oldest first."""
    id: str = Field(..., description="Row key (root image id, or name:<family> as fallback)")
    title: str = Field(..., description="Row title")
    created_at: datetime = Field(..., description="Creation time of the oldest item")
    items: list[ImageMetadata] = Field(default_factory=list)

    @classmethod
    def from_row(cls, row: ImageRow, urls: dict[str, str], now: datetime) -> RowModel:
        return cls(
            id=row.id,
            title=row.title,
            created_at=row.created_at,
            items=[ImageMetadata.from_entity(item, urls, now) for item in row.items],
        )


class CanvasResponse(BaseModel):
    rows: list[RowModel]
    credits: Decimal = Field(..., description="Current credit balance")
    role: str = Field(..., description="Account role", example="user")
    selected_ids: list[str] = Field(default_factory=list)


class SelectionRequest(BaseModel):
    action: str = Field(
        ...,
        description="Selection action",
        pattern="^(select|toggle|range|set|next|previous|row_up|row_down)$",
    )
    image_id: str | None = Field(None, description="Target image for select/toggle/range")
    image_ids: list[str] = Field(default_factory=list, description="Full selection for action=set")


class SelectionResponse(BaseModel):
    selected_ids: list[str]
    primary_id: str | None = None
    position: tuple[int, int] | None = Field(None, description="(row, column) of the primary selection")


class NotificationModel(BaseModel):
    level: str = Field(..., example="error")
    message: str


class NotificationsResponse(BaseModel):
    notifications: list[NotificationModel]

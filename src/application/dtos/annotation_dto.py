from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class PointModel(BaseModel):
    x: float
    y: float


class PointerRequest(BaseModel):
    """Pointer event in display coordinates of the image."""
    x: float = Field(..., description="Horizontal position")
    y: float = Field(..., description="Vertical position")
    annotation_id: str | None = Field(None, description="Annotation under the pointer, if the client hit-tested")
    handle: str | None = Field(None, description="Resize handle under the pointer", example="se")


class PointerUpRequest(BaseModel):
    x: float | None = None
    y: float | None = None


class ShapeRequest(BaseModel):
    shape_type: str = Field(..., pattern="^(rect|circle|line)$")
    x: float
    y: float
    width: float | None = Field(None, gt=0)
    height: float | None = Field(None, gt=0)


class StampRequest(BaseModel):
    x: float
    y: float
    text: str = ""
    item_id: str | None = Field(None, description="Library item the stamp refers to")
    emoji: str | None = None


class TextRequest(BaseModel):
    text: str = Field(..., max_length=2000)


class ToolRequest(BaseModel):
    tool: str = Field(..., pattern="^(brush|text|rect|circle|line|select)$")
    brush_size: float | None = Field(None, gt=0, le=500)
    stroke_width: float | None = Field(None, gt=0, le=100)
    color: str | None = Field(None, pattern="^#[0-9a-fA-F]{3,8}$")


class AnnotationStateResponse(BaseModel):
    image_id: str
    annotations: list[dict[str, Any]] = Field(default_factory=list)
    active_id: str | None = None
    tool: str
    session: str | None = Field(None, description="drawing, dragging or resizing while a pointer is down")
    preview_points: list[PointModel] = Field(default_factory=list)
    can_undo: bool = False
    can_redo: bool = False

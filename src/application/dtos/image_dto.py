from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.domain.entities.image import ImageEntity
from src.domain.services.quality_service import progress_fraction


class ImageMetadata(BaseModel):
    """One canvas image, completed or still generating."""
    id: str = Field(..., description="Unique identifier of the image")
    parent_id: str | None = Field(None, description="Immediate parent version, if any")
    title: str = Field(..., description="Display title", example="sunset_v2")
    base_name: str | None = Field(None, description="Family name shared by all versions in a row", example="sunset")
    version: int = Field(..., description="Version number within the row", example=2, ge=1)
    width: float = Field(..., description="Logical display width (rows are 512 px high)", gt=0)
    height: float = Field(..., description="Logical display height", gt=0)
    real_width: int | None = Field(None, description="Pixel width of the stored file")
    real_height: int | None = Field(None, description="Pixel height of the stored file")
    mime_type: str = Field("image/png", description="MIME type of the stored file")
    created_at: datetime = Field(..., description="When the image (or its job) was created")
    url: str | None = Field(None, description="Short-lived signed URL of the image")
    thumb_url: str | None = Field(None, description="Short-lived signed URL of the thumbnail")
    generation_prompt: str | None = Field(None, description="Prompt that produced this version")
    draft_prompt: str = Field("", description="Unsent prompt the user is editing")
    quality: str | None = Field(None, description="Quality tier used for generation", example="pro-1k")
    model_version: str | None = Field(None, description="Model that produced the image")
    annotation_count: int = Field(0, description="Number of annotations on the image", ge=0)
    is_generating: bool = Field(False, description="True while the generation job is running")
    estimated_duration_ms: int | None = Field(None, description="Progress estimate for a running job")
    progress: float | None = Field(None, description="Estimated completion of a running job (0 to 0.99)")

    @classmethod
    def from_entity(
        cls, image: ImageEntity, urls: dict[str, str] | None = None, now: datetime | None = None
    ) -> ImageMetadata:
        urls = urls or {}
        progress = None
        if image.is_generating and now is not None:
            progress = progress_fraction(image.generation_started_at, image.estimated_duration_ms, now)
        return cls(
            id=image.id,
            parent_id=image.parent_id,
            title=image.title,
            base_name=image.base_name,
            version=image.version,
            width=image.width,
            height=image.height,
            real_width=image.real_width,
            real_height=image.real_height,
            mime_type=image.mime_type,
            created_at=image.created_at,
            url=urls.get(image.path) if image.path else None,
            thumb_url=urls.get(image.thumb_path) if image.thumb_path else None,
            generation_prompt=image.generation_prompt,
            draft_prompt=image.draft_prompt,
            quality=image.quality,
            model_version=image.model_version,
            annotation_count=len(image.annotations),
            is_generating=image.is_generating,
            estimated_duration_ms=image.estimated_duration_ms,
            progress=progress,
        )


class UploadImageResponse(BaseModel):
    """Response model for successful image upload."""
    image: ImageMetadata = Field(..., description="Metadata of the uploaded image")


class DeleteImagesRequest(BaseModel):
    image_ids: list[str] = Field(..., min_length=1, description="Images to delete")


class DeleteImagesResponse(BaseModel):
    deleted_ids: list[str] = Field(..., description="Images that were actually deleted")


class UpdatePromptRequest(BaseModel):
    text: str = Field(..., max_length=4000, description="Draft prompt text")


class UpdateTitleRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200, description="New display title")

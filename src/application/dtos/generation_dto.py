from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from src.application.dtos.image_dto import ImageMetadata
from src.domain.services.quality_service import DEFAULT_QUALITY


class GenerateRequest(BaseModel):
    """Request model for submitting a generation."""
    image_id: str = Field(..., description="Source image to edit")
    prompt: str = Field(..., min_length=1, max_length=4000, description="Edit instruction")
    quality: str = Field(DEFAULT_QUALITY, description="Quality tier", pattern="^(fast|pro-1k|pro-2k|pro-4k)$")


class GenerateResponse(BaseModel):
    job_id: str = Field(..., description="Id of the job and of the image it will produce")
    placeholder: ImageMetadata = Field(..., description="Placeholder shown while the job runs")
    estimated_duration_ms: int = Field(..., description="Progress estimate", ge=0)
    cost: Decimal = Field(..., description="Credits charged for the job")
    credits: Decimal = Field(..., description="Balance after the charge")


class GenerationStatusResponse(BaseModel):
    job_id: str
    status: str = Field(..., description="processing, completed or failed", example="processing")
    progress: float = Field(..., ge=0.0, le=1.0)
    image: ImageMetadata | None = None

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from src.application.canvas_session import CanvasSession
from src.application.dtos.image_dto import (
    DeleteImagesRequest,
    DeleteImagesResponse,
    ImageMetadata,
    UpdatePromptRequest,
    UpdateTitleRequest,
    UploadImageResponse,
)
from src.application.use_cases.delete_images import DeleteImagesUseCase
from src.application.use_cases.upload_image import UploadImageUseCase
from src.infrastructure.api.dependencies import get_image_repo, get_session, get_storage
from src.infrastructure.config import get_settings
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.storage.supabase_storage import SupabaseStorage, read_dimensions

router = APIRouter(
    prefix="/images",
    tags=["Image Management"],
    responses={
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
        404: {"description": "Not Found - Image does not exist or user doesn't have access"},
        422: {"description": "Validation Error - Invalid request format"},
    },
)

_UPLOAD_EXTENSIONS = {"png", "jpg", "jpeg", "webp"}


def _owned(session: CanvasSession, image_id: str):
    image = session.store.get(image_id)
    if image is None or image.user_id != session.user_id:
        raise HTTPException(status_code=404, detail="Image not found")
    return image


@router.post(
    "/upload",
    response_model=UploadImageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload Image",
    description="""
    Upload a new image file. It becomes version 1 of a new row, named after
    the file, and is selected.

    **Supported formats**: JPEG, PNG, WEBP
    **Authentication required**: Yes (Bearer token)
    """,
    response_description="Metadata of the successfully uploaded image",
    responses={400: {"description": "Bad Request - Invalid image file or unsupported format"}},
)
async def upload_image(
    file: UploadFile = File(..., description="Image file to upload"),
    session: CanvasSession = Depends(get_session),
    storage: SupabaseStorage = Depends(get_storage),
    images: ImageRepository = Depends(get_image_repo),
):
    """Upload a new image file and create its record."""
    data = await file.read()
    try:
        read_dimensions(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid image file: {exc}") from exc
    filename = file.filename or "uploaded_image.png"
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "png"
    if ext not in _UPLOAD_EXTENSIONS:
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {ext}")

    uc = UploadImageUseCase(storage=storage, image_repo=images)
    entity = uc.execute(
        user_id=session.user_id,
        data=data,
        ext=ext,
        original_filename=filename,
        mime_type=file.content_type if file.content_type and file.content_type.startswith("image/") else None,
    )
    with session.lock:
        session.store.put(entity)
        session.refresh_selection()
        session.navigator.select(entity.id)

    urls = storage.create_signed_urls([entity.path, entity.thumb_path], get_settings().signed_url_ttl_sec)
    return UploadImageResponse(image=ImageMetadata.from_entity(entity, urls))


@router.delete(
    "",
    response_model=DeleteImagesResponse,
    summary="Delete Images",
    description="""
    Delete one or more images together with their stored files. Images whose
    generation is still running are skipped.
    """,
)
def delete_images(
    body: DeleteImagesRequest,
    session: CanvasSession = Depends(get_session),
    storage: SupabaseStorage = Depends(get_storage),
    images: ImageRepository = Depends(get_image_repo),
):
    """Delete images owned by the caller."""
    uc = DeleteImagesUseCase(storage=storage, image_repo=images)
    with session.lock:
        deleted = uc.execute(session, body.image_ids)
    return DeleteImagesResponse(deleted_ids=deleted)


@router.patch(
    "/{image_id}/prompt",
    response_model=ImageMetadata,
    summary="Save Draft Prompt",
    description="Store the prompt the user is composing for this image.",
)
def update_prompt(
    image_id: str,
    body: UpdatePromptRequest,
    session: CanvasSession = Depends(get_session),
    images: ImageRepository = Depends(get_image_repo),
):
    """Persist the draft prompt."""
    with session.lock:
        image = _owned(session, image_id)
        if image.is_generating:
            raise HTTPException(status_code=400, detail="Image is still generating")
        images.update_draft_prompt(image_id, session.user_id, body.text)
        updated = replace(image, draft_prompt=body.text, updated_at=datetime.now(UTC))
        session.store.put(updated)
    return ImageMetadata.from_entity(updated)


@router.patch(
    "/{image_id}/title",
    response_model=ImageMetadata,
    summary="Rename Image",
    description="Change the display title of a single image.",
)
def update_title(
    image_id: str,
    body: UpdateTitleRequest,
    session: CanvasSession = Depends(get_session),
    images: ImageRepository = Depends(get_image_repo),
):
    """Rename an image."""
    title = body.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title cannot be empty")
    with session.lock:
        image = _owned(session, image_id)
        if image.is_generating:
            raise HTTPException(status_code=400, detail="Image is still generating")
        images.update_title(image_id, session.user_id, title)
        updated = replace(image, title=title, updated_at=datetime.now(UTC))
        session.store.put(updated)
    return ImageMetadata.from_entity(updated)

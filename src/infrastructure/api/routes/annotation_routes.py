from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from src.application.canvas_session import CanvasSession
from src.application.dtos.annotation_dto import (
    AnnotationStateResponse,
    PointerRequest,
    PointerUpRequest,
    PointModel,
    ShapeRequest,
    StampRequest,
    TextRequest,
    ToolRequest,
)
from src.application.dtos.common_dto import ErrorResponse
from src.domain.entities.annotation import ImageHandle, Point, ShapeType, annotation_to_dict
from src.domain.errors import SessionInProgressError
from src.domain.services.annotation_engine import AnnotationEngine, PointerTarget, Tool
from src.infrastructure.api.dependencies import get_image_repo, get_session, get_storage
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.storage.supabase_storage import SupabaseStorage, read_dimensions

router = APIRouter(
    prefix="/images/{image_id}/annotations",
    tags=["Annotations"],
    responses={
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
        404: {"description": "Not Found - Image or annotation does not exist"},
        409: {"model": ErrorResponse, "description": "Conflict - Another pointer interaction is in progress"},
        422: {"description": "Validation Error - Invalid request format"},
    },
)


def get_engine(
    image_id: str,
    session: CanvasSession = Depends(get_session),
    images: ImageRepository = Depends(get_image_repo),
) -> AnnotationEngine:
    def persist(target_id, annotations):
        images.update_annotations(target_id, session.user_id, annotations)

    try:
        with session.lock:
            return session.engine_for(image_id, persist)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@contextmanager
def _editing(session: CanvasSession) -> Iterator[None]:
    """Serialize edits with other requests and with generation completion."""
    with session.lock:
        try:
            yield
        except SessionInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc


def _state(engine: AnnotationEngine) -> AnnotationStateResponse:
    return AnnotationStateResponse(
        image_id=engine.image_id,
        annotations=[annotation_to_dict(a) for a in engine.annotations],
        active_id=engine.active_id,
        tool=engine.tool.value,
        session=engine.session.kind.value if engine.session else None,
        preview_points=[PointModel(x=p.x, y=p.y) for p in engine.preview_points],
        can_undo=engine.history.can_undo,
        can_redo=engine.history.can_redo,
    )


def _not_found(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


@router.get("", response_model=AnnotationStateResponse, summary="Annotation State")
def get_state(engine: AnnotationEngine = Depends(get_engine), session: CanvasSession = Depends(get_session)):
    """Current annotations, tool and interaction state of the image."""
    with _editing(session):
        return _state(engine)


@router.put("/tool", response_model=AnnotationStateResponse, summary="Select Tool")
def set_tool(
    body: ToolRequest,
    engine: AnnotationEngine = Depends(get_engine),
    session: CanvasSession = Depends(get_session),
):
    """Switch the active tool and, optionally, brush size, stroke width and colour."""
    with _editing(session):
        engine.tool = Tool(body.tool)
        if body.brush_size is not None:
            engine.brush_size = body.brush_size
        if body.stroke_width is not None:
            engine.stroke_width = body.stroke_width
        if body.color is not None:
            engine.color = body.color
        return _state(engine)


@router.post(
    "/pointer/down",
    response_model=AnnotationStateResponse,
    summary="Pointer Down",
    description="""
    Start an interaction. With `annotation_id` (and optionally a resize
    `handle`) the annotation is dragged or resized; with the select tool the
    server hit-tests the point itself. Otherwise the active tool decides:
    the brush starts a stroke, text and shape tools place a new annotation.
    """,
)
def pointer_down(
    body: PointerRequest,
    engine: AnnotationEngine = Depends(get_engine),
    session: CanvasSession = Depends(get_session),
):
    target = PointerTarget(body.annotation_id, body.handle) if body.annotation_id else None
    with _editing(session):
        try:
            engine.on_pointer_down(Point(body.x, body.y), target)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _state(engine)


@router.post("/pointer/move", response_model=AnnotationStateResponse, summary="Pointer Move")
def pointer_move(
    body: PointerRequest,
    engine: AnnotationEngine = Depends(get_engine),
    session: CanvasSession = Depends(get_session),
):
    with _editing(session):
        engine.on_pointer_move(Point(body.x, body.y))
        return _state(engine)


@router.post("/pointer/up", response_model=AnnotationStateResponse, summary="Pointer Up")
def pointer_up(
    body: PointerUpRequest,
    engine: AnnotationEngine = Depends(get_engine),
    session: CanvasSession = Depends(get_session),
):
    point = Point(body.x, body.y) if body.x is not None and body.y is not None else None
    with _editing(session):
        engine.on_pointer_up(point)
        return _state(engine)


@router.post("/shapes", response_model=AnnotationStateResponse, summary="Add Shape")
def add_shape(
    body: ShapeRequest,
    engine: AnnotationEngine = Depends(get_engine),
    session: CanvasSession = Depends(get_session),
):
    """Place a rectangle, circle or line with its top-left (or start) at (x, y)."""
    size = (body.width or 100.0, body.height or 100.0) if body.width or body.height else None
    with _editing(session):
        engine.add_shape(ShapeType(body.shape_type), Point(body.x, body.y), size)
        return _state(engine)


@router.post("/stamps", response_model=AnnotationStateResponse, summary="Add Stamp")
def add_stamp(
    body: StampRequest,
    engine: AnnotationEngine = Depends(get_engine),
    session: CanvasSession = Depends(get_session),
):
    """Place a text stamp, optionally linked to a library item."""
    with _editing(session):
        engine.add_stamp(Point(body.x, body.y), body.text, item_id=body.item_id, emoji=body.emoji)
        return _state(engine)


@router.post(
    "/references",
    response_model=AnnotationStateResponse,
    summary="Add Reference Image",
    description="Upload a reference image and pin it to the canvas as a chip at (x, y).",
    responses={400: {"description": "Bad Request - Invalid image file"}},
)
async def add_reference(
    file: UploadFile = File(..., description="Reference image"),
    x: float = Form(...),
    y: float = Form(...),
    caption: str = Form(""),
    engine: AnnotationEngine = Depends(get_engine),
    session: CanvasSession = Depends(get_session),
    storage: SupabaseStorage = Depends(get_storage),
):
    data = await file.read()
    try:
        read_dimensions(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid image file: {exc}") from exc
    filename = file.filename or "reference.png"
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "png"
    stored = await asyncio.to_thread(storage.upload_bytes, session.user_id, data, ext, "references")
    with _editing(session):
        engine.add_reference(Point(x, y), ImageHandle(storage_path=stored.path), caption)
        return _state(engine)


@router.delete("/{annotation_id}", response_model=AnnotationStateResponse, summary="Delete Annotation")
def delete_annotation(
    annotation_id: str,
    engine: AnnotationEngine = Depends(get_engine),
    session: CanvasSession = Depends(get_session),
):
    with _editing(session):
        try:
            engine.delete(annotation_id)
        except ValueError as exc:
            raise _not_found(exc) from exc
        return _state(engine)


@router.patch(
    "/{annotation_id}/text",
    response_model=AnnotationStateResponse,
    summary="Edit Annotation Text",
    description="Live text edit. It enters the undo history when editing finishes.",
)
def update_text(
    annotation_id: str,
    body: TextRequest,
    engine: AnnotationEngine = Depends(get_engine),
    session: CanvasSession = Depends(get_session),
):
    with _editing(session):
        try:
            engine.update_text(annotation_id, body.text)
        except ValueError as exc:
            raise _not_found(exc) from exc
        return _state(engine)


@router.post("/finish", response_model=AnnotationStateResponse, summary="Finish Editing")
def finish_editing(engine: AnnotationEngine = Depends(get_engine), session: CanvasSession = Depends(get_session)):
    with _editing(session):
        engine.finish_editing()
        return _state(engine)


@router.post("/undo", response_model=AnnotationStateResponse, summary="Undo")
def undo(engine: AnnotationEngine = Depends(get_engine), session: CanvasSession = Depends(get_session)):
    with _editing(session):
        engine.undo()
        return _state(engine)


@router.post("/redo", response_model=AnnotationStateResponse, summary="Redo")
def redo(engine: AnnotationEngine = Depends(get_engine), session: CanvasSession = Depends(get_session)):
    with _editing(session):
        engine.redo()
        return _state(engine)

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query

from src.application.canvas_session import CanvasSession, get_canvas_session
from src.application.dtos.canvas_dto import (
    CanvasResponse,
    NotificationModel,
    NotificationsResponse,
    RowModel,
    SelectionRequest,
    SelectionResponse,
)
from src.application.use_cases.load_canvas import LoadCanvasUseCase
from src.infrastructure.api.dependencies import get_current_user, get_load_canvas, get_session

router = APIRouter(
    prefix="/canvas",
    tags=["Canvas"],
    responses={
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
        422: {"description": "Validation Error - Invalid request format"},
    },
)


@router.get(
    "",
    response_model=CanvasResponse,
    summary="Load Canvas",
    description="""
    Reload the caller's images and unfinished generation jobs and return them
    grouped into version rows, newest row first.

    Jobs that have been running for longer than ten minutes are treated as
    abandoned and deleted. Every image carries short-lived signed URLs.
    """,
)
def load_canvas(
    offset: int = Query(0, ge=0, description="Number of records to skip (pagination)"),
    user=Depends(get_current_user),
    loader: LoadCanvasUseCase = Depends(get_load_canvas),
):
    """Reload and group the canvas."""
    session = get_canvas_session(user.id)
    with session.lock:
        snapshot = loader.execute(session, email=user.email, offset=offset)
        now = datetime.now(UTC)
        return CanvasResponse(
            rows=[RowModel.from_row(row, snapshot.urls, now) for row in snapshot.rows],
            credits=session.ledger.balance,
            role=session.ledger.role,
            selected_ids=session.navigator.selected_ids,
        )


def _selection_response(session: CanvasSession) -> SelectionResponse:
    nav = session.navigator
    return SelectionResponse(
        selected_ids=list(nav.selected_ids),
        primary_id=nav.primary_id,
        position=nav.locate(nav.primary_id) if nav.primary_id else None,
    )


@router.post(
    "/selection",
    response_model=SelectionResponse,
    summary="Change Selection",
    description="""
    Move the focus across the canvas rows.

    - `select`, `toggle`, `range`: act on `image_id`
    - `set`: replace the selection with `image_ids`
    - `next` / `previous`: step through all images in row order
    - `row_up` / `row_down`: jump to the neighbouring row, keeping the column
    """,
    responses={400: {"description": "Bad Request - Missing image id"}},
)
def change_selection(body: SelectionRequest, session: CanvasSession = Depends(get_session)):
    """Apply one selection action."""
    nav = session.navigator
    with session.lock:
        nav.refresh(session.store.rows())
        if body.action in ("select", "toggle", "range"):
            if not body.image_id:
                raise HTTPException(status_code=400, detail="image_id is required")
            if session.store.get(body.image_id) is None:
                raise HTTPException(status_code=404, detail="Image not found")
            {"select": nav.select, "toggle": nav.toggle, "range": nav.select_range}[body.action](body.image_id)
        elif body.action == "set":
            nav.select_many([i for i in body.image_ids if session.store.get(i) is not None])
        elif body.action in ("next", "previous"):
            nav.move(1 if body.action == "next" else -1)
        else:
            nav.move_row(-1 if body.action == "row_up" else 1)
        return _selection_response(session)


@router.get(
    "/notifications",
    response_model=NotificationsResponse,
    summary="Drain Notifications",
    description="Return and clear the pending notifications (generation results and failures).",
)
def drain_notifications(session: CanvasSession = Depends(get_session)):
    """Pop all pending notifications."""
    with session.lock:
        items = session.store.drain_notifications()
    return NotificationsResponse(
        notifications=[NotificationModel(level=n.level, message=n.message) for n in items]
    )

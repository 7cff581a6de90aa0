from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from enum import Enum

from src.domain.entities.annotation import (
    Annotation,
    ImageHandle,
    PathAnnotation,
    Point,
    ReferenceAnnotation,
    ShapeAnnotation,
    ShapeType,
    StampAnnotation,
    is_transient,
    new_annotation_id,
)
from src.domain.errors import SessionInProgressError
from src.domain.services.annotation_geometry import (
    MIN_SHAPE_SIZE,
    clamp,
    distance,
    handles_for,
    hit_test,
    resize,
    translate,
)
from src.domain.services.annotation_history import HISTORY_LIMIT, AnnotationHistory

logger = logging.getLogger(__name__)

CLICK_THRESHOLD = 5.0  # px of travel below which a drag counts as a click
SAMPLE_SPACING = 2.0  # px between recorded freehand samples
DEFAULT_SHAPE_SIZE = 100.0


class Tool(str, Enum):
    BRUSH = "brush"
    TEXT = "text"
    RECT = "rect"
    CIRCLE = "circle"
    LINE = "line"
    SELECT = "select"


SHAPE_TOOLS = {Tool.RECT: ShapeType.RECT, Tool.CIRCLE: ShapeType.CIRCLE, Tool.LINE: ShapeType.LINE}


class SessionKind(str, Enum):
    DRAWING = "drawing"
    DRAGGING = "dragging"
    RESIZING = "resizing"


@dataclass(frozen=True)
class PointerTarget:
    annotation_id: str
    handle: str | None = None


@dataclass
class InteractionSession:
    kind: SessionKind
    origin: Point
    annotation_id: str | None = None
    handle: str | None = None
    original: Annotation | None = None
    points: list[Point] = field(default_factory=list)
    displacement: float = 0.0  # max distance travelled from origin
    moved: bool = False


Listener = Callable[[str, tuple[Annotation, ...]], None]


class AnnotationEngine:
    """Vector annotation editor for a single image.

    Pointer handlers drive a small state machine (idle, drawing, dragging,
    resizing) through one session slot. Live changes go to `on_change`;
    committed states are pushed onto the history and handed to `on_commit`.
    """

    def __init__(
        self,
        image_id: str,
        annotations: Iterable[Annotation] = (),
        *,
        width: float,
        height: float,
        on_change: Listener | None = None,
        on_commit: Listener | None = None,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self.image_id = image_id
        self.width = width
        self.height = height
        self.on_change = on_change
        self.on_commit = on_commit
        self._annotations: tuple[Annotation, ...] = tuple(annotations)
        self.history = AnnotationHistory(self._annotations, limit=history_limit)
        self.session: InteractionSession | None = None
        self.active_id: str | None = None
        self.tool = Tool.BRUSH
        self.brush_size = 20.0
        self.stroke_width = 4.0
        self.color = "#fff"

    @property
    def annotations(self) -> tuple[Annotation, ...]:
        return self._annotations

    @property
    def preview_points(self) -> list[Point]:
        if self.session is not None and self.session.kind is SessionKind.DRAWING:
            return list(self.session.points)
        return []

    # --- Store plumbing ---

    def _write(self, annotations: tuple[Annotation, ...]) -> None:
        self._annotations = annotations
        if self.on_change:
            self.on_change(self.image_id, annotations)

    def _persist(self) -> None:
        if self.on_commit:
            self.on_commit(self.image_id, self._annotations)

    def _commit(self, annotations: tuple[Annotation, ...]) -> None:
        self._write(annotations)
        self.history.push(annotations)
        self._persist()

    def _flush(self) -> None:
        """Commit live edits (inline text) that have not reached the history yet."""
        if self._annotations != self.history.current:
            self.history.push(self._annotations)
            self._persist()

    def _find(self, annotation_id: str) -> Annotation:
        for ann in self._annotations:
            if ann.id == annotation_id:
                return ann
        raise ValueError("Annotation not found")

    def _with(self, updated: Annotation) -> tuple[Annotation, ...]:
        return tuple(updated if a.id == updated.id else a for a in self._annotations)

    def _ensure_idle(self) -> None:
        if self.session is not None:
            raise SessionInProgressError("An annotation interaction is already in progress")

    def _clear_stale_active(self) -> None:
        if self.active_id and all(a.id != self.active_id for a in self._annotations):
            self.active_id = None

    # --- Pointer session ---

    def on_pointer_down(self, point: Point, target: PointerTarget | None = None) -> None:
        self._ensure_idle()

        if target is None and self.tool is Tool.SELECT:
            hit = hit_test(self._annotations, point)
            if hit is not None:
                target = PointerTarget(*hit)

        self._flush()
        self.prune_transient(keep=target.annotation_id if target else None)

        if target is not None:
            ann = self._find(target.annotation_id)
            if target.handle is not None and target.handle not in handles_for(ann):
                raise ValueError(f"Unsupported handle: {target.handle}")
            kind = SessionKind.RESIZING if target.handle else SessionKind.DRAGGING
            self.session = InteractionSession(
                kind=kind, origin=point, annotation_id=ann.id, handle=target.handle, original=ann
            )
            return

        if self.tool is Tool.BRUSH:
            self.active_id = None
            self.session = InteractionSession(kind=SessionKind.DRAWING, origin=point, points=[point])
        elif self.tool is Tool.TEXT:
            self.add_stamp(point)
        elif self.tool in SHAPE_TOOLS:
            self.add_shape(SHAPE_TOOLS[self.tool], point)
        else:
            self.active_id = None

    def on_pointer_move(self, point: Point) -> None:
        session = self.session
        if session is None:
            return

        if session.kind is SessionKind.DRAWING:
            last = session.points[-1]
            if abs(last.x - point.x) > SAMPLE_SPACING or abs(last.y - point.y) > SAMPLE_SPACING:
                session.points.append(point)
            return

        session.displacement = max(session.displacement, distance(session.origin, point))
        if not session.moved and session.displacement <= CLICK_THRESHOLD:
            return
        session.moved = True
        self._write(self._with(self._transform(session, point)))

    def on_pointer_up(self, point: Point | None = None) -> None:
        session = self.session
        if session is None:
            return
        if point is not None:
            self.on_pointer_move(point)
        self.session = None

        if session.kind is SessionKind.DRAWING:
            if len(session.points) <= 1:
                return
            path = PathAnnotation(
                id=new_annotation_id(),
                points=tuple(session.points),
                stroke_width=self.brush_size,
                color=self.color,
            )
            self._commit(self._annotations + (path,))
            self.active_id = path.id
            return

        if not session.moved:
            # a tap: select for inline editing, geometry untouched
            self.active_id = session.annotation_id
            return
        self.active_id = None
        self._commit(self._annotations)

    def _transform(self, session: InteractionSession, point: Point) -> Annotation:
        assert session.original is not None
        dx = point.x - session.origin.x
        dy = point.y - session.origin.y
        if session.kind is SessionKind.RESIZING:
            assert isinstance(session.original, ShapeAnnotation) and session.handle
            return resize(session.original, session.handle, dx, dy, point)
        return translate(session.original, dx, dy, (self.width, self.height))

    # --- Discrete mutators ---

    def _clamped(self, point: Point) -> Point:
        return Point(clamp(point.x, 0, self.width), clamp(point.y, 0, self.height))

    def add_shape(
        self, shape_type: ShapeType, origin: Point, size: tuple[float, float] | None = None
    ) -> ShapeAnnotation:
        self._ensure_idle()
        width, height = size or (DEFAULT_SHAPE_SIZE, DEFAULT_SHAPE_SIZE)
        if shape_type is ShapeType.LINE:
            shape = ShapeAnnotation(
                id=new_annotation_id(),
                shape_type=shape_type,
                endpoints=(origin, origin.offset(width, 0)),
                stroke_width=self.stroke_width,
                color=self.color,
            )
        else:
            shape = ShapeAnnotation(
                id=new_annotation_id(),
                shape_type=shape_type,
                x=origin.x,
                y=origin.y,
                width=max(width, MIN_SHAPE_SIZE),
                height=max(height, MIN_SHAPE_SIZE),
                stroke_width=self.stroke_width,
                color=self.color,
            )
        self._commit(self._annotations + (shape,))
        self.active_id = shape.id
        return shape

    def add_stamp(
        self,
        anchor: Point,
        text: str = "",
        item_id: str | None = None,
        emoji: str | None = None,
    ) -> StampAnnotation:
        self._ensure_idle()
        stamp = StampAnnotation(
            id=new_annotation_id(),
            anchor=self._clamped(anchor),
            text=text,
            item_id=item_id,
            emoji=emoji,
        )
        self._commit(self._annotations + (stamp,))
        self.active_id = stamp.id if not text else None
        return stamp

    def add_reference(self, anchor: Point, image: ImageHandle, caption: str = "") -> ReferenceAnnotation:
        self._ensure_idle()
        ref = ReferenceAnnotation(
            id=new_annotation_id(), anchor=self._clamped(anchor), image=image, caption=caption
        )
        self._commit(self._annotations + (ref,))
        return ref

    def delete(self, annotation_id: str) -> None:
        self._ensure_idle()
        self._find(annotation_id)
        self._commit(tuple(a for a in self._annotations if a.id != annotation_id))
        if self.active_id == annotation_id:
            self.active_id = None

    def update_text(self, annotation_id: str, text: str) -> None:
        """Live inline edit. Reaches the history on `finish_editing` or the next interaction."""
        self._ensure_idle()
        ann = self._find(annotation_id)
        if isinstance(ann, ReferenceAnnotation):
            updated: Annotation = replace(ann, caption=text)
        else:
            updated = replace(ann, text=text)
        self._write(self._with(updated))
        self.active_id = annotation_id

    def finish_editing(self) -> None:
        self._ensure_idle()
        self.active_id = None
        self._flush()

    def prune_transient(self, keep: str | None = None) -> None:
        kept = tuple(a for a in self._annotations if a.id == keep or not is_transient(a))
        if len(kept) == len(self._annotations):
            return
        logger.debug("Pruned %d transient annotation(s) on %s", len(self._annotations) - len(kept), self.image_id)
        self._write(kept)
        self.history.replace_current(kept)
        self._persist()
        self._clear_stale_active()

    # --- History ---

    def undo(self) -> bool:
        if self.session is not None:
            return False
        self._flush()
        snapshot = self.history.undo()
        if snapshot is None:
            return False
        self._restore(snapshot)
        return True

    def redo(self) -> bool:
        if self.session is not None:
            return False
        self._flush()
        snapshot = self.history.redo()
        if snapshot is None:
            return False
        self._restore(snapshot)
        return True

    def _restore(self, snapshot: tuple[Annotation, ...]) -> None:
        self._write(snapshot)
        self._persist()
        self._clear_stale_active()

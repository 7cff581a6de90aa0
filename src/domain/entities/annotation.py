from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class ShapeType(str, Enum):
    RECT = "rect"
    CIRCLE = "circle"
    LINE = "line"


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def offset(self, dx: float, dy: float) -> Point:
        return Point(self.x + dx, self.y + dy)


@dataclass(frozen=True)
class ImageHandle:
    """Reference image payload: inline data (data URL / base64) or a storage path."""

    storage_path: str | None = None
    inline_data: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.storage_path is not None


def new_annotation_id() -> str:
    return uuid.uuid4().hex


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PathAnnotation:
    id: str
    points: tuple[Point, ...]
    stroke_width: float
    color: str = "#fff"
    text: str = ""
    created_at: int = field(default_factory=_now_ms)

    type = "mask_path"


@dataclass(frozen=True)
class ShapeAnnotation:
    id: str
    shape_type: ShapeType
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    endpoints: tuple[Point, Point] | None = None  # line only
    stroke_width: float = 4.0
    color: str = "#fff"
    text: str = ""
    created_at: int = field(default_factory=_now_ms)

    type = "shape"


@dataclass(frozen=True)
class StampAnnotation:
    id: str
    anchor: Point
    text: str = ""
    item_id: str | None = None  # library category item
    emoji: str | None = None
    created_at: int = field(default_factory=_now_ms)

    type = "stamp"


@dataclass(frozen=True)
class ReferenceAnnotation:
    id: str
    anchor: Point
    image: ImageHandle
    caption: str = ""
    created_at: int = field(default_factory=_now_ms)

    type = "reference_image"


Annotation = Union[PathAnnotation, ShapeAnnotation, StampAnnotation, ReferenceAnnotation]


def is_transient(ann: Annotation) -> bool:
    """Empty stamps and single-point paths never survive into the next interaction."""
    if isinstance(ann, StampAnnotation):
        return not ann.text.strip()
    if isinstance(ann, PathAnnotation):
        return len(ann.points) <= 1
    return False


def annotation_to_dict(ann: Annotation) -> dict[str, Any]:
    data: dict[str, Any] = {"id": ann.id, "type": ann.type, "created_at": ann.created_at}
    if isinstance(ann, PathAnnotation):
        data.update(
            points=[{"x": p.x, "y": p.y} for p in ann.points],
            stroke_width=ann.stroke_width,
            color=ann.color,
            text=ann.text,
        )
    elif isinstance(ann, ShapeAnnotation):
        data.update(
            shape_type=ann.shape_type.value,
            stroke_width=ann.stroke_width,
            color=ann.color,
            text=ann.text,
        )
        if ann.shape_type is ShapeType.LINE and ann.endpoints is not None:
            data["points"] = [{"x": p.x, "y": p.y} for p in ann.endpoints]
        else:
            data.update(x=ann.x, y=ann.y, width=ann.width, height=ann.height)
    elif isinstance(ann, StampAnnotation):
        data.update(
            x=ann.anchor.x, y=ann.anchor.y, text=ann.text, item_id=ann.item_id, emoji=ann.emoji
        )
    else:
        data.update(
            x=ann.anchor.x,
            y=ann.anchor.y,
            text=ann.caption,
            reference_image=ann.image.storage_path or ann.image.inline_data,
        )
    return data


def _points(raw: Any) -> tuple[Point, ...]:
    return tuple(Point(float(p["x"]), float(p["y"])) for p in (raw or []))


def _pick(row: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return default


def annotation_from_dict(row: dict[str, Any]) -> Annotation:
    """Decode a stored annotation. Accepts both snake_case and legacy camelCase keys."""
    kind = row.get("type")
    ann_id = str(row.get("id") or new_annotation_id())
    created_at = int(_pick(row, "created_at", "createdAt", default=0))
    text = _pick(row, "text", default="") or ""

    if kind == "mask_path":
        return PathAnnotation(
            id=ann_id,
            points=_points(row.get("points")),
            stroke_width=float(_pick(row, "stroke_width", "strokeWidth", default=4.0)),
            color=_pick(row, "color", default="#fff"),
            text=text,
            created_at=created_at,
        )
    if kind == "shape":
        shape_type = ShapeType(_pick(row, "shape_type", "shapeType", default="rect"))
        points = _points(row.get("points"))
        common = dict(
            id=ann_id,
            shape_type=shape_type,
            stroke_width=float(_pick(row, "stroke_width", "strokeWidth", default=4.0)),
            color=_pick(row, "color", default="#fff"),
            text=text,
            created_at=created_at,
        )
        if shape_type is ShapeType.LINE:
            if len(points) != 2:
                raise ValueError(f"Line annotation {ann_id} needs exactly two endpoints")
            return ShapeAnnotation(endpoints=(points[0], points[1]), **common)
        if row.get("width") is None and len(points) >= 2:
            # legacy encoding: bounding corners as points
            xs = [p.x for p in points]
            ys = [p.y for p in points]
            return ShapeAnnotation(
                x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys), **common
            )
        return ShapeAnnotation(
            x=float(row.get("x") or 0.0),
            y=float(row.get("y") or 0.0),
            width=float(row.get("width") or 0.0),
            height=float(row.get("height") or 0.0),
            **common,
        )
    anchor = Point(float(row.get("x") or 0.0), float(row.get("y") or 0.0))
    if kind == "stamp":
        return StampAnnotation(
            id=ann_id,
            anchor=anchor,
            text=text,
            item_id=_pick(row, "item_id", "itemId"),
            emoji=row.get("emoji"),
            created_at=created_at,
        )
    if kind == "reference_image":
        ref = _pick(row, "reference_image", "referenceImage", default="")
        handle = (
            ImageHandle(inline_data=ref)
            if ref.startswith("data:")
            else ImageHandle(storage_path=ref or None)
        )
        return ReferenceAnnotation(
            id=ann_id, anchor=anchor, image=handle, caption=text, created_at=created_at
        )
    raise ValueError(f"Unsupported annotation type: {kind}")


def annotations_from_json(raw: Any) -> tuple[Annotation, ...]:
    if not raw:
        return ()
    return tuple(annotation_from_dict(item) for item in raw)

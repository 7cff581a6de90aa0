from __future__ import annotations

import math
from dataclasses import replace

from src.domain.entities.annotation import (
    Annotation,
    PathAnnotation,
    Point,
    ReferenceAnnotation,
    ShapeAnnotation,
    ShapeType,
    StampAnnotation,
)

MIN_SHAPE_SIZE = 10.0
HANDLE_RADIUS = 8.0
CHIP_RADIUS = 24.0  # stamps and reference chips are hit around their anchor
LINE_TOLERANCE = 6.0

BOX_HANDLES = ("n", "s", "e", "w", "ne", "nw", "se", "sw")
LINE_HANDLES = ("start", "end")


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def distance(a: Point, b: Point) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def distance_to_segment(p: Point, a: Point, b: Point) -> float:
    dx, dy = b.x - a.x, b.y - a.y
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return distance(p, a)
    t = clamp(((p.x - a.x) * dx + (p.y - a.y) * dy) / length_sq, 0.0, 1.0)
    return distance(p, Point(a.x + t * dx, a.y + t * dy))


def handles_for(ann: Annotation) -> tuple[str, ...]:
    if not isinstance(ann, ShapeAnnotation):
        return ()
    return LINE_HANDLES if ann.shape_type is ShapeType.LINE else BOX_HANDLES


def handle_position(shape: ShapeAnnotation, handle: str) -> Point:
    if shape.shape_type is ShapeType.LINE:
        assert shape.endpoints is not None
        return shape.endpoints[0] if handle == "start" else shape.endpoints[1]
    x = shape.x + shape.width / 2
    y = shape.y + shape.height / 2
    if "w" in handle:
        x = shape.x
    if "e" in handle:
        x = shape.x + shape.width
    if "n" in handle:
        y = shape.y
    if "s" in handle:
        y = shape.y + shape.height
    return Point(x, y)


def translate(ann: Annotation, dx: float, dy: float, bounds: tuple[float, float]) -> Annotation:
    """Move an annotation by (dx, dy). Chips stay inside the image bounds."""
    if isinstance(ann, PathAnnotation):
        return replace(ann, points=tuple(p.offset(dx, dy) for p in ann.points))
    if isinstance(ann, ShapeAnnotation):
        if ann.shape_type is ShapeType.LINE and ann.endpoints is not None:
            start, end = ann.endpoints
            return replace(ann, endpoints=(start.offset(dx, dy), end.offset(dx, dy)))
        return replace(ann, x=ann.x + dx, y=ann.y + dy)
    width, height = bounds
    anchor = Point(clamp(ann.anchor.x + dx, 0, width), clamp(ann.anchor.y + dy, 0, height))
    return replace(ann, anchor=anchor)


def resize(shape: ShapeAnnotation, handle: str, dx: float, dy: float, pointer: Point) -> ShapeAnnotation:
    """Apply a handle drag to a shape.

    Box handles keep the opposite edges fixed and never shrink below
    MIN_SHAPE_SIZE. Line handles put that endpoint on the pointer.
    """
    if shape.shape_type is ShapeType.LINE:
        if handle not in LINE_HANDLES or shape.endpoints is None:
            raise ValueError(f"Unsupported handle for line: {handle}")
        start, end = shape.endpoints
        endpoints = (pointer, end) if handle == "start" else (start, pointer)
        return replace(shape, endpoints=endpoints)

    if handle not in BOX_HANDLES:
        raise ValueError(f"Unsupported handle: {handle}")
    left, top = shape.x, shape.y
    right, bottom = shape.x + shape.width, shape.y + shape.height
    if "w" in handle:
        left = min(left + dx, right - MIN_SHAPE_SIZE)
    if "e" in handle:
        right = max(right + dx, left + MIN_SHAPE_SIZE)
    if "n" in handle:
        top = min(top + dy, bottom - MIN_SHAPE_SIZE)
    if "s" in handle:
        bottom = max(bottom + dy, top + MIN_SHAPE_SIZE)
    return replace(shape, x=left, y=top, width=right - left, height=bottom - top)


def _hits_body(ann: Annotation, p: Point) -> bool:
    if isinstance(ann, (StampAnnotation, ReferenceAnnotation)):
        return distance(p, ann.anchor) <= CHIP_RADIUS
    if isinstance(ann, PathAnnotation):
        reach = max(ann.stroke_width / 2, LINE_TOLERANCE)
        if len(ann.points) == 1:
            return distance(p, ann.points[0]) <= reach
        return any(
            distance_to_segment(p, a, b) <= reach for a, b in zip(ann.points, ann.points[1:])
        )
    if ann.shape_type is ShapeType.LINE:
        assert ann.endpoints is not None
        reach = max(ann.stroke_width / 2, LINE_TOLERANCE)
        return distance_to_segment(p, *ann.endpoints) <= reach
    pad = ann.stroke_width / 2
    if ann.shape_type is ShapeType.CIRCLE:
        rx, ry = ann.width / 2 + pad, ann.height / 2 + pad
        if rx <= 0 or ry <= 0:
            return False
        cx, cy = ann.x + ann.width / 2, ann.y + ann.height / 2
        return ((p.x - cx) / rx) ** 2 + ((p.y - cy) / ry) ** 2 <= 1.0
    return (
        ann.x - pad <= p.x <= ann.x + ann.width + pad
        and ann.y - pad <= p.y <= ann.y + ann.height + pad
    )


def hit_test(annotations: tuple[Annotation, ...], p: Point) -> tuple[str, str | None] | None:
    """Return (annotation id, handle) under the pointer, topmost first. Handles win over bodies."""
    for ann in reversed(annotations):
        if isinstance(ann, ShapeAnnotation):
            for handle in handles_for(ann):
                if distance(p, handle_position(ann, handle)) <= HANDLE_RADIUS:
                    return ann.id, handle
    for ann in reversed(annotations):
        if _hits_body(ann, p):
            return ann.id, None
    return None

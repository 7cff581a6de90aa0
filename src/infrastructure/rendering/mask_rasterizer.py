from __future__ import annotations

from collections.abc import Iterable
from io import BytesIO

from PIL import Image, ImageDraw

from src.domain.entities.annotation import (
    Annotation,
    PathAnnotation,
    Point,
    ShapeAnnotation,
    ShapeType,
    StampAnnotation,
)
from src.domain.services.annotation_geometry import CHIP_RADIUS


class MaskRasterizer:
    """Renders annotations into a black/white PNG mask (white = edit region).

    Annotations live in display coordinates; the mask is drawn at the pixel
    size of the source image.
    """

    def render(
        self,
        annotations: Iterable[Annotation],
        display_size: tuple[float, float],
        pixel_size: tuple[int, int],
    ) -> bytes | None:
        maskable = [a for a in annotations if isinstance(a, (PathAnnotation, ShapeAnnotation, StampAnnotation))]
        if not maskable:
            return None

        px_w, px_h = pixel_size
        sx = px_w / display_size[0]
        sy = px_h / display_size[1]
        scale = (sx + sy) / 2

        def to_px(p: Point) -> tuple[float, float]:
            return p.x * sx, p.y * sy

        mask = Image.new("L", (px_w, px_h), 0)
        draw = ImageDraw.Draw(mask)
        for ann in maskable:
            if isinstance(ann, PathAnnotation):
                width = max(1, round(ann.stroke_width * scale))
                points = [to_px(p) for p in ann.points]
                if not points:
                    continue
                if len(points) > 1:
                    draw.line(points, fill=255, width=width, joint="curve")
                r = width / 2
                for x, y in (points[0], points[-1]):
                    draw.ellipse((x - r, y - r, x + r, y + r), fill=255)
            elif isinstance(ann, ShapeAnnotation):
                width = max(1, round(ann.stroke_width * scale))
                if ann.shape_type is ShapeType.LINE and ann.endpoints is not None:
                    draw.line([to_px(p) for p in ann.endpoints], fill=255, width=width)
                    continue
                box = (ann.x * sx, ann.y * sy, (ann.x + ann.width) * sx, (ann.y + ann.height) * sy)
                if ann.shape_type is ShapeType.CIRCLE:
                    draw.ellipse(box, outline=255, width=width)
                else:
                    draw.rectangle(box, outline=255, width=width)
            else:
                x, y = to_px(ann.anchor)
                r = CHIP_RADIUS * scale
                draw.ellipse((x - r, y - r, x + r, y + r), fill=255)

        buf = BytesIO()
        mask.save(buf, format="PNG")
        return buf.getvalue()

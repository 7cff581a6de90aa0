from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime

from src.domain.entities.annotation import Annotation
from src.domain.entities.generation_job import GenerationJobEntity
from src.domain.entities.image import ImageEntity
from src.domain.entities.row import ImageRow
from src.domain.services.lineage_service import LineageGrouper


@dataclass(frozen=True)
class Notification:
    level: str  # "success" | "error" | "info"
    message: str


class CanvasStore:
    """Id-indexed entity map shared by the grouper, the generation controller and the editors."""

    def __init__(self, grouper: LineageGrouper | None = None) -> None:
        self.grouper = grouper or LineageGrouper()
        self.images: dict[str, ImageEntity] = {}
        self.jobs: dict[str, GenerationJobEntity] = {}
        self.notifications: deque[Notification] = deque(maxlen=50)

    def replace_all(
        self, images: dict[str, ImageEntity], jobs: dict[str, GenerationJobEntity]
    ) -> None:
        # jobs still running in this process survive a reload even if their
        # job record never reached persistence
        for job_id, job in self.jobs.items():
            if job_id not in images and job_id in self.images:
                images[job_id] = self.images[job_id]
                jobs.setdefault(job_id, job)
        self.images = images
        self.jobs = jobs

    def get(self, image_id: str) -> ImageEntity | None:
        return self.images.get(image_id)

    def put(self, image: ImageEntity) -> None:
        self.images[image.id] = image

    def remove(self, image_ids: Iterable[str]) -> None:
        for image_id in image_ids:
            self.images.pop(image_id, None)
            self.jobs.pop(image_id, None)

    def put_job(self, job: GenerationJobEntity) -> None:
        self.jobs[job.id] = job

    def remove_job(self, job_id: str) -> None:
        self.jobs.pop(job_id, None)

    def update_annotations(self, image_id: str, annotations: Iterable[Annotation]) -> None:
        image = self.images.get(image_id)
        if image is None:
            return
        self.images[image_id] = replace(
            image, annotations=tuple(annotations), updated_at=datetime.now(UTC)
        )

    def count_generating(self) -> int:
        return sum(1 for img in self.images.values() if img.is_generating)

    def row_of(self, image_id: str) -> ImageRow | None:
        for row in self.rows():
            if any(item.id == image_id for item in row.items):
                return row
        return None

    def rows(self) -> list[ImageRow]:
        return self.grouper.group(self.images)

    def notify(self, level: str, message: str) -> None:
        self.notifications.append(Notification(level=level, message=message))

    def drain_notifications(self) -> list[Notification]:
        items = list(self.notifications)
        self.notifications.clear()
        return items

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta

from src.domain.entities.generation_job import GenerationJobEntity
from src.domain.entities.image import DISPLAY_HEIGHT, ImageEntity
from src.domain.entities.row import ImageRow
from src.domain.services.quality_service import DEFAULT_QUALITY, QUALITY_TIERS, estimate_duration_ms

logger = logging.getLogger(__name__)

MAX_LINEAGE_DEPTH = 50
STALE_JOB_WINDOW = timedelta(minutes=10)


@dataclass(frozen=True)
class LineageResult:
    rows: list[ImageRow]
    entities: dict[str, ImageEntity]
    active_jobs: dict[str, GenerationJobEntity]
    stale_job_ids: list[str]


class LineageGrouper:
    """Rebuilds version families from a flat, possibly partial, record set.

    Parent links are followed through an id-indexed map with a hard depth bound.
    A parent that is not loaded (pagination) still acts as the family key, so its
    children share a row even though the parent itself is invisible.
    """

    def __init__(
        self,
        max_depth: int = MAX_LINEAGE_DEPTH,
        stale_window: timedelta = STALE_JOB_WINDOW,
    ) -> None:
        self.max_depth = max_depth
        self.stale_window = stale_window

    def build_rows(
        self,
        images: Iterable[ImageEntity],
        jobs: Iterable[GenerationJobEntity],
        now: datetime,
    ) -> LineageResult:
        entities: dict[str, ImageEntity] = {img.id: img for img in images}
        active, stale = self.partition_jobs(jobs, now)

        pending = {job.id: job for job in active if job.id not in entities}
        for job in pending.values():
            entities[job.id] = self.placeholder_for(job, entities, concurrent_jobs=len(pending))

        return LineageResult(
            rows=self.group(entities),
            entities=entities,
            active_jobs=pending,
            stale_job_ids=[job.id for job in stale],
        )

    def partition_jobs(
        self, jobs: Iterable[GenerationJobEntity], now: datetime
    ) -> tuple[list[GenerationJobEntity], list[GenerationJobEntity]]:
        active: list[GenerationJobEntity] = []
        stale: list[GenerationJobEntity] = []
        for job in jobs:
            if job.is_terminal:
                continue
            if now - job.created_at > self.stale_window:
                stale.append(job)
            else:
                active.append(job)
        if stale:
            logger.info("Pruning %d abandoned generation job(s)", len(stale))
        return active, stale

    def placeholder_for(
        self,
        job: GenerationJobEntity,
        entities: Mapping[str, ImageEntity],
        concurrent_jobs: int = 1,
    ) -> ImageEntity:
        parent = entities.get(job.parent_id) if job.parent_id else None
        quality = job.quality if job.quality in QUALITY_TIERS else DEFAULT_QUALITY
        base_name = parent.family_name if parent else None
        version = (parent.version + 1) if parent else 1
        return ImageEntity(
            id=job.id,
            user_id=job.user_id,
            width=parent.width if parent else float(DISPLAY_HEIGHT),
            height=parent.height if parent else float(DISPLAY_HEIGHT),
            real_width=parent.real_width if parent else None,
            real_height=parent.real_height if parent else None,
            created_at=job.created_at,
            title=f"{base_name}_v{version}" if base_name else "untitled",
            base_name=base_name,
            version=version,
            parent_id=job.parent_id,
            generation_prompt=job.prompt,
            quality=quality,
            is_generating=True,
            generation_started_at=job.created_at,
            estimated_duration_ms=estimate_duration_ms(quality, concurrent_jobs),
        )

    def root_key(self, entity: ImageEntity, entities: Mapping[str, ImageEntity]) -> str:
        current = entity
        seen = {entity.id}
        for _ in range(self.max_depth):
            parent_id = (current.parent_id or "").strip()
            if current.parent_id is not None and parent_id in ("", current.id):
                # blank or self reference, at any depth: the family is keyed by
                # the name of the image carrying it
                return self.fallback_key(current)
            if not parent_id:
                return current.id
            if parent_id in seen:
                logger.warning("Cyclic lineage detected at image %s", current.id)
                return self.fallback_key(entity)
            parent = entities.get(parent_id)
            if parent is None:
                return parent_id
            seen.add(parent_id)
            current = parent
        logger.warning("Lineage of image %s exceeds depth %d", entity.id, self.max_depth)
        return self.fallback_key(entity)

    @staticmethod
    def fallback_key(entity: ImageEntity) -> str:
        return f"name:{entity.family_name}"

    def group(self, entities: Mapping[str, ImageEntity]) -> list[ImageRow]:
        groups: dict[str, list[ImageEntity]] = {}
        for entity in entities.values():
            groups.setdefault(self.root_key(entity, entities), []).append(entity)

        rows: list[ImageRow] = []
        for key, items in groups.items():
            items.sort(key=lambda i: (i.created_at, i.id))
            root = entities.get(key)
            title = (root or items[0]).family_name
            rows.append(ImageRow(id=key, title=title, items=tuple(items), created_at=items[0].created_at))

        rows.sort(key=lambda r: r.id)
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows

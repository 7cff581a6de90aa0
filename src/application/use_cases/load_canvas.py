from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from src.application.canvas_session import CanvasSession
from src.domain.entities.row import ImageRow
from src.domain.services.lineage_service import LineageGrouper
from src.infrastructure.database.repositories.generation_job_repository import GenerationJobRepository
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)


@dataclass
class CanvasSnapshot:
    rows: list[ImageRow]
    urls: dict[str, str]


@dataclass
class LoadCanvasUseCase:
    image_repo: ImageRepository
    job_repo: GenerationJobRepository
    profile_repo: ProfileRepository
    storage: SupabaseStorage
    page_size: int = 200
    url_ttl_sec: int = 3600
    now: Callable[[], datetime] = lambda: datetime.now(UTC)

    def execute(self, session: CanvasSession, email: str | None = None, offset: int = 0) -> CanvasSnapshot:
        """
        Reload the user's canvas from persistence.

        Completed records and unfinished jobs are regrouped into rows; jobs
        older than the stale window are deleted. The stored balance replaces
        whatever the ledger believed.
        """
        user_id = session.user_id
        images = self.image_repo.list_by_user(user_id, limit=self.page_size, offset=offset)
        jobs = self.job_repo.list_by_user(user_id)

        grouper: LineageGrouper = session.store.grouper
        result = grouper.build_rows(images, jobs, self.now())
        if result.stale_job_ids:
            try:
                self.job_repo.delete_many(result.stale_job_ids, user_id)
            except Exception as exc:
                logger.warning("Could not delete abandoned jobs for %s: %s", user_id, exc)

        session.store.replace_all(dict(result.entities), dict(result.active_jobs))
        # editors for images that vanished are stale
        session.drop_engines([i for i in session.engines if i not in session.store.images])

        profile = self.profile_repo.get(user_id) or self.profile_repo.upsert(user_id, email)
        session.ledger.apply_authoritative(profile.credits, profile.role)

        rows = session.store.rows()
        session.navigator.refresh(rows)
        session.loaded = True

        paths = [p for img in session.store.images.values() for p in (img.path, img.thumb_path) if p]
        urls = self.storage.create_signed_urls(paths, self.url_ttl_sec)
        return CanvasSnapshot(rows=rows, urls=urls)

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.application.canvas_session import CanvasSession
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)


@dataclass
class DeleteImagesUseCase:
    storage: SupabaseStorage
    image_repo: ImageRepository

    def execute(self, session: CanvasSession, image_ids: list[str]) -> list[str]:
        """Delete completed images. Placeholders of running jobs are left alone."""
        targets = []
        for image_id in dict.fromkeys(image_ids):
            image = session.store.get(image_id) or self.image_repo.get(image_id)
            if image is None or image.user_id != session.user_id:
                continue
            if image.is_generating:
                logger.info("Skipping delete of generating image %s", image_id)
                continue
            targets.append(image)
        if not targets:
            return []

        deleted_ids = [img.id for img in targets]
        self.image_repo.delete_many(deleted_ids, session.user_id)
        try:
            self.storage.delete([p for img in targets for p in (img.path, img.thumb_path) if p])
        except RuntimeError as exc:
            logger.warning("Stored files of %d image(s) were not removed: %s", len(targets), exc)

        session.store.remove(deleted_ids)
        session.drop_engines(deleted_ids)
        session.refresh_selection()
        return deleted_ids

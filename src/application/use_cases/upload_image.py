from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from src.domain.entities.image import ImageEntity, display_size
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.storage.supabase_storage import SupabaseStorage, make_thumbnail


@dataclass
class UploadImageUseCase:
    storage: SupabaseStorage
    image_repo: ImageRepository

    def execute(
        self,
        user_id: str,
        data: bytes,
        ext: str,
        original_filename: str,
        *,
        mime_type: str | None = None,
    ) -> ImageEntity:
        """
        Upload a new image.

        Uploads start their own row: version 1, no parent, named after the file.
        """
        stored = self.storage.upload_bytes(user_id=user_id, data=data, ext=ext)
        thumb = self.storage.upload_bytes(user_id=user_id, data=make_thumbnail(data), ext="jpg", folder="thumbs")
        width, height = display_size(stored.width, stored.height)
        base_name = Path(original_filename or "").stem or "untitled"
        entity = ImageEntity(
            id=str(uuid.uuid4()),
            user_id=user_id,
            width=width,
            height=height,
            real_width=stored.width,
            real_height=stored.height,
            created_at=datetime.now(UTC),
            title=base_name,
            base_name=base_name,
            version=1,
            path=stored.path,
            thumb_path=thumb.path,
            mime_type=mime_type or stored.content_type,
        )
        return self.image_repo.create(entity)

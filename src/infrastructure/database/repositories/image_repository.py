from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from supabase import Client

from src.domain.entities.annotation import Annotation, annotation_to_dict, annotations_from_json
from src.domain.entities.image import ImageEntity, display_size
from src.infrastructure.config import Settings, get_settings
from src.infrastructure.database.postgres_client import Json, get_postgres_client

logger = logging.getLogger(__name__)

# module-level in-memory store for disabled mode
_MEM_IMAGES: dict[str, ImageEntity] = {}

# entity field -> canvas_images column
_COLUMNS = {
    "path": "storage_path",
    "thumb_path": "thumb_storage_path",
    "width": "width",
    "height": "height",
    "real_width": "real_width",
    "real_height": "real_height",
    "title": "title",
    "draft_prompt": "user_draft_prompt",
    "annotations": "annotations",
}


def _parse_ts(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


def _encode(field_name: str, value: Any) -> Any:
    if field_name == "annotations":
        return [annotation_to_dict(a) for a in value]
    if field_name in ("width", "height"):
        return round(value)
    return value


class ImageRepository:
    def __init__(self, client: Client | None, settings: Settings | None = None) -> None:
        self.client = client
        self.settings = settings or get_settings()
        self.pg_client = get_postgres_client(self.settings)

    @property
    def in_memory(self) -> bool:
        return self.pg_client is None and (self.settings.supabase_disabled or self.client is None)

    def _row_to_entity(self, row: dict) -> ImageEntity:
        """Convert a canvas_images row to ImageEntity."""
        # PostgreSQL returns datetime/dict, Supabase returns ISO strings / JSON text
        annotations = row.get("annotations")
        if isinstance(annotations, str):
            annotations = json.loads(annotations)
        params = row.get("generation_params") or {}
        if isinstance(params, str):
            params = json.loads(params)

        width, height = float(row["width"]), float(row["height"])
        if width > 0 and height > 0:
            width, height = display_size(row["width"], row["height"])

        return ImageEntity(
            id=row["id"],
            user_id=row["user_id"],
            width=width,
            height=height,
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row.get("updated_at")),
            title=row.get("title") or "untitled",
            path=row.get("storage_path"),
            thumb_path=row.get("thumb_storage_path"),
            parent_id=row.get("parent_id"),
            base_name=row.get("base_name"),
            version=row.get("version") or 1,
            real_width=row.get("real_width"),
            real_height=row.get("real_height"),
            mime_type=row.get("mime_type") or "image/png",
            generation_prompt=row.get("prompt"),
            draft_prompt=row.get("user_draft_prompt") or "",
            annotations=annotations_from_json(annotations),
            quality=params.get("quality"),
            model_version=row.get("model_version"),
        )

    def _entity_to_row(self, entity: ImageEntity) -> dict[str, Any]:
        return {
            "id": entity.id,
            "user_id": entity.user_id,
            "storage_path": entity.path,
            "thumb_storage_path": entity.thumb_path,
            "width": round(entity.width),
            "height": round(entity.height),
            "real_width": entity.real_width,
            "real_height": entity.real_height,
            "mime_type": entity.mime_type,
            "model_version": entity.model_version,
            "title": entity.title,
            "base_name": entity.base_name,
            "version": entity.version,
            "prompt": entity.generation_prompt,
            "user_draft_prompt": entity.draft_prompt,
            "parent_id": entity.parent_id,
            "annotations": [annotation_to_dict(a) for a in entity.annotations],
            "generation_params": {"quality": entity.quality},
            "created_at": entity.created_at.isoformat(),
        }

    def create(self, entity: ImageEntity) -> ImageEntity:
        if entity.is_generating or entity.path is None:
            raise ValueError("Only completed images can be persisted")

        # PostgreSQL mode
        if self.pg_client:
            row = self._entity_to_row(entity)
            row["annotations"] = Json(row["annotations"])
            row["generation_params"] = Json(row["generation_params"])
            columns = ", ".join(row)
            placeholders = ", ".join(["%s"] * len(row))
            try:
                saved = self.pg_client.execute_returning(
                    f"INSERT INTO canvas_images ({columns}) VALUES ({placeholders}) RETURNING *",
                    tuple(row.values()),
                )
            except Exception as exc:
                raise RuntimeError(f"PostgreSQL insert image failed: {exc}") from exc
            return self._row_to_entity(saved)

        # In-memory mode
        if self.in_memory:
            _MEM_IMAGES[entity.id] = entity
            return entity

        # Supabase mode
        try:  # pragma: no cover - network
            res = self.client.table("canvas_images").insert(self._entity_to_row(entity)).execute()
            return self._row_to_entity(res.data[0])
        except Exception as exc:
            raise RuntimeError(f"DB insert image failed: {exc}") from exc

    def list_by_user(self, user_id: str, limit: int = 200, offset: int = 0) -> list[ImageEntity]:
        """One page of the user's images, newest first."""
        # PostgreSQL mode
        if self.pg_client:
            rows = self.pg_client.fetch_all(
                """
                SELECT * FROM canvas_images WHERE user_id = %s
                ORDER BY created_at DESC LIMIT %s OFFSET %s
                """,
                (user_id, limit, offset),
            )
            return [self._row_to_entity(row) for row in rows]

        # In-memory mode
        if self.in_memory:
            items = [img for img in _MEM_IMAGES.values() if img.user_id == user_id]
            items.sort(key=lambda i: i.created_at, reverse=True)
            return items[offset : offset + limit]

        # Supabase mode
        try:  # pragma: no cover - network
            res = (
                self.client.table("canvas_images")
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
            return [self._row_to_entity(row) for row in res.data or []]
        except Exception as exc:
            raise RuntimeError(f"DB list images failed: {exc}") from exc

    def get(self, image_id: str) -> ImageEntity | None:
        # PostgreSQL mode
        if self.pg_client:
            row = self.pg_client.fetch_one("SELECT * FROM canvas_images WHERE id = %s", (image_id,))
            return self._row_to_entity(row) if row else None

        # In-memory mode
        if self.in_memory:
            return _MEM_IMAGES.get(image_id)

        # Supabase mode
        try:  # pragma: no cover - network
            res = self.client.table("canvas_images").select("*").eq("id", image_id).limit(1).execute()
            return self._row_to_entity(res.data[0]) if res.data else None
        except Exception as exc:
            raise RuntimeError(f"DB get image failed: {exc}") from exc

    def _update(self, image_id: str, user_id: str, changes: dict[str, Any]) -> None:
        now = datetime.now(UTC)
        data = {_COLUMNS[name]: _encode(name, value) for name, value in changes.items()}

        # PostgreSQL mode
        if self.pg_client:
            if "annotations" in data:
                data["annotations"] = Json(data["annotations"])
            assignments = ", ".join(f"{column} = %s" for column in data)
            try:
                self.pg_client.execute(
                    f"UPDATE canvas_images SET {assignments}, updated_at = %s WHERE id = %s AND user_id = %s",
                    (*data.values(), now, image_id, user_id),
                )
            except Exception as exc:
                raise RuntimeError(f"PostgreSQL update image failed: {exc}") from exc
            return

        # In-memory mode
        if self.in_memory:
            current = _MEM_IMAGES.get(image_id)
            if current is None or current.user_id != user_id:
                return
            if "annotations" in changes:
                changes = {**changes, "annotations": tuple(changes["annotations"])}
            _MEM_IMAGES[image_id] = replace(current, updated_at=now, **changes)
            return

        # Supabase mode
        try:  # pragma: no cover - network
            data["updated_at"] = now.isoformat()
            (
                self.client.table("canvas_images")
                .update(data)
                .eq("id", image_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as exc:
            raise RuntimeError(f"DB update image failed: {exc}") from exc

    def update_annotations(self, image_id: str, user_id: str, annotations: tuple[Annotation, ...]) -> None:
        self._update(image_id, user_id, {"annotations": annotations})

    def update_draft_prompt(self, image_id: str, user_id: str, text: str) -> None:
        self._update(image_id, user_id, {"draft_prompt": text})

    def update_title(self, image_id: str, user_id: str, title: str) -> None:
        self._update(image_id, user_id, {"title": title})

    def update_dimensions(
        self,
        image_id: str,
        user_id: str,
        width: float,
        height: float,
        real_width: int,
        real_height: int,
    ) -> None:
        self._update(
            image_id,
            user_id,
            {"width": width, "height": height, "real_width": real_width, "real_height": real_height},
        )

    def delete_many(self, image_ids: list[str], user_id: str) -> int:
        if not image_ids:
            return 0
        # PostgreSQL mode
        if self.pg_client:
            return self.pg_client.execute(
                "DELETE FROM canvas_images WHERE id = ANY(%s) AND user_id = %s",
                (list(image_ids), user_id),
            )

        # In-memory mode
        if self.in_memory:
            removed = 0
            for image_id in image_ids:
                img = _MEM_IMAGES.get(image_id)
                if img is not None and img.user_id == user_id:
                    del _MEM_IMAGES[image_id]
                    removed += 1
            return removed

        # Supabase mode
        try:  # pragma: no cover - network
            res = (
                self.client.table("canvas_images")
                .delete()
                .in_("id", list(image_ids))
                .eq("user_id", user_id)
                .execute()
            )
            return len(res.data or [])
        except Exception as exc:
            raise RuntimeError(f"DB delete images failed: {exc}") from exc

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from supabase import Client

from src.infrastructure.config import Settings, get_settings

logger = logging.getLogger(__name__)

THUMBNAIL_MAX_SIDE = 384
LOCAL_URL_PREFIX = "/local-storage"

_CONTENT_TYPES = {"png": "image/png", "jpg": "image/jpeg", "jpeg": "image/jpeg", "webp": "image/webp"}


@dataclass
class StorageResult:
    path: str
    width: int
    height: int
    content_type: str
    size: int


def read_dimensions(data: bytes) -> tuple[int, int]:
    """Pixel size of an encoded image."""
    try:
        with Image.open(BytesIO(data)) as img:
            return img.size
    except UnidentifiedImageError as exc:
        raise ValueError("Unsupported image data") from exc


def make_thumbnail(data: bytes, max_side: int = THUMBNAIL_MAX_SIDE) -> bytes:
    """Downscaled JPEG preview used by the canvas grid."""
    try:
        img = Image.open(BytesIO(data))
    except UnidentifiedImageError as exc:
        raise ValueError("Unsupported image data") from exc
    img = img.convert("RGB")
    img.thumbnail((max_side, max_side))
    buf = BytesIO()
    img.save(buf, format="JPEG", quality=85)
    return buf.getvalue()


def content_type_for(ext: str) -> str:
    return _CONTENT_TYPES.get(ext.lower().lstrip("."), "application/octet-stream")


class SupabaseStorage:
    """Storage adapter for Supabase Storage with a local fake fallback."""

    def __init__(self, client: Client | None, settings: Settings | None = None) -> None:
        self.client = client
        settings = settings or get_settings()
        self.bucket = settings.storage_bucket
        self.local = settings.supabase_disabled or client is None
        self.local_dir = Path(settings.local_storage_dir)
        if self.local:
            self.local_dir.mkdir(parents=True, exist_ok=True)

    def upload_bytes(self, user_id: str, data: bytes, ext: str = "png", folder: str | None = None) -> StorageResult:
        ext = ext.lower().lstrip(".")
        content_type = content_type_for(ext)
        width, height = read_dimensions(data)
        prefix = f"{user_id}/{folder}" if folder else user_id
        storage_path = f"{prefix}/{uuid.uuid4()}.{ext}"
        if self.local:
            # local fake storage
            full_path = self.local_dir / storage_path
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(data)
            return StorageResult(path=storage_path, width=width, height=height, content_type=content_type, size=len(data))
        # real upload
        try:  # pragma: no cover - network
            self.client.storage.from_(self.bucket).upload(  # type: ignore[attr-defined]
                path=storage_path,
                file=data,
                file_options={"content-type": content_type},
            )
            return StorageResult(path=storage_path, width=width, height=height, content_type=content_type, size=len(data))
        except Exception as exc:  # pragma: no cover
            raise RuntimeError(f"Storage upload failed: {exc}") from exc

    def download_bytes(self, path: str) -> bytes:
        if self.local:
            full_path = self.local_dir / path
            if not full_path.exists():
                raise ValueError("Stored object not found")
            return full_path.read_bytes()
        try:  # pragma: no cover - network
            return self.client.storage.from_(self.bucket).download(path)  # type: ignore[attr-defined]
        except Exception as exc:  # pragma: no cover
            raise RuntimeError(f"Storage download failed: {exc}") from exc

    def delete(self, paths: list[str]) -> None:
        paths = [p for p in paths if p]
        if not paths:
            return
        if self.local:
            for path in paths:
                full_path = self.local_dir / path
                if full_path.exists():
                    full_path.unlink()
            return
        try:  # pragma: no cover - network
            self.client.storage.from_(self.bucket).remove(paths)  # type: ignore[attr-defined]
        except Exception as exc:
            raise RuntimeError(f"Storage delete failed: {exc}") from exc

    def create_signed_urls(self, paths: list[str], expires_in: int) -> dict[str, str]:
        """Map each path to a short-lived URL. Paths the backend cannot sign are left out."""
        paths = list(dict.fromkeys(p for p in paths if p))
        if not paths:
            return {}
        if self.local:
            return {p: f"{LOCAL_URL_PREFIX}/{p}" for p in paths if (self.local_dir / p).exists()}
        try:  # pragma: no cover - network
            signed = self.client.storage.from_(self.bucket).create_signed_urls(paths, expires_in)  # type: ignore[attr-defined]
        except Exception as exc:  # pragma: no cover
            raise RuntimeError(f"Storage signing failed: {exc}") from exc
        urls: dict[str, str] = {}
        for entry in signed:  # pragma: no cover - network
            url = entry.get("signedURL") or entry.get("signedUrl")
            if entry.get("error") or not url:
                logger.warning("Could not sign %s: %s", entry.get("path"), entry.get("error"))
                continue
            urls[entry["path"]] = url
        return urls

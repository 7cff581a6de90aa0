"""Clients for the external image generation backend.

`HttpGenerationClient` posts the request to the configured endpoint (the
hosted edge function); `LocalGenerationClient` renders a deterministic tint so
the service works end to end without one.
"""
from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Protocol

import httpx
import numpy as np
from PIL import Image

from src.infrastructure.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class GenerationRequest:
    job_id: str
    user_id: str
    source_image: bytes
    prompt: str
    quality: str
    mask: bytes | None = None
    references: list[bytes] = field(default_factory=list)
    parent_id: str | None = None


@dataclass
class GenerationResult:
    image_bytes: bytes
    mime_type: str = "image/png"
    model_version: str | None = None
    # set when the backend stored the image and its record itself
    storage_path: str | None = None
    record_size: tuple[int, int] | None = None


class GenerationClient(Protocol):
    async def generate(self, request: GenerationRequest) -> GenerationResult: ...


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: str) -> bytes:
    # accept data URLs as well as bare base64
    if "," in value:
        value = value.split(",", 1)[1]
    return base64.b64decode(value)


class HttpGenerationClient:
    def __init__(self, endpoint: str, api_key: str | None = None, timeout_sec: float = 120.0) -> None:
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout_sec = timeout_sec

    def _payload(self, request: GenerationRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "jobId": request.job_id,
            "userId": request.user_id,
            "parentId": request.parent_id,
            "imageBase64": _b64(request.source_image),
            "prompt": request.prompt,
            "qualityMode": request.quality,
            "referenceImages": [_b64(r) for r in request.references],
        }
        if request.mask is not None:
            payload["maskBase64"] = _b64(request.mask)
        return payload

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout_sec) as client:
                response = await client.post(self.endpoint, headers=headers, json=self._payload(request))
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Generation request failed: {exc}") from exc

        if response.status_code >= 400:
            raise RuntimeError(f"Generation request failed ({response.status_code}): {response.text[:500]}")

        data = response.json()
        if not data.get("imageBase64"):
            raise RuntimeError("No image returned from generation backend")

        record_size = None
        if data.get("width") and data.get("height"):
            record_size = (int(data["width"]), int(data["height"]))
        return GenerationResult(
            image_bytes=_unb64(data["imageBase64"]),
            mime_type=data.get("mimeType") or "image/png",
            model_version=data.get("modelVersion") or request.quality,
            storage_path=data.get("storagePath"),
            record_size=record_size,
        )


class LocalGenerationClient:
    """Offline stand-in: tints the masked region (or the whole image) with a prompt-derived colour."""

    def __init__(self, strength: float = 0.35) -> None:
        self.strength = strength

    def _render(self, request: GenerationRequest) -> bytes:
        src = Image.open(BytesIO(request.source_image)).convert("RGB")
        arr = np.asarray(src).astype(np.float32) / 255.0

        digest = hashlib.sha256(request.prompt.encode("utf-8")).digest()
        tint = np.array(digest[:3], dtype=np.float32) / 255.0

        if request.mask is not None:
            mask_img = Image.open(BytesIO(request.mask)).convert("L").resize(src.size)
            weight = np.asarray(mask_img).astype(np.float32)[..., None] / 255.0
        else:
            weight = np.ones(arr.shape[:2] + (1,), dtype=np.float32)

        out = arr * (1.0 - self.strength * weight) + tint * (self.strength * weight)
        out_img = Image.fromarray((np.clip(out, 0.0, 1.0) * 255.0).astype("uint8"))
        buf = BytesIO()
        out_img.save(buf, format="PNG")
        return buf.getvalue()

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        image_bytes = await asyncio.to_thread(self._render, request)
        return GenerationResult(image_bytes=image_bytes, model_version=f"local-{request.quality}")


def get_generation_client(settings: Settings | None = None) -> GenerationClient:
    settings = settings or get_settings()
    if settings.generation_endpoint_url:
        return HttpGenerationClient(
            settings.generation_endpoint_url,
            api_key=settings.generation_api_key,
            timeout_sec=settings.generation_timeout_sec,
        )
    logger.info("No generation endpoint configured, using the local renderer")
    return LocalGenerationClient()

from __future__ import annotations

import asyncio
import base64
import logging
import threading
import uuid
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal

from src.domain.entities.annotation import Annotation, ImageHandle, ReferenceAnnotation
from src.domain.entities.generation_job import GenerationJobEntity, JobStatus
from src.domain.entities.image import ImageEntity, display_size
from src.domain.errors import InsufficientCreditsError
from src.domain.services.canvas_store import CanvasStore
from src.domain.services.credit_ledger import CreditLedger
from src.domain.services.quality_service import (
    DEFAULT_QUALITY,
    estimate_duration_ms,
    get_tier,
    progress_fraction,
)
from src.infrastructure.database.repositories.generation_job_repository import GenerationJobRepository
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.generation.generation_client import (
    GenerationClient,
    GenerationRequest,
    GenerationResult,
)
from src.infrastructure.rendering.mask_rasterizer import MaskRasterizer
from src.infrastructure.storage.supabase_storage import (
    SupabaseStorage,
    make_thumbnail,
    read_dimensions,
)

logger = logging.getLogger(__name__)

DIMENSION_TOLERANCE = 1.0  # px; larger record/result differences get repaired
RECENT_OUTCOMES = 100

_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp"}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _decode_inline(data: str) -> bytes:
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    return base64.b64decode(data)


@dataclass
class Submission:
    job: GenerationJobEntity
    placeholder: ImageEntity
    source: ImageEntity
    annotations: tuple[Annotation, ...]


@dataclass
class GenerationOutcome:
    job_id: str
    status: JobStatus
    image: ImageEntity | None = None
    refunded: Decimal = Decimal("0.00")
    error: str | None = None


@dataclass
class GenerationJobController:
    store: CanvasStore
    ledger: CreditLedger
    image_repo: ImageRepository
    job_repo: GenerationJobRepository
    profile_repo: ProfileRepository
    storage: SupabaseStorage
    client: GenerationClient
    rasterizer: MaskRasterizer = field(default_factory=MaskRasterizer)
    now: Callable[[], datetime] = _utcnow
    # shared with the request handlers of the same canvas session
    lock: AbstractContextManager = field(default_factory=threading.RLock, repr=False)
    _repairs: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)
    outcomes: dict[str, GenerationOutcome] = field(default_factory=dict, init=False, repr=False)

    def submit(
        self,
        user_id: str,
        source_image_id: str,
        prompt: str,
        quality: str = DEFAULT_QUALITY,
        annotations: Iterable[Annotation] | None = None,
    ) -> Submission:
        """
        Synchronous half of a generation: charge, insert the placeholder, record the job.

        Everything here finishes before the backend is contacted, so a reload
        or a second submission always sees the new placeholder and the
        reduced balance.
        """
        with self.lock:
            source = self.store.get(source_image_id)
            if source is None or source.user_id != user_id:
                raise ValueError("Image not found")
            if source.is_generating:
                raise ValueError("Source image is still generating")

            tier = get_tier(quality)
            if not self.ledger.can_afford(tier.cost):
                raise InsufficientCreditsError(self.ledger.balance, tier.cost)

            job_id = str(uuid.uuid4())
            debited = self.ledger.debit(job_id, tier.cost)
            if debited and tier.cost > 0:
                try:
                    balance = self.profile_repo.adjust_credits(user_id, -tier.cost)
                except Exception:
                    self.ledger.refund(job_id)
                    raise
                logger.debug("Charged %s for job %s, stored balance %s", tier.cost, job_id, balance)

            anns = tuple(annotations) if annotations is not None else source.annotations
            row = self.store.row_of(source.id)
            siblings = row.items if row else (source,)
            version = max(item.version for item in siblings) + 1
            base = source.family_name
            started = self.now()
            concurrent = self.store.count_generating() + 1

            placeholder = ImageEntity(
                id=job_id,
                user_id=user_id,
                width=source.width,
                height=source.height,
                real_width=source.real_width,
                real_height=source.real_height,
                created_at=started,
                title=f"{base}_v{version}",
                base_name=base,
                version=version,
                parent_id=source.id,
                generation_prompt=prompt,
                quality=quality,
                is_generating=True,
                generation_started_at=started,
                estimated_duration_ms=estimate_duration_ms(quality, concurrent),
            )
            job = GenerationJobEntity(
                id=job_id,
                user_id=user_id,
                parent_id=source.id,
                status=JobStatus.PROCESSING,
                quality=quality,
                cost=tier.cost if debited else Decimal("0.00"),
                created_at=started,
                prompt=prompt,
                kind="inpaint" if any(not isinstance(a, ReferenceAnnotation) for a in anns) else "style",
                concurrent_jobs=concurrent,
            )
            self.store.put(placeholder)
            self.store.put_job(job)

        try:
            self.job_repo.create(job)
        except Exception as exc:
            logger.warning("Could not record generation job %s: %s", job_id, exc)

        logger.info(
            "Submitted job %s (%s, %d in flight, estimate %d ms)",
            job_id,
            quality,
            concurrent,
            placeholder.estimated_duration_ms,
        )
        return Submission(job=job, placeholder=placeholder, source=source, annotations=anns)

    async def run(self, submission: Submission) -> GenerationOutcome:
        """Asynchronous half: call the backend once, then complete or fail the job."""
        job = submission.job
        try:
            request = await self._build_request(submission)
            result = await self.client.generate(request)
            image = await self._complete(submission, result)
        except Exception as exc:
            logger.error("Generation job %s failed: %s", job.id, exc)
            outcome = self._fail(submission, exc)
        else:
            outcome = GenerationOutcome(job_id=job.id, status=JobStatus.COMPLETED, image=image)
        self._remember(outcome)
        return outcome

    def _remember(self, outcome: GenerationOutcome) -> None:
        self.outcomes[outcome.job_id] = outcome
        while len(self.outcomes) > RECENT_OUTCOMES:
            self.outcomes.pop(next(iter(self.outcomes)))

    async def _build_request(self, submission: Submission) -> GenerationRequest:
        source = submission.source
        if not source.path:
            raise ValueError("Source image has no stored file")
        source_bytes = await asyncio.to_thread(self.storage.download_bytes, source.path)

        if source.real_width and source.real_height:
            pixel_size = (source.real_width, source.real_height)
        else:
            pixel_size = read_dimensions(source_bytes)
        mask = self.rasterizer.render(submission.annotations, (source.width, source.height), pixel_size)

        references: list[bytes] = []
        for ann in submission.annotations:
            if isinstance(ann, ReferenceAnnotation):
                references.append(await self._resolve_reference(ann.image))

        return GenerationRequest(
            job_id=submission.job.id,
            user_id=source.user_id,
            source_image=source_bytes,
            prompt=submission.job.prompt,
            quality=submission.job.quality,
            mask=mask,
            references=references,
            parent_id=source.id,
        )

    async def _resolve_reference(self, handle: ImageHandle) -> bytes:
        if handle.storage_path:
            return await asyncio.to_thread(self.storage.download_bytes, handle.storage_path)
        if handle.inline_data:
            return _decode_inline(handle.inline_data)
        raise ValueError("Reference image has no data")

    async def _complete(self, submission: Submission, result: GenerationResult) -> ImageEntity:
        job = submission.job
        real_w, real_h = read_dimensions(result.image_bytes)
        width, height = display_size(real_w, real_h)

        image = replace(
            submission.placeholder,
            width=width,
            height=height,
            real_width=real_w,
            real_height=real_h,
            mime_type=result.mime_type,
            model_version=result.model_version,
            is_generating=False,
            generation_started_at=None,
            estimated_duration_ms=None,
            updated_at=self.now(),
        )

        if result.storage_path:
            # the backend stored the blob and wrote the record itself
            image = replace(image, path=result.storage_path)
            if result.record_size is not None and self._dimensions_differ(result.record_size, (width, height)):
                self._schedule_repair(image)
        else:
            ext = _EXTENSIONS.get(result.mime_type, "png")
            thumb = await asyncio.to_thread(make_thumbnail, result.image_bytes)
            stored = await asyncio.to_thread(self.storage.upload_bytes, job.user_id, result.image_bytes, ext)
            uploaded = [stored.path]
            try:
                thumb_stored = await asyncio.to_thread(
                    self.storage.upload_bytes, job.user_id, thumb, "jpg", "thumbs"
                )
                uploaded.append(thumb_stored.path)
                image = replace(image, path=stored.path, thumb_path=thumb_stored.path)
                await asyncio.to_thread(self.image_repo.create, image)
            except Exception:
                await self._discard_blobs(uploaded)
                raise

        with self.lock:
            self.store.put(image)
            self.store.remove_job(job.id)
            self.ledger.settle(job.id)
            self.store.notify("success", f"{image.title} is ready")
        try:
            await asyncio.to_thread(self.job_repo.delete_many, [job.id], job.user_id)
        except Exception as exc:
            logger.warning("Could not clear job record %s: %s", job.id, exc)
        logger.info("Generation job %s completed (%dx%d)", job.id, real_w, real_h)
        return image

    async def _discard_blobs(self, paths: list[str]) -> None:
        # blobs of a result that never got a record
        try:
            await asyncio.to_thread(self.storage.delete, paths)
        except Exception as exc:
            logger.warning("Could not delete orphaned files %s: %s", paths, exc)

    @staticmethod
    def _dimensions_differ(recorded: tuple[float, float], resolved: tuple[float, float]) -> bool:
        return (
            abs(recorded[0] - resolved[0]) > DIMENSION_TOLERANCE
            or abs(recorded[1] - resolved[1]) > DIMENSION_TOLERANCE
        )

    def _schedule_repair(self, image: ImageEntity) -> None:
        task = asyncio.get_running_loop().create_task(self._repair_dimensions(image))
        self._repairs.add(task)
        task.add_done_callback(self._repairs.discard)

    async def _repair_dimensions(self, image: ImageEntity) -> None:
        try:
            await asyncio.to_thread(
                self.image_repo.update_dimensions,
                image.id,
                image.user_id,
                image.width,
                image.height,
                image.real_width,
                image.real_height,
            )
        except Exception as exc:
            logger.warning("Dimension repair for image %s failed: %s", image.id, exc)
            return
        logger.info("Repaired stored dimensions of image %s", image.id)

    async def wait_for_repairs(self) -> None:
        if self._repairs:
            await asyncio.gather(*list(self._repairs))

    def _fail(self, submission: Submission, exc: Exception) -> GenerationOutcome:
        job = submission.job
        with self.lock:
            refunded = self.ledger.refund(job.id)
            self.store.remove([job.id])
            self.store.notify("error", f"Generation failed: {exc}")
        if refunded > 0:
            try:
                self.profile_repo.adjust_credits(job.user_id, refunded)
            except Exception as refund_exc:
                logger.error("Refund of %s for job %s was not stored: %s", refunded, job.id, refund_exc)

        try:
            self.job_repo.update_status(job.id, JobStatus.FAILED, str(exc))
            self.job_repo.delete_many([job.id], job.user_id)
        except Exception as repo_exc:
            logger.warning("Could not clear failed job %s: %s", job.id, repo_exc)
        return GenerationOutcome(job_id=job.id, status=JobStatus.FAILED, refunded=refunded, error=str(exc))

    def progress(self, image_id: str, now: datetime | None = None) -> float:
        image = self.store.get(image_id)
        if image is None:
            raise ValueError("Image not found")
        if not image.is_generating:
            return 1.0
        return progress_fraction(image.generation_started_at, image.estimated_duration_ms, now or self.now())

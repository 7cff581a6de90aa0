from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from src.application.canvas_session import CanvasSession
from src.application.dtos.common_dto import ErrorResponse
from src.application.dtos.generation_dto import (
    GenerateRequest,
    GenerateResponse,
    GenerationStatusResponse,
)
from src.application.dtos.image_dto import ImageMetadata
from src.application.use_cases.generate_image import GenerationJobController
from src.domain.entities.generation_job import JobStatus
from src.domain.errors import InsufficientCreditsError
from src.infrastructure.api.dependencies import get_controller, get_session

router = APIRouter(
    prefix="/generations",
    tags=["Generation"],
    responses={
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
        404: {"description": "Not Found - Image or job does not exist"},
        422: {"description": "Validation Error - Invalid request format"},
    },
)


@router.post(
    "",
    response_model=GenerateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit Generation",
    description="""
    Start an edit of `image_id` with the given prompt and quality tier.

    The tier cost is charged immediately (pro accounts are not charged) and a
    placeholder version is added to the image's row and focused. The edit runs
    in the background; a failed edit refunds the charge, removes the
    placeholder and posts an error notification.

    The annotations committed on the source image are rasterized into the
    mask; reference chips are sent as reference images.
    """,
    responses={
        400: {"model": ErrorResponse, "description": "Bad Request - Source image is still generating"},
        402: {"model": ErrorResponse, "description": "Payment Required - Not enough credits for the tier"},
    },
)
def submit_generation(
    body: GenerateRequest,
    background_tasks: BackgroundTasks,
    session: CanvasSession = Depends(get_session),
    controller: GenerationJobController = Depends(get_controller),
):
    """Charge, insert the placeholder and schedule the generation."""
    with session.lock:
        engine = session.engines.get(body.image_id)
        annotations = engine.history.current if engine is not None else None
        try:
            submission = controller.submit(
                session.user_id, body.image_id, body.prompt, body.quality, annotations=annotations
            )
        except InsufficientCreditsError as exc:
            raise HTTPException(
                status_code=status.HTTP_402_PAYMENT_REQUIRED,
                detail=f"Insufficient credits: {exc.cost} needed, {exc.balance} available",
            ) from exc
        except ValueError as exc:
            code = 404 if "not found" in str(exc).lower() else 400
            raise HTTPException(status_code=code, detail=str(exc)) from exc

        session.refresh_selection()
        session.navigator.select(submission.placeholder.id)
        credits = session.ledger.balance
    background_tasks.add_task(controller.run, submission)

    return GenerateResponse(
        job_id=submission.job.id,
        placeholder=ImageMetadata.from_entity(submission.placeholder, now=datetime.now(UTC)),
        estimated_duration_ms=submission.placeholder.estimated_duration_ms or 0,
        cost=submission.job.cost,
        credits=credits,
    )


@router.get(
    "/{job_id}",
    response_model=GenerationStatusResponse,
    summary="Generation Status",
    description="Progress of a running job, or the outcome of a recently finished one.",
)
def generation_status(
    job_id: str,
    session: CanvasSession = Depends(get_session),
    controller: GenerationJobController = Depends(get_controller),
):
    """Report job progress."""
    with session.lock:
        image = session.store.get(job_id)
        if image is not None and image.is_generating:
            return GenerationStatusResponse(
                job_id=job_id,
                status=JobStatus.PROCESSING.value,
                progress=controller.progress(job_id),
                image=ImageMetadata.from_entity(image, now=datetime.now(UTC)),
            )
        outcome = controller.outcomes.get(job_id)
    if outcome is not None and outcome.status is JobStatus.FAILED:
        return GenerationStatusResponse(job_id=job_id, status=outcome.status.value, progress=0.0)
    if image is not None:
        return GenerationStatusResponse(
            job_id=job_id,
            status=JobStatus.COMPLETED.value,
            progress=1.0,
            image=ImageMetadata.from_entity(image),
        )
    raise HTTPException(status_code=404, detail="Job not found")

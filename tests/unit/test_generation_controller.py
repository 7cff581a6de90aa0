"""
Tests for the generation job life cycle: charging, placeholders, completion and refunds.
"""
from __future__ import annotations

import asyncio
import io
import threading
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock

import numpy as np
import pytest
from PIL import Image

from src.application.use_cases.generate_image import GenerationJobController
from src.domain.entities.annotation import PathAnnotation, Point
from src.domain.entities.generation_job import JobStatus
from src.domain.entities.image import ImageEntity
from src.domain.errors import InsufficientCreditsError
from src.domain.services.canvas_store import CanvasStore
from src.domain.services.credit_ledger import CreditLedger
from src.domain.services.quality_service import estimate_duration_ms
from src.infrastructure.generation.generation_client import GenerationResult
from src.infrastructure.storage.supabase_storage import StorageResult

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def png(w, h, color=(10, 20, 30)) -> bytes:
    arr = np.zeros((h, w, 3), dtype=np.uint8)
    arr[:, :] = color
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format="PNG")
    return buf.getvalue()


class FakeClient:
    """Generation backend double: returns a fixed result or raises."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.requests = []

    async def generate(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.result


def source_image(image_id="A", version=1) -> ImageEntity:
    return ImageEntity(
        id=image_id,
        user_id="u1",
        width=768.0,
        height=512.0,
        real_width=300,
        real_height=200,
        created_at=NOW - timedelta(hours=1),
        title="cat",
        base_name="cat",
        version=version,
        path=f"u1/{image_id}.png",
    )


@pytest.fixture
def deps():
    storage = Mock()
    storage.download_bytes.return_value = png(300, 200)
    storage.upload_bytes.side_effect = lambda user_id, data, ext="png", folder=None: StorageResult(
        path=f"{user_id}/{folder or 'img'}/new.{ext}", width=1, height=1, content_type="image/png", size=len(data)
    )
    profile_repo = Mock()
    profile_repo.adjust_credits.return_value = Decimal("0.00")
    return {
        "image_repo": Mock(),
        "job_repo": Mock(),
        "profile_repo": profile_repo,
        "storage": storage,
    }


def make_controller(deps, client, balance="1.00", role="user", **extra):
    store = CanvasStore()
    store.put(source_image())
    ledger = CreditLedger(balance, role)
    controller = GenerationJobController(
        store=store,
        ledger=ledger,
        client=client,
        now=lambda: NOW,
        **deps,
        **extra,
    )
    return controller, store, ledger


class TestSubmit:
    def test_charges_and_inserts_placeholder_before_dispatch(self, deps):
        client = FakeClient(result=GenerationResult(image_bytes=png(300, 200)))
        controller, store, ledger = make_controller(deps, client)

        submission = controller.submit("u1", "A", "add a hat", "pro-1k")

        assert ledger.balance == Decimal("0.50")
        deps["profile_repo"].adjust_credits.assert_called_once_with("u1", -Decimal("0.50"))
        placeholder = store.get(submission.job.id)
        assert placeholder.is_generating and placeholder.path is None
        assert placeholder.parent_id == "A"
        assert placeholder.version == 2
        assert placeholder.title == "cat_v2"
        assert (placeholder.width, placeholder.height) == (768.0, 512.0)
        assert submission.job.id in store.jobs
        deps["job_repo"].create.assert_called_once()
        assert client.requests == []

    def test_insufficient_credits_does_not_contact_backend(self, deps):
        client = FakeClient(result=GenerationResult(image_bytes=png(10, 10)))
        controller, store, ledger = make_controller(deps, client, balance="0.40")

        with pytest.raises(InsufficientCreditsError):
            controller.submit("u1", "A", "p", "pro-1k")

        assert ledger.balance == Decimal("0.40")
        assert store.count_generating() == 0
        deps["profile_repo"].adjust_credits.assert_not_called()

    def test_unknown_source_and_quality_rejected(self, deps):
        controller, _, _ = make_controller(deps, FakeClient())
        with pytest.raises(ValueError, match="Image not found"):
            controller.submit("u1", "nope", "p")
        with pytest.raises(ValueError, match="Unsupported quality"):
            controller.submit("u1", "A", "p", "ultra")

    def test_failed_charge_is_reverted(self, deps):
        deps["profile_repo"].adjust_credits.side_effect = RuntimeError("db down")
        controller, store, ledger = make_controller(deps, FakeClient())

        with pytest.raises(RuntimeError):
            controller.submit("u1", "A", "p", "pro-1k")

        assert ledger.balance == Decimal("1.00")
        assert store.count_generating() == 0

    def test_job_log_failure_does_not_block_submission(self, deps):
        deps["job_repo"].create.side_effect = RuntimeError("insert failed")
        controller, store, _ = make_controller(deps, FakeClient())
        submission = controller.submit("u1", "A", "p", "fast")
        assert store.get(submission.job.id).is_generating

    def test_estimate_grows_with_concurrent_jobs(self, deps):
        controller, _, _ = make_controller(deps, FakeClient(), balance="10.00")
        estimates = [
            controller.submit("u1", "A", "p", "pro-2k").placeholder.estimated_duration_ms for _ in range(4)
        ]
        assert estimates == sorted(estimates)
        assert estimates[0] == estimate_duration_ms("pro-2k", 1) == 36_000
        assert estimates[3] == round(36_000 * 1.9)

    def test_versions_follow_the_row_maximum(self, deps):
        controller, store, _ = make_controller(deps, FakeClient(), balance="10.00")
        store.put(
            ImageEntity(
                id="A3",
                user_id="u1",
                width=768.0,
                height=512.0,
                created_at=NOW,
                title="cat_v3",
                base_name="cat",
                parent_id="A",
                version=3,
                path="u1/A3.png",
            )
        )
        submission = controller.submit("u1", "A", "p", "fast")
        assert submission.placeholder.version == 4
        assert submission.placeholder.title == "cat_v4"


class TestRun:
    def test_success_persists_result_and_settles(self, deps):
        client = FakeClient(result=GenerationResult(image_bytes=png(600, 300), model_version="m1"))
        controller, store, ledger = make_controller(deps, client)
        submission = controller.submit("u1", "A", "wider", "pro-1k")

        outcome = asyncio.run(controller.run(submission))

        assert outcome.status is JobStatus.COMPLETED
        image = store.get(submission.job.id)
        assert not image.is_generating
        assert (image.real_width, image.real_height) == (600, 300)
        assert (image.width, image.height) == (1024.0, 512.0)
        assert image.path is not None and image.thumb_path is not None
        assert submission.job.id not in store.jobs
        assert ledger.balance == Decimal("0.50")
        assert ledger.debited(submission.job.id) is None
        deps["image_repo"].create.assert_called_once()
        deps["job_repo"].delete_many.assert_called_once_with([submission.job.id], "u1")
        assert [n.level for n in store.drain_notifications()] == ["success"]

    def test_failure_refunds_and_removes_placeholder(self, deps):
        # parent A exists, placeholder B fails: only A remains and the balance is restored
        client = FakeClient(error=RuntimeError("model overloaded"))
        controller, store, ledger = make_controller(deps, client)
        submission = controller.submit("u1", "A", "p", "pro-1k")
        assert ledger.balance == Decimal("0.50")

        outcome = asyncio.run(controller.run(submission))

        assert outcome.status is JobStatus.FAILED
        assert outcome.refunded == Decimal("0.50")
        assert ledger.balance == Decimal("1.00")
        assert list(store.images) == ["A"]
        assert store.jobs == {}
        assert [r.id for r in store.rows()] == ["A"]
        deps["profile_repo"].adjust_credits.assert_called_with("u1", Decimal("0.50"))
        notes = store.drain_notifications()
        assert notes[0].level == "error" and "model overloaded" in notes[0].message
        assert len(client.requests) == 1

    def test_refund_happens_once(self, deps):
        controller, _, ledger = make_controller(deps, FakeClient(error=RuntimeError("x")))
        submission = controller.submit("u1", "A", "p", "pro-1k")
        asyncio.run(controller.run(submission))
        controller._fail(submission, RuntimeError("again"))
        assert ledger.balance == Decimal("1.00")

    def test_unrecorded_result_files_are_deleted(self, deps):
        deps["image_repo"].create.side_effect = RuntimeError("db down")
        client = FakeClient(result=GenerationResult(image_bytes=png(300, 200)))
        controller, store, ledger = make_controller(deps, client)
        submission = controller.submit("u1", "A", "p", "pro-1k")

        outcome = asyncio.run(controller.run(submission))

        assert outcome.status is JobStatus.FAILED
        deps["storage"].delete.assert_called_once_with(["u1/img/new.png", "u1/thumbs/new.jpg"])
        assert submission.job.id not in store.images
        assert ledger.balance == Decimal("1.00")

    def test_failed_thumbnail_upload_deletes_the_image_file(self, deps):
        def upload(user_id, data, ext="png", folder=None):
            if folder == "thumbs":
                raise RuntimeError("storage full")
            return StorageResult(path=f"{user_id}/img/new.{ext}", width=1, height=1, content_type="image/png", size=1)

        deps["storage"].upload_bytes.side_effect = upload
        deps["storage"].delete.side_effect = RuntimeError("still full")
        client = FakeClient(result=GenerationResult(image_bytes=png(300, 200)))
        controller, _, _ = make_controller(deps, client)
        submission = controller.submit("u1", "A", "p", "fast")

        outcome = asyncio.run(controller.run(submission))

        assert outcome.status is JobStatus.FAILED
        assert "storage full" in outcome.error
        deps["storage"].delete.assert_called_once_with(["u1/img/new.png"])
        deps["image_repo"].create.assert_not_called()

    def test_failure_waits_for_the_session_lock(self, deps):
        lock = threading.RLock()
        controller, store, ledger = make_controller(deps, FakeClient(), lock=lock)
        submission = controller.submit("u1", "A", "p", "pro-1k")

        with lock:
            worker = threading.Thread(target=controller._fail, args=(submission, RuntimeError("x")))
            worker.start()
            worker.join(0.2)
            assert worker.is_alive()
            assert submission.job.id in store.images
            assert ledger.balance == Decimal("0.50")
        worker.join(5)

        assert not worker.is_alive()
        assert submission.job.id not in store.images
        assert ledger.balance == Decimal("1.00")

    def test_unlimited_role_is_never_charged_or_refunded(self, deps):
        controller, _, ledger = make_controller(
            deps, FakeClient(error=RuntimeError("x")), balance="0.00", role="pro"
        )
        submission = controller.submit("u1", "A", "p", "pro-4k")
        assert submission.job.cost == Decimal("0.00")
        outcome = asyncio.run(controller.run(submission))
        assert outcome.refunded == Decimal("0.00")
        assert ledger.balance == Decimal("0.00")
        deps["profile_repo"].adjust_credits.assert_not_called()

    def test_mask_and_references_are_sent(self, deps):
        client = FakeClient(result=GenerationResult(image_bytes=png(300, 200)))
        controller, _, _ = make_controller(deps, client)
        stroke = PathAnnotation(id="p1", points=(Point(10, 10), Point(100, 100)), stroke_width=20)
        submission = controller.submit("u1", "A", "p", "fast", annotations=[stroke])
        assert submission.job.kind == "inpaint"

        asyncio.run(controller.run(submission))

        request = client.requests[0]
        assert request.mask is not None
        assert Image.open(io.BytesIO(request.mask)).size == (300, 200)
        assert request.references == []

    def test_backend_record_with_wrong_size_is_repaired(self, deps):
        result = GenerationResult(
            image_bytes=png(400, 200), storage_path="u1/backend.png", record_size=(768, 512)
        )
        controller, store, _ = make_controller(deps, FakeClient(result=result))
        submission = controller.submit("u1", "A", "p", "fast")

        async def scenario():
            outcome = await controller.run(submission)
            await controller.wait_for_repairs()
            return outcome

        outcome = asyncio.run(scenario())

        assert outcome.image.path == "u1/backend.png"
        deps["image_repo"].create.assert_not_called()
        deps["image_repo"].update_dimensions.assert_called_once_with(
            submission.job.id, "u1", 1024.0, 512.0, 400, 200
        )

    def test_failed_repair_is_swallowed(self, deps):
        deps["image_repo"].update_dimensions.side_effect = RuntimeError("db down")
        result = GenerationResult(
            image_bytes=png(400, 200), storage_path="u1/backend.png", record_size=(768, 512)
        )
        controller, store, _ = make_controller(deps, FakeClient(result=result))
        submission = controller.submit("u1", "A", "p", "fast")

        async def scenario():
            outcome = await controller.run(submission)
            await controller.wait_for_repairs()
            return outcome

        assert asyncio.run(scenario()).status is JobStatus.COMPLETED
        assert not store.get(submission.job.id).is_generating

    def test_matching_record_needs_no_repair(self, deps):
        result = GenerationResult(
            image_bytes=png(300, 200), storage_path="u1/backend.png", record_size=(768, 512)
        )
        controller, _, _ = make_controller(deps, FakeClient(result=result))
        submission = controller.submit("u1", "A", "p", "fast")
        asyncio.run(controller.run(submission))
        deps["image_repo"].update_dimensions.assert_not_called()


def test_progress_is_capped_below_one(deps):
    controller, _, _ = make_controller(deps, FakeClient())
    submission = controller.submit("u1", "A", "p", "fast")
    job_id = submission.job.id

    assert controller.progress(job_id, NOW) == 0.0
    assert controller.progress(job_id, NOW + timedelta(seconds=6)) == pytest.approx(0.5)
    assert controller.progress(job_id, NOW + timedelta(minutes=5)) == 0.99
    assert controller.progress("A") == 1.0

"""End-to-end tests of the extraction orchestrator with in-memory services."""

import asyncio
import json

import pytest
from conftest import USER_ID, item_json

from orchestrator import PipelinePhase, PipelineState
from orchestrator.pipeline import (
    IMPORT_FAILED_MESSAGE,
    JOB_CREATION_FAILED_MESSAGE,
    UPLOAD_FAILED_MESSAGE,
)
from shared.schemas import BgRemovalStatus, ExtractionJobStatus, ExtractionJobResult


def local_photos(count: int) -> list[str]:
    return [f"file:///photos/IMG_{index:04d}.jpg" for index in range(count)]


def photo_index(url: str) -> int:
    return int(url.rsplit("_", 1)[1].split(".")[0])


def scripted(failing=(), low_confidence=(), empty=()):
    """Responder giving one confident item per photo, with per-index exceptions."""

    def respond(url: str):
        index = photo_index(url)
        if index in failing:
            return RuntimeError("vision timeout")
        if index in empty:
            return "[]"
        if index in low_confidence:
            return json.dumps([item_json("Accessories", "hat", ["black"], confidence=40), item_json(confidence=85)])
        return json.dumps([item_json(confidence=90)])

    return respond


async def run_to_review(orchestrator, count: int = 10) -> None:
    orchestrator.select_photos(local_photos(count))
    await orchestrator.start_upload()


async def test_ten_photos_with_one_failure(orchestrator, vision, remover, job_repository) -> None:
    vision.responder = scripted(failing={4}, low_confidence={7})

    await run_to_review(orchestrator)
    state = orchestrator.state

    assert state.phase == PipelinePhase.REVIEWING
    assert state.error == "9 of 10 photos processed.\n1 photo couldn't be analyzed."
    assert [photo_index(url) for url in state.failed_photo_urls] == [4]
    assert len(state.detected_items) == 10
    assert state.category_summary == {"Tops": 9, "Accessories": 1}
    assert state.detection_progress.processed == 10
    assert state.bg_removal_progress.processed == 10
    assert state.bg_removal_progress.succeeded == 9

    hat = state.reviewable_items[0]
    assert hat.confidence == 40
    assert hat.is_selected is False
    assert hat.needs_review is True
    assert hat.bg_removal_status == BgRemovalStatus.SKIPPED
    assert state.selected_count == 9
    assert len(remover.calls) == 9

    job = await job_repository.get_job(state.job.id)
    assert job.status == ExtractionJobStatus.COMPLETED
    assert job.processed_photos == 10
    assert job.detected_items.failed_photos == 1
    assert len(job.detected_items.processed_items) == 10


async def test_upload_progress_is_tracked(orchestrator) -> None:
    await run_to_review(orchestrator, 2)

    assert orchestrator.state.upload_progress.percentage == 100
    assert len(orchestrator.state.uploaded_urls) == 2


async def test_selection_is_capped_and_only_in_selection_phase(orchestrator) -> None:
    orchestrator.select_photos(local_photos(60))
    assert len(orchestrator.state.selected_photos) == 50

    orchestrator.clear_selection()
    assert orchestrator.state.selected_photos == []

    await orchestrator.start_upload()
    assert orchestrator.state.phase == PipelinePhase.SELECTION


async def test_upload_failure(orchestrator, storage, notifier) -> None:
    storage.auth_expired = True
    orchestrator.set_backgrounded(True)

    await run_to_review(orchestrator, 3)
    await orchestrator.effects.drain()

    assert orchestrator.state.phase == PipelinePhase.FAILED
    assert orchestrator.state.error == UPLOAD_FAILED_MESSAGE
    assert notifier.failed == 1


async def test_no_photo_uploaded_fails(orchestrator, optimizer) -> None:
    photos = local_photos(2)
    optimizer.unreadable.update(photos)

    orchestrator.select_photos(photos)
    await orchestrator.start_upload()

    assert orchestrator.state.phase == PipelinePhase.FAILED
    assert orchestrator.state.error == UPLOAD_FAILED_MESSAGE


async def test_job_creation_failure_cleans_up_uploads(orchestrator, job_repository, storage, monkeypatch) -> None:
    async def broken_create_job(user_id, photo_urls):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(job_repository, "create_job", broken_create_job)

    await run_to_review(orchestrator, 3)
    await orchestrator.effects.drain()

    assert orchestrator.state.phase == PipelinePhase.FAILED
    assert orchestrator.state.error == JOB_CREATION_FAILED_MESSAGE
    assert storage.objects == {}
    assert len(storage.removed[0][1]) == 3


async def test_unconfigured_vision_fails_session(orchestrator, vision, job_repository) -> None:
    vision.configured = False

    await run_to_review(orchestrator, 2)

    assert orchestrator.state.phase == PipelinePhase.FAILED
    assert orchestrator.state.error == "Vision model not configured"
    assert orchestrator.state.job.status == ExtractionJobStatus.FAILED


async def test_nothing_detected_completes(orchestrator, notifier) -> None:
    await run_to_review(orchestrator, 3)

    state = orchestrator.state
    assert state.phase == PipelinePhase.COMPLETED
    assert state.detected_items == []
    assert state.error is None
    assert notifier.completed == []


async def test_all_photos_failing_opens_review_for_retry(orchestrator, vision) -> None:
    vision.responder = scripted(failing={0, 1})

    await run_to_review(orchestrator, 2)

    state = orchestrator.state
    assert state.phase == PipelinePhase.REVIEWING
    assert state.reviewable_items == []
    assert len(state.failed_photo_urls) == 2


async def test_retry_recovers_failed_photo(orchestrator, vision, remover) -> None:
    vision.responder = scripted(failing={1})
    await run_to_review(orchestrator, 3)
    before = list(orchestrator.state.reviewable_items)
    vision.calls.clear()
    remover.calls.clear()

    vision.responder = scripted()
    await orchestrator.retry_failed_photos()

    state = orchestrator.state
    assert state.phase == PipelinePhase.REVIEWING
    assert state.retry_count == 1
    assert state.error is None
    assert state.failed_photo_urls == []
    assert [photo_index(url) for url in vision.calls] == [1]
    assert [photo_index(url) for url in remover.calls] == [1]
    assert state.reviewable_items[:2] == before
    assert len(state.reviewable_items) == 3
    assert len(state.processed_items) == 3
    assert len(state.job.detected_items.processed_items) == 3


async def test_retry_is_capped_at_two(orchestrator, vision) -> None:
    vision.responder = scripted(failing={0})
    await run_to_review(orchestrator, 2)

    await orchestrator.retry_failed_photos()
    await orchestrator.retry_failed_photos()
    assert orchestrator.state.retry_count == 2
    assert orchestrator.state.phase == PipelinePhase.REVIEWING
    assert len(orchestrator.state.failed_photo_urls) == 1

    calls = len(vision.calls)
    await orchestrator.retry_failed_photos()

    assert len(vision.calls) == calls
    assert orchestrator.state.retry_count == 2


async def test_skip_failed_photos(orchestrator, vision) -> None:
    vision.responder = scripted(failing={0})
    await run_to_review(orchestrator, 2)

    orchestrator.skip_failed_photos()
    calls = len(vision.calls)
    await orchestrator.retry_failed_photos()

    assert orchestrator.state.error is None
    assert orchestrator.state.failed_photo_urls == []
    assert len(vision.calls) == calls
    assert orchestrator.state.phase == PipelinePhase.REVIEWING


async def test_backgrounded_completion_notifies_once(orchestrator, vision, notifier) -> None:
    vision.responder = scripted(failing={2})
    orchestrator.set_backgrounded(True)

    await run_to_review(orchestrator, 3)
    await orchestrator.retry_failed_photos()
    await orchestrator.effects.drain()

    assert orchestrator.state.completion_pending is True
    assert notifier.completed == [(2, 3)]

    orchestrator.set_backgrounded(False)
    assert orchestrator.state.completion_pending is False


async def test_foreground_completion_does_not_notify(orchestrator, vision, notifier) -> None:
    vision.responder = scripted()

    await run_to_review(orchestrator, 2)
    await orchestrator.effects.drain()

    assert notifier.completed == []


async def test_import_with_edits(orchestrator, vision, item_repository, job_repository, storage) -> None:
    vision.responder = scripted(low_confidence={1})
    await run_to_review(orchestrator, 2)

    # lowest confidence first: hat (40), t-shirt (85), t-shirt (90)
    orchestrator.toggle_item(0)
    orchestrator.edit_item(0, edited_name="Bucket hat", edited_colors=["navy"])
    orchestrator.edit_item(1, edited_category="Outerwear", edited_sub_category="blazer")
    orchestrator.deselect_by_category("Tops")
    assert orchestrator.get_selected_count() == 2

    added = await orchestrator.import_to_wardrobe()
    await orchestrator.effects.drain()

    assert added == 2
    state = orchestrator.state
    assert state.phase == PipelinePhase.COMPLETED
    assert state.items_added == 2
    assert state.importing is False
    assert state.import_progress.done == 2

    stored = {item.name: item for item in await item_repository.list_items_for_user(USER_ID)}
    assert set(stored) == {"Bucket hat", "blazer - navy"}
    hat = stored["Bucket hat"]
    assert hat.category == "accessories"
    assert hat.colors == ["Navy"]
    assert hat.image_url == hat.original_image_url
    blazer = stored["blazer - navy"]
    assert blazer.category == "outerwear"
    assert blazer.sub_category == "blazer"
    assert "wardrobe-images" in blazer.image_url
    assert blazer.ai_confidence == 85

    assert (await job_repository.get_job(state.job.id)).items_added_count == 2

    uploads = {path for bucket, path in storage.objects if bucket == "extraction-uploads"}
    assert len(uploads) == 1
    assert hat.original_image_url.endswith(next(iter(uploads)))


async def test_import_keeps_original_photo_of_committed_items(orchestrator, vision, item_repository, storage) -> None:
    vision.responder = scripted()
    await run_to_review(orchestrator, 2)
    orchestrator.toggle_item(1)

    assert await orchestrator.import_to_wardrobe() == 1
    await orchestrator.close()

    [stored] = await item_repository.list_items_for_user(USER_ID)
    assert "wardrobe-images" in stored.image_url
    uploads = [path for bucket, path in storage.objects if bucket == "extraction-uploads"]
    assert len(uploads) == 1
    assert stored.original_image_url.endswith(uploads[0])


async def test_import_with_nothing_selected(orchestrator, vision, item_repository) -> None:
    vision.responder = scripted()
    await run_to_review(orchestrator, 2)
    orchestrator.deselect_all()

    assert await orchestrator.import_to_wardrobe() == 0
    assert orchestrator.state.phase == PipelinePhase.REVIEWING
    assert orchestrator.state.import_progress is None
    assert await item_repository.list_items_for_user(USER_ID) == []


async def test_import_failure_keeps_review_open(orchestrator, vision, item_repository, monkeypatch) -> None:
    vision.responder = scripted()
    await run_to_review(orchestrator, 1)

    async def broken_create_item(item):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(item_repository, "create_item", broken_create_item)

    assert await orchestrator.import_to_wardrobe() == 0
    assert orchestrator.state.phase == PipelinePhase.REVIEWING
    assert orchestrator.state.error == IMPORT_FAILED_MESSAGE
    assert orchestrator.state.importing is False


async def test_duplicates_flagged_against_inventory(orchestrator, vision, item_repository) -> None:
    vision.responder = scripted()
    await run_to_review(orchestrator, 1)
    await orchestrator.import_to_wardrobe()
    await orchestrator.effects.drain()
    orchestrator.reset()

    await run_to_review(orchestrator, 1)

    duplicate = orchestrator.state.reviewable_items[0].duplicate_of
    assert duplicate is not None
    assert duplicate.similarity == 100


async def test_reset_discards_in_flight_work(orchestrator, vision) -> None:
    gate = asyncio.Event()
    answer = vision.generate_content

    async def slow_generate_content(prompt, image_bytes, mime_type="image/jpeg"):
        await gate.wait()
        return await answer(prompt, image_bytes, mime_type)

    vision.generate_content = slow_generate_content
    vision.responder = scripted()
    orchestrator.select_photos(local_photos(2))

    run = asyncio.create_task(orchestrator.start_upload())
    for _ in range(200):
        if orchestrator.state.phase == PipelinePhase.DETECTING:
            break
        await asyncio.sleep(0.001)
    assert orchestrator.state.phase == PipelinePhase.DETECTING

    await orchestrator.start_upload()
    assert orchestrator.state.phase == PipelinePhase.DETECTING

    orchestrator.reset()
    gate.set()
    await asyncio.wait_for(run, timeout=5)

    assert orchestrator.state == PipelineState()
    assert orchestrator.generation == 1


async def test_terminal_phase_left_only_by_reset(orchestrator) -> None:
    await run_to_review(orchestrator, 1)
    assert orchestrator.state.phase == PipelinePhase.COMPLETED

    orchestrator.select_photos(local_photos(1))
    await orchestrator.start_upload()
    assert orchestrator.state.selected_photos == local_photos(1)
    assert orchestrator.state.phase == PipelinePhase.COMPLETED

    orchestrator.reset()
    assert orchestrator.state.phase == PipelinePhase.SELECTION


async def test_poll_job_status(orchestrator, job_repository) -> None:
    job = await job_repository.create_job(USER_ID, ["https://cdn.test/a.jpg", "https://cdn.test/b.jpg"])
    await job_repository.mark_processing(job.id)
    await job_repository.update_progress(job.id, 1)

    task = orchestrator.poll_job_status(job.id)
    for _ in range(200):
        if orchestrator.state.detection_progress is not None:
            break
        await asyncio.sleep(0.005)
    assert orchestrator.state.detection_progress.processed == 1
    assert orchestrator.state.detection_progress.total == 2

    await job_repository.mark_completed(job.id, ExtractionJobResult())
    await asyncio.wait_for(task, timeout=5)

    assert orchestrator.state.job.status == ExtractionJobStatus.COMPLETED
    assert orchestrator.state.detected_items == []


async def test_poll_reports_failed_job(orchestrator, job_repository) -> None:
    job = await job_repository.create_job(USER_ID, ["https://cdn.test/a.jpg"])
    await job_repository.mark_failed(job.id, "Vision model not configured")

    await asyncio.wait_for(orchestrator.poll_job_status(job.id), timeout=5)

    assert orchestrator.state.error == "Vision model not configured"


async def test_reset_stops_polling(orchestrator, job_repository) -> None:
    job = await job_repository.create_job(USER_ID, ["https://cdn.test/a.jpg"])
    task = orchestrator.poll_job_status(job.id)

    orchestrator.reset()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert orchestrator.state.job is None


async def test_cleanup_uploads_keeps_requested(orchestrator, vision, storage) -> None:
    vision.responder = scripted(failing={1})
    await run_to_review(orchestrator, 2)
    kept = orchestrator.state.uploaded_urls[1]

    assert await orchestrator.cleanup_uploads(keep={kept}) is None

    uploads = [path for bucket, path in storage.objects if bucket == "extraction-uploads"]
    assert len(uploads) == 1
    assert kept.endswith(uploads[0])


async def test_close_drains_effects(orchestrator, storage, job_repository, monkeypatch) -> None:
    async def broken_create_job(user_id, photo_urls):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(job_repository, "create_job", broken_create_job)
    await run_to_review(orchestrator, 2)

    await orchestrator.close()

    assert orchestrator.effects.pending == 0
    assert storage.objects == {}


async def test_close_closes_every_resource(orchestrator) -> None:
    closed = []

    class Client:
        def __init__(self, name: str, broken: bool = False):
            self.name = name
            self.broken = broken

        async def close(self) -> None:
            if self.broken:
                raise RuntimeError("already closed")
            closed.append(self.name)

    orchestrator.resources = [Client("storage", broken=True), Client("optimizer")]

    await orchestrator.close()

    assert closed == ["optimizer"]
    assert orchestrator.resources == []

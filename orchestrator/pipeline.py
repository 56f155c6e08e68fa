"""
Extraction orchestrator.

Drives one bulk-import session through its phases:

    selection -> uploading -> detecting -> removing_backgrounds -> reviewing -> completed
                     |            |                 |
                     +------------+-----------------+-> failed

Stages advance automatically; each awaits the previous one in full. Every
state write is tagged with the session generation that started it, so work
still in flight after ``reset()`` cannot write into the new session.
"""

import asyncio
from typing import Optional

from loguru import logger

from services.detector import flatten_detected_items, get_category_summary
from services.messages import format_partial_failure
from shared.schemas import (
    DetectedItem,
    DetectionProgress,
    ExtractionJob,
    ExtractionJobResult,
    ExtractionJobStatus,
    ImportProgress,
    ProcessedDetectedItem,
    ReviewableItem,
)

from . import state as pipeline_state
from .effects import BackgroundEffects
from .state import PipelinePhase, PipelineState

MAX_PHOTOS = 50
MAX_RETRIES = 2

UPLOAD_FAILED_MESSAGE = "Failed to upload photos. Please try again."
JOB_CREATION_FAILED_MESSAGE = "Photos uploaded but failed to create processing job."
UNEXPECTED_ERROR_MESSAGE = "Something went wrong. Please try again."
DETECTION_FAILED_MESSAGE = "Detection failed. Please try again."
BG_REMOVAL_FAILED_MESSAGE = "Background removal failed. Please try again."
RETRY_FAILED_MESSAGE = "Retry failed. Please try again."
IMPORT_FAILED_MESSAGE = "Failed to add items to your wardrobe. Please try again."


class ExtractionOrchestrator:
    """State machine for one bulk photo import session."""

    def __init__(
        self,
        uploader,
        detector,
        background,
        importer,
        job_repository,
        item_repository,
        auth,
        notifier,
        effects: Optional[BackgroundEffects] = None,
        poll_interval: float = 3.0,
        resources: Optional[list] = None,
    ):
        self.uploader = uploader
        self.detector = detector
        self.background = background
        self.importer = importer
        self.job_repository = job_repository
        self.item_repository = item_repository
        self.auth = auth
        self.notifier = notifier
        self.effects = effects or BackgroundEffects()
        self.poll_interval = poll_interval
        self.resources = list(resources or [])

        self._state = PipelineState()
        self._generation = 0
        self._poll_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # State plumbing
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _set(self, generation: int, **updates) -> bool:
        if not self._is_current(generation):
            logger.debug("Discarding stale state write", fields=sorted(updates))
            return False
        self._state = self._state.model_copy(update=updates)
        return True

    def _move(self, generation: int, phase: PipelinePhase, **updates) -> bool:
        if not self._is_current(generation):
            logger.debug("Discarding stale transition", target=phase.value)
            return False
        previous = self._state.phase
        self._state = pipeline_state.transition(self._state, phase, **updates)
        logger.info("Pipeline phase changed", from_phase=previous.value, to_phase=phase.value)
        return True

    def _fail(self, generation: int, message: str) -> None:
        if not pipeline_state.can_transition(self._state.phase, PipelinePhase.FAILED):
            self._set(generation, error=message, importing=False)
            return
        if self._move(generation, PipelinePhase.FAILED, error=message, importing=False):
            if self._state.is_backgrounded:
                self.effects.spawn("notify_failed", self.notifier.notify_failed())

    def _complete_processing(self, generation: int) -> None:
        """Fire the completion notification once if processing ended in the background."""
        if not self._is_current(generation):
            return
        current = self._state
        if current.is_backgrounded and not current.completion_pending:
            self._set(generation, completion_pending=True)
            photo_count = current.job.total_photos if current.job else 0
            self.effects.spawn(
                "notify_complete",
                self.notifier.notify_complete(len(current.processed_items), photo_count),
            )

    async def _refresh_job(self, job_id) -> Optional[ExtractionJob]:
        job, error = await self.uploader.get_job(job_id)
        if error:
            logger.warning("Failed to refresh extraction job", job_id=str(job_id), error=error)
        return job

    # ------------------------------------------------------------------
    # Selection and upload
    # ------------------------------------------------------------------

    def select_photos(self, photos: list[str]) -> None:
        """Set the photo selection, keeping at most 50 photos."""
        if self._state.phase != PipelinePhase.SELECTION:
            return
        if len(photos) > MAX_PHOTOS:
            logger.warning("Photo selection truncated", requested=len(photos), limit=MAX_PHOTOS)
        self._state = self._state.model_copy(
            update={"selected_photos": list(photos[:MAX_PHOTOS]), "error": None}
        )

    def clear_selection(self) -> None:
        if self._state.phase != PipelinePhase.SELECTION:
            return
        self._state = self._state.model_copy(update={"selected_photos": [], "error": None})

    async def start_upload(self) -> None:
        """
        Upload the selection, create the job and run the rest of the pipeline.

        A second call while a session is running is a no-op.
        """
        current = self._state
        if current.phase != PipelinePhase.SELECTION or not current.selected_photos:
            return

        generation = self._generation
        photos = list(current.selected_photos)
        self._move(generation, PipelinePhase.UPLOADING, error=None, upload_progress=None)

        try:
            upload = await self.uploader.upload_batch(
                photos, on_progress=lambda progress: self._set(generation, upload_progress=progress)
            )
            if not self._is_current(generation):
                return

            if not upload.success or not upload.urls:
                self._fail(generation, UPLOAD_FAILED_MESSAGE)
                return

            job, job_error = await self.uploader.create_extraction_job(upload.urls)
            if not self._is_current(generation):
                return

            if job is None:
                logger.error("Extraction job creation failed", error=job_error)
                self.effects.spawn("cleanup_orphaned_uploads", self.uploader.cleanup_photos(upload.urls))
                self._fail(generation, JOB_CREATION_FAILED_MESSAGE)
                return

            self._set(generation, job=job, uploaded_urls=list(upload.urls))

        except Exception as e:
            logger.error("Upload flow error", error_type=type(e).__name__, error=str(e))
            self._fail(generation, UNEXPECTED_ERROR_MESSAGE)
            return

        await self.start_processing(job.id)

    # ------------------------------------------------------------------
    # Detection and background removal
    # ------------------------------------------------------------------

    async def start_processing(self, job_id) -> None:
        """Run detection on a freshly created job, then the following stages."""
        if self._state.phase != PipelinePhase.UPLOADING:
            return

        generation = self._generation
        self._move(generation, PipelinePhase.DETECTING, detection_progress=None, error=None)

        try:
            outcome = await self.detector.process_job(
                job_id, on_progress=lambda progress: self._set(generation, detection_progress=progress)
            )
            if not self._is_current(generation):
                return

            if not outcome.success:
                job = await self._refresh_job(job_id)
                if job is not None:
                    self._set(generation, job=job)
                self._fail(generation, outcome.error or DETECTION_FAILED_MESSAGE)
                return

            await self._after_detection(
                generation, job_id, outcome.result, flatten_detected_items(outcome.result), append=False
            )

        except Exception as e:
            logger.error("Processing flow error", job_id=str(job_id), error_type=type(e).__name__, error=str(e))
            self._fail(generation, DETECTION_FAILED_MESSAGE)

    async def _after_detection(
        self,
        generation: int,
        job_id,
        result: ExtractionJobResult,
        new_items: list[DetectedItem],
        append: bool,
    ) -> None:
        job = await self._refresh_job(job_id)
        if not self._is_current(generation):
            return

        failed_urls = [photo.photo_url for photo in result.photos if photo.error]
        processed_photos = len(result.photos) - len(failed_urls)
        updates = {
            "job": job or self._state.job,
            "detected_items": flatten_detected_items(result),
            "category_summary": get_category_summary(result),
            "failed_photo_urls": failed_urls,
            "error": format_partial_failure(processed_photos, len(result.photos)) if failed_urls else None,
        }

        if new_items:
            self._set(generation, **updates)
            await self.start_bg_removal(job_id, items=new_items, append=append)
            return

        if append or failed_urls:
            # Nothing new to clean up, but there is still something to review or retry
            self._move(generation, PipelinePhase.REVIEWING, **updates)
        else:
            logger.info("No items detected, completing session", job_id=str(job_id))
            self._move(generation, PipelinePhase.COMPLETED, **updates)
        self._complete_processing(generation)

    async def start_bg_removal(
        self, job_id, items: Optional[list[DetectedItem]] = None, append: bool = False
    ) -> None:
        """
        Remove backgrounds of detected items, then open the review.

        With ``append`` the processed items are added to the ones already
        under review instead of replacing them.
        """
        current = self._state
        if current.phase != PipelinePhase.DETECTING or current.job is None:
            return

        generation = self._generation
        if items is None:
            items = list(current.detected_items)

        self._move(generation, PipelinePhase.REMOVING_BACKGROUNDS, bg_removal_progress=None)

        try:
            processed = await self.background.process_items(
                items, on_progress=lambda progress: self._set(generation, bg_removal_progress=progress)
            )
            if not self._is_current(generation):
                return

            all_processed = list(self._state.processed_items) + processed if append else processed
            self._set(generation, processed_items=all_processed)
            await self._store_processed_items(generation, job_id, all_processed)

            await self._enter_review(generation, processed, append=append)

        except Exception as e:
            logger.error("Background removal flow error", job_id=str(job_id), error=str(e))
            self._fail(generation, BG_REMOVAL_FAILED_MESSAGE)

    async def _store_processed_items(
        self, generation: int, job_id, processed: list[ProcessedDetectedItem]
    ) -> None:
        """Write processed image URLs and statuses into the job's result payload."""
        job = self._state.job
        if job is None or job.detected_items is None:
            return
        enriched = job.detected_items.model_copy(update={"processed_items": processed})
        try:
            updated = await self.job_repository.update_result(job_id, enriched)
            self._set(generation, job=updated)
        except Exception as e:
            logger.warning("Failed to store processed items on job", job_id=str(job_id), error=str(e))

    async def _load_existing_items(self) -> list:
        try:
            user_id = await self.auth.require_user_id()
            return await self.item_repository.list_items_for_user(user_id)
        except Exception as e:
            logger.warning("Inventory fetch failed, skipping duplicate detection", error=str(e))
            return []

    async def _enter_review(
        self, generation: int, items: list[ProcessedDetectedItem], append: bool
    ) -> None:
        existing = await self._load_existing_items()
        reviewable = pipeline_state.build_reviewable_items(items, existing)
        if append:
            reviewable = list(self._state.reviewable_items) + reviewable

        if self._state.phase == PipelinePhase.REVIEWING:
            self._set(generation, reviewable_items=reviewable)
        elif self._move(generation, PipelinePhase.REVIEWING, reviewable_items=reviewable):
            self._complete_processing(generation)

    async def init_review(self) -> None:
        """Rebuild the review set from the processed items."""
        current = self._state
        if current.phase not in (PipelinePhase.REMOVING_BACKGROUNDS, PipelinePhase.REVIEWING):
            return
        await self._enter_review(self._generation, list(current.processed_items), append=False)

    # ------------------------------------------------------------------
    # Review actions
    # ------------------------------------------------------------------

    def toggle_item(self, index: int) -> None:
        self._state = pipeline_state.toggle_item(self._state, index)

    def edit_item(self, index: int, **edits) -> None:
        self._state = pipeline_state.edit_item(self._state, index, **edits)

    def select_all(self) -> None:
        self._state = pipeline_state.select_all(self._state)

    def deselect_all(self) -> None:
        self._state = pipeline_state.deselect_all(self._state)

    def deselect_by_category(self, category: str) -> None:
        self._state = pipeline_state.deselect_by_category(self._state, category)

    def get_selected_count(self) -> int:
        return self._state.selected_count

    def get_selected_items(self) -> list[ReviewableItem]:
        return pipeline_state.get_selected_items(self._state)

    async def import_to_wardrobe(self) -> int:
        """
        Commit the selected review items to the inventory.

        Returns:
            Number of items added, 0 when nothing is selected
        """
        current = self._state
        if current.phase != PipelinePhase.REVIEWING or current.importing:
            return 0
        selected = pipeline_state.get_selected_items(current)
        if not selected:
            return 0

        generation = self._generation
        job_id = current.job.id if current.job else None
        self._set(
            generation,
            importing=True,
            error=None,
            import_progress=ImportProgress(done=0, total=len(selected)),
        )

        added = await self.importer.commit(
            list(current.reviewable_items),
            job_id,
            on_progress=lambda progress: self._set(generation, import_progress=progress),
        )
        if not self._is_current(generation):
            return added

        if added == 0:
            self._set(generation, importing=False, error=IMPORT_FAILED_MESSAGE)
            return 0

        self._move(generation, PipelinePhase.COMPLETED, importing=False, items_added=added)

        keep = {url for item in selected for url in (item.effective_image_url, item.photo_url)}
        self.effects.spawn(
            "cleanup_uploads", self.uploader.cleanup_photos(self._session_upload_urls(), keep=keep)
        )
        return added

    def _session_upload_urls(self) -> list[str]:
        current = self._state
        return list(current.uploaded_urls or (current.job.photo_urls if current.job else []))

    async def cleanup_uploads(self, keep: Optional[set[str]] = None) -> Optional[str]:
        """Delete the session's uploaded photos except the ones in ``keep``."""
        urls = self._session_upload_urls()
        if not urls:
            return None
        return await self.uploader.cleanup_photos(urls, keep=keep)

    # ------------------------------------------------------------------
    # Backgrounding and retry
    # ------------------------------------------------------------------

    def set_backgrounded(self, value: bool) -> None:
        """Record whether the user left the pipeline screen. Processing continues either way."""
        updates = {"is_backgrounded": value}
        if not value:
            updates["completion_pending"] = False
        self._state = self._state.model_copy(update=updates)

    async def retry_failed_photos(self) -> None:
        """
        Re-detect the photos whose detection failed.

        At most two retries per session; further calls change nothing.
        """
        current = self._state
        if current.phase != PipelinePhase.REVIEWING or current.job is None:
            return
        if current.retry_count >= MAX_RETRIES:
            logger.info("Retry limit reached", retry_count=current.retry_count)
            return
        if not current.failed_photo_urls:
            return

        generation = self._generation
        job_id = current.job.id
        self._move(
            generation,
            PipelinePhase.DETECTING,
            retry_count=current.retry_count + 1,
            error=None,
            detection_progress=None,
        )

        try:
            outcome = await self.detector.retry_failed_photos(
                job_id, on_progress=lambda progress: self._set(generation, detection_progress=progress)
            )
            if not self._is_current(generation):
                return

            if not outcome.success:
                self._move(generation, PipelinePhase.REVIEWING, error=outcome.error or RETRY_FAILED_MESSAGE)
                return

            retried = set(outcome.retried_indexes)
            new_items = [
                item
                for photo in outcome.result.photos
                if photo.photo_index in retried
                for item in photo.detected_items
            ]
            await self._after_detection(generation, job_id, outcome.result, new_items, append=True)

        except Exception as e:
            logger.error("Retry flow error", job_id=str(job_id), error=str(e))
            if self._is_current(generation) and self._state.phase == PipelinePhase.DETECTING:
                self._move(generation, PipelinePhase.REVIEWING, error=RETRY_FAILED_MESSAGE)

    def skip_failed_photos(self) -> None:
        """Drop the partial-failure state and continue with what succeeded."""
        self._state = self._state.model_copy(update={"error": None, "failed_photo_urls": []})

    # ------------------------------------------------------------------
    # Polling and reset
    # ------------------------------------------------------------------

    def poll_job_status(self, job_id) -> asyncio.Task:
        """Start reading the job every few seconds until it is completed or failed."""
        self.stop_polling()
        self._poll_task = asyncio.create_task(self._poll(self._generation, job_id))
        return self._poll_task

    def stop_polling(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
        self._poll_task = None

    async def _poll(self, generation: int, job_id) -> None:
        while self._is_current(generation):
            await asyncio.sleep(self.poll_interval)

            job, error = await self.uploader.get_job(job_id)
            if error or job is None:
                logger.warning("Poll error", job_id=str(job_id), error=error)
                continue
            if not self._set(generation, job=job):
                return

            if job.status == ExtractionJobStatus.PROCESSING:
                self._set(
                    generation,
                    detection_progress=DetectionProgress(processed=job.processed_photos, total=job.total_photos),
                )
                continue

            if job.status == ExtractionJobStatus.COMPLETED and job.detected_items is not None:
                self._set(
                    generation,
                    detected_items=flatten_detected_items(job.detected_items),
                    category_summary=get_category_summary(job.detected_items),
                )
            elif job.status == ExtractionJobStatus.FAILED:
                self._set(generation, error=job.error_message or "Processing failed")

            if job.is_terminal:
                logger.debug("Polling stopped", job_id=str(job_id), status=job.status.value)
                return

    def reset(self) -> None:
        """Return to an empty selection. The only way out of completed or failed."""
        self.stop_polling()
        self._generation += 1
        self._state = PipelineState()
        logger.info("Pipeline reset", generation=self._generation)

    async def close(self) -> None:
        """Stop polling, wait for background effects, then close owned clients."""
        self.stop_polling()
        await self.effects.drain()
        for resource in self.resources:
            try:
                await resource.close()
            except Exception as e:
                logger.warning("Client close error", client=type(resource).__name__, error=str(e))
        self.resources = []

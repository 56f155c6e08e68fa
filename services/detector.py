"""
Item detection for extraction jobs.

Each uploaded photo is downscaled, sent to the vision model with a fixed
item-detection prompt and the JSON answer is validated into at most five
DetectedItem records. Per-photo failures are recorded on the photo result;
only bootstrap failures (missing job, unconfigured model) fail the job.
"""

import math
from collections import Counter
from typing import Any, Optional

from loguru import logger

from shared.schemas import (
    DetectedCategory,
    DetectedItem,
    DetectionOutcome,
    DetectionProgress,
    ExtractionJobResult,
    ExtractionJobStatus,
    PhotoDetectionResult,
)

from .model_response import parse_model_response
from .progress import ProgressCallback, emit_progress

MAX_ITEMS_PER_PHOTO = 5
DEFAULT_CONFIDENCE = 50
VALID_CATEGORIES = {category.value for category in DetectedCategory}

ITEM_DETECTION_PROMPT = """
Identify every individual clothing item or accessory visible in this photo.

Return ONLY a JSON array. Each element must be an object with these fields:
- "category": one of "Tops", "Bottoms", "Outerwear", "Shoes", "Accessories", "Dresses", "Activewear"
- "sub_category": specific type, e.g. "t-shirt", "jeans", "sneakers"
- "colors": list of lowercase color names, e.g. ["navy", "white"]
- "style": e.g. "casual", "formal", "sporty"
- "material": main fabric or material, e.g. "cotton", "denim", "leather"
- "position_description": where the item is in the photo, e.g. "worn on upper body"
- "confidence": integer from 0 to 100

List at most 5 items, most prominent first. Return [] if no clothing is visible.
""".strip()


def _text_or_default(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    return default


def _coerce_colors(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [color for color in value if isinstance(color, str) and color.strip()]


def _coerce_confidence(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        return DEFAULT_CONFIDENCE
    return int(round(min(100.0, max(0.0, float(value)))))


def validate_detected_items(raw_items: list, photo_index: int, photo_url: str) -> list[DetectedItem]:
    """
    Turn raw model output into validated DetectedItem records.

    Non-object entries are dropped, then only the first five are kept. Invalid
    categories become Tops and missing text fields get placeholders.
    """
    entries = [entry for entry in raw_items if isinstance(entry, dict)][:MAX_ITEMS_PER_PHOTO]

    items = []
    for entry in entries:
        category = entry.get("category")
        if not isinstance(category, str) or category not in VALID_CATEGORIES:
            category = DetectedCategory.TOPS
        items.append(
            DetectedItem(
                category=category,
                sub_category=_text_or_default(entry.get("sub_category"), "Unknown"),
                colors=_coerce_colors(entry.get("colors")),
                style=_text_or_default(entry.get("style"), "casual"),
                material=_text_or_default(entry.get("material"), "unknown"),
                position_description=_text_or_default(entry.get("position_description"), ""),
                confidence=_coerce_confidence(entry.get("confidence")),
                photo_index=photo_index,
                photo_url=photo_url,
            )
        )
    return items


def build_job_result(photos: list[PhotoDetectionResult]) -> ExtractionJobResult:
    """Aggregate per-photo results into the job payload."""
    return ExtractionJobResult(
        photos=photos,
        total_items_detected=sum(len(photo.detected_items) for photo in photos),
        failed_photos=sum(1 for photo in photos if photo.error),
    )


def flatten_detected_items(result: ExtractionJobResult) -> list[DetectedItem]:
    """All detected items in photo order, detection order within a photo."""
    return [item for photo in result.photos for item in photo.detected_items]


def get_category_summary(result: ExtractionJobResult) -> dict[str, int]:
    """Number of detected items per detector category."""
    return dict(Counter(item.category.value for item in flatten_detected_items(result)))


class ItemDetector:
    """Runs item detection over the photos of an extraction job."""

    def __init__(self, job_repository, vision_client, optimizer):
        self.job_repository = job_repository
        self.vision_client = vision_client
        self.optimizer = optimizer

    async def detect_items_in_photo(self, photo_url: str, photo_index: int) -> PhotoDetectionResult:
        """
        Detect items in one photo.

        Never raises: any failure becomes a result with no items and an error.
        """
        optimized_uri: Optional[str] = None
        try:
            optimized_uri = await self.optimizer.optimize_for_ai(photo_url)
            image_bytes = await self.optimizer.read_bytes(optimized_uri)

            response = await self.vision_client.generate_content(
                ITEM_DETECTION_PROMPT, image_bytes, "image/jpeg"
            )
            raw_items = parse_model_response(response.text, "array")
            items = validate_detected_items(raw_items, photo_index, photo_url)

            logger.debug(
                "Photo detection completed",
                photo_index=photo_index,
                raw_count=len(raw_items),
                item_count=len(items),
            )
            return PhotoDetectionResult(photo_url=photo_url, photo_index=photo_index, detected_items=items)

        except Exception as e:
            logger.warning(
                "Detection failed for photo",
                photo_index=photo_index,
                photo_url=photo_url,
                error_type=type(e).__name__,
                error=str(e),
            )
            return PhotoDetectionResult(
                photo_url=photo_url,
                photo_index=photo_index,
                detected_items=[],
                error=str(e) or "Detection failed",
            )
        finally:
            if optimized_uri:
                self.optimizer.discard(optimized_uri, photo_url)

    async def process_job(
        self, job_id, on_progress: Optional[ProgressCallback] = None
    ) -> DetectionOutcome:
        """
        Detect items in every photo of a pending job.

        The job row's processed_photos is updated after each photo. The job
        completes with the aggregated result even when every photo failed.
        """
        job_logger = logger.bind(job_id=str(job_id))

        try:
            job = await self.job_repository.get_job(job_id)
        except Exception as e:
            job_logger.error("Failed to load extraction job", error=str(e))
            return DetectionOutcome(error=str(e) or "Failed to load job")

        if job is None:
            return DetectionOutcome(error="Job not found")
        if job.status != ExtractionJobStatus.PENDING:
            return DetectionOutcome(error=f"Job is already {job.status.value}")

        if not self.vision_client.is_configured():
            await self._fail_job(job_id, "Vision model not configured")
            return DetectionOutcome(error="Vision model not configured")

        try:
            await self.job_repository.mark_processing(job_id)

            total = len(job.photo_urls)
            photos: list[PhotoDetectionResult] = []
            items_found = 0

            job_logger.info("Starting item detection", total_photos=total)

            for index, photo_url in enumerate(job.photo_urls):
                await emit_progress(
                    on_progress, DetectionProgress(processed=index, total=total, items_found=items_found)
                )

                photo_result = await self.detect_items_in_photo(photo_url, index)
                photos.append(photo_result)
                items_found += len(photo_result.detected_items)

                await self.job_repository.update_progress(job_id, index + 1)

            await emit_progress(
                on_progress, DetectionProgress(processed=total, total=total, items_found=items_found)
            )

            result = build_job_result(photos)
            await self.job_repository.mark_completed(job_id, result)

            job_logger.info(
                "Item detection completed",
                total_photos=total,
                total_items=result.total_items_detected,
                failed_photos=result.failed_photos,
            )
            return DetectionOutcome(result=result)

        except Exception as e:
            job_logger.error("Extraction job failed", error_type=type(e).__name__, error=str(e))
            await self._fail_job(job_id, str(e) or "Processing failed")
            return DetectionOutcome(error=str(e) or "Processing failed")

    async def retry_failed_photos(
        self, job_id, on_progress: Optional[ProgressCallback] = None
    ) -> DetectionOutcome:
        """
        Re-detect only the photos of a completed job whose detection failed.

        New results replace the failed entries at the same indexes and the
        merged payload is stored on the job.
        """
        job_logger = logger.bind(job_id=str(job_id))

        try:
            job = await self.job_repository.get_job(job_id)
            if job is None:
                return DetectionOutcome(error="Job not found")
            if job.status != ExtractionJobStatus.COMPLETED or job.detected_items is None:
                return DetectionOutcome(error="Job has no completed detection result")

            photos = list(job.detected_items.photos)
            failed_positions = [position for position, photo in enumerate(photos) if photo.error]
            if not failed_positions:
                return DetectionOutcome(result=job.detected_items)

            if not self.vision_client.is_configured():
                return DetectionOutcome(error="Vision model not configured")

            total = len(failed_positions)
            items_found = 0
            job_logger.info("Retrying failed photos", failed_photos=total)

            for done, position in enumerate(failed_positions):
                await emit_progress(
                    on_progress, DetectionProgress(processed=done, total=total, items_found=items_found)
                )
                previous = photos[position]
                photos[position] = await self.detect_items_in_photo(previous.photo_url, previous.photo_index)
                items_found += len(photos[position].detected_items)

            await emit_progress(
                on_progress, DetectionProgress(processed=total, total=total, items_found=items_found)
            )

            retried_indexes = {photos[position].photo_index for position in failed_positions}
            merged = build_job_result(photos)
            merged.processed_items = [
                item for item in job.detected_items.processed_items if item.photo_index not in retried_indexes
            ]
            await self.job_repository.update_result(job_id, merged)

            job_logger.info(
                "Retry of failed photos completed",
                retried=total,
                still_failed=merged.failed_photos,
                new_items=items_found,
            )
            return DetectionOutcome(result=merged, retried_indexes=sorted(retried_indexes))

        except Exception as e:
            job_logger.error("Retry of failed photos failed", error_type=type(e).__name__, error=str(e))
            return DetectionOutcome(error=str(e) or "Retry failed")

    async def _fail_job(self, job_id, error_message: str) -> None:
        try:
            await self.job_repository.mark_failed(job_id, error_message)
        except Exception as e:
            logger.error("Failed to mark job as failed", job_id=str(job_id), error=str(e))

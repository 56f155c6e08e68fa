"""
Background removal for detected items.

Items are processed one at a time. Low-confidence items and items processed
without an available remover are skipped; a failing removal or upload marks
the item as failed and processing continues with the next item.
"""

import math
import uuid
from datetime import datetime
from typing import Optional

from loguru import logger

from shared.schemas import (
    BgRemovalProgress,
    BgRemovalStatus,
    DetectedItem,
    ExtractionJob,
    ProcessedDetectedItem,
    utcnow,
)

from .detector import flatten_detected_items
from .progress import ProgressCallback, emit_progress

LOW_CONFIDENCE_THRESHOLD = 50
USAGE_KEY_PREFIX = "bg_removal_usage_"
SECONDS_PER_ITEM = 4


def get_monthly_usage_key(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"{USAGE_KEY_PREFIX}{now:%Y-%m}"


def get_estimated_time(item_count: int) -> str:
    """Rough background removal time, e.g. ``~1 minute``."""
    minutes = math.ceil((item_count * SECONDS_PER_ITEM) / 60)
    return f"~{minutes} minute{'s' if minutes != 1 else ''}"


def _with_status(
    item: DetectedItem, status: BgRemovalStatus, processed_image_url: Optional[str] = None
) -> ProcessedDetectedItem:
    return ProcessedDetectedItem(
        **item.model_dump(exclude={"bg_removal_status", "processed_image_url"}),
        bg_removal_status=status,
        processed_image_url=processed_image_url,
    )


class BackgroundProcessor:
    """Runs detected items through background removal and stores the results."""

    def __init__(self, remover, storage, auth, usage_repository=None, bucket: str = "wardrobe-images"):
        self.remover = remover
        self.storage = storage
        self.auth = auth
        self.usage_repository = usage_repository
        self.bucket = bucket

    async def process_extracted_items(
        self, job: ExtractionJob, on_progress: Optional[ProgressCallback] = None
    ) -> list[ProcessedDetectedItem]:
        """Process every item detected in a job."""
        if job.detected_items is None:
            return []
        return await self.process_items(flatten_detected_items(job.detected_items), on_progress)

    async def process_items(
        self, items: list[DetectedItem], on_progress: Optional[ProgressCallback] = None
    ) -> list[ProcessedDetectedItem]:
        """
        Process items sequentially, in order.

        Progress fires before each item with running counts and once more
        after the batch.
        """
        if not items:
            return []

        remover_available = self.remover.is_configured()
        try:
            user_id = await self.auth.require_user_id()
        except Exception as e:
            logger.warning("No user for background removal, skipping all items", error=str(e))
            user_id = None

        total = len(items)
        processed: list[ProcessedDetectedItem] = []
        succeeded = 0
        failed = 0

        for index, item in enumerate(items):
            await emit_progress(
                on_progress,
                BgRemovalProgress(processed=index, total=total, succeeded=succeeded, failed=failed),
            )

            result = await self.process_single_item(item, user_id, remover_available)
            processed.append(result)
            if result.bg_removal_status == BgRemovalStatus.SUCCESS:
                succeeded += 1
            elif result.bg_removal_status == BgRemovalStatus.FAILED:
                failed += 1

        await emit_progress(
            on_progress,
            BgRemovalProgress(processed=total, total=total, succeeded=succeeded, failed=failed),
        )

        if user_id:
            await self.track_usage(user_id, succeeded)

        logger.info(
            "Background removal batch processed",
            total=total,
            succeeded=succeeded,
            failed=failed,
            skipped=total - succeeded - failed,
        )
        return processed

    async def process_single_item(
        self, item: DetectedItem, user_id: Optional[str], remover_available: bool
    ) -> ProcessedDetectedItem:
        """Process one item. Never raises."""
        if item.confidence < LOW_CONFIDENCE_THRESHOLD:
            return _with_status(item, BgRemovalStatus.SKIPPED)
        if not remover_available or not user_id:
            return _with_status(item, BgRemovalStatus.SKIPPED)

        try:
            image_bytes = await self.remover.remove_background(item.photo_url)
            if not image_bytes:
                raise ValueError("No processed image data")

            path = f"{user_id}/processed_{uuid.uuid4().hex}.png"
            url = await self.storage.upload(self.bucket, path, image_bytes, content_type="image/png")
            if not url:
                raise ValueError("Failed to upload processed image")

            return _with_status(item, BgRemovalStatus.SUCCESS, url)

        except Exception as e:
            logger.warning(
                "Background removal failed for item",
                photo_index=item.photo_index,
                sub_category=item.sub_category,
                error=str(e),
            )
            return _with_status(item, BgRemovalStatus.FAILED)

    async def track_usage(self, user_id: str, count: int) -> None:
        """Add successful removals to the monthly usage counter. Best-effort."""
        if count == 0 or self.usage_repository is None:
            return
        try:
            total = await self.usage_repository.increment_counter(user_id, get_monthly_usage_key(), count)
            logger.info("Background removal monthly usage", user_id=user_id, monthly_total=total)
        except Exception as e:
            logger.warning("Failed to track background removal usage", error=str(e))

    async def get_monthly_usage(self) -> int:
        """Successful removals of the current user this month."""
        if self.usage_repository is None:
            return 0
        try:
            user_id = await self.auth.require_user_id()
            return await self.usage_repository.get_counter(user_id, get_monthly_usage_key())
        except Exception as e:
            logger.warning("Failed to read background removal usage", error=str(e))
            return 0

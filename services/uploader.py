"""
Photo upload and extraction job creation.

Photos are uploaded one at a time to content-addressed paths
``{user_id}/{sha256}_{index}.jpg`` in the upload bucket. A photo that fails
to load or upload is skipped; only a batch-level failure such as an expired
session aborts the batch.
"""

import hashlib
import math
from typing import Optional

from loguru import logger

from shared.errors import AuthenticationRequiredError
from shared.schemas import ExtractionJob, UploadBatchResult, UploadProgress

from .progress import ProgressCallback, emit_progress

MAX_BATCH_SIZE = 50
SECONDS_PER_PHOTO = 6


def get_estimated_time(photo_count: int) -> str:
    """Rough processing time for a batch, e.g. ``~2 minutes``."""
    minutes = math.ceil((photo_count * SECONDS_PER_PHOTO) / 60)
    return f"~{minutes} minute{'s' if minutes != 1 else ''}"


def _percentage(done: int, total: int) -> int:
    return math.floor(done / total * 100 + 0.5) if total else 100


class PhotoUploader:
    """Uploads photo batches and manages the extraction job records they feed."""

    def __init__(self, storage, job_repository, auth, image_loader, bucket: str = "extraction-uploads"):
        self.storage = storage
        self.job_repository = job_repository
        self.auth = auth
        self.image_loader = image_loader
        self.bucket = bucket

    async def upload_batch(
        self, photos: list[str], on_progress: Optional[ProgressCallback] = None
    ) -> UploadBatchResult:
        """
        Upload photos sequentially and return the public URLs of the successes.

        Progress fires before each upload and once more at 100%.
        """
        if len(photos) > MAX_BATCH_SIZE:
            logger.warning("Photo batch truncated", requested=len(photos), limit=MAX_BATCH_SIZE)
            photos = photos[:MAX_BATCH_SIZE]

        try:
            user_id = await self.auth.require_user_id()
            total = len(photos)
            urls: list[str] = []

            for index, photo in enumerate(photos):
                await emit_progress(
                    on_progress,
                    UploadProgress(
                        uploaded=index,
                        total=total,
                        percentage=_percentage(index, total),
                        current_photo=photo,
                    ),
                )

                url = await self._upload_photo(user_id, index, photo)
                if url:
                    urls.append(url)

            await emit_progress(on_progress, UploadProgress(uploaded=total, total=total, percentage=100))

            logger.info("Photo batch uploaded", uploaded=len(urls), total=total, skipped=total - len(urls))
            return UploadBatchResult(urls=urls)

        except Exception as e:
            logger.error("Batch upload error", error_type=type(e).__name__, error=str(e))
            return UploadBatchResult(urls=[], error=str(e) or "Upload failed")

    async def _upload_photo(self, user_id: str, index: int, photo: str) -> Optional[str]:
        try:
            data = await self.image_loader.read_bytes(photo)
            digest = hashlib.sha256(data).hexdigest()
            path = f"{user_id}/{digest}_{index}.jpg"
            return await self.storage.upload(self.bucket, path, data, content_type="image/jpeg")
        except AuthenticationRequiredError:
            raise
        except Exception as e:
            logger.warning("Failed to upload photo", photo_number=index + 1, photo=photo, error=str(e))
            return None

    async def create_extraction_job(
        self, photo_urls: list[str]
    ) -> tuple[Optional[ExtractionJob], Optional[str]]:
        """Persist a pending job for the current user."""
        try:
            user_id = await self.auth.require_user_id()
            job = await self.job_repository.create_job(user_id, photo_urls)
            return job, None
        except Exception as e:
            logger.error("Failed to create extraction job", error=str(e))
            return None, str(e) or "Failed to create job"

    async def get_job(self, job_id) -> tuple[Optional[ExtractionJob], Optional[str]]:
        try:
            job = await self.job_repository.get_job(job_id)
            if job is None:
                return None, "Job not found"
            return job, None
        except Exception as e:
            return None, str(e)

    async def get_user_jobs(self) -> tuple[list[ExtractionJob], Optional[str]]:
        """The current user's jobs, newest first."""
        try:
            user_id = await self.auth.require_user_id()
            return await self.job_repository.list_jobs_for_user(user_id), None
        except Exception as e:
            return [], str(e)

    async def cleanup_photos(
        self, photo_urls: list[str], keep: Optional[set[str]] = None
    ) -> Optional[str]:
        """
        Delete uploaded photos from the upload bucket.

        Args:
            photo_urls: Public URLs returned by upload_batch
            keep: URLs that must survive, e.g. images of committed items

        Returns:
            An error message when deletion failed, else None
        """
        keep = keep or set()
        paths = [
            path
            for path in (
                self.storage.path_from_public_url(self.bucket, url) for url in photo_urls if url not in keep
            )
            if path
        ]
        if not paths:
            return None

        try:
            await self.storage.remove(self.bucket, paths)
            logger.info("Uploaded photos cleaned up", removed=len(paths), kept=len(keep))
            return None
        except Exception as e:
            logger.warning("Photo cleanup error", error=str(e))
            return str(e) or "Cleanup failed"

"""Tests for photo batch upload and job bookkeeping."""

import hashlib

from conftest import USER_ID

from services.uploader import MAX_BATCH_SIZE, get_estimated_time
from shared.schemas import ExtractionJobStatus


def local_photos(count: int) -> list[str]:
    return [f"file:///photos/IMG_{index:04d}.jpg" for index in range(count)]


def test_estimated_time() -> None:
    assert get_estimated_time(1) == "~1 minute"
    assert get_estimated_time(10) == "~1 minute"
    assert get_estimated_time(11) == "~2 minutes"
    assert get_estimated_time(50) == "~5 minutes"


async def test_upload_batch(uploader, storage) -> None:
    photos = local_photos(3)
    progress = []

    result = await uploader.upload_batch(photos, progress.append)

    assert result.success
    digest = hashlib.sha256(photos[1].encode()).hexdigest()
    assert result.urls[1] == (
        f"https://storage.test/storage/v1/object/public/extraction-uploads/{USER_ID}/{digest}_1.jpg"
    )
    assert len(storage.objects) == 3
    assert [(p.uploaded, p.percentage, p.current_photo) for p in progress] == [
        (0, 0, photos[0]),
        (1, 33, photos[1]),
        (2, 67, photos[2]),
        (3, 100, None),
    ]


async def test_failed_photo_is_skipped(uploader, storage, optimizer) -> None:
    photos = local_photos(4)
    optimizer.unreadable.add(photos[1])
    storage.fail_when = lambda bucket, path: path.endswith("_3.jpg")

    result = await uploader.upload_batch(photos)

    assert result.success
    assert len(result.urls) == 2
    assert [url.rsplit("_", 1)[1] for url in result.urls] == ["0.jpg", "2.jpg"]


async def test_expired_session_aborts_batch(uploader, storage) -> None:
    storage.auth_expired = True

    result = await uploader.upload_batch(local_photos(3))

    assert not result.success
    assert result.urls == []
    assert "401" in result.error


async def test_signed_out_user_cannot_upload(uploader, auth, storage) -> None:
    auth.sign_out()

    result = await uploader.upload_batch(local_photos(2))

    assert result.error == "Not authenticated"
    assert storage.objects == {}


async def test_batch_is_truncated(uploader, storage) -> None:
    result = await uploader.upload_batch(local_photos(MAX_BATCH_SIZE + 5))

    assert len(result.urls) == MAX_BATCH_SIZE
    assert len(storage.objects) == MAX_BATCH_SIZE


async def test_empty_batch(uploader) -> None:
    progress = []

    result = await uploader.upload_batch([], progress.append)

    assert result.success
    assert result.urls == []
    assert [(p.uploaded, p.total, p.percentage) for p in progress] == [(0, 0, 100)]


async def test_job_creation_and_lookup(uploader) -> None:
    job, error = await uploader.create_extraction_job(["https://cdn.test/a.jpg"])

    assert error is None
    assert job.user_id == USER_ID
    assert job.status == ExtractionJobStatus.PENDING

    fetched, error = await uploader.get_job(job.id)
    assert error is None
    assert fetched.id == job.id

    jobs, error = await uploader.get_user_jobs()
    assert error is None
    assert [j.id for j in jobs] == [job.id]


async def test_job_creation_without_user(uploader, auth) -> None:
    auth.sign_out()

    job, error = await uploader.create_extraction_job(["https://cdn.test/a.jpg"])

    assert job is None
    assert error == "Not authenticated"


async def test_missing_job(uploader) -> None:
    job, error = await uploader.get_job("00000000-0000-0000-0000-000000000000")

    assert job is None
    assert error == "Job not found"


async def test_cleanup_keeps_requested_urls(uploader, storage) -> None:
    result = await uploader.upload_batch(local_photos(3))

    error = await uploader.cleanup_photos(result.urls, keep={result.urls[0]})

    assert error is None
    assert len(storage.objects) == 1
    (bucket, removed), = storage.removed
    assert bucket == "extraction-uploads"
    assert len(removed) == 2


async def test_cleanup_ignores_foreign_urls_and_reports_errors(uploader, storage) -> None:
    assert await uploader.cleanup_photos(["https://elsewhere.test/photo.jpg"]) is None
    assert storage.removed == []

    result = await uploader.upload_batch(local_photos(1))
    storage.remove_error = RuntimeError("bucket offline")

    assert await uploader.cleanup_photos(result.urls) == "bucket offline"

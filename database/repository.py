"""
Repository pattern for database operations.

Provides high-level interfaces for extraction jobs, inventory items and usage
accounting with proper error handling and logging. The job repository is the
single writer of job rows and enforces the job lifecycle rules.
"""

import uuid
from typing import Optional

from loguru import logger
from sqlalchemy import desc, select

from shared.errors import InvalidJobTransitionError, JobNotFoundError
from shared.schemas import (
    JOB_STATUS_TRANSITIONS,
    TERMINAL_JOB_STATUSES,
    AIUsageEntry,
    CreateItemInput,
    ExtractionJob,
    ExtractionJobResult,
    ExtractionJobStatus,
    WardrobeItem,
    utcnow,
)

from .models import AIUsageLogRecord, ExtractionJobRecord, UsageCounterRecord, WardrobeItemRecord
from .session import DatabaseManager


def _as_uuid(value) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class ExtractionJobRepository:
    """Repository for extraction job records."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def create_job(self, user_id: str, photo_urls: list[str]) -> ExtractionJob:
        """
        Store a new pending extraction job.

        Args:
            user_id: Owner of the job
            photo_urls: Public URLs of the uploaded photos, in input order

        Returns:
            ExtractionJob: The stored job
        """
        async with self.db.get_session() as session:
            record = ExtractionJobRecord(
                id=uuid.uuid4(),
                user_id=user_id,
                photo_urls=list(photo_urls),
                total_photos=len(photo_urls),
                processed_photos=0,
                status=ExtractionJobStatus.PENDING.value,
                items_added_count=0,
                created_at=utcnow(),
            )
            session.add(record)
            await session.flush()

            logger.info(
                "Extraction job stored in database",
                job_id=str(record.id),
                total_photos=record.total_photos,
            )
            return ExtractionJob.model_validate(record.to_dict())

    async def get_job(self, job_id) -> Optional[ExtractionJob]:
        """
        Retrieve a job by ID.

        Returns:
            ExtractionJob or None if not found
        """
        async with self.db.get_session() as session:
            record = await session.get(ExtractionJobRecord, _as_uuid(job_id))
            if record is None:
                logger.warning("Extraction job not found", job_id=str(job_id))
                return None
            return ExtractionJob.model_validate(record.to_dict())

    async def list_jobs_for_user(self, user_id: str, limit: int = 20) -> list[ExtractionJob]:
        """List a user's jobs, newest first."""
        async with self.db.get_session() as session:
            stmt = (
                select(ExtractionJobRecord)
                .where(ExtractionJobRecord.user_id == user_id)
                .order_by(desc(ExtractionJobRecord.created_at))
                .limit(limit)
            )
            result = await session.execute(stmt)
            records = result.scalars().all()

            logger.debug("Retrieved extraction jobs list", user_id=user_id, count=len(records))
            return [ExtractionJob.model_validate(r.to_dict()) for r in records]

    async def mark_processing(self, job_id) -> ExtractionJob:
        """Move a pending job to processing and stamp its start time."""

        def apply(record: ExtractionJobRecord) -> None:
            record.started_at = utcnow()

        return await self._transition(job_id, ExtractionJobStatus.PROCESSING, apply)

    async def mark_completed(self, job_id, result: ExtractionJobResult) -> ExtractionJob:
        """Complete a processing job with its aggregated detection result."""

        def apply(record: ExtractionJobRecord) -> None:
            record.detected_items = result.model_dump(mode="json")
            record.processed_photos = record.total_photos
            record.completed_at = utcnow()

        return await self._transition(job_id, ExtractionJobStatus.COMPLETED, apply)

    async def mark_failed(self, job_id, error_message: str) -> ExtractionJob:
        """Fail a pending or processing job."""

        def apply(record: ExtractionJobRecord) -> None:
            record.error_message = error_message
            record.completed_at = utcnow()

        return await self._transition(job_id, ExtractionJobStatus.FAILED, apply)

    async def update_progress(self, job_id, processed_photos: int) -> None:
        """Record how many photos have been processed so far."""
        async with self.db.get_session() as session:
            record = await self._load(session, job_id)
            if record.status != ExtractionJobStatus.PROCESSING.value:
                raise InvalidJobTransitionError(
                    f"Cannot update progress of a job in status '{record.status}'"
                )
            if processed_photos < record.processed_photos or processed_photos > record.total_photos:
                raise InvalidJobTransitionError(
                    f"Invalid processed_photos {processed_photos} "
                    f"(current {record.processed_photos}, total {record.total_photos})"
                )
            record.processed_photos = processed_photos

    async def update_result(self, job_id, result: ExtractionJobResult) -> ExtractionJob:
        """
        Replace the result payload of a completed job.

        Used for enrichment after completion (merged retry results). Status,
        counters and timestamps stay untouched.
        """
        async with self.db.get_session() as session:
            record = await self._load(session, job_id)
            if record.status != ExtractionJobStatus.COMPLETED.value:
                raise InvalidJobTransitionError(
                    f"Result payload can only be enriched on completed jobs, job is '{record.status}'"
                )
            record.detected_items = result.model_dump(mode="json")
            await session.flush()

            logger.info(
                "Extraction job result updated",
                job_id=str(record.id),
                total_items=result.total_items_detected,
                failed_photos=result.failed_photos,
            )
            return ExtractionJob.model_validate(record.to_dict())

    async def set_items_added(self, job_id, count: int) -> None:
        """Record how many reviewed items were committed to the inventory."""
        if count < 0:
            raise ValueError("items_added_count cannot be negative")
        async with self.db.get_session() as session:
            record = await self._load(session, job_id)
            record.items_added_count = count
            logger.info("Extraction job items added", job_id=str(record.id), items_added=count)

    async def _load(self, session, job_id) -> ExtractionJobRecord:
        record = await session.get(ExtractionJobRecord, _as_uuid(job_id))
        if record is None:
            raise JobNotFoundError(f"Extraction job {job_id} not found")
        return record

    async def _transition(self, job_id, target: ExtractionJobStatus, apply) -> ExtractionJob:
        async with self.db.get_session() as session:
            record = await self._load(session, job_id)
            current = ExtractionJobStatus(record.status)

            if current in TERMINAL_JOB_STATUSES or target not in JOB_STATUS_TRANSITIONS[current]:
                raise InvalidJobTransitionError(
                    f"Cannot move job from '{current.value}' to '{target.value}'"
                )

            record.status = target.value
            apply(record)
            await session.flush()

            logger.info(
                "Extraction job status changed",
                job_id=str(record.id),
                from_status=current.value,
                to_status=target.value,
            )
            return ExtractionJob.model_validate(record.to_dict())


class WardrobeItemRepository:
    """Repository for inventory items."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def create_item(self, item: CreateItemInput) -> WardrobeItem:
        """Insert one inventory item."""
        async with self.db.get_session() as session:
            record = WardrobeItemRecord(
                id=uuid.uuid4(),
                user_id=item.user_id,
                name=item.name,
                category=item.category,
                sub_category=item.sub_category,
                colors=list(item.colors),
                image_url=item.image_url,
                original_image_url=item.original_image_url,
                creation_method=item.creation_method,
                extraction_source=item.extraction_source,
                extraction_job_id=item.extraction_job_id,
                ai_confidence=item.ai_confidence,
                created_at=utcnow(),
            )
            session.add(record)
            await session.flush()

            logger.debug("Wardrobe item stored", item_id=str(record.id), name=record.name)
            return WardrobeItem.model_validate(record.to_dict())

    async def list_items_for_user(self, user_id: str) -> list[WardrobeItem]:
        """Return all inventory items of a user."""
        async with self.db.get_session() as session:
            stmt = (
                select(WardrobeItemRecord)
                .where(WardrobeItemRecord.user_id == user_id)
                .order_by(desc(WardrobeItemRecord.created_at))
            )
            result = await session.execute(stmt)
            return [WardrobeItem.model_validate(r.to_dict()) for r in result.scalars().all()]


class UsageRepository:
    """Repository for AI usage logs and monthly usage counters."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def log_ai_usage(self, entry: AIUsageEntry) -> None:
        """Store one AI call for cost monitoring."""
        async with self.db.get_session() as session:
            session.add(AIUsageLogRecord(id=uuid.uuid4(), created_at=utcnow(), **entry.model_dump()))

    async def list_ai_usage(self, feature: Optional[str] = None) -> list[AIUsageEntry]:
        """Return logged AI calls, optionally for one feature."""
        async with self.db.get_session() as session:
            stmt = select(AIUsageLogRecord).order_by(AIUsageLogRecord.created_at)
            if feature:
                stmt = stmt.where(AIUsageLogRecord.feature == feature)
            result = await session.execute(stmt)
            return [
                AIUsageEntry(
                    user_id=r.user_id,
                    feature=r.feature,
                    model_used=r.model_used,
                    tokens_input=r.tokens_input,
                    tokens_output=r.tokens_output,
                    latency_ms=r.latency_ms,
                    cost_usd=r.cost_usd,
                    success=r.success,
                    error_message=r.error_message,
                )
                for r in result.scalars().all()
            ]

    async def increment_counter(self, user_id: str, counter_key: str, amount: int = 1) -> int:
        """Add to a usage counter and return the new value."""
        async with self.db.get_session() as session:
            record = await session.get(UsageCounterRecord, (user_id, counter_key))
            if record is None:
                record = UsageCounterRecord(user_id=user_id, counter_key=counter_key, count=0)
                session.add(record)
            record.count += amount
            record.updated_at = utcnow()
            return record.count

    async def get_counter(self, user_id: str, counter_key: str) -> int:
        """Current value of a usage counter, 0 when never incremented."""
        async with self.db.get_session() as session:
            record = await session.get(UsageCounterRecord, (user_id, counter_key))
            return record.count if record else 0

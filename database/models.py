"""
SQLAlchemy database models for the wardrobe extraction pipeline.

Defines the schema for extraction jobs, inventory items, AI usage logs and
monthly usage counters. JSON payloads use JSONB on PostgreSQL and plain JSON
elsewhere.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all database models."""

    pass


class ExtractionJobRecord(Base):
    """
    One bulk-import run.

    Stores the uploaded photo URLs, detection progress, the aggregated
    detection payload and the number of items finally imported.
    """

    __tablename__ = "wardrobe_extraction_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Job details
    photo_urls: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    total_photos: Mapped[int] = mapped_column(Integer, nullable=False)
    processed_photos: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Results
    detected_items: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    items_added_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Status
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ExtractionJobRecord(id={self.id}, status={self.status})>"

    def to_dict(self) -> dict:
        """Convert model to dictionary representation."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "photo_urls": list(self.photo_urls or []),
            "total_photos": self.total_photos,
            "processed_photos": self.processed_photos,
            "status": self.status,
            "detected_items": self.detected_items,
            "error_message": self.error_message,
            "items_added_count": self.items_added_count,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


class WardrobeItemRecord(Base):
    """An inventory item, including how it was created."""

    __tablename__ = "items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sub_category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    colors: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Extraction metadata
    creation_method: Mapped[str] = mapped_column(String(32), nullable=False, default="manual", index=True)
    extraction_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    extraction_job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("wardrobe_extraction_jobs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    ai_confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<WardrobeItemRecord(id={self.id}, name={self.name})>"

    def to_dict(self) -> dict:
        """Convert model to dictionary representation."""
        return {
            "id": str(self.id),
            "user_id": self.user_id,
            "name": self.name,
            "category": self.category,
            "sub_category": self.sub_category,
            "colors": list(self.colors or []),
            "image_url": self.image_url,
            "original_image_url": self.original_image_url,
            "creation_method": self.creation_method,
            "extraction_source": self.extraction_source,
            "extraction_job_id": self.extraction_job_id,
            "ai_confidence": self.ai_confidence,
            "created_at": self.created_at,
        }


class AIUsageLogRecord(Base):
    """One vision or background-removal call, for cost analysis."""

    __tablename__ = "ai_usage_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    feature: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    model_used: Mapped[str] = mapped_column(String(64), nullable=False)
    tokens_input: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tokens_output: Mapped[int | None] = mapped_column(Integer, nullable=True)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    cost_usd: Mapped[float | None] = mapped_column(Float, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False, index=True
    )


class UsageCounterRecord(Base):
    """Monthly usage counter, keyed per user and period."""

    __tablename__ = "usage_counters"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    counter_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

"""
Shared Pydantic schemas for the wardrobe bulk extraction pipeline.

This module defines all data models used across the pipeline for:
- Extraction job records and detection results
- Background removal and review state of detected items
- Inventory items read for duplicate checks and written on import
- Progress reporting and stage results
- Configuration validation
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator, validator

# =============================================================================
# ENUMS
# =============================================================================


class DetectedCategory(str, Enum):
    """Category vocabulary returned by the item detector."""

    TOPS = "Tops"
    BOTTOMS = "Bottoms"
    OUTERWEAR = "Outerwear"
    SHOES = "Shoes"
    ACCESSORIES = "Accessories"
    DRESSES = "Dresses"
    ACTIVEWEAR = "Activewear"


class ExtractionJobStatus(str, Enum):
    """Lifecycle of an extraction job record."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BgRemovalStatus(str, Enum):
    """Outcome of background removal for one detected item."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


# Allowed job status moves. Terminal statuses have no way out.
JOB_STATUS_TRANSITIONS: dict[ExtractionJobStatus, set[ExtractionJobStatus]] = {
    ExtractionJobStatus.PENDING: {ExtractionJobStatus.PROCESSING, ExtractionJobStatus.FAILED},
    ExtractionJobStatus.PROCESSING: {ExtractionJobStatus.COMPLETED, ExtractionJobStatus.FAILED},
    ExtractionJobStatus.COMPLETED: set(),
    ExtractionJobStatus.FAILED: set(),
}

TERMINAL_JOB_STATUSES = {ExtractionJobStatus.COMPLETED, ExtractionJobStatus.FAILED}


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


# =============================================================================
# DETECTION MODELS
# =============================================================================


class DetectedItem(BaseModel):
    """One clothing item found in a photo by the vision model."""

    category: DetectedCategory = DetectedCategory.TOPS
    sub_category: str = "Unknown"
    colors: list[str] = Field(default_factory=list)
    style: str = "casual"
    material: str = "unknown"
    position_description: str = ""
    confidence: int = Field(50, ge=0, le=100)
    photo_index: int = Field(..., ge=0)
    photo_url: str


class PhotoDetectionResult(BaseModel):
    """Detection outcome for a single photo."""

    photo_url: str
    photo_index: int = Field(..., ge=0)
    detected_items: list[DetectedItem] = Field(default_factory=list, max_length=5)
    error: Optional[str] = None


# =============================================================================
# BACKGROUND REMOVAL AND REVIEW MODELS
# =============================================================================


class ProcessedDetectedItem(DetectedItem):
    """A detected item after the background removal step."""

    bg_removal_status: BgRemovalStatus = BgRemovalStatus.SKIPPED
    processed_image_url: Optional[str] = None

    @model_validator(mode="after")
    def validate_processed_image(self):
        """A processed image exists exactly when removal succeeded."""
        has_url = bool(self.processed_image_url)
        if has_url != (self.bg_removal_status == BgRemovalStatus.SUCCESS):
            raise ValueError(
                "processed_image_url must be set if and only if bg_removal_status is 'success'"
            )
        return self


class ExtractionJobResult(BaseModel):
    """Aggregated detection payload stored on the job record.

    ``processed_items`` is filled in after background removal.
    """

    photos: list[PhotoDetectionResult] = Field(default_factory=list)
    total_items_detected: int = 0
    failed_photos: int = 0
    processed_items: list[ProcessedDetectedItem] = Field(default_factory=list)


class DuplicateMatch(BaseModel):
    """A scored candidate from the existing inventory."""

    item_id: str
    similarity: int = Field(..., ge=0, le=100)
    item_name: Optional[str] = None


class ReviewableItem(ProcessedDetectedItem):
    """A processed item with the user's review state layered on top."""

    is_selected: bool = True
    needs_review: bool = False
    duplicate_of: Optional[DuplicateMatch] = None
    edited_name: Optional[str] = None
    edited_category: Optional[str] = None
    edited_sub_category: Optional[str] = None
    edited_colors: Optional[list[str]] = None

    @property
    def effective_category(self) -> str:
        return self.edited_category or self.category.value

    @property
    def effective_sub_category(self) -> str:
        return self.edited_sub_category or self.sub_category

    @property
    def effective_colors(self) -> list[str]:
        return self.edited_colors if self.edited_colors is not None else self.colors

    @property
    def effective_image_url(self) -> str:
        """Processed image when background removal succeeded, else the photo."""
        if self.bg_removal_status == BgRemovalStatus.SUCCESS and self.processed_image_url:
            return self.processed_image_url
        return self.photo_url


# Fields a user may override during review
EDITABLE_FIELDS = ("edited_name", "edited_category", "edited_sub_category", "edited_colors")


# =============================================================================
# JOB MODELS
# =============================================================================


class ExtractionJob(BaseModel):
    """One bulk-import run as stored in the job table."""

    id: UUID
    user_id: str
    photo_urls: list[str] = Field(default_factory=list)
    total_photos: int = Field(..., ge=0)
    processed_photos: int = Field(0, ge=0)
    status: ExtractionJobStatus = ExtractionJobStatus.PENDING
    detected_items: Optional[ExtractionJobResult] = None
    error_message: Optional[str] = None
    items_added_count: int = Field(0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_progress(self):
        """Processed photos can never exceed the photo total."""
        if self.processed_photos > self.total_photos:
            raise ValueError(
                f"processed_photos ({self.processed_photos}) exceeds total_photos ({self.total_photos})"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


# =============================================================================
# PROGRESS AND STAGE RESULT MODELS
# =============================================================================


class UploadProgress(BaseModel):
    """Progress of the sequential photo upload."""

    uploaded: int
    total: int
    percentage: int
    current_photo: Optional[str] = None


class DetectionProgress(BaseModel):
    """Progress of item detection over the job's photos."""

    processed: int
    total: int
    items_found: int = 0


class BgRemovalProgress(BaseModel):
    """Progress of background removal with running outcome counts."""

    processed: int
    total: int
    succeeded: int = 0
    failed: int = 0


class ImportProgress(BaseModel):
    """Progress of committing reviewed items to the inventory."""

    done: int
    total: int


class UploadBatchResult(BaseModel):
    """Public URLs of the uploaded photos, or a batch-level error."""

    urls: list[str] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


class DetectionOutcome(BaseModel):
    """Result of a detection run over a job."""

    result: Optional[ExtractionJobResult] = None
    error: Optional[str] = None
    retried_indexes: list[int] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None and self.result is not None


# =============================================================================
# INVENTORY MODELS
# =============================================================================


class WardrobeItem(BaseModel):
    """An existing inventory item."""

    id: str
    user_id: str
    name: Optional[str] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    colors: list[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    original_image_url: Optional[str] = None
    creation_method: str = "manual"
    extraction_source: Optional[str] = None
    extraction_job_id: Optional[UUID] = None
    ai_confidence: Optional[int] = None
    created_at: Optional[datetime] = None


class CreateItemInput(BaseModel):
    """Payload for committing one reviewed item to the inventory."""

    user_id: str
    name: str
    category: str
    sub_category: str
    colors: list[str] = Field(default_factory=list)
    image_url: str
    original_image_url: str
    creation_method: str = "ai_extraction"
    extraction_source: str = "photo_import"
    extraction_job_id: Optional[UUID] = None
    ai_confidence: Optional[int] = None


# =============================================================================
# AI CALL MODELS
# =============================================================================


class VisionResponse(BaseModel):
    """Text returned by the vision model plus token accounting."""

    text: Optional[str] = None
    model: str
    tokens_input: Optional[int] = None
    tokens_output: Optional[int] = None


class AIUsageEntry(BaseModel):
    """One tracked AI call, persisted for cost monitoring."""

    user_id: Optional[str] = None
    feature: str
    model_used: str
    tokens_input: Optional[int] = None
    tokens_output: Optional[int] = None
    latency_ms: int
    cost_usd: Optional[float] = None
    success: bool = True
    error_message: Optional[str] = None


# =============================================================================
# CONFIGURATION MODELS
# =============================================================================


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str
    max_connections: int = 10
    timeout_seconds: int = 30
    echo: bool = False


class StorageConfig(BaseModel):
    """Object storage configuration."""

    url: str
    service_key: Optional[str] = None
    upload_bucket: str = "extraction-uploads"
    wardrobe_bucket: str = "wardrobe-images"
    timeout_seconds: int = 30


class AIConfig(BaseModel):
    """Vision model and background removal configuration."""

    openai_api_key: Optional[str] = None
    vision_model: str = "gpt-4o"
    bg_removal_backend: str = "remove_bg"
    remove_bg_api_key: Optional[str] = None
    rembg_model: str = "u2net"
    max_width: int = 512
    jpeg_quality: int = 85
    work_dir: str = "/tmp/wardrobe-extraction"
    timeout_seconds: int = 30


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "text"

    @validator("level")
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

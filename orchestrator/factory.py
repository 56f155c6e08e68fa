"""Wiring of a ready-to-run extraction orchestrator from settings."""

from typing import Optional

from loguru import logger

from database import DatabaseManager, ExtractionJobRepository, UsageRepository, WardrobeItemRepository
from services import BackgroundProcessor, ExtractionNotifier, ItemDetector, PhotoUploader, ReviewCommitter
from services.clients import (
    AuthContext,
    ImageOptimizer,
    OpenAIVisionClient,
    RemoveBgClient,
    StorageClient,
    TrackedVisionClient,
    create_background_remover,
)
from shared.config import ServiceSettings, get_settings

from .effects import BackgroundEffects
from .pipeline import ExtractionOrchestrator

VISION_FEATURE = "extraction"


def create_orchestrator(
    auth: AuthContext,
    db: DatabaseManager,
    settings: Optional[ServiceSettings] = None,
    storage: Optional[StorageClient] = None,
) -> ExtractionOrchestrator:
    """
    Build an orchestrator with the production collaborators.

    Args:
        auth: Resolves the user the session acts for
        db: Initialized database manager
        settings: Pipeline settings, loaded from the environment when omitted
        storage: Storage client override, left open on close

    Returns:
        ExtractionOrchestrator ready for ``select_photos``
    """
    settings = settings or get_settings()
    ai_config = settings.get_ai_config()
    storage_config = settings.get_storage_config()

    job_repository = ExtractionJobRepository(db)
    item_repository = WardrobeItemRepository(db)
    usage_repository = UsageRepository(db)

    resources = []
    if storage is None:
        storage = StorageClient(storage_config)
        resources.append(storage)
    optimizer = ImageOptimizer(
        max_width=ai_config.max_width,
        jpeg_quality=ai_config.jpeg_quality,
        work_dir=ai_config.work_dir,
        timeout=ai_config.timeout_seconds,
    )
    vision = TrackedVisionClient(
        OpenAIVisionClient(ai_config.openai_api_key, model=ai_config.vision_model),
        usage_repository,
        feature=VISION_FEATURE,
        auth=auth,
    )
    remover = create_background_remover(ai_config, image_loader=optimizer)
    resources.append(optimizer)
    if isinstance(remover, RemoveBgClient):
        resources.append(remover)

    logger.info(
        "Extraction orchestrator configured",
        vision_model=ai_config.vision_model,
        vision_configured=vision.is_configured(),
        bg_removal_backend=ai_config.bg_removal_backend,
        bg_removal_configured=remover.is_configured(),
    )

    return ExtractionOrchestrator(
        uploader=PhotoUploader(
            storage, job_repository, auth, optimizer, bucket=storage_config.upload_bucket
        ),
        detector=ItemDetector(job_repository, vision, optimizer),
        background=BackgroundProcessor(
            remover, storage, auth, usage_repository, bucket=storage_config.wardrobe_bucket
        ),
        importer=ReviewCommitter(item_repository, job_repository, auth),
        job_repository=job_repository,
        item_repository=item_repository,
        auth=auth,
        notifier=ExtractionNotifier(),
        effects=BackgroundEffects(),
        poll_interval=settings.poll_interval_seconds,
        resources=resources,
    )

"""
External service clients used by the extraction pipeline.

The rembg remover is imported lazily by ``create_background_remover`` so that
the segmentation runtime is only loaded when that backend is selected.
"""

from typing import Optional

from loguru import logger

from shared.schemas import AIConfig

from .auth import AuthContext, StaticAuthContext
from .image_optimizer import ImageOptimizer
from .remove_bg import RemoveBgClient
from .storage import StorageClient
from .vision import COST_TABLE, OpenAIVisionClient, TrackedVisionClient, estimate_cost


def create_background_remover(config: AIConfig, image_loader: Optional[ImageOptimizer] = None):
    """Build the background remover selected by ``bg_removal_backend``."""
    backend = config.bg_removal_backend
    if backend == "rembg":
        from .rembg_remover import RembgBackgroundRemover

        return RembgBackgroundRemover(
            image_loader or ImageOptimizer(work_dir=config.work_dir, timeout=config.timeout_seconds),
            model_name=config.rembg_model,
            models_dir=f"{config.work_dir}/models/rembg",
        )

    if backend == "disabled":
        logger.info("Background removal disabled by configuration")
        return RemoveBgClient(api_key=None, timeout=config.timeout_seconds)

    return RemoveBgClient(api_key=config.remove_bg_api_key, timeout=config.timeout_seconds)


__all__ = [
    "AuthContext",
    "StaticAuthContext",
    "ImageOptimizer",
    "RemoveBgClient",
    "StorageClient",
    "OpenAIVisionClient",
    "TrackedVisionClient",
    "COST_TABLE",
    "estimate_cost",
    "create_background_remover",
]

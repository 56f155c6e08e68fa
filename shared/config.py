"""Unified configuration management for the wardrobe extraction pipeline.

Simple, clean configuration loaded once from the environment.
"""

import os
from typing import Optional

from pydantic import BaseModel, validator

from .schemas import AIConfig, DatabaseConfig, LogConfig, StorageConfig


class ServiceSettings(BaseModel):
    """Settings for every component of the extraction pipeline.

    Each component uses only the fields it needs.
    """

    # ========================================================================
    # BASIC SETTINGS
    # ========================================================================
    log_level: str = "INFO"
    log_format: str = "text"
    debug: bool = False
    environment: str = "development"

    # ========================================================================
    # DATABASE SETTINGS - job and inventory store
    # ========================================================================
    database_url: Optional[str] = None

    # ========================================================================
    # OBJECT STORAGE SETTINGS
    # ========================================================================
    storage_url: Optional[str] = None
    storage_service_key: Optional[str] = None
    upload_bucket: str = "extraction-uploads"
    wardrobe_bucket: str = "wardrobe-images"

    # ========================================================================
    # AI SETTINGS - vision model and background removal
    # ========================================================================
    openai_api_key: Optional[str] = None
    vision_model: str = "gpt-4o"
    bg_removal_backend: str = "remove_bg"
    remove_bg_api_key: Optional[str] = None
    rembg_model: str = "u2net"
    ai_max_width: int = 512
    ai_jpeg_quality: int = 85
    work_dir: str = "/tmp/wardrobe-extraction"

    # ========================================================================
    # PROCESSING SETTINGS
    # ========================================================================
    service_request_timeout: int = 30
    poll_interval_seconds: float = 3.0

    @validator("log_level")
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @validator("environment")
    def validate_environment(cls, v):
        """Validate environment."""
        valid_envs = ["development", "test", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v.lower()

    @validator("bg_removal_backend")
    def validate_bg_removal_backend(cls, v):
        """Validate background removal backend."""
        valid_backends = ["remove_bg", "rembg", "disabled"]
        if v.lower() not in valid_backends:
            raise ValueError(f"Background removal backend must be one of {valid_backends}")
        return v.lower()

    def get_log_config(self) -> LogConfig:
        """Get logging configuration."""
        return LogConfig(level=self.log_level, format=self.log_format)

    def get_database_config(self) -> DatabaseConfig:
        """Get database configuration."""
        if not self.database_url:
            raise ValueError("Database configuration not available")
        return DatabaseConfig(
            url=self.database_url,
            timeout_seconds=self.service_request_timeout,
            echo=self.debug,
        )

    def get_storage_config(self) -> StorageConfig:
        """Get object storage configuration."""
        if not self.storage_url:
            raise ValueError("Storage configuration not available")
        return StorageConfig(
            url=self.storage_url,
            service_key=self.storage_service_key,
            upload_bucket=self.upload_bucket,
            wardrobe_bucket=self.wardrobe_bucket,
            timeout_seconds=self.service_request_timeout,
        )

    def get_ai_config(self) -> AIConfig:
        """Get vision model and background removal configuration."""
        return AIConfig(
            openai_api_key=self.openai_api_key,
            vision_model=self.vision_model,
            bg_removal_backend=self.bg_removal_backend,
            remove_bg_api_key=self.remove_bg_api_key,
            rembg_model=self.rembg_model,
            max_width=self.ai_max_width,
            jpeg_quality=self.ai_jpeg_quality,
            work_dir=self.work_dir,
            timeout_seconds=self.service_request_timeout,
        )


# ============================================================================
# SETTINGS LOADER
# ============================================================================

def get_settings() -> ServiceSettings:
    """Get the pipeline settings.

    Loads all environment variables once, components use what they need.
    """
    if not hasattr(get_settings, "_instance"):
        def parse_bool(value: str) -> bool:
            return value.lower() in ("true", "1", "yes", "on")

        get_settings._instance = ServiceSettings(
            # Basic settings
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            log_format=os.environ.get("LOG_FORMAT", "text"),
            debug=parse_bool(os.environ.get("DEBUG", "false")),
            environment=os.environ.get("ENVIRONMENT", "development"),

            # Database
            database_url=os.environ.get("DATABASE_URL"),

            # Object storage
            storage_url=os.environ.get("STORAGE_URL"),
            storage_service_key=os.environ.get("STORAGE_SERVICE_KEY"),
            upload_bucket=os.environ.get("UPLOAD_BUCKET", "extraction-uploads"),
            wardrobe_bucket=os.environ.get("WARDROBE_BUCKET", "wardrobe-images"),

            # AI
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            vision_model=os.environ.get("VISION_MODEL", "gpt-4o"),
            bg_removal_backend=os.environ.get("BG_REMOVAL_BACKEND", "remove_bg"),
            remove_bg_api_key=os.environ.get("REMOVE_BG_API_KEY"),
            rembg_model=os.environ.get("REMBG_MODEL", "u2net"),
            ai_max_width=int(os.environ.get("AI_MAX_WIDTH", "512")),
            ai_jpeg_quality=int(os.environ.get("AI_JPEG_QUALITY", "85")),
            work_dir=os.environ.get("WORK_DIR", "/tmp/wardrobe-extraction"),

            # Processing
            service_request_timeout=int(os.environ.get("SERVICE_REQUEST_TIMEOUT", "30")),
            poll_interval_seconds=float(os.environ.get("POLL_INTERVAL_SECONDS", "3")),
        )
    return get_settings._instance


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    if hasattr(get_settings, "_instance"):
        del get_settings._instance

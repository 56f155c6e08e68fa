"""
Database module for extraction job and inventory storage.

Provides SQLAlchemy models, repositories and async session management.
"""

from .models import (
    AIUsageLogRecord,
    Base,
    ExtractionJobRecord,
    UsageCounterRecord,
    WardrobeItemRecord,
)
from .repository import ExtractionJobRepository, UsageRepository, WardrobeItemRepository
from .session import (
    DatabaseManager,
    close_database,
    get_database_manager,
    init_database,
)

__all__ = [
    "Base",
    "ExtractionJobRecord",
    "WardrobeItemRecord",
    "AIUsageLogRecord",
    "UsageCounterRecord",
    "ExtractionJobRepository",
    "WardrobeItemRepository",
    "UsageRepository",
    "DatabaseManager",
    "get_database_manager",
    "init_database",
    "close_database",
]

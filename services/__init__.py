"""
Pipeline stages for wardrobe bulk extraction.

Uploader, item detector, background processor, categorization, review
committer, notifications and progress messages.
"""

from .background import BackgroundProcessor
from .detector import ItemDetector
from .importer import ReviewCommitter
from .notifications import ExtractionNotifier
from .uploader import PhotoUploader

__all__ = [
    "BackgroundProcessor",
    "ExtractionNotifier",
    "ItemDetector",
    "PhotoUploader",
    "ReviewCommitter",
]

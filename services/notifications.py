"""Completion notifications for extraction runs.

Delivery to devices is handled elsewhere; this notifier logs what would be
sent so the pipeline can fire it as a background effect.
"""

from loguru import logger

COMPLETE_TEMPLATE = "Your wardrobe is ready! {item_count} items added from {photo_count} photos ✨"
FAILED_TEXT = "Import encountered issues. Tap to retry."


class ExtractionNotifier:
    """Builds and emits extraction notifications."""

    async def notify_complete(self, item_count: int, photo_count: int) -> str:
        message = COMPLETE_TEMPLATE.format(item_count=item_count, photo_count=photo_count)
        logger.info("Would send notification", kind="complete", text=message)
        return message

    async def notify_failed(self) -> str:
        logger.info("Would send notification", kind="failed", text=FAILED_TEXT)
        return FAILED_TEXT

"""
Commit of reviewed items to the wardrobe inventory.

Only selected items are committed. Each item is an independent create: one
failing item is counted out and the batch continues.
"""

from typing import Optional

from loguru import logger

from shared.schemas import CreateItemInput, ImportProgress, ReviewableItem

from .categorization import normalize_category, normalize_colors, normalize_sub_category
from .progress import ProgressCallback, emit_progress


def resolve_item_input(item: ReviewableItem, job_id, user_id: str) -> CreateItemInput:
    """
    Build the create payload for one reviewed item.

    Edited values win over detected ones, field by field. Colors go through
    the palette normalizer, keeping the raw colors when none of them match.
    """
    raw_colors = item.effective_colors
    sub_category = item.effective_sub_category
    first_color = raw_colors[0] if raw_colors else ""

    category = normalize_category(item.effective_category)
    normalized_colors = normalize_colors(raw_colors)

    return CreateItemInput(
        user_id=user_id,
        name=item.edited_name or f"{sub_category} - {first_color}".strip(),
        category=category,
        sub_category=normalize_sub_category(sub_category, category),
        colors=normalized_colors if normalized_colors else list(raw_colors),
        image_url=item.effective_image_url,
        original_image_url=item.photo_url,
        creation_method="ai_extraction",
        extraction_source="photo_import",
        extraction_job_id=job_id,
        ai_confidence=item.confidence,
    )


class ReviewCommitter:
    """Writes the selected review items as inventory records."""

    def __init__(self, item_repository, job_repository, auth):
        self.item_repository = item_repository
        self.job_repository = job_repository
        self.auth = auth

    async def commit(
        self,
        items: list[ReviewableItem],
        job_id=None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Create an inventory item for every selected review item.

        Returns:
            Number of items created
        """
        selected = [item for item in items if item.is_selected]
        if not selected:
            return 0

        try:
            user_id = await self.auth.require_user_id()
        except Exception as e:
            logger.error("Import aborted, no authenticated user", error=str(e))
            return 0

        total = len(selected)
        added = 0
        await emit_progress(on_progress, ImportProgress(done=0, total=total))

        for index, item in enumerate(selected):
            try:
                await self.item_repository.create_item(resolve_item_input(item, job_id, user_id))
                added += 1
            except Exception as e:
                logger.warning(
                    "Failed to import item",
                    photo_index=item.photo_index,
                    sub_category=item.sub_category,
                    error=str(e),
                )
            await emit_progress(on_progress, ImportProgress(done=index + 1, total=total))

        if job_id is not None:
            try:
                await self.job_repository.set_items_added(job_id, added)
            except Exception as e:
                logger.warning("Failed to update items added count", job_id=str(job_id), error=str(e))

        logger.info("Reviewed items imported", job_id=str(job_id), added=added, selected=total)
        return added

"""
Pipeline state for the extraction orchestrator.

The state is an immutable pydantic model. Every change produces a new state
through the pure functions below, so the orchestrator is the only place that
swaps one state for the next.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from services.categorization import best_duplicate
from shared.errors import InvalidPhaseTransitionError
from shared.schemas import (
    EDITABLE_FIELDS,
    BgRemovalProgress,
    DetectedItem,
    DetectionProgress,
    ExtractionJob,
    ImportProgress,
    ProcessedDetectedItem,
    ReviewableItem,
    UploadProgress,
    WardrobeItem,
)

AUTO_SELECT_THRESHOLD = 50
NEEDS_REVIEW_THRESHOLD = 70


class PipelinePhase(str, Enum):
    """Phases of one bulk-import session."""

    SELECTION = "selection"
    UPLOADING = "uploading"
    DETECTING = "detecting"
    REMOVING_BACKGROUNDS = "removing_backgrounds"
    REVIEWING = "reviewing"
    COMPLETED = "completed"
    FAILED = "failed"


# Completed and failed are left only through a reset.
PHASE_TRANSITIONS: dict[PipelinePhase, set[PipelinePhase]] = {
    PipelinePhase.SELECTION: {PipelinePhase.UPLOADING},
    PipelinePhase.UPLOADING: {PipelinePhase.DETECTING, PipelinePhase.FAILED},
    PipelinePhase.DETECTING: {
        PipelinePhase.REMOVING_BACKGROUNDS,
        PipelinePhase.REVIEWING,
        PipelinePhase.COMPLETED,
        PipelinePhase.FAILED,
    },
    PipelinePhase.REMOVING_BACKGROUNDS: {PipelinePhase.REVIEWING, PipelinePhase.FAILED},
    PipelinePhase.REVIEWING: {PipelinePhase.DETECTING, PipelinePhase.COMPLETED},
    PipelinePhase.COMPLETED: set(),
    PipelinePhase.FAILED: set(),
}


class PipelineState(BaseModel):
    """Snapshot of the pipeline, replaced wholesale on every change."""

    model_config = ConfigDict(frozen=True)

    phase: PipelinePhase = PipelinePhase.SELECTION

    # Selection and upload
    selected_photos: list[str] = Field(default_factory=list)
    uploaded_urls: list[str] = Field(default_factory=list)
    upload_progress: Optional[UploadProgress] = None

    # Detection
    job: Optional[ExtractionJob] = None
    detection_progress: Optional[DetectionProgress] = None
    detected_items: list[DetectedItem] = Field(default_factory=list)
    category_summary: dict[str, int] = Field(default_factory=dict)

    # Background removal
    bg_removal_progress: Optional[BgRemovalProgress] = None
    processed_items: list[ProcessedDetectedItem] = Field(default_factory=list)

    # Review and import
    reviewable_items: list[ReviewableItem] = Field(default_factory=list)
    importing: bool = False
    import_progress: Optional[ImportProgress] = None
    items_added: Optional[int] = None

    # Errors, retry and backgrounding
    error: Optional[str] = None
    failed_photo_urls: list[str] = Field(default_factory=list)
    retry_count: int = 0
    is_backgrounded: bool = False
    completion_pending: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.phase in (PipelinePhase.COMPLETED, PipelinePhase.FAILED)

    @property
    def selected_count(self) -> int:
        return sum(1 for item in self.reviewable_items if item.is_selected)


def can_transition(current: PipelinePhase, target: PipelinePhase) -> bool:
    return target in PHASE_TRANSITIONS[current]


def transition(state: PipelineState, target: PipelinePhase, **updates) -> PipelineState:
    """Move to ``target`` applying ``updates``, if the move is allowed."""
    if not can_transition(state.phase, target):
        raise InvalidPhaseTransitionError(
            f"Cannot move pipeline from '{state.phase.value}' to '{target.value}'"
        )
    return state.model_copy(update={**updates, "phase": target})


def _replace_item(state: PipelineState, index: int, item: ReviewableItem) -> PipelineState:
    items = list(state.reviewable_items)
    items[index] = item
    return state.model_copy(update={"reviewable_items": items})


def toggle_item(state: PipelineState, index: int) -> PipelineState:
    """Flip the selection of one review item. Out-of-range indexes are ignored."""
    if index < 0 or index >= len(state.reviewable_items):
        return state
    item = state.reviewable_items[index]
    return _replace_item(state, index, item.model_copy(update={"is_selected": not item.is_selected}))


def edit_item(state: PipelineState, index: int, **edits) -> PipelineState:
    """
    Apply user overrides to one review item.

    Accepted keys are ``edited_name``, ``edited_category``,
    ``edited_sub_category`` and ``edited_colors``; each is independent.
    """
    unknown = set(edits) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields are not editable: {sorted(unknown)}")
    if index < 0 or index >= len(state.reviewable_items):
        return state
    item = state.reviewable_items[index]
    return _replace_item(state, index, item.model_copy(update=edits))


def _set_selection(state: PipelineState, selected: bool, category: Optional[str] = None) -> PipelineState:
    items = [
        item.model_copy(update={"is_selected": selected})
        if category is None or item.effective_category.lower() == category.lower()
        else item
        for item in state.reviewable_items
    ]
    return state.model_copy(update={"reviewable_items": items})


def select_all(state: PipelineState) -> PipelineState:
    return _set_selection(state, True)


def deselect_all(state: PipelineState) -> PipelineState:
    return _set_selection(state, False)


def deselect_by_category(state: PipelineState, category: str) -> PipelineState:
    """Deselect every item whose effective category is ``category``."""
    return _set_selection(state, False, category)


def get_selected_items(state: PipelineState) -> list[ReviewableItem]:
    return [item for item in state.reviewable_items if item.is_selected]


def build_reviewable_items(
    items: list[ProcessedDetectedItem], existing_items: list[WardrobeItem]
) -> list[ReviewableItem]:
    """
    Wrap processed items for review, lowest confidence first.

    Items under 50 confidence start deselected, items under 70 are flagged
    for review, and each item carries its best inventory duplicate, if any.
    """
    reviewable = [
        ReviewableItem(
            **item.model_dump(),
            is_selected=item.confidence >= AUTO_SELECT_THRESHOLD,
            needs_review=item.confidence < NEEDS_REVIEW_THRESHOLD,
            duplicate_of=best_duplicate(item, existing_items),
        )
        for item in items
    ]
    return sorted(reviewable, key=lambda item: item.confidence)

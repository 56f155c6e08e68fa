"""
User-facing progress texts for the extraction pipeline.

Status lines, detail lines, remaining-time estimates and rotating tips for
each processing phase.
"""

import math
from enum import Enum
from typing import Optional


class MessagePhase(str, Enum):
    """Processing phases that report progress to the user."""

    UPLOAD = "upload"
    DETECTION = "detection"
    BG_REMOVAL = "bg_removal"
    IMPORT = "import"


# Average seconds per item, in tenths of a second
_TENTHS_PER_ITEM = {
    MessagePhase.UPLOAD: 20,
    MessagePhase.DETECTION: 60,
    MessagePhase.BG_REMOVAL: 40,
    MessagePhase.IMPORT: 2,
}

FUN_FACTS = [
    "AI is analyzing colors, patterns, and styles...",
    "Detecting clothing items in each photo...",
    "Quality takes time ✨",
    "Building your digital wardrobe...",
    "Matching items to categories...",
    "Identifying materials and textures...",
]

_PHASE_TITLES = {
    MessagePhase.UPLOAD: "Uploading photos...",
    MessagePhase.DETECTION: "Analyzing your photos...",
    MessagePhase.BG_REMOVAL: "Cleaning up backgrounds...",
    MessagePhase.IMPORT: "Adding to wardrobe...",
}


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def get_status_message(phase: MessagePhase, done: int, total: int) -> str:
    """Primary status line, e.g. ``Analyzing photo 3 of 10...``."""
    phase = MessagePhase(phase)
    if phase == MessagePhase.UPLOAD:
        return f"Uploading photo {done + 1} of {total}..."
    if phase == MessagePhase.DETECTION:
        return f"Analyzing photo {done + 1} of {total}..."
    if phase == MessagePhase.BG_REMOVAL:
        return f"Cleaning backgrounds... {done} of {total}"
    return f"Adding item {done + 1} of {total}..."


def get_detail_message(
    phase: MessagePhase, done: int, total: int, items_found: Optional[int] = None
) -> Optional[str]:
    """Secondary line with running counts, or None when there is nothing to add."""
    phase = MessagePhase(phase)
    if phase == MessagePhase.DETECTION and items_found:
        return f"Found {_plural(items_found, 'item')} so far"
    if phase == MessagePhase.BG_REMOVAL and done > 0 and done >= total - 2:
        return "Almost done!"
    if phase == MessagePhase.UPLOAD and total > 10:
        return "This might take a moment for large batches"
    return None


def get_estimated_time_remaining(phase: MessagePhase, remaining: int) -> str:
    """Remaining time for the phase, empty when nothing is left."""
    tenths = remaining * _TENTHS_PER_ITEM[MessagePhase(phase)]
    if tenths <= 0:
        return ""
    seconds = math.ceil(tenths / 10)
    if seconds < 60:
        return f"~{seconds} seconds remaining"
    return f"~{_plural(math.ceil(seconds / 60), 'minute')} remaining"


def get_fun_fact(tick: int) -> str:
    """Rotating tip for long waits."""
    return FUN_FACTS[tick % len(FUN_FACTS)]


def get_phase_title(phase: MessagePhase) -> str:
    return _PHASE_TITLES[MessagePhase(phase)]


def format_partial_failure(processed: int, total: int) -> str:
    """Summary shown when some photos could not be analyzed."""
    failed = total - processed
    return f"{processed} of {total} photos processed.\n{_plural(failed, 'photo')} couldn't be analyzed."

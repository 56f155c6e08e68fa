"""
Categorization and duplicate matching for detected items.

Maps detector output onto the canonical wardrobe taxonomy and scores detected
items against the existing inventory. Pure functions, no I/O.

Duplicate scoring: category match 40 points, any color overlap 30 points,
sub-category match 30 points. A score of 70 or more is a duplicate, so two
independent signals are always required.
"""

import re
from typing import Optional

from shared.schemas import DetectedItem, DuplicateMatch, WardrobeItem
from shared.taxonomy import CATEGORIES, COLOR_NAMES, DEFAULT_CATEGORY, DETECTED_CATEGORY_MAP

CATEGORY_POINTS = 40
COLOR_POINTS = 30
SUB_CATEGORY_POINTS = 30
DUPLICATE_THRESHOLD = 70

_SEPARATORS = re.compile(r"[\s\-_]")


def _compact(value: str) -> str:
    return _SEPARATORS.sub("", value).lower()


def normalize_category(detected: Optional[str]) -> str:
    """Detector category (any casing) to taxonomy key, ``tops`` when unknown."""
    if not detected:
        return DEFAULT_CATEGORY
    value = str(getattr(detected, "value", detected))
    return (
        DETECTED_CATEGORY_MAP.get(value)
        or DETECTED_CATEGORY_MAP.get(value.capitalize())
        or DEFAULT_CATEGORY
    )


def normalize_colors(detected: list[str]) -> list[str]:
    """Palette names for the detected colors, unknown colors dropped."""
    return [COLOR_NAMES[color.lower()] for color in detected if color.lower() in COLOR_NAMES]


def normalize_sub_category(detected: str, category: str) -> str:
    """Canonical sub-category of ``category`` matching ``detected``, else ``detected``."""
    sub_categories = CATEGORIES.get(category)
    if not sub_categories:
        return detected

    target = _compact(detected)
    for sub_category in sub_categories:
        if _compact(sub_category) == target:
            return sub_category
    return detected


def _score(item: DetectedItem, category: str, colors: list[str], existing: WardrobeItem) -> int:
    score = 0

    if existing.category and existing.category.lower() == category:
        score += CATEGORY_POINTS

    if existing.colors and colors:
        existing_colors = {color.lower() for color in existing.colors}
        if any(color.lower() in existing_colors for color in colors):
            score += COLOR_POINTS

    if existing.sub_category and item.sub_category:
        if _compact(existing.sub_category) == _compact(item.sub_category):
            score += SUB_CATEGORY_POINTS

    return score


def find_duplicates(item: DetectedItem, existing_items: list[WardrobeItem]) -> list[DuplicateMatch]:
    """Existing items scoring at or above the duplicate threshold."""
    category = normalize_category(item.category)
    colors = normalize_colors(item.colors)

    matches = []
    for existing in existing_items:
        score = _score(item, category, colors, existing)
        if score >= DUPLICATE_THRESHOLD:
            matches.append(DuplicateMatch(item_id=existing.id, similarity=score, item_name=existing.name))
    return matches


def best_duplicate(item: DetectedItem, existing_items: list[WardrobeItem]) -> Optional[DuplicateMatch]:
    """Highest scoring duplicate, first one on ties."""
    matches = find_duplicates(item, existing_items)
    if not matches:
        return None
    return max(matches, key=lambda match: match.similarity)

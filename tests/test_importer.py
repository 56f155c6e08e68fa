"""Tests for committing reviewed items to the inventory."""

import uuid

from conftest import USER_ID

from services.importer import ReviewCommitter, resolve_item_input
from shared.schemas import BgRemovalStatus, DetectedCategory, ReviewableItem

PHOTO = "https://cdn.test/p0.jpg"
PROCESSED = "https://cdn.test/processed_1.png"


def reviewable(**overrides) -> ReviewableItem:
    fields = dict(
        category=DetectedCategory.TOPS,
        sub_category="T Shirt",
        colors=["navy", "white"],
        confidence=82,
        photo_index=0,
        photo_url=PHOTO,
        bg_removal_status=BgRemovalStatus.SUCCESS,
        processed_image_url=PROCESSED,
    )
    fields.update(overrides)
    return ReviewableItem(**fields)


def test_detected_values_are_normalized() -> None:
    job_id = uuid.uuid4()

    payload = resolve_item_input(reviewable(), job_id, USER_ID)

    assert payload.name == "T Shirt - navy"
    assert payload.category == "tops"
    assert payload.sub_category == "t-shirt"
    assert payload.colors == ["Navy", "White"]
    assert payload.image_url == PROCESSED
    assert payload.original_image_url == PHOTO
    assert payload.creation_method == "ai_extraction"
    assert payload.extraction_source == "photo_import"
    assert payload.extraction_job_id == job_id
    assert payload.ai_confidence == 82


def test_edits_win_field_by_field() -> None:
    item = reviewable(
        edited_name="Favourite tee",
        edited_category="Outerwear",
        edited_sub_category="jacket",
        edited_colors=["black"],
    )

    payload = resolve_item_input(item, None, USER_ID)

    assert payload.name == "Favourite tee"
    assert payload.category == "outerwear"
    assert payload.sub_category == "jacket"
    assert payload.colors == ["Black"]


def test_unknown_colors_are_kept_raw() -> None:
    payload = resolve_item_input(reviewable(colors=["chartreuse"]), None, USER_ID)

    assert payload.colors == ["chartreuse"]


def test_no_colors_and_no_processed_image() -> None:
    item = reviewable(colors=[], bg_removal_status=BgRemovalStatus.FAILED, processed_image_url=None)

    payload = resolve_item_input(item, None, USER_ID)

    assert payload.name == "T Shirt -"
    assert payload.colors == []
    assert payload.image_url == PHOTO


async def test_commit_selected_items(committer, item_repository, job_repository) -> None:
    job = await job_repository.create_job(USER_ID, [PHOTO])
    items = [reviewable(), reviewable(is_selected=False), reviewable(sub_category="jeans", category="Bottoms")]
    progress = []

    added = await committer.commit(items, job.id, progress.append)

    assert added == 2
    assert [(p.done, p.total) for p in progress] == [(0, 2), (1, 2), (2, 2)]
    stored = await item_repository.list_items_for_user(USER_ID)
    assert sorted(item.category for item in stored) == ["bottoms", "tops"]
    assert (await job_repository.get_job(job.id)).items_added_count == 2


async def test_nothing_selected_writes_nothing(job_repository, auth) -> None:
    class RecordingItems:
        def __init__(self):
            self.created = []

        async def create_item(self, item):
            self.created.append(item)

    items_repo = RecordingItems()
    committer = ReviewCommitter(items_repo, job_repository, auth)
    progress = []

    added = await committer.commit([reviewable(is_selected=False)], uuid.uuid4(), progress.append)

    assert added == 0
    assert items_repo.created == []
    assert progress == []


async def test_failing_item_does_not_stop_batch(job_repository, auth) -> None:
    class FlakyItems:
        def __init__(self):
            self.created = []

        async def create_item(self, item):
            if item.sub_category == "jeans":
                raise RuntimeError("constraint violation")
            self.created.append(item)

    items_repo = FlakyItems()
    committer = ReviewCommitter(items_repo, job_repository, auth)
    items = [reviewable(category="Bottoms", sub_category="jeans"), reviewable()]

    assert await committer.commit(items) == 1
    assert [item.sub_category for item in items_repo.created] == ["t-shirt"]


async def test_signed_out_user_imports_nothing(committer, auth, item_repository) -> None:
    auth.sign_out()

    assert await committer.commit([reviewable()]) == 0
    assert await item_repository.list_items_for_user(USER_ID) == []

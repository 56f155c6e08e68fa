"""Shared fixtures and in-memory collaborators for the pipeline tests."""

from pathlib import Path
from typing import Callable, Optional

import pytest

from database import DatabaseManager, ExtractionJobRepository, UsageRepository, WardrobeItemRepository
from orchestrator import BackgroundEffects, ExtractionOrchestrator
from services import BackgroundProcessor, ItemDetector, PhotoUploader, ReviewCommitter
from services.clients import StaticAuthContext, StorageClient
from shared.errors import AuthenticationRequiredError, StorageError
from shared.schemas import VisionResponse

USER_ID = "user-123"
STORAGE_URL = "https://storage.test"


def item_json(
    category: str = "Tops",
    sub_category: str = "t-shirt",
    colors: Optional[list] = None,
    confidence=90,
) -> dict:
    return {
        "category": category,
        "sub_category": sub_category,
        "colors": colors if colors is not None else ["navy"],
        "style": "casual",
        "material": "cotton",
        "position_description": "upper body",
        "confidence": confidence,
    }


class FakeStorage:
    """Bucket store kept in memory, with the real public URL layout."""

    def __init__(self):
        self.objects: dict[tuple[str, str], bytes] = {}
        self.removed: list[tuple[str, list[str]]] = []
        self.fail_when: Callable[[str, str], bool] = lambda bucket, path: False
        self.auth_expired = False
        self.remove_error: Optional[Exception] = None

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str = "image/jpeg") -> str:
        if self.auth_expired:
            raise AuthenticationRequiredError("Storage upload rejected: 401")
        if self.fail_when(bucket, path):
            raise StorageError("Storage upload failed: 500")
        self.objects[(bucket, path)] = data
        return self.get_public_url(bucket, path)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{STORAGE_URL}/storage/v1/object/public/{bucket}/{path}"

    path_from_public_url = staticmethod(StorageClient.path_from_public_url)

    async def remove(self, bucket: str, paths: list[str]) -> None:
        if self.remove_error:
            raise self.remove_error
        self.removed.append((bucket, list(paths)))
        for path in paths:
            self.objects.pop((bucket, path), None)


class FakeOptimizer:
    """Image loader whose bytes are the URI itself, so fakes can tell photos apart."""

    def __init__(self):
        self.unreadable: set[str] = set()
        self.discarded: list[str] = []

    async def read_bytes(self, uri: str) -> bytes:
        if uri in self.unreadable:
            raise FileNotFoundError(uri)
        return uri.encode()

    async def optimize_for_ai(self, uri: str) -> str:
        return uri

    def discard(self, path: str, original_uri: str) -> None:
        self.discarded.append(path)


class FakeVision:
    """Vision model answering from a per-photo script.

    ``responses`` maps a photo URL to model text, an exception to raise, or a
    list of those consumed one call at a time. Photos not in ``responses``
    are answered by ``responder(url)`` when set, else by ``default``.
    """

    model = "gpt-4o"

    def __init__(self, default: Optional[str] = "[]"):
        self.responses: dict = {}
        self.responder: Optional[Callable[[str], object]] = None
        self.default = default
        self.configured = True
        self.calls: list[str] = []

    def is_configured(self) -> bool:
        return self.configured

    async def generate_content(self, prompt: str, image_bytes: bytes, mime_type: str = "image/jpeg"):
        url = image_bytes.decode()
        self.calls.append(url)
        if url in self.responses:
            answer = self.responses[url]
        elif self.responder is not None:
            answer = self.responder(url)
        else:
            answer = self.default
        if isinstance(answer, list):
            answer = answer.pop(0) if len(answer) > 1 else answer[0]
        if isinstance(answer, Exception):
            raise answer
        return VisionResponse(text=answer, model=self.model, tokens_input=100, tokens_output=20)


class FakeRemover:
    name = "fake"

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.failing: set[str] = set()
        self.calls: list[str] = []

    def is_configured(self) -> bool:
        return self.configured

    async def remove_background(self, image_url: str) -> bytes:
        self.calls.append(image_url)
        if image_url in self.failing:
            raise RuntimeError("Remove.bg error: 500")
        return b"\x89PNG" + image_url.encode()


class FakeNotifier:
    def __init__(self):
        self.completed: list[tuple[int, int]] = []
        self.failed = 0

    async def notify_complete(self, item_count: int, photo_count: int) -> None:
        self.completed.append((item_count, photo_count))

    async def notify_failed(self) -> None:
        self.failed += 1


@pytest.fixture()
async def db(tmp_path: Path):
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'extraction.db'}")
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture()
def job_repository(db) -> ExtractionJobRepository:
    return ExtractionJobRepository(db)


@pytest.fixture()
def item_repository(db) -> WardrobeItemRepository:
    return WardrobeItemRepository(db)


@pytest.fixture()
def usage_repository(db) -> UsageRepository:
    return UsageRepository(db)


@pytest.fixture()
def auth() -> StaticAuthContext:
    return StaticAuthContext(USER_ID)


@pytest.fixture()
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture()
def optimizer() -> FakeOptimizer:
    return FakeOptimizer()


@pytest.fixture()
def vision() -> FakeVision:
    return FakeVision()


@pytest.fixture()
def remover() -> FakeRemover:
    return FakeRemover()


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def uploader(storage, job_repository, auth, optimizer) -> PhotoUploader:
    return PhotoUploader(storage, job_repository, auth, optimizer)


@pytest.fixture()
def detector(job_repository, vision, optimizer) -> ItemDetector:
    return ItemDetector(job_repository, vision, optimizer)


@pytest.fixture()
def background(remover, storage, auth, usage_repository) -> BackgroundProcessor:
    return BackgroundProcessor(remover, storage, auth, usage_repository)


@pytest.fixture()
def committer(item_repository, job_repository, auth) -> ReviewCommitter:
    return ReviewCommitter(item_repository, job_repository, auth)


@pytest.fixture()
def orchestrator(
    uploader, detector, background, committer, job_repository, item_repository, auth, notifier
) -> ExtractionOrchestrator:
    return ExtractionOrchestrator(
        uploader=uploader,
        detector=detector,
        background=background,
        importer=committer,
        job_repository=job_repository,
        item_repository=item_repository,
        auth=auth,
        notifier=notifier,
        effects=BackgroundEffects(),
        poll_interval=0.01,
    )

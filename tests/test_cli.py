"""Tests for the wardrobe-extract command line."""

import asyncio
from pathlib import Path

import pytest
from rich.console import Console
from typer.testing import CliRunner

from database import ExtractionJobRepository, close_database, init_database
from orchestrator import cli
from orchestrator.cli import app, find_photos
from shared.config import reset_settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "console", Console(width=200))


@pytest.fixture()
def database_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    reset_settings()
    yield url
    reset_settings()


def test_find_photos(tmp_path: Path) -> None:
    for name in ("b.JPG", "a.png", "notes.txt", "c.webp"):
        (tmp_path / name).write_bytes(b"x")
    (tmp_path / "nested.jpg").mkdir()

    assert [Path(photo).name for photo in find_photos(tmp_path)] == ["a.png", "b.JPG", "c.webp"]


def test_estimate() -> None:
    result = runner.invoke(app, ["estimate", "12"])

    assert result.exit_code == 0
    assert "Detection: ~2 minutes" in result.output
    assert "~1 minute" in result.output


def test_estimate_caps_batch() -> None:
    result = runner.invoke(app, ["estimate", "80"])

    assert result.exit_code == 0
    assert "Only the first 50 photos" in result.output
    assert "Detection: ~5 minutes" in result.output


def test_jobs_empty(database_url: str) -> None:
    result = runner.invoke(app, ["jobs", "--user", "user-1"])

    assert result.exit_code == 0
    assert "No extraction jobs found" in result.output


def test_jobs_lists_user_jobs(database_url: str) -> None:
    async def seed() -> str:
        db = await init_database(database_url)
        try:
            job = await ExtractionJobRepository(db).create_job("user-1", ["https://cdn.test/a.jpg"])
            return str(job.id)
        finally:
            await close_database()

    job_id = asyncio.run(seed())

    result = runner.invoke(app, ["jobs", "--user", "user-1"])

    assert result.exit_code == 0
    assert job_id in result.output
    assert "pending" in result.output
    assert "0/1" in result.output


def test_run_without_photos(tmp_path: Path) -> None:
    result = runner.invoke(app, ["run", str(tmp_path), "--user", "user-1"])

    assert result.exit_code == 1
    assert "No photos found" in result.output

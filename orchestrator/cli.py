"""
Command line entry point for bulk wardrobe extraction.

Usage examples:
    wardrobe-extract run ./photos --user 3f2a...
    wardrobe-extract run ./photos --user 3f2a... --import
    wardrobe-extract jobs --user 3f2a...
    wardrobe-extract estimate 24
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from database import ExtractionJobRepository, close_database, init_database
from services import background, uploader
from services.clients import StaticAuthContext
from services.messages import FUN_FACTS
from shared.config import get_settings
from shared.logging import setup_logging
from shared.schemas import BgRemovalStatus

from .factory import create_orchestrator
from .state import PipelinePhase, PipelineState

PHOTO_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp"}

console = Console()
app = typer.Typer(help="Bulk-import wardrobe items from photos.", no_args_is_help=True)


def find_photos(photo_dir: Path) -> list[str]:
    """Image files directly inside ``photo_dir``, sorted by name."""
    return [
        str(path)
        for path in sorted(photo_dir.iterdir())
        if path.is_file() and path.suffix.lower() in PHOTO_SUFFIXES
    ]


def display_review(state: PipelineState) -> None:
    """Print the review set the way the review screen lists it."""
    table = Table(title="[bold green]Detected Items[/bold green]")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Category", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Colors")
    table.add_column("Confidence", justify="right")
    table.add_column("Background")
    table.add_column("Selected", justify="center")
    table.add_column("Duplicate of")

    for index, item in enumerate(state.reviewable_items):
        confidence = f"[yellow]{item.confidence}[/yellow]" if item.needs_review else str(item.confidence)
        status = item.bg_removal_status
        background_cell = {
            BgRemovalStatus.SUCCESS: "[green]✓ removed[/green]",
            BgRemovalStatus.FAILED: "[red]✗ failed[/red]",
        }.get(status, "[dim]skipped[/dim]")
        table.add_row(
            str(index),
            item.effective_category,
            item.effective_sub_category,
            ", ".join(item.effective_colors),
            confidence,
            background_cell,
            "[green]✓[/green]" if item.is_selected else "",
            f"{item.duplicate_of.item_name or item.duplicate_of.item_id} ({item.duplicate_of.similarity}%)"
            if item.duplicate_of
            else "",
        )

    console.print(table)
    console.print(f"[bold]{state.selected_count}[/bold] of {len(state.reviewable_items)} items selected")


async def run_extraction(photo_dir: Path, user_id: str, auto_import: bool) -> int:
    """Run one session over the photos in ``photo_dir``. Returns the exit code."""
    photos = find_photos(photo_dir)
    if not photos:
        console.print(f"[red]No photos found in {photo_dir}[/red]")
        return 1

    settings = get_settings()
    setup_logging("extraction-cli", settings)
    db = await init_database(settings.get_database_config())

    orchestrator = create_orchestrator(StaticAuthContext(user_id), db, settings)
    try:
        orchestrator.select_photos(photos)
        selected = len(orchestrator.state.selected_photos)
        console.print(Panel(
            f"[bold]Photos:[/bold] {selected}\n"
            f"[bold]Estimated time:[/bold] {uploader.get_estimated_time(selected)}\n"
            f"[dim]{FUN_FACTS[0]}[/dim]",
            title="[bold blue]Wardrobe Extraction[/bold blue]",
            expand=False,
        ))

        await orchestrator.start_upload()
        state = orchestrator.state

        if state.phase == PipelinePhase.FAILED:
            console.print(f"[red]✗ {state.error}[/red]")
            return 1
        if state.error:
            console.print(f"[yellow]{state.error}[/yellow]")

        if state.phase == PipelinePhase.COMPLETED:
            console.print("[yellow]No clothing items detected in these photos.[/yellow]")
            return 0

        display_review(state)
        if not auto_import:
            console.print("[dim]Run again with --import to add the selected items.[/dim]")
            return 0

        added = await orchestrator.import_to_wardrobe()
        if orchestrator.state.phase != PipelinePhase.COMPLETED:
            console.print(f"[red]✗ {orchestrator.state.error or 'Nothing was imported'}[/red]")
            return 1
        console.print(f"[green]✓ Added {added} items to the wardrobe[/green]")
        return 0

    finally:
        await orchestrator.close()
        await close_database()


async def list_jobs(user_id: str, limit: int) -> list:
    settings = get_settings()
    db = await init_database(settings.get_database_config())
    try:
        return await ExtractionJobRepository(db).list_jobs_for_user(user_id, limit=limit)
    finally:
        await close_database()


@app.command()
def run(
    photo_dir: Path = typer.Argument(..., exists=True, file_okay=False, help="Directory with photos"),
    user_id: str = typer.Option(..., "--user", help="Owner of the imported items"),
    auto_import: bool = typer.Option(
        False, "--import", help="Add all auto-selected items to the wardrobe"
    ),
) -> None:
    """Upload photos, detect items and remove backgrounds."""
    try:
        code = asyncio.run(run_extraction(photo_dir, user_id, auto_import))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        raise typer.Exit(1)
    raise typer.Exit(code)


@app.command()
def jobs(
    user_id: str = typer.Option(..., "--user", help="Job owner"),
    limit: int = typer.Option(20, "--limit", min=1, help="Maximum number of jobs"),
) -> None:
    """List recent extraction jobs of a user."""
    found = asyncio.run(list_jobs(user_id, limit))
    if not found:
        console.print("[yellow]No extraction jobs found[/yellow]")
        return

    table = Table(title="[bold blue]Extraction Jobs[/bold blue]")
    table.add_column("Job", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Photos", justify="right")
    table.add_column("Items found", justify="right")
    table.add_column("Items added", justify="right")
    table.add_column("Created")

    for job in found:
        items_found: Optional[int] = job.detected_items.total_items_detected if job.detected_items else None
        table.add_row(
            str(job.id),
            job.status.value,
            f"{job.processed_photos}/{job.total_photos}",
            "-" if items_found is None else str(items_found),
            str(job.items_added_count),
            job.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def estimate(photo_count: int = typer.Argument(..., min=1, help="Number of photos")) -> None:
    """Show rough processing times for a batch."""
    capped = min(photo_count, uploader.MAX_BATCH_SIZE)
    if capped < photo_count:
        console.print(f"[yellow]Only the first {capped} photos are processed per batch[/yellow]")
    console.print(f"Detection: {uploader.get_estimated_time(capped)}")
    console.print(f"Background removal (about one item per photo): {background.get_estimated_time(capped)}")


if __name__ == "__main__":
    app()

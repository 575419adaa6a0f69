"""
Main CLI Application
Wrap images into SVG documents in batches and browse the conversion history
"""

import asyncio
from pathlib import Path
from typing import Annotated, List, Optional

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
)
from rich.table import Table

from svgwrap import __version__
from svgwrap.config import settings
from svgwrap.core.batch.manager import BatchOrchestrator
from svgwrap.core.batch.models import Batch, HistoryRecord, ImageInput, Task, TaskStatus
from svgwrap.core.batch.results import download_info
from svgwrap.core.conversion.svg_encoder import SvgEncoder
from svgwrap.core.exceptions import (
    DeliveryError,
    InvalidInputError,
    StorageError,
)
from svgwrap.services.batch_history_service import BatchHistoryService
from svgwrap.services.delivery_service import DeliveryService
from svgwrap.utils.logging import setup_logging

app = typer.Typer(
    name="svgwrap",
    help="Wrap raster images into SVG documents, in batches, with history",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
history_app = typer.Typer(help="Browse and manage saved batches", no_args_is_help=True)
app.add_typer(history_app, name="history")

console = Console()

STATUS_STYLES = {
    TaskStatus.PENDING: "dim",
    TaskStatus.RUNNING: "cyan",
    TaskStatus.SUCCEEDED: "green",
    TaskStatus.FAILED: "red",
}

# Set by the root callback; commands read it to build their own store.
state = {"db_path": None}


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"svgwrap {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="History database file", envvar="SVGWRAP_HISTORY_DB_PATH"),
    ] = None,
    log_level: Annotated[
        str, typer.Option("--log-level", help="Logging level")
    ] = settings.log_level,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version", "-v", callback=_version_callback, is_eager=True,
            help="Show version and exit",
        ),
    ] = None,
):
    """
    svgwrap - wrap raster images into SVG documents

    [bold green]Quick Start:[/bold green]

      [cyan]svgwrap convert a.png b.jpg -o out/[/cyan]

      [cyan]svgwrap history list[/cyan]
    """
    setup_logging(
        log_level=log_level,
        json_logs=settings.json_logs,
        enable_file_logging=settings.logging_enabled,
        log_dir=settings.log_dir,
        max_log_size_mb=settings.max_log_size_mb,
        backup_count=settings.log_backup_count,
    )
    state["db_path"] = str(db) if db else settings.history_db_path


def _history_service() -> BatchHistoryService:
    return BatchHistoryService(db_path=state["db_path"] or settings.history_db_path)


def _status_text(status: TaskStatus) -> str:
    return f"[{STATUS_STYLES[status]}]{status.value}[/{STATUS_STYLES[status]}]"


def _task_table(title: str, tasks: List[Task]) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("File", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Dimensions", justify="right")
    table.add_column("Status")
    table.add_column("Error", style="red")

    for index, task in enumerate(tasks, start=1):
        dimensions = f"{task.width}x{task.height}" if task.width else "-"
        table.add_row(
            str(index),
            task.source.name,
            f"{task.source.size:,}",
            dimensions,
            _status_text(task.status),
            task.error or "",
        )
    return table


def _print_summary(orchestrator: BatchOrchestrator, batch: Batch) -> None:
    stats = orchestrator.statistics(batch)
    console.print(_task_table(f"Batch {batch.batch_id}", batch.tasks))
    console.print(
        f"{_status_text(batch.status)}  {stats.succeeded}/{stats.total} succeeded, "
        f"{stats.failed} failed, success rate {stats.success_rate}%"
    )


@app.command()
def convert(
    files: Annotated[List[Path], typer.Argument(help="Images to wrap")],
    output_dir: Annotated[
        Optional[Path],
        typer.Option("-o", "--output-dir", help="Write SVG files to this directory"),
    ] = None,
    parallel: Annotated[
        Optional[int],
        typer.Option("-j", "--parallel", min=1, help="Concurrent encodes (default: CPU count)"),
    ] = None,
    save: Annotated[
        bool, typer.Option("--save/--no-save", help="Save the batch to history")
    ] = True,
    combined: Annotated[
        bool,
        typer.Option("--combined", help="Export all documents into one text file"),
    ] = False,
):
    """
    Wrap images into SVG documents as one batch

    Examples:
      svgwrap convert photo.jpg logo.png -o svg/
      svgwrap convert *.webp -j 2 --no-save
      svgwrap convert *.png -o out/ --combined
    """
    try:
        images = [ImageInput.from_path(path) for path in files]
    except OSError as e:
        console.print(f"[red]Cannot read input: {e}[/red]")
        raise typer.Exit(2)

    orchestrator = BatchOrchestrator(SvgEncoder(), concurrency_limit=parallel)
    try:
        batch = orchestrator.create_batch(images)
    except InvalidInputError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(2)

    batch = asyncio.run(_run_batch(orchestrator, batch))
    _print_summary(orchestrator, batch)

    if save:
        try:
            record_id = asyncio.run(
                _history_service().save(orchestrator.snapshot(batch))
            )
        except StorageError as e:
            console.print(f"[red]Could not save history: {e.message}[/red]")
            raise typer.Exit(1)
        console.print(f"Saved to history as [bold]{record_id}[/bold]")

    if output_dir:
        _deliver(batch, output_dir, combined=combined)

    if batch.status == TaskStatus.FAILED:
        raise typer.Exit(1)


async def _run_batch(orchestrator: BatchOrchestrator, batch: Batch) -> Batch:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        transient=True,
    ) as progress:
        bar = progress.add_task("Wrapping images", total=batch.total)

        def on_batch_update(snapshot: Batch) -> None:
            progress.update(bar, completed=snapshot.terminal_count)

        return await orchestrator.run(batch, on_batch_update=on_batch_update)


def _deliver(batch: Batch, output_dir: Path, combined: bool = False) -> None:
    info = download_info(batch)
    if not info.can_download:
        console.print("[yellow]Nothing to export: no conversion succeeded[/yellow]")
        return

    delivery = DeliveryService(output_dir=output_dir)
    if combined:
        try:
            path = delivery.deliver_combined(batch.tasks)
        except DeliveryError as e:
            console.print(f"[red]{e.message}[/red]")
            raise typer.Exit(1)
        console.print(f"Exported {info.available_files} SVG documents to {path}")
        return

    try:
        report = asyncio.run(delivery.deliver_many(batch.tasks))
    except DeliveryError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    console.print(
        f"Exported {len(report.delivered)}/{info.available_files} SVG files "
        f"to {output_dir}"
    )
    for name, error in report.failed:
        console.print(f"[red]  {name}: {error}[/red]")


def _load_record(record_id: str) -> HistoryRecord:
    try:
        record = asyncio.run(_history_service().get(record_id))
    except StorageError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    if record is None:
        console.print(f"[red]No history record {record_id}[/red]")
        raise typer.Exit(1)
    return record


@history_app.command("list")
def history_list():
    """List saved batches, most recent first"""
    try:
        records = asyncio.run(_history_service().list())
    except StorageError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    if not records:
        console.print("History is empty")
        return

    table = Table(title="Conversion history", show_header=True)
    table.add_column("Record", style="bold")
    table.add_column("Saved at")
    table.add_column("Files", justify="right")
    table.add_column("Succeeded", justify="right")
    table.add_column("Status")
    for record in records:
        batch = record.batch
        succeeded = sum(1 for t in batch.tasks if t.status == TaskStatus.SUCCEEDED)
        table.add_row(
            record.record_id,
            record.saved_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(batch.total),
            str(succeeded),
            _status_text(batch.status),
        )
    console.print(table)


@history_app.command("show")
def history_show(record_id: Annotated[str, typer.Argument(help="Record id")]):
    """Show the tasks of one saved batch"""
    record = _load_record(record_id)
    console.print(f"Saved at {record.saved_at.isoformat()}")
    console.print(_task_table(f"Batch {record.batch.batch_id}", record.batch.tasks))


@history_app.command("export")
def history_export(
    record_id: Annotated[str, typer.Argument(help="Record id")],
    output_dir: Annotated[
        Path, typer.Option("-o", "--output-dir", help="Destination directory")
    ],
    combined: Annotated[
        bool,
        typer.Option("--combined", help="Export all documents into one text file"),
    ] = False,
):
    """Write the SVG files of a saved batch to a directory"""
    record = _load_record(record_id)
    _deliver(record.batch, output_dir, combined=combined)


@history_app.command("delete")
def history_delete(record_id: Annotated[str, typer.Argument(help="Record id")]):
    """Delete one saved batch"""
    try:
        asyncio.run(_history_service().delete(record_id))
    except StorageError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    console.print(f"Deleted {record_id}")


@history_app.command("clear")
def history_clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask")] = False,
):
    """Delete every saved batch"""
    if not yes and not typer.confirm("Delete the whole conversion history?"):
        raise typer.Exit(1)
    try:
        asyncio.run(_history_service().clear())
    except StorageError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    console.print("History cleared")


@history_app.command("info")
def history_info():
    """Show record count and estimated storage use"""
    try:
        info = asyncio.run(_history_service().info())
    except StorageError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    console.print(f"Records: {info.count}")
    console.print(f"Estimated size: ~{info.estimated_size_bytes / 1024:.0f} KiB")


if __name__ == "__main__":
    app()

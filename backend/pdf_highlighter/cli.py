"""Typer-based CLI for inspecting and maintaining the annotation database."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from pdf_highlighter.core.config import AppSettings, get_settings
from pdf_highlighter.core.db import build_engine, build_session_factory
from pdf_highlighter.core.errors import AnnotationStoreError
from pdf_highlighter.core.logging import setup_logging
from pdf_highlighter.core.migrations import init_database
from pdf_highlighter.services.repository import AnnotationRepository

app = typer.Typer(help="Maintenance utilities for the PDF highlighter annotation store")
console = Console()

T = TypeVar("T")

_DATABASE_OPTION = typer.Option(None, "--database-url", "-d", help="SQLAlchemy URL overriding the configured database.")


def _settings(database_url: Optional[str]) -> AppSettings:
    settings = get_settings()
    if database_url:
        settings = settings.model_copy(update={"database_url": database_url})
    setup_logging(settings.log_level, json_logs=False, service="cli")
    return settings


def _run(settings: AppSettings, action: Callable[[AnnotationRepository], Awaitable[T]]) -> T:
    """Open the database, apply migrations, run ``action`` and dispose the engine."""

    async def _main() -> T:
        engine = build_engine(settings)
        try:
            await init_database(engine)
            repository = AnnotationRepository(
                build_session_factory(engine),
                reconcile_max_attempts=settings.reconcile_max_attempts,
            )
            return await action(repository)
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_main())
    except AnnotationStoreError as exc:
        console.print(f"[red]error:[/red] {exc}")
        raise typer.Exit(code=1) from exc


@app.command("init-db")
def init_db(database_url: Optional[str] = _DATABASE_OPTION) -> None:
    """Create or upgrade the database schema."""

    settings = _settings(database_url)

    async def _noop(_: AnnotationRepository) -> None:
        return None

    _run(settings, _noop)
    console.print(f"Database ready at [bold]{settings.database_url}[/bold]")


@app.command()
def documents(
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Only documents whose name or path contains this."),
    database_url: Optional[str] = _DATABASE_OPTION,
) -> None:
    """List known documents, most recently opened first."""

    settings = _settings(database_url)
    summaries = _run(settings, lambda repository: repository.list_documents_with_counts(query))

    table = Table(show_header=True, header_style="bold")
    for column in ("ID", "Name", "Path", "Highlights", "Last opened"):
        table.add_column(column)
    for item in summaries:
        table.add_row(
            str(item.id),
            item.name,
            item.path,
            str(item.highlight_count),
            item.last_opened.isoformat(sep=" ", timespec="seconds"),
        )

    console.print(table)


@app.command()
def tags(database_url: Optional[str] = _DATABASE_OPTION) -> None:
    """List every tag with how many highlights use it."""

    settings = _settings(database_url)
    usage = _run(settings, lambda repository: repository.tags_with_usage_count())

    table = Table(show_header=True, header_style="bold")
    for column in ("ID", "Name", "Uses"):
        table.add_column(column)
    for item in usage:
        table.add_row(str(item.tag.id), item.tag.name, str(item.usage_count))

    console.print(table)


@app.command("delete-tags")
def delete_tags(
    tag_ids: list[int] = typer.Argument(..., help="Ids of the tags to delete."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    database_url: Optional[str] = _DATABASE_OPTION,
) -> None:
    """Delete tags and detach them from every highlight, all or nothing."""

    if not yes:
        typer.confirm(f"Delete {len(tag_ids)} tag(s) and all their links?", abort=True)

    settings = _settings(database_url)
    _run(settings, lambda repository: repository.bulk_delete_tags(tag_ids))
    console.print(f"Deleted tag(s): {', '.join(str(tag_id) for tag_id in tag_ids)}")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind; defaults to the configured host."),
    port: Optional[int] = typer.Option(None, "--port", help="Port to bind; defaults to the configured port."),
) -> None:
    """Run the HTTP API."""

    settings = get_settings()
    uvicorn.run(
        "pdf_highlighter.main:app",
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()

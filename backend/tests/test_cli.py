from __future__ import annotations

import asyncio

import pytest
from typer.testing import CliRunner

from pdf_highlighter.cli import app
from pdf_highlighter.core.db import build_engine, build_session_factory
from pdf_highlighter.core.migrations import init_database
from pdf_highlighter.models.annotations import Highlight, HighlightContent
from pdf_highlighter.services.repository import AnnotationRepository

runner = CliRunner()


def _seed(settings) -> dict[str, int]:
    async def _main() -> dict[str, int]:
        engine = build_engine(settings)
        try:
            await init_database(engine)
            repository = AnnotationRepository(build_session_factory(engine))
            document = await repository.register_document("notes.pdf", "/docs/notes.pdf")
            await repository.create_highlight(
                document.id,
                Highlight(id="h1", content=HighlightContent(text="x"), position={"pageNumber": 1}),
            )
            return {
                "alpha": await repository.add_highlight_tag("h1", "alpha"),
                "beta": await repository.add_tag("beta"),
            }
        finally:
            await engine.dispose()

    return asyncio.run(_main())


@pytest.fixture
def database_url(settings) -> str:
    return settings.database_url


def test_init_db_reports_location(database_url) -> None:
    result = runner.invoke(app, ["init-db", "--database-url", database_url])

    assert result.exit_code == 0, result.output
    assert "Database ready" in result.output


def test_documents_and_tags_tables(settings, database_url) -> None:
    _seed(settings)

    documents = runner.invoke(app, ["documents", "-d", database_url])
    assert documents.exit_code == 0, documents.output
    assert "notes.pdf" in documents.output

    matched = runner.invoke(app, ["documents", "-d", database_url, "--query", "NOTES"])
    assert matched.exit_code == 0, matched.output
    assert "notes.pdf" in matched.output

    filtered = runner.invoke(app, ["documents", "-d", database_url, "--query", "missing"])
    assert "notes.pdf" not in filtered.output

    tags = runner.invoke(app, ["tags", "-d", database_url])
    assert tags.exit_code == 0, tags.output
    assert "alpha" in tags.output
    assert "beta" in tags.output


def test_delete_tags_with_confirmation_flag(settings, database_url) -> None:
    ids = _seed(settings)

    result = runner.invoke(app, ["delete-tags", str(ids["alpha"]), "--yes", "-d", database_url])
    assert result.exit_code == 0, result.output
    assert "Deleted tag(s)" in result.output

    tags = runner.invoke(app, ["tags", "-d", database_url])
    assert "alpha" not in tags.output
    assert "beta" in tags.output


def test_delete_tags_aborts_without_confirmation(settings, database_url) -> None:
    ids = _seed(settings)

    result = runner.invoke(app, ["delete-tags", str(ids["beta"]), "-d", database_url], input="n\n")

    assert result.exit_code != 0
    tags = runner.invoke(app, ["tags", "-d", database_url])
    assert "beta" in tags.output

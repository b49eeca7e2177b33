"""Repository behaviour against a temporary SQLite database."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from pdf_highlighter.core.config import AppSettings
from pdf_highlighter.core.db import build_engine, build_session_factory
from pdf_highlighter.core.errors import (
    AnnotationStoreError,
    ConstraintViolationError,
    HighlightNotPersistedError,
    NotFoundError,
    StoreUnavailableError,
)
from pdf_highlighter.models.annotations import HighlightContent
from pdf_highlighter.models.tables import HighlightTagRecord, TagRecord
from pdf_highlighter.services.repository import AnnotationRepository


async def _count(session_factory, model, *criteria) -> int:
    stmt = select(func.count()).select_from(model)
    if criteria:
        stmt = stmt.where(*criteria)
    async with session_factory() as session:
        return await session.scalar(stmt)


@pytest.mark.asyncio
async def test_register_document_reuses_known_path(repository) -> None:
    first = await repository.register_document("a.pdf", "/x/a.pdf")
    second = await repository.register_document("a.pdf", "/x/a.pdf")

    assert second.id == first.id
    assert second.date_added == first.date_added
    assert second.last_opened > first.last_opened
    assert len(await repository.list_documents()) == 1


@pytest.mark.asyncio
async def test_add_document_with_duplicate_path_surfaces_constraint_violation(repository) -> None:
    await repository.register_document("a.pdf", "/x/a.pdf")

    with pytest.raises(ConstraintViolationError):
        await repository.add_document("copy.pdf", "/x/a.pdf")


@pytest.mark.asyncio
async def test_document_lookups_and_counts(repository, make_highlight) -> None:
    paper = await repository.register_document("paper.pdf", "/docs/paper.pdf")
    notes = await repository.register_document("notes.pdf", "/docs/100%_notes.pdf")
    await repository.create_highlight(paper.id, make_highlight("h1"))
    await repository.create_highlight(paper.id, make_highlight("h2"))

    assert (await repository.get_document_by_path("/docs/paper.pdf")).id == paper.id
    assert await repository.get_document_by_path("/docs/missing.pdf") is None
    assert [doc.id for doc in await repository.get_documents_by_name("notes.pdf")] == [notes.id]
    assert [doc.id for doc in await repository.search_documents("100%")] == [notes.id]
    assert await repository.highlight_count(paper.id) == 2

    summaries = {summary.id: summary.highlight_count for summary in await repository.list_documents_with_counts()}
    assert summaries == {paper.id: 2, notes.id: 0}

    filtered = await repository.list_documents_with_counts("paper")
    assert [(summary.id, summary.highlight_count) for summary in filtered] == [(paper.id, 2)]
    assert [summary.id for summary in await repository.list_documents_with_counts("100%")] == [notes.id]


@pytest.mark.asyncio
async def test_unopenable_database_is_reported_unavailable(tmp_path) -> None:
    # A directory cannot be opened as a database file.
    settings = AppSettings(_env_file=None, database_url=f"sqlite+aiosqlite:///{tmp_path}")
    engine = build_engine(settings)
    try:
        repository = AnnotationRepository(build_session_factory(engine))
        with pytest.raises(StoreUnavailableError) as excinfo:
            await repository.list_tags()
    finally:
        await engine.dispose()

    assert "list_tags" in str(excinfo.value)


@pytest.mark.asyncio
async def test_highlights_load_newest_first_with_exact_position(repository, document, make_highlight) -> None:
    older = make_highlight("older", page=1, scale={"nested": [1, 2.5, None]}, label="naïve ✓")
    newer = make_highlight("newer", page=3, text=None, image="data:image/png;base64,AAAA", comment="note", emoji="💡")
    await repository.create_highlight(document.id, older)
    await repository.create_highlight(document.id, newer)

    loaded = await repository.load_highlights(document.id)

    assert [highlight.id for highlight in loaded] == ["newer", "older"]
    assert loaded[1].position == older.position
    assert loaded[0].content == HighlightContent(image="data:image/png;base64,AAAA")
    assert loaded[0].comment.text == "note"
    assert loaded[0].comment.emoji == "💡"
    assert loaded[0].page_number == 3
    assert all(highlight.document_id == document.id for highlight in loaded)


@pytest.mark.asyncio
async def test_create_highlight_requires_single_content_kind(repository, document, make_highlight) -> None:
    with pytest.raises(ValueError):
        await repository.create_highlight(document.id, make_highlight("both", image="data:x"))
    with pytest.raises(ValueError):
        await repository.create_highlight(document.id, make_highlight("neither", text=None))

    assert await repository.load_highlights(document.id) == []


@pytest.mark.asyncio
async def test_create_highlight_for_unknown_document(repository, make_highlight) -> None:
    with pytest.raises(NotFoundError):
        await repository.create_highlight(999, make_highlight("h1"))

    assert not await repository.highlight_exists("h1")


@pytest.mark.asyncio
async def test_create_highlight_with_duplicate_id(repository, document, make_highlight) -> None:
    await repository.create_highlight(document.id, make_highlight("h1"))

    with pytest.raises(ConstraintViolationError):
        await repository.create_highlight(document.id, make_highlight("h1", text="other"))

    stored = await repository.get_highlight("h1")
    assert stored.content.text == "abc"


@pytest.mark.asyncio
async def test_update_highlight_preserves_untouched_fields(repository, document, make_highlight) -> None:
    highlight = make_highlight("h1", page=3)
    await repository.create_highlight(document.id, highlight)
    new_rect = {"x1": 1.0, "y1": 2.0, "x2": 3.0, "y2": 4.0, "width": 600, "height": 800}

    assert await repository.update_highlight("h1", {"boundingRect": new_rect}, {})

    stored = await repository.get_highlight("h1")
    assert stored.position["pageNumber"] == 3
    assert stored.position["boundingRect"] == new_rect
    assert stored.position["rects"] == highlight.position["rects"]
    assert stored.content.text == "abc"


@pytest.mark.asyncio
async def test_update_highlight_content_and_page(repository, document, make_highlight) -> None:
    await repository.create_highlight(document.id, make_highlight("h1", page=2))

    await repository.update_highlight("h1", {"pageNumber": 5}, {"text": "edited"})

    stored = await repository.get_highlight("h1")
    assert stored.page_number == 5
    assert stored.content.text == "edited"
    assert stored.content.image is None


@pytest.mark.asyncio
async def test_update_highlight_rejects_bad_patches(repository, document, make_highlight) -> None:
    await repository.create_highlight(document.id, make_highlight("h1"))

    with pytest.raises(ValueError):
        await repository.update_highlight("h1", {}, {"colour": "red"})
    with pytest.raises(ValueError):
        await repository.update_highlight("h1", {"pageNumber": "two"}, {})

    assert (await repository.get_highlight("h1")).page_number == 2


@pytest.mark.asyncio
async def test_update_unknown_highlight_is_a_reported_noop(repository, document) -> None:
    assert await repository.update_highlight("ghost", {"pageNumber": 4}, {"text": "x"}) is False
    assert not await repository.highlight_exists("ghost")


@pytest.mark.asyncio
async def test_update_comment_overwrites(repository, document, make_highlight) -> None:
    await repository.create_highlight(document.id, make_highlight("h1", comment="first", emoji="🙂"))

    assert await repository.update_comment("h1", "second", "")
    assert not await repository.update_comment("ghost", "x", "y")

    stored = await repository.get_highlight("h1")
    assert stored.comment.text == "second"
    assert stored.comment.emoji == ""


@pytest.mark.asyncio
async def test_add_tag_is_idempotent_across_case(repository, session_factory) -> None:
    first = await repository.add_tag("important")
    again = await repository.add_tag("important")
    shouted = await repository.add_tag("  IMPORTANT ")

    assert first == again == shouted
    assert await _count(session_factory, TagRecord) == 1
    assert (await repository.get_tag_by_name("Important")).name == "important"


@pytest.mark.asyncio
async def test_add_tag_folds_non_ascii_case(repository, session_factory, document, make_highlight) -> None:
    first = await repository.add_tag("Über")
    assert await repository.add_tag("über") == first
    assert await repository.add_tag("ÜBER") == first
    assert await repository.add_tag("Straße") == await repository.add_tag("STRASSE")

    assert await _count(session_factory, TagRecord) == 2
    assert (await repository.get_tag_by_name("über")).name == "Über"

    await repository.create_highlight(document.id, make_highlight("h1"))
    assert await repository.add_highlight_tag("h1", "über") == first
    assert [item.id for item in await repository.search_highlights_by_tags(["ÜBER"])] == ["h1"]


@pytest.mark.asyncio
async def test_add_tag_rejects_blank_names(repository) -> None:
    with pytest.raises(ValueError):
        await repository.add_tag("   ")


@pytest.mark.asyncio
async def test_tagging_unpersisted_highlight_fails_without_side_effects(repository, session_factory) -> None:
    with pytest.raises(HighlightNotPersistedError) as excinfo:
        await repository.add_highlight_tag("never-saved", "orphan")

    assert excinfo.value.highlight_id == "never-saved"
    assert "failed to save" in str(excinfo.value)
    assert await _count(session_factory, TagRecord) == 0
    assert await _count(session_factory, HighlightTagRecord) == 0


@pytest.mark.asyncio
async def test_tagging_scenario(repository, make_highlight) -> None:
    document = await repository.register_document("paper.pdf", "/tmp/paper.pdf")
    await repository.create_highlight(
        document.id,
        make_highlight("h1", page=2, text="abc", comment="note", emoji="💡"),
    )

    tag_id = await repository.add_highlight_tag("h1", "important")
    tags = await repository.get_highlight_tags("h1")
    assert [(tag.id, tag.name) for tag in tags] == [(tag_id, "important")]

    assert await repository.add_highlight_tag("h1", "Important") == tag_id
    tags = await repository.get_highlight_tags("h1")
    assert [(tag.id, tag.name) for tag in tags] == [(tag_id, "important")]
    assert len(await repository.list_tags()) == 1


@pytest.mark.asyncio
async def test_remove_highlight_tag_tolerates_missing_link(repository, document, make_highlight) -> None:
    await repository.create_highlight(document.id, make_highlight("h1"))
    tag_id = await repository.add_highlight_tag("h1", "draft")

    await repository.remove_highlight_tag("h1", tag_id)
    await repository.remove_highlight_tag("h1", tag_id)

    assert await repository.get_highlight_tags("h1") == []
    assert await repository.get_tag(tag_id) is not None


@pytest.mark.asyncio
async def test_delete_highlight_removes_links(repository, document, make_highlight, session_factory) -> None:
    await repository.create_highlight(document.id, make_highlight("h1"))
    tag_id = await repository.add_highlight_tag("h1", "draft")

    assert await repository.delete_highlight("h1")
    assert not await repository.delete_highlight("h1")

    assert await _count(session_factory, HighlightTagRecord, HighlightTagRecord.highlight_id == "h1") == 0
    assert await repository.get_tag(tag_id) is not None


@pytest.mark.asyncio
async def test_bulk_delete_tags_removes_tags_and_links(repository, document, make_highlight, session_factory) -> None:
    await repository.create_highlight(document.id, make_highlight("h1"))
    keep = await repository.add_highlight_tag("h1", "keep")
    first = await repository.add_highlight_tag("h1", "first")
    second = await repository.add_highlight_tag("h1", "second")

    await repository.bulk_delete_tags([first, second, first])
    await repository.bulk_delete_tags([])

    assert [tag.id for tag in await repository.list_tags()] == [keep]
    assert [tag.id for tag in await repository.get_highlight_tags("h1")] == [keep]
    assert await _count(session_factory, HighlightTagRecord) == 1


@pytest.mark.asyncio
async def test_bulk_delete_tags_is_all_or_nothing(repository, document, make_highlight, engine, session_factory) -> None:
    await repository.create_highlight(document.id, make_highlight("h1"))
    await repository.create_highlight(document.id, make_highlight("h2"))
    first = await repository.add_highlight_tag("h1", "first")
    second = await repository.add_highlight_tag("h1", "second")
    await repository.add_highlight_tag("h2", "first")

    async with engine.begin() as conn:
        await conn.exec_driver_sql(
            f"""
            CREATE TRIGGER fail_second_link_delete BEFORE DELETE ON highlight_tags
            WHEN OLD.tag_id = {second}
            BEGIN
                SELECT RAISE(ABORT, 'simulated link delete failure');
            END
            """
        )

    with pytest.raises(AnnotationStoreError):
        await repository.bulk_delete_tags([first, second])

    assert {tag.id for tag in await repository.list_tags()} == {first, second}
    assert await _count(session_factory, HighlightTagRecord) == 3
    assert {tag.id for tag in await repository.get_highlight_tags("h1")} == {first, second}


@pytest.mark.asyncio
async def test_delete_tag(repository, document, make_highlight) -> None:
    await repository.create_highlight(document.id, make_highlight("h1"))
    tag_id = await repository.add_highlight_tag("h1", "draft")

    await repository.delete_tag(tag_id)

    assert await repository.get_tag(tag_id) is None
    assert await repository.get_highlight_tags("h1") == []


@pytest.mark.asyncio
async def test_delete_pdf_removes_highlights_and_links(repository, make_highlight, session_factory) -> None:
    doomed = await repository.register_document("doomed.pdf", "/tmp/doomed.pdf")
    kept = await repository.register_document("kept.pdf", "/tmp/kept.pdf")
    await repository.create_highlight(doomed.id, make_highlight("d1"))
    await repository.create_highlight(kept.id, make_highlight("k1"))
    shared = await repository.add_highlight_tag("d1", "shared")
    await repository.add_highlight_tag("k1", "shared")

    await repository.delete_pdf(doomed.id)

    assert await repository.get_document(doomed.id) is None
    assert not await repository.highlight_exists("d1")
    assert await _count(session_factory, HighlightTagRecord, HighlightTagRecord.highlight_id == "d1") == 0
    assert [tag.id for tag in await repository.get_highlight_tags("k1")] == [shared]
    assert await repository.get_tag(shared) is not None


@pytest.mark.asyncio
async def test_highlight_queries_by_tag(repository, make_highlight) -> None:
    paper = await repository.register_document("paper.pdf", "/tmp/paper.pdf")
    other = await repository.register_document("other.pdf", "/tmp/other.pdf")
    await repository.create_highlight(paper.id, make_highlight("p1"))
    await repository.create_highlight(paper.id, make_highlight("p2"))
    await repository.create_highlight(other.id, make_highlight("o1"))
    method = await repository.add_highlight_tag("p1", "Method")
    await repository.add_highlight_tag("p1", "result")
    await repository.add_highlight_tag("p2", "result")
    await repository.add_highlight_tag("o1", "method")

    assert [h.id for h in await repository.highlights_by_tag(method)] == ["o1", "p1"]
    assert [h.id for h in await repository.highlights_by_tag(method, paper.id)] == ["p1"]

    matches = await repository.search_highlights_by_tags(["METHOD", "Result"], paper.id)
    assert [h.id for h in matches] == ["p2", "p1"]
    assert [h.id for h in await repository.search_highlights_by_tags(["method"])] == ["o1", "p1"]
    assert [h.id for h in await repository.search_highlights_by_tags([], paper.id)] == ["p2", "p1"]
    assert await repository.search_highlights_by_tags([]) == []

    assert [tag.name for tag in await repository.get_tags_for_document(paper.id)] == ["Method", "result"]


@pytest.mark.asyncio
async def test_tags_with_usage_count_lists_unused_tags(repository, document, make_highlight) -> None:
    await repository.create_highlight(document.id, make_highlight("h1"))
    await repository.create_highlight(document.id, make_highlight("h2"))
    await repository.add_highlight_tag("h1", "beta")
    await repository.add_highlight_tag("h2", "beta")
    await repository.add_tag("Alpha")

    usage = await repository.tags_with_usage_count()

    assert [(item.tag.name, item.usage_count) for item in usage] == [("Alpha", 0), ("beta", 2)]

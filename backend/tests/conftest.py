from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from pdf_highlighter.core.config import AppSettings
from pdf_highlighter.core.db import build_engine, build_session_factory
from pdf_highlighter.core.migrations import init_database
from pdf_highlighter.models.annotations import Document, Highlight, HighlightComment, HighlightContent
from pdf_highlighter.services.repository import AnnotationRepository
from pdf_highlighter.services.suggestions import SuggestionRanker


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    return AppSettings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'annotations.db'}",
        tag_cache_ttl_seconds=30,
    )


@pytest_asyncio.fixture
async def engine(settings: AppSettings) -> AsyncIterator[AsyncEngine]:
    engine = build_engine(settings)
    await init_database(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
def repository(
    session_factory: async_sessionmaker[AsyncSession],
    settings: AppSettings,
) -> AnnotationRepository:
    return AnnotationRepository(session_factory, reconcile_max_attempts=settings.reconcile_max_attempts)


@pytest.fixture
def ranker(session_factory: async_sessionmaker[AsyncSession]) -> SuggestionRanker:
    return SuggestionRanker(session_factory)


@pytest_asyncio.fixture
async def document(repository: AnnotationRepository) -> Document:
    return await repository.register_document("paper.pdf", "/tmp/paper.pdf")


@pytest.fixture
def make_highlight() -> Callable[..., Highlight]:
    def _make(
        highlight_id: str = "h1",
        *,
        page: int = 2,
        text: str | None = "abc",
        image: str | None = None,
        comment: str = "",
        emoji: str = "",
        **position: Any,
    ) -> Highlight:
        bounding_rect = {"x1": 10.0, "y1": 20.0, "x2": 110.0, "y2": 40.0, "width": 600, "height": 800}
        return Highlight(
            id=highlight_id,
            content=HighlightContent(text=text, image=image),
            comment=HighlightComment(text=comment, emoji=emoji),
            position={
                "pageNumber": page,
                "boundingRect": bounding_rect,
                "rects": [bounding_rect],
                **position,
            },
        )

    return _make

"""Application state: the open document, its highlights and their tags."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
from pathlib import PurePath
from typing import Any

from pdf_highlighter.core.config import AppSettings
from pdf_highlighter.core.errors import (
    AnnotationStoreError,
    HighlightNotPersistedError,
    NotFoundError,
    StoreUnavailableError,
)
from pdf_highlighter.core.logging import get_logger
from pdf_highlighter.models.annotations import (
    Document,
    Highlight,
    HighlightComment,
    HighlightContent,
    Tag,
    TagRecency,
    TagRef,
    TagUsage,
)
from pdf_highlighter.models.tables import utcnow

from .cache import SuggestionCache, monotonic_now
from .identifiers import new_highlight_id
from .repository import AnnotationRepository
from .suggestions import SuggestionRanker, exclude_attached

logger = get_logger(__name__)


def describe_failure(action: str, exc: Exception) -> str:
    """Short message suitable for showing to the user."""

    if isinstance(exc, HighlightNotPersistedError):
        return (
            f"Failed to {action}: the highlight was not properly saved to the database. "
            "Please try creating the highlight again."
        )
    if isinstance(exc, NotFoundError):
        return f"Failed to {action}: {exc}"
    if isinstance(exc, StoreUnavailableError):
        return f"Failed to {action}: the annotation database is unavailable."
    return f"Failed to {action}: {exc}"


class AnnotationController:
    """Holds the open document and drives the repository on behalf of the UI.

    Operations that write return a falsy value when the store rejected them;
    the reason is kept in ``last_error``.
    """

    def __init__(
        self,
        repository: AnnotationRepository,
        ranker: SuggestionRanker,
        *,
        settings: AppSettings | None = None,
        id_factory: Callable[[], str] = new_highlight_id,
        clock: Callable[[], float] = monotonic_now,
    ) -> None:
        settings = settings or AppSettings()
        self.repository = repository
        self.ranker = ranker
        self.id_factory = id_factory
        self.clock = clock
        self.tag_cache_ttl = settings.tag_cache_ttl_seconds
        self.batch_size = settings.tag_load_batch_size
        self.suggestion_limit = settings.suggestion_limit

        self.document: Document | None = None
        self.highlights: list[Highlight] = []
        self.highlight_tags: dict[str, list[Tag]] = {}
        self.last_error: str | None = None
        self._tags_cache: SuggestionCache[list[Tag]] | None = None

    def _fail(self, action: str, exc: Exception, **context: Any) -> None:
        self.last_error = describe_failure(action, exc)
        logger.error("controller.failure", action=action, error=str(exc), **context)

    def _find(self, highlight_id: str) -> int | None:
        for index, highlight in enumerate(self.highlights):
            if highlight.id == highlight_id:
                return index
        return None

    @property
    def cache_key(self) -> str:
        return f"document:{self.document.id}" if self.document else "all_tags"

    async def open_document(self, path: str, name: str | None = None) -> Document:
        """Register the file and hydrate its highlights.

        Store failures propagate: without a document there is nothing to show.
        """

        document = await self.repository.register_document(name or PurePath(path).name, path)
        highlights = await self.repository.load_highlights(document.id)

        self.document = document
        self.highlights = highlights
        self.highlight_tags = {}
        self.last_error = None
        self.invalidate_tag_cache()

        logger.info("controller.document_opened", document_id=document.id, highlights=len(highlights))
        return document

    async def add_highlight(
        self,
        content: HighlightContent,
        position: dict[str, Any],
        comment: HighlightComment | None = None,
    ) -> Highlight | None:
        """Create a highlight with a fresh id and persist it before it can be tagged."""

        if self.document is None:
            raise RuntimeError("No document is open.")

        content.ensure_single_kind()
        highlight = Highlight(
            id=self.id_factory(),
            content=content,
            comment=comment or HighlightComment(),
            position=position,
            document_id=self.document.id,
            created_at=utcnow(),
        )
        self.highlights.insert(0, highlight)

        try:
            await self.repository.create_highlight(self.document.id, highlight)
        except AnnotationStoreError as exc:
            self.highlights = [item for item in self.highlights if item.id != highlight.id]
            self._fail("save highlight", exc, highlight_id=highlight.id)
            return None

        self.highlight_tags[highlight.id] = []
        return highlight

    def _restore(self, previous: Highlight | None) -> None:
        if previous is None:
            return
        index = self._find(previous.id)
        if index is not None:
            self.highlights[index] = previous

    async def update_highlight(
        self,
        highlight_id: str,
        position: Mapping[str, Any] | None = None,
        content: Mapping[str, Any] | None = None,
    ) -> bool:
        """Merge the patch in memory and in the store; memory is restored if the store fails."""

        index = self._find(highlight_id)
        previous = self.highlights[index] if index is not None else None
        if previous is not None:
            self.highlights[index] = previous.model_copy(
                update={
                    "position": {**previous.position, **(position or {})},
                    "content": previous.content.model_copy(update=dict(content or {})),
                }
            )

        try:
            return await self.repository.update_highlight(highlight_id, position, content)
        except AnnotationStoreError as exc:
            self._restore(previous)
            self._fail("update highlight", exc, highlight_id=highlight_id)
            return False

    async def update_comment(self, highlight_id: str, text: str, emoji: str) -> bool:
        index = self._find(highlight_id)
        previous = self.highlights[index] if index is not None else None
        if previous is not None:
            self.highlights[index] = previous.model_copy(update={"comment": HighlightComment(text=text, emoji=emoji)})

        try:
            return await self.repository.update_comment(highlight_id, text, emoji)
        except AnnotationStoreError as exc:
            self._restore(previous)
            self._fail("update comment", exc, highlight_id=highlight_id)
            return False

    async def delete_highlight(self, highlight_id: str) -> bool:
        try:
            await self.repository.delete_highlight(highlight_id)
        except AnnotationStoreError as exc:
            self._fail("delete highlight", exc, highlight_id=highlight_id)
            return False

        self.highlights = [item for item in self.highlights if item.id != highlight_id]
        self.highlight_tags.pop(highlight_id, None)
        self.invalidate_tag_cache()
        return True

    async def save_tags(
        self,
        highlight_id: str,
        desired: Iterable[TagRef | Tag | str],
    ) -> list[Tag] | None:
        """Reconcile the highlight's tags with the edited selection."""

        try:
            tags = await self.repository.reconcile_highlight_tags(highlight_id, desired)
        except AnnotationStoreError as exc:
            self._fail("save tags", exc, highlight_id=highlight_id)
            return None

        self.highlight_tags[highlight_id] = tags
        self.invalidate_tag_cache()
        return tags

    async def _tags_or_empty(self, highlight_id: str) -> tuple[str, list[Tag]]:
        try:
            return highlight_id, await self.repository.get_highlight_tags(highlight_id)
        except AnnotationStoreError as exc:
            logger.warning("controller.tags_load_failed", highlight_id=highlight_id, error=str(exc))
            return highlight_id, []

    async def load_highlight_tags(self) -> dict[str, list[Tag]]:
        """Load tags for every highlight, a batch of concurrent reads at a time."""

        loaded: dict[str, list[Tag]] = {}
        ids = [highlight.id for highlight in self.highlights]
        for start in range(0, len(ids), self.batch_size):
            batch = ids[start : start + self.batch_size]
            results = await asyncio.gather(*(self._tags_or_empty(highlight_id) for highlight_id in batch))
            loaded.update(results)

        self.highlight_tags = loaded
        return loaded

    def invalidate_tag_cache(self) -> None:
        self._tags_cache = None

    async def available_tags(self) -> list[Tag]:
        """Tags of the open document (or all tags), served from a short-lived cache."""

        now = self.clock()
        key = self.cache_key
        cache = self._tags_cache
        if cache is not None and cache.is_fresh(now, self.tag_cache_ttl, key):
            return cache.data

        if self.document is not None:
            tags = await self.repository.get_tags_for_document(self.document.id)
        else:
            tags = await self.repository.list_tags()

        self._tags_cache = SuggestionCache(data=tags, fetched_at=now, key=key)
        return tags

    async def suggestions_for(self, highlight_id: str) -> tuple[list[TagUsage], list[TagRecency]]:
        """Most-used and recently-used tags not yet on the highlight.

        Suggestions are optional: failures yield empty lists.
        """

        attached = self.highlight_tags.get(highlight_id)
        try:
            if attached is None:
                attached = await self.repository.get_highlight_tags(highlight_id)
            most_used = await self.ranker.most_used_tags(self.suggestion_limit)
            recently_used = await self.ranker.recently_used_tags(self.suggestion_limit)
        except AnnotationStoreError as exc:
            logger.warning("controller.suggestions_failed", highlight_id=highlight_id, error=str(exc))
            return [], []

        return exclude_attached(most_used, attached), exclude_attached(recently_used, attached)

"""Annotation repository: maps highlights, tags and documents onto the store.

Every public coroutine is one unit of work with its own session. Uniqueness
conflicts on tag and link creation are resolved into success; every other
failure reaches the caller as an ``AnnotationStoreError``.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from sqlalchemy import ColumnElement, Select, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pdf_highlighter.core.db import unit_of_work
from pdf_highlighter.core.errors import HighlightNotPersistedError, NotFoundError
from pdf_highlighter.core.logging import get_logger
from pdf_highlighter.models.annotations import (
    Document,
    DocumentSummary,
    Highlight,
    HighlightComment,
    HighlightContent,
    Tag,
    TagRef,
    TagUsage,
    check_position,
    tag_name_key,
)
from pdf_highlighter.models.tables import (
    DocumentRecord,
    HighlightRecord,
    HighlightTagRecord,
    TagRecord,
    utcnow,
)

from . import reconcile

logger = get_logger(__name__)

_CONTENT_COLUMNS = {"text": "content_text", "image": "content_image"}


def normalize_tag_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise ValueError("Tag name must not be empty.")
    return cleaned


def highlight_from_record(record: HighlightRecord) -> Highlight:
    """Rebuild the in-memory highlight from its normalized row."""

    return Highlight(
        id=record.highlight_id,
        content=HighlightContent(text=record.content_text, image=record.content_image),
        comment=HighlightComment(text=record.comment_text or "", emoji=record.comment_emoji or ""),
        position=json.loads(record.position_data),
        document_id=record.document_id,
        created_at=record.created_at,
    )


def _document_matches(query: str) -> ColumnElement[bool]:
    return or_(
        DocumentRecord.name.contains(query, autoescape=True),
        DocumentRecord.path.contains(query, autoescape=True),
    )


def _newest_first(stmt: Select[Any]) -> Select[Any]:
    return stmt.order_by(HighlightRecord.created_at.desc(), HighlightRecord.id.desc())


class AnnotationRepository:
    """Store access for the annotation model."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        reconcile_max_attempts: int = 3,
    ) -> None:
        self._session_factory = session_factory
        self.reconcile_max_attempts = reconcile_max_attempts

    # Documents

    async def register_document(self, name: str, path: str) -> Document:
        """Return the document for ``path``, creating it on first open.

        Re-opening a known path only bumps ``last_opened``.
        """

        async with unit_of_work(self._session_factory, "register_document") as session:
            record = await session.scalar(select(DocumentRecord).where(DocumentRecord.path == path))
            now = utcnow()
            created = record is None
            if record is None:
                record = DocumentRecord(name=name, path=path, date_added=now, last_opened=now)
                session.add(record)
            else:
                record.last_opened = now

            try:
                await session.commit()
            except IntegrityError:
                # Another registration inserted the same path first.
                await session.rollback()
                record = await session.scalar(select(DocumentRecord).where(DocumentRecord.path == path))
                if record is None:
                    raise
                record.last_opened = utcnow()
                await session.commit()
                created = False

        logger.info(
            "document.registered" if created else "document.reopened",
            document_id=record.id,
            path=path,
        )
        return Document.model_validate(record)

    async def add_document(self, name: str, path: str) -> Document:
        """Insert a document row directly; a duplicate path is a constraint violation."""

        async with unit_of_work(self._session_factory, "add_document") as session:
            now = utcnow()
            record = DocumentRecord(name=name, path=path, date_added=now, last_opened=now)
            session.add(record)
            await session.commit()
        return Document.model_validate(record)

    async def get_document(self, document_id: int) -> Document | None:
        async with unit_of_work(self._session_factory, "get_document") as session:
            record = await session.get(DocumentRecord, document_id)
            return Document.model_validate(record) if record is not None else None

    async def get_document_by_path(self, path: str) -> Document | None:
        async with unit_of_work(self._session_factory, "get_document_by_path") as session:
            record = await session.scalar(select(DocumentRecord).where(DocumentRecord.path == path).limit(1))
            return Document.model_validate(record) if record is not None else None

    async def get_documents_by_name(self, name: str) -> list[Document]:
        async with unit_of_work(self._session_factory, "get_documents_by_name") as session:
            records = await session.scalars(
                select(DocumentRecord).where(DocumentRecord.name == name).order_by(DocumentRecord.id)
            )
            return [Document.model_validate(record) for record in records]

    async def list_documents(self) -> list[Document]:
        """All documents, most recently opened first."""

        async with unit_of_work(self._session_factory, "list_documents") as session:
            records = await session.scalars(
                select(DocumentRecord).order_by(DocumentRecord.last_opened.desc(), DocumentRecord.id.desc())
            )
            return [Document.model_validate(record) for record in records]

    async def search_documents(self, query: str) -> list[Document]:
        """Documents whose name or path contains ``query``."""

        async with unit_of_work(self._session_factory, "search_documents") as session:
            stmt = (
                select(DocumentRecord)
                .where(_document_matches(query))
                .order_by(DocumentRecord.last_opened.desc(), DocumentRecord.id.desc())
            )
            records = await session.scalars(stmt)
            return [Document.model_validate(record) for record in records]

    async def list_documents_with_counts(self, query: str | None = None) -> list[DocumentSummary]:
        """Library view: documents with the number of highlights each holds.

        ``query`` narrows the list the same way ``search_documents`` does.
        """

        counts = (
            select(HighlightRecord.document_id, func.count().label("highlight_count"))
            .group_by(HighlightRecord.document_id)
            .subquery()
        )
        stmt = (
            select(DocumentRecord, func.coalesce(counts.c.highlight_count, 0))
            .outerjoin(counts, counts.c.document_id == DocumentRecord.id)
            .order_by(DocumentRecord.last_opened.desc(), DocumentRecord.id.desc())
        )
        if query:
            stmt = stmt.where(_document_matches(query))

        async with unit_of_work(self._session_factory, "list_documents_with_counts") as session:
            rows = (await session.execute(stmt)).all()

        return [
            DocumentSummary(
                id=record.id,
                name=record.name,
                path=record.path,
                date_added=record.date_added,
                last_opened=record.last_opened,
                highlight_count=count,
            )
            for record, count in rows
        ]

    async def highlight_count(self, document_id: int) -> int:
        async with unit_of_work(self._session_factory, "highlight_count") as session:
            count = await session.scalar(
                select(func.count()).select_from(HighlightRecord).where(HighlightRecord.document_id == document_id)
            )
            return count or 0

    async def delete_pdf(self, document_id: int) -> None:
        """Delete a document together with its highlights and their tag links."""

        owned_ids = select(HighlightRecord.highlight_id).where(HighlightRecord.document_id == document_id)

        async with unit_of_work(self._session_factory, "delete_pdf") as session:
            async with session.begin():
                links = await session.execute(
                    delete(HighlightTagRecord)
                    .where(HighlightTagRecord.highlight_id.in_(owned_ids))
                    .execution_options(synchronize_session=False)
                )
                highlights = await session.execute(
                    delete(HighlightRecord)
                    .where(HighlightRecord.document_id == document_id)
                    .execution_options(synchronize_session=False)
                )
                documents = await session.execute(
                    delete(DocumentRecord)
                    .where(DocumentRecord.id == document_id)
                    .execution_options(synchronize_session=False)
                )

        logger.info(
            "document.deleted",
            document_id=document_id,
            found=bool(documents.rowcount),
            highlights_removed=highlights.rowcount,
            links_removed=links.rowcount,
        )

    # Highlights

    async def load_highlights(self, document_id: int) -> list[Highlight]:
        """All highlights of a document, newest first."""

        async with unit_of_work(self._session_factory, "load_highlights") as session:
            records = await session.scalars(
                _newest_first(select(HighlightRecord).where(HighlightRecord.document_id == document_id))
            )
            return [highlight_from_record(record) for record in records]

    async def get_highlight(self, highlight_id: str) -> Highlight | None:
        async with unit_of_work(self._session_factory, "get_highlight") as session:
            record = await session.scalar(
                select(HighlightRecord).where(HighlightRecord.highlight_id == highlight_id)
            )
            return highlight_from_record(record) if record is not None else None

    async def highlight_exists(self, highlight_id: str) -> bool:
        async with unit_of_work(self._session_factory, "highlight_exists") as session:
            count = await session.scalar(
                select(func.count()).select_from(HighlightRecord).where(HighlightRecord.highlight_id == highlight_id)
            )
            return bool(count)

    async def create_highlight(self, document_id: int, highlight: Highlight) -> None:
        """Persist a fully formed highlight whose id was generated by the caller.

        The row is written in a single transaction: it either exists completely
        afterwards or not at all.
        """

        highlight.content.ensure_single_kind()
        record = HighlightRecord(
            document_id=document_id,
            highlight_id=highlight.id,
            content_text=highlight.content.text,
            content_image=highlight.content.image,
            comment_text=highlight.comment.text or None,
            comment_emoji=highlight.comment.emoji or None,
            position_data=json.dumps(highlight.position, ensure_ascii=False),
            page_number=highlight.page_number,
            created_at=highlight.created_at or utcnow(),
        )

        async with unit_of_work(self._session_factory, "create_highlight") as session:
            async with session.begin():
                if await session.get(DocumentRecord, document_id) is None:
                    raise NotFoundError(f"Document {document_id} does not exist.")
                session.add(record)

        logger.info(
            "highlight.created",
            highlight_id=highlight.id,
            document_id=document_id,
            page_number=record.page_number,
            kind="image" if record.content_image is not None else "text",
        )

    async def update_highlight(
        self,
        highlight_id: str,
        position: Mapping[str, Any] | None = None,
        content: Mapping[str, Any] | None = None,
    ) -> bool:
        """Merge partial position/content over the stored highlight.

        Keys absent from the patches keep their stored values. An unknown
        highlight is not an error: the call returns ``False`` and logs
        ``highlight.update.missing``.
        """

        position_patch = dict(position or {})
        content_patch = dict(content or {})
        unknown = set(content_patch) - set(_CONTENT_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown content fields: {', '.join(sorted(unknown))}")

        async with unit_of_work(self._session_factory, "update_highlight") as session:
            async with session.begin():
                record = await session.scalar(
                    select(HighlightRecord).where(HighlightRecord.highlight_id == highlight_id)
                )
                if record is None:
                    logger.warning(
                        "highlight.update.missing",
                        highlight_id=highlight_id,
                        position_keys=sorted(position_patch),
                        content_keys=sorted(content_patch),
                    )
                    return False

                if not position_patch and not content_patch:
                    logger.debug("highlight.update.unchanged", highlight_id=highlight_id)
                    return True

                merged = check_position({**json.loads(record.position_data), **position_patch})
                record.position_data = json.dumps(merged, ensure_ascii=False)
                record.page_number = merged["pageNumber"]
                for key, value in content_patch.items():
                    setattr(record, _CONTENT_COLUMNS[key], value)

        logger.info(
            "highlight.updated",
            highlight_id=highlight_id,
            position_keys=sorted(position_patch),
            content_keys=sorted(content_patch),
        )
        return True

    async def update_comment(self, highlight_id: str, text: str, emoji: str) -> bool:
        """Overwrite the comment of a highlight. Returns ``False`` if it does not exist."""

        async with unit_of_work(self._session_factory, "update_comment") as session:
            result = await session.execute(
                update(HighlightRecord)
                .where(HighlightRecord.highlight_id == highlight_id)
                .values(comment_text=text, comment_emoji=emoji)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if not result.rowcount:
            logger.warning("highlight.comment.missing", highlight_id=highlight_id)
            return False
        return True

    async def delete_highlight(self, highlight_id: str) -> bool:
        """Delete a highlight and its tag links."""

        async with unit_of_work(self._session_factory, "delete_highlight") as session:
            async with session.begin():
                await session.execute(
                    delete(HighlightTagRecord)
                    .where(HighlightTagRecord.highlight_id == highlight_id)
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(
                    delete(HighlightRecord)
                    .where(HighlightRecord.highlight_id == highlight_id)
                    .execution_options(synchronize_session=False)
                )

        deleted = bool(result.rowcount)
        logger.info("highlight.deleted", highlight_id=highlight_id, found=deleted)
        return deleted

    async def highlights_by_tag(self, tag_id: int, document_id: int | None = None) -> list[Highlight]:
        stmt = (
            select(HighlightRecord)
            .join(HighlightTagRecord, HighlightTagRecord.highlight_id == HighlightRecord.highlight_id)
            .where(HighlightTagRecord.tag_id == tag_id)
        )
        if document_id is not None:
            stmt = stmt.where(HighlightRecord.document_id == document_id)

        async with unit_of_work(self._session_factory, "highlights_by_tag") as session:
            records = await session.scalars(_newest_first(stmt))
            return [highlight_from_record(record) for record in records]

    async def search_highlights_by_tags(
        self,
        tag_names: Sequence[str],
        document_id: int | None = None,
    ) -> list[Highlight]:
        """Highlights carrying any of ``tag_names`` (case-insensitive), newest first.

        With no names, the whole document is returned, or nothing when no
        document is given.
        """

        keys = [tag_name_key(name) for name in tag_names if name.strip()]
        if not keys:
            return await self.load_highlights(document_id) if document_id is not None else []

        stmt = (
            select(HighlightRecord)
            .join(HighlightTagRecord, HighlightTagRecord.highlight_id == HighlightRecord.highlight_id)
            .join(TagRecord, TagRecord.id == HighlightTagRecord.tag_id)
            .where(TagRecord.name_key.in_(keys))
            .distinct()
        )
        if document_id is not None:
            stmt = stmt.where(HighlightRecord.document_id == document_id)

        async with unit_of_work(self._session_factory, "search_highlights_by_tags") as session:
            records = await session.scalars(_newest_first(stmt))
            return [highlight_from_record(record) for record in records]

    # Tags

    async def _find_tag(self, session: AsyncSession, name: str) -> TagRecord | None:
        return await session.scalar(select(TagRecord).where(TagRecord.name_key == tag_name_key(name)).limit(1))

    async def add_tag(self, name: str) -> int:
        """Create a tag or return the id of the existing one with the same name."""

        name = normalize_tag_name(name)
        async with unit_of_work(self._session_factory, "add_tag") as session:
            existing = await self._find_tag(session, name)
            if existing is not None:
                logger.debug("tag.reused", tag_id=existing.id, name=name)
                return existing.id

            record = TagRecord(name=name, name_key=tag_name_key(name))
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await self._find_tag(session, name)
                if existing is None:
                    raise
                logger.info("tag.reused", tag_id=existing.id, name=name, after_conflict=True)
                return existing.id

        logger.info("tag.created", tag_id=record.id, name=name)
        return record.id

    async def get_tag(self, tag_id: int) -> Tag | None:
        async with unit_of_work(self._session_factory, "get_tag") as session:
            record = await session.get(TagRecord, tag_id)
            return Tag.model_validate(record) if record is not None else None

    async def get_tag_by_name(self, name: str) -> Tag | None:
        async with unit_of_work(self._session_factory, "get_tag_by_name") as session:
            record = await self._find_tag(session, name.strip())
            return Tag.model_validate(record) if record is not None else None

    async def list_tags(self) -> list[Tag]:
        """Every tag, alphabetical."""

        async with unit_of_work(self._session_factory, "list_tags") as session:
            records = await session.scalars(select(TagRecord).order_by(TagRecord.name_key, TagRecord.id))
            return [Tag.model_validate(record) for record in records]

    async def get_tags_for_document(self, document_id: int) -> list[Tag]:
        """Tags attached to at least one highlight of the document, alphabetical."""

        stmt = (
            select(TagRecord)
            .join(HighlightTagRecord, HighlightTagRecord.tag_id == TagRecord.id)
            .join(HighlightRecord, HighlightRecord.highlight_id == HighlightTagRecord.highlight_id)
            .where(HighlightRecord.document_id == document_id)
            .distinct()
            .order_by(TagRecord.name_key, TagRecord.id)
        )
        async with unit_of_work(self._session_factory, "get_tags_for_document") as session:
            records = await session.scalars(stmt)
            return [Tag.model_validate(record) for record in records]

    async def tags_with_usage_count(self) -> list[TagUsage]:
        """Every tag with the number of highlights it is attached to, alphabetical."""

        usage = func.count(HighlightTagRecord.id)
        stmt = (
            select(TagRecord, usage)
            .outerjoin(HighlightTagRecord, HighlightTagRecord.tag_id == TagRecord.id)
            .group_by(TagRecord.id)
            .order_by(TagRecord.name_key, TagRecord.id)
        )
        async with unit_of_work(self._session_factory, "tags_with_usage_count") as session:
            rows = (await session.execute(stmt)).all()
        return [TagUsage(tag=Tag.model_validate(record), usage_count=count) for record, count in rows]

    async def delete_tag(self, tag_id: int) -> None:
        await self.bulk_delete_tags([tag_id])

    async def bulk_delete_tags(self, tag_ids: Iterable[int]) -> None:
        """Delete tags and every link referencing them, all or nothing."""

        ids = sorted(set(tag_ids))
        if not ids:
            return

        async with unit_of_work(self._session_factory, "bulk_delete_tags") as session:
            async with session.begin():
                links = await session.execute(
                    delete(HighlightTagRecord)
                    .where(HighlightTagRecord.tag_id.in_(ids))
                    .execution_options(synchronize_session=False)
                )
                tags = await session.execute(
                    delete(TagRecord).where(TagRecord.id.in_(ids)).execution_options(synchronize_session=False)
                )

        logger.info("tags.deleted", tag_ids=ids, tags_removed=tags.rowcount, links_removed=links.rowcount)

    # Highlight/tag links

    async def get_highlight_tags(self, highlight_id: str) -> list[Tag]:
        """Tags attached to a highlight, alphabetical."""

        stmt = (
            select(TagRecord)
            .join(HighlightTagRecord, HighlightTagRecord.tag_id == TagRecord.id)
            .where(HighlightTagRecord.highlight_id == highlight_id)
            .order_by(TagRecord.name_key, TagRecord.id)
        )
        async with unit_of_work(self._session_factory, "get_highlight_tags") as session:
            records = await session.scalars(stmt)
            return [Tag.model_validate(record) for record in records]

    async def add_highlight_tag(self, highlight_id: str, tag_name: str) -> int:
        """Attach a tag, by name, to a persisted highlight.

        The tag is created when needed. Attaching a tag twice is a no-op.
        Returns the tag id.

        Raises:
            HighlightNotPersistedError: the highlight row does not exist; no
                tag and no link are written.
        """

        tag_name = normalize_tag_name(tag_name)
        if not await self.highlight_exists(highlight_id):
            logger.error("highlight_tag.highlight_missing", highlight_id=highlight_id, tag=tag_name)
            raise HighlightNotPersistedError(highlight_id)

        tag_id = await self.add_tag(tag_name)

        async with unit_of_work(self._session_factory, "add_highlight_tag") as session:
            session.add(HighlightTagRecord(highlight_id=highlight_id, tag_id=tag_id))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await session.scalar(
                    select(func.count())
                    .select_from(HighlightTagRecord)
                    .where(HighlightTagRecord.highlight_id == highlight_id, HighlightTagRecord.tag_id == tag_id)
                )
                if not existing:
                    raise
                logger.debug("highlight_tag.exists", highlight_id=highlight_id, tag_id=tag_id)
                return tag_id

        logger.info("highlight_tag.added", highlight_id=highlight_id, tag_id=tag_id)
        return tag_id

    async def remove_highlight_tag(self, highlight_id: str, tag_id: int) -> None:
        async with unit_of_work(self._session_factory, "remove_highlight_tag") as session:
            result = await session.execute(
                delete(HighlightTagRecord)
                .where(HighlightTagRecord.highlight_id == highlight_id, HighlightTagRecord.tag_id == tag_id)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        logger.info("highlight_tag.removed", highlight_id=highlight_id, tag_id=tag_id, found=bool(result.rowcount))

    async def reconcile_highlight_tags(
        self,
        highlight_id: str,
        desired: Iterable[TagRef | Tag | str],
    ) -> list[Tag]:
        """Bring the highlight's tags in line with ``desired`` and return them."""

        return await reconcile.reconcile_highlight_tags(
            self,
            highlight_id,
            desired,
            max_attempts=self.reconcile_max_attempts,
        )

"""Read-only tag rankings used to speed up tagging."""

from __future__ import annotations

from collections.abc import Collection, Iterable
from typing import TypeVar

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pdf_highlighter.core.db import unit_of_work
from pdf_highlighter.core.logging import get_logger
from pdf_highlighter.models.annotations import Tag, TagRecency, TagUsage, tag_name_key
from pdf_highlighter.models.tables import HighlightTagRecord, TagRecord

logger = get_logger(__name__)

RankedT = TypeVar("RankedT", TagUsage, TagRecency)


class SuggestionRanker:
    """Aggregate queries over the highlight/tag link table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def most_used_tags(self, limit: int = 6) -> list[TagUsage]:
        """Tags by link count, descending, ties broken alphabetically.

        Tags that are not attached anywhere are not ranked.
        """

        if limit <= 0:
            return []

        usage = func.count(HighlightTagRecord.id).label("usage_count")
        stmt = (
            select(TagRecord, usage)
            .join(HighlightTagRecord, HighlightTagRecord.tag_id == TagRecord.id)
            .group_by(TagRecord.id)
            .order_by(desc("usage_count"), TagRecord.name_key, TagRecord.id)
            .limit(limit)
        )
        async with unit_of_work(self._session_factory, "most_used_tags") as session:
            rows = (await session.execute(stmt)).all()
        return [TagUsage(tag=Tag.model_validate(record), usage_count=count) for record, count in rows]

    async def recently_used_tags(self, limit: int = 6) -> list[TagRecency]:
        """Tags by the newest link that uses them, most recent first."""

        if limit <= 0:
            return []

        last_used = func.max(HighlightTagRecord.created_at).label("last_used_at")
        stmt = (
            select(TagRecord, last_used)
            .join(HighlightTagRecord, HighlightTagRecord.tag_id == TagRecord.id)
            .where(HighlightTagRecord.created_at.is_not(None))
            .group_by(TagRecord.id)
            .order_by(desc("last_used_at"), TagRecord.name_key, TagRecord.id)
            .limit(limit)
        )
        async with unit_of_work(self._session_factory, "recently_used_tags") as session:
            rows = (await session.execute(stmt)).all()
        return [TagRecency(tag=Tag.model_validate(record), last_used_at=used_at) for record, used_at in rows]

    async def tag_suggestions(
        self,
        query: str,
        limit: int = 10,
        *,
        exclude_ids: Collection[int] = (),
    ) -> list[str]:
        """Tag names containing ``query``, case-insensitive, alphabetical.

        An empty query returns the first tags alphabetically that are not in
        ``exclude_ids``, typically the ones already on the highlight.
        """

        if limit <= 0:
            return []

        stmt = select(TagRecord.name).order_by(TagRecord.name_key, TagRecord.id).limit(limit)
        query = query.strip()
        if query:
            stmt = stmt.where(TagRecord.name_key.contains(tag_name_key(query), autoescape=True))
        elif exclude_ids:
            stmt = stmt.where(TagRecord.id.not_in(list(exclude_ids)))

        async with unit_of_work(self._session_factory, "tag_suggestions") as session:
            names = list(await session.scalars(stmt))

        logger.debug("tags.suggestions", query=query, returned=len(names))
        return names


def exclude_attached(items: Iterable[RankedT], attached: Iterable[Tag]) -> list[RankedT]:
    """Drop ranked entries whose tag is already attached, comparing by id."""

    attached_ids = {tag.id for tag in attached}
    return [item for item in items if item.tag.id not in attached_ids]

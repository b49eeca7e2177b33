"""SQLAlchemy models for documents, highlights and tags."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Current UTC time without tzinfo; SQLite stores timestamps as naive text."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base declarative model."""


class DocumentRecord(Base):
    """A PDF file the user has opened at least once."""

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    path: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    date_added: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_opened: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class HighlightRecord(Base):
    """Normalized row for a single highlight.

    ``highlight_id`` is assigned by the client before the row exists, so links
    and in-memory state refer to it rather than to the integer key.
    """

    __tablename__ = "highlights"
    __table_args__ = (Index("idx_highlights_document_created", "document_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id"), nullable=False)
    highlight_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    content_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    comment_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    comment_emoji: Mapped[str | None] = mapped_column(String, nullable=True)
    position_data: Mapped[str] = mapped_column(Text, nullable=False)
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class TagRecord(Base):
    """Global label.

    ``name`` keeps the first spelling for display; ``name_key`` holds its
    casefolded form and carries the uniqueness and ordering of tags.
    """

    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    name_key: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class HighlightTagRecord(Base):
    """Many-to-many link between a highlight and a tag."""

    __tablename__ = "highlight_tags"
    __table_args__ = (
        UniqueConstraint("highlight_id", "tag_id", name="uq_highlight_tag"),
        Index("idx_highlight_tags_tag", "tag_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    highlight_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    tag_id: Mapped[int] = mapped_column(ForeignKey("tags.id"), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, default=utcnow)

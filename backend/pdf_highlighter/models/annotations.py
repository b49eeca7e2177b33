"""Pydantic schemas for documents, highlights and tags."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


class Document(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Store-assigned document identifier.")
    name: str = Field(..., description="Display name, usually the file name.")
    path: str = Field(..., description="Absolute path of the PDF; unique per document.")
    date_added: datetime
    last_opened: datetime


class DocumentSummary(Document):
    highlight_count: int = Field(default=0, ge=0)


class DocumentRegister(BaseModel):
    path: str = Field(..., min_length=1, description="Path supplied by the file-open dialog.")
    name: str | None = Field(default=None, description="Display name; defaults to the file name.")


class HighlightContent(BaseModel):
    """Selected text for text highlights, or an encoded bitmap for area highlights."""

    text: str | None = None
    image: str | None = None

    def ensure_single_kind(self) -> None:
        """Reject content carrying both or neither of text and image."""

        has_text = self.text is not None
        has_image = self.image is not None
        if has_text == has_image:
            raise ValueError("Highlight content must carry exactly one of text or image.")


class HighlightComment(BaseModel):
    text: str = ""
    emoji: str = ""


def check_position(value: dict[str, Any]) -> dict[str, Any]:
    page_number = value.get("pageNumber")
    if isinstance(page_number, bool) or not isinstance(page_number, int):
        raise ValueError("Highlight position requires an integer pageNumber.")
    return value


Position = Annotated[dict[str, Any], AfterValidator(check_position)]


class Highlight(BaseModel):
    """In-memory annotation as produced by the viewer.

    ``position`` is kept as the viewer's own structure (``pageNumber``,
    ``boundingRect``, ``rects`` ...) and stored verbatim.
    """

    id: str = Field(..., min_length=1, description="Client-generated highlight identifier.")
    content: HighlightContent = Field(default_factory=HighlightContent)
    comment: HighlightComment = Field(default_factory=HighlightComment)
    position: Position
    document_id: int | None = None
    created_at: datetime | None = None

    @property
    def page_number(self) -> int:
        return self.position["pageNumber"]


class HighlightCreate(BaseModel):
    """Payload for a new highlight; the id is generated when omitted."""

    id: str | None = Field(default=None, min_length=1)
    content: HighlightContent
    comment: HighlightComment = Field(default_factory=HighlightComment)
    position: Position


class HighlightPatch(BaseModel):
    """Partial geometry/content update. Omitted keys are left untouched."""

    position: dict[str, Any] = Field(default_factory=dict)
    content: dict[str, str | None] = Field(default_factory=dict)


class CommentUpdate(BaseModel):
    text: str = ""
    emoji: str = ""


def tag_name_key(name: str) -> str:
    """Comparison key for tag names: stripped and Unicode-casefolded."""

    return name.strip().casefold()


class Tag(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    created_at: datetime | None = None


class TagRef(BaseModel):
    """Desired tag for reconciliation: an existing tag, or a freshly typed name."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    id: int | None = None


class TagCreate(BaseModel):
    name: str = Field(..., min_length=1)


class TagUsage(BaseModel):
    tag: Tag
    usage_count: int


class TagRecency(BaseModel):
    tag: Tag
    last_used_at: datetime


class BulkDeleteRequest(BaseModel):
    tag_ids: list[int] = Field(default_factory=list)

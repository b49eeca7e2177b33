"""Document library endpoints."""

from __future__ import annotations

from pathlib import PurePath

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from pdf_highlighter.api import deps
from pdf_highlighter.models.annotations import (
    Document,
    DocumentRegister,
    DocumentSummary,
    Highlight,
    HighlightCreate,
    Tag,
)
from pdf_highlighter.services.identifiers import new_highlight_id
from pdf_highlighter.services.repository import AnnotationRepository

router = APIRouter()


@router.post("", response_model=Document, summary="Register an opened PDF.")
async def register_document(
    payload: DocumentRegister,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> Document:
    """Create the document on first open, otherwise bump its last-opened time."""

    name = payload.name or PurePath(payload.path).name
    return await repository.register_document(name, payload.path)


@router.get("", response_model=list[DocumentSummary], summary="List the document library.")
async def list_documents(
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> list[DocumentSummary]:
    return await repository.list_documents_with_counts()


@router.get("/search", response_model=list[Document], summary="Search documents by name or path.")
async def search_documents(
    q: str = Query(..., min_length=1),
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> list[Document]:
    return await repository.search_documents(q)


@router.get("/{document_id}", response_model=Document)
async def get_document(
    document_id: int,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> Document:
    document = await repository.get_document(document_id)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Document {document_id} not found.")
    return document


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: int,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> Response:
    """Remove the document with its highlights and their tag links."""

    await repository.delete_pdf(document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{document_id}/highlights", response_model=list[Highlight])
async def list_highlights(
    document_id: int,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> list[Highlight]:
    return await repository.load_highlights(document_id)


@router.post(
    "/{document_id}/highlights",
    response_model=Highlight,
    status_code=status.HTTP_201_CREATED,
    summary="Persist a new highlight.",
)
async def create_highlight(
    document_id: int,
    payload: HighlightCreate,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> Highlight:
    highlight = Highlight(
        id=payload.id or new_highlight_id(),
        content=payload.content,
        comment=payload.comment,
        position=payload.position,
        document_id=document_id,
    )
    await repository.create_highlight(document_id, highlight)

    stored = await repository.get_highlight(highlight.id)
    return stored or highlight


@router.get("/{document_id}/tags", response_model=list[Tag], summary="Tags used in a document.")
async def list_document_tags(
    document_id: int,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> list[Tag]:
    return await repository.get_tags_for_document(document_id)

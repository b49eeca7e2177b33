"""Highlight editing and tagging endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from pdf_highlighter.api import deps
from pdf_highlighter.models.annotations import CommentUpdate, Highlight, HighlightPatch, Tag, TagCreate, TagRef
from pdf_highlighter.services.repository import AnnotationRepository

router = APIRouter()


@router.get("", response_model=list[Highlight], summary="Find highlights carrying any of the given tags.")
async def search_highlights(
    tags: list[str] = Query(default=[]),
    document_id: int | None = Query(default=None),
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> list[Highlight]:
    return await repository.search_highlights_by_tags(tags, document_id)


@router.get("/{highlight_id}", response_model=Highlight)
async def get_highlight(
    highlight_id: str,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> Highlight:
    highlight = await repository.get_highlight(highlight_id)
    if highlight is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Highlight {highlight_id} not found.")
    return highlight


@router.patch("/{highlight_id}", summary="Merge a partial position/content update.")
async def patch_highlight(
    highlight_id: str,
    payload: HighlightPatch,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> dict[str, bool]:
    """Unknown highlights are accepted and reported with ``updated: false``."""

    updated = await repository.update_highlight(highlight_id, payload.position, payload.content)
    return {"updated": updated}


@router.put("/{highlight_id}/comment", summary="Overwrite the highlight comment.")
async def put_comment(
    highlight_id: str,
    payload: CommentUpdate,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> dict[str, bool]:
    updated = await repository.update_comment(highlight_id, payload.text, payload.emoji)
    return {"updated": updated}


@router.delete("/{highlight_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_highlight(
    highlight_id: str,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> Response:
    await repository.delete_highlight(highlight_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{highlight_id}/tags", response_model=list[Tag])
async def get_highlight_tags(
    highlight_id: str,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> list[Tag]:
    return await repository.get_highlight_tags(highlight_id)


@router.put("/{highlight_id}/tags", response_model=list[Tag], summary="Replace the highlight's tag set.")
async def put_highlight_tags(
    highlight_id: str,
    desired: list[TagRef],
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> list[Tag]:
    """Reconcile stored tags with ``desired``; entries without an id are created by name."""

    return await repository.reconcile_highlight_tags(highlight_id, desired)


@router.post("/{highlight_id}/tags", response_model=Tag, status_code=status.HTTP_201_CREATED)
async def add_highlight_tag(
    highlight_id: str,
    payload: TagCreate,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> Tag:
    tag_id = await repository.add_highlight_tag(highlight_id, payload.name)
    tag = await repository.get_tag(tag_id)
    if tag is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Tag was removed concurrently.")
    return tag


@router.delete("/{highlight_id}/tags/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_highlight_tag(
    highlight_id: str,
    tag_id: int,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> Response:
    await repository.remove_highlight_tag(highlight_id, tag_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

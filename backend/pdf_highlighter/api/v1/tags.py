"""Tag management and suggestion endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from pdf_highlighter.api import deps
from pdf_highlighter.core.config import AppSettings
from pdf_highlighter.models.annotations import BulkDeleteRequest, Highlight, Tag, TagCreate, TagRecency, TagUsage
from pdf_highlighter.services.repository import AnnotationRepository
from pdf_highlighter.services.suggestions import SuggestionRanker

router = APIRouter()


@router.get("", response_model=list[Tag], summary="All tags, alphabetical.")
async def list_tags(
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> list[Tag]:
    return await repository.list_tags()


@router.post("", summary="Create a tag or return the existing one.")
async def create_tag(
    payload: TagCreate,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> dict[str, int]:
    return {"id": await repository.add_tag(payload.name)}


@router.get("/usage", response_model=list[TagUsage], summary="Every tag with its usage count.")
async def tag_usage(
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> list[TagUsage]:
    return await repository.tags_with_usage_count()


@router.get("/most-used", response_model=list[TagUsage])
async def most_used_tags(
    limit: int | None = Query(default=None, ge=1, le=100),
    ranker: SuggestionRanker = Depends(deps.get_ranker),
    settings: AppSettings = Depends(deps.get_app_settings),
) -> list[TagUsage]:
    return await ranker.most_used_tags(limit or settings.suggestion_limit)


@router.get("/recent", response_model=list[TagRecency])
async def recently_used_tags(
    limit: int | None = Query(default=None, ge=1, le=100),
    ranker: SuggestionRanker = Depends(deps.get_ranker),
    settings: AppSettings = Depends(deps.get_app_settings),
) -> list[TagRecency]:
    return await ranker.recently_used_tags(limit or settings.suggestion_limit)


@router.get("/suggestions", response_model=list[str], summary="Autocomplete tag names.")
async def tag_suggestions(
    q: str = Query(default=""),
    limit: int | None = Query(default=None, ge=1, le=100),
    exclude: list[int] = Query(default=[]),
    ranker: SuggestionRanker = Depends(deps.get_ranker),
    settings: AppSettings = Depends(deps.get_app_settings),
) -> list[str]:
    return await ranker.tag_suggestions(q, limit or settings.tag_suggestion_limit, exclude_ids=exclude)


@router.post("/bulk-delete", status_code=status.HTTP_204_NO_CONTENT)
async def bulk_delete_tags(
    payload: BulkDeleteRequest,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> Response:
    await repository.bulk_delete_tags(payload.tag_ids)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{tag_id}/highlights", response_model=list[Highlight])
async def highlights_for_tag(
    tag_id: int,
    document_id: int | None = Query(default=None),
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> list[Highlight]:
    return await repository.highlights_by_tag(tag_id, document_id)


@router.delete("/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tag(
    tag_id: int,
    repository: AnnotationRepository = Depends(deps.get_repository),
) -> Response:
    await repository.delete_tag(tag_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

"""API routers for the annotation service."""

from fastapi import APIRouter

from .routes import health_router
from .v1 import documents, highlights, tags

api_router = APIRouter()
api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(documents.router, prefix="/documents", tags=["documents"])
api_router.include_router(highlights.router, prefix="/highlights", tags=["highlights"])
api_router.include_router(tags.router, prefix="/tags", tags=["tags"])

__all__ = ["api_router"]

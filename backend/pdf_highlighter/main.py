"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core.config import AppSettings, get_settings
from .core.db import build_engine, build_session_factory
from .core.errors import (
    AnnotationStoreError,
    ConstraintViolationError,
    HighlightNotPersistedError,
    NotFoundError,
    StoreUnavailableError,
)
from .core.logging import get_logger, setup_logging
from .core.migrations import init_database
from .services.repository import AnnotationRepository
from .services.suggestions import SuggestionRanker

logger = get_logger(__name__)


def _error_status(exc: AnnotationStoreError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConstraintViolationError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, StoreUnavailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _store_error_handler(request: Request, exc: AnnotationStoreError) -> JSONResponse:
    status_code = _error_status(exc)
    logger.warning(
        "request.store_error",
        path=request.url.path,
        status_code=status_code,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    body: dict[str, object] = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, HighlightNotPersistedError):
        body["highlight_id"] = exc.highlight_id
    return JSONResponse(status_code=status_code, content=body)


async def _value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifecycle hooks for startup and shutdown."""

    settings: AppSettings = app.state.settings
    setup_logging(settings.log_level, service=settings.project_name)

    engine = build_engine(settings)
    schema_version = await init_database(engine)
    app.state.schema_version = schema_version
    session_factory = build_session_factory(engine)
    app.state.repository = AnnotationRepository(
        session_factory,
        reconcile_max_attempts=settings.reconcile_max_attempts,
    )
    app.state.ranker = SuggestionRanker(session_factory)

    logger.info(
        "application.startup",
        environment=settings.environment,
        version=settings.version,
        schema_version=schema_version,
    )

    try:
        yield
    finally:
        await engine.dispose()
        logger.info("application.shutdown")


def create_app(settings: AppSettings | None = None) -> FastAPI:
    """Construct the FastAPI application instance."""

    settings = settings or get_settings()

    application = FastAPI(
        title=settings.project_name,
        version=settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    application.state.settings = settings

    if settings.cors_allowed_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    application.add_exception_handler(AnnotationStoreError, _store_error_handler)
    application.add_exception_handler(ValueError, _value_error_handler)
    application.include_router(api_router, prefix="/v1")

    @application.get("/", tags=["meta"], summary="Service metadata")
    async def root() -> dict[str, str]:
        """Service metadata root endpoint."""

        return {"service": settings.project_name, "version": settings.version}

    return application


app = create_app()

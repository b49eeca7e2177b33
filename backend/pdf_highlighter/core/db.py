"""Database utilities for the annotation store."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import AppSettings, get_settings
from .errors import AnnotationStoreError, ConstraintViolationError, StoreUnavailableError
from .logging import get_logger

logger = get_logger(__name__)

_async_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def resolve_database_url(raw_url: str) -> str:
    """Make SQLite file paths absolute and ensure their directory exists."""

    url = make_url(raw_url)
    if "sqlite" not in url.drivername or not url.database or url.database == ":memory:":
        return raw_url

    db_path = Path(url.database).expanduser()
    if not db_path.is_absolute():
        db_path = db_path.resolve()

    db_path.parent.mkdir(parents=True, exist_ok=True)
    url = url.set(database=str(db_path))
    return url.render_as_string(hide_password=False)


def _configure_sqlite_connection(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
    finally:
        cursor.close()


def build_engine(settings: AppSettings) -> AsyncEngine:
    """Create an async engine for the configured database."""

    resolved_url = resolve_database_url(settings.database_url)
    connect_args: dict[str, Any] = {}
    if "sqlite" in make_url(resolved_url).drivername:
        connect_args["timeout"] = settings.sqlite_busy_timeout

    engine = create_async_engine(resolved_url, echo=False, connect_args=connect_args)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _configure_sqlite_connection)

    logger.debug("database.engine.created", url=make_url(resolved_url).render_as_string())
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Bind a session factory that keeps loaded rows usable after commit."""

    return async_sessionmaker(bind=engine, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    """Return a singleton instance of the async engine."""

    global _async_engine
    if _async_engine is None:
        _async_engine = build_engine(get_settings())
    return _async_engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Create or return the shared async session factory."""

    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the shared engine and forget the session factory."""

    global _async_engine, _session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _session_factory = None


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Provide an async database session via dependency injection."""

    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
    operation: str,
) -> AsyncIterator[AsyncSession]:
    """Open a session for a single store operation and translate driver failures.

    Errors already belonging to the store hierarchy pass through untouched so
    callers can raise ``NotFoundError`` and friends from inside the block.
    """

    try:
        async with session_factory() as session:
            yield session
    except AnnotationStoreError:
        raise
    except IntegrityError as exc:
        raise ConstraintViolationError(f"{operation} violated a constraint: {exc.orig}") from exc
    except (OperationalError, InterfaceError) as exc:
        logger.error("database.unavailable", operation=operation, error=str(exc.orig))
        raise StoreUnavailableError(f"{operation} could not reach the database: {exc.orig}") from exc
    except SQLAlchemyError as exc:
        raise AnnotationStoreError(f"{operation} failed: {exc}") from exc

"""Schema bootstrap and versioned migrations for the annotation store."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from sqlalchemy import Connection, inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

from pdf_highlighter.models.annotations import tag_name_key
from pdf_highlighter.models.tables import Base

from .logging import get_logger

logger = get_logger(__name__)


def get_schema_version(conn: Connection) -> int:
    """Get current schema version from database."""

    conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
    )
    result = conn.execute(text("SELECT MAX(version) FROM schema_version")).scalar()
    return result if result is not None else 0


def set_schema_version(conn: Connection, version: int) -> None:
    """Record that a migration has been applied."""

    conn.execute(
        text("INSERT INTO schema_version (version, applied_at) VALUES (:version, :applied_at)"),
        {"version": version, "applied_at": datetime.now().isoformat()},
    )


def migration_001_create_core_tables(conn: Connection) -> None:
    """Migration 001: documents and highlights."""

    tables = [Base.metadata.tables["documents"], Base.metadata.tables["highlights"]]
    Base.metadata.create_all(conn, tables=tables)


def migration_002_create_tag_tables(conn: Connection) -> None:
    """Migration 002: global tags and the highlight/tag link table."""

    tables = [Base.metadata.tables["tags"], Base.metadata.tables["highlight_tags"]]
    Base.metadata.create_all(conn, tables=tables)


def migration_003_add_link_created_at(conn: Connection) -> None:
    """Migration 003: timestamp links so tags can be ranked by recent use.

    Link tables created before recency tracking lack the column. Existing
    links are backfilled with the migration time.
    """

    columns = {column["name"] for column in inspect(conn).get_columns("highlight_tags")}
    if "created_at" in columns:
        return

    logger.info("migration.add_column", table="highlight_tags", column="created_at")
    conn.execute(text("ALTER TABLE highlight_tags ADD COLUMN created_at DATETIME"))
    conn.execute(text("UPDATE highlight_tags SET created_at = CURRENT_TIMESTAMP WHERE created_at IS NULL"))


def migration_004_add_tag_name_key(conn: Connection) -> None:
    """Migration 004: casefolded tag keys.

    Uniqueness used to rely on SQLite's NOCASE collation, which folds ASCII
    only, so older databases may hold tags differing in non-ASCII case. Those
    are merged into the oldest row before the unique index is built.
    """

    columns = {column["name"] for column in inspect(conn).get_columns("tags")}
    if "name_key" in columns:
        return

    logger.info("migration.add_column", table="tags", column="name_key")
    conn.execute(text("ALTER TABLE tags ADD COLUMN name_key TEXT"))

    keepers: dict[str, int] = {}
    for tag_id, name in conn.execute(text("SELECT id, name FROM tags ORDER BY id")).all():
        key = tag_name_key(name)
        keeper = keepers.setdefault(key, tag_id)
        if keeper == tag_id:
            conn.execute(text("UPDATE tags SET name_key = :key WHERE id = :id"), {"key": key, "id": tag_id})
            continue

        logger.info("migration.merge_tag", tag_id=tag_id, into=keeper, name=name)
        params = {"keeper": keeper, "duplicate": tag_id}
        conn.execute(text("UPDATE OR IGNORE highlight_tags SET tag_id = :keeper WHERE tag_id = :duplicate"), params)
        conn.execute(text("DELETE FROM highlight_tags WHERE tag_id = :duplicate"), params)
        conn.execute(text("DELETE FROM tags WHERE id = :duplicate"), params)

    conn.execute(text("CREATE UNIQUE INDEX IF NOT EXISTS uq_tags_name_key ON tags (name_key)"))


MIGRATIONS: list[tuple[int, str, Callable[[Connection], None]]] = [
    (1, "create_core_tables", migration_001_create_core_tables),
    (2, "create_tag_tables", migration_002_create_tag_tables),
    (3, "add_link_created_at", migration_003_add_link_created_at),
    (4, "add_tag_name_key", migration_004_add_tag_name_key),
]


def run_migrations(conn: Connection) -> int:
    """Apply every migration newer than the recorded schema version.

    Returns the schema version after the run.
    """

    current_version = get_schema_version(conn)
    logger.debug("migration.check", current_version=current_version)

    for version, description, migration in MIGRATIONS:
        if version <= current_version:
            continue
        logger.info("migration.apply", version=version, description=description)
        migration(conn)
        set_schema_version(conn, version)
        current_version = version

    return current_version


async def init_database(engine: AsyncEngine) -> int:
    """Create or upgrade the schema inside a single transaction."""

    async with engine.begin() as conn:
        version = await conn.run_sync(run_migrations)
    logger.info("database.ready", schema_version=version)
    return version

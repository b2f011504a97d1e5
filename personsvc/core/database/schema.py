"""
Database Schema

DDL for the persons and outbox tables, written to run unchanged on
PostgreSQL and SQLite, plus the startup check that the live schema still
has every column the stores select by name.
"""

import logging
from typing import Mapping, Sequence

from ..errors import SchemaMismatchError, StorageError
from .adapter import Connection

logger = logging.getLogger(__name__)


PERSONS_DDL = """
CREATE TABLE IF NOT EXISTS persons (
    id UUID NOT NULL PRIMARY KEY,
    first_name VARCHAR(50) NOT NULL,
    middle_name VARCHAR(50),
    last_name VARCHAR(100) NOT NULL,
    suffix VARCHAR(20),
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ
)
"""

OUTBOX_DDL = """
CREATE TABLE IF NOT EXISTS outbox (
    id UUID NOT NULL PRIMARY KEY,
    topic VARCHAR(255) NOT NULL,
    event_name VARCHAR(255) NOT NULL,
    payload TEXT NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'unpublished'
        CHECK (status IN ('unpublished', 'published', 'errored', 'abandoned')),
    created_at TIMESTAMPTZ NOT NULL,
    published_at TIMESTAMPTZ,
    error_count INTEGER NOT NULL DEFAULT 0 CHECK (error_count >= 0),
    error_message VARCHAR(255),
    claimed_by VARCHAR(255),
    claimed_at TIMESTAMPTZ
)
"""

INDEXES_DDL = (
    "CREATE INDEX IF NOT EXISTS ix_persons_created_at ON persons (created_at)",
    "CREATE INDEX IF NOT EXISTS ix_outbox_pending ON outbox (published_at, error_count, created_at)",
)


async def create_schema(conn: Connection) -> None:
    """Create the tables and indexes if they do not exist yet."""
    for statement in (PERSONS_DDL, OUTBOX_DDL, *INDEXES_DDL):
        await conn.execute(statement)
    logger.info("Schema ensured: persons, outbox")


async def verify_schema(conn: Connection, expected: Mapping[str, Sequence[str]]) -> None:
    """
    Check that each table exposes the expected columns.

    Selects every expected column by name with LIMIT 0, so a renamed or
    dropped column fails here at startup instead of on the first request.

    Args:
        conn: Connection to check against
        expected: table name -> column names the code selects

    Raises:
        SchemaMismatchError: a table or column is missing
    """
    for table, columns in expected.items():
        query = f"SELECT {', '.join(columns)} FROM {table} LIMIT 0"
        try:
            await conn.fetch(query)
        except StorageError as exc:
            raise SchemaMismatchError(
                f"Table '{table}' does not match the expected columns "
                f"({', '.join(columns)}): {exc.message}",
                operation="verify_schema"
            ) from exc
        logger.debug(f"Schema verified: {table} ({len(columns)} columns)")

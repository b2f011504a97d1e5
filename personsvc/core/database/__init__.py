"""
Database abstraction layer supporting PostgreSQL and SQLite.

Usage:
    from personsvc.core.database import DatabaseAdapter, DatabaseConfig

    db = DatabaseAdapter(DatabaseConfig(settings))
    await db.connect()

    async with db.acquire() as conn:
        async with conn.transaction() as tx:
            await tx.execute("UPDATE persons SET last_name = $1 WHERE id = $2", name, person_id)
"""

from .adapter import (
    Connection,
    DatabaseAdapter,
    DatabaseBackend,
    DatabaseConfig,
    Transaction,
    close_database,
    get_database,
    translate_error,
)
from .schema import create_schema, verify_schema

__all__ = [
    "Connection",
    "DatabaseAdapter",
    "DatabaseBackend",
    "DatabaseConfig",
    "Transaction",
    "close_database",
    "get_database",
    "translate_error",
    "create_schema",
    "verify_schema",
]

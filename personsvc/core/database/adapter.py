"""
Database Adapter

Supports PostgreSQL (asyncpg pool, production) and SQLite (aiosqlite,
local development and tests) behind one interface.

Features:
- Automatic query syntax translation ($1 to ?1, etc.)
- Connection pooling for PostgreSQL
- Explicit begin/commit/rollback through Transaction
- Driver exceptions translated into the person service error taxonomy
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import UUID

import aiosqlite
import asyncpg

from ..config import Settings, get_settings
from ..errors import (
    ConstraintViolationError,
    DatabaseConnectionError,
    PersonServiceError,
    RollbackError,
    StorageError,
    TransactionError,
)

logger = logging.getLogger(__name__)

# SQLite stores timestamps and ids as ISO / canonical text
sqlite3.register_adapter(datetime, lambda value: value.isoformat(timespec="microseconds"))
sqlite3.register_adapter(UUID, str)

# Everything a driver may raise while talking to the database
DRIVER_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    sqlite3.Error,
    OSError,
    asyncio.TimeoutError,
)

_CONSTRAINT_ERRORS = (
    asyncpg.exceptions.IntegrityConstraintViolationError,
    sqlite3.IntegrityError,
)

_CONNECTION_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


def translate_error(exc: BaseException, operation: Optional[str] = None) -> PersonServiceError:
    """Map a driver exception onto the error taxonomy."""
    if isinstance(exc, PersonServiceError):
        return exc
    if isinstance(exc, _CONSTRAINT_ERRORS):
        return ConstraintViolationError(f"Constraint violated: {exc}", operation)
    if isinstance(exc, _CONNECTION_ERRORS):
        return DatabaseConnectionError(f"Database connection failed: {exc}", operation)
    return StorageError(f"Database statement failed: {exc}", operation)


def _convert_to_sqlite(query: str) -> str:
    """Convert PostgreSQL placeholders to SQLite numbered parameters."""
    return re.sub(r"\$(\d+)", r"?\1", query)


def _affected_rows(status: str) -> int:
    """Parse the row count out of an asyncpg status string ("UPDATE 3")."""
    parts = status.split() if status else []
    if parts and parts[-1].isdigit():
        return int(parts[-1])
    return 0


class DatabaseBackend(Enum):
    """Supported database backends."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class DatabaseConfig:
    """Database configuration taken from Settings."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.backend = self._get_backend(settings.database_backend)
        self.sqlite_path = settings.sqlite_path
        self.postgres_url = settings.database_url
        self.min_size = settings.database_pool_min_size
        self.max_size = settings.database_pool_max_size
        self.command_timeout = settings.database_command_timeout
        self.acquire_timeout = settings.database_acquire_timeout

    @staticmethod
    def _get_backend(name: str) -> DatabaseBackend:
        """Determine which backend to use."""
        try:
            return DatabaseBackend(name.lower())
        except ValueError:
            raise ValueError(f"Unsupported DATABASE_BACKEND: {name!r}") from None

    def __repr__(self) -> str:
        return (
            f"DatabaseConfig(backend={self.backend.value}, "
            f"pool={self.min_size}..{self.max_size})"
        )


class Connection:
    """
    One checked-out connection.

    Stores receive a Connection (inside or outside a transaction) and run
    statements on it; they never begin or end transactions themselves.

    Query Syntax:
        Use PostgreSQL-style $1, $2 placeholders. They are converted to
        ?1, ?2 for SQLite.
    """

    def __init__(self, raw: Any, backend: DatabaseBackend):
        self.raw = raw
        self.backend = backend

    @property
    def is_postgresql(self) -> bool:
        return self.backend == DatabaseBackend.POSTGRESQL

    async def fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        """
        Fetch multiple rows.

        Args:
            query: SQL query with $1, $2, etc. placeholders
            *args: Query parameters

        Returns:
            List of dictionaries representing rows
        """
        try:
            if self.is_postgresql:
                rows = await self.raw.fetch(query, *args)
            else:
                async with self.raw.execute(_convert_to_sqlite(query), args) as cursor:
                    rows = await cursor.fetchall()
        except DRIVER_ERRORS as exc:
            raise translate_error(exc) from exc
        return [dict(row) for row in rows]

    async def fetchrow(self, query: str, *args) -> Optional[Dict[str, Any]]:
        """Fetch a single row."""
        rows = await self.fetch(query, *args)
        return rows[0] if rows else None

    async def execute(self, query: str, *args) -> int:
        """Execute a statement and return the number of rows it affected."""
        try:
            if self.is_postgresql:
                status = await self.raw.execute(query, *args)
                return _affected_rows(status)
            async with self.raw.execute(_convert_to_sqlite(query), args) as cursor:
                return max(cursor.rowcount, 0)
        except DRIVER_ERRORS as exc:
            raise translate_error(exc) from exc

    def transaction(self) -> "Transaction":
        """
        Start a transaction on this connection.

        Usage:
            async with db.acquire() as conn:
                async with conn.transaction() as tx:
                    await tx.execute("INSERT ...")
                    await tx.execute("INSERT ...")
        """
        return Transaction(self)


class Transaction:
    """
    Explicit begin/commit/rollback over one connection.

    Used as an async context manager it commits when the block succeeds and
    rolls back on any exception, cancellation included. A failed rollback is
    raised as RollbackError chained to the original failure.
    """

    def __init__(self, connection: Connection):
        self.connection = connection
        self._pg_transaction = None
        self.state = "new"

    async def start(self) -> None:
        try:
            if self.connection.is_postgresql:
                self._pg_transaction = self.connection.raw.transaction()
                await self._pg_transaction.start()
            else:
                await self._run_sqlite("BEGIN")
        except DRIVER_ERRORS as exc:
            self.state = "failed"
            raise TransactionError(f"Failed to begin transaction: {exc}") from exc
        self.state = "started"

    async def commit(self) -> None:
        try:
            if self.connection.is_postgresql:
                await self._pg_transaction.commit()
            else:
                await self._run_sqlite("COMMIT")
        except DRIVER_ERRORS as exc:
            self.state = "failed"
            if not self.connection.is_postgresql:
                # SQLite keeps the transaction open after a failed COMMIT
                await self._discard_sqlite_transaction()
            raise TransactionError(f"Failed to commit transaction: {exc}") from exc
        self.state = "committed"

    async def rollback(self) -> None:
        try:
            if self.connection.is_postgresql:
                await self._pg_transaction.rollback()
            else:
                await self._run_sqlite("ROLLBACK")
        except DRIVER_ERRORS as exc:
            self.state = "failed"
            raise RollbackError(f"Failed to roll back transaction: {exc}") from exc
        self.state = "rolled_back"

    async def _run_sqlite(self, statement: str) -> None:
        async with self.connection.raw.execute(statement):
            pass

    async def _discard_sqlite_transaction(self) -> None:
        try:
            await self._run_sqlite("ROLLBACK")
        except sqlite3.Error as exc:
            logger.error(f"Rollback after failed commit also failed: {exc}")

    async def __aenter__(self) -> Connection:
        await self.start()
        return self.connection

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            await self.commit()
            return False

        try:
            await self.rollback()
        except RollbackError as rollback_error:
            logger.critical(
                f"Rollback failed after {exc_type.__name__}: {rollback_error}",
                exc_info=rollback_error
            )
            if issubclass(exc_type, asyncio.CancelledError):
                # Cancellation must still propagate; acquire() resets the
                # connection when it is handed back
                return False
            rollback_error.original = exc_val
            raise rollback_error from exc_val

        logger.debug(f"Transaction rolled back after {exc_type.__name__}")
        return False


class DatabaseAdapter:
    """
    Unified database adapter supporting both PostgreSQL and SQLite.

    Usage:
        db = DatabaseAdapter()
        await db.connect()

        async with db.acquire() as conn:
            async with conn.transaction() as tx:
                await tx.execute("INSERT INTO persons ...", ...)

        # One-off statements check out a connection per call
        rows = await db.fetch("SELECT * FROM outbox WHERE id = $1", event_id)

        await db.disconnect()
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or DatabaseConfig()
        self._pg_pool: Optional[asyncpg.Pool] = None
        self._sqlite_conn: Optional[aiosqlite.Connection] = None
        # A single SQLite connection carries one transaction at a time
        self._sqlite_lock = asyncio.Lock()
        self._connected = False

    @property
    def backend(self) -> DatabaseBackend:
        return self.config.backend

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect to the configured database backend."""
        if self._connected:
            return

        logger.info(f"Connecting to database: {self.config}")

        try:
            if self.config.backend == DatabaseBackend.POSTGRESQL:
                self._pg_pool = await asyncpg.create_pool(
                    self.config.postgres_url,
                    min_size=self.config.min_size,
                    max_size=self.config.max_size,
                    command_timeout=self.config.command_timeout
                )
                logger.info("Connected to PostgreSQL")
            else:
                self._sqlite_conn = await aiosqlite.connect(
                    self.config.sqlite_path,
                    isolation_level=None
                )
                self._sqlite_conn.row_factory = aiosqlite.Row
                logger.info(f"Connected to SQLite: {self.config.sqlite_path}")
        except DRIVER_ERRORS as exc:
            logger.error(f"Failed to connect to {self.config.backend.value}: {exc}")
            raise DatabaseConnectionError(f"Failed to connect to database: {exc}") from exc

        self._connected = True

    async def disconnect(self) -> None:
        """Close the pool or connection."""
        if self._pg_pool:
            await self._pg_pool.close()
            self._pg_pool = None
            logger.info("Disconnected from PostgreSQL")

        if self._sqlite_conn:
            await self._sqlite_conn.close()
            self._sqlite_conn = None
            logger.info("Disconnected from SQLite")

        self._connected = False

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Connection]:
        """
        Check out a connection for the duration of the block.

        Raises:
            DatabaseConnectionError: the pool could not hand out a connection
        """
        if not self._connected:
            await self.connect()

        if self.config.backend == DatabaseBackend.POSTGRESQL:
            try:
                raw = await self._pg_pool.acquire(timeout=self.config.acquire_timeout)
            except DRIVER_ERRORS as exc:
                logger.error(f"Error getting db connection from pool: {exc}")
                raise DatabaseConnectionError(
                    f"Could not acquire a database connection: {exc}"
                ) from exc
            try:
                yield Connection(raw, self.config.backend)
            finally:
                await self._pg_pool.release(raw)
        else:
            async with self._sqlite_lock:
                try:
                    yield Connection(self._sqlite_conn, self.config.backend)
                finally:
                    await self._reset_sqlite_connection()

    async def _reset_sqlite_connection(self) -> None:
        """
        Roll back a transaction left open on the shared SQLite connection.

        asyncpg's pool does this on release. A transaction is left open when
        the task is cancelled after BEGIN ran but before Transaction took
        ownership of it.
        """
        if self._sqlite_conn is None or not self._sqlite_conn.in_transaction:
            return
        logger.warning("Rolling back transaction left open on the SQLite connection")
        try:
            async with self._sqlite_conn.execute("ROLLBACK"):
                pass
        except sqlite3.Error as exc:
            logger.error(f"Could not roll back abandoned SQLite transaction: {exc}")

    async def fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        """Fetch multiple rows on a freshly acquired connection."""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[Dict[str, Any]]:
        """Fetch a single row."""
        rows = await self.fetch(query, *args)
        return rows[0] if rows else None

    async def fetchval(self, query: str, *args) -> Any:
        """Fetch a single value from the first column of the first row."""
        row = await self.fetchrow(query, *args)
        if row:
            return list(row.values())[0]
        return None

    async def execute(self, query: str, *args) -> int:
        """Execute a single autocommitted statement."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)


# Global instance management
_db: Optional[DatabaseAdapter] = None


async def get_database(settings: Optional[Settings] = None) -> DatabaseAdapter:
    """Get the global database adapter instance."""
    global _db
    if _db is None:
        _db = DatabaseAdapter(DatabaseConfig(settings))
        await _db.connect()
    return _db


async def close_database() -> None:
    """Close the global database connection."""
    global _db
    if _db:
        await _db.disconnect()
        _db = None

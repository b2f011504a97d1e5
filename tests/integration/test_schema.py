"""
Integration tests for schema creation, verification and the schema runner.
"""

import pytest

from personsvc.core.database import create_schema, verify_schema
from personsvc.core.database import migrate
from personsvc.core.errors import ConstraintViolationError, SchemaMismatchError
from personsvc.core.outbox import OUTBOX_COLUMNS
from personsvc.core.persons import PERSON_COLUMNS

EXPECTED = {"persons": PERSON_COLUMNS, "outbox": OUTBOX_COLUMNS}


class TestSchema:
    """DDL and startup verification."""

    async def test_create_schema_is_idempotent(self, db):
        """Running the DDL twice is harmless."""
        async with db.acquire() as conn:
            await create_schema(conn)
            await verify_schema(conn, EXPECTED)

    async def test_missing_table(self, db):
        """A dropped table is reported by name."""
        await db.execute("DROP TABLE outbox")

        async with db.acquire() as conn:
            with pytest.raises(SchemaMismatchError) as exc_info:
                await verify_schema(conn, EXPECTED)

        assert "outbox" in exc_info.value.message
        assert exc_info.value.operation == "verify_schema"

    async def test_status_check_constraint(self, db):
        """Unknown statuses are rejected by the database."""
        with pytest.raises(ConstraintViolationError):
            await db.execute(
                "INSERT INTO outbox (id, topic, event_name, payload, status, created_at) "
                "VALUES ($1, $2, $3, $4, $5, $6)",
                "0b1c7a52-8a44-4f5e-9d1c-1f2a3b4c5d6e", "person_events", "created", "{}",
                "lost", "2026-01-01T00:00:00+00:00"
            )


class TestSchemaRunner:
    """python -m personsvc.core.database.migrate"""

    @pytest.fixture
    def env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATABASE_BACKEND", "sqlite")
        monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "runner.db"))
        monkeypatch.setattr(migrate, "configure_logging", lambda **kwargs: None)

    def test_verify_fails_on_empty_database(self, env):
        """--verify on a fresh database exits 1."""
        assert migrate.main(["--verify"]) == 1

    def test_create_then_verify(self, env):
        """Creating the schema makes verification pass."""
        assert migrate.main([]) == 0
        assert migrate.main(["--verify"]) == 0

"""
Schema Runner

Usage:
    python -m personsvc.core.database.migrate            # Create missing tables and indexes
    python -m personsvc.core.database.migrate --verify   # Only check the live schema

Environment:
    DATABASE_BACKEND, DATABASE_URL, SQLITE_PATH (see personsvc.core.config)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from ..config import Settings
from ..errors import PersonServiceError
from ..observability.logging import configure_logging
from ..outbox.store import OUTBOX_COLUMNS
from ..persons.store import PERSON_COLUMNS
from .adapter import DatabaseAdapter, DatabaseConfig
from .schema import create_schema, verify_schema

logger = logging.getLogger(__name__)


async def run(settings: Settings, verify_only: bool = False) -> None:
    """Ensure (or only verify) the persons and outbox schema."""
    db = DatabaseAdapter(DatabaseConfig(settings))
    await db.connect()
    try:
        async with db.acquire() as conn:
            if not verify_only:
                await create_schema(conn)
            await verify_schema(conn, {"persons": PERSON_COLUMNS, "outbox": OUTBOX_COLUMNS})
    finally:
        await db.disconnect()
    logger.info(f"Schema OK on {settings.database_backend}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Person service schema runner")
    parser.add_argument("--verify", action="store_true", help="Check the schema without changing it")
    args = parser.parse_args(argv)

    settings = Settings()
    configure_logging(level=settings.log_level, structured=settings.log_structured,
                      service_name=settings.service_name)

    for issue in settings.validate():
        logger.warning(issue)

    try:
        asyncio.run(run(settings, verify_only=args.verify))
    except PersonServiceError as exc:
        logger.error(f"Schema run failed [{exc.code.value}]: {exc.message}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

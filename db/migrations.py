"""
MAILDECK - Migration Runner

Brings the schema to the latest alembic revision. alembic's command API is
synchronous, so it runs in a worker thread; env.py opens its own event loop
there for the async engine.
"""
import asyncio
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config as AlembicConfig

from core.errors import FatalMigrationError
from observability.logging import get_logger


logger = get_logger("maildeck.db.migrations")

SCRIPT_LOCATION = Path(__file__).resolve().parent.parent / "alembic"

# Revision a legacy (pre-alembic) database is stamped at
BASELINE_REVISION = "001"


def alembic_config(url: str) -> AlembicConfig:
    """Build the alembic configuration in code; there is no alembic.ini."""
    cfg = AlembicConfig()
    cfg.set_main_option("script_location", str(SCRIPT_LOCATION))
    # ConfigParser interpolation: a literal % in a password must be doubled
    cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return cfg


async def run_migrations(url: str, revision: str = "head") -> None:
    """
    Upgrade the schema to `revision`.

    Raises:
        FatalMigrationError: any alembic or database failure
    """
    cfg = alembic_config(url)
    logger.debug("Running migrations", revision=revision, component="DB")
    try:
        await asyncio.to_thread(command.upgrade, cfg, revision)
    except Exception as e:
        raise FatalMigrationError(f"Migration to {revision} failed: {e}", cause=e) from e
    logger.info("Database schema is up to date", revision=revision, component="DB")


async def stamp(url: str, revision: str = BASELINE_REVISION) -> None:
    """Record `revision` as applied without running it."""
    cfg = alembic_config(url)
    try:
        await asyncio.to_thread(command.stamp, cfg, revision)
    except Exception as e:
        raise FatalMigrationError(f"Could not stamp revision {revision}: {e}", cause=e) from e
    logger.info("Database stamped", revision=revision, component="DB")


async def current_revision(url: str) -> Optional[str]:
    """Revision recorded in the database, or None for an unversioned database."""
    from alembic.runtime.migration import MigrationContext
    from sqlalchemy.ext.asyncio import create_async_engine

    engine = create_async_engine(url)
    try:
        async with engine.connect() as conn:
            return await conn.run_sync(
                lambda sync_conn: MigrationContext.configure(sync_conn).get_current_revision()
            )
    finally:
        await engine.dispose()

"""
MAILDECK - Storage Readiness Checker

First bootstrap stage. Verifies that storage is reachable and that a legacy
(pre-alembic) database is recent enough to be upgraded in place.
"""
from sqlalchemy import select

from core.errors import FatalStorageError
from db.engine import StorageEngine
from db.migrations import BASELINE_REVISION, stamp
from db.models import Setting
from observability.logging import get_logger


logger = get_logger("maildeck.db.dbcheck")

# Last schema version of the legacy release; older databases must be
# upgraded with that release first.
LEGACY_SCHEMA_VERSION = 33


async def check_storage(engine: StorageEngine) -> None:
    """
    Probe storage and prepare legacy databases for the migration runner.

    Raises:
        FatalStorageError: storage unreachable, or a legacy database too old
            to upgrade
    """
    try:
        await engine.ping()
        tables = set(await engine.table_names())
    except Exception as e:
        raise FatalStorageError(str(e) or type(e).__name__, cause=e) from e

    if "settings" not in tables or "alembic_version" in tables:
        logger.debug("Storage reachable", tables=len(tables), component="DB")
        return

    version = await _legacy_schema_version(engine)
    if version is None or version < LEGACY_SCHEMA_VERSION:
        raise FatalStorageError(
            f"Legacy database schema version {version} is too old; "
            f"version {LEGACY_SCHEMA_VERSION} is required to upgrade"
        )

    logger.info(
        "Legacy database detected, stamping baseline",
        schema_version=version,
        revision=BASELINE_REVISION,
        component="DB",
    )
    await stamp(engine.url, BASELINE_REVISION)


async def _legacy_schema_version(engine: StorageEngine):
    try:
        async with engine.session() as session:
            value = await session.scalar(
                select(Setting.value).where(Setting.key == "db_schema_version")
            )
    except Exception as e:
        raise FatalStorageError(f"Could not read legacy schema version: {e}", cause=e) from e

    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None

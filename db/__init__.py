"""
MAILDECK - Database Layer

Storage stages of the bootstrap:
- check_storage: connectivity probe and legacy-database upgrade check
- run_migrations: alembic upgrade to head
- PermissionModel: role-name table and effective permissions rebuild

Usage:
    from db import StorageEngine, check_storage, run_migrations, PermissionModel

    engine = StorageEngine(config.database)
    await check_storage(engine)
    await run_migrations(engine.url)
    await PermissionModel(engine, config.roles).rebuild_permissions()
"""

from db.models import (
    Base,
    GeneratedRoleName,
    Namespace,
    Permission,
    Report,
    ReportState,
    Setting,
    Share,
    User,
)
from db.engine import StorageEngine
from db.migrations import BASELINE_REVISION, alembic_config, current_revision, run_migrations, stamp
from db.dbcheck import LEGACY_SCHEMA_VERSION, check_storage
from db.shares import PermissionModel, compute_permissions, namespace_descendants

__all__ = [
    # Models
    "Base",
    "GeneratedRoleName",
    "Namespace",
    "Permission",
    "Report",
    "ReportState",
    "Setting",
    "Share",
    "User",
    # Engine
    "StorageEngine",
    # Migrations
    "BASELINE_REVISION",
    "alembic_config",
    "current_revision",
    "run_migrations",
    "stamp",
    # Readiness check
    "LEGACY_SCHEMA_VERSION",
    "check_storage",
    # Permissions
    "PermissionModel",
    "compute_permissions",
    "namespace_descendants",
]

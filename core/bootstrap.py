"""
MAILDECK - Server Bootstrap

Composes the startup chain and runs it:

    storage check → migrations → role names → permissions
    → executor, test server, VERP server, built-in MTA
    → trusted, sandbox, public listeners
    → files directories → privilege drop
    → tzupdate, importer, feedcheck, senders, triggers, GDPR cleanup,
      postfix bounce listener, report processor
    → ready

Everything that needs root (listeners, directory ownership) comes before the
drop; every background service that handles external input comes after it.
The first failure stops the chain and the process exits with status 1
without ever becoming ready.

Usage:
    from core.bootstrap import main
    sys.exit(main())
"""
from __future__ import annotations

import asyncio
import signal
import sys
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

import setproctitle

from config import Config, get_config
from core.errors import (
    FatalMigrationError,
    FatalPermissionRebuildError,
    FatalStorageError,
    PrivilegeDropError,
    StartupError,
)
from core.listeners import AppFactory, AudienceTier, ListenerManager
from core.privileges import PrivilegeController
from core.readiness import ReadinessFlag
from core.sequencer import BootstrapSequencer, BootstrapStage
from db.dbcheck import check_storage
from db.engine import StorageEngine
from db.migrations import run_migrations
from db.shares import PermissionModel
from observability.logging import get_logger
from services.base import PeriodicService, ServiceBase, SpawnedService
from services.network import BuiltinMta, PostfixBounceServer, TestServer, VerpServer
from services.periodic import GdprCleanupService, TriggersService, TzUpdateService
from services.reports import ReportProcessor
from services.workers import Executor, FeedChecker, Importer, Senders

logger = get_logger("maildeck.bootstrap")

# Upper bound for one service's stop(); longer than BuiltinMta.stop_timeout
SERVICE_STOP_TIMEOUT = 15.0


@dataclass
class ServerContext:
    """Collaborators of the startup chain, created once per process."""

    config: Config
    storage: StorageEngine
    permissions: PermissionModel
    listeners: ListenerManager
    privileges: PrivilegeController
    readiness: ReadinessFlag

    executor: Executor
    test_server: TestServer
    verp_server: VerpServer
    builtin_mta: BuiltinMta
    tzupdate: TzUpdateService
    importer: Importer
    feedcheck: FeedChecker
    senders: Senders
    triggers: TriggersService
    gdpr_cleanup: GdprCleanupService
    postfix_bounce_server: PostfixBounceServer
    report_processor: ReportProcessor

    # Services in the order they came up; stopped in reverse
    started: List[ServiceBase] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: Config, app_factory: Optional[AppFactory] = None) -> "ServerContext":
        readiness = ReadinessFlag()

        if app_factory is None:
            from api.app_builder import create_app

            def app_factory(tier: AudienceTier) -> Any:
                return create_app(tier, readiness, config)

        storage = StorageEngine(config.database)
        privileges = PrivilegeController(config.privileges.user, config.privileges.group)
        svc = config.services

        return cls(
            config=config,
            storage=storage,
            permissions=PermissionModel(storage, config.roles),
            listeners=ListenerManager(config.www.host, app_factory),
            privileges=privileges,
            readiness=readiness,
            executor=Executor(svc.executor_workers, privileges),
            test_server=TestServer(svc.test_server_host, svc.test_server_port, svc.test_server_enabled),
            verp_server=VerpServer(svc.verp_host, svc.verp_port, svc.verp_enabled),
            builtin_mta=BuiltinMta(
                svc.builtin_mta_command,
                svc.builtin_mta_host,
                svc.builtin_mta_port,
                enabled=svc.builtin_mta_enabled,
                ready_timeout=svc.builtin_mta_ready_timeout,
            ),
            tzupdate=TzUpdateService(svc.tzupdate_interval),
            importer=Importer(),
            feedcheck=FeedChecker(),
            senders=Senders(),
            triggers=TriggersService(svc.triggers_interval),
            gdpr_cleanup=GdprCleanupService(svc.gdpr_cleanup_interval),
            postfix_bounce_server=PostfixBounceServer(
                svc.postfix_bounce_host, svc.postfix_bounce_port, svc.postfix_bounce_enabled,
            ),
            report_processor=ReportProcessor(storage),
        )

    async def shutdown(self) -> None:
        """Close listeners, then stop services newest first, then storage."""
        await self.listeners.close_all()
        await self._stop_services()
        await self.storage.close()

    async def abort(self) -> None:
        """
        Release child processes and worker tasks after a failed start.

        Bound listeners are left to process exit.
        """
        await self._stop_services()
        await self.storage.close()

    async def _stop_services(self) -> None:
        for service in reversed(self.started):
            try:
                await asyncio.wait_for(service.stop(), timeout=SERVICE_STOP_TIMEOUT)
            except Exception as e:
                logger.warning("Error stopping service", service=service.name, error=repr(e))
        self.started.clear()


# =============================================================================
# STAGE ACTIONS
# =============================================================================


def _spawn(ctx: ServerContext, service: SpawnedService) -> Callable[[], Awaitable[None]]:
    async def action() -> None:
        await service.spawn()
        if service.is_running:
            ctx.started.append(service)
    return action


def _start(ctx: ServerContext, service: PeriodicService) -> Callable[[], None]:
    def action() -> None:
        service.start()
        ctx.started.append(service)
    return action


def _bind(ctx: ServerContext, tier: AudienceTier, name: str, port: Any) -> Callable[[], Awaitable[Any]]:
    return lambda: ctx.listeners.bind(tier, name, port)


def _ensure_dir(ctx: ServerContext, path: Any) -> Callable[[], Awaitable[Any]]:
    return lambda: ctx.privileges.ensure_directory(path)


def _mark_ready(ctx: ServerContext) -> Callable[[], None]:
    def action() -> None:
        logger.info("All services started", component="Service")
        ctx.readiness.mark_ready()
    return action


def _storage_stages(ctx: ServerContext) -> List[BootstrapStage]:
    return [
        BootstrapStage(
            "check_storage",
            lambda: check_storage(ctx.storage),
            error_type=FatalStorageError,
            description="Probe storage and check legacy schema version",
        ),
        BootstrapStage(
            "run_migrations",
            lambda: run_migrations(ctx.storage.url),
            requires=("check_storage",),
            error_type=FatalMigrationError,
            description="Upgrade schema to the latest revision",
        ),
        BootstrapStage(
            "regenerate_role_names",
            ctx.permissions.regenerate_role_names_table,
            requires=("run_migrations",),
            error_type=FatalPermissionRebuildError,
            description="Rewrite the role name table from configuration",
        ),
        BootstrapStage(
            "rebuild_permissions",
            ctx.permissions.rebuild_permissions,
            requires=("regenerate_role_names",),
            error_type=FatalPermissionRebuildError,
            description="Recompute effective permissions",
        ),
    ]


def _listener_stages(ctx: ServerContext) -> List[BootstrapStage]:
    www = ctx.config.www
    return [
        BootstrapStage(
            "bind:trusted",
            _bind(ctx, AudienceTier.TRUSTED, "trusted", www.trusted_port),
            requires=("rebuild_permissions",),
            privileged=True,
            description="Bind the trusted listener",
        ),
        BootstrapStage(
            "bind:sandbox",
            _bind(ctx, AudienceTier.SANDBOXED, "sandbox", www.sandbox_port),
            requires=("bind:trusted",),
            privileged=True,
            description="Bind the sandboxed listener",
        ),
        BootstrapStage(
            "bind:public",
            _bind(ctx, AudienceTier.PUBLIC, "public", www.public_port),
            requires=("bind:sandbox",),
            privileged=True,
            description="Bind the public listener",
        ),
    ]


def _drop_stage(ctx: ServerContext, requires: tuple) -> BootstrapStage:
    return BootstrapStage(
        "drop_privileges",
        ctx.privileges.drop_privileges,
        requires=requires,
        drops_privileges=True,
        error_type=PrivilegeDropError,
        description="Switch to the configured service account",
    )


def build_stages(ctx: ServerContext) -> List[BootstrapStage]:
    """Full startup chain, in execution order."""
    priv = ctx.config.privileges

    stages = _storage_stages(ctx)
    stages += [
        BootstrapStage("spawn:executor", _spawn(ctx, ctx.executor),
                       requires=("rebuild_permissions",), description="Local task executor"),
        BootstrapStage("spawn:test_server", _spawn(ctx, ctx.test_server),
                       description="Mock SMTP endpoint"),
        BootstrapStage("spawn:verp_server", _spawn(ctx, ctx.verp_server),
                       description="VERP bounce receiver"),
        BootstrapStage("spawn:builtin_mta", _spawn(ctx, ctx.builtin_mta),
                       description="Built-in outbound transport"),
    ]
    stages += _listener_stages(ctx)
    stages += [
        BootstrapStage("ensure_dir:files", _ensure_dir(ctx, priv.files_dir),
                       privileged=True, error_type=PrivilegeDropError,
                       description="Create the files directory"),
        BootstrapStage("ensure_dir:uploaded_files", _ensure_dir(ctx, priv.uploaded_files_dir),
                       privileged=True, error_type=PrivilegeDropError,
                       description="Create the uploads directory"),
        _drop_stage(ctx, ("bind:public", "ensure_dir:files", "ensure_dir:uploaded_files")),
        BootstrapStage("start:tzupdate", _start(ctx, ctx.tzupdate),
                       requires=("drop_privileges",), description="Timezone offset refresher"),
        BootstrapStage("spawn:importer", _spawn(ctx, ctx.importer),
                       requires=("drop_privileges",), description="List import worker"),
        BootstrapStage("spawn:feedcheck", _spawn(ctx, ctx.feedcheck),
                       requires=("drop_privileges",), description="RSS feed checker"),
        BootstrapStage("spawn:senders", _spawn(ctx, ctx.senders),
                       requires=("drop_privileges",), description="Outbound senders"),
        BootstrapStage("start:triggers", _start(ctx, ctx.triggers),
                       requires=("drop_privileges",), description="Campaign triggers"),
        BootstrapStage("start:gdpr_cleanup", _start(ctx, ctx.gdpr_cleanup),
                       requires=("drop_privileges",), description="Personal data retention cleanup"),
        BootstrapStage("spawn:postfix_bounce_server", _spawn(ctx, ctx.postfix_bounce_server),
                       requires=("drop_privileges",), description="Postfix bounce log listener"),
        BootstrapStage("init:report_processor", ctx.report_processor.init,
                       requires=("drop_privileges",), description="Fail interrupted reports"),
        BootstrapStage("mark_ready", _mark_ready(ctx),
                       requires=("init:report_processor",), description="Signal readiness"),
    ]
    return stages


def build_simplified_stages(ctx: ServerContext) -> List[BootstrapStage]:
    """
    Startup without background services, for working on the UI.

    Storage, listeners and the privilege drop are unchanged.
    """
    priv = ctx.config.privileges

    stages = _storage_stages(ctx)
    stages += _listener_stages(ctx)
    stages += [
        BootstrapStage("ensure_dir:uploaded_files", _ensure_dir(ctx, priv.uploaded_files_dir),
                       privileged=True, error_type=PrivilegeDropError,
                       description="Create the uploads directory"),
        _drop_stage(ctx, ("bind:public", "ensure_dir:uploaded_files")),
        BootstrapStage("start:tzupdate", _start(ctx, ctx.tzupdate),
                       requires=("drop_privileges",), description="Timezone offset refresher"),
        BootstrapStage("mark_ready", _mark_ready(ctx),
                       requires=("start:tzupdate",), description="Signal readiness"),
    ]
    return stages


def compose(ctx: ServerContext) -> BootstrapSequencer:
    """Sequencer for the configured startup variant."""
    stages = build_stages(ctx) if ctx.config.startup.with_services else build_simplified_stages(ctx)
    return BootstrapSequencer(stages, startup_timeout=ctx.config.startup.startup_timeout)


# =============================================================================
# ENTRY POINTS
# =============================================================================


async def start_server(ctx: ServerContext) -> BootstrapSequencer:
    """
    Run the startup chain.

    A StartupError is logged before anything is released, so a cleanup that
    stalls cannot swallow it. On any failure the started services are
    stopped and the error re-raised.
    """
    sequencer = compose(ctx)
    try:
        await sequencer.run()
    except BaseException as e:
        if isinstance(e, StartupError):
            log_startup_error(e)
        await ctx.abort()
        raise
    return sequencer


def log_startup_error(error: StartupError) -> None:
    logger.error(
        error.message,
        component=error.component,
        stage=error.stage,
        error_code=error.error_code,
        cause=repr(error.cause) if error.cause else None,
    )


async def run_server(
    config: Optional[Config] = None,
    context: Optional[ServerContext] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Start the server and serve until SIGINT/SIGTERM (or `stop_event`)."""
    config = config or (context.config if context else get_config())
    setproctitle.setproctitle(config.title)

    ctx = context or ServerContext.from_config(config)
    stop_event = stop_event or asyncio.Event()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

    await start_server(ctx)
    try:
        await stop_event.wait()
        logger.info("Shutting down", component="Service")
    finally:
        await ctx.shutdown()


def main(
    config: Optional[Config] = None,
    context: Optional[ServerContext] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> int:
    """
    Process entry point. Returns the exit status.

    A StartupError (already logged by start_server) yields 1.
    Anything else, including an unclassified bind failure, propagates.
    """
    try:
        asyncio.run(run_server(config, context, stop_event))
    except StartupError as e:
        return e.exit_code
    return 0

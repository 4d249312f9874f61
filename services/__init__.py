"""
MAILDECK - Background Services

Spawned services (handshake awaited by the bootstrap) and started services
(fire-and-forget loops).
"""

from services.base import (
    JobHandler,
    PeriodicService,
    ServiceBase,
    ServiceHandle,
    SpawnedService,
    StartDiscipline,
    TickFunction,
    WorkerService,
)
from services.network import (
    BounceReport,
    BuiltinMta,
    LineListenerService,
    PostfixBounceServer,
    SmtpEnvelope,
    SmtpSinkService,
    TcpListenerService,
    TestServer,
    VerpServer,
)
from services.workers import Executor, FeedChecker, Importer, Senders
from services.periodic import GdprCleanupService, TriggersService, TzUpdateService, timezone_offsets
from services.reports import ReportProcessor

__all__ = [
    # Contract
    "JobHandler",
    "PeriodicService",
    "ServiceBase",
    "ServiceHandle",
    "SpawnedService",
    "StartDiscipline",
    "TickFunction",
    "WorkerService",
    # Network
    "BounceReport",
    "BuiltinMta",
    "LineListenerService",
    "PostfixBounceServer",
    "SmtpEnvelope",
    "SmtpSinkService",
    "TcpListenerService",
    "TestServer",
    "VerpServer",
    # Workers
    "Executor",
    "FeedChecker",
    "Importer",
    "Senders",
    # Periodic
    "GdprCleanupService",
    "TriggersService",
    "TzUpdateService",
    "timezone_offsets",
    # Reports
    "ReportProcessor",
]

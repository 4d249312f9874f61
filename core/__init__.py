"""
MAILDECK - Core Module

Startup building blocks:
- Unified error handling (startup error taxonomy, bind error classification)
- Bootstrap sequencer (ordered, fail-fast stage list)
- Listener manager (three audience-tier web listeners)
- Privilege drop controller
- Readiness signal

The composed startup chain lives in core.bootstrap, which depends on the db
and services packages and is therefore not imported here.

Usage:
    from core import BootstrapSequencer, BootstrapStage, StartupError
    from core.bootstrap import main
"""

from core.errors import (
    BindAddressInUseError,
    BindError,
    BindPermissionError,
    ConfigError,
    ErrorContext,
    ErrorSeverity,
    FatalMigrationError,
    FatalPermissionRebuildError,
    FatalServiceStartError,
    FatalStorageError,
    MaildeckError,
    PrivilegeDropError,
    StartupError,
    StartupTimeoutError,
    UnclassifiedBindError,
    bind_label,
    classify_bind_error,
)
from core.readiness import ReadinessFlag
from core.privileges import PrivilegeController, PrivilegeState
from core.sequencer import BootstrapSequencer, BootstrapStage, StageOutcome
from core.listeners import AudienceTier, Listener, ListenerManager

__all__ = [
    # Errors
    "BindAddressInUseError",
    "BindError",
    "BindPermissionError",
    "ConfigError",
    "ErrorContext",
    "ErrorSeverity",
    "FatalMigrationError",
    "FatalPermissionRebuildError",
    "FatalServiceStartError",
    "FatalStorageError",
    "MaildeckError",
    "PrivilegeDropError",
    "StartupError",
    "StartupTimeoutError",
    "UnclassifiedBindError",
    "bind_label",
    "classify_bind_error",
    # Readiness
    "ReadinessFlag",
    # Privileges
    "PrivilegeController",
    "PrivilegeState",
    # Sequencer
    "BootstrapSequencer",
    "BootstrapStage",
    "StageOutcome",
    # Listeners
    "AudienceTier",
    "Listener",
    "ListenerManager",
]

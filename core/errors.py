"""
MAILDECK - Unified Error Handling

Error hierarchy for the bootstrap sequence.

Every failure during startup is terminal: the sequencer stops at the first
failing stage and the CLI turns a StartupError into exit code 1. The one
exception is UnclassifiedBindError, which is not a StartupError and escapes
as an ordinary uncaught exception.
"""

from __future__ import annotations

import errno
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode


class ErrorSeverity(Enum):
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    # process exits
    FATAL = "fatal"


@dataclass
class ErrorContext:
    """Where a failure happened, for structured logs."""

    operation: str
    component: str
    stage: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "component": self.component,
            "stage": self.stage,
            "metadata": self.metadata,
        }


class MaildeckError(Exception):
    """
    Base exception for all MAILDECK-specific errors.

    Provides:
    - Structured error context
    - Severity level
    - Chained exception support
    - OpenTelemetry span recording
    """

    default_severity: ErrorSeverity = ErrorSeverity.ERROR
    error_code: str = "MAILDECK_ERROR"
    component: str = "Service"

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        severity: Optional[ErrorSeverity] = None,
        cause: Optional[BaseException] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context
        self.severity = severity or self.default_severity
        self.cause = cause
        self.stage = stage
        self.timestamp = datetime.now(timezone.utc)

        self._record_to_span()

    def _record_to_span(self) -> None:
        """Record exception to current OpenTelemetry span."""
        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_status(Status(StatusCode.ERROR, self.message))
            span.record_exception(self)
            span.set_attribute("error.code", self.error_code)
            span.set_attribute("error.severity", self.severity.value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logs."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "stage": self.stage,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context.to_dict() if self.context else None,
            "cause": repr(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.stage:
            parts.append(f" (stage: {self.stage})")
        if self.cause:
            parts.append(f" [caused by: {self.cause!r}]")
        return "".join(parts)


class ConfigError(MaildeckError):
    """Configuration could not be loaded or is invalid."""

    error_code = "CONFIG_ERROR"
    default_severity = ErrorSeverity.CRITICAL
    component = "Config"


# =============================================================================
# STARTUP ERRORS (exit code 1)
# =============================================================================


class StartupError(MaildeckError):
    """A bootstrap stage failed; the process must exit without becoming ready."""

    error_code = "STARTUP_ERROR"
    default_severity = ErrorSeverity.FATAL
    exit_code: int = 1


class FatalStorageError(StartupError):
    """Storage unreachable or legacy upgrade check failed."""

    error_code = "FATAL_STORAGE_ERROR"
    component = "DB"


class FatalMigrationError(StartupError):
    """Schema migration failed."""

    error_code = "FATAL_MIGRATION_ERROR"
    component = "DB"


class FatalPermissionRebuildError(StartupError):
    """Derived authorization state could not be rebuilt."""

    error_code = "FATAL_PERMISSION_REBUILD_ERROR"
    component = "DB"


class FatalServiceStartError(StartupError):
    """A background service failed to spawn or start."""

    error_code = "FATAL_SERVICE_START_ERROR"
    component = "Service"

    def __init__(self, message: str, service_name: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.service_name = service_name


class PrivilegeDropError(StartupError):
    """Privileged directories could not be prepared or privileges could not be dropped."""

    error_code = "PRIVILEGE_DROP_ERROR"
    component = "PrivilegeHelpers"


class StartupTimeoutError(StartupError):
    """A stage did not settle within the configured startup timeout."""

    error_code = "STARTUP_TIMEOUT"
    component = "Service"

    def __init__(self, message: str, timeout_seconds: Optional[float] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds


# =============================================================================
# LISTENER BIND ERRORS
# =============================================================================


def bind_label(port: Union[int, str]) -> str:
    """Human name for a bind target: 'Pipe /run/x.sock' or 'Port 3000'."""
    return f"Pipe {port}" if isinstance(port, str) else f"Port {port}"


class BindError(StartupError):
    """A listener could not bind its address."""

    error_code = "BIND_ERROR"
    component = "Express"

    def __init__(self, message: str, port: Union[int, str], host: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.port = port
        self.host = host
        self.bind_label = bind_label(port)


class BindPermissionError(BindError):
    """Binding requires privileges the process does not hold."""

    error_code = "BIND_PERMISSION_DENIED"


class BindAddressInUseError(BindError):
    """Another socket already owns the address."""

    error_code = "BIND_ADDRESS_IN_USE"


class UnclassifiedBindError(MaildeckError):
    """
    Any other bind failure.

    Not a StartupError: this is treated as a defect and is left to propagate
    out of the event loop.
    """

    error_code = "BIND_UNCLASSIFIED"
    default_severity = ErrorSeverity.FATAL
    component = "Express"

    def __init__(self, message: str, port: Union[int, str], **kwargs: Any):
        super().__init__(message, **kwargs)
        self.port = port


_PERMISSION_ERRNOS = {errno.EACCES, errno.EPERM}


def classify_bind_error(
    error: OSError,
    port: Union[int, str],
    host: Optional[str] = None,
) -> MaildeckError:
    """Map an OS-level bind failure onto the bind error taxonomy."""
    label = bind_label(port)
    if error.errno in _PERMISSION_ERRNOS:
        return BindPermissionError(
            f"{label} requires elevated privileges", port=port, host=host, cause=error,
        )
    if error.errno == errno.EADDRINUSE:
        return BindAddressInUseError(
            f"{label} is already in use", port=port, host=host, cause=error,
        )
    return UnclassifiedBindError(
        f"{label} could not be bound: {error.strerror or error}", port=port, cause=error,
    )

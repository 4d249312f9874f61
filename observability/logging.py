"""
MAILDECK - Structured Logging

structlog on top of the standard library logging module. Every event may
carry a `component` (Service, Express, DB, PrivilegeHelpers, Executor...);
the console renderer prefixes the message with it, so startup output reads

    Express: WWW server [trusted] listening on port 3000

while JSON output keeps it as a field. Events emitted inside a bootstrap
stage carry the stage name and, when tracing is enabled, the trace and span
ids of that stage.

Usage:
    from observability.logging import setup_logging, get_logger

    setup_logging(config.logging, service_name=config.title)
    logger = get_logger("maildeck.bootstrap")
    logger.info("Port %s is already in use", 3000, component="Express")
"""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

import structlog
from opentelemetry import trace
from structlog.types import EventDict, Processor, WrappedLogger

from config import LoggingConfig

_configured: bool = False


def add_trace_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Attach the ids of the active span, if any."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def add_service(service_name: str, environment: str) -> Processor:
    def processor(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        event_dict.setdefault("environment", environment)
        return event_dict
    return processor


def prefix_component(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Console only: fold `component` into the message."""
    component = event_dict.pop("component", None)
    if component:
        event_dict["event"] = f"{component}: {event_dict.get('event', '')}"
    return event_dict


def setup_logging(
    config: Optional[LoggingConfig] = None,
    service_name: str = "maildeck",
    environment: str = "development",
    force: bool = False,
) -> None:
    """
    Configure structlog and the root logger.

    get_logger() configures defaults on first use; pass force=True to
    reconfigure afterwards (the CLI does, once the configuration is loaded).
    """
    global _configured

    if _configured and not force:
        return

    config = config or LoggingConfig()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service(service_name, environment),
        add_trace_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(prefix_component)
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configure_root(config)
    _configured = True


def _configure_root(config: LoggingConfig) -> None:
    level = getattr(logging, config.level.upper(), logging.INFO)

    # structlog has already rendered the message
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if config.log_to_file:
        config.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            config.log_file_path,
            maxBytes=config.max_file_size,
            backupCount=config.backup_count,
        ))

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)

    # uvicorn logs every listener start itself; ListenerManager reports binds
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "sqlalchemy.engine",
                 "alembic", "opentelemetry", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger bound to `name`; configures defaults on first call."""
    if not _configured:
        setup_logging()
    return structlog.get_logger(name)


def shutdown_logging() -> None:
    """Flush and close the root handlers."""
    global _configured

    for handler in logging.getLogger().handlers:
        handler.flush()
        handler.close()
    _configured = False


class LogContext:
    """
    Bind key/values to every log event emitted inside the block.

    Example:
        >>> with LogContext(stage="bind:trusted"):
        ...     logger.info("Binding listener")
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs

    def __enter__(self) -> "LogContext":
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context)

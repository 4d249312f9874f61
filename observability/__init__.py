"""
MAILDECK - Observability Package

Structured logging and startup tracing for the campaign server.

Components:
- logging: structlog over stdlib logging, component-prefixed console output
- tracing: OpenTelemetry spans around every bootstrap stage

Usage:
    from observability import setup_observability, get_logger

    setup_observability(config)
    logger = get_logger("maildeck.bootstrap")
"""
from typing import Optional

from config import Config
from .logging import LogContext, get_logger, setup_logging, shutdown_logging
from .tracing import TracingConfig, create_span, get_tracer, setup_tracing, shutdown_tracing


def setup_observability(
    config: Config,
    log_level: Optional[str] = None,
    tracing: Optional[TracingConfig] = None,
) -> None:
    """Initialize logging and tracing once the configuration is loaded."""
    log_config = config.logging
    if log_level is not None:
        log_config.level = log_level
    setup_logging(log_config, service_name=config.title, environment=config.env.value, force=True)

    setup_tracing(tracing or TracingConfig(service_name=config.title))


def shutdown_observability() -> None:
    """Flush spans and close log handlers."""
    shutdown_tracing()
    shutdown_logging()


__all__ = [
    "LogContext",
    "TracingConfig",
    "create_span",
    "get_logger",
    "get_tracer",
    "setup_logging",
    "setup_observability",
    "setup_tracing",
    "shutdown_logging",
    "shutdown_observability",
    "shutdown_tracing",
]

"""Public observability primitives: structured JSON-lines logging."""

from docker_time_machine.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    configure_structlog,
    correlation_scope,
    get_active_logging_handle,
    parse_log_level,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "LoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "get_active_logging_handle",
    "parse_log_level",
    "setup_logging",
    "shutdown_logging",
]

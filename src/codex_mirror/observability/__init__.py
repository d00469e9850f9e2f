"""Public observability primitives: structured JSON-lines logging with redaction."""

from codex_mirror.observability.logging import (
    JsonLineFormatter,
    LogRedactor,
    correlation_scope,
    default_log_redactor,
    get_correlation_context,
    reset_correlation_fields,
    set_correlation_fields,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "JsonLineFormatter",
    "LogRedactor",
    "correlation_scope",
    "default_log_redactor",
    "get_correlation_context",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_logging",
    "shutdown_logging",
]

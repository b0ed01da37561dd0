"""Core framework components for pgsizer."""

from pgsizer.core.exceptions import (
    SizerError,
    ConfigurationError,
    ValidationError,
    DetectionError,
    InsufficientResourcesError,
    WriteError,
)

from pgsizer.core.context import ExecutionContext, create_context
from pgsizer.core.output import console, Console, Verbosity
from pgsizer.core.config import AppConfig, FileConfig, EnvOverrides
from pgsizer.core.audit import (
    AuditLogger,
    AuditEvent,
    AuditEventType,
    AuditResult,
    configure_audit_logger,
    get_audit_logger,
)

__all__ = [
    # Exceptions
    "SizerError",
    "ConfigurationError",
    "ValidationError",
    "DetectionError",
    "InsufficientResourcesError",
    "WriteError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "FileConfig",
    "EnvOverrides",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "AuditResult",
    "configure_audit_logger",
    "get_audit_logger",
]

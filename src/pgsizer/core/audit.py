"""Audit trail of sizing runs and configuration writes.

Every event is one JSON object per line. A single command invocation
shares a session ID; the events of one compute or write share a
correlation ID, so a written file can be traced back to the inputs
and outputs that produced it.

The log is append-only, locked with flock while appending and rotated
by size (audit.log -> audit.1 -> audit.2 ...).
"""

import fcntl
import json
import os
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional, TextIO

from pgsizer.core.config import DEFAULT_AUDIT_LOG_PATH
from pgsizer.core.output import console


DEFAULT_MAX_SIZE_MB = 10
DEFAULT_BACKUP_COUNT = 5


class AuditEventType(Enum):
    SIZING_COMPUTE = "sizing.compute"
    PROFILE_FALLBACK = "sizing.profile_fallback"
    RESOURCES_REJECTED = "resources.rejected"
    CONFIG_WRITE = "config.write"
    CONFIG_BACKUP = "config.backup"


class AuditResult(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    BLOCKED = "blocked"
    DRY_RUN = "dry_run"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuditEvent:
    """One line of the audit log.

    session_id and correlation_id are filled in by the logger.
    """

    event_type: AuditEventType
    result: AuditResult
    target: Optional[str] = None
    parameters: dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None
    error: Optional[str] = None

    timestamp: datetime = field(default_factory=_now)
    actor_uid: int = field(default_factory=os.getuid)
    hostname: str = field(default_factory=lambda: os.uname().nodename)
    session_id: Optional[str] = None
    correlation_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "result": self.result.value,
            "target": self.target,
            "parameters": self.parameters,
            "message": self.message,
            "error": self.error,
            "actor_uid": self.actor_uid,
            "hostname": self.hostname,
            "session_id": self.session_id,
            "correlation_id": self.correlation_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class AuditLogger:
    """Appends AuditEvents to a JSON-lines file.

    A failure to write the log is shown at debug level and never fails
    the command that is being audited.
    """

    def __init__(
        self,
        log_path: Optional[Path] = None,
        max_size_mb: int = DEFAULT_MAX_SIZE_MB,
        backup_count: int = DEFAULT_BACKUP_COUNT,
        enabled: bool = True,
    ) -> None:
        self.log_path = log_path or DEFAULT_AUDIT_LOG_PATH
        self.max_size_bytes = max_size_mb * 1024 * 1024
        self.backup_count = backup_count
        self.enabled = enabled

        self.session_id = str(uuid.uuid4())
        self._correlation_ids: list[str] = []

    def log(self, event: AuditEvent) -> None:
        if not self.enabled:
            return

        event.session_id = self.session_id
        event.correlation_id = self._correlation_ids[-1] if self._correlation_ids else None

        try:
            self.log_path.parent.mkdir(mode=0o750, parents=True, exist_ok=True)
            with self._open_locked() as f:
                f.write(event.to_json() + "\n")
            if self.log_path.stat().st_size > self.max_size_bytes:
                self._rotate()
        except OSError as e:
            console.debug(f"Audit log {self.log_path} not written: {e}")

    @contextmanager
    def _open_locked(self) -> Iterator[TextIO]:
        fd = os.open(self.log_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o640)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            f = os.fdopen(fd, "a")
        except OSError:
            os.close(fd)
            raise
        with f:
            yield f
            f.flush()
            os.fsync(f.fileno())

    def _backup_path(self, n: int) -> Path:
        return self.log_path.with_suffix(f".{n}")

    def _rotate(self) -> None:
        self._backup_path(self.backup_count).unlink(missing_ok=True)
        for n in range(self.backup_count - 1, 0, -1):
            if self._backup_path(n).exists():
                self._backup_path(n).rename(self._backup_path(n + 1))
        self.log_path.rename(self._backup_path(1))
        self.log_path.touch(mode=0o640)

    @contextmanager
    def correlation(self, operation: str) -> Iterator[str]:
        """Give every event logged inside the block the same correlation ID.

        The ID is "<operation>_<8 hex chars>", e.g. "write_1f3a9c02".
        """
        correlation_id = f"{operation}_{uuid.uuid4().hex[:8]}"
        self._correlation_ids.append(correlation_id)
        try:
            yield correlation_id
        finally:
            self._correlation_ids.pop()

    def _record(self, event_type: AuditEventType, result: AuditResult, **fields: Any) -> None:
        self.log(AuditEvent(event_type=event_type, result=result, **fields))

    def log_compute(self, inputs: dict[str, Any], outputs: dict[str, Any]) -> None:
        """Sizing inputs (RAM, CPU, profiles) and the rendered settings."""
        self._record(
            AuditEventType.SIZING_COMPUTE,
            AuditResult.SUCCESS,
            parameters={"inputs": inputs, "outputs": outputs},
        )

    def log_fallback(self, kind: str, requested: str, resolved: str) -> None:
        self._record(
            AuditEventType.PROFILE_FALLBACK,
            AuditResult.SUCCESS,
            parameters={"kind": kind, "requested": requested, "resolved": resolved},
        )

    def log_rejected(self, detected_mb: int, required_mb: int) -> None:
        """Host refused by the minimum RAM policy."""
        self._record(
            AuditEventType.RESOURCES_REJECTED,
            AuditResult.BLOCKED,
            parameters={"detected_mb": detected_mb, "required_mb": required_mb},
        )

    def log_success(
        self,
        event_type: AuditEventType,
        target: str,
        message: Optional[str] = None,
    ) -> None:
        self._record(event_type, AuditResult.SUCCESS, target=target, message=message)

    def log_failure(self, event_type: AuditEventType, target: str, error: str) -> None:
        self._record(event_type, AuditResult.FAILURE, target=target, error=error)

    def log_dry_run(
        self,
        event_type: AuditEventType,
        target: str,
        message: Optional[str] = None,
    ) -> None:
        self._record(event_type, AuditResult.DRY_RUN, target=target, message=message)


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Return the process-wide audit logger, creating a default one."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def configure_audit_logger(
    log_path: Optional[Path] = None,
    enabled: bool = True,
) -> AuditLogger:
    """Replace the process-wide audit logger with one for log_path."""
    global _audit_logger
    _audit_logger = AuditLogger(log_path=log_path, enabled=enabled)
    return _audit_logger

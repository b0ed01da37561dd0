"""Error types raised around the sizing engine.

Each error carries a message, an optional hint that tells the operator
what to do next, optional detail lines, and the process exit code the
CLI uses for it (2 config, 3 validation, 4 detection, 5 resources,
6 write). The sizing engine itself never raises for numeric input.
"""

from typing import Optional


class SizerError(Exception):
    """Base class; the CLI prints message, details and hint, then exits."""

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = list(details) if details else []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(SizerError):
    """Unreadable or invalid pgsizer config file, or a bad env override."""
    exit_code = 2


class ValidationError(SizerError):
    """Rejected user input: RAM/CPU values, strict profile names, library lists."""
    exit_code = 3


class DetectionError(SizerError):
    """Resource detection failures that cannot fall back to a default."""
    exit_code = 4


class InsufficientResourcesError(SizerError):
    """Host is below the minimum resources required to run PostgreSQL.

    Raised by the caller before sizing; the engine never rejects input.
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        detected_mb: Optional[int] = None,
        required_mb: Optional[int] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if detected_mb is not None:
            details.append(f"Detected: {detected_mb}MB")
        if required_mb is not None:
            details.append(f"Required: {required_mb}MB")
        super().__init__(message, hint=hint, details=details)
        self.detected_mb = detected_mb
        self.required_mb = required_mb


class WriteError(SizerError):
    """Configuration file could not be written.

    Raised when:
    - Target directory cannot be created
    - Permission denied on target or backup file
    """
    exit_code = 6

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.path = path

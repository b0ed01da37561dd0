"""Input validation utilities.

Provides validation for:
- Resource values (RAM in MB, CPU core counts) from CLI and environment
- Profile names, including the fallback policy for unknown names
- shared_preload_libraries lists

All validators return the validated value or raise ValidationError.
"""

import re
from collections.abc import Iterable
from typing import Optional, Union

from pgsizer.core.exceptions import ValidationError


# Library names as accepted by shared_preload_libraries
LIBRARY_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")

# Upper bounds that catch unit mistakes (bytes or kB passed as MB)
MAX_MEMORY_MB = 64 * 1024 * 1024  # 64 TB
MAX_CPU_CORES = 4096


def _parse_positive_int(value: Union[int, str], label: str, unit_hint: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be an integer, got a boolean")

    if isinstance(value, str):
        stripped = value.strip()
        if not (stripped.isascii() and stripped.isdigit()):
            raise ValidationError(
                f"{label} must be an integer value{unit_hint}",
                details=[f"Provided: {value!r}"],
            )
        value = int(stripped)

    if value < 1:
        raise ValidationError(
            f"{label} must be a positive integer{unit_hint}",
            details=[f"Provided: {value}"],
        )
    return value


def validate_memory_mb(value: Union[int, str], label: str = "Memory") -> int:
    """Validate a RAM amount in megabytes.

    Accepts an int or a decimal string (as read from POSTGRES_MEMORY).
    Unit suffixes are rejected; the value is always MB.

    Raises:
        ValidationError: If not a positive integer or implausibly large
    """
    memory = _parse_positive_int(value, label, " (MB)")
    if memory > MAX_MEMORY_MB:
        raise ValidationError(
            f"{label} of {memory}MB is implausibly large",
            hint="The value is in megabytes; did you pass bytes or kB?",
        )
    return memory


def validate_cpu_cores(value: Union[int, str]) -> int:
    """Validate a CPU core count.

    Raises:
        ValidationError: If not a positive integer or above MAX_CPU_CORES
    """
    cores = _parse_positive_int(value, "CPU cores", "")
    if cores > MAX_CPU_CORES:
        raise ValidationError(
            f"CPU core count {cores} exceeds maximum ({MAX_CPU_CORES})",
        )
    return cores


def resolve_profile_name(
    value: Optional[str],
    known: Iterable[str],
    default: str,
    kind: str,
    strict: bool = False,
) -> tuple[str, bool]:
    """Resolve a profile name against the known set.

    This is the only place where the unknown-profile policy lives.
    Names are matched case-insensitively after stripping whitespace.
    An empty or missing name always resolves to the default.

    Args:
        value: Name supplied by the caller
        known: Valid profile names
        default: Name used when value is missing or unknown
        kind: Profile kind for messages ("workload", "storage")
        strict: Reject unknown names instead of substituting the default

    Returns:
        Tuple of (resolved name, whether a fallback was applied)

    Raises:
        ValidationError: If strict and the name is unknown
    """
    known_names = sorted(known)

    if value is None or not value.strip():
        return default, False

    name = value.strip().lower()
    if name in known_names:
        return name, False

    if strict:
        raise ValidationError(
            f"Unknown {kind} profile: '{value}'",
            hint=f"Valid {kind} profiles: {', '.join(known_names)}",
        )
    return default, True


def validate_library_list(value: Union[str, Iterable[str], None]) -> tuple[str, ...]:
    """Validate a shared_preload_libraries list.

    Accepts a comma-separated string or an iterable of names. Whitespace
    and empty entries are dropped; duplicates keep their first position.

    Raises:
        ValidationError: If a library name contains invalid characters
    """
    if value is None:
        return ()

    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)

    libraries: list[str] = []
    for item in items:
        name = str(item).strip().strip("'\"")
        if not name:
            continue
        if not LIBRARY_NAME_PATTERN.match(name):
            raise ValidationError(
                f"Invalid library name: '{name}'",
                hint="Library names may contain letters, digits, underscores and hyphens",
            )
        if name not in libraries:
            libraries.append(name)

    return tuple(libraries)

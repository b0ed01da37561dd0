"""Workload and storage profile tables.

Both tables are fixed for the life of the process. Lookups by name go
through `resolve_workload` / `resolve_storage`, which apply the unknown
name policy from `pgsizer.core.validation`.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from pgsizer.core.validation import resolve_profile_name


class WorkloadType(str, Enum):
    """PostgreSQL workload profiles."""

    WEB = "web"
    OLTP = "oltp"
    DW = "dw"
    MIXED = "mixed"

    @property
    def description(self) -> str:
        """Human-readable description of the workload."""
        descriptions = {
            "web": "Many short requests from web applications",
            "oltp": "High concurrency, fast transactions",
            "dw": "Data warehouse: complex queries over large datasets",
            "mixed": "Balanced workload (general purpose)",
        }
        return descriptions[self.value]


class StorageType(str, Enum):
    """Storage classes with distinct I/O cost assumptions."""

    SSD = "ssd"
    HDD = "hdd"
    SAN = "san"

    @property
    def description(self) -> str:
        """Human-readable description of the storage class."""
        descriptions = {
            "ssd": "Local SSD/NVMe, near-sequential random access",
            "hdd": "Rotational disks, expensive random I/O",
            "san": "Network storage array, high parallel I/O",
        }
        return descriptions[self.value]


@dataclass(frozen=True)
class WorkloadProfile:
    """Baseline tuning assumptions for a workload."""

    workload: WorkloadType
    base_max_connections: int
    min_wal_size_mb: int
    max_wal_size_mb: int

    @property
    def name(self) -> str:
        return self.workload.value


@dataclass(frozen=True)
class StorageProfile:
    """I/O cost assumptions for a storage class."""

    storage: StorageType
    random_page_cost: float
    io_concurrency: int
    maint_io_concurrency: int

    @property
    def name(self) -> str:
        return self.storage.value


WORKLOAD_PROFILES: Mapping[WorkloadType, WorkloadProfile] = MappingProxyType({
    WorkloadType.WEB: WorkloadProfile(WorkloadType.WEB, 200, 1024, 4096),
    WorkloadType.OLTP: WorkloadProfile(WorkloadType.OLTP, 300, 2048, 8192),
    WorkloadType.DW: WorkloadProfile(WorkloadType.DW, 100, 4096, 16384),
    WorkloadType.MIXED: WorkloadProfile(WorkloadType.MIXED, 120, 1024, 4096),
})

STORAGE_PROFILES: Mapping[StorageType, StorageProfile] = MappingProxyType({
    StorageType.SSD: StorageProfile(StorageType.SSD, 1.1, 200, 20),
    StorageType.HDD: StorageProfile(StorageType.HDD, 4.0, 2, 10),
    StorageType.SAN: StorageProfile(StorageType.SAN, 1.1, 300, 20),
})

DEFAULT_WORKLOAD = WorkloadType.MIXED
DEFAULT_STORAGE = StorageType.SSD


@dataclass(frozen=True)
class ProfileResolution:
    """Outcome of resolving a profile name."""

    requested: Optional[str]
    resolved: str
    fell_back: bool


def resolve_workload(
    name: Optional[str], strict: bool = False
) -> tuple[WorkloadProfile, ProfileResolution]:
    """Look up a workload profile by name.

    Unknown names resolve to `mixed` unless strict is set.

    Raises:
        ValidationError: If strict and the name is unknown
    """
    resolved, fell_back = resolve_profile_name(
        name,
        known=(w.value for w in WorkloadType),
        default=DEFAULT_WORKLOAD.value,
        kind="workload",
        strict=strict,
    )
    profile = WORKLOAD_PROFILES[WorkloadType(resolved)]
    return profile, ProfileResolution(name, resolved, fell_back)


def resolve_storage(
    name: Optional[str], strict: bool = False
) -> tuple[StorageProfile, ProfileResolution]:
    """Look up a storage profile by name.

    Unknown names resolve to `ssd` unless strict is set.

    Raises:
        ValidationError: If strict and the name is unknown
    """
    resolved, fell_back = resolve_profile_name(
        name,
        known=(s.value for s in StorageType),
        default=DEFAULT_STORAGE.value,
        kind="storage",
        strict=strict,
    )
    profile = STORAGE_PROFILES[StorageType(resolved)]
    return profile, ProfileResolution(name, resolved, fell_back)

"""PostgreSQL configuration sizing engine.

Converts host resources (RAM in MB, CPU cores) plus a workload and a
storage profile into a complete, deterministic set of tuning parameters.

Every calculator is a pure function of the values it depends on:

    shared_buffers        <- RAM
    max_connections       <- RAM, workload
    effective_cache_size  <- RAM, shared_buffers
    maintenance_work_mem  <- RAM, workload
    work_mem              <- RAM, max_connections, shared_buffers, workload
    wal_buffers           <- shared_buffers
    workers               <- CPU cores

`assemble_configuration` runs them in that order and returns an immutable
`ConfigurationSet`. All arithmetic is integer floor division so results
are bit-exact for the same inputs.
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from pgsizer.core.config import DEFAULT_SHARED_PRELOAD_LIBRARIES
from pgsizer.services.profiles import (
    StorageProfile,
    WorkloadProfile,
    WorkloadType,
    resolve_storage,
    resolve_workload,
)


# =============================================================================
# Bounds
# =============================================================================

SHARED_BUFFERS_MIN_MB = 64
SHARED_BUFFERS_CAP_MB = 32768

MIN_CONNECTIONS = 20

# Reserve for the OS and other services
OS_RESERVE_MB = 512
OTHER_USAGE_PCT = 20
CACHE_USABLE_PCT = 70

MAINTENANCE_WORK_MEM_MIN_MB = 32
MAINTENANCE_WORK_MEM_CAP_MB = 2048

# Per-connection backend overhead outside work_mem
CONNECTION_OVERHEAD_MB = 10
# Sort/hash operations budgeted per connection
WORK_MEM_OPS_PER_CONNECTION = 4
WORK_MEM_POOL_FLOOR_MB = 256
WORK_MEM_CAP_MB = 32

WAL_BUFFERS_MIN_MB = 1
WAL_BUFFERS_CAP_MB = 16

WORKERS_CAP = 64
WORKER_PROCESSES_MIN = 2

# (min RAM in MB, work_mem cap in MB), highest tier first.
# Only analytic workloads (dw, mixed) get caps above WORK_MEM_CAP_MB.
ANALYTIC_WORK_MEM_TIERS = ((32768, 256), (8192, 128), (2048, 64))
ANALYTIC_WORKLOADS = frozenset({WorkloadType.DW, WorkloadType.MIXED})

# Parameters PostgreSQL only reads at server start
RESTART_REQUIRED = frozenset({
    "shared_buffers",
    "wal_buffers",
    "max_connections",
    "max_worker_processes",
    "io_workers",
    "shared_preload_libraries",
})


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


# =============================================================================
# Calculators
# =============================================================================

def shared_buffers_ratio(total_ram_mb: int) -> int:
    """Percentage of RAM given to shared_buffers for this RAM tier."""
    if total_ram_mb <= 8192:
        return 25
    elif total_ram_mb <= 32768:
        return 20
    return 15


def calculate_shared_buffers(total_ram_mb: int) -> int:
    """shared_buffers in MB: tiered share of RAM, clamped to [64, 32768]."""
    value = total_ram_mb * shared_buffers_ratio(total_ram_mb) // 100
    return _clamp(value, SHARED_BUFFERS_MIN_MB, SHARED_BUFFERS_CAP_MB)


def connection_scale(total_ram_mb: int) -> int:
    """Percentage of the workload's base connections allowed at this RAM."""
    if total_ram_mb < 2048:
        return 50
    elif total_ram_mb < 4096:
        return 70
    elif total_ram_mb < 8192:
        return 85
    return 100


def calculate_max_connections(total_ram_mb: int, workload: WorkloadProfile) -> int:
    """max_connections: workload base scaled down on small hosts, minimum 20."""
    value = workload.base_max_connections * connection_scale(total_ram_mb) // 100
    return max(value, MIN_CONNECTIONS)


def calculate_effective_cache_size(total_ram_mb: int, shared_buffers_mb: int) -> int:
    """effective_cache_size in MB.

    70% of what is left after shared_buffers and the OS/services reserve
    (20% of RAM, at least 512MB), but never below 2x shared_buffers.
    """
    other_usage = max(total_ram_mb * OTHER_USAGE_PCT // 100, OS_RESERVE_MB)
    cache_avail = max(total_ram_mb - shared_buffers_mb - other_usage, 0)
    value = cache_avail * CACHE_USABLE_PCT // 100
    return max(value, shared_buffers_mb * 2)


def calculate_maintenance_work_mem(total_ram_mb: int, workload: WorkloadProfile) -> int:
    """maintenance_work_mem in MB: 1/8 of RAM for dw, 1/16 otherwise, in [32, 2048]."""
    divisor = 8 if workload.workload == WorkloadType.DW else 16
    return _clamp(total_ram_mb // divisor, MAINTENANCE_WORK_MEM_MIN_MB, MAINTENANCE_WORK_MEM_CAP_MB)


def work_mem_cap(total_ram_mb: int, workload: WorkloadProfile) -> int:
    """Upper bound for work_mem; raised with RAM for dw and mixed only."""
    if workload.workload in ANALYTIC_WORKLOADS:
        for min_ram_mb, cap in ANALYTIC_WORK_MEM_TIERS:
            if total_ram_mb >= min_ram_mb:
                return cap
    return WORK_MEM_CAP_MB


def calculate_work_mem(
    total_ram_mb: int,
    max_connections: int,
    shared_buffers_mb: int,
    workload: WorkloadProfile,
) -> int:
    """work_mem in MB.

    Memory left after shared_buffers, per-connection overhead and the OS
    reserve (at least 256MB) is split across max_connections x 4 operations.
    Result is at least 1MB and at most `work_mem_cap`.
    """
    conn_overhead = max_connections * CONNECTION_OVERHEAD_MB
    pool = total_ram_mb - shared_buffers_mb - conn_overhead - OS_RESERVE_MB
    pool = max(pool, WORK_MEM_POOL_FLOOR_MB)

    divisor = max_connections * WORK_MEM_OPS_PER_CONNECTION
    value = max(pool // divisor, 1)

    return min(value, work_mem_cap(total_ram_mb, workload))


def calculate_wal_buffers(shared_buffers_mb: int) -> int:
    """wal_buffers in MB: 3% of shared_buffers in [1, 16].

    Values strictly between 14 and 16 are rounded up to 16.
    """
    value = _clamp(shared_buffers_mb * 3 // 100, WAL_BUFFERS_MIN_MB, WAL_BUFFERS_CAP_MB)
    if 14 < value < 16:
        value = 16
    return value


@dataclass(frozen=True)
class WorkerCounts:
    """CPU-derived process counts."""

    io_workers: int
    worker_processes: int
    parallel_workers: int
    parallel_workers_per_gather: int


def calculate_workers(cpu_cores: int) -> WorkerCounts:
    """Worker process counts from the CPU core count.

    - io_workers: cores / 4 in [1, 64]
    - max_worker_processes: 1.5x cores in [2, 64]
    - max_parallel_workers: cores, bounded by max_worker_processes
    - max_parallel_workers_per_gather: cores / 2, or 0 below 4 cores
    """
    io_workers = _clamp(cpu_cores // 4, 1, WORKERS_CAP)
    worker_processes = _clamp(cpu_cores + cpu_cores // 2, WORKER_PROCESSES_MIN, WORKERS_CAP)
    parallel_workers = min(cpu_cores, worker_processes)
    per_gather = cpu_cores // 2 if cpu_cores >= 4 else 0
    return WorkerCounts(
        io_workers=io_workers,
        worker_processes=worker_processes,
        parallel_workers=parallel_workers,
        parallel_workers_per_gather=min(per_gather, parallel_workers),
    )


# =============================================================================
# Value objects
# =============================================================================

@dataclass(frozen=True)
class ResourceObservation:
    """Host facts the engine sizes from.

    The sources are informational ("manual", "cgroup-v2", "meminfo",
    "default", "nproc") and do not affect any computed value.
    """

    total_ram_mb: int
    cpu_cores: int
    ram_source: str = field(default="manual", compare=False)
    cpu_source: str = field(default="manual", compare=False)


class ParameterKind(Enum):
    """How a parameter value is rendered in postgresql.conf."""

    MEMORY = "memory"    # integer MB, rendered with an MB suffix
    COUNT = "count"      # bare integer
    DECIMAL = "decimal"  # float, e.g. 1.1 or 4.0
    STRING = "string"    # quoted in config files


@dataclass(frozen=True)
class Parameter:
    """One computed PostgreSQL setting."""

    name: str
    value: Union[int, float, str]
    kind: ParameterKind
    reason: str = field(default="", compare=False)

    @property
    def requires_restart(self) -> bool:
        """Whether a change only takes effect after a server restart."""
        return self.name in RESTART_REQUIRED

    @property
    def setting(self) -> str:
        """Value in PostgreSQL setting syntax, unquoted (e.g. "512MB")."""
        if self.kind == ParameterKind.MEMORY:
            return f"{self.value}MB"
        return str(self.value)

    @property
    def conf_value(self) -> str:
        """Value as written to a config file, quoting strings."""
        if self.kind == ParameterKind.STRING:
            escaped = str(self.value).replace("'", "''")
            return f"'{escaped}'"
        return self.setting


@dataclass(frozen=True)
class ConfigurationSet(Mapping):
    """Ordered, immutable mapping of parameter name to raw value.

    Two sets built from the same inputs compare equal and render
    identically.
    """

    parameters: tuple[Parameter, ...]
    observation: ResourceObservation
    workload: WorkloadProfile
    storage: StorageProfile
    _index: dict = field(init=False, repr=False, compare=False, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_index", {p.name: p for p in self.parameters})

    def __getitem__(self, name: str) -> Union[int, float, str]:
        return self._index[name].value

    def __iter__(self) -> Iterator[str]:
        return (p.name for p in self.parameters)

    def __len__(self) -> int:
        return len(self.parameters)

    def parameter(self, name: str) -> Parameter:
        """Full parameter record by name."""
        return self._index[name]

    def settings(self) -> dict[str, str]:
        """Name to setting string, in order."""
        return {p.name: p.setting for p in self.parameters}


# =============================================================================
# Assembly
# =============================================================================

def assemble_configuration(
    observation: ResourceObservation,
    workload: WorkloadProfile,
    storage: StorageProfile,
    shared_preload_libraries: Optional[Iterable[str]] = None,
) -> ConfigurationSet:
    """Run every calculator in dependency order.

    Each calculator receives only the upstream values it needs.

    Args:
        observation: RAM and CPU facts
        workload: Resolved workload profile
        storage: Resolved storage profile
        shared_preload_libraries: Libraries to preload; defaults to
            DEFAULT_SHARED_PRELOAD_LIBRARIES when None

    Returns:
        The complete ConfigurationSet
    """
    ram = observation.total_ram_mb
    cores = observation.cpu_cores
    wl = workload.name.upper()

    # Independent roots
    shared_buffers = calculate_shared_buffers(ram)
    max_connections = calculate_max_connections(ram, workload)

    # Dependents
    effective_cache = calculate_effective_cache_size(ram, shared_buffers)
    maintenance_work_mem = calculate_maintenance_work_mem(ram, workload)
    work_mem = calculate_work_mem(ram, max_connections, shared_buffers, workload)
    wal_buffers = calculate_wal_buffers(shared_buffers)

    workers = calculate_workers(cores)

    if shared_preload_libraries is None:
        shared_preload_libraries = DEFAULT_SHARED_PRELOAD_LIBRARIES
    libraries = ",".join(shared_preload_libraries)

    memory = ParameterKind.MEMORY
    count = ParameterKind.COUNT

    params = (
        Parameter("shared_buffers", shared_buffers, memory,
                  f"{shared_buffers_ratio(ram)}% of {ram}MB RAM"),
        Parameter("effective_cache_size", effective_cache, memory,
                  "70% of RAM left after buffers and OS, min 2x shared_buffers"),
        Parameter("maintenance_work_mem", maintenance_work_mem, memory,
                  f"1/{8 if workload.workload == WorkloadType.DW else 16} of RAM ({wl})"),
        Parameter("work_mem", work_mem, memory,
                  f"Pool split over {max_connections} x {WORK_MEM_OPS_PER_CONNECTION} operations, "
                  f"cap {work_mem_cap(ram, workload)}MB"),
        Parameter("wal_buffers", wal_buffers, memory, "3% of shared_buffers"),
        Parameter("min_wal_size", workload.min_wal_size_mb, memory, f"{wl} workload"),
        Parameter("max_wal_size", workload.max_wal_size_mb, memory, f"{wl} workload"),
        Parameter("max_connections", max_connections, count,
                  f"{workload.base_max_connections} x {connection_scale(ram)}% for {ram}MB RAM"),
        Parameter("random_page_cost", storage.random_page_cost, ParameterKind.DECIMAL,
                  f"{storage.name.upper()} storage"),
        Parameter("effective_io_concurrency", storage.io_concurrency, count,
                  f"{storage.name.upper()} storage"),
        Parameter("maintenance_io_concurrency", storage.maint_io_concurrency, count,
                  f"{storage.name.upper()} storage"),
        Parameter("io_workers", workers.io_workers, count, f"{cores} CPU cores / 4"),
        Parameter("max_worker_processes", workers.worker_processes, count,
                  f"1.5 x {cores} CPU cores"),
        Parameter("max_parallel_workers", workers.parallel_workers, count,
                  f"Match CPU core count ({cores})"),
        Parameter("max_parallel_workers_per_gather", workers.parallel_workers_per_gather, count,
                  "Half the cores, none below 4 cores"),
        Parameter("shared_preload_libraries", libraries, ParameterKind.STRING,
                  "Extensions loaded at server start"),
    )

    return ConfigurationSet(
        parameters=params,
        observation=observation,
        workload=workload,
        storage=storage,
    )


def compute_configuration(
    total_ram_mb: int,
    cpu_cores: int,
    workload_type: Optional[str] = None,
    storage_type: Optional[str] = None,
    shared_preload_libraries: Optional[Iterable[str]] = None,
    strict: bool = False,
) -> ConfigurationSet:
    """Resolve profile names and assemble the configuration.

    Unknown profile names fall back to mixed/ssd unless strict is set.

    Raises:
        ValidationError: If strict and a profile name is unknown
    """
    workload, _ = resolve_workload(workload_type, strict=strict)
    storage, _ = resolve_storage(storage_type, strict=strict)
    return assemble_configuration(
        ResourceObservation(total_ram_mb=total_ram_mb, cpu_cores=cpu_cores),
        workload,
        storage,
        shared_preload_libraries,
    )

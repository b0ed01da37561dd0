"""Host resource detection.

Provides RAM and CPU facts for the sizing engine, in the order a
containerized PostgreSQL sees them:

RAM:  manual override -> cgroup v2 memory.max -> /proc/meminfo -> 1024MB
CPU:  cgroup v2 cpu.max quota -> os.cpu_count() -> 1
"""

import os
from pathlib import Path
from typing import Optional

from pgsizer.core.exceptions import DetectionError, InsufficientResourcesError
from pgsizer.core.output import console
from pgsizer.services.sizing import ResourceObservation


DEFAULT_RAM_MB = 1024
DEFAULT_CPU_CORES = 1

CGROUP_MEMORY_MAX = Path("/sys/fs/cgroup/memory.max")
CGROUP_CPU_MAX = Path("/sys/fs/cgroup/cpu.max")
PROC_MEMINFO = Path("/proc/meminfo")


class ResourceDetector:
    """Detects RAM and CPU limits of the current host or container.

    File locations are constructor arguments so tests can point them at
    temporary files.
    """

    def __init__(
        self,
        cgroup_memory_max: Path = CGROUP_MEMORY_MAX,
        cgroup_cpu_max: Path = CGROUP_CPU_MAX,
        meminfo: Path = PROC_MEMINFO,
    ) -> None:
        self.cgroup_memory_max = cgroup_memory_max
        self.cgroup_cpu_max = cgroup_cpu_max
        self.meminfo = meminfo

    def detect(
        self,
        memory_override_mb: Optional[int] = None,
        cpu_override: Optional[int] = None,
    ) -> ResourceObservation:
        """Detect all resources, honoring already-validated overrides.

        Args:
            memory_override_mb: RAM in MB from the CLI or POSTGRES_MEMORY
            cpu_override: CPU core count from the CLI

        Returns:
            ResourceObservation with the source of each value
        """
        if memory_override_mb is not None:
            ram_mb, ram_source = memory_override_mb, "manual"
        else:
            ram_mb, ram_source = self.detect_memory()

        if cpu_override is not None:
            cpu_cores, cpu_source = cpu_override, "manual"
        else:
            cpu_cores, cpu_source = self.detect_cpu()

        console.debug(f"RAM: {ram_mb}MB ({ram_source}), CPU: {cpu_cores} cores ({cpu_source})")
        return ResourceObservation(
            total_ram_mb=ram_mb,
            cpu_cores=cpu_cores,
            ram_source=ram_source,
            cpu_source=cpu_source,
        )

    def detect_memory(self) -> tuple[int, str]:
        """Detect total RAM in MB and where it came from.

        Raises:
            DetectionError: If memory.max exists but holds no usable value
        """
        limit_mb = self._read_cgroup_memory_mb()
        if limit_mb is not None:
            return limit_mb, "cgroup-v2"

        meminfo_mb = self._read_meminfo_mb()
        if meminfo_mb is not None:
            return meminfo_mb, "meminfo"

        return DEFAULT_RAM_MB, "default"

    def detect_cpu(self) -> tuple[int, str]:
        """Detect usable CPU cores and where the count came from."""
        quota_cores = self._read_cgroup_cpu_cores()
        if quota_cores is not None:
            return quota_cores, "cgroup-v2"

        count = os.cpu_count()
        if count and count > 0:
            return count, "nproc"

        return DEFAULT_CPU_CORES, "default"

    def _read_cgroup_memory_mb(self) -> Optional[int]:
        """Read memory.max (bytes); None when unlimited or unreadable."""
        try:
            limit = self.cgroup_memory_max.read_text().strip()
        except OSError:
            return None

        if not limit or limit == "max":
            return None

        # A limit we can't read must not fall through to host RAM
        try:
            limit_mb = int(limit) // 1024 // 1024
        except ValueError as e:
            raise DetectionError(
                f"Cannot parse container memory limit in {self.cgroup_memory_max}",
                hint="Set POSTGRES_MEMORY or pass --memory to size manually",
                details=[f"Content: {limit!r}"],
            ) from e

        return limit_mb if limit_mb > 0 else None

    def _read_meminfo_mb(self) -> Optional[int]:
        """Read MemTotal (kB) from /proc/meminfo."""
        try:
            with open(self.meminfo) as f:
                for line in f:
                    if line.startswith("MemTotal:"):
                        # Format: "MemTotal:     16384000 kB"
                        total_mb = int(line.split()[1]) // 1024
                        return total_mb if total_mb > 0 else None
        except (OSError, ValueError, IndexError):
            return None
        return None

    def _read_cgroup_cpu_cores(self) -> Optional[int]:
        """Read cpu.max ("quota period"); cores = ceil(quota / period), min 1."""
        try:
            parts = self.cgroup_cpu_max.read_text().split()
        except OSError:
            return None

        if not parts or parts[0] in ("max", "0"):
            return None

        try:
            quota = int(parts[0])
            period = int(parts[1]) if len(parts) > 1 else 100000
        except ValueError:
            console.debug(f"Ignoring unparsable {self.cgroup_cpu_max}: {' '.join(parts)!r}")
            return None

        if quota <= 0 or period <= 0:
            return None

        return max(1, (quota + period - 1) // period)


def check_minimum_memory(observation: ResourceObservation, min_ram_mb: int) -> None:
    """Refuse hosts below the minimum RAM policy.

    The sizing engine sizes any positive RAM; this check belongs to the
    caller and runs before the engine.

    Raises:
        InsufficientResourcesError: If RAM is below min_ram_mb
    """
    if observation.total_ram_mb < min_ram_mb:
        raise InsufficientResourcesError(
            f"Detected {observation.total_ram_mb}MB RAM - minimum {min_ram_mb}MB required",
            detected_mb=observation.total_ram_mb,
            required_mb=min_ram_mb,
            hint=f"Set a memory limit: docker run -m {min_ram_mb}m "
            f"OR compose mem_limit: {min_ram_mb}m",
        )

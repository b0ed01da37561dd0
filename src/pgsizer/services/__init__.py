"""Sizing engine, resource detection and config writing."""

from pgsizer.services.profiles import (
    StorageProfile,
    StorageType,
    WorkloadProfile,
    WorkloadType,
    resolve_storage,
    resolve_workload,
)
from pgsizer.services.sizing import (
    ConfigurationSet,
    Parameter,
    ResourceObservation,
    assemble_configuration,
    compute_configuration,
)
from pgsizer.services.detection import ResourceDetector, check_minimum_memory
from pgsizer.services.writer import ConfigWriter, WriteResult

__all__ = [
    "StorageProfile",
    "StorageType",
    "WorkloadProfile",
    "WorkloadType",
    "resolve_storage",
    "resolve_workload",
    "ConfigurationSet",
    "Parameter",
    "ResourceObservation",
    "assemble_configuration",
    "compute_configuration",
    "ResourceDetector",
    "check_minimum_memory",
    "ConfigWriter",
    "WriteResult",
]

"""pgsizer settings: YAML file, POSTGRES_* environment, defaults.

The YAML file and the environment are modelled with pydantic; the
environment side uses pydantic-settings so the variable names match the
ones the PostgreSQL container entrypoint already reads.

Precedence, highest first: CLI option, environment variable, config file,
built-in default.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pgsizer.core.exceptions import ConfigurationError, ValidationError
from pgsizer.core.validation import validate_library_list, validate_memory_mb


# Locations
DEFAULT_CONFIG_PATH = Path("/etc/pgsizer/config.yaml")
DEFAULT_OUTPUT_PATH = Path("/etc/postgresql/conf.d/99-pgsizer.conf")
DEFAULT_AUDIT_LOG_PATH = Path("/var/log/pgsizer/audit.log")

# Preload set when the caller supplies none. Heavier libraries
# (timescaledb, pgsodium, supautils, pg_stat_monitor) are opt-in.
DEFAULT_SHARED_PRELOAD_LIBRARIES = ("pg_stat_statements", "auto_explain", "pg_cron", "pgaudit")

# Hosts below this are refused before sizing
DEFAULT_MIN_RAM_MB = 512

OUTPUT_FORMATS = ("table", "conf", "args", "json")


class SizingConfig(BaseModel):
    """Profile selection and caller-level policy."""

    workload: str = "mixed"
    storage: str = "ssd"
    shared_preload_libraries: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SHARED_PRELOAD_LIBRARIES)
    )
    strict_profiles: bool = False
    min_ram_mb: int = DEFAULT_MIN_RAM_MB

    @field_validator("workload", "storage")
    @classmethod
    def normalize_profile(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("shared_preload_libraries", mode="before")
    @classmethod
    def validate_libraries(cls, v: object) -> list[str]:
        try:
            return list(validate_library_list(v))  # type: ignore[arg-type]
        except ValidationError as e:
            raise ValueError(e.message) from e

    @field_validator("min_ram_mb")
    @classmethod
    def validate_min_ram(cls, v: int) -> int:
        if v < 1:
            raise ValueError("min_ram_mb must be a positive integer")
        return v


class OutputConfig(BaseModel):
    """Where and how the computed configuration is written."""

    path: Path = DEFAULT_OUTPUT_PATH
    format: str = "table"
    backup: bool = True

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in OUTPUT_FORMATS:
            raise ValueError(f"Output format must be one of: {list(OUTPUT_FORMATS)}")
        return v


class AuditConfig(BaseModel):
    """Audit log settings."""

    enabled: bool = True
    log_path: Path = DEFAULT_AUDIT_LOG_PATH


class FileConfig(BaseModel):
    """Root model of the YAML configuration file."""

    sizing: SizingConfig = Field(default_factory=SizingConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @classmethod
    def load(cls, path: Path) -> "FileConfig":
        """Parse and validate a YAML config file.

        Raises:
            ConfigurationError: Missing file, bad YAML or invalid values
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: pgsizer config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {path}",
            )

        try:
            return cls(**data)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration: {path}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "FileConfig":
        """Parse path if it exists, otherwise return the built-in defaults."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Render the effective file settings as YAML."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class EnvOverrides(BaseSettings):
    """Overrides read from the environment.

    Names match the container entrypoint so the same variables drive both.
    """

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    postgres_memory: Optional[str] = Field(None, alias="POSTGRES_MEMORY")
    postgres_workload_type: Optional[str] = Field(None, alias="POSTGRES_WORKLOAD_TYPE")
    postgres_storage_type: Optional[str] = Field(None, alias="POSTGRES_STORAGE_TYPE")
    postgres_shared_preload_libraries: Optional[str] = Field(
        None, alias="POSTGRES_SHARED_PRELOAD_LIBRARIES"
    )

    @property
    def memory_mb(self) -> Optional[int]:
        """Manual RAM override in MB, validated."""
        if self.postgres_memory is None or not self.postgres_memory.strip():
            return None
        return validate_memory_mb(self.postgres_memory, label="POSTGRES_MEMORY")


class AppConfig:
    """File settings plus environment overrides, as seen by commands.

    Commands read settings through this class, never from FileConfig
    or the environment directly.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[FileConfig] = None,
        env: Optional[EnvOverrides] = None,
    ) -> None:
        """Load settings.

        Args:
            config_path: YAML file (DEFAULT_CONFIG_PATH if None)
            config: Already parsed file settings; path is not read
            env: Pre-built overrides (reads the environment if None)
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config or FileConfig.load_or_default(self.config_path)
        self._env = env if env is not None else EnvOverrides()

    @property
    def config(self) -> FileConfig:
        """Get the file configuration."""
        return self._config

    @property
    def env(self) -> EnvOverrides:
        """Get the environment overrides."""
        return self._env

    @property
    def sizing(self) -> SizingConfig:
        """Shortcut to sizing config."""
        return self._config.sizing

    @property
    def output(self) -> OutputConfig:
        """Shortcut to output config."""
        return self._config.output

    @property
    def audit(self) -> AuditConfig:
        """Shortcut to audit config."""
        return self._config.audit

    @property
    def workload(self) -> str:
        """Workload name after environment override (not yet resolved)."""
        return self._env.postgres_workload_type or self.sizing.workload

    @property
    def storage(self) -> str:
        """Storage name after environment override (not yet resolved)."""
        return self._env.postgres_storage_type or self.sizing.storage

    @property
    def shared_preload_libraries(self) -> tuple[str, ...]:
        """Preload list after environment override."""
        if self._env.postgres_shared_preload_libraries:
            return validate_library_list(self._env.postgres_shared_preload_libraries)
        return tuple(self.sizing.shared_preload_libraries)


def get_example_config() -> str:
    """Commented config file written by `pgsizer config init`."""
    return """# pgsizer configuration
# Environment variables override these values:
#   POSTGRES_MEMORY, POSTGRES_WORKLOAD_TYPE, POSTGRES_STORAGE_TYPE,
#   POSTGRES_SHARED_PRELOAD_LIBRARIES

sizing:
  workload: mixed  # web, oltp, dw, mixed
  storage: ssd     # ssd, hdd, san
  shared_preload_libraries:
    - pg_stat_statements
    - auto_explain
    - pg_cron
    - pgaudit
  strict_profiles: false  # true: reject unknown workload/storage names
  min_ram_mb: 512         # refuse to size hosts below this

output:
  path: /etc/postgresql/conf.d/99-pgsizer.conf
  format: table  # table, conf, args, json (compute only)
  backup: true  # keep a timestamped copy of the previous file

audit:
  enabled: true
  log_path: /var/log/pgsizer/audit.log
"""


def init_config(path: Path, force: bool = False) -> None:
    """Write the example config to path.

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o644)

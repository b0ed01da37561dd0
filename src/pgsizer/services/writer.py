"""Rendering and writing of computed configurations.

Provides:
- postgresql.conf fragment rendering (Jinja2 template)
- `-c name=value` server argument rendering
- JSON rendering of raw values
- Atomic, backed-up, audited writes honoring dry-run
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from pgsizer import __version__
from pgsizer.core.audit import AuditEventType, AuditLogger
from pgsizer.core.context import ExecutionContext
from pgsizer.core.exceptions import WriteError
from pgsizer.core.files import AtomicFileWriter, backup_file
from pgsizer.services.sizing import ConfigurationSet, Parameter


# Section titles and the parameters they group, in file order
SECTIONS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Memory Settings", (
        "shared_buffers",
        "effective_cache_size",
        "maintenance_work_mem",
        "work_mem",
        "wal_buffers",
    )),
    ("WAL Settings", ("min_wal_size", "max_wal_size")),
    ("Connection Settings", ("max_connections",)),
    ("Storage I/O Settings", (
        "random_page_cost",
        "effective_io_concurrency",
        "maintenance_io_concurrency",
    )),
    ("Worker Settings", (
        "io_workers",
        "max_worker_processes",
        "max_parallel_workers",
        "max_parallel_workers_per_gather",
    )),
    ("Libraries", ("shared_preload_libraries",)),
)

CONF_TEMPLATE = "postgresql.auto.conf.j2"


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a write."""

    path: Path
    backup_path: Optional[Path]
    written: bool
    content: str


def _group_sections(config_set: ConfigurationSet) -> list[tuple[str, list[Parameter]]]:
    sections: list[tuple[str, list[Parameter]]] = []
    placed: set[str] = set()

    for title, names in SECTIONS:
        params = [config_set.parameter(n) for n in names if n in config_set]
        placed.update(p.name for p in params)
        if params:
            sections.append((title, params))

    leftover = [p for p in config_set.parameters if p.name not in placed]
    if leftover:
        sections.append(("Other Settings", leftover))

    return sections


class ConfigWriter:
    """Renders a ConfigurationSet and writes it to disk."""

    def __init__(self, ctx: ExecutionContext, audit: Optional[AuditLogger] = None) -> None:
        """Initialize the writer.

        Args:
            ctx: Execution context (dry-run and output flags)
            audit: Audit logger; writes are not audited if None
        """
        self.ctx = ctx
        self.audit = audit
        self._jinja_env = Environment(
            loader=PackageLoader("pgsizer", "templates"),
            autoescape=select_autoescape(),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render_conf(self, config_set: ConfigurationSet, header: bool = True) -> str:
        """Render `name = value` lines for a postgresql.conf include file.

        Args:
            config_set: Computed configuration
            header: Include the descriptive header, section banners and
                per-setting comments

        Returns:
            File content ending with a newline
        """
        template = self._jinja_env.get_template(CONF_TEMPLATE)
        content = template.render(
            version=__version__,
            header=header,
            observation=config_set.observation,
            workload=config_set.workload,
            storage=config_set.storage,
            sections=_group_sections(config_set),
        )
        return content.rstrip("\n") + "\n"

    def render_args(self, config_set: ConfigurationSet) -> list[str]:
        """Render `-c name=value` arguments for the postgres server command."""
        args: list[str] = []
        for p in config_set.parameters:
            args.extend(["-c", f"{p.name}={p.setting}"])
        return args

    def render_json(self, config_set: ConfigurationSet) -> str:
        """Render raw values plus the inputs they were computed from."""
        obs = config_set.observation
        payload = {
            "inputs": {
                "total_ram_mb": obs.total_ram_mb,
                "cpu_cores": obs.cpu_cores,
                "ram_source": obs.ram_source,
                "cpu_source": obs.cpu_source,
                "workload": config_set.workload.name,
                "storage": config_set.storage.name,
            },
            "parameters": dict(config_set.items()),
            "settings": config_set.settings(),
        }
        return json.dumps(payload, indent=2)

    def write(
        self,
        config_set: ConfigurationSet,
        path: Path,
        *,
        backup: bool = True,
        permissions: int = 0o644,
    ) -> WriteResult:
        """Write the rendered config file atomically.

        An existing file is copied to `<name>.<timestamp>.bak` first when
        backup is set. In dry-run mode nothing is touched.

        Raises:
            WriteError: If the file or its backup cannot be written
        """
        console = self.ctx.console
        content = self.render_conf(config_set)
        target = str(path)

        backup_path: Optional[Path] = None
        if backup:
            backup_path = backup_file(path, dry_run=self.ctx.dry_run)
            if backup_path is not None:
                if self.ctx.dry_run:
                    console.dry_run_msg(f"Back up {path} to {backup_path}")
                else:
                    console.verbose(f"Backed up {path} to {backup_path}")
                    self._audit_success(AuditEventType.CONFIG_BACKUP, str(backup_path))

        if self.ctx.dry_run:
            console.dry_run_msg(f"Write {len(content)} bytes to {path}")
            if self.audit:
                self.audit.log_dry_run(AuditEventType.CONFIG_WRITE, target)
            return WriteResult(path=path, backup_path=backup_path, written=False, content=content)

        try:
            with AtomicFileWriter(path, permissions=permissions).open() as f:
                f.write(content)
        except WriteError as e:
            if self.audit:
                self.audit.log_failure(AuditEventType.CONFIG_WRITE, target, e.message)
            raise

        self._audit_success(
            AuditEventType.CONFIG_WRITE,
            target,
            message=f"{len(config_set)} parameters for "
            f"{config_set.observation.total_ram_mb}MB/{config_set.observation.cpu_cores} CPUs",
        )
        return WriteResult(path=path, backup_path=backup_path, written=True, content=content)

    def _audit_success(
        self, event_type: AuditEventType, target: str, message: Optional[str] = None
    ) -> None:
        if self.audit:
            self.audit.log_success(event_type, target, message=message)

"""Main CLI entry point using Typer.

This module defines the root CLI application, its global options and
the sizing, detection and config commands.
"""

import shlex
from pathlib import Path
from typing import Optional, Annotated

import typer
from rich.console import Console
from rich.markup import escape

from pgsizer import __version__
from pgsizer.core.audit import AuditLogger, configure_audit_logger
from pgsizer.core.context import ExecutionContext, create_context
from pgsizer.core.output import console as app_console
from pgsizer.core.config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_MIN_RAM_MB,
    OUTPUT_FORMATS,
    FileConfig,
    get_example_config,
    init_config,
)
from pgsizer.core.exceptions import (
    InsufficientResourcesError,
    SizerError,
    ValidationError,
)
from pgsizer.core.validation import (
    validate_cpu_cores,
    validate_library_list,
    validate_memory_mb,
)
from pgsizer.services.detection import ResourceDetector, check_minimum_memory
from pgsizer.services.profiles import (
    DEFAULT_STORAGE,
    DEFAULT_WORKLOAD,
    STORAGE_PROFILES,
    WORKLOAD_PROFILES,
    resolve_storage,
    resolve_workload,
)
from pgsizer.services.sizing import (
    ConfigurationSet,
    ResourceObservation,
    assemble_configuration,
)
from pgsizer.services.writer import ConfigWriter


# Create the main Typer app
app = typer.Typer(
    name="pgsizer",
    help="Resource-aware PostgreSQL configuration sizing.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)

app.add_typer(config_app, name="config")


# Type aliases for common options
DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Preview changes without writing. Shows what would happen.",
        is_flag=True,
    ),
]

ForceOption = Annotated[
    bool,
    typer.Option(
        "--force",
        "-f",
        help="Overwrite an existing file.",
        is_flag=True,
    ),
]

YesOption = Annotated[
    bool,
    typer.Option(
        "--yes",
        "-y",
        help="Skip confirmation prompts.",
        is_flag=True,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option(
        "--quiet",
        "-q",
        help="Suppress non-essential output. Only show errors.",
        is_flag=True,
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]

MemoryOption = Annotated[
    Optional[int],
    typer.Option(
        "--memory",
        "-m",
        help="Total RAM in MB. Default: POSTGRES_MEMORY, then detected.",
    ),
]

CpusOption = Annotated[
    Optional[int],
    typer.Option(
        "--cpus",
        help="CPU core count. Default: detected.",
    ),
]

WorkloadOption = Annotated[
    Optional[str],
    typer.Option(
        "--workload",
        "-w",
        help="Workload profile: web, oltp, dw, mixed.",
    ),
]

StorageOption = Annotated[
    Optional[str],
    typer.Option(
        "--storage",
        "-s",
        help="Storage profile: ssd, hdd, san.",
    ),
]

PreloadOption = Annotated[
    Optional[str],
    typer.Option(
        "--preload-libraries",
        help="Comma-separated shared_preload_libraries (replaces the default list).",
    ),
]

StrictOption = Annotated[
    bool,
    typer.Option(
        "--strict",
        help="Reject unknown workload/storage names instead of using the defaults.",
        is_flag=True,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"pgsizer version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """pgsizer - Resource-aware PostgreSQL configuration sizing.

    Converts RAM, CPU count and a workload/storage profile into a
    complete set of PostgreSQL tuning parameters.

    [bold]Examples:[/bold]
        pgsizer compute --memory 4096 --cpus 4 --workload oltp
        pgsizer compute --format conf > 99-tuning.conf
        pgsizer write --output /etc/postgresql/conf.d/99-pgsizer.conf
        pgsizer detect
        pgsizer profiles
    """
    pass


def get_context(
    dry_run: bool = False,
    yes: bool = False,
    strict: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Create execution context from CLI options."""
    return create_context(
        dry_run=dry_run,
        yes=yes,
        strict=strict,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )


def handle_error(error: SizerError) -> None:
    """Handle a SizerError by printing formatted error and exiting."""
    app_console.error(escape(error.message))

    if error.details:
        for detail in error.details:
            app_console.error(f"  {escape(detail)}")

    if error.hint:
        app_console.hint(escape(error.hint))

    raise typer.Exit(error.exit_code)


# ============================================================================
# Shared steps
# ============================================================================

def _audit_logger(ctx: ExecutionContext) -> AuditLogger:
    audit_config = ctx.config.audit
    return configure_audit_logger(log_path=audit_config.log_path, enabled=audit_config.enabled)


def _observe(
    ctx: ExecutionContext,
    memory: Optional[int],
    cpus: Optional[int],
) -> ResourceObservation:
    """Resolve RAM and CPU: CLI option, then environment, then detection."""
    if memory is not None:
        memory_mb = validate_memory_mb(memory, label="--memory")
    else:
        memory_mb = ctx.config.env.memory_mb

    cpu_cores = validate_cpu_cores(cpus) if cpus is not None else None

    return ResourceDetector().detect(memory_override_mb=memory_mb, cpu_override=cpu_cores)


def _enforce_minimum(
    ctx: ExecutionContext,
    observation: ResourceObservation,
    audit: AuditLogger,
) -> None:
    min_ram_mb = ctx.config.sizing.min_ram_mb
    try:
        check_minimum_memory(observation, min_ram_mb)
    except InsufficientResourcesError:
        audit.log_rejected(observation.total_ram_mb, min_ram_mb)
        raise


def _build_configuration(
    ctx: ExecutionContext,
    observation: ResourceObservation,
    workload: Optional[str],
    storage: Optional[str],
    preload_libraries: Optional[str],
    audit: AuditLogger,
) -> ConfigurationSet:
    """Resolve profiles and libraries, then run the sizing engine.

    Raises:
        ValidationError: If strict profiles are enabled and a name is unknown
    """
    app_config = ctx.config
    strict = ctx.strict_profiles

    workload_profile, workload_res = resolve_workload(workload or app_config.workload, strict=strict)
    storage_profile, storage_res = resolve_storage(storage or app_config.storage, strict=strict)

    for kind, res in (("workload", workload_res), ("storage", storage_res)):
        if res.fell_back:
            ctx.console.warn(
                f"Unknown {kind} profile '{res.requested}', using '{res.resolved}'"
            )
            audit.log_fallback(kind, str(res.requested), res.resolved)

    if preload_libraries is not None:
        libraries = validate_library_list(preload_libraries)
    else:
        libraries = app_config.shared_preload_libraries

    config_set = assemble_configuration(observation, workload_profile, storage_profile, libraries)

    audit.log_compute(
        inputs={
            "total_ram_mb": observation.total_ram_mb,
            "cpu_cores": observation.cpu_cores,
            "ram_source": observation.ram_source,
            "cpu_source": observation.cpu_source,
            "workload": workload_profile.name,
            "storage": storage_profile.name,
        },
        outputs=config_set.settings(),
    )
    return config_set


def _display_configuration(ctx: ExecutionContext, config_set: ConfigurationSet) -> None:
    """Display resources, profiles and the parameter table."""
    console = ctx.console
    obs = config_set.observation

    console.print()
    console.print("[bold]Resources[/bold]")
    console.print(f"  RAM:        {obs.total_ram_mb} MB ({obs.ram_source})")
    console.print(f"  CPU Cores:  {obs.cpu_cores} ({obs.cpu_source})")
    console.print()
    console.print(f"[bold]Workload Profile:[/bold] {config_set.workload.name.upper()}")
    console.print(f"  {config_set.workload.workload.description}")
    console.print(f"[bold]Storage Profile:[/bold] {config_set.storage.name.upper()}")
    console.print(f"  {config_set.storage.storage.description}")
    console.print()

    console.settings_table(
        "Computed Configuration",
        ((p.name, p.setting, p.reason, p.requires_restart) for p in config_set.parameters),
    )


# ============================================================================
# Sizing commands
# ============================================================================

@app.command("compute")
def compute(
    memory: MemoryOption = None,
    cpus: CpusOption = None,
    workload: WorkloadOption = None,
    storage: StorageOption = None,
    preload_libraries: PreloadOption = None,
    output_format: Annotated[
        Optional[str],
        typer.Option(
            "--format",
            "-F",
            help="Output format: table, conf, args, json. Default: from config (table).",
        ),
    ] = None,
    strict: StrictOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Compute PostgreSQL settings and print them.

    RAM and CPU not given on the command line are taken from the
    environment (POSTGRES_MEMORY) or detected from cgroup limits and
    /proc/meminfo.

    [bold]Examples:[/bold]

        # Show the table for a 4GB, 4-core OLTP host
        pgsizer compute -m 4096 --cpus 4 -w oltp

        # Postgres server arguments for a container entrypoint
        pgsizer compute --format args

        # JSON for other tooling
        pgsizer compute --format json
    """
    ctx = get_context(strict=strict, verbose=verbose, quiet=quiet, no_color=no_color, config=config)

    try:
        app_config = ctx.config
        fmt = (output_format or app_config.output.format).strip().lower()
        if fmt not in OUTPUT_FORMATS:
            raise ValidationError(
                f"Unknown output format: '{output_format}'",
                hint=f"Valid formats: {', '.join(OUTPUT_FORMATS)}",
            )

        audit = _audit_logger(ctx)
        with audit.correlation("compute"):
            observation = _observe(ctx, memory, cpus)
            _enforce_minimum(ctx, observation, audit)
            config_set = _build_configuration(
                ctx, observation, workload, storage, preload_libraries, audit
            )

        writer = ConfigWriter(ctx, audit)
        if fmt == "table":
            _display_configuration(ctx, config_set)
        elif fmt == "conf":
            ctx.console.out(writer.render_conf(config_set).rstrip("\n"))
        elif fmt == "args":
            ctx.console.out(" ".join(shlex.quote(a) for a in writer.render_args(config_set)))
        else:
            ctx.console.out(writer.render_json(config_set))

    except SizerError as e:
        handle_error(e)


@app.command("detect")
def detect(
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Show detected RAM and CPU and where each value came from.

    POSTGRES_MEMORY, when set, is reported as a manual override.
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        observation = _observe(ctx, None, None)
        min_ram_mb = ctx.config.sizing.min_ram_mb

        ctx.console.summary("Detected Resources", {
            "RAM": f"{observation.total_ram_mb} MB ({observation.ram_source})",
            "CPU Cores": f"{observation.cpu_cores} ({observation.cpu_source})",
            "Meets minimum": observation.total_ram_mb >= min_ram_mb,
        })

        if observation.total_ram_mb < min_ram_mb:
            ctx.console.warn(
                f"{observation.total_ram_mb}MB is below the {min_ram_mb}MB minimum; "
                "compute and write will refuse this host"
            )

    except SizerError as e:
        handle_error(e)


@app.command("write")
def write(
    output: Annotated[
        Optional[Path],
        typer.Option(
            "--output",
            "-o",
            help="Target config file. Default: output.path from config.",
            dir_okay=False,
        ),
    ] = None,
    memory: MemoryOption = None,
    cpus: CpusOption = None,
    workload: WorkloadOption = None,
    storage: StorageOption = None,
    preload_libraries: PreloadOption = None,
    no_backup: Annotated[
        bool,
        typer.Option(
            "--no-backup",
            help="Do not keep a copy of the existing file.",
            is_flag=True,
        ),
    ] = False,
    strict: StrictOption = False,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Compute settings and write them to a PostgreSQL config file.

    The file is replaced atomically. An existing file is backed up to
    <name>.<timestamp>.bak unless --no-backup is given.

    Include the file from postgresql.conf (include_dir 'conf.d') or
    write it as postgresql.auto.conf. The server must be restarted for
    shared_buffers, max_connections and the worker settings to apply.

    [bold]Examples:[/bold]

        # Preview what would be written
        pgsizer write --dry-run

        # Write for a data warehouse on HDD
        pgsizer write -w dw -s hdd -o /etc/postgresql/16/main/conf.d/99-pgsizer.conf
    """
    ctx = get_context(
        dry_run=dry_run,
        yes=yes,
        strict=strict,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )

    try:
        app_config = ctx.config
        target = output or app_config.output.path
        audit = _audit_logger(ctx)

        with audit.correlation("write"):
            ctx.console.step("Detecting system resources...")
            observation = _observe(ctx, memory, cpus)
            _enforce_minimum(ctx, observation, audit)

            ctx.console.step("Calculating configuration...")
            config_set = _build_configuration(
                ctx, observation, workload, storage, preload_libraries, audit
            )

            if ctx.is_verbose:
                _display_configuration(ctx, config_set)

            if target.exists() and not ctx.dry_run:
                if not ctx.console.confirm(
                    f"Overwrite {target}?", default=False, skip_confirm=ctx.yes
                ):
                    ctx.console.warn("Operation cancelled")
                    raise typer.Exit(0)

            ctx.console.step(f"Writing {target}...")
            writer = ConfigWriter(ctx, audit)
            result = writer.write(
                config_set,
                target,
                backup=app_config.output.backup and not no_backup,
            )

        if not result.written:
            if not ctx.is_quiet:
                ctx.console.conf(result.content, title=str(target))
            return

        ctx.console.success(f"Wrote {len(config_set)} parameters to {target}")
        if not ctx.is_quiet:
            ctx.console.print()
            ctx.console.summary("Configuration Written", {
                "RAM": f"{observation.total_ram_mb} MB",
                "CPU Cores": observation.cpu_cores,
                "Workload Profile": config_set.workload.name.upper(),
                "Storage Profile": config_set.storage.name.upper(),
                "Config File": str(result.path),
                "Backup File": str(result.backup_path) if result.backup_path else "N/A",
            })
            ctx.console.hint("Restart PostgreSQL for all settings to take effect")

    except SizerError as e:
        handle_error(e)


@app.command("profiles")
def profiles(no_color: NoColorOption = False) -> None:
    """List workload and storage profiles."""
    ctx = get_context(no_color=no_color)

    ctx.console.table(
        "Workload Profiles",
        ["Name", "Base Connections", "min_wal_size", "max_wal_size", "Description"],
        [
            [
                p.name + (" (default)" if w == DEFAULT_WORKLOAD else ""),
                str(p.base_max_connections),
                f"{p.min_wal_size_mb}MB",
                f"{p.max_wal_size_mb}MB",
                w.description,
            ]
            for w, p in WORKLOAD_PROFILES.items()
        ],
    )
    ctx.console.print()
    ctx.console.table(
        "Storage Profiles",
        ["Name", "random_page_cost", "effective_io_concurrency",
         "maintenance_io_concurrency", "Description"],
        [
            [
                p.name + (" (default)" if s == DEFAULT_STORAGE else ""),
                str(p.random_page_cost),
                str(p.io_concurrency),
                str(p.maint_io_concurrency),
                s.description,
            ]
            for s, p in STORAGE_PROFILES.items()
        ],
    )


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show current configuration.

    Displays the loaded configuration and any environment overrides.
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config
        env = app_config.env

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {ctx.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print()

        ctx.console.yaml(app_config.config.to_yaml(), title="Configuration")

        ctx.console.summary("Environment overrides", {
            "POSTGRES_MEMORY": env.postgres_memory or "Not set",
            "POSTGRES_WORKLOAD_TYPE": env.postgres_workload_type or "Not set",
            "POSTGRES_STORAGE_TYPE": env.postgres_storage_type or "Not set",
            "POSTGRES_SHARED_PRELOAD_LIBRARIES": env.postgres_shared_preload_libraries or "Not set",
        })

    except SizerError as e:
        handle_error(e)


@config_app.command("init")
def config_init(
    config: ConfigOption = None,
    force: ForceOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Initialize a new configuration file.

    Creates a configuration file with defaults and comments.
    """
    ctx = get_context(no_color=no_color, config=config)
    config_path = ctx.config_path

    try:
        init_config(config_path, force=force)
        ctx.console.success(f"Configuration file created: {config_path}")
        ctx.console.info("Edit the file to customize settings, then run commands.")

    except SizerError as e:
        handle_error(e)


@config_app.command("validate")
def config_validate(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Validate configuration file.

    Checks that the configuration file exists, is valid YAML,
    and all values pass validation.
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        # Raises ConfigurationError if missing or invalid
        file_config = FileConfig.load(ctx.config_path)
        sizing = file_config.sizing
        warnings = []

        # Under strict_profiles these raise ValidationError
        for kind, resolver, name in (
            ("workload", resolve_workload, sizing.workload),
            ("storage", resolve_storage, sizing.storage),
        ):
            _, res = resolver(name, strict=sizing.strict_profiles)
            if res.fell_back:
                warnings.append(f"Unknown {kind} profile '{name}' will be replaced by '{res.resolved}'")

        if sizing.min_ram_mb < DEFAULT_MIN_RAM_MB:
            warnings.append(
                f"min_ram_mb is {sizing.min_ram_mb}; PostgreSQL may fail to start "
                f"below {DEFAULT_MIN_RAM_MB}MB"
            )

        ctx.console.success(f"Configuration is valid: {ctx.config_path}")

        if ctx.is_verbose:
            ctx.console.yaml(file_config.to_yaml())

        if warnings:
            ctx.console.print()
            for warning in warnings:
                ctx.console.warn(warning)

    except SizerError as e:
        handle_error(e)


@config_app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print example configuration file.

    Outputs a complete example configuration with comments.
    """
    ctx = get_context(no_color=no_color)
    ctx.console.out(get_example_config().rstrip("\n"))


if __name__ == "__main__":
    app()

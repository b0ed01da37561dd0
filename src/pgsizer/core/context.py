"""Per-invocation flags shared by the CLI, the writer and the console."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pgsizer.core.config import AppConfig, DEFAULT_CONFIG_PATH
from pgsizer.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Flags of the running command plus lazily loaded configuration.

    Creating a context applies verbosity, dry-run and color settings to
    the global console.
    """

    dry_run: bool = False
    yes: bool = False
    strict: bool = False
    verbosity: int = Verbosity.NORMAL
    no_color: bool = False
    config_path: Path = DEFAULT_CONFIG_PATH

    _config: Optional[AppConfig] = field(default=None, repr=False)
    _console: Console = field(default=console, repr=False)

    def __post_init__(self) -> None:
        self._console.configure(
            verbosity=self.verbosity,
            dry_run=self.dry_run,
            no_color=self.no_color,
        )

    @property
    def config(self) -> AppConfig:
        """File, environment and default settings, loaded on first use."""
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path)
        return self._config

    @property
    def console(self) -> Console:
        return self._console

    @property
    def is_verbose(self) -> bool:
        return self.verbosity >= Verbosity.VERBOSE

    @property
    def is_quiet(self) -> bool:
        return self.verbosity <= Verbosity.QUIET

    @property
    def strict_profiles(self) -> bool:
        """True if --strict was given or sizing.strict_profiles is set."""
        return self.strict or self.config.sizing.strict_profiles


def create_context(
    dry_run: bool = False,
    yes: bool = False,
    strict: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Build a context from global CLI options.

    --quiet wins over any number of -v flags; -v and -vv raise the
    verbosity to VERBOSE and DEBUG.
    """
    if quiet:
        verbosity = Verbosity.QUIET
    else:
        verbosity = min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)

    return ExecutionContext(
        dry_run=dry_run,
        yes=yes,
        strict=strict,
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
    )

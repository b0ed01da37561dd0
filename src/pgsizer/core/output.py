"""Terminal output for pgsizer, built on Rich.

Two kinds of output leave the process:

- human output: tagged status lines, the settings table, summaries
- machine output: conf/args/json text on stdout, untouched by markup

Status lines that are not results (warnings, errors, hints, debug) go to
stderr so that `pgsizer compute --format conf > 99-pgsizer.conf` writes
only settings into the file.
"""

from enum import IntEnum
from typing import Any, Iterable, Sequence

from rich import box
from rich.console import Console as RichConsole
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table


class Verbosity(IntEnum):
    """Output verbosity levels."""
    QUIET = 0    # Errors and results only
    NORMAL = 1   # Progress steps
    VERBOSE = 2  # Settings table during write
    DEBUG = 3    # Detection internals


class Console:
    """Rich console pair (stdout, stderr) with verbosity and dry-run state."""

    def __init__(self) -> None:
        self.verbosity = Verbosity.NORMAL
        self.dry_run = False
        self.no_color = False
        self._build()

    def _build(self) -> None:
        self._stdout = RichConsole(highlight=False, no_color=self.no_color or None)
        self._stderr = RichConsole(stderr=True, highlight=False, no_color=self.no_color or None)

    def configure(
        self,
        verbosity: int = 1,
        dry_run: bool = False,
        no_color: bool = False,
    ) -> None:
        """Apply the flags of the current command."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        self.dry_run = dry_run
        if no_color != self.no_color:
            self.no_color = no_color
            self._build()

    # Status lines

    def info(self, message: str) -> None:
        if self.verbosity >= Verbosity.NORMAL:
            self._stdout.print(f"[green][INFO][/green] {message}")

    def success(self, message: str) -> None:
        if self.verbosity >= Verbosity.NORMAL:
            self._stdout.print(f"[green][OK][/green] {message}")

    def step(self, message: str) -> None:
        """Progress line for a multi-step command (blue arrow)."""
        if self.verbosity >= Verbosity.NORMAL:
            self._stdout.print(f"[blue]->[/blue] {message}")

    def verbose(self, message: str) -> None:
        if self.verbosity >= Verbosity.VERBOSE:
            self._stdout.print(f"[dim]{message}[/dim]")

    def debug(self, message: str) -> None:
        if self.verbosity >= Verbosity.DEBUG:
            self._stderr.print(f"[cyan][DEBUG][/cyan] {message}")

    def warn(self, message: str) -> None:
        """Warnings are shown even with --quiet."""
        self._stderr.print(f"[yellow][WARN][/yellow] {message}")

    def error(self, message: str) -> None:
        self._stderr.print(f"[red][ERROR][/red] {message}")

    def hint(self, message: str) -> None:
        self._stderr.print(f"[cyan]Hint:[/cyan] {message}")

    def dry_run_msg(self, message: str) -> None:
        """Describe a skipped side effect; silent outside dry-run."""
        if self.dry_run:
            self._stdout.print(f"[blue][DRY-RUN][/blue] Would: {message}")

    # Results

    def print(self, message: Any = "", **kwargs: Any) -> None:
        """Print markup text or a Rich renderable."""
        self._stdout.print(message, **kwargs)

    def out(self, text: str) -> None:
        """Write machine-readable text (conf, args, json) verbatim."""
        self._stdout.out(text, highlight=False)

    def table(
        self,
        title: str,
        columns: Sequence[str],
        rows: Iterable[Sequence[str]],
        box_style: box.Box = box.ROUNDED,
    ) -> None:
        """Print a plain table of strings."""
        table = Table(title=title, box=box_style)
        for col in columns:
            table.add_column(col)
        for row in rows:
            table.add_row(*row)
        self._stdout.print(table)

    def settings_table(
        self,
        title: str,
        rows: Iterable[tuple[str, str, str, bool]],
    ) -> None:
        """Print computed settings as (name, value, reason, needs restart) rows.

        Settings that need a server restart are marked with `*` and a
        legend follows the table.
        """
        table = Table(title=title, box=box.ROUNDED, show_header=True, header_style="bold")
        table.add_column("Parameter", style="cyan", no_wrap=True)
        table.add_column("Value", style="green", no_wrap=True)
        table.add_column("Reasoning", style="dim")
        table.add_column("", width=1, justify="center")

        any_restart = False
        for name, value, reason, restart in rows:
            any_restart = any_restart or restart
            table.add_row(name, value, reason, "*" if restart else "")

        self._stdout.print(table)
        if any_restart:
            self._stdout.print("[dim]* = Requires PostgreSQL restart to take effect[/dim]")

    def conf(self, conf_text: str, title: str = "postgresql.conf") -> None:
        """Print a highlighted preview of a config file."""
        syntax = Syntax(conf_text, "ini", theme="monokai", line_numbers=False)
        self._stdout.print(Panel(syntax, title=title, border_style="green"))

    def yaml(self, yaml_text: str, title: str = "Configuration") -> None:
        syntax = Syntax(yaml_text, "yaml", theme="monokai", line_numbers=False)
        self._stdout.print(Panel(syntax, title=title, border_style="cyan"))

    def summary(self, title: str, items: dict[str, Any]) -> None:
        """Print key/value pairs in a panel; booleans render as Yes/No."""
        lines = []
        for key, value in items.items():
            if isinstance(value, bool):
                shown = "[green]Yes[/green]" if value else "[red]No[/red]"
            else:
                shown = str(value)
            lines.append(f"[bold]{key}:[/bold] {shown}")

        self._stdout.print(Panel("\n".join(lines), title=title, border_style="blue"))

    def confirm(
        self,
        message: str,
        default: bool = False,
        skip_confirm: bool = False,
    ) -> bool:
        """Ask a yes/no question.

        Args:
            message: Question to ask
            default: Answer used for an empty reply
            skip_confirm: Return True without asking (--yes)

        Returns:
            True if confirmed; False on "no", EOF or Ctrl-C
        """
        if skip_confirm:
            return True

        suffix = "[Y/n]" if default else "[y/N]"
        try:
            reply = self._stdout.input(f"{message} {escape(suffix)}: ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            return False

        if not reply:
            return default
        return reply in ("y", "yes")


# Global console instance
console = Console()

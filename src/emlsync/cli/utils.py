"""Shared CLI utilities and helpers."""

import sys
from functools import wraps
from pathlib import Path

import click
import humanize
from click import echo
from rich.console import Console
from rich.table import Table

from ..config import MAILDIR_SUBDIRS, SyncConfig, find_root, is_maildir

console = Console()
err_console = Console(stderr=True)


def err(*args, **kwargs):
    """Print to stderr."""
    print(*args, file=sys.stderr, **kwargs)


def format_interval(seconds: float | None) -> str:
    if not seconds:
        return "manual"
    return f"every {humanize.naturaldelta(seconds)}"


def config_table(config: SyncConfig, title: str = "emlsync") -> Table:
    """Summarize a configuration for display."""
    table = Table(title=title, show_header=False)
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("Maildir", str(config.maildir) if config.maildir else "[red]not set[/]")
    table.add_row("Backend", " ".join([config.backend.binary, *config.backend.args]))
    table.add_row("Protocol", config.backend.version)
    for role, subpath in sorted(config.folders.items()):
        table.add_row(f"Folder ({role})", subpath)
    table.add_row("Update command", config.update.command or "[dim]none[/]")
    table.add_row("Updates", format_interval(config.update.interval))
    return table


class ClickFrontend:
    """Terminal implementation of the controller's frontend."""

    def __init__(self, config: SyncConfig, assume_yes: bool = False):
        self.config = config
        self.assume_yes = assume_yes

    def confirm(self, message: str) -> bool:
        if self.assume_yes:
            return True
        return click.confirm(message, default=True)

    def ensure_folder_exists(self, path: Path) -> bool:
        if is_maildir(path):
            return True
        if not self.assume_yes and not click.confirm(f"{path} does not exist. Create it?", default=True):
            return False
        for sub in MAILDIR_SUBDIRS:
            (path / sub).mkdir(parents=True, exist_ok=True)
        echo(f"Created {path}")
        return True

    def show_main_view(self, doccount: int) -> None:
        table = config_table(self.config)
        table.add_row("Messages", f"{doccount:,}")
        console.print(table)

    def message(self, text: str) -> None:
        console.print(text, markup=False, highlight=False)

    def error(self, text: str) -> None:
        err_console.print(text, style="red", markup=False, highlight=False)


class ConsoleSink:
    """Echoes retrieval output to the terminal until closed."""

    def __init__(self):
        self.closed = False

    def write(self, text: str) -> int:
        if not self.closed:
            console.print(text.rstrip(), style="dim", markup=False, highlight=False)
        return len(text)

    def close(self) -> None:
        self.closed = True


# =============================================================================
# Decorators and Click helpers
# =============================================================================


def require_init(f):
    """Decorator that requires a .emlsync directory to exist."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not find_root():
            err("Not in an emlsync project. Run 'emlsync init' first.")
            sys.exit(1)
        return f(*args, **kwargs)
    return wrapper


class AliasGroup(click.Group):
    """Click Group that supports command aliases."""

    def __init__(self, *args, aliases: dict[str, str] | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.aliases = aliases or {}
        # Reverse mapping: command -> list of aliases
        self._cmd_aliases: dict[str, list[str]] = {}
        for alias, cmd in self.aliases.items():
            self._cmd_aliases.setdefault(cmd, []).append(alias)

    def get_command(self, ctx, cmd_name):
        cmd_name = self.aliases.get(cmd_name, cmd_name)
        return super().get_command(ctx, cmd_name)

    def resolve_command(self, ctx, args):
        _, cmd_name, args = super().resolve_command(ctx, args)
        cmd_name = self.aliases.get(cmd_name, cmd_name)
        return _, cmd_name, args

    def format_commands(self, ctx, formatter):
        """Write all commands with their aliases to the formatter."""
        commands = []
        for subcommand in self.list_commands(ctx):
            cmd = self.get_command(ctx, subcommand)
            if cmd is None or cmd.hidden:
                continue
            aliases = self._cmd_aliases.get(subcommand, [])
            if aliases:
                name = f"{subcommand} ({', '.join(sorted(aliases))})"
            else:
                name = subcommand
            help_text = cmd.get_short_help_str(limit=formatter.width)
            commands.append((name, help_text))

        if commands:
            with formatter.section("Commands"):
                formatter.write_dl(commands)

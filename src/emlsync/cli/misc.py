"""Miscellaneous commands: init, check, flags."""

import sys
from pathlib import Path

import click
from click import argument, echo, option, style

from ..config import (
    EMLSYNC_DIR,
    SyncConfig,
    UpdateConfig,
    get_root,
    load_config,
    save_config,
    validate_config,
)
from ..errors import ConfigurationError, human_friendly_message
from ..flags import (
    FLAG_CODES,
    INFO_SEPARATOR,
    WRITE_ONLY,
    Flag,
    decode,
    encode,
    filename_flags,
    parse_flag_names,
)

from .utils import ClickFrontend, config_table, console, err, require_init

DEFAULT_FOLDERS = {
    "sent": "/sent",
    "drafts": "/drafts",
    "trash": "/trash",
    "refile": "/archive",
}


# =============================================================================
# init
# =============================================================================


@click.command()
@option('-b', '--backend', default="mu", help="Backend server binary")
@option('-c', '--command', 'update_command', help="Mail retrieval command (e.g. 'mbsync -a')")
@option('-i', '--interval', type=float, help="Seconds between automatic updates")
@option('-m', '--maildir', type=click.Path(file_okay=False, path_type=Path), help="Maildir root")
def init(backend: str, update_command: str | None, interval: float | None, maildir: Path | None):
    """Initialize an emlsync project in the current directory.

    \b
    Examples:
      emlsync init -m ~/Maildir -c 'mbsync -a' -i 300
      emlsync init -b /usr/local/bin/mu -m ~/Mail
    """
    root = Path.cwd()
    config_path = root / EMLSYNC_DIR / "config.yaml"
    if config_path.exists():
        echo(f"Already initialized: {config_path.parent}")
        return

    config = SyncConfig(
        maildir=maildir.expanduser().resolve() if maildir else None,
        folders=dict(DEFAULT_FOLDERS),
        update=UpdateConfig(command=update_command, interval=interval),
    )
    config.backend.binary = backend
    save_config(config, root)

    echo(f"Initialized: {config_path.parent}")
    echo(f"  config.yaml   - backend, maildir, folders and update settings")
    echo()
    echo("Next steps:")
    if not maildir:
        echo("  Set 'maildir' in config.yaml")
    echo("  emlsync check")
    echo("  emlsync run")


# =============================================================================
# check
# =============================================================================


@click.command()
@require_init
@option('-y', '--yes', is_flag=True, help="Create missing folders without asking")
def check(yes: bool):
    """Validate config.yaml and show the resulting settings."""
    try:
        config = load_config(get_root())
        validate_config(config, ClickFrontend(config, assume_yes=yes).ensure_folder_exists)
    except ConfigurationError as e:
        err(human_friendly_message(e))
        sys.exit(1)
    console.print(config_table(config))
    echo(style("OK", fg="green"))


# =============================================================================
# flags
# =============================================================================


@click.group()
def flags():
    """Encode and decode Maildir flag strings."""


@flags.command('encode')
@argument('names', nargs=-1, required=True)
def encode_cmd(names: tuple[str, ...]):
    """Encode flag names into a flag string.

    \b
    Example:
      emlsync flags encode flagged seen     # SF
    """
    try:
        parsed = parse_flag_names(names)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="NAMES")
    echo(encode(parsed))


@flags.command('decode')
@argument('flag_string')
def decode_cmd(flag_string: str):
    """Decode a flag string (or a Maildir filename) into flag names.

    \b
    Examples:
      emlsync flags decode DFS
      emlsync flags decode '1700000000.123_1.host:2,RS'
    """
    if INFO_SEPARATOR in flag_string:
        flags_found = filename_flags(flag_string)
    else:
        flags_found = decode(flag_string)
    for flag in sorted(flags_found, key=lambda f: f.value):
        echo(flag.value)


@flags.command('list')
def list_cmd():
    """List all flags and their codes."""
    for flag in Flag:
        note = style("  (write-only)", fg="bright_black") if flag in WRITE_ONLY else ""
        echo(f"{FLAG_CODES[flag]}  {flag.value}{note}")

"""CLI package for emlsync.

This package organizes CLI commands into modules:
- session.py: Start a session (run) or a single update (update)
- misc.py: init, check, flags
- utils.py: Shared utilities, terminal frontend
"""

from pathlib import Path

import click
from dotenv import load_dotenv

from ..logging_cfg import setup_logging
from .utils import AliasGroup

from .misc import check, flags, init
from .session import run, update


@click.group(cls=AliasGroup, aliases={
    'c': 'check',
    'f': 'flags',
    'i': 'init',
    'r': 'run',
    'u': 'update',
})
@click.option('-d', '--debug', is_flag=True, help="Verbose logging")
@click.option('--log-file', type=click.Path(dir_okay=False, path_type=Path),
              envvar="EMLSYNC_LOG_FILE", help="Log file (default ~/.emlsync/logs/emlsync.log)")
def main(debug: bool, log_file: Path | None):
    """Keep a Maildir in sync with a mail indexing backend."""
    load_dotenv()
    setup_logging(debug=debug, log_file=log_file)


main.add_command(check)
main.add_command(flags)
main.add_command(init)
main.add_command(run)
main.add_command(update)


__all__ = [
    'main',
    'check',
    'flags',
    'init',
    'run',
    'update',
]

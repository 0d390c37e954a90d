"""Session commands: run, update."""

import asyncio
import signal
import sys

import click
from click import option

from ..config import get_root, load_config
from ..controller import SessionController
from ..errors import EmlSyncError, human_friendly_message
from ..session import SessionState

from .utils import ClickFrontend, ConsoleSink, err, require_init


async def _start(controller: SessionController) -> bool:
    """Start a session and wait for the handshake. Returns True when ready."""
    session = await controller.start_session()
    state = await session.wait_settled()
    if state is not SessionState.READY:
        await controller.wait_closed()
        return False
    return True


async def _run_session(controller: SessionController) -> int:
    if not await _start(controller):
        return 1

    loop = asyncio.get_running_loop()
    quitting: list[asyncio.Task] = []

    def request_quit():
        if not quitting or quitting[-1].done():
            quitting.append(asyncio.create_task(controller.quit_session()))

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, request_quit)
    try:
        await controller.wait_closed()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
    return 0 if controller.last_error is None else 1


async def _update_once(controller: SessionController, index_timeout: float) -> int:
    if not await _start(controller):
        return 1
    try:
        proc = await controller.update()
        if proc is None:
            return 1
        returncode = await proc.wait()
        try:
            await asyncio.wait_for(controller.index_complete.wait(), index_timeout)
        except asyncio.TimeoutError:
            err(f"Indexing did not finish within {index_timeout:g}s")
            return 1
        return 0 if returncode == 0 else 2
    finally:
        await controller.close()


def _controller(interval: float | None, yes: bool, quiet: bool) -> SessionController:
    config = load_config(get_root())
    if interval is not None:
        config.update.interval = interval
    if quiet:
        config.update.background = True
    return SessionController(
        config,
        ClickFrontend(config, assume_yes=yes),
        make_output=ConsoleSink,
    )


def _run_async(coro) -> int:
    try:
        return asyncio.run(coro)
    except EmlSyncError as e:
        err(human_friendly_message(e))
        return 1


@click.command()
@require_init
@option('-i', '--interval', type=float, help="Seconds between updates (overrides config, 0 = manual)")
@option('-q', '--quiet', is_flag=True, help="Discard retrieval output")
@option('-y', '--yes', is_flag=True, help="Don't ask for confirmation (folder creation, quit)")
def run(interval: float | None, quiet: bool, yes: bool):
    """Start a session and keep mail updated until interrupted.

    \b
    Examples:
      emlsync run                  # Use update.interval from config.yaml
      emlsync run -i 300           # Fetch and index every 5 minutes
      emlsync run -i 0             # Handshake only, no automatic updates
    """
    controller = _controller(interval, yes, quiet)
    sys.exit(_run_async(_run_session(controller)))


@click.command()
@require_init
@option('-q', '--quiet', is_flag=True, help="Discard retrieval output")
@option('-t', '--index-timeout', type=float, default=300, help="Seconds to wait for indexing")
@option('-y', '--yes', is_flag=True, help="Create missing folders without asking")
def update(quiet: bool, index_timeout: float, yes: bool):
    """Fetch mail once, re-index, and exit.

    Exits 2 if the retrieval command failed (indexing still runs).
    """
    controller = _controller(0, yes, quiet)
    sys.exit(_run_async(_update_once(controller, index_timeout)))

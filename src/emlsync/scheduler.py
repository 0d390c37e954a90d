"""Periodic retrieval + index cycles."""

import asyncio
import logging
from typing import Callable

from .errors import ConfigurationError, ProcessError
from .retrieval import RetrievalProcess, Sink

logger = logging.getLogger(__name__)


class UpdateScheduler:
    """Runs retrieval cycles on a timer, at most one at a time.

    Each cycle spawns the retrieval command; when it exits, ``indexer`` is
    called to have the backend re-index the store. A tick that finds the
    previous cycle still running is skipped.

    Args:
        command: Shell command that fetches mail.
        indexer: Called after every retrieval exit, whatever its status.
        make_output: Returns a fresh sink per cycle, or None to discard output.
        on_error: Receives ProcessError when the command cannot be spawned.
        process_factory: Builds the process for a cycle (RetrievalProcess).
    """

    def __init__(
        self,
        command: str | None,
        indexer: Callable[[], None],
        make_output: Callable[[], Sink | None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        process_factory: Callable[..., RetrievalProcess] = RetrievalProcess,
    ):
        self.command = command
        self.indexer = indexer
        self.make_output = make_output
        self.on_error = on_error
        self.process_factory = process_factory
        self.interval: float | None = None
        self.current: RetrievalProcess | None = None
        self.closed = False
        self.spawned = 0
        self.skipped = 0
        self.completed_cycles = 0
        self._timer: asyncio.Task | None = None

    @property
    def is_armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def busy(self) -> bool:
        return self.current is not None and self.current.is_running

    def enable(self, interval: float | None) -> bool:
        """Arm the timer: one cycle now, then one every ``interval`` seconds.

        A missing or zero interval leaves updates manual. Enabling an armed
        scheduler does nothing. Returns whether the timer is armed.
        """
        if self.closed:
            return False
        if not interval or interval <= 0:
            logger.info("Automatic updates disabled")
            return self.is_armed
        if self.is_armed:
            return True
        self.interval = interval
        self._timer = asyncio.create_task(self._run(interval))
        logger.info("Updating every %gs", interval)
        return True

    def cancel(self) -> None:
        """Stop the timer. A running cycle is left to finish."""
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        self.interval = None
        logger.info("Automatic updates cancelled")

    async def close(self) -> None:
        """Stop the timer and terminate any running cycle."""
        self.cancel()
        self.closed = True
        current, self.current = self.current, None
        if current is not None:
            await current.terminate()

    async def update(self) -> RetrievalProcess | None:
        """Start one cycle unless one is already running.

        Returns the started process, or None if the cycle was skipped or the
        command could not be spawned.
        """
        if self.closed:
            return None
        if self.busy:
            self.skipped += 1
            logger.info("Retrieval still running, skipping update")
            return None

        output = self._new_output()
        try:
            proc = self.process_factory(self.command, output=output)
        except ConfigurationError:
            if output is not None and not output.closed:
                output.close()
            raise
        proc.on_exit = lambda returncode: self._cycle_done(proc, returncode)
        # Claim the slot before spawning so a concurrent tick sees it busy
        self.current = proc
        try:
            await proc.start()
        except ProcessError as e:
            if self.current is proc:
                self.current = None
            logger.error("Could not start retrieval: %s", e)
            if self.on_error:
                self.on_error(e)
            return None
        except Exception:
            if self.current is proc:
                self.current = None
            raise
        if self.closed:
            # closed while spawning
            await proc.terminate()
            return None
        self.spawned += 1
        return proc

    def _new_output(self) -> Sink | None:
        return self.make_output() if self.make_output else None

    def _cycle_done(self, proc: RetrievalProcess, returncode: int) -> None:
        if self.current is proc:
            self.current = None
        if self.closed:
            logger.debug("Ignoring retrieval exit after close")
            return
        self.completed_cycles += 1
        self.indexer()

    async def _run(self, interval: float) -> None:
        while True:
            try:
                await self.update()
            except ConfigurationError as e:
                logger.error("Automatic updates stopped: %s", e)
                self._stop_on_error(e)
                return
            except Exception as e:
                logger.exception("Automatic updates stopped")
                self._stop_on_error(e)
                return
            await asyncio.sleep(interval)

    def _stop_on_error(self, exc: Exception) -> None:
        self._timer = None
        self.interval = None
        if self.on_error:
            self.on_error(exc)

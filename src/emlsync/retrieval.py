"""Running the external mail retrieval command."""

import asyncio
import logging
from enum import Enum
from typing import Callable, Protocol

from .errors import ConfigurationError, ProcessError

logger = logging.getLogger(__name__)

TERMINATE_TIMEOUT = 5.0


class Sink(Protocol):
    """Where retrieval output goes: anything with write/close/closed."""

    closed: bool

    def write(self, text: str) -> object:
        ...

    def close(self) -> None:
        ...


class ProcessState(Enum):
    SPAWNED = "spawned"
    RUNNING = "running"
    EXITED = "exited"


class RetrievalProcess:
    """One run of the retrieval command (e.g. ``mbsync -a``).

    The command goes through the shell unchanged. Its output (stdout and
    stderr) is written to ``output`` if given, otherwise discarded. When the
    process exits, with any status, ``on_exit`` is called exactly once and
    then ``output`` is closed if it is still open.

    ``completed`` is a future resolving to the exit status. It is cancelled
    instead if the process is terminated by ``terminate()``, in which case
    ``on_exit`` is not called.
    """

    def __init__(
        self,
        command: str | None,
        output: Sink | None = None,
        on_exit: Callable[[int], None] | None = None,
    ):
        if not command:
            raise ConfigurationError("No retrieval command configured (update.command)")
        self.command = command
        self.output = output
        self.on_exit = on_exit
        self.state = ProcessState.SPAWNED
        self.returncode: int | None = None
        self.completed: asyncio.Task | None = None
        self._proc: asyncio.subprocess.Process | None = None

    @property
    def is_running(self) -> bool:
        return self.state is not ProcessState.EXITED

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    async def start(self) -> "RetrievalProcess":
        """Spawn the command and return without waiting for it to finish."""
        if self._proc is not None:
            raise ProcessError("Retrieval already started")
        piped = self.output is not None
        try:
            self._proc = await asyncio.create_subprocess_shell(
                self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE if piped else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.STDOUT if piped else asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            self.state = ProcessState.EXITED
            self._release_output()
            raise ProcessError(f"{self.command!r}: {e}") from e

        self.state = ProcessState.RUNNING
        logger.info("Started retrieval %r (pid %d)", self.command, self._proc.pid)
        self.completed = asyncio.create_task(self._supervise())
        return self

    async def wait(self) -> int:
        """Wait for the process to exit and return its status."""
        if self.completed is None:
            raise ProcessError("Retrieval not started")
        return await self.completed

    async def terminate(self) -> None:
        """Stop the process without running the completion callback."""
        if self._proc is None or not self.is_running:
            return
        if self.completed is not None:
            self.completed.cancel()
        if self._proc.returncode is None:
            self._proc.terminate()
            try:
                await asyncio.wait_for(self._proc.wait(), TERMINATE_TIMEOUT)
            except asyncio.TimeoutError:
                self._proc.kill()
                await self._proc.wait()
        self.returncode = self._proc.returncode
        self.state = ProcessState.EXITED
        self._release_output()
        logger.info("Terminated retrieval %r", self.command)

    async def _supervise(self) -> int:
        assert self._proc is not None
        if self.output is not None and self._proc.stdout is not None:
            async for line in self._proc.stdout:
                self._write_output(line.decode(errors="replace"))
        returncode = await self._proc.wait()

        self.returncode = returncode
        self.state = ProcessState.EXITED
        if returncode == 0:
            logger.info("Retrieval finished")
        else:
            # on_exit runs regardless of status
            logger.warning("Retrieval exited with status %d", returncode)
        try:
            if self.on_exit:
                self.on_exit(returncode)
        except Exception:
            logger.exception("Retrieval completion handler failed")
        finally:
            self._release_output()
        return returncode

    def _write_output(self, text: str) -> None:
        if self.output is None or self.output.closed:
            return
        self.output.write(text)

    def _release_output(self) -> None:
        output, self.output = self.output, None
        if output is not None and not output.closed:
            output.close()

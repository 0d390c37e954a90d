"""Connection to the long-lived backend server process."""

import asyncio
import logging
from typing import Callable

from .errors import ProcessError, ProtocolError
from .protocol import (
    BackendErrorReply,
    IndexInfo,
    Pong,
    decode_line,
    encode_message,
    parse_pong,
    parse_reply,
    quit_request,
)

logger = logging.getLogger(__name__)

STOP_TIMEOUT = 2.0
# Longest reply line accepted
STREAM_LIMIT = 16 * 1024 * 1024


class BackendProcess:
    """Spawns the backend server and exchanges protocol messages with it.

    Replies are read on a background task and dispatched to the ``on_*``
    handlers, which the owner assigns before calling ``start()``. Handlers run
    on the event loop, one at a time.
    """

    def __init__(self, binary: str, args: list[str] | None = None, limit: int = STREAM_LIMIT):
        self.binary = binary
        self.args = list(args or [])
        self.limit = limit
        self.on_pong: Callable[[Pong], None] | None = None
        self.on_bad_pong: Callable[[ProtocolError], None] | None = None
        self.on_index: Callable[[IndexInfo], None] | None = None
        self.on_error: Callable[[BackendErrorReply], None] | None = None
        self.on_exit: Callable[[int | None], None] | None = None
        self._proc: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task] = []
        self._stopping = False

    @property
    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None and not self._stopping

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    async def start(self) -> None:
        """Launch the server. Raises ProcessError if it cannot be spawned."""
        if self._proc is not None:
            raise ProcessError("Backend already started")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.binary,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.limit,
            )
        except OSError as e:
            raise ProcessError(f"Could not start backend {self.binary!r}: {e}") from e
        logger.info("Started backend %s (pid %d)", self.binary, self._proc.pid)
        self._tasks = [
            asyncio.create_task(self._read_replies()),
            asyncio.create_task(self._read_stderr()),
        ]

    def send(self, message: dict) -> None:
        """Queue a request for the server. Does not wait for a reply."""
        if not self.is_running or self._proc.stdin is None:
            raise ProcessError("Backend is not running")
        logger.debug("-> %s", message)
        self._proc.stdin.write(encode_message(message))

    async def stop(self, timeout: float = STOP_TIMEOUT) -> None:
        """Ask the server to quit; terminate it if it does not exit in time."""
        proc = self._proc
        if proc is None or self._stopping:
            return
        self._stopping = True
        if proc.returncode is None:
            try:
                if proc.stdin is not None:
                    proc.stdin.write(encode_message(quit_request()))
                    await proc.stdin.drain()
                    proc.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass
            try:
                await asyncio.wait_for(proc.wait(), timeout)
            except asyncio.TimeoutError:
                logger.warning("Backend did not quit after %.1fs, terminating", timeout)
                proc.terminate()
                try:
                    await asyncio.wait_for(proc.wait(), timeout)
                except asyncio.TimeoutError:
                    proc.kill()
                    await proc.wait()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Backend stopped (exit %s)", proc.returncode)

    async def _read_replies(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        while True:
            try:
                line = await self._proc.stdout.readline()
            except ValueError as e:
                # line over self.limit; the reader skips past it
                logger.warning("Ignoring oversized backend reply: %s", e)
                continue
            if not line:
                break
            if line.strip():
                self._dispatch(line)
        returncode = await self._proc.wait()
        if self._stopping:
            return
        logger.warning("Backend exited unexpectedly (exit %s)", returncode)
        self._notify(self.on_exit, returncode)

    async def _read_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        while True:
            try:
                line = await self._proc.stderr.readline()
            except ValueError:
                logger.debug("backend: <oversized stderr line skipped>")
                continue
            if not line:
                break
            logger.debug("backend: %s", line.decode(errors="replace").rstrip())

    def _notify(self, handler: Callable | None, *args) -> None:
        if handler is None:
            return
        try:
            handler(*args)
        except Exception:
            logger.exception("Backend reply handler %r failed", getattr(handler, "__name__", handler))

    def _dispatch(self, line: bytes) -> None:
        try:
            data = decode_line(line)
        except ProtocolError as e:
            logger.warning("Ignoring malformed backend output: %s", e)
            return
        logger.debug("<- %s", data)

        if "pong" in data:
            try:
                pong = parse_pong(data)
            except ProtocolError as e:
                self._notify(self.on_bad_pong, e)
                return
            self._notify(self.on_pong, pong)
            return

        try:
            reply = parse_reply(data)
        except ProtocolError as e:
            logger.warning("Ignoring backend reply: %s", e)
            return
        if isinstance(reply, IndexInfo):
            self._notify(self.on_index, reply)
        elif isinstance(reply, BackendErrorReply):
            logger.error("Backend error %d: %s", reply.code, reply.message)
            self._notify(self.on_error, reply)

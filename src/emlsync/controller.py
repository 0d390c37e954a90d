"""Session lifecycle: handshake, scheduled updates, shutdown."""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Protocol

from .backend import BackendProcess
from .config import SyncConfig, validate_config
from .errors import (
    EmlSyncError,
    PreconditionError,
    ProcessError,
    ProtocolError,
    human_friendly_message,
)
from .protocol import BackendErrorReply, IndexInfo, index_request
from .retrieval import RetrievalProcess, Sink
from .scheduler import UpdateScheduler
from .session import BackendSession, SessionState

logger = logging.getLogger(__name__)


class Frontend(Protocol):
    """The interactive side: prompts, folder creation and presentation."""

    def confirm(self, message: str) -> bool:
        ...

    def ensure_folder_exists(self, path: Path) -> bool:
        ...

    def show_main_view(self, doccount: int) -> None:
        ...

    def message(self, text: str) -> None:
        ...

    def error(self, text: str) -> None:
        ...


class SessionController:
    """Owns the single backend session and everything hanging off it.

    The controller is the context object for a session: the backend process,
    the handshake state and the update scheduler all live here and are torn
    down together by ``quit_session()``/``close()``.
    """

    def __init__(
        self,
        config: SyncConfig,
        frontend: Frontend,
        backend_factory: Callable[[str, list[str]], BackendProcess] = BackendProcess,
        make_output: Callable[[], Sink | None] | None = None,
        on_index_updated: Callable[[IndexInfo], None] | None = None,
    ):
        self.config = config
        self.frontend = frontend
        self.backend_factory = backend_factory
        self.make_output = make_output
        self.on_index_updated = on_index_updated
        self.backend: BackendProcess | None = None
        self.session: BackendSession | None = None
        self.scheduler: UpdateScheduler | None = None
        self.last_error: Exception | None = None
        self.index_complete = asyncio.Event()
        self._teardown_task: asyncio.Task | None = None
        self._closed = asyncio.Event()

    @property
    def is_live(self) -> bool:
        return self.session is not None

    @property
    def is_ready(self) -> bool:
        return self.session is not None and self.session.state is SessionState.READY

    async def start_session(self) -> BackendSession:
        """Validate configuration, launch the backend and send the handshake.

        Returns once the probe is sent; the pong arrives later. Calling this
        while a session is live returns that session without a new probe or
        a second validation.

        Raises:
            ConfigurationError: Settings missing or invalid (nothing started).
            PreconditionError: The store is not usable.
            ProcessError: The backend could not be spawned.
        """
        if self.session is not None:
            logger.debug("Session already live, not starting another")
            if self.is_ready:
                self.frontend.show_main_view(self.session.doccount or 0)
            elif self.session.state is SessionState.FAILED:
                self.frontend.message("Session failed and is closing")
            else:
                self.frontend.message("Session is starting")
            return self.session
        validate_config(self.config, self.frontend.ensure_folder_exists)
        backend = self.backend_factory(self.config.backend.binary, self.config.backend.args)
        session = BackendSession(
            self.config,
            backend,
            on_ready=self._on_ready,
            on_failed=self._on_failed,
        )
        backend.on_pong = session.handle_pong
        backend.on_bad_pong = session.on_malformed
        backend.on_index = self._on_index
        backend.on_error = self._on_backend_error
        backend.on_exit = self._on_backend_exit

        # Claim the slot before the first await
        self.backend, self.session = backend, session
        self.last_error = None
        self._closed.clear()
        try:
            await backend.start()
            session.start()
        except EmlSyncError:
            await self.close()
            raise
        return session

    async def quit_session(self) -> bool:
        """Ask for confirmation, then tear the session down.

        Returns True if a session was closed. Without a live session, or when
        the user declines, nothing changes.
        """
        if self.session is None:
            return False
        if not self.frontend.confirm("Quit the mail session?"):
            logger.debug("Quit declined")
            return False
        await self.close()
        self.frontend.message("Session closed")
        return True

    async def close(self) -> None:
        """Release the scheduler, session and backend without asking."""
        scheduler, session, backend = self.scheduler, self.session, self.backend
        self.scheduler = self.session = self.backend = None
        if scheduler is not None:
            await scheduler.close()
        if session is not None:
            session.close()
        if backend is not None:
            await backend.stop()
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def update(self) -> RetrievalProcess | None:
        """Run one retrieval cycle now (manual update)."""
        if not self.is_ready or self.scheduler is None:
            raise PreconditionError("No ready session; start one first")
        return await self.scheduler.update()

    def request_index(self) -> None:
        """Ask the backend to re-index the Maildir root."""
        if self.backend is None or not self.backend.is_running:
            logger.warning("Backend not running, skipping index")
            return
        self.index_complete.clear()
        self.backend.send(index_request(
            str(self.config.maildir),
            cleanup=self.config.index.cleanup,
            lazy_check=self.config.index.lazy_check,
        ))

    # --- callbacks ---

    def _on_ready(self, doccount: int) -> None:
        self.frontend.message(f"Mail backend ready ({doccount:,} messages)")
        self.frontend.show_main_view(doccount)
        self.scheduler = UpdateScheduler(
            self.config.update.command,
            indexer=self.request_index,
            make_output=None if self.config.update.background else self.make_output,
            on_error=self._on_update_error,
        )
        self.scheduler.enable(self.config.update.interval)

    def _on_failed(self, exc: Exception) -> None:
        self.last_error = exc
        self.frontend.error(human_friendly_message(exc))
        self._schedule_close()

    def _on_update_error(self, exc: Exception) -> None:
        self.frontend.error(human_friendly_message(exc))

    def _on_index(self, info: IndexInfo) -> None:
        if not info.complete:
            logger.debug("Indexing: %d checked, %d updated", info.checked, info.updated)
            return
        self.frontend.message(
            f"Indexing complete: {info.checked:,} checked, {info.updated:,} updated, "
            f"{info.cleaned_up:,} cleaned up"
        )
        self.index_complete.set()
        if info.updated and self.on_index_updated:
            self.on_index_updated(info)

    def _on_backend_error(self, reply: BackendErrorReply) -> None:
        self.frontend.error(f"Backend error {reply.code}: {reply.message}")

    def _on_backend_exit(self, returncode: int | None) -> None:
        session = self.session
        if session is None:
            return
        exc = ProcessError(f"Backend exited unexpectedly (status {returncode})")
        if session.state is SessionState.AWAITING_PONG:
            # on_failed closes the session
            session.fail(ProtocolError(str(exc)))
            return
        self.last_error = exc
        self.frontend.error(human_friendly_message(exc))
        self._schedule_close()

    def _schedule_close(self) -> None:
        if self._teardown_task is None or self._teardown_task.done():
            self._teardown_task = asyncio.create_task(self.close())

"""Startup handshake with the backend."""

import asyncio
import logging
from enum import Enum
from typing import Callable, Protocol

from .config import SyncConfig, is_mail_store
from .errors import (
    HandshakeTimeoutError,
    PreconditionError,
    ProtocolError,
    ProtocolMismatchError,
)
from .protocol import Pong, ping_request

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    AWAITING_PONG = "awaiting-pong"
    READY = "ready"
    FAILED = "failed"


class Backend(Protocol):
    """What a session needs from the backend connection."""

    def send(self, message: dict) -> None:
        ...


class BackendSession:
    """Handshake and compatibility state for one backend connection.

    ``start()`` sends a ping and moves to AWAITING_PONG. The pong moves the
    session to READY when its version equals ``config.backend.version`` and
    to FAILED otherwise. A session is started at most once; replies that
    arrive after the session settled or was closed are ignored.
    """

    def __init__(
        self,
        config: SyncConfig,
        backend: Backend,
        on_ready: Callable[[int], None] | None = None,
        on_failed: Callable[[Exception], None] | None = None,
    ):
        self.config = config
        self.backend = backend
        self.on_ready = on_ready
        self.on_failed = on_failed
        self.state = SessionState.IDLE
        self.expected_version = config.backend.version
        self.version: str | None = None
        self.doccount: int | None = None
        self.error: Exception | None = None
        self.closed = False
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._settled = asyncio.Event()

    @property
    def is_active(self) -> bool:
        """True once started, until closed."""
        return self.state is not SessionState.IDLE and not self.closed

    def start(self) -> None:
        """Validate the store and send the liveness probe."""
        if self.state is not SessionState.IDLE or self.closed:
            raise PreconditionError("A backend session is already active")
        if not self.config.backend.binary:
            raise PreconditionError("No backend binary configured")
        if self.config.maildir is None:
            raise PreconditionError("No Maildir root configured")
        if not is_mail_store(self.config.maildir):
            raise PreconditionError(f"{self.config.maildir} is not a valid mail store")

        self.backend.send(ping_request())
        self.state = SessionState.AWAITING_PONG
        logger.debug("Sent ping, awaiting pong")

        timeout = self.config.handshake_timeout
        if timeout:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("No event loop, handshake timeout disabled")
            else:
                self._timeout_handle = loop.call_later(timeout, self._on_timeout, timeout)

    def on_pong(self, version: str, doccount: int) -> None:
        """Handle the backend's reply to the probe."""
        if self.closed or self.state is not SessionState.AWAITING_PONG:
            logger.debug("Ignoring pong in state %s", self.state.value)
            return
        self._cancel_timeout()
        self.version = version
        self.doccount = doccount

        if version != self.expected_version:
            self.fail(ProtocolMismatchError(self.expected_version, version))
            return

        self.state = SessionState.READY
        self._settled.set()
        logger.info("Backend ready: version %s, %d messages", version, doccount)
        if self.on_ready:
            self.on_ready(doccount)

    def handle_pong(self, pong: Pong) -> None:
        self.on_pong(pong.version, pong.doccount)

    def on_malformed(self, exc: ProtocolError) -> None:
        """Handle a pong that could not be parsed."""
        if self.closed or self.state is not SessionState.AWAITING_PONG:
            return
        self.fail(exc)

    def fail(self, exc: Exception) -> None:
        """Move to FAILED. Only a pending handshake can fail."""
        if self.closed or self.state is not SessionState.AWAITING_PONG:
            return
        self._cancel_timeout()
        self.state = SessionState.FAILED
        self.error = exc
        self._settled.set()
        logger.error("Handshake failed: %s", exc)
        if self.on_failed:
            self.on_failed(exc)

    def close(self) -> None:
        """Detach from the backend; later replies become no-ops."""
        self._cancel_timeout()
        self.closed = True
        self._settled.set()

    async def wait_settled(self) -> SessionState:
        """Wait until the handshake succeeds, fails, or the session is closed."""
        await self._settled.wait()
        return self.state

    def _on_timeout(self, timeout: float) -> None:
        self._timeout_handle = None
        self.fail(HandshakeTimeoutError(timeout))

    def _cancel_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

"""Keep a Maildir in sync with a mail indexing backend."""

from .controller import Frontend, SessionController
from .errors import (
    ConfigurationError,
    EmlSyncError,
    PreconditionError,
    ProcessError,
    ProtocolError,
    ProtocolMismatchError,
)
from .flags import Flag, decode, encode
from .retrieval import ProcessState, RetrievalProcess
from .scheduler import UpdateScheduler
from .session import BackendSession, SessionState

__all__ = [
    "BackendSession",
    "ConfigurationError",
    "EmlSyncError",
    "Flag",
    "Frontend",
    "PreconditionError",
    "ProcessError",
    "ProcessState",
    "ProtocolError",
    "ProtocolMismatchError",
    "RetrievalProcess",
    "SessionController",
    "SessionState",
    "UpdateScheduler",
    "decode",
    "encode",
]

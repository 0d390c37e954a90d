"""
Error hierarchy for emlsync.

Configuration and protocol errors are raised synchronously to the caller.
Errors that happen on completion callbacks (subprocess spawn/exit, late
backend replies) are logged and reported to the frontend instead.
"""


class EmlSyncError(Exception):
    """Base class for all emlsync errors."""
    pass


class ConfigurationError(EmlSyncError):
    """A required setting is missing or invalid."""
    pass


class PreconditionError(EmlSyncError):
    """An operation was attempted in a state that does not allow it."""
    pass


class ProtocolError(EmlSyncError):
    """The backend sent a reply that could not be understood."""
    pass


class ProtocolMismatchError(ProtocolError):
    """The backend speaks a different protocol version than we require."""

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Backend protocol version {received!r} does not match "
            f"required version {expected!r}"
        )


class HandshakeTimeoutError(ProtocolError):
    """The backend did not answer the liveness probe in time."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"No reply from backend after {timeout:g}s")


class ProcessError(EmlSyncError):
    """A subprocess could not be spawned."""
    pass


def human_friendly_message(exc: Exception) -> str:
    """Convert an exception to a message suitable for the user."""
    error_msg = str(exc)

    if isinstance(exc, ProtocolMismatchError):
        return (
            f"The mail backend reports version {exc.received}, but version "
            f"{exc.expected} is required. Install a matching backend or "
            "update backend.version in config.yaml."
        )
    elif isinstance(exc, HandshakeTimeoutError):
        return (
            f"The mail backend did not respond within {exc.timeout:g} seconds. "
            "Check that backend.binary points to a working server."
        )
    elif isinstance(exc, ProtocolError):
        return f"The mail backend sent an unexpected reply: {error_msg}"
    elif isinstance(exc, ConfigurationError):
        return f"Configuration problem: {error_msg}"
    elif isinstance(exc, PreconditionError):
        return error_msg or "The operation is not possible right now."
    elif isinstance(exc, ProcessError):
        return f"A mail subprocess failed: {error_msg}"
    elif isinstance(exc, FileNotFoundError):
        return f"A required file could not be found: {error_msg}"
    elif isinstance(exc, PermissionError):
        return f"Permission denied: {error_msg}"
    else:
        return f"An error occurred: {error_msg or type(exc).__name__}"

"""Backend wire protocol: newline-delimited JSON objects.

Requests are ``{"cmd": ...}`` objects. Replies are one of::

    {"pong": "mu", "props": {"version": "1.12", "doccount": 4711}}
    {"info": "index", "status": "complete", "checked": 10, "updated": 2, "cleaned-up": 0}
    {"error": 1, "message": "..."}
"""

import json
from dataclasses import dataclass

from .errors import ProtocolError


@dataclass
class Pong:
    """Reply to the liveness probe."""
    server: str
    version: str
    doccount: int


@dataclass
class IndexInfo:
    """Progress report for an index run."""
    status: str  # 'running' or 'complete'
    checked: int = 0
    updated: int = 0
    cleaned_up: int = 0

    @property
    def complete(self) -> bool:
        return self.status == "complete"


@dataclass
class BackendErrorReply:
    code: int
    message: str


Reply = Pong | IndexInfo | BackendErrorReply


def ping_request() -> dict:
    return {"cmd": "ping"}


def index_request(path: str, cleanup: bool = True, lazy_check: bool = False) -> dict:
    return {"cmd": "index", "path": path, "cleanup": cleanup, "lazy-check": lazy_check}


def quit_request() -> dict:
    return {"cmd": "quit"}


def encode_message(message: dict) -> bytes:
    """Serialize a message as one line."""
    return json.dumps(message, separators=(",", ":")).encode() + b"\n"


def decode_line(line: bytes | str) -> dict:
    """Parse one line into a JSON object, raising ProtocolError otherwise."""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Not JSON: {line.strip()[:80]!r}") from e
    if not isinstance(data, dict):
        raise ProtocolError(f"Expected an object, got {type(data).__name__}")
    return data


def _non_negative_int(value, name: str) -> int:
    # bool is an int subclass but never a valid count
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ProtocolError(f"{name} must be a non-negative integer, got {value!r}")
    return value


def parse_pong(data: dict) -> Pong:
    """Validate a pong reply. It must carry exactly a version and a document count."""
    props = data.get("props")
    if not isinstance(props, dict):
        raise ProtocolError("pong without props")
    version = props.get("version")
    if not isinstance(version, str) or not version:
        raise ProtocolError(f"pong with invalid version {version!r}")
    doccount = _non_negative_int(props.get("doccount"), "doccount")
    return Pong(server=str(data.get("pong")), version=version, doccount=doccount)


def parse_reply(data: dict) -> Reply:
    """Classify a decoded reply object."""
    if "pong" in data:
        return parse_pong(data)
    if data.get("info") == "index":
        return IndexInfo(
            status=str(data.get("status", "running")),
            checked=_non_negative_int(data.get("checked", 0), "checked"),
            updated=_non_negative_int(data.get("updated", 0), "updated"),
            cleaned_up=_non_negative_int(data.get("cleaned-up", 0), "cleaned-up"),
        )
    if "error" in data:
        code = data.get("error")
        return BackendErrorReply(
            code=code if isinstance(code, int) else -1,
            message=str(data.get("message", "")),
        )
    raise ProtocolError(f"Unknown reply: {sorted(data)}")

"""Shared fixtures."""

import sys
from pathlib import Path

import pytest

from emlsync.config import BackendConfig, SyncConfig, UpdateConfig

FAKE_BACKEND = Path(__file__).parent / "fake_backend.py"
FOLDERS = {"sent": "/sent", "drafts": "/drafts", "trash": "/trash"}


def make_maildir(path: Path) -> Path:
    for sub in ("cur", "new", "tmp"):
        (path / sub).mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def maildir(tmp_path):
    """A Maildir root with inbox, sent, drafts and trash folders."""
    root = tmp_path / "Maildir"
    for name in ("inbox", "sent", "drafts", "trash"):
        make_maildir(root / name)
    return root


@pytest.fixture
def config(maildir):
    """Config pointing at the fake backend and the maildir fixture."""
    return SyncConfig(
        maildir=maildir,
        backend=BackendConfig(binary=sys.executable, args=[str(FAKE_BACKEND)]),
        folders=dict(FOLDERS),
        update=UpdateConfig(command="echo fetched"),
        handshake_timeout=5,
    )


class FakeFrontend:
    """Records everything the controller shows or asks."""

    def __init__(self, answer: bool = True, create_folders: bool = True):
        self.answer = answer
        self.create_folders = create_folders
        self.confirmations: list[str] = []
        self.folders_checked: list[Path] = []
        self.main_views: list[int] = []
        self.messages: list[str] = []
        self.errors: list[str] = []

    def confirm(self, message: str) -> bool:
        self.confirmations.append(message)
        return self.answer

    def ensure_folder_exists(self, path: Path) -> bool:
        self.folders_checked.append(path)
        if not self.create_folders:
            return False
        make_maildir(path)
        return True

    def show_main_view(self, doccount: int) -> None:
        self.main_views.append(doccount)

    def message(self, text: str) -> None:
        self.messages.append(text)

    def error(self, text: str) -> None:
        self.errors.append(text)


class FakeBackend:
    """In-memory backend connection: records requests, replies on demand."""

    instances: list["FakeBackend"] = []

    def __init__(self, binary: str, args: list[str] | None = None):
        self.binary = binary
        self.args = list(args or [])
        self.sent: list[dict] = []
        self.started = False
        self.stopped = False
        self.on_pong = None
        self.on_bad_pong = None
        self.on_index = None
        self.on_error = None
        self.on_exit = None
        FakeBackend.instances.append(self)

    @property
    def is_running(self) -> bool:
        return self.started and not self.stopped

    async def start(self) -> None:
        self.started = True

    def send(self, message: dict) -> None:
        self.sent.append(message)

    async def stop(self) -> None:
        self.stopped = True

    def commands(self) -> list[str]:
        return [m["cmd"] for m in self.sent]


@pytest.fixture
def frontend():
    return FakeFrontend()


@pytest.fixture
def fake_backend_factory():
    FakeBackend.instances = []
    return FakeBackend

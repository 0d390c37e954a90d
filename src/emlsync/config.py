"""Configuration via .emlsync/config.yaml."""

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import yaml

from .errors import ConfigurationError

EMLSYNC_DIR = ".emlsync"
CONFIG_FILE = "config.yaml"

DEFAULT_BACKEND = "mu"
DEFAULT_BACKEND_ARGS = ["server"]
PROTOCOL_VERSION = "1.12"
DEFAULT_HANDSHAKE_TIMEOUT = 30.0

# Folder roles that must exist inside the Maildir root
REQUIRED_FOLDERS = ("sent", "drafts", "trash")
MAILDIR_SUBDIRS = ("cur", "new", "tmp")


@dataclass
class BackendConfig:
    """How to launch the backend server, and which protocol it must speak."""
    binary: str = DEFAULT_BACKEND
    args: list[str] = field(default_factory=lambda: list(DEFAULT_BACKEND_ARGS))
    version: str = PROTOCOL_VERSION


@dataclass
class UpdateConfig:
    """Mail retrieval settings."""
    command: str | None = None
    interval: float | None = None  # seconds; None/0 = manual updates only
    background: bool = True  # discard command output


@dataclass
class IndexConfig:
    cleanup: bool = True
    lazy_check: bool = False


@dataclass
class SyncConfig:
    """Top-level emlsync configuration."""
    maildir: Path | None = None
    backend: BackendConfig = field(default_factory=BackendConfig)
    folders: dict[str, str] = field(default_factory=dict)  # role -> "/subpath"
    update: UpdateConfig = field(default_factory=UpdateConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    handshake_timeout: float | None = DEFAULT_HANDSHAKE_TIMEOUT

    def folder_path(self, role: str) -> Path | None:
        """Absolute path of a folder role, or None if not configured."""
        subpath = self.folders.get(role)
        if not subpath or self.maildir is None:
            return None
        return self.maildir / subpath.lstrip("/")


def find_root(start: Path | None = None) -> Path | None:
    """Find project root (directory containing .emlsync/).

    First checks EMLSYNC_ROOT environment variable, then walks up from start/cwd.
    """
    env_root = os.environ.get("EMLSYNC_ROOT")
    if env_root:
        env_path = Path(env_root).resolve()
        if (env_path / EMLSYNC_DIR).is_dir():
            return env_path

    path = (start or Path.cwd()).resolve()
    while path != path.parent:
        if (path / EMLSYNC_DIR).is_dir():
            return path
        path = path.parent
    return None


def get_root(require: bool = True) -> Path:
    """Get project root, raising if not found and require=True."""
    root = find_root()
    if not root and require:
        raise ConfigurationError(
            "Not in an emlsync project. Run 'emlsync init' first."
        )
    return root or Path.cwd()


def get_config_path(root: Path | None = None) -> Path:
    """Get path to config.yaml."""
    root = root or get_root()
    return root / EMLSYNC_DIR / CONFIG_FILE


def _optional_float(value, name: str) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None


def config_from_dict(data: dict) -> SyncConfig:
    """Build a SyncConfig from parsed YAML."""
    if not isinstance(data, dict):
        raise ConfigurationError("config.yaml must contain a mapping")

    backend_data = data.get("backend") or {}
    update_data = data.get("update") or {}
    index_data = data.get("index") or {}

    args = backend_data.get("args", DEFAULT_BACKEND_ARGS)
    if isinstance(args, str):
        args = args.split()

    maildir = data.get("maildir")
    config = SyncConfig(
        maildir=Path(maildir).expanduser() if maildir else None,
        backend=BackendConfig(
            binary=backend_data.get("binary", DEFAULT_BACKEND),
            args=list(args),
            version=str(backend_data.get("version", PROTOCOL_VERSION)),
        ),
        folders={str(k): str(v) for k, v in (data.get("folders") or {}).items()},
        update=UpdateConfig(
            command=update_data.get("command"),
            interval=_optional_float(update_data.get("interval"), "update.interval"),
            background=bool(update_data.get("background", True)),
        ),
        index=IndexConfig(
            cleanup=bool(index_data.get("cleanup", True)),
            lazy_check=bool(index_data.get("lazy_check", False)),
        ),
        handshake_timeout=_optional_float(
            data.get("handshake_timeout", DEFAULT_HANDSHAKE_TIMEOUT),
            "handshake_timeout",
        ),
    )
    return config


def config_to_dict(config: SyncConfig) -> dict:
    """Serialize a SyncConfig for config.yaml."""
    data: dict = {}
    if config.maildir is not None:
        data["maildir"] = str(config.maildir)
    data["backend"] = {
        "binary": config.backend.binary,
        "args": list(config.backend.args),
        "version": config.backend.version,
    }
    if config.folders:
        data["folders"] = dict(config.folders)
    update = {"background": config.update.background}
    if config.update.command:
        update["command"] = config.update.command
    if config.update.interval:
        update["interval"] = config.update.interval
    data["update"] = update
    data["index"] = {
        "cleanup": config.index.cleanup,
        "lazy_check": config.index.lazy_check,
    }
    data["handshake_timeout"] = config.handshake_timeout
    return data


def apply_env(config: SyncConfig) -> SyncConfig:
    """Apply EMLSYNC_* environment overrides."""
    maildir = os.environ.get("EMLSYNC_MAILDIR")
    if maildir:
        config.maildir = Path(maildir).expanduser()
    backend = os.environ.get("EMLSYNC_BACKEND")
    if backend:
        config.backend.binary = backend
    command = os.environ.get("EMLSYNC_UPDATE_COMMAND")
    if command:
        config.update.command = command
    return config


def load_config(root: Path | None = None) -> SyncConfig:
    """Load config from config.yaml, with environment overrides applied."""
    config_path = get_config_path(root)
    if not config_path.exists():
        return apply_env(SyncConfig())

    with open(config_path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    return apply_env(config_from_dict(data))


def save_config(config: SyncConfig, root: Path | None = None) -> None:
    """Save config to config.yaml."""
    config_path = get_config_path(root)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        yaml.dump(config_to_dict(config), f, default_flow_style=False, sort_keys=False)


# --- Validation ---


def resolve_binary(binary: str) -> Path | None:
    """Resolve a backend binary name or path to an executable, or None."""
    if os.sep in binary:
        path = Path(binary).expanduser()
        return path if path.is_file() and os.access(path, os.X_OK) else None
    found = shutil.which(binary)
    return Path(found) if found else None


def is_maildir(path: Path) -> bool:
    """True if path has the cur/new/tmp subdirectories of a Maildir."""
    return all((path / sub).is_dir() for sub in MAILDIR_SUBDIRS)


def is_mail_store(path: Path, depth: int = 3) -> bool:
    """True if path is a directory holding a Maildir (itself or a folder up to `depth` levels down)."""
    if not path.is_dir():
        return False
    for level in range(depth + 1):
        pattern = "/".join(["*"] * level + ["cur"])
        if any(is_maildir(cur.parent) for cur in path.glob(pattern)):
            return True
    return False


def validate_config(
    config: SyncConfig,
    ensure_folder: Callable[[Path], bool] | None = None,
) -> None:
    """Check every setting a session needs, raising ConfigurationError.

    Missing folders are passed to ``ensure_folder``, which may create them and
    return True; without it, or when it returns False, the folder is an error.
    """
    if not config.backend.binary:
        raise ConfigurationError("backend.binary is not set")
    if resolve_binary(config.backend.binary) is None:
        raise ConfigurationError(
            f"Backend binary {config.backend.binary!r} not found or not executable"
        )

    if config.maildir is None:
        raise ConfigurationError("maildir is not set")
    if not config.maildir.is_dir():
        raise ConfigurationError(f"Maildir root {config.maildir} does not exist")

    for role in REQUIRED_FOLDERS:
        if not config.folders.get(role):
            raise ConfigurationError(f"folders.{role} is not set")

    for role, subpath in sorted(config.folders.items()):
        if not subpath.startswith("/"):
            raise ConfigurationError(
                f"folders.{role} must start with '/', got {subpath!r}"
            )
        path = config.folder_path(role)
        if path is not None and not is_maildir(path):
            if ensure_folder is None or not ensure_folder(path):
                raise ConfigurationError(f"Folder {path} ({role}) does not exist")

    if config.update.interval is not None and config.update.interval < 0:
        raise ConfigurationError("update.interval must not be negative")
    if config.update.interval and not config.update.command:
        raise ConfigurationError("update.interval is set but update.command is not")
    if config.handshake_timeout is not None and config.handshake_timeout < 0:
        raise ConfigurationError("handshake_timeout must not be negative")

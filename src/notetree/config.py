"""NoteTreeConfig: project-local config for a note tree.

Default layout (all relative to the directory holding notetree.toml):

    notetree.toml         # config (git-tracked)
    .env                  # optional: NOTETREE_ROOT override
    notes/                # the store root: the default group
        todo.md
        Work/             # group "Work"
            plan.md
            Meetings/     # group "Work/Meetings"

notetree.toml example:

    [store]
    root = "notes"
    extension = ".md"
    ignore_hidden = true

    [watcher]
    backend = "auto"          # auto | inotify | poll
    stability_window = 1.5    # seconds of quiet before a change batch is reported
    poll_interval = 0.5

    [logging]
    level = "INFO"
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_CONFIG_FILENAME = "notetree.toml"
_DEFAULT_ROOT = "notes"
_DEFAULT_EXTENSION = ".md"
_ROOT_ENV = "NOTETREE_ROOT"
_BACKENDS = ("auto", "inotify", "poll")


@dataclass
class StoreConfig:
    extension: str = _DEFAULT_EXTENSION
    ignore_hidden: bool = True


@dataclass
class WatcherConfig:
    backend: str = "auto"
    stability_window: float = 1.5
    poll_interval: float = 0.5


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class NoteTreeConfig:
    """Resolved configuration for a note tree."""

    root: Path                      # directory that contains notetree.toml
    notes_dir: Path = field(default_factory=Path)
    store: StoreConfig = field(default_factory=StoreConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def ensure_dirs(self) -> None:
        self.notes_dir.mkdir(parents=True, exist_ok=True)


def _load_env(root: Path) -> dict[str, str]:
    """Parse a simple KEY=VALUE .env file."""
    env_file = root / ".env"
    if not env_file.exists():
        return {}
    env: dict[str, str] = {}
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            env[k.strip()] = v.strip().strip('"').strip("'")
    return env


def _extension(value: Any) -> str:
    ext = str(value or _DEFAULT_EXTENSION).strip()
    return ext if ext.startswith(".") else "." + ext


def load_config(root: Path | str | None = None) -> NoteTreeConfig:
    """Load notetree.toml from root (or search upward from cwd if root is None)."""
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            raw = tomllib.load(f)

    env = _load_env(root_path)

    store_section = raw.get("store", {})
    watch_section = raw.get("watcher", {})
    log_section = raw.get("logging", {})

    # Process environment beats .env beats notetree.toml
    notes_rel = os.environ.get(_ROOT_ENV) or env.get(_ROOT_ENV) or store_section.get("root", _DEFAULT_ROOT)
    notes_dir = Path(notes_rel).expanduser()
    if not notes_dir.is_absolute():
        notes_dir = root_path / notes_dir

    backend = str(watch_section.get("backend", "auto"))
    if backend not in _BACKENDS:
        msg = f"{config_path}: watcher.backend must be one of {', '.join(_BACKENDS)}, got {backend!r}"
        raise ValueError(msg)

    return NoteTreeConfig(
        root=root_path,
        notes_dir=notes_dir,
        store=StoreConfig(
            extension=_extension(store_section.get("extension")),
            ignore_hidden=bool(store_section.get("ignore_hidden", True)),
        ),
        watcher=WatcherConfig(
            backend=backend,
            stability_window=float(watch_section.get("stability_window", 1.5)),
            poll_interval=float(watch_section.get("poll_interval", 0.5)),
        ),
        logging=LoggingConfig(
            level=str(log_section.get("level", "INFO")).upper(),
        ),
    )


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for notetree.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def init_config(root: Path, notes_dir: str | None = None) -> Path:
    """Write a default notetree.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"notetree.toml already exists at {config_path}"
        raise FileExistsError(msg)

    content = f"""\
[store]
root = "{notes_dir or _DEFAULT_ROOT}"
# extension = ".md"
# ignore_hidden = true     # skip dot-files and dot-directories

# [watcher]
# backend = "auto"         # auto | inotify | poll
# stability_window = 1.5   # seconds of quiet before a change batch is reported
# poll_interval = 0.5      # poll backend only

# [logging]
# level = "INFO"
"""
    config_path.write_text(content)
    return config_path

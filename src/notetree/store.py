"""NoteStore: the file-backed note tree.

NoteStore is the public API:
    store = NoteStore("/path/to/notes")
    store.create_group("Work/Meetings")
    res = store.create_note("standup", "Work/Meetings", "notes...")
    link = store.add_asset(res.unwrap(), "chart.png", png_bytes).unwrap()   # ".assets/chart.png"
    store.move_group("Work/Meetings", "Archive")
    result = store.scan()

    sub = store.on_change(lambda events: refresh(store.scan()))
    store.start_watching()

Every operation returns a Result; nothing raises across this boundary. The
file system is the only state: there is no cached tree to keep in sync, a
consumer re-scans whenever it is told something changed. Collision checks
are check-then-act against a directory other processes may be writing to.
"""

from __future__ import annotations

import base64
import binascii
import functools
import logging
import os
import re
import shutil
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import unquote

from notetree.errors import ErrorKind, Result, StoreError
from notetree.models import ASSETS_DIR, DEFAULT_GROUP, ChangeEvent, Group, Note, NoteDocument, ScanResult
from notetree.paths import (
    group_dir,
    is_same_or_descendant,
    join_group,
    normalize_group_path,
    note_file_name,
    relative_group_path,
    resolve_group_dir,
    resolve_note_path,
    split_group,
    validate_name,
)
from notetree.scanner import build_tree, scan
from notetree.watcher import ChangeWatcher

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from notetree.config import NoteTreeConfig

logger = logging.getLogger("notetree.store")

NoteRef = Note | Path | str
T = TypeVar("T")

_DATA_URL_RE = re.compile(r"^data:([^,]*);base64,(.*)$", re.DOTALL)
_ASSET_REF_RE = re.compile(r"\.assets/([^\s)\]>\"'#?]+)")


def _operation(func: Callable[..., Result[T]]) -> Callable[..., Result[T]]:
    """Turn StoreError/OSError raised inside an operation into a failed Result."""

    @functools.wraps(func)
    def wrapper(self: NoteStore, *args: Any, **kwargs: Any) -> Result[T]:
        try:
            return func(self, *args, **kwargs)
        except StoreError as exc:
            err = exc
        except OSError as exc:
            err = StoreError.from_os_error(exc)
        except UnicodeDecodeError as exc:
            err = StoreError(ErrorKind.IO_FAILURE, f"not valid UTF-8: {exc.reason}")
        if err.kind is ErrorKind.IO_FAILURE:
            logger.warning("%s failed: %s", func.__name__, err)
        else:
            logger.info("%s refused: %s", func.__name__, err)
        return Result.from_error(err)

    return wrapper


class Subscription:
    """Handle returned by NoteStore.on_change."""

    def __init__(self, store: NoteStore, callback: Callable[[list[ChangeEvent]], None]) -> None:
        self._store = store
        self.callback = callback

    @property
    def active(self) -> bool:
        return self in self._store._subscribers

    def cancel(self) -> None:
        self._store._unsubscribe(self)


class NoteStore:
    """Directory-backed note tree: files are notes, directories are groups."""

    def __init__(
        self,
        root: Path | str,
        *,
        extension: str = ".md",
        ignore_hidden: bool = True,
        stability_window: float = 1.5,
        watch_backend: str = "auto",
        poll_interval: float = 0.5,
    ) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.extension = extension if extension.startswith(".") else "." + extension
        self.ignore_hidden = ignore_hidden
        self.stability_window = stability_window
        self.watch_backend = watch_backend
        self.poll_interval = poll_interval
        self._subscribers: list[Subscription] = []
        self._lock = threading.Lock()
        self._watcher: ChangeWatcher | None = None

    @classmethod
    def from_config(cls, cfg: NoteTreeConfig) -> NoteStore:
        return cls(
            cfg.notes_dir,
            extension=cfg.store.extension,
            ignore_hidden=cfg.store.ignore_hidden,
            stability_window=cfg.watcher.stability_window,
            watch_backend=cfg.watcher.backend,
            poll_interval=cfg.watcher.poll_interval,
        )

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def resolve_group_dir(self, group_path: str | None) -> Path:
        """Physical directory of a group, creating it if needed. Raises StoreError."""
        return resolve_group_dir(self.root, group_path)

    def relative_group_path(self, path: Path | str) -> str:
        """Logical group path of a directory under the root. Raises StoreError."""
        return relative_group_path(self.root, path)

    def _note_path(self, note: NoteRef) -> Path:
        if isinstance(note, Note):
            note = note.path
        return resolve_note_path(self.root, note)

    def _note_name(self, path: Path) -> str:
        if path.name.lower().endswith(self.extension.lower()):
            return path.name[: -len(self.extension)]
        return path.stem

    def _note_at(self, path: Path) -> Note:
        st = path.stat()
        return Note(
            path=path,
            name=self._note_name(path),
            group=relative_group_path(self.root, path.parent),
            modified=datetime.fromtimestamp(st.st_mtime, tz=UTC),
        )

    def _existing_note(self, note: NoteRef) -> Path:
        path = self._note_path(note)
        if not path.is_file():
            raise StoreError(ErrorKind.NOT_FOUND, "Note not found", path)
        return path

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def scan(self) -> ScanResult:
        """Full re-read of the root."""
        return scan(self.root, self.extension, ignore_hidden=self.ignore_hidden)

    def tree(self) -> list[Group]:
        """Group forest from a fresh scan, default group first."""
        return build_tree(self.scan())

    @_operation
    def read_note(self, note: NoteRef) -> Result[NoteDocument]:
        path = self._existing_note(note)
        return Result.success(NoteDocument.parse(path.read_text(encoding="utf-8")))

    # ------------------------------------------------------------------
    # Write: notes
    # ------------------------------------------------------------------

    @_operation
    def create_note(self, name: str, group: str | None = DEFAULT_GROUP, content: str = "") -> Result[Note]:
        """Create a note file in group, creating the group directories as needed."""
        file_name = note_file_name(name, self.extension)
        directory = self.resolve_group_dir(group)
        path = directory / file_name
        try:
            with path.open("x", encoding="utf-8", newline="") as f:
                f.write(content or "")
        except FileExistsError:
            return Result.failure(ErrorKind.NAME_COLLISION, f"Note already exists: {file_name}", path)
        logger.info("note created: %s", path)
        return Result.success(self._note_at(path))

    @_operation
    def write_note(self, note: NoteRef, content: str) -> Result[Note]:
        """Replace the content of an existing note (temp file + rename)."""
        path = self._existing_note(note)
        tmp = path.with_name(f".{path.name}.tmp")
        try:
            with tmp.open("w", encoding="utf-8", newline="") as f:
                f.write(content)
            tmp.replace(path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
        return Result.success(self._note_at(path))

    @_operation
    def rename_note(self, note: NoteRef, new_name: str) -> Result[Path]:
        """Rename a note within its directory. Returns the new path."""
        src = self._existing_note(note)
        dst = src.with_name(note_file_name(new_name, self.extension))
        if dst == src:
            return Result.success(src)
        if dst.exists() and not _same_file(src, dst):
            return Result.failure(ErrorKind.NAME_COLLISION, f"Note already exists: {dst.name}", dst)
        src.rename(dst)
        logger.info("note renamed: %s -> %s", src, dst.name)
        return Result.success(dst)

    @_operation
    def delete_note(self, note: NoteRef) -> Result[None]:
        """Delete a note file. An emptied group directory is kept."""
        path = self._existing_note(note)
        path.unlink()
        logger.info("note deleted: %s", path)
        return Result.success(None)

    @_operation
    def move_note(self, note: NoteRef, target_group: str | None) -> Result[Path]:
        """Copy the note into target_group, then delete the source. Returns the new path.

        Copy-then-delete works across volumes. Moving into the current group
        is a no-op. Attachments the note references as '.assets/<name>' are
        copied along; the source copies stay for other notes that may use them.
        """
        src = self._existing_note(note)
        current = relative_group_path(self.root, src.parent)
        target = normalize_group_path(target_group)
        if target == current:
            return Result.success(src)

        data = src.read_bytes()
        assets = _referenced_assets(src.parent, data)
        dest_dir = self.resolve_group_dir(target)
        dst = dest_dir / src.name
        dest_assets = dest_dir / ASSETS_DIR
        for asset in assets:
            existing = dest_assets / asset.name
            if existing.exists() and existing.read_bytes() != asset.read_bytes():
                return Result.failure(
                    ErrorKind.NAME_COLLISION, f"Asset already exists in {target}: {asset.name}", existing,
                )

        try:
            with dst.open("xb") as f:
                f.write(data)
        except FileExistsError:
            return Result.failure(ErrorKind.NAME_COLLISION, f"Note already exists in {target}: {src.name}", dst)
        except OSError:
            dst.unlink(missing_ok=True)
            raise

        copied: list[Path] = []
        try:
            shutil.copystat(src, dst)
            for asset in assets:
                asset_dst = dest_assets / asset.name
                if asset_dst.exists():
                    continue
                dest_assets.mkdir(exist_ok=True)
                shutil.copy2(asset, asset_dst)
                copied.append(asset_dst)
        except OSError:
            dst.unlink(missing_ok=True)
            for path in copied:
                path.unlink(missing_ok=True)
            raise
        src.unlink(missing_ok=True)
        logger.info("note moved: %s -> %s (%d assets)", src, dst, len(assets))
        return Result.success(dst)

    # ------------------------------------------------------------------
    # Attachments and batches
    # ------------------------------------------------------------------

    @_operation
    def add_asset(self, note: NoteRef, file_name: str, data: bytes | str) -> Result[str]:
        """Store an attachment in the .assets directory beside note.

        data is raw bytes, a 'data:<mime>;base64,<payload>' URL, or plain text.
        Returns the reference to embed in the note: '.assets/<name>'.
        """
        src = self._existing_note(note)
        name = validate_name(file_name)
        payload = _decode_payload(data)
        assets = src.parent / ASSETS_DIR
        assets.mkdir(exist_ok=True)
        target = assets / name
        try:
            with target.open("xb") as f:
                f.write(payload)
        except FileExistsError:
            return Result.failure(ErrorKind.NAME_COLLISION, f"Asset already exists: {name}", target)
        except OSError:
            target.unlink(missing_ok=True)
            raise
        logger.info("asset added: %s (%d bytes)", target, len(payload))
        return Result.success(f"{ASSETS_DIR}/{name}")

    def note_exists(self, note: NoteRef) -> bool:
        """True if note names an existing file under the root; invalid paths are absent."""
        try:
            path = self._note_path(note)
        except StoreError:
            return False
        return path.is_file()

    def read_notes(self, notes: Iterable[NoteRef]) -> list[Result[NoteDocument]]:
        """read_note for each entry, in order. A failed entry does not stop the rest."""
        return [self.read_note(n) for n in notes]

    def write_notes(self, ops: Iterable[tuple[NoteRef, str]]) -> list[Result[Note]]:
        """write_note for each (note, content) pair, in order."""
        return [self.write_note(note, content) for note, content in ops]

    # ------------------------------------------------------------------
    # Write: groups
    # ------------------------------------------------------------------

    @_operation
    def create_group(self, group_path: str) -> Result[str]:
        """Create a group and all its ancestors. Idempotent."""
        normalized = normalize_group_path(group_path)
        if normalized == DEFAULT_GROUP:
            return Result.success(DEFAULT_GROUP)
        try:
            self.resolve_group_dir(normalized)
        except (FileExistsError, NotADirectoryError):
            return Result.failure(ErrorKind.NAME_COLLISION, "A file occupies the group path", normalized)
        logger.info("group created: %s", normalized)
        return Result.success(normalized)

    @_operation
    def delete_group(self, group_path: str) -> Result[None]:
        """Delete a group directory and everything below it."""
        normalized = normalize_group_path(group_path)
        if normalized == DEFAULT_GROUP:
            return Result.failure(ErrorKind.PROTECTED_GROUP, "The default group cannot be deleted", normalized)
        directory = group_dir(self.root, normalized)
        if not directory.is_dir():
            return Result.failure(ErrorKind.NOT_FOUND, "Group not found", normalized)
        _remove_tree(directory)
        logger.info("group deleted: %s", normalized)
        return Result.success(None)

    @_operation
    def rename_group(self, group_path: str, new_name: str) -> Result[str]:
        """Rename the leaf of a group in place. Returns the new group path."""
        normalized = normalize_group_path(group_path)
        if normalized == DEFAULT_GROUP:
            return Result.failure(ErrorKind.PROTECTED_GROUP, "The default group cannot be renamed", normalized)
        leaf = validate_name(new_name)
        parent, _ = split_group(normalized)
        if parent is None and leaf == DEFAULT_GROUP:
            return Result.failure(ErrorKind.PROTECTED_GROUP, f"'{DEFAULT_GROUP}' is reserved for the root group", leaf)
        src = group_dir(self.root, normalized)
        if not src.is_dir():
            return Result.failure(ErrorKind.NOT_FOUND, "Group not found", normalized)
        new_path = join_group(parent, leaf)
        if new_path == normalized:
            return Result.success(normalized)
        dst = group_dir(self.root, new_path)
        if dst.exists() and not _same_file(src, dst):
            return Result.failure(ErrorKind.NAME_COLLISION, "Group already exists", new_path)
        src.rename(dst)
        logger.info("group renamed: %s -> %s", normalized, new_path)
        return Result.success(new_path)

    @_operation
    def move_group(self, source: str, target: str | None) -> Result[str]:
        """Move a group (and its subtree) under target. Returns the new group path.

        target "" or None means the root, giving the source's leaf name alone.
        The DEFAULT_GROUP sentinel is refused: it names the root's own notes
        and cannot hold subgroups.
        """
        src_path = normalize_group_path(source)
        if src_path == DEFAULT_GROUP:
            return Result.failure(ErrorKind.PROTECTED_GROUP, "The default group cannot be moved", src_path)

        target_path: str | None = None
        if target is not None and target.strip():
            target_path = normalize_group_path(target)
            if target_path == DEFAULT_GROUP:
                return Result.failure(
                    ErrorKind.PROTECTED_GROUP, "Groups cannot be moved into the default group", target_path,
                )
            if is_same_or_descendant(target_path, src_path):
                return Result.failure(
                    ErrorKind.INVALID_MOVE, "A group cannot be moved into itself or a descendant", target_path,
                )

        src_dir = group_dir(self.root, src_path)
        if not src_dir.is_dir():
            return Result.failure(ErrorKind.NOT_FOUND, "Group not found", src_path)

        parent, leaf = split_group(src_path)
        if parent == target_path:
            return Result.success(src_path)
        if target_path is None and leaf == DEFAULT_GROUP:
            return Result.failure(ErrorKind.PROTECTED_GROUP, f"'{DEFAULT_GROUP}' is reserved for the root group", leaf)

        dest_path = join_group(target_path, leaf)
        dest_dir = group_dir(self.root, dest_path)
        if dest_dir.exists():
            return Result.failure(ErrorKind.NAME_COLLISION, "Destination group already exists", dest_path)
        if target_path is not None:
            self.resolve_group_dir(target_path)

        try:
            dest_dir.mkdir()
        except FileExistsError:
            return Result.failure(ErrorKind.NAME_COLLISION, "Destination group already exists", dest_path)
        try:
            _copy_tree(src_dir, dest_dir)
        except OSError:
            logger.warning("move_group: copy of %s failed, removing partial %s", src_path, dest_path)
            if dest_dir.exists():
                _remove_tree(dest_dir)
            raise
        _remove_tree(src_dir)
        logger.info("group moved: %s -> %s", src_path, dest_path)
        return Result.success(dest_path)

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def on_change(self, callback: Callable[[list[ChangeEvent]], None]) -> Subscription:
        """Register a callback for change batches. Cancel via the returned Subscription."""
        sub = Subscription(self, callback)
        with self._lock:
            self._subscribers.append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    def _dispatch(self, events: list[ChangeEvent]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for sub in subscribers:
            try:
                sub.callback(events)
            except Exception:
                logger.exception("change subscriber failed")

    @property
    def watching(self) -> bool:
        return self._watcher is not None and self._watcher.running

    def start_watching(self) -> ChangeWatcher:
        """Start the background watcher (idempotent)."""
        if self._watcher is not None and self._watcher.running:
            return self._watcher
        self._watcher = ChangeWatcher(
            self.root,
            self._dispatch,
            stability_window=self.stability_window,
            backend=self.watch_backend,
            poll_interval=self.poll_interval,
            ignore_hidden=self.ignore_hidden,
        )
        self._watcher.start()
        return self._watcher

    def stop_watching(self) -> None:
        """Stop the watcher. No callback fires after this returns."""
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    def close(self) -> None:
        self.stop_watching()

    def __enter__(self) -> NoteStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Internal: attachments
# ---------------------------------------------------------------------------

def _decode_payload(data: bytes | str) -> bytes:
    if isinstance(data, bytes):
        return data
    match = _DATA_URL_RE.match(data)
    if match is None:
        return data.encode("utf-8")
    try:
        return base64.b64decode(match.group(2), validate=True)
    except binascii.Error as exc:
        raise StoreError(ErrorKind.INVALID_DATA, f"Bad base64 payload: {exc}") from None


def _referenced_assets(directory: Path, data: bytes) -> list[Path]:
    """Existing files in directory/.assets that the note text links to."""
    found: list[Path] = []
    for match in _ASSET_REF_RE.finditer(data.decode("utf-8", errors="replace")):
        name = unquote(match.group(1))
        if "/" in name or name in (".", ".."):
            continue
        path = directory / ASSETS_DIR / name
        if path not in found and path.is_file():
            found.append(path)
    return found


# ---------------------------------------------------------------------------
# Internal: subtree copy/delete with explicit work stacks
# ---------------------------------------------------------------------------

def _same_file(a: Path, b: Path) -> bool:
    """True when a and b are one file under two spellings (case-insensitive FS)."""
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False


def _copy_tree(src: Path, dst: Path) -> None:
    """Copy the contents of src into the empty directory dst."""
    stack = [(src, dst)]
    while stack:
        from_dir, to_dir = stack.pop()
        with os.scandir(from_dir) as it:
            entries = list(it)
        for entry in entries:
            target = to_dir / entry.name
            if entry.is_symlink():
                os.symlink(os.readlink(entry.path), target)
            elif entry.is_dir():
                target.mkdir()
                stack.append((Path(entry.path), target))
            else:
                shutil.copy2(entry.path, target)
        shutil.copystat(from_dir, to_dir)


def _remove_tree(top: Path) -> None:
    """Delete top and everything below it, files first, deepest directories last."""
    if top.is_symlink():
        top.unlink()
        return
    dirs = [top]
    stack = [top]
    while stack:
        directory = stack.pop()
        with os.scandir(directory) as it:
            entries = list(it)
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                dirs.append(Path(entry.path))
                stack.append(Path(entry.path))
            else:
                Path(entry.path).unlink(missing_ok=True)
    for directory in reversed(dirs):
        directory.rmdir()


__all__ = ["NoteStore", "Subscription"]
